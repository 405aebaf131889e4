"""
Shared fixtures for btcwallet tests.
"""

import pytest
from embit.psbt import PSBT
from embit.script import Script
from embit.transaction import Transaction, TransactionInput, TransactionOutput

# BIP84 test vector mnemonic
TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)

FOREIGN_SCRIPT = bytes.fromhex("0014" + "22" * 20)


@pytest.fixture
def test_mnemonic() -> str:
    return TEST_MNEMONIC


@pytest.fixture
def psbt_factory():
    """
    Build an unsigned PSBT spending one output per entry of previous_scripts.

    Each input carries either a witness UTXO (default), the full previous
    transaction (non_witness=True), or nothing (bare=True).
    """

    def build(
        previous_scripts: list[bytes],
        value: int = 100_000,
        non_witness: bool = False,
        bare: bool = False,
    ) -> PSBT:
        funding = Transaction(
            version=2,
            vin=[TransactionInput(b"\x11" * 32, 0)],
            vout=[TransactionOutput(value, Script(script)) for script in previous_scripts],
            locktime=0,
        )
        txid = funding.txid()
        spend = Transaction(
            version=2,
            vin=[TransactionInput(txid, i) for i in range(len(previous_scripts))],
            vout=[TransactionOutput(value * len(previous_scripts) - 1_000, Script(FOREIGN_SCRIPT))],
            locktime=0,
        )

        psbt = PSBT(spend)
        if bare:
            return psbt
        for i, psbt_input in enumerate(psbt.inputs):
            if non_witness:
                psbt_input.non_witness_utxo = funding
            else:
                psbt_input.witness_utxo = TransactionOutput(value, Script(previous_scripts[i]))
        return psbt

    return build
