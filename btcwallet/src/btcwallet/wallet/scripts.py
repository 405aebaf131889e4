"""
Payment script construction and PSBT input ownership detection.

Ownership is decided purely by byte equality of the previous output's
scriptPubKey with the signer's own script. Addresses are never compared:
the same script has several valid string encodings.
"""

from __future__ import annotations

from dataclasses import dataclass

from btccore.crypto import sha256
from btccore.models import NetworkType
from embit.psbt import PSBT, InputScope
from embit.transaction import TransactionOutput

from btcwallet.errors import UnsupportedStandardError
from btcwallet.wallet.address import (
    pubkey_to_p2pkh_address,
    pubkey_to_p2pkh_script,
    pubkey_to_p2wpkh_address,
    pubkey_to_p2wpkh_script,
)

BIP44 = 44
BIP84 = 84

WITNESS_STANDARDS = (BIP84,)


@dataclass
class InputOwnership:
    input: InputScope
    previous_output: TransactionOutput | None
    is_ours: bool


def build_payment_script(standard: int, public_key: bytes, network: NetworkType | str | None = None) -> bytes:
    """
    Build the scriptPubKey a key pays to under a derivation standard.

    BIP44 yields P2PKH, BIP84 yields P2WPKH. The network does not change the
    script, only its address encoding.

    Raises:
        UnsupportedStandardError: For any other standard
    """
    NetworkType.parse(network)
    if len(public_key) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(public_key)}")

    if standard == BIP44:
        return pubkey_to_p2pkh_script(public_key)
    if standard == BIP84:
        return pubkey_to_p2wpkh_script(public_key)
    raise UnsupportedStandardError(f"Unsupported address standard: {standard}")


def payment_address(standard: int, public_key: bytes, network: NetworkType | str | None = None) -> str:
    """Address string for the script build_payment_script() returns."""
    network = NetworkType.parse(network)
    if standard == BIP44:
        return pubkey_to_p2pkh_address(public_key, network)
    if standard == BIP84:
        return pubkey_to_p2wpkh_address(public_key, network)
    raise UnsupportedStandardError(f"Unsupported address standard: {standard}")


def resolve_previous_output(psbt_input: InputScope) -> TransactionOutput | None:
    """
    Find the output an input spends.

    The full previous transaction is preferred over the witness UTXO because
    it commits to the value; None when neither is present or vout is out of range.
    """
    if psbt_input.non_witness_utxo is not None:
        outputs = psbt_input.non_witness_utxo.vout
        if psbt_input.vout < len(outputs):
            return outputs[psbt_input.vout]
        return None

    return psbt_input.witness_utxo


def detect_input_ownership(psbt: PSBT, input_index: int, my_script: bytes) -> InputOwnership:
    psbt_input = psbt.inputs[input_index]
    previous_output = resolve_previous_output(psbt_input)

    is_ours = previous_output is not None and previous_output.script_pubkey.data == my_script
    return InputOwnership(input=psbt_input, previous_output=previous_output, is_ours=is_ours)


def ensure_witness_utxo_if_needed(
    psbt: PSBT,
    input_index: int,
    standard: int,
    previous_output: TransactionOutput | None,
    psbt_input: InputScope | None = None,
) -> bool:
    """
    Attach a witness UTXO to a segwit input that lacks one.

    Returns:
        True if the field was added, False if nothing needed to change
    """
    if standard not in WITNESS_STANDARDS or previous_output is None:
        return False

    if psbt_input is None:
        psbt_input = psbt.inputs[input_index]
    if psbt_input.witness_utxo is not None:
        return False

    psbt_input.witness_utxo = TransactionOutput(previous_output.value, previous_output.script_pubkey)
    return True


def script_hash(script: bytes) -> str:
    """Electrum script hash: SHA256 of the scriptPubKey, byte-reversed, hex."""
    return sha256(script)[::-1].hex()


def load_psbt(psbt: PSBT | str | bytes) -> PSBT:
    """Accept a PSBT object, a base64 string or raw PSBT bytes."""
    if isinstance(psbt, PSBT):
        return psbt
    if isinstance(psbt, bytes):
        return PSBT.parse(psbt)
    return PSBT.from_string(psbt.strip())
