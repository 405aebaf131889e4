"""
Fee accounting for already broadcast transactions.
"""

from __future__ import annotations

from loguru import logger

from btcwallet.backends.base import ElectrumBackend
from btcwallet.wallet.signing import Transaction, deserialize_transaction

COINBASE_TXID = b"\x00" * 32


async def compute_transaction_fee(backend: ElectrumBackend, raw_tx: str | Transaction) -> int | None:
    """
    Fee paid by a transaction: total value of the outputs it spends minus the
    total value of its own outputs.

    Previous transactions are fetched through the backend, once per txid.
    Returns None when no input value is known (e.g. a coinbase transaction).
    """
    tx = raw_tx if isinstance(raw_tx, Transaction) else deserialize_transaction(bytes.fromhex(raw_tx))

    previous: dict[str, Transaction] = {}
    total_in = 0
    for inp in tx.inputs:
        if inp.txid_le == COINBASE_TXID:
            continue

        prev_txid = inp.txid_le[::-1].hex()
        if prev_txid not in previous:
            prev_hex = await backend.get_transaction(prev_txid)
            previous[prev_txid] = deserialize_transaction(bytes.fromhex(prev_hex))

        prev_tx = previous[prev_txid]
        if inp.vout >= len(prev_tx.outputs):
            raise ValueError(f"Input spends missing output {prev_txid}:{inp.vout}")
        total_in += prev_tx.outputs[inp.vout].value

    if total_in == 0:
        logger.debug("No input value resolved, fee unknown")
        return None

    total_out = sum(out.value for out in tx.outputs)
    return total_in - total_out
