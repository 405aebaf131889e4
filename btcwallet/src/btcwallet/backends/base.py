"""
Base blockchain backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from btccore.models import Balance, HistoryEntry, UnspentOutput


class ElectrumBackend(ABC):
    """
    Abstract Electrum-protocol backend.

    Chain data is indexed by script hash (reversed SHA256 of the output
    script, hex), see btcwallet.wallet.scripts.script_hash().
    """

    @abstractmethod
    async def get_balance(self, scripthash: str) -> Balance:
        """Get confirmed/unconfirmed balance in satoshis"""

    @abstractmethod
    async def list_unspent(self, scripthash: str) -> list[UnspentOutput]:
        """Get UTXOs paying to the script"""

    @abstractmethod
    async def get_history(self, scripthash: str) -> list[HistoryEntry]:
        """Get confirmed and mempool transactions touching the script"""

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> str:
        """Get raw transaction hex by txid"""

    @abstractmethod
    async def broadcast(self, raw_tx: str) -> str:
        """Broadcast transaction, returns txid"""

    @abstractmethod
    async def estimate_fee(self, target_blocks: int) -> float:
        """Estimate fee in BTC/kB for target confirmation blocks"""

    @abstractmethod
    async def reconnect(self) -> None:
        """Re-initialize the connection explicitly"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
