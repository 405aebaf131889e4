"""
Core data models shared by the transport and wallet layers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    REGTEST = "regtest"

    @classmethod
    def parse(cls, value: NetworkType | str | None) -> NetworkType:
        """Parse a network name, accepting ``bitcoin`` as an alias for mainnet."""
        if value is None:
            return cls.MAINNET
        if isinstance(value, NetworkType):
            return value
        name = value.lower()
        if name == "bitcoin":
            return cls.MAINNET
        return cls(name)


@dataclass(frozen=True)
class Balance:
    confirmed: int
    unconfirmed: int = 0

    @classmethod
    def from_electrum(cls, data: dict[str, Any]) -> Balance:
        return cls(
            confirmed=int(data.get("confirmed", 0)),
            unconfirmed=int(data.get("unconfirmed", 0)),
        )


@dataclass(frozen=True)
class UnspentOutput:
    tx_hash: str
    tx_pos: int
    value: int
    height: int = 0

    @classmethod
    def from_electrum(cls, data: dict[str, Any]) -> UnspentOutput:
        return cls(
            tx_hash=data["tx_hash"],
            tx_pos=int(data["tx_pos"]),
            value=int(data["value"]),
            height=int(data.get("height", 0)),
        )


@dataclass(frozen=True)
class HistoryEntry:
    tx_hash: str
    height: int
    fee: int | None = None  # Only reported by servers for mempool entries

    @classmethod
    def from_electrum(cls, data: dict[str, Any]) -> HistoryEntry:
        fee = data.get("fee")
        return cls(
            tx_hash=data["tx_hash"],
            height=int(data.get("height", 0)),
            fee=int(fee) if fee is not None else None,
        )

    @property
    def confirmed(self) -> bool:
        return self.height > 0
