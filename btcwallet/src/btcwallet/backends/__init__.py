"""
Blockchain backend implementations.

Available backends:
- PersistentElectrumClient: Electrum-protocol server over TCP, TLS or WebSocket,
  with lazy connection, bounded reconnects and keep-alive pings
"""

from btcwallet.backends.base import ElectrumBackend
from btcwallet.backends.electrum import (
    DEFAULT_FEE_RATE,
    ClientState,
    PersistentElectrumClient,
)

__all__ = [
    "ClientState",
    "DEFAULT_FEE_RATE",
    "ElectrumBackend",
    "PersistentElectrumClient",
]
