"""
btccore - Core library for the Bitcoin signer and Electrum connectivity layer

Provides shared functionality for hashing, networking and the Electrum RPC session.
"""

__version__ = "1.0.0"

from btccore.models import Balance, HistoryEntry, NetworkType, UnspentOutput
from btccore.network import (
    ClosedError,
    Connection,
    ConnectionError,
    Endpoint,
    TCPConnection,
    TransportProtocol,
    WebSocketConnection,
    open_connection,
)
from btccore.rpc import (
    DEFAULT_REQUEST_TIMEOUT,
    ElectrumSession,
    RpcError,
    SessionState,
    TimeoutError,
)

__all__ = [
    "Balance",
    "ClosedError",
    "Connection",
    "ConnectionError",
    "DEFAULT_REQUEST_TIMEOUT",
    "ElectrumSession",
    "Endpoint",
    "HistoryEntry",
    "NetworkType",
    "RpcError",
    "SessionState",
    "TCPConnection",
    "TimeoutError",
    "TransportProtocol",
    "UnspentOutput",
    "WebSocketConnection",
    "open_connection",
]
