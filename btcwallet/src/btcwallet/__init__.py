"""
btcwallet - Bitcoin signers and a persistent Electrum client

Signs PSBTs and messages with seed, raw-key or hardware-held keys, and reads
chain state through a self-healing Electrum connection.
"""

__version__ = "1.0.0"

from btcwallet.backends import ClientState, ElectrumBackend, PersistentElectrumClient
from btcwallet.config import (
    ElectrumSettings,
    PersistencePolicy,
    WalletConfig,
    normalize_config,
    setup_logging,
)
from btcwallet.errors import (
    BroadcastRejectedError,
    DeviceActionError,
    DeviceActionStoppedError,
    DeviceNotReadyError,
    DisposedSignerError,
    ExhaustedRetriesError,
    UnsupportedBipError,
    UnsupportedOperationError,
    UnsupportedStandardError,
    WalletError,
)
from btcwallet.signers import HardwareSigner, PrivateKeySigner, SeedSigner, Signer, SignerCapability

__all__ = [
    "BroadcastRejectedError",
    "ClientState",
    "DeviceActionError",
    "DeviceActionStoppedError",
    "DeviceNotReadyError",
    "DisposedSignerError",
    "ElectrumBackend",
    "ElectrumSettings",
    "ExhaustedRetriesError",
    "HardwareSigner",
    "PersistencePolicy",
    "PersistentElectrumClient",
    "PrivateKeySigner",
    "SeedSigner",
    "Signer",
    "SignerCapability",
    "UnsupportedBipError",
    "UnsupportedOperationError",
    "UnsupportedStandardError",
    "WalletConfig",
    "WalletError",
    "normalize_config",
    "setup_logging",
]
