"""
Signer implementations.

- SeedSigner: HD key derived from a BIP39 seed or mnemonic
- PrivateKeySigner: single imported private key, no HD features
- HardwareSigner: key held by a hardware device, reached through a DeviceManager
"""

from btcwallet.signers.base import Signer, SignerCapability
from btcwallet.signers.hardware import (
    DeviceActionEvent,
    DeviceActionStatus,
    DeviceManager,
    DeviceSigner,
    DeviceStatus,
    HardwareSigner,
    MessageSignature,
    PartialSignature,
    consume_device_action,
)
from btcwallet.signers.private_key import PrivateKeySigner
from btcwallet.signers.seed import SeedSigner

__all__ = [
    "DeviceActionEvent",
    "DeviceActionStatus",
    "DeviceManager",
    "DeviceSigner",
    "DeviceStatus",
    "HardwareSigner",
    "MessageSignature",
    "PartialSignature",
    "PrivateKeySigner",
    "SeedSigner",
    "Signer",
    "SignerCapability",
    "consume_device_action",
]
