"""
Signer interface.

Each variant declares the capabilities it has. Anything outside that set
raises UnsupportedOperationError instead of returning a placeholder, so a
raw-key signer can never be mistaken for an HD one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import Enum
from typing import Any

from embit.psbt import PSBT

from btcwallet.config import WalletConfig, normalize_config
from btcwallet.errors import DisposedSignerError, UnsupportedOperationError
from btcwallet.wallet.bip32 import HARDENED, coin_type, parse_path
from btcwallet.wallet.keys import KeyPair
from btcwallet.wallet.scripts import build_payment_script, script_hash

ConfigLike = WalletConfig | Mapping[str, Any] | None


class SignerCapability(str, Enum):
    HD_DERIVATION = "hd_derivation"
    EXTENDED_PUBLIC_KEY = "extended_public_key"
    KEY_PAIR = "key_pair"
    VERIFY = "verify"


def full_derivation_path(config: WalletConfig, relative_path: str) -> str:
    """m/{bip}'/{coin}'/{relative_path}"""
    relative_path = relative_path.strip("/")
    if relative_path.startswith("m"):
        raise ValueError(f"Expected a path relative to the coin level, got {relative_path!r}")
    path = f"m/{config.bip}'/{coin_type(config.network)}'/{relative_path}"
    parse_path(path)
    return path


class Signer(ABC):
    capabilities: frozenset[SignerCapability] = frozenset()

    def __init__(self, config: ConfigLike = None):
        self._config = normalize_config(config)
        self._disposed = False

    @property
    def config(self) -> WalletConfig:
        return self._config

    @property
    def is_active(self) -> bool:
        return not self._disposed

    def supports(self, capability: SignerCapability) -> bool:
        return capability in self.capabilities

    def _require_active(self) -> None:
        if self._disposed:
            raise DisposedSignerError(f"{type(self).__name__} has been disposed")

    def _unsupported(self, operation: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(f"{operation} is not supported by {type(self).__name__}")

    # HD accessors, only for variants with HD_DERIVATION

    @property
    def index(self) -> int:
        raise self._unsupported("HD index")

    @property
    def path(self) -> str:
        raise self._unsupported("HD path")

    def derive(self, relative_path: str, config: ConfigLike = None) -> Signer:
        raise self._unsupported("derive")

    async def get_extended_public_key(self) -> str:
        raise self._unsupported("Extended public key export")

    @property
    def key_pair(self) -> KeyPair:
        raise self._unsupported("Key pair access")

    async def verify(self, message: str | bytes, signature: str) -> bool:
        raise self._unsupported("Signature verification")

    # Common surface

    @abstractmethod
    async def get_public_key(self) -> bytes:
        """Compressed public key the signer's script pays to"""

    @abstractmethod
    async def get_address(self) -> str:
        pass

    @abstractmethod
    async def sign(self, message: str | bytes) -> str:
        """Sign a message, returns a base64 compact signature"""

    @abstractmethod
    async def sign_psbt(self, psbt: PSBT | str | bytes) -> PSBT:
        """Sign the inputs this signer owns. The PSBT is returned unfinalized."""

    @abstractmethod
    def dispose(self) -> None:
        pass

    async def get_payment_script(self) -> bytes:
        public_key = await self.get_public_key()
        return build_payment_script(self._config.bip, public_key, self._config.network)

    async def get_script_hash(self) -> str:
        """Electrum script hash for balance/history/UTXO queries"""
        return script_hash(await self.get_payment_script())


def path_index(path: str) -> int:
    """Last component of a derivation path, without the hardened flag."""
    indexes = parse_path(path)
    if not indexes:
        raise ValueError(f"Path has no components: {path!r}")
    return indexes[-1] % HARDENED
