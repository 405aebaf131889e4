"""
HD signer backed by a BIP39 seed.
"""

from __future__ import annotations

from embit.bip39 import mnemonic_is_valid
from embit.ec import PublicKey as EcPublicKey
from embit.psbt import DerivationPath, InputScope

from btcwallet.config import normalize_config
from btcwallet.signers.base import ConfigLike, SignerCapability, full_derivation_path, path_index
from btcwallet.signers.software import SoftwareSigner
from btcwallet.wallet.bip32 import EXTENDED_PUBLIC_KEY_VERSIONS, HDKey, mnemonic_to_seed, parse_path
from btcwallet.wallet.keys import KeyPair

MNEMONIC_WORD_COUNTS = (12, 15, 18, 21, 24)


class SeedSigner(SoftwareSigner):
    """
    Signer for the key at m/{bip}'/{coin}'/{relative_path}.

    Accepts raw seed bytes, a mnemonic phrase, or an already derived master
    HDKey (which the signer takes ownership of and wipes on dispose).
    """

    capabilities = frozenset(SignerCapability)

    def __init__(
        self,
        seed: bytes | str | HDKey,
        relative_path: str = "0'/0/0",
        config: ConfigLike = None,
        passphrase: str = "",
    ):
        if isinstance(seed, HDKey):
            root = seed
        else:
            if isinstance(seed, str):
                mnemonic = " ".join(seed.split())
                if len(mnemonic.split()) not in MNEMONIC_WORD_COUNTS or not mnemonic_is_valid(mnemonic):
                    raise ValueError("The seed phrase is invalid.")
                seed = mnemonic_to_seed(mnemonic, passphrase)
            root = HDKey.from_seed(seed)

        self._root = root

        normalized = normalize_config(config)
        self._path = full_derivation_path(normalized, relative_path)
        self._account = root.derive(self._path)

        key_pair = KeyPair(self._account.get_public_key_bytes(), self._account.get_private_key_bytes())
        super().__init__(key_pair, normalized)

    @property
    def path(self) -> str:
        self._require_active()
        return self._path

    @property
    def index(self) -> int:
        self._require_active()
        return path_index(self._path)

    @property
    def master_fingerprint(self) -> bytes:
        self._require_active()
        return self._root.fingerprint

    def derive(self, relative_path: str, config: ConfigLike = None) -> SeedSigner:
        """New signer from a copy of the same root key, so either can be disposed independently."""
        self._require_active()
        merged = self.config.model_dump()
        if config is not None:
            merged.update({k: v for k, v in dict(config).items() if v is not None})
        return SeedSigner(self._root.copy(), relative_path, merged)

    async def get_extended_public_key(self) -> str:
        self._require_active()
        version = EXTENDED_PUBLIC_KEY_VERSIONS[(self.config.bip, self.config.network)]
        return self._account.extended_public_key(version)

    def _annotate_input(self, psbt_input: InputScope) -> None:
        public_key = EcPublicKey.parse(self._key_pair.public_key)
        if public_key not in psbt_input.bip32_derivations:
            psbt_input.bip32_derivations[public_key] = DerivationPath(
                self._root.fingerprint, parse_path(self._path)
            )

    def _wipe(self) -> None:
        super()._wipe()
        self._account.wipe()
        self._root.wipe()
