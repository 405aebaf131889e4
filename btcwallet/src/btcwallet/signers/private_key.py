"""
Signer backed by a single imported private key.
"""

from __future__ import annotations

from btcwallet.signers.base import ConfigLike, SignerCapability
from btcwallet.signers.software import SoftwareSigner
from btcwallet.wallet.keys import KeyPair


class PrivateKeySigner(SoftwareSigner):
    """
    Non-HD signer. derive(), get_extended_public_key(), index and path all
    raise UnsupportedOperationError.
    """

    capabilities = frozenset({SignerCapability.KEY_PAIR, SignerCapability.VERIFY})

    def __init__(self, private_key: str | bytes | bytearray, config: ConfigLike = None):
        if isinstance(private_key, str):
            try:
                private_key = bytes.fromhex(private_key)
            except ValueError as e:
                raise ValueError("Private key must be 32 bytes or 64 hex characters") from e

        if len(private_key) != 32:
            raise ValueError("Private key must be 32 bytes or 64 hex characters")

        super().__init__(KeyPair.from_private_key(private_key), config)
