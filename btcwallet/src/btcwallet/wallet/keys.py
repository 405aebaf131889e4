"""
Key pair held by exactly one signer.
"""

from __future__ import annotations

from coincurve import PrivateKey


class KeyPair:
    """
    Compressed public key plus an optional private scalar.

    The scalar lives in a bytearray so wipe() can overwrite it in place.
    """

    def __init__(self, public_key: bytes, private_key: bytes | bytearray | None = None):
        if len(public_key) != 33:
            raise ValueError(f"Invalid compressed pubkey length: {len(public_key)}")
        if private_key is not None and len(private_key) != 32:
            raise ValueError(f"Invalid private key length: {len(private_key)}")

        self.public_key = public_key
        self._private_key = bytearray(private_key) if private_key is not None else None

    @classmethod
    def from_private_key(cls, private_key: bytes | bytearray) -> KeyPair:
        public_key = PrivateKey(bytes(private_key)).public_key.format(compressed=True)
        return cls(public_key, private_key)

    @property
    def private_key(self) -> bytearray | None:
        return self._private_key

    @property
    def has_private_key(self) -> bool:
        return self._private_key is not None

    def signing_key(self) -> PrivateKey:
        """Short-lived coincurve key for one signing operation."""
        if self._private_key is None:
            raise ValueError("Key pair has no private key")
        return PrivateKey(bytes(self._private_key))

    def wipe(self) -> None:
        if self._private_key is not None:
            for i in range(len(self._private_key)):
                self._private_key[i] = 0
        self._private_key = None

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key.hex()})"
