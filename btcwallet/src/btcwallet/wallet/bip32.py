"""
BIP32 HD key derivation.
Implements BIP44 (legacy) and BIP84 (native SegWit) derivation paths and
extended public key serialization.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass

from btccore.crypto import CryptoError, base58check_decode, base58check_encode, hash160
from btccore.models import NetworkType
from coincurve import PrivateKey, PublicKey

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED = 0x80000000

# SLIP-132 version bytes for extended public keys
XPUB = bytes.fromhex("0488b21e")
ZPUB = bytes.fromhex("04b24746")
TPUB = bytes.fromhex("043587cf")
VPUB = bytes.fromhex("045f1cf6")

EXTENDED_PUBLIC_KEY_VERSIONS = {
    (44, NetworkType.MAINNET): XPUB,
    (84, NetworkType.MAINNET): ZPUB,
    (44, NetworkType.TESTNET): TPUB,
    (84, NetworkType.TESTNET): VPUB,
    (44, NetworkType.REGTEST): TPUB,
    (84, NetworkType.REGTEST): VPUB,
}


def coin_type(network: NetworkType) -> int:
    """BIP44 coin type: 0 for mainnet, 1 for every test network."""
    return 0 if NetworkType.parse(network) is NetworkType.MAINNET else 1


def parse_path(path: str) -> list[int]:
    """
    Parse a derivation path ("m/84'/0'/0'/0/0", "0'/0/5" or "84h/0h") into
    child indexes, hardened ones offset by 2^31.
    """
    parts = path.split("/")
    if parts and parts[0] == "m":
        parts = parts[1:]

    indexes = []
    for part in parts:
        if not part:
            continue

        hardened = part.endswith("'") or part.endswith("h")
        index_str = part.rstrip("'h")
        if not index_str.isdigit():
            raise ValueError(f"Invalid path component: {part!r}")
        index = int(index_str)
        if index >= HARDENED:
            raise ValueError(f"Path index out of range: {part!r}")

        indexes.append(index + HARDENED if hardened else index)

    return indexes


def format_path(indexes: list[int]) -> str:
    parts = ["m"]
    for index in indexes:
        parts.append(f"{index - HARDENED}'" if index >= HARDENED else str(index))
    return "/".join(parts)


class HDKey:
    """
    Hierarchical Deterministic Key for Bitcoin.
    Implements BIP32 derivation.

    The private scalar is held in a mutable buffer so wipe() can overwrite it;
    coincurve key objects are only created for the duration of one operation.
    """

    def __init__(
        self,
        secret: bytes | bytearray,
        chain_code: bytes,
        depth: int = 0,
        index: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
    ):
        self._secret = bytearray(secret)
        self._public_key = PrivateKey(bytes(self._secret)).public_key.format(compressed=True)
        self._wiped = False
        self.chain_code = chain_code
        self.depth = depth
        self.index = index
        self.parent_fingerprint = parent_fingerprint

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    @property
    def private_key(self) -> PrivateKey:
        """Return a coincurve PrivateKey instance for a single operation."""
        if self._wiped:
            raise ValueError("Key material has been wiped")
        return PrivateKey(bytes(self._secret))

    @property
    def public_key(self) -> PublicKey:
        return PublicKey(self._public_key)

    @property
    def fingerprint(self) -> bytes:
        """First 4 bytes of HASH160 of the compressed public key"""
        return hash160(self._public_key)[:4]

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed"""
        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        return cls(key_bytes, chain_code, depth=0)

    def copy(self) -> HDKey:
        if self._wiped:
            raise ValueError("Key material has been wiped")
        return HDKey(self._secret, self.chain_code, self.depth, self.index, self.parent_fingerprint)

    def derive(self, path: str) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/84'/0'/0'/0/0")
        ' or h indicates hardened derivation
        """
        if not path.startswith("m"):
            raise ValueError("Path must start with 'm'")

        key = self
        for index in parse_path(path):
            key = key._derive_child(index)

        return key

    def _derive_child(self, index: int) -> HDKey:
        """Derive a child key at the given index"""
        if self._wiped:
            raise ValueError("Key material has been wiped")

        if index >= HARDENED:
            data = b"\x00" + bytes(self._secret) + index.to_bytes(4, "big")
        else:
            data = self._public_key + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        parent_key_int = int.from_bytes(self._secret, "big")
        offset_int = int.from_bytes(key_offset, "big")

        child_key_int = (parent_key_int + offset_int) % SECP256K1_N

        if offset_int >= SECP256K1_N or child_key_int == 0:
            raise ValueError("Invalid child key")

        return HDKey(
            child_key_int.to_bytes(32, "big"),
            child_chain,
            depth=self.depth + 1,
            index=index,
            parent_fingerprint=self.fingerprint,
        )

    def get_private_key_bytes(self) -> bytes:
        """Get private key as 32 bytes"""
        if self._wiped:
            raise ValueError("Key material has been wiped")
        return bytes(self._secret)

    def get_public_key_bytes(self) -> bytes:
        """Get compressed public key bytes"""
        return self._public_key

    def extended_public_key(self, version: bytes = XPUB) -> str:
        """Serialize as a base58check extended public key with the given version bytes"""
        payload = (
            version
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.index.to_bytes(4, "big")
            + self.chain_code
            + self._public_key
        )
        return base58check_encode(payload)

    def wipe(self) -> None:
        """Overwrite the private scalar with zeros. The key cannot sign afterwards."""
        for i in range(len(self._secret)):
            self._secret[i] = 0
        self._wiped = True


@dataclass(frozen=True)
class ExtendedPublicKey:
    version: bytes
    depth: int
    parent_fingerprint: bytes
    index: int
    chain_code: bytes
    public_key: bytes

    def serialize(self, version: bytes | None = None) -> str:
        """Re-encode, optionally under different version bytes (e.g. xpub -> zpub)."""
        payload = (
            (version or self.version)
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.index.to_bytes(4, "big")
            + self.chain_code
            + self.public_key
        )
        return base58check_encode(payload)


def parse_extended_public_key(text: str) -> ExtendedPublicKey:
    """
    Parse an xpub/zpub/tpub/vpub string.

    Raises:
        CryptoError: If the checksum or layout is invalid
    """
    payload = base58check_decode(text)
    if len(payload) != 78:
        raise CryptoError(f"Invalid extended key length: {len(payload)}")

    public_key = payload[45:78]
    if public_key[0] not in (2, 3):
        raise CryptoError("Extended key does not contain a compressed public key")

    return ExtendedPublicKey(
        version=payload[0:4],
        depth=payload[4],
        parent_fingerprint=payload[5:9],
        index=int.from_bytes(payload[9:13], "big"),
        chain_code=payload[13:45],
        public_key=public_key,
    )


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert BIP39 mnemonic to seed.
    Does not check the mnemonic against the wordlist.
    """
    from hashlib import pbkdf2_hmac

    mnemonic_bytes = mnemonic.encode("utf-8")
    salt = ("mnemonic" + passphrase).encode("utf-8")

    return pbkdf2_hmac("sha512", mnemonic_bytes, salt, 2048, dklen=64)
