"""
Hashing and encoding primitives.
"""

from __future__ import annotations

import hashlib

from coincurve import PublicKey
from coincurve import verify_signature as coincurve_verify

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

MESSAGE_PREFIX = b"\x18Bitcoin Signed Message:\n"


class CryptoError(Exception):
    pass


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    """SHA256(SHA256(data))"""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def base58_encode(data: bytes) -> str:
    num = int.from_bytes(data, "big")

    result = ""
    while num > 0:
        num, remainder = divmod(num, 58)
        result = BASE58_ALPHABET[remainder] + result

    for byte in data:
        if byte == 0:
            result = BASE58_ALPHABET[0] + result
        else:
            break

    return result


def base58_decode(text: str) -> bytes:
    num = 0
    for char in text:
        index = BASE58_ALPHABET.find(char)
        if index < 0:
            raise CryptoError(f"Invalid base58 character: {char!r}")
        num = num * 58 + index

    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    leading = len(text) - len(text.lstrip(BASE58_ALPHABET[0]))
    return b"\x00" * leading + body


def base58check_encode(payload: bytes) -> str:
    return base58_encode(payload + hash256(payload)[:4])


def base58check_decode(text: str) -> bytes:
    raw = base58_decode(text)
    if len(raw) < 4:
        raise CryptoError("Base58check payload too short")
    payload, checksum = raw[:-4], raw[-4:]
    if hash256(payload)[:4] != checksum:
        raise CryptoError("Base58check checksum mismatch")
    return payload


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def bitcoin_message_hash(message: str | bytes) -> bytes:
    """
    Hash a message using Bitcoin's message signing format.

    Format: SHA256(SHA256("\\x18Bitcoin Signed Message:\\n" + varint(len) + message))
    """
    msg_bytes = message.encode("utf-8") if isinstance(message, str) else message
    return hash256(MESSAGE_PREFIX + encode_varint(len(msg_bytes)) + msg_bytes)


def verify_raw_ecdsa(message_hash: bytes, signature_der: bytes, pubkey_bytes: bytes) -> bool:
    """
    Verify a DER ECDSA signature over an already-hashed 32-byte message.

    Returns:
        True if signature is valid
    """
    try:
        return coincurve_verify(signature_der, message_hash, pubkey_bytes, hasher=None)
    except Exception:
        return False


def is_valid_public_key(pubkey_bytes: bytes) -> bool:
    if len(pubkey_bytes) != 33 or pubkey_bytes[0] not in (2, 3):
        return False
    try:
        PublicKey(pubkey_bytes)
    except ValueError:
        return False
    return True
