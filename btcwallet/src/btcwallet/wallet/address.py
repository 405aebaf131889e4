"""
Bitcoin address generation utilities.
"""

from __future__ import annotations

from btccore.crypto import base58check_encode, hash160
from btccore.models import NetworkType

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"

BECH32_HRP = {
    NetworkType.MAINNET: "bc",
    NetworkType.TESTNET: "tb",
    NetworkType.REGTEST: "bcrt",
}

P2PKH_VERSION = {
    NetworkType.MAINNET: 0x00,
    NetworkType.TESTNET: 0x6F,
    NetworkType.REGTEST: 0x6F,
}


def bech32_polymod(values: list[int]) -> int:
    """Bech32 checksum polymod"""
    gen = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for v in values:
        b = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ v
        for i in range(5):
            chk ^= gen[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def bech32_create_checksum(hrp: str, data: list[int]) -> list[int]:
    values = bech32_hrp_expand(hrp) + data
    polymod = bech32_polymod(values + [0, 0, 0, 0, 0, 0]) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def bech32_encode(hrp: str, data: list[int]) -> str:
    combined = data + bech32_create_checksum(hrp, data)
    return hrp + "1" + "".join([BECH32_CHARSET[d] for d in combined])


def convertbits(data: bytes, frombits: int, tobits: int, pad: bool = True) -> list[int]:
    """Convert between bit groups"""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        raise ValueError("Invalid bits")

    return ret


def _check_pubkey(pubkey: bytes) -> None:
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")


def pubkey_to_p2wpkh_address(pubkey: bytes, network: NetworkType = NetworkType.MAINNET) -> str:
    """
    Convert compressed public key to P2WPKH (native segwit) address.
    BIP173 bech32 encoding.
    """
    _check_pubkey(pubkey)
    hrp = BECH32_HRP[NetworkType.parse(network)]

    witness_version = 0
    witness_program = convertbits(hash160(pubkey), 8, 5)
    return bech32_encode(hrp, [witness_version] + witness_program)


def pubkey_to_p2pkh_address(pubkey: bytes, network: NetworkType = NetworkType.MAINNET) -> str:
    """Convert compressed public key to legacy P2PKH (base58check) address."""
    _check_pubkey(pubkey)
    version = P2PKH_VERSION[NetworkType.parse(network)]
    return base58check_encode(bytes([version]) + hash160(pubkey))


def pubkey_to_p2wpkh_script(pubkey: bytes) -> bytes:
    """Create P2WPKH scriptPubKey (OP_0 <20-byte-hash>)"""
    return bytes([0x00, 0x14]) + hash160(pubkey)


def pubkey_to_p2pkh_script(pubkey: bytes) -> bytes:
    """Create P2PKH scriptPubKey (OP_DUP OP_HASH160 <20-byte-hash> OP_EQUALVERIFY OP_CHECKSIG)"""
    return b"\x76\xa9\x14" + hash160(pubkey) + b"\x88\xac"
