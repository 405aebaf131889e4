"""
Bitcoin transaction and message signing utilities for P2WPKH and P2PKH inputs.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

from btccore.crypto import bitcoin_message_hash, encode_varint, hash160, hash256
from coincurve import PrivateKey, PublicKey

SIGHASH_ALL = 1


class TransactionSigningError(Exception):
    pass


@dataclass
class TxInput:
    txid_le: bytes
    vout: int
    script: bytes
    sequence: bytes


@dataclass
class TxOutput:
    value: int
    script: bytes


@dataclass
class Transaction:
    version: bytes
    marker_flag: bool
    inputs: list[TxInput]
    outputs: list[TxOutput]
    locktime: bytes
    raw: bytes

    @property
    def txid(self) -> str:
        """Transaction id (hex, display byte order) computed over the non-witness serialization"""
        return hash256(serialize_transaction(self))[::-1].hex()


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        value = int.from_bytes(data[offset : offset + 2], "little")
        return value, offset + 2
    if first == 0xFE:
        value = int.from_bytes(data[offset : offset + 4], "little")
        return value, offset + 4
    value = int.from_bytes(data[offset : offset + 8], "little")
    return value, offset + 8


def deserialize_transaction(tx_bytes: bytes) -> Transaction:
    try:
        offset = 0
        version = tx_bytes[offset : offset + 4]
        offset += 4

        marker_flag = False
        if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            marker_flag = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[TxInput] = []

        for _ in range(input_count):
            txid_le = tx_bytes[offset : offset + 32]
            offset += 32

            vout = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            sequence = tx_bytes[offset : offset + 4]
            offset += 4

            inputs.append(TxInput(txid_le, vout, script, sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOutput] = []

        for _ in range(output_count):
            value = int.from_bytes(tx_bytes[offset : offset + 8], "little")
            offset += 8

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            outputs.append(TxOutput(value, script))

        if marker_flag:
            for _ in range(input_count):
                stack_count, offset = read_varint(tx_bytes, offset)
                for _ in range(stack_count):
                    item_len, offset = read_varint(tx_bytes, offset)
                    offset += item_len

        locktime = tx_bytes[offset : offset + 4]
        if len(locktime) != 4:
            raise ValueError("Truncated transaction")
        return Transaction(version, marker_flag, inputs, outputs, locktime, tx_bytes)

    except Exception as e:
        raise TransactionSigningError(f"Failed to parse transaction: {e}") from e


def _serialize_outputs(outputs: list[TxOutput]) -> bytes:
    return b"".join(
        out.value.to_bytes(8, "little") + encode_varint(len(out.script)) + out.script
        for out in outputs
    )


def serialize_transaction(tx: Transaction, scripts: list[bytes] | None = None) -> bytes:
    """Serialize without witness data, optionally substituting every input script."""
    if scripts is None:
        scripts = [inp.script for inp in tx.inputs]

    serialized_inputs = b"".join(
        inp.txid_le
        + inp.vout.to_bytes(4, "little")
        + encode_varint(len(script))
        + script
        + inp.sequence
        for inp, script in zip(tx.inputs, scripts, strict=True)
    )
    return (
        tx.version
        + encode_varint(len(tx.inputs))
        + serialized_inputs
        + encode_varint(len(tx.outputs))
        + _serialize_outputs(tx.outputs)
        + tx.locktime
    )


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int,
) -> bytes:
    """BIP143 signature hash for a witness v0 input."""
    try:
        if input_index >= len(tx.inputs):
            raise TransactionSigningError("Input index out of range")

        hash_prevouts = hash256(
            b"".join(inp.txid_le + inp.vout.to_bytes(4, "little") for inp in tx.inputs)
        )
        hash_sequence = hash256(b"".join(inp.sequence for inp in tx.inputs))
        hash_outputs = hash256(_serialize_outputs(tx.outputs))

        target_input = tx.inputs[input_index]

        preimage = (
            tx.version
            + hash_prevouts
            + hash_sequence
            + target_input.txid_le
            + target_input.vout.to_bytes(4, "little")
            + encode_varint(len(script_code))
            + script_code
            + value.to_bytes(8, "little")
            + target_input.sequence
            + hash_outputs
            + tx.locktime
            + sighash_type.to_bytes(4, "little")
        )

        return hash256(preimage)

    except Exception as e:
        raise TransactionSigningError(f"Failed to compute sighash: {e}") from e


def compute_sighash_legacy(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """
    Pre-segwit signature hash (SIGHASH_ALL only).

    Every input script is blanked except the one being signed, which carries
    the previous output's scriptPubKey.
    """
    if sighash_type != SIGHASH_ALL:
        raise TransactionSigningError(f"Unsupported legacy sighash type: {sighash_type}")
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")

    scripts = [script_code if i == input_index else b"" for i in range(len(tx.inputs))]
    preimage = serialize_transaction(tx, scripts) + sighash_type.to_bytes(4, "little")
    return hash256(preimage)


def sign_sighash(sighash: bytes, private_key: PrivateKey, sighash_type: int = SIGHASH_ALL) -> bytes:
    """
    Sign a precomputed sighash.

    Returns:
        DER-encoded signature with sighash type byte appended
    """
    # The sighash is already SHA256d, hasher=None skips hashing
    signature = private_key.sign(sighash, hasher=None)
    return signature + bytes([sighash_type])


def sign_p2wpkh_input(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    private_key: PrivateKey,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """Sign a P2WPKH input using coincurve.

    Args:
        tx: The transaction to sign
        input_index: Index of the input to sign
        script_code: The scriptCode for signing (P2PKH script for P2WPKH)
        value: The value of the input being spent (in satoshis)
        private_key: coincurve PrivateKey instance
        sighash_type: Sighash type (default SIGHASH_ALL = 1)

    Returns:
        DER-encoded signature with sighash type byte appended
    """
    sighash = compute_sighash_segwit(tx, input_index, script_code, value, sighash_type)
    return sign_sighash(sighash, private_key, sighash_type)


def sign_p2pkh_input(
    tx: Transaction,
    input_index: int,
    script_pubkey: bytes,
    private_key: PrivateKey,
) -> bytes:
    sighash = compute_sighash_legacy(tx, input_index, script_pubkey)
    return sign_sighash(sighash, private_key)


def create_p2wpkh_script_code(pubkey_bytes: bytes) -> bytes:
    """Create the scriptCode for P2WPKH signing (BIP 143).

    For P2WPKH, the scriptCode is the P2PKH script:
    OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG

    Returns 25 bytes (without length prefix - the preimage serialization adds that).
    """
    return b"\x76\xa9\x14" + hash160(pubkey_bytes) + b"\x88\xac"


def sign_message(private_key: PrivateKey, message: str | bytes) -> str:
    """
    Sign a message in the Bitcoin signed-message format.

    Returns:
        Base64 65-byte compact recoverable signature (compressed key header)
    """
    digest = bitcoin_message_hash(message)
    recoverable = private_key.sign_recoverable(digest, hasher=None)
    header = 27 + recoverable[64] + 4
    return base64.b64encode(bytes([header]) + recoverable[:64]).decode("ascii")


def verify_message(pubkey_bytes: bytes, message: str | bytes, signature: str) -> bool:
    """Check a base64 compact signature against a compressed public key."""
    try:
        raw = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    if len(raw) != 65 or not 27 <= raw[0] <= 34:
        return False

    recovery_id = (raw[0] - 27) & 3
    digest = bitcoin_message_hash(message)
    try:
        recovered = PublicKey.from_signature_and_message(
            raw[1:] + bytes([recovery_id]), digest, hasher=None
        )
    except ValueError:
        return False

    return recovered.format(compressed=True) == pubkey_bytes
