# services/crypto_core/field.py
# Arithmetic helpers over the BN254 scalar field. Every protocol value
# (amounts, randomness, secrets, hashes, coordinates) lives here and travels
# as a 32-byte big-endian integer.
from __future__ import annotations

import hashlib
import secrets
from typing import Iterable

FIELD_MODULUS: int = 21888242871839275222246405745257275088548364400416034343698204186575808495617
FIELD_BYTES: int = 32


def mod_field(value: int) -> int:
    """Canonical residue in [0, p). Python's % already handles negatives."""
    return value % FIELD_MODULUS


def bytes_to_int_be(data: bytes) -> int:
    return int.from_bytes(bytes(data), "big")


def int_to_bytes32(value: int) -> bytes:
    if value < 0:
        raise ValueError("Value must be non-negative")
    if value.bit_length() > 8 * FIELD_BYTES:
        raise ValueError("Value exceeds 32 bytes")
    return value.to_bytes(FIELD_BYTES, "big")


def field_from_bytes(data: bytes) -> int:
    return mod_field(bytes_to_int_be(data))


def random_bytes32() -> bytes:
    return secrets.token_bytes(FIELD_BYTES)


def random_field() -> int:
    return field_from_bytes(random_bytes32())


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def concat_bytes(chunks: Iterable[bytes]) -> bytes:
    return b"".join(bytes(c) for c in chunks)


def to_hex(data: bytes) -> str:
    return bytes(data).hex()


def from_hex(value: str) -> bytes:
    v = value.strip().lower()
    if v.startswith("0x"):
        v = v[2:]
    return bytes.fromhex(v)


def field_to_hex(value: int) -> str:
    return int_to_bytes32(value).hex()
