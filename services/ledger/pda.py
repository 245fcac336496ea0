"""
Program-derived addresses for the VeilPay program.

An address is valid as a PDA only when it is NOT a point on ed25519, so the
search needs a curve check: decompress y and test whether u/v is a square.
"""
from __future__ import annotations

import hashlib
from typing import List, Sequence, Tuple

import base58

from services.crypto_core.errors import DecodeError

PDA_MARKER = b"ProgramDerivedAddress"
MAX_SEED_LEN = 32
MAX_SEEDS = 16

_P = 2 ** 255 - 19
_D = (-121665 * pow(121666, -1, _P)) % _P


def b58decode_pubkey(value: str) -> bytes:
    raw = base58.b58decode(value)
    if len(raw) != 32:
        raise DecodeError(f"Public key must decode to 32 bytes, got {len(raw)}")
    return raw


def b58encode(raw: bytes) -> str:
    return base58.b58encode(bytes(raw)).decode()


def is_on_ed25519_curve(raw: bytes) -> bool:
    if len(raw) != 32:
        return False
    y = int.from_bytes(raw, "little") & ((1 << 255) - 1)
    y %= _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    if v == 0:
        return False
    x2 = u * pow(v, -1, _P) % _P
    return x2 == 0 or pow(x2, (_P - 1) // 2, _P) == 1


def create_program_address(seeds: Sequence[bytes], program_id: str) -> bytes:
    if len(seeds) > MAX_SEEDS:
        raise ValueError("Too many seeds")
    h = hashlib.sha256()
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise ValueError("Seed exceeds 32 bytes")
        h.update(seed)
    h.update(b58decode_pubkey(program_id))
    h.update(PDA_MARKER)
    digest = h.digest()
    if is_on_ed25519_curve(digest):
        raise ValueError("Derived address lies on the curve")
    return digest


def find_program_address(seeds: Sequence[bytes], program_id: str) -> Tuple[str, int]:
    for bump in range(255, -1, -1):
        try:
            addr = create_program_address(list(seeds) + [bytes([bump])], program_id)
        except ValueError:
            continue
        return b58encode(addr), bump
    raise ValueError("Unable to find a viable program address bump seed")


def _pda(seeds: List[bytes], program_id: str) -> str:
    return find_program_address(seeds, program_id)[0]


def derive_config(program_id: str) -> str:
    return _pda([b"config", b58decode_pubkey(program_id)], program_id)


def derive_vault(program_id: str, mint: str) -> str:
    return _pda([b"vault", b58decode_pubkey(mint)], program_id)


def derive_shielded_state(program_id: str, mint: str) -> str:
    return _pda([b"shielded", b58decode_pubkey(mint)], program_id)


def derive_identity_registry(program_id: str) -> str:
    return _pda([b"identity_registry"], program_id)


def derive_identity_member(program_id: str, owner: str) -> str:
    return _pda([b"identity_member", b58decode_pubkey(owner)], program_id)


def derive_nullifier_set(program_id: str, mint: str, chunk_index: int) -> str:
    return _pda([b"nullifier_set", b58decode_pubkey(mint), int(chunk_index).to_bytes(4, "little")], program_id)
