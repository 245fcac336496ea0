# services/ledger/accounts.py
# Anchor account layouts: an 8-byte discriminator, then Borsh fields.
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import List, Optional

from services.crypto_core.errors import DecodeError
from services.crypto_core.field import bytes_to_int_be
from services.ledger.client import LedgerClient
from services.ledger.pda import (
    b58encode,
    derive_identity_registry,
    derive_nullifier_set,
    derive_shielded_state,
)

NULLIFIER_BITSET_BYTES = 1024


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


class BorshReader:
    def __init__(self, data: bytes, offset: int = 0):
        self.data = bytes(data)
        self.offset = offset

    def take(self, n: int) -> bytes:
        end = self.offset + n
        if n < 0 or end > len(self.data):
            raise DecodeError(f"Buffer underrun reading {n} bytes at offset {self.offset}")
        out = self.data[self.offset:end]
        self.offset = end
        return out

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return int.from_bytes(self.take(4), "little")

    def u64(self) -> int:
        return int.from_bytes(self.take(8), "little")

    def pubkey(self) -> str:
        return b58encode(self.take(32))

    def vec_bytes(self) -> bytes:
        return self.take(self.u32())

    def remaining(self) -> int:
        return len(self.data) - self.offset


def _open(data: bytes, name: str) -> BorshReader:
    if len(data) < 8 or bytes(data[:8]) != account_discriminator(name):
        raise DecodeError(f"Account data is not a {name}")
    return BorshReader(data, 8)


@dataclass(frozen=True)
class ShieldedStateAccount:
    mint: str
    merkle_root: bytes
    root_history: List[bytes]
    root_history_index: int
    commitment_count: int
    circuit_id: int
    version: int
    bump: int

    @property
    def root(self) -> int:
        return bytes_to_int_be(self.merkle_root)


@dataclass(frozen=True)
class IdentityRegistryAccount:
    merkle_root: bytes
    commitment_count: int
    bump: int

    @property
    def root(self) -> int:
        return bytes_to_int_be(self.merkle_root)


@dataclass(frozen=True)
class NullifierSetAccount:
    mint: str
    chunk_index: int
    bitset: bytes
    count: int
    bump: int


def decode_shielded_state(data: bytes) -> ShieldedStateAccount:
    r = _open(data, "ShieldedState")
    mint = r.pubkey()
    root = r.take(32)
    history = [r.take(32) for _ in range(r.u32())]
    return ShieldedStateAccount(
        mint=mint,
        merkle_root=root,
        root_history=history,
        root_history_index=r.u32(),
        commitment_count=r.u64(),
        circuit_id=r.u32(),
        version=r.u32(),
        bump=r.u8(),
    )


def decode_identity_registry(data: bytes) -> IdentityRegistryAccount:
    r = _open(data, "IdentityRegistry")
    return IdentityRegistryAccount(merkle_root=r.take(32), commitment_count=r.u64(), bump=r.u8())


def decode_nullifier_set(data: bytes) -> NullifierSetAccount:
    r = _open(data, "NullifierSet")
    return NullifierSetAccount(
        mint=r.pubkey(),
        chunk_index=r.u32(),
        bitset=r.take(NULLIFIER_BITSET_BYTES),
        count=r.u32(),
        bump=r.u8(),
    )


# ---------- fetch helpers ----------
async def fetch_shielded_state(ledger: LedgerClient, program_id: str, mint: str) -> Optional[ShieldedStateAccount]:
    data = await ledger.get_account_data(derive_shielded_state(program_id, mint))
    return decode_shielded_state(data) if data else None


async def fetch_identity_registry(ledger: LedgerClient, program_id: str) -> Optional[IdentityRegistryAccount]:
    data = await ledger.get_account_data(derive_identity_registry(program_id))
    return decode_identity_registry(data) if data else None


async def fetch_nullifier_bitset(ledger: LedgerClient, program_id: str, mint: str,
                                 chunk_index: int) -> Optional[bytes]:
    data = await ledger.get_account_data(derive_nullifier_set(program_id, mint, chunk_index))
    if not data:
        return None
    return decode_nullifier_set(data).bitset


def nullifier_fetcher(ledger: LedgerClient, program_id: str, mint: str):
    """Bind a bitset fetch function for NullifierChecker."""
    async def fetch(chunk_index: int) -> Optional[bytes]:
        return await fetch_nullifier_bitset(ledger, program_id, mint, chunk_index)
    return fetch
