"""
Nullifiers and the sharded spent-bitmap.

A nullifier is Poseidon(senderSecret, leafIndex). The ledger keeps spent
nullifiers in fixed-size bit chunks: the chunk index comes from the first
four bytes of the big-endian encoding (read little-endian), the bit from
the next two bytes (read little-endian) modulo the chunk width.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from services.config import NULLIFIER_BITS
from services.crypto_core.context import CryptoContext, resolve
from services.crypto_core.errors import NullifierSpentError
from services.crypto_core.field import int_to_bytes32
from services.logging_config import get_logger

logger = get_logger("nullifiers")

# chunk_index -> bitset bytes, or None when the chunk account does not exist
FetchBitset = Callable[[int], Awaitable[Optional[bytes]]]


def compute_nullifier(sender_secret: int, leaf_index: int, ctx: Optional[CryptoContext] = None) -> int:
    return resolve(ctx).hash(sender_secret, leaf_index)


def nullifier_chunk_index(nullifier: int) -> int:
    return int.from_bytes(int_to_bytes32(nullifier)[0:4], "little")


def nullifier_position(nullifier: int, chunk_bits: int = NULLIFIER_BITS) -> Tuple[int, int]:
    raw = int_to_bytes32(nullifier)
    chunk_index = int.from_bytes(raw[0:4], "little")
    bit_index = int.from_bytes(raw[4:6], "little") % chunk_bits
    return chunk_index, bit_index


def is_bit_set(bitset: bytes, bit_index: int) -> bool:
    byte_index = bit_index // 8
    if byte_index >= len(bitset):
        return False
    return (bitset[byte_index] & (1 << (bit_index % 8))) != 0


def set_bit(bitset: bytearray, bit_index: int) -> None:
    bitset[bit_index // 8] |= 1 << (bit_index % 8)


def chunks_to_touch(nullifiers: Iterable[int], padding_chunks: int = 0) -> List[int]:
    """Chunk indices a spend touches: real ones (zero nullifiers skipped) plus decoys 0..N-1."""
    out: List[int] = []
    seen = set()
    for n in nullifiers:
        if n == 0:
            continue
        idx = nullifier_chunk_index(n)
        if idx not in seen:
            seen.add(idx)
            out.append(idx)
    for idx in range(padding_chunks):
        if idx not in seen:
            seen.add(idx)
            out.append(idx)
    return out


@dataclass
class NullifierChecker:
    """Spent lookups with a per-scan chunk cache. A missing chunk means unspent."""

    fetch_bitset: FetchBitset
    chunk_bits: int = NULLIFIER_BITS

    def __post_init__(self) -> None:
        self._cache: Dict[int, bytes] = {}

    async def _bitset(self, chunk_index: int) -> bytes:
        if chunk_index not in self._cache:
            data = await self.fetch_bitset(chunk_index)
            self._cache[chunk_index] = bytes(data) if data else b""
        return self._cache[chunk_index]

    async def is_spent(self, nullifier: int) -> bool:
        chunk_index, bit_index = nullifier_position(nullifier, self.chunk_bits)
        bitset = await self._bitset(chunk_index)
        if not bitset:
            return False
        return is_bit_set(bitset, bit_index)

    async def assert_unspent(self, nullifiers: Iterable[Tuple[int, Optional[str]]]) -> None:
        """Fail fast before submission; the ledger's check-and-set stays authoritative."""
        for nullifier, note_ref in nullifiers:
            if nullifier == 0:
                continue
            if await self.is_spent(nullifier):
                logger.warning("Nullifier already set on-chain for note %s", note_ref)
                raise NullifierSpentError(nullifier, note_ref)

    async def chunks_to_initialize(self, nullifiers: Iterable[int], padding_chunks: int = 0) -> List[int]:
        """Touched chunks whose accounts do not exist yet; the caller initialises them."""
        missing: List[int] = []
        for idx in chunks_to_touch(nullifiers, padding_chunks):
            if not await self._bitset(idx):
                missing.append(idx)
        return missing
