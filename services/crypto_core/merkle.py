"""
Fixed-depth append-only Merkle tree over Poseidon pairs.

The tree is a pure function of the ordered leaf list: every call rebuilds
the levels from scratch. Only the per-level all-zero subtree hashes are
memoized, keyed by (context, depth).
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from services.config import MERKLE_DEPTH
from services.crypto_core.context import CryptoContext, resolve


@dataclass(frozen=True)
class MerkleTree:
    root: int
    levels: List[List[int]]
    zeroes: List[int]

    @property
    def depth(self) -> int:
        return len(self.zeroes) - 1


@dataclass(frozen=True)
class MerklePath:
    root: int
    path_elements: List[int]
    path_indices: List[int]
    leaf_index: int

    def as_circuit_input(self) -> Dict[str, List[str]]:
        return {
            "path_elements": [str(v) for v in self.path_elements],
            "path_index": [str(v) for v in self.path_indices],
        }


_zero_cache: Dict[Tuple[CryptoContext, int], List[int]] = {}
_zero_lock = threading.Lock()


def build_zeroes(depth: int = MERKLE_DEPTH, ctx: Optional[CryptoContext] = None) -> List[int]:
    ctx = resolve(ctx)
    key = (ctx, depth)
    cached = _zero_cache.get(key)
    if cached is not None:
        return list(cached)
    zeroes = [0]
    for i in range(1, depth + 1):
        zeroes.append(ctx.hash(zeroes[i - 1], zeroes[i - 1]))
    with _zero_lock:
        _zero_cache[key] = zeroes
    return list(zeroes)


def build_tree(leaves: Sequence[int], depth: int = MERKLE_DEPTH,
               ctx: Optional[CryptoContext] = None) -> MerkleTree:
    ctx = resolve(ctx)
    if len(leaves) > (1 << depth):
        raise ValueError(f"Too many leaves for depth {depth}: {len(leaves)}")
    zeroes = build_zeroes(depth, ctx)
    levels: List[List[int]] = [list(leaves)]
    for level in range(depth):
        current = levels[level]
        width = max(len(current), 1)
        nxt: List[int] = []
        for i in range(0, width, 2):
            left = current[i] if i < len(current) else zeroes[level]
            right = current[i + 1] if i + 1 < len(current) else zeroes[level]
            nxt.append(ctx.hash(left, right))
        levels.append(nxt)
    root = levels[depth][0] if levels[depth] else zeroes[depth]
    return MerkleTree(root=root, levels=levels, zeroes=zeroes)


def build_root(leaves: Sequence[int], depth: int = MERKLE_DEPTH,
               ctx: Optional[CryptoContext] = None) -> int:
    return build_tree(leaves, depth, ctx).root


def get_path(leaves: Sequence[int], leaf_index: int, depth: int = MERKLE_DEPTH,
             ctx: Optional[CryptoContext] = None) -> MerklePath:
    if leaf_index < 0 or leaf_index >= (1 << depth):
        raise ValueError(f"Leaf index out of range: {leaf_index}")
    tree = build_tree(leaves, depth, ctx)
    elements: List[int] = []
    indices: List[int] = []
    index = leaf_index
    for level in range(depth):
        current = tree.levels[level]
        sibling = index ^ 1
        elements.append(current[sibling] if sibling < len(current) else tree.zeroes[level])
        indices.append(index & 1)
        index >>= 1
    return MerklePath(root=tree.root, path_elements=elements, path_indices=indices, leaf_index=leaf_index)


def fold_path(leaf: int, path: MerklePath, ctx: Optional[CryptoContext] = None) -> int:
    """Hash a leaf up its path; equals the tree root when the path is valid."""
    ctx = resolve(ctx)
    node = leaf
    for sibling, bit in zip(path.path_elements, path.path_indices):
        node = ctx.hash(sibling, node) if bit else ctx.hash(node, sibling)
    return node


def verify_path(leaf: int, path: MerklePath, ctx: Optional[CryptoContext] = None) -> bool:
    return fold_path(leaf, path, ctx) == path.root
