# services/notes/identity_store.py
from __future__ import annotations

from typing import List, Optional, Tuple

from services.config import MERKLE_DEPTH
from services.crypto_core.context import CryptoContext
from services.crypto_core.commitments import compute_identity_commitment
from services.crypto_core.field import from_hex, to_hex
from services.crypto_core.identity import derive_identity_seed, identity_secret_from_seed
from services.crypto_core.merkle import MerklePath, build_root, get_path
from services.crypto_core.view_keys import SignMessage
from services.logging_config import get_logger
from services.notes import keys
from services.notes.models import IdentityCommitments
from services.notes.storage import Storage

logger = get_logger("identity")


class IdentityStore:
    """Cached identity seed, leaf index and the program-wide identity leaves."""

    def __init__(self, storage: Storage, program_id: str, owner: str,
                 ctx: Optional[CryptoContext] = None, depth: int = MERKLE_DEPTH):
        self.storage = storage
        self.program_id = program_id
        self.owner = owner
        self.ctx = ctx
        self.depth = depth

    # ---------- secret ----------
    def load_seed(self) -> Optional[bytes]:
        raw = self.storage.get(keys.identity_secret_key(self.program_id, self.owner))
        return from_hex(raw) if raw else None

    def save_seed(self, seed: bytes) -> None:
        self.storage.set(keys.identity_secret_key(self.program_id, self.owner), to_hex(seed))

    async def restore_secret(self, sign: Optional[SignMessage]) -> int:
        """Re-derive from a fresh signature and overwrite the cached seed."""
        seed = await derive_identity_seed(self.owner, self.program_id, sign)
        self.save_seed(seed)
        return identity_secret_from_seed(seed)

    async def get_secret(self, sign: Optional[SignMessage] = None) -> int:
        seed = self.load_seed()
        if seed is not None:
            return identity_secret_from_seed(seed)
        return await self.restore_secret(sign)

    async def get_commitment(self, sign: Optional[SignMessage] = None) -> int:
        return compute_identity_commitment(await self.get_secret(sign), self.ctx)

    # ---------- leaf index ----------
    def leaf_index(self) -> Optional[int]:
        raw = self.storage.get(keys.identity_index_key(self.program_id, self.owner))
        return None if raw is None else int(raw)

    def set_leaf_index(self, index: int) -> None:
        self.storage.set(keys.identity_index_key(self.program_id, self.owner), int(index))

    def clear_leaf_index(self) -> None:
        self.storage.delete(keys.identity_index_key(self.program_id, self.owner))

    # ---------- commitments ----------
    def load_commitments(self) -> List[int]:
        raw = self.storage.get(keys.identity_commitments_key(self.program_id))
        if not raw:
            return []
        return IdentityCommitments.model_validate(raw).commitments

    def save_commitments(self, commitments: List[int]) -> None:
        record = IdentityCommitments(commitments=list(commitments))
        self.storage.set(keys.identity_commitments_key(self.program_id), record.model_dump(mode="json"))

    async def ensure_identity_commitment(self, sign: Optional[SignMessage] = None) -> Tuple[int, int]:
        """(commitment, leaf index); appends locally when no index is known yet."""
        commitment = await self.get_commitment(sign)
        index = self.leaf_index()
        if index is not None:
            return commitment, index
        commitments = self.load_commitments()
        if commitment in commitments:
            index = commitments.index(commitment)
        else:
            index = len(commitments)
            self.save_commitments(commitments + [commitment])
        self.set_leaf_index(index)
        logger.info("Identity commitment tracked at leaf %d", index)
        return commitment, index

    async def identity_merkle_path(self, sign: Optional[SignMessage] = None) -> MerklePath:
        _, index = await self.ensure_identity_commitment(sign)
        return get_path(self.load_commitments(), index, self.depth, self.ctx)

    def identity_root(self) -> int:
        return build_root(self.load_commitments(), self.depth, self.ctx)
