# services/notes/store.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from services.crypto_core.errors import IncompleteCacheError, OutOfSyncError
from services.crypto_core.field import from_hex, to_hex
from services.logging_config import get_logger
from services.notes import keys
from services.notes.models import CommitmentCache, NoteList, NoteRecord
from services.notes.storage import Storage

logger = get_logger("notes")


class NoteStore:
    """
    Persisted notes and commitment cache for one (program, owner, mint).

    Notes are only ever added or flagged spent. The commitment cache is the
    leaf list used to rebuild Merkle roots; `complete` is true only when it
    mirrors the full on-chain range.
    """

    def __init__(self, storage: Storage, program_id: str, owner: str, mint: str):
        self.storage = storage
        self.program_id = program_id
        self.owner = owner
        self.mint = mint
        self._notes_key = keys.notes_key(program_id, owner, mint)
        self._commitments_key = keys.commitments_key(program_id, owner, mint)
        self._view_seed_key = keys.view_seed_key(program_id, owner)

    # ---------- notes ----------
    def load_notes(self) -> List[NoteRecord]:
        raw = self.storage.get(self._notes_key)
        if not raw:
            return []
        return NoteList.model_validate(raw).notes

    def replace_notes(self, notes: Iterable[NoteRecord]) -> List[NoteRecord]:
        ordered = sorted(notes, key=lambda n: n.leaf_index)
        self.storage.set(self._notes_key, NoteList(notes=ordered).model_dump(mode="json"))
        return ordered

    def add(self, note: NoteRecord) -> None:
        """Insert or replace by id, keeping leaf order."""
        if note.mint != self.mint:
            raise ValueError(f"Note mint {note.mint} does not belong to store mint {self.mint}")
        by_id: Dict[str, NoteRecord] = {n.id: n for n in self.load_notes()}
        by_id[note.id] = note
        self.replace_notes(by_id.values())

    def mark_spent(self, note_id: str) -> bool:
        notes = self.load_notes()
        hit = False
        for n in notes:
            if n.id == note_id and not n.spent:
                n.spent = True
                hit = True
        if hit:
            self.replace_notes(notes)
            logger.info("Marked note %s spent", note_id)
        return hit

    def spendable(self) -> List[NoteRecord]:
        return [n for n in self.load_notes() if not n.spent]

    def balance(self) -> int:
        return sum(n.amount for n in self.spendable())

    def find_spendable(self, amount: Optional[int] = None) -> Optional[NoteRecord]:
        notes = self.spendable()
        if amount is None:
            return notes[0] if notes else None
        return next((n for n in notes if n.amount == amount), None)

    # ---------- commitment cache ----------
    def load_commitments(self) -> CommitmentCache:
        raw = self.storage.get(self._commitments_key)
        if not raw:
            return CommitmentCache()
        return CommitmentCache.model_validate(raw)

    def save_commitments(self, commitments: List[int], complete: bool) -> CommitmentCache:
        cache = CommitmentCache(commitments=list(commitments), complete=complete)
        self.storage.set(self._commitments_key, cache.model_dump(mode="json"))
        return cache

    def list_commitments(self) -> List[int]:
        """Leaves for a spend proof. Refuses anything but a complete cache."""
        cache = self.load_commitments()
        if not cache.complete:
            raise IncompleteCacheError()
        return list(cache.commitments)

    def append_if_complete(self, leaf_index: int, commitment: int) -> bool:
        cache = self.load_commitments()
        if not cache.complete:
            return False
        if leaf_index != len(cache.commitments):
            logger.warning(
                "Commitment append at leaf %d does not extend cache of %d; marking incomplete",
                leaf_index, len(cache.commitments),
            )
            self.save_commitments(cache.commitments, complete=False)
            return False
        self.save_commitments(cache.commitments + [commitment], complete=True)
        return True

    def reconcile(self, ledger_count: int) -> CommitmentCache:
        """
        Align the cache with the ledger's commitment counter.

        Local ahead: trimmed to the ledger count. Local behind: OutOfSyncError,
        the caller has to rescan before any spend.
        """
        cache = self.load_commitments()
        local = len(cache.commitments)
        if local > ledger_count:
            logger.warning("Local commitments ahead of ledger (%d > %d); trimming", local, ledger_count)
            return self.save_commitments(cache.commitments[:ledger_count], cache.complete)
        if local < ledger_count:
            raise OutOfSyncError(local, ledger_count)
        return cache

    # ---------- view seed ----------
    def load_view_seed(self) -> Optional[bytes]:
        raw = self.storage.get(self._view_seed_key)
        return from_hex(raw) if raw else None

    def save_view_seed(self, seed: bytes) -> None:
        self.storage.set(self._view_seed_key, to_hex(seed))

    def clear_view_seed(self) -> None:
        self.storage.delete(self._view_seed_key)
