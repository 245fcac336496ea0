# services/crypto_core/errors.py
from __future__ import annotations

from typing import Optional


class VeilPayError(RuntimeError):
    """Base class for every condition the client core surfaces to callers."""

    rescan_required: bool = False


class OutOfSyncError(VeilPayError):
    """Local commitment list is behind the ledger's authoritative counter."""

    rescan_required = True

    def __init__(self, local_count: int, ledger_count: int):
        self.local_count = local_count
        self.ledger_count = ledger_count
        super().__init__(
            f"Local note store is out of sync with on-chain commitment count "
            f"(local={local_count}, ledger={ledger_count}). Rescan required."
        )


class IncompleteCacheError(VeilPayError):
    """Commitment cache does not cover the full contiguous leaf range."""

    rescan_required = True

    def __init__(self, message: str = "Commitment cache incomplete. Rescan full history before spending."):
        super().__init__(message)


class RootMismatchError(VeilPayError):
    """Locally rebuilt root differs from the ledger root after one rescan."""

    def __init__(self, local_root: int, ledger_root: int):
        self.local_root = local_root
        self.ledger_root = ledger_root
        super().__init__(
            f"On-chain root does not match local note store after rescan "
            f"(local={local_root:064x}, ledger={ledger_root:064x})."
        )


class InsufficientFundsError(VeilPayError):
    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient funds: requested {requested} > selectable {available}")


class MalformedNoteError(VeilPayError):
    """A note about to be spent lacks usable ciphertext fields."""

    def __init__(self, note_id: str, reason: str):
        self.note_id = note_id
        self.reason = reason
        super().__init__(f"Note {note_id} is malformed ({reason}). Re-deposit or rescan to refresh note data.")


class MissingSignerError(VeilPayError):
    def __init__(self, message: str = "Missing view key. Connect a wallet that can sign a message."):
        super().__init__(message)


class NullifierSpentError(VeilPayError):
    def __init__(self, nullifier: int, note_id: Optional[str] = None):
        self.nullifier = nullifier
        self.note_id = note_id
        label = f" for note {note_id}" if note_id else ""
        super().__init__(f"Nullifier already used{label}.")


class LedgerError(VeilPayError):
    """Ledger query failed after the bounded retry budget."""


class DecodeError(ValueError):
    """Boundary decoders raise this; scans catch and skip it."""
