# services/ledger/client.py
# Read-only view of the ledger used by scanners and spend preparation.
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol


@dataclass(frozen=True)
class SignatureInfo:
    signature: str
    slot: Optional[int] = None
    err: Any = None


@dataclass(frozen=True)
class InstructionRecord:
    program_id: str
    data: Any
    accounts: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TransactionRecord:
    signature: str
    slot: Optional[int]
    err: Any = None
    logs: Optional[List[str]] = None
    instructions: List[InstructionRecord] = field(default_factory=list)
    # Pre-decoded event dicts, when the ledger source already parsed them
    events: List[Dict[str, Any]] = field(default_factory=list)


class LedgerClient(Protocol):
    async def get_account_data(self, address: str) -> Optional[bytes]:
        """Raw account bytes, or None when the account does not exist."""
        ...

    async def get_signatures_for_address(self, address: str, before: Optional[str] = None,
                                         limit: int = 1000) -> List[SignatureInfo]:
        """Newest-first page of signatures touching `address`."""
        ...

    async def get_transaction(self, signature: str) -> Optional[TransactionRecord]:
        ...
