# services/scanner/history.py
from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Tuple

from services.config import SIGNATURE_PAGE_LIMIT
from services.ledger.client import LedgerClient, SignatureInfo, TransactionRecord
from services.logging_config import get_logger

StatusCallback = Optional[Callable[[str], None]]


class StatusReporter:
    """Send progress to a module logger and the host's optional status hook."""

    def __init__(self, logger_name: str, on_status: StatusCallback = None):
        self.logger = get_logger(logger_name)
        self.on_status = on_status

    def __call__(self, message: str, *args) -> None:
        text = message % args if args else message
        self.logger.info(text)
        if self.on_status is not None:
            self.on_status(text)

    def warn(self, message: str, *args) -> None:
        text = message % args if args else message
        self.logger.warning(text)
        if self.on_status is not None:
            self.on_status(text)


@dataclass
class WalkCounters:
    pages: int = 0
    signatures: int = 0
    failed: int = 0
    missing: int = 0


async def walk_signatures(ledger: LedgerClient, address: str,
                          max_signatures: Optional[int] = None,
                          page_limit: int = SIGNATURE_PAGE_LIMIT,
                          counters: Optional[WalkCounters] = None) -> AsyncIterator[SignatureInfo]:
    """Newest-first, bounded pagination over signatures touching `address`."""
    counters = counters if counters is not None else WalkCounters()
    remaining = max_signatures
    before: Optional[str] = None
    while remaining is None or remaining > 0:
        limit = page_limit if remaining is None else min(page_limit, remaining)
        batch = await ledger.get_signatures_for_address(address, before=before, limit=limit)
        if not batch:
            break
        counters.pages += 1
        counters.signatures += len(batch)
        if remaining is not None:
            remaining -= len(batch)
        before = batch[-1].signature
        for sig in batch:
            yield sig
        if len(batch) < limit:
            break


async def walk_transactions(ledger: LedgerClient, address: str,
                            max_signatures: Optional[int] = None,
                            page_limit: int = SIGNATURE_PAGE_LIMIT,
                            counters: Optional[WalkCounters] = None,
                            ) -> AsyncIterator[Tuple[SignatureInfo, TransactionRecord]]:
    """
    Newest-first walk over successful transactions touching `address`.

    Pages are at most `page_limit` signatures and the walk stops after
    `max_signatures` (None: until history is exhausted).
    """
    counters = counters if counters is not None else WalkCounters()
    async for sig in walk_signatures(ledger, address, max_signatures, page_limit, counters):
        if sig.err:
            counters.failed += 1
            continue
        tx = await load_transaction(ledger, sig.signature, counters)
        if tx is not None:
            yield sig, tx


async def load_transaction(ledger: LedgerClient, signature: str,
                           counters: WalkCounters) -> Optional[TransactionRecord]:
    """Fetch a transaction, counting and dropping missing or failed ones."""
    tx = await ledger.get_transaction(signature)
    if tx is None:
        counters.missing += 1
        return None
    if tx.err:
        counters.failed += 1
        return None
    return tx
