"""
Chain rescanner: rebuild a NoteStore from public ledger history.

Only the wallet signature is needed. The view seed is re-derived from it,
every NoteOutputEvent for the mint is collected (all leaves, not just ours,
so roots come out right), and each event at or above the scan floor is
trial-decrypted with every requested view-key index. A decryption counts
only if recomputing the commitment reproduces the on-chain leaf.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from services.config import NullifierConfig, RescanConfig, SIGNATURE_PAGE_LIMIT
from services.crypto_core.commitments import compute_commitment
from services.crypto_core.context import CryptoContext, resolve
from services.crypto_core.ecies import Ciphertext, ecies_decrypt
from services.crypto_core.errors import DecodeError
from services.crypto_core.nullifiers import NullifierChecker, compute_nullifier
from services.crypto_core.view_keys import (
    SignMessage,
    ViewKeypair,
    derive_keypair,
    derive_view_secret,
    recipient_tag_hash,
)
from services.ledger.accounts import nullifier_fetcher
from services.ledger.client import LedgerClient
from services.ledger.events import NoteOutputEvent, decode_note_event, is_register_identity
from services.notes.models import NoteRecord, note_id
from services.notes.store import NoteStore
from services.scanner.history import StatusCallback, StatusReporter, WalkCounters, walk_transactions

PROGRAM_DATA_PREFIX = "Program data:"


@dataclass
class ScanStats:
    scanned_txs: int = 0
    txs_with_logs: int = 0
    program_data_lines: int = 0
    parsed_events: int = 0
    other_mint_events: int = 0
    duplicate_events: int = 0
    decode_failures: int = 0
    trial_decryptions: int = 0
    matched_notes: int = 0
    walk: WalkCounters = field(default_factory=WalkCounters)


@dataclass
class RescanResult:
    notes: List[NoteRecord]
    balance: int
    commitments: List[int]
    complete: bool
    registration_slot: Optional[int]
    stats: ScanStats


@dataclass(frozen=True)
class _Observed:
    event: NoteOutputEvent
    slot: Optional[int]


async def find_registration_slot(ledger: LedgerClient, program_id: str, owner: str,
                                 page_limit: int = SIGNATURE_PAGE_LIMIT,
                                 max_signatures: Optional[int] = None,
                                 on_status: StatusCallback = None) -> Optional[int]:
    """Slot of the owner's register_identity transaction, if one is found."""
    report = StatusReporter("scanner", on_status)
    report("Searching for identity registration...")
    async for _, tx in walk_transactions(ledger, owner, max_signatures, page_limit):
        for ix in tx.instructions:
            if ix.program_id != program_id:
                continue
            if is_register_identity(ix.data) and tx.slot is not None:
                return tx.slot
    return None


def _trial_decrypt(obs: _Observed, mint: str, keys: Sequence[ViewKeypair], tags: Sequence[int],
                   ctx: CryptoContext, stats: ScanStats) -> Optional[NoteRecord]:
    ev = obs.event
    try:
        ct = Ciphertext.from_bytes(ev.ciphertext)
    except DecodeError:
        stats.decode_failures += 1
        return None
    for key, tag in zip(keys, tags):
        stats.trial_decryptions += 1
        try:
            amount, randomness = ecies_decrypt(key.secret, ct, ctx)
        except ValueError:
            # c1 not usable on this curve; not ours
            continue
        if compute_commitment(amount, randomness, tag, ctx) != ev.commitment:
            continue
        return NoteRecord(
            id=note_id(mint, ev.leaf_index),
            mint=mint,
            amount=amount,
            randomness=randomness,
            recipient_tag_hash=tag,
            commitment=ev.commitment,
            sender_secret=randomness,
            c1x=ct.c1x,
            c1y=ct.c1y,
            c2_amount=ct.c2_amount,
            c2_randomness=ct.c2_randomness,
            enc_randomness=None,
            recipient_pubkey_x=key.pubkey[0],
            recipient_pubkey_y=key.pubkey[1],
            view_key_index=key.index,
            leaf_index=ev.leaf_index,
            spent=False,
        )
    return None


def _merge(existing: List[NoteRecord], matched: List[NoteRecord]) -> Dict[str, NoteRecord]:
    merged: Dict[str, NoteRecord] = {n.id: n for n in existing}
    for note in matched:
        prior = merged.get(note.id)
        if prior is None:
            merged[note.id] = note
            continue
        merged[note.id] = note.model_copy(update={
            "sender_secret": prior.sender_secret if prior.sender_secret is not None else note.sender_secret,
            "enc_randomness": prior.enc_randomness if prior.enc_randomness is not None else note.enc_randomness,
            "spent": prior.spent,
        })
    return merged


async def rescan_notes_for_owner(ledger: LedgerClient, store: NoteStore, sign: Optional[SignMessage],
                                 config: Optional[RescanConfig] = None,
                                 nullifier_config: Optional[NullifierConfig] = None,
                                 ctx: Optional[CryptoContext] = None,
                                 on_status: StatusCallback = None) -> RescanResult:
    """
    Rebuild notes, spent flags and the commitment cache for store's (owner, mint).

    Nothing is written until the walk has finished, so an interrupted rescan
    leaves the store as it was. Safe to re-run.
    """
    config = config or RescanConfig()
    nullifier_config = nullifier_config or NullifierConfig()
    ctx = resolve(ctx)
    report = StatusReporter("scanner", on_status)
    program_id, owner, mint = store.program_id, store.owner, store.mint
    stats = ScanStats()

    report("Scanning chain for encrypted notes...")
    seed = await derive_view_secret(owner, sign)
    store.save_view_seed(seed)

    min_slot = config.start_slot
    registration_slot: Optional[int] = None
    if min_slot is None:
        registration_slot = await find_registration_slot(
            ledger, program_id, owner, config.page_limit, config.max_signatures, on_status)
        min_slot = registration_slot
        if min_slot is not None:
            report("Found identity registration at slot %d.", min_slot)
        else:
            report("No identity registration found; scanning full program history.")

    indices = config.scan_indices()
    keys = [derive_keypair(seed, i, ctx) for i in indices]
    tags = [recipient_tag_hash(k.pubkey, ctx) for k in keys]
    report("View key scan indices: %s (%d key%s)", ", ".join(str(i) for i in indices),
           len(keys), "" if len(keys) == 1 else "s")

    commitments_by_index: Dict[int, int] = {}
    candidates: List[_Observed] = []
    async for sig, tx in walk_transactions(ledger, program_id, config.max_signatures,
                                           config.page_limit, stats.walk):
        stats.scanned_txs += 1
        slot = sig.slot if sig.slot is not None else tx.slot
        raw_items: List[object] = []
        if tx.logs:
            stats.txs_with_logs += 1
            for line in tx.logs:
                if line.startswith(PROGRAM_DATA_PREFIX):
                    stats.program_data_lines += 1
                    raw_items.append(line)
        raw_items.extend(tx.events)

        for raw in raw_items:
            try:
                ev = decode_note_event(raw)
            except DecodeError as e:
                # unrelated program data or a malformed event; never fatal
                stats.decode_failures += 1
                report.logger.debug("Skipping undecodable event in %s: %s", sig.signature, e)
                continue
            stats.parsed_events += 1
            if ev.mint != mint:
                stats.other_mint_events += 1
                continue
            if ev.leaf_index in commitments_by_index:
                stats.duplicate_events += 1
                continue
            commitments_by_index[ev.leaf_index] = ev.commitment
            if min_slot is None or (slot is not None and slot >= min_slot):
                candidates.append(_Observed(ev, slot))

    matched: List[NoteRecord] = []
    for obs in candidates:
        note = _trial_decrypt(obs, mint, keys, tags, ctx, stats)
        if note is not None:
            matched.append(note)
    stats.matched_notes = len(matched)

    merged = _merge(store.load_notes(), matched)
    checker = NullifierChecker(nullifier_fetcher(ledger, program_id, mint), nullifier_config.chunk_bits)
    for note in merged.values():
        if note.sender_secret is None:
            continue
        nullifier = compute_nullifier(note.sender_secret, note.leaf_index, ctx)
        if await checker.is_spent(nullifier):
            note.spent = True

    notes = store.replace_notes(merged.values())
    balance = sum(n.amount for n in notes if not n.spent)

    commitments: List[int] = []
    complete = False
    if commitments_by_index:
        total = max(commitments_by_index) + 1
        commitments = [commitments_by_index.get(i, 0) for i in range(total)]
        complete = len(commitments_by_index) == total
        store.save_commitments(commitments, complete)
        report("Commitment cache updated with %d commitments (%s).",
               len(commitments), "complete" if complete else "incomplete")
        if not complete:
            report.warn("Commitment cache incomplete. Try rescanning full history.")
    elif config.max_signatures is None:
        # whole history walked and no leaves exist for this mint
        store.save_commitments([], True)
        complete = True

    report(
        "Rescan complete. Found %d notes. Scanned %d txs (%d with logs, %d program data lines). "
        "Parsed %d events, matched %d note events.",
        len(matched), stats.scanned_txs, stats.txs_with_logs, stats.program_data_lines,
        stats.parsed_events, len(matched),
    )
    if stats.program_data_lines > 0 and stats.parsed_events == 0:
        report.warn("Note event decode failed. Unable to decode any note outputs from program logs.")

    return RescanResult(
        notes=notes,
        balance=balance,
        commitments=commitments,
        complete=complete,
        registration_slot=registration_slot,
        stats=stats,
    )
