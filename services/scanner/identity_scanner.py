# services/scanner/identity_scanner.py
# Rebuild the program-wide identity commitment list from register_identity
# instructions, ordered by slot, up to the registry's on-chain count.
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from services.config import RescanConfig
from services.crypto_core.context import CryptoContext, resolve
from services.crypto_core.errors import DecodeError, LedgerError
from services.crypto_core.field import FIELD_BYTES, bytes_to_int_be, int_to_bytes32
from services.crypto_core.merkle import build_root
from services.crypto_core.view_keys import SignMessage
from services.ledger.accounts import fetch_identity_registry
from services.ledger.client import LedgerClient
from services.ledger.events import decode_register_identity
from services.ledger.pda import derive_identity_registry
from services.notes.identity_store import IdentityStore
from services.scanner.history import StatusCallback, StatusReporter, WalkCounters, load_transaction, walk_signatures


@dataclass
class IdentityRescanResult:
    commitments: List[int]
    on_chain_count: int
    on_chain_root: int
    root_matches: bool
    decoded: int
    seen_registers: int
    leaf_index: Optional[int]


def _single_leaf_matches(commitment: int, new_root: bytes, on_chain_root: int,
                         depth: int, ctx: CryptoContext) -> bool:
    if len(new_root) == FIELD_BYTES and bytes_to_int_be(new_root) == on_chain_root:
        return True
    return build_root([commitment], depth, ctx) == on_chain_root


async def rescan_identity_registry(ledger: LedgerClient, store: IdentityStore,
                                   sign: Optional[SignMessage] = None,
                                   config: Optional[RescanConfig] = None,
                                   ctx: Optional[CryptoContext] = None,
                                   on_status: StatusCallback = None) -> IdentityRescanResult:
    config = config or RescanConfig()
    ctx = resolve(ctx)
    depth = store.depth
    report = StatusReporter("identity", on_status)
    program_id, owner = store.program_id, store.owner

    registry = await fetch_identity_registry(ledger, program_id)
    if registry is None:
        raise LedgerError("Identity registry account not found")
    count, on_chain_root = registry.commitment_count, registry.root
    report("Rescanning identity registry...")
    report("Identity registry on-chain count: %d.", count)

    slots: Dict[str, int] = {}
    positions: Dict[str, int] = {}
    counters = WalkCounters()
    for address in (derive_identity_registry(program_id), program_id, owner):
        async for sig in walk_signatures(ledger, address, config.max_signatures, config.page_limit, counters):
            if sig.err or sig.signature in slots:
                continue
            slots[sig.signature] = sig.slot or 0
            positions[sig.signature] = len(positions)
    # walks are newest-first, so within a slot a later position is older
    ordered = sorted(slots, key=lambda s: (slots[s], -positions[s]))
    report("Identity registry scan: signatures=%d.", len(ordered))

    commitments: List[int] = []
    matched: Optional[int] = None
    decoded = 0
    seen = 0
    for signature in ordered:
        if count > 1 and len(commitments) >= count:
            break
        if count == 1 and matched is not None:
            break
        tx = await load_transaction(ledger, signature, counters)
        if tx is None:
            continue
        for ix in tx.instructions:
            if ix.program_id != program_id:
                continue
            try:
                args = decode_register_identity(ix.data)
            except DecodeError:
                continue
            seen += 1
            if len(args.commitment) != FIELD_BYTES:
                report.logger.debug("register_identity with commitment length %d skipped", len(args.commitment))
                continue
            decoded += 1
            value = bytes_to_int_be(args.commitment)
            if count == 1:
                if _single_leaf_matches(value, args.new_root, on_chain_root, depth, ctx):
                    matched = value
            else:
                commitments.append(value)

    if count == 1:
        commitments = [matched] if matched is not None else []
        if matched is None and sign is not None:
            own = await store.get_commitment(sign)
            if build_root([own], depth, ctx) == on_chain_root:
                commitments = [own]
                report("Recovered identity commitment from signature.")
            else:
                report.warn("Signature-derived identity root does not match the on-chain root.")

    store.save_commitments(commitments)
    report("Identity registry rescan complete. Found %d registrations (decoded %d, seen %d).",
           len(commitments), decoded, seen)

    leaf_index: Optional[int] = None
    if store.load_seed() is not None:
        own = await store.get_commitment()
        if own in commitments:
            leaf_index = commitments.index(own)
            store.set_leaf_index(leaf_index)
        else:
            store.clear_leaf_index()

    root_matches = True
    if commitments:
        local_root = build_root(commitments, depth, ctx)
        root_matches = local_root == on_chain_root
        if not root_matches:
            report.warn("Identity registry root mismatch after rescan. You may need to rescan again.")
            report.warn("Identity root local=%s onchain=%s",
                        int_to_bytes32(local_root).hex(), int_to_bytes32(on_chain_root).hex())

    return IdentityRescanResult(
        commitments=commitments,
        on_chain_count=count,
        on_chain_root=on_chain_root,
        root_matches=root_matches,
        decoded=decoded,
        seen_registers=seen,
        leaf_index=leaf_index,
    )
