"""
Deposit and spend preparation.

These flows read the ledger, check the local note store against it, build
output notes and the circuit input, and hand the result to a prover. They
never submit transactions; the host does that and then reports back with
`apply_confirmed_deposit` / `apply_confirmed_spend`.

Only one flow may run at a time per (owner, mint) store.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from services.config import RescanConfig, SpendConfig
from services.crypto_core.commitments import ViewKeyLike, assert_ciphertext_fields, create_note
from services.crypto_core.context import CryptoContext, resolve
from services.crypto_core.errors import (
    InsufficientFundsError,
    LedgerError,
    MalformedNoteError,
    RootMismatchError,
    VeilPayError,
)
from services.crypto_core.merkle import MerklePath, build_root, get_path
from services.crypto_core.nullifiers import NullifierChecker, chunks_to_touch, compute_nullifier
from services.crypto_core.splits import OutputSlot, pad_outputs, select_notes_for_amount
from services.crypto_core.view_keys import SignMessage, ViewKeypair, derive_keypair, derive_view_secret
from services.ledger.accounts import ShieldedStateAccount, fetch_shielded_state, nullifier_fetcher
from services.ledger.client import LedgerClient
from services.notes.identity_store import IdentityStore
from services.notes.models import NoteRecord, note_id
from services.notes.store import NoteStore
from services.scanner.history import StatusCallback, StatusReporter
from services.scanner.note_scanner import rescan_notes_for_owner
from services.wallet.prover import ProofBundle, Prover, PublicInputs


@dataclass
class DepositPlan:
    note: NoteRecord
    ciphertext: bytes = field(repr=False)
    leaf_index: int
    previous_root: int
    new_root: int

    @property
    def commitment(self) -> int:
        return self.note.commitment


@dataclass
class SpendPlan:
    inputs: List[NoteRecord]
    input_total: int
    nullifiers: List[int]
    outputs: List[OutputSlot]
    root: int
    identity_root: int
    public_inputs: PublicInputs
    proof: ProofBundle = field(repr=False)
    chunk_indices: List[int]
    missing_chunks: List[int]
    ledger_count: int
    change: int = 0


async def load_view_keypair(store: NoteStore, sign: Optional[SignMessage], index: int = 0,
                            ctx: Optional[CryptoContext] = None) -> ViewKeypair:
    """Own view keypair from the cached seed, asking the wallet only when none is cached."""
    seed = store.load_view_seed()
    if seed is None:
        seed = await derive_view_secret(store.owner, sign)
        store.save_view_seed(seed)
    return derive_keypair(seed, index, ctx)


async def _load_leaves(ledger: LedgerClient, store: NoteStore, config: SpendConfig,
                       ctx: CryptoContext) -> Tuple[List[int], ShieldedStateAccount, int]:
    state = await fetch_shielded_state(ledger, store.program_id, store.mint)
    if state is None:
        raise LedgerError(f"Shielded state for mint {store.mint} is not initialised")
    if state.commitment_count == 0 and not store.load_commitments().commitments:
        store.save_commitments([], True)
    store.reconcile(state.commitment_count)
    leaves = store.list_commitments()
    return leaves, state, build_root(leaves, config.merkle_depth, ctx)


async def _synced_leaves(ledger: LedgerClient, store: NoteStore, sign: Optional[SignMessage],
                         config: SpendConfig, rescan_config: Optional[RescanConfig],
                         ctx: CryptoContext, report: StatusReporter) -> Tuple[List[int], ShieldedStateAccount]:
    """
    Leaves whose root equals the ledger root.

    Counter mismatches surface as OutOfSyncError / IncompleteCacheError. A
    root mismatch triggers one rescan; a second mismatch raises.
    """
    leaves, state, local_root = await _load_leaves(ledger, store, config, ctx)
    if local_root == state.root:
        return leaves, state

    report.warn("On-chain root does not match local note store; rescanning once.")
    await rescan_notes_for_owner(ledger, store, sign, rescan_config, config.nullifiers, ctx,
                                 report.on_status)
    leaves, state, local_root = await _load_leaves(ledger, store, config, ctx)
    if local_root != state.root:
        raise RootMismatchError(local_root, state.root)
    return leaves, state


# ---------- deposit ----------
async def prepare_deposit(ledger: LedgerClient, store: NoteStore, sign: Optional[SignMessage], amount: int,
                          config: Optional[SpendConfig] = None,
                          rescan_config: Optional[RescanConfig] = None,
                          ctx: Optional[CryptoContext] = None,
                          on_status: StatusCallback = None) -> DepositPlan:
    if amount <= 0:
        raise ValueError("Deposit amount must be positive")
    config = config or SpendConfig()
    ctx = resolve(ctx)
    report = StatusReporter("flows", on_status)
    report("Preparing deposit...")
    leaves, state = await _synced_leaves(ledger, store, sign, config, rescan_config, ctx, report)
    own = await load_view_keypair(store, sign, 0, ctx)
    leaf_index = state.commitment_count
    note, ciphertext = create_note(store.mint, amount, own.pubkey, leaf_index, ctx, view_key_index=own.index)
    new_root = build_root(leaves + [note.commitment], config.merkle_depth, ctx)
    report("Deposit note prepared at leaf %d.", leaf_index)
    return DepositPlan(note=note, ciphertext=ciphertext, leaf_index=leaf_index,
                       previous_root=state.root, new_root=new_root)


def apply_confirmed_deposit(store: NoteStore, plan: DepositPlan, leaf_index: Optional[int] = None) -> NoteRecord:
    leaf = plan.leaf_index if leaf_index is None else leaf_index
    note = plan.note
    if leaf != note.leaf_index:
        note = note.model_copy(update={"id": note_id(note.mint, leaf), "leaf_index": leaf})
    store.add(note)
    store.append_if_complete(leaf, note.commitment)
    return note


# ---------- spend ----------
def _select(store: NoteStore, needed: int, max_inputs: int) -> Tuple[List[NoteRecord], int]:
    selected, total = select_notes_for_amount(store.spendable(), needed, max_inputs)
    if total < needed:
        raise InsufficientFundsError(needed, total)
    return selected, total


def build_circuit_input(public: PublicInputs, inputs: List[NoteRecord], paths: List[MerklePath],
                        outputs: List[OutputSlot], identity_secret: int, identity_path: MerklePath,
                        config: SpendConfig) -> Dict[str, Any]:
    """Circuit witness input as decimal strings; disabled slots are zero-filled."""
    depth = config.merkle_depth
    zero_path = ["0"] * depth

    def col(values) -> List[str]:
        return [str(v) for v in values]

    in_pad = config.max_inputs - len(inputs)
    data: Dict[str, Any] = {
        "root": str(public.root),
        "identity_root": str(public.identity_root),
        "nullifier": col(public.nullifiers),
        "output_commitment": col(public.output_commitments),
        "output_enabled": col(public.output_enabled),
        "amount_out": str(public.amount_out),
        "fee_amount": str(public.fee),
        "circuit_id": str(public.circuit_id),
        "input_enabled": col([1] * len(inputs) + [0] * in_pad),
        "input_amount": col([n.amount for n in inputs] + [0] * in_pad),
        "input_randomness": col([n.randomness for n in inputs] + [0] * in_pad),
        "input_sender_secret": col([n.sender_secret for n in inputs] + [0] * in_pad),
        "input_leaf_index": col([n.leaf_index for n in inputs] + [0] * in_pad),
        "input_recipient_tag_hash": col([n.recipient_tag_hash for n in inputs] + [0] * in_pad),
        "input_path_elements": [col(p.path_elements) for p in paths] + [zero_path] * in_pad,
        "input_path_index": [col(p.path_indices) for p in paths] + [zero_path] * in_pad,
        "identity_secret": str(identity_secret),
        "identity_path_elements": col(identity_path.path_elements),
        "identity_path_index": col(identity_path.path_indices),
    }

    def out_field(getter) -> List[str]:
        return [str(getter(o.note)) if o.enabled and o.note is not None else "0" for o in outputs]

    data.update({
        "output_amount": out_field(lambda n: n.amount),
        "output_randomness": out_field(lambda n: n.randomness),
        "output_recipient_tag_hash": out_field(lambda n: n.recipient_tag_hash),
        "output_recipient_pubkey_x": out_field(lambda n: n.recipient_pubkey_x),
        "output_recipient_pubkey_y": out_field(lambda n: n.recipient_pubkey_y),
        "output_enc_randomness": out_field(lambda n: n.enc_randomness),
        "output_c1x": out_field(lambda n: n.c1x),
        "output_c1y": out_field(lambda n: n.c1y),
        "output_c2_amount": out_field(lambda n: n.c2_amount),
        "output_c2_randomness": out_field(lambda n: n.c2_randomness),
    })
    return data


async def prepare_spend(ledger: LedgerClient, store: NoteStore, identity: IdentityStore,
                        sign: Optional[SignMessage], prover: Prover, *,
                        transfer_amount: int = 0,
                        recipient_view_key: Optional[ViewKeyLike] = None,
                        amount_out: int = 0,
                        fee: int = 0,
                        config: Optional[SpendConfig] = None,
                        rescan_config: Optional[RescanConfig] = None,
                        ctx: Optional[CryptoContext] = None,
                        on_status: StatusCallback = None) -> SpendPlan:
    """
    Build a proven spend: a shielded transfer (`transfer_amount` to
    `recipient_view_key`), a public withdrawal (`amount_out`), or both, plus
    `fee`. Change returns to the owner's own view key.
    """
    config = config or SpendConfig()
    ctx = resolve(ctx)
    report = StatusReporter("flows", on_status)
    if min(transfer_amount, amount_out, fee) < 0:
        raise ValueError("Amounts must be non-negative")
    needed = transfer_amount + amount_out + fee
    if needed <= 0:
        raise ValueError("Nothing to spend")
    if transfer_amount > 0 and recipient_view_key is None:
        raise ValueError("A shielded transfer needs the recipient's view key")

    # fail fast before touching the ledger
    _select(store, needed, config.max_inputs)

    report("Checking local note store against the ledger...")
    leaves, state = await _synced_leaves(ledger, store, sign, config, rescan_config, ctx, report)
    selected, total = _select(store, needed, config.max_inputs)

    paths: List[MerklePath] = []
    nullifiers: List[int] = []
    for note in selected:
        assert_ciphertext_fields(note)
        if note.sender_secret is None:
            raise MalformedNoteError(note.id, "missing sender secret")
        if note.leaf_index >= len(leaves) or leaves[note.leaf_index] != note.commitment:
            raise MalformedNoteError(note.id, "commitment not found at its leaf index")
        paths.append(get_path(leaves, note.leaf_index, config.merkle_depth, ctx))
        nullifiers.append(compute_nullifier(note.sender_secret, note.leaf_index, ctx))

    checker = NullifierChecker(nullifier_fetcher(ledger, store.program_id, store.mint),
                               config.nullifiers.chunk_bits)
    await checker.assert_unspent(zip(nullifiers, (n.id for n in selected)))
    chunk_indices = chunks_to_touch(nullifiers, config.nullifiers.padding_chunks)
    missing = await checker.chunks_to_initialize(nullifiers, config.nullifiers.padding_chunks)
    if missing:
        report("Nullifier chunks to initialise before submission: %s", ", ".join(str(i) for i in missing))

    own = await load_view_keypair(store, sign, 0, ctx)
    outputs: List[OutputSlot] = []
    next_leaf = state.commitment_count
    if transfer_amount > 0:
        note, ct = create_note(store.mint, transfer_amount, recipient_view_key, next_leaf, ctx)
        owned = note.recipient_pubkey == own.pubkey
        if owned:
            note = note.model_copy(update={"view_key_index": own.index})
        outputs.append(OutputSlot(True, transfer_amount, note.commitment, note, ct, owned))
        next_leaf += 1
    change = total - needed
    if change > 0:
        note, ct = create_note(store.mint, change, own.pubkey, next_leaf, ctx, view_key_index=own.index)
        outputs.append(OutputSlot(True, change, note.commitment, note, ct, True))
    outputs = pad_outputs(outputs, config.max_outputs)

    identity_path = await identity.identity_merkle_path(sign)
    identity_secret = await identity.get_secret(sign)

    public = PublicInputs(
        root=state.root,
        identity_root=identity_path.root,
        nullifiers=nullifiers + [0] * (config.max_inputs - len(nullifiers)),
        output_commitments=[o.commitment for o in outputs],
        output_enabled=[1 if o.enabled else 0 for o in outputs],
        amount_out=amount_out,
        fee=fee,
        circuit_id=config.circuit_id,
    )
    circuit_input = build_circuit_input(public, selected, paths, outputs, identity_secret, identity_path, config)

    report("Generating proof...")
    bundle = await prover.prove(circuit_input)
    if bundle.public_inputs != public.to_bytes():
        raise VeilPayError("Prover public inputs differ from the locally computed values.")
    report("Proof ready for %d input note(s).", len(selected))

    return SpendPlan(
        inputs=selected,
        input_total=total,
        nullifiers=public.nullifiers,
        outputs=outputs,
        root=state.root,
        identity_root=identity_path.root,
        public_inputs=public,
        proof=bundle,
        chunk_indices=chunk_indices,
        missing_chunks=missing,
        ledger_count=state.commitment_count,
        change=change,
    )


def apply_confirmed_spend(store: NoteStore, plan: SpendPlan, first_leaf_index: Optional[int] = None) -> List[NoteRecord]:
    """
    Record a confirmed spend: inputs flagged spent, owned outputs stored, and
    every enabled output commitment appended if the cache is still complete.
    """
    leaf = plan.ledger_count if first_leaf_index is None else first_leaf_index
    for note in plan.inputs:
        store.mark_spent(note.id)
    added: List[NoteRecord] = []
    for slot in plan.outputs:
        if not slot.enabled:
            continue
        if slot.owned and slot.note is not None:
            note = slot.note
            if note.leaf_index != leaf:
                note = note.model_copy(update={"id": note_id(note.mint, leaf), "leaf_index": leaf})
            store.add(note)
            added.append(note)
        store.append_if_complete(leaf, slot.commitment)
        leaf += 1
    return added


async def wait_for_commitment_count(ledger: LedgerClient, program_id: str, mint: str, expected: int,
                                    attempts: int = 5, backoff_seconds: float = 1.0) -> int:
    """Poll the ledger counter a fixed number of times; returns the last count seen."""
    count = -1
    for attempt in range(attempts):
        state = await fetch_shielded_state(ledger, program_id, mint)
        count = state.commitment_count if state is not None else -1
        if count >= expected:
            return count
        if attempt < attempts - 1:
            await asyncio.sleep(backoff_seconds)
    StatusReporter("flows").warn("Commitment count %d did not reach %d after %d polls", count, expected, attempts)
    return count
