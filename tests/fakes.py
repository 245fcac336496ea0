"""
In-memory ledger doubles.

FakeLedger answers the LedgerClient queries from dicts. ShieldedPool drives
it the way the on-chain program would: appending leaves, emitting Anchor
`Program data:` lines, updating the ShieldedState account and flipping
nullifier bits.
"""
from __future__ import annotations

import base64
import itertools
from typing import Any, Dict, List, Optional, Sequence

import base58

from services.config import MERKLE_DEPTH, NULLIFIER_BITS
from services.crypto_core.context import CryptoContext
from services.crypto_core.field import int_to_bytes32, sha256
from services.crypto_core.merkle import build_root
from services.crypto_core.nullifiers import nullifier_position, set_bit
from services.ledger.accounts import NULLIFIER_BITSET_BYTES, account_discriminator
from services.ledger.client import InstructionRecord, SignatureInfo, TransactionRecord
from services.ledger.events import NOTE_EVENT_DISCRIMINATOR, PROGRAM_DATA_PREFIX, instruction_discriminator
from services.ledger.pda import (
    b58decode_pubkey,
    b58encode,
    derive_identity_registry,
    derive_nullifier_set,
    derive_shielded_state,
)
from services.wallet.prover import ProofBundle, PublicInputs


def pubkey_for(label: str) -> str:
    return b58encode(sha256(label.encode()))


# ---------- Borsh/Anchor encoders ----------
def _u32(v: int) -> bytes:
    return int(v).to_bytes(4, "little")


def _u64(v: int) -> bytes:
    return int(v).to_bytes(8, "little")


def _vec(data: bytes) -> bytes:
    return _u32(len(data)) + bytes(data)


def encode_shielded_state(mint: str, root: int, count: int, history: Sequence[int] = (),
                          circuit_id: int = 0, version: int = 1, bump: int = 254) -> bytes:
    return (
        account_discriminator("ShieldedState")
        + b58decode_pubkey(mint)
        + int_to_bytes32(root)
        + _u32(len(history)) + b"".join(int_to_bytes32(h) for h in history)
        + _u32(len(history) % 64 if history else 0)
        + _u64(count)
        + _u32(circuit_id)
        + _u32(version)
        + bytes([bump])
    )


def encode_identity_registry(root: int, count: int, bump: int = 253) -> bytes:
    return account_discriminator("IdentityRegistry") + int_to_bytes32(root) + _u64(count) + bytes([bump])


def encode_nullifier_set(mint: str, chunk_index: int, bitset: bytes, count: int = 0, bump: int = 252) -> bytes:
    return (
        account_discriminator("NullifierSet")
        + b58decode_pubkey(mint)
        + _u32(chunk_index)
        + bytes(bitset)
        + _u32(count)
        + bytes([bump])
    )


def note_event_payload(mint: str, leaf_index: int, commitment: int, ciphertext: bytes) -> bytes:
    return (
        NOTE_EVENT_DISCRIMINATOR
        + b58decode_pubkey(mint)
        + _u64(leaf_index)
        + int_to_bytes32(commitment)
        + _vec(ciphertext)
    )


def note_event_log(mint: str, leaf_index: int, commitment: int, ciphertext: bytes) -> str:
    payload = note_event_payload(mint, leaf_index, commitment, ciphertext)
    return f"{PROGRAM_DATA_PREFIX} {base64.b64encode(payload).decode()}"


def register_identity_data(commitment: int, new_root: int, name: str = "register_identity") -> str:
    raw = instruction_discriminator(name) + _vec(int_to_bytes32(commitment)) + _vec(int_to_bytes32(new_root))
    return base58.b58encode(raw).decode()


# ---------- ledger ----------
class FakeLedger:
    """Dict-backed LedgerClient. Signature lists are kept newest-first."""

    def __init__(self) -> None:
        self.accounts: Dict[str, bytes] = {}
        self.signatures: Dict[str, List[SignatureInfo]] = {}
        self.transactions: Dict[str, TransactionRecord] = {}
        self.calls: List[str] = []
        self._slots = itertools.count(100)
        self._ids = itertools.count(1)

    async def get_account_data(self, address: str) -> Optional[bytes]:
        self.calls.append("get_account_data")
        return self.accounts.get(address)

    async def get_signatures_for_address(self, address: str, before: Optional[str] = None,
                                         limit: int = 1000) -> List[SignatureInfo]:
        self.calls.append("get_signatures_for_address")
        sigs = self.signatures.get(address, [])
        start = 0
        if before is not None:
            names = [s.signature for s in sigs]
            start = names.index(before) + 1 if before in names else len(sigs)
        return sigs[start:start + limit]

    async def get_transaction(self, signature: str) -> Optional[TransactionRecord]:
        self.calls.append("get_transaction")
        return self.transactions.get(signature)

    def add_transaction(self, addresses: Sequence[str], logs: Optional[List[str]] = None,
                        instructions: Optional[List[InstructionRecord]] = None,
                        events: Optional[List[Dict[str, Any]]] = None,
                        err: Any = None, slot: Optional[int] = None) -> str:
        signature = f"sig{next(self._ids)}"
        slot = next(self._slots) if slot is None else slot
        self.transactions[signature] = TransactionRecord(
            signature=signature,
            slot=slot,
            err=err,
            logs=logs,
            instructions=list(instructions or []),
            events=list(events or []),
        )
        for address in dict.fromkeys(addresses):
            self.signatures.setdefault(address, []).insert(0, SignatureInfo(signature, slot, err))
        return signature


class ShieldedPool:
    """Plays the on-chain program against a FakeLedger."""

    def __init__(self, ledger: FakeLedger, program_id: str, ctx: CryptoContext, depth: int = MERKLE_DEPTH):
        self.ledger = ledger
        self.program_id = program_id
        self.ctx = ctx
        self.depth = depth
        self.leaves: Dict[str, List[int]] = {}
        self.identities: List[int] = []
        self.bitsets: Dict[tuple, bytearray] = {}

    def init_mint(self, mint: str) -> None:
        self.leaves.setdefault(mint, [])
        self._write_state(mint)

    def _write_state(self, mint: str, root: Optional[int] = None) -> None:
        leaves = self.leaves[mint]
        if root is None:
            root = build_root(leaves, self.depth, self.ctx)
        self.ledger.accounts[derive_shielded_state(self.program_id, mint)] = encode_shielded_state(
            mint, root, len(leaves), history=[root])

    def post_note(self, mint: str, commitment: int, ciphertext: bytes, payer: Optional[str] = None,
                  as_event_dict: bool = False) -> int:
        self.leaves.setdefault(mint, [])
        leaf = len(self.leaves[mint])
        self.leaves[mint].append(commitment)
        self._write_state(mint)
        addresses = [self.program_id] + ([payer] if payer else [])
        if as_event_dict:
            event = {
                "name": "NoteOutputEvent",
                "data": {
                    "mint": mint,
                    "leafIndex": str(leaf),
                    "commitment": list(int_to_bytes32(commitment)),
                    "ciphertext": "0x" + bytes(ciphertext).hex(),
                },
            }
            self.ledger.add_transaction(addresses, logs=["Program log: Instruction: Transfer"], events=[event])
        else:
            self.ledger.add_transaction(addresses, logs=[
                f"Program {self.program_id} invoke [1]",
                "Program log: Instruction: Deposit",
                note_event_log(mint, leaf, commitment, ciphertext),
                f"Program {self.program_id} success",
            ])
        return leaf

    def corrupt_root(self, mint: str, root: int) -> None:
        self._write_state(mint, root)

    def spend_nullifier(self, mint: str, nullifier: int, chunk_bits: int = NULLIFIER_BITS) -> None:
        chunk, bit = nullifier_position(nullifier, chunk_bits)
        bitset = self.bitsets.setdefault((mint, chunk), bytearray(NULLIFIER_BITSET_BYTES))
        set_bit(bitset, bit)
        self.ledger.accounts[derive_nullifier_set(self.program_id, mint, chunk)] = encode_nullifier_set(
            mint, chunk, bytes(bitset), count=1)

    def init_nullifier_chunk(self, mint: str, chunk: int) -> None:
        bitset = self.bitsets.setdefault((mint, chunk), bytearray(NULLIFIER_BITSET_BYTES))
        self.ledger.accounts[derive_nullifier_set(self.program_id, mint, chunk)] = encode_nullifier_set(
            mint, chunk, bytes(bitset))

    def register_identity(self, owner: str, commitment: int, slot: Optional[int] = None) -> str:
        self.identities.append(commitment)
        root = build_root(self.identities, self.depth, self.ctx)
        self.ledger.accounts[derive_identity_registry(self.program_id)] = encode_identity_registry(
            root, len(self.identities))
        ix = InstructionRecord(
            program_id=self.program_id,
            data=register_identity_data(commitment, root),
            accounts=[owner, derive_identity_registry(self.program_id)],
        )
        return self.ledger.add_transaction([self.program_id, owner, derive_identity_registry(self.program_id)],
                                           instructions=[ix], slot=slot)


class FakeProver:
    """Echoes the public values from the circuit input as a proof bundle."""

    def __init__(self) -> None:
        self.inputs: List[Dict[str, Any]] = []

    async def prove(self, circuit_input: Dict[str, Any]) -> ProofBundle:
        self.inputs.append(circuit_input)
        public = PublicInputs(
            root=int(circuit_input["root"]),
            identity_root=int(circuit_input["identity_root"]),
            nullifiers=[int(v) for v in circuit_input["nullifier"]],
            output_commitments=[int(v) for v in circuit_input["output_commitment"]],
            output_enabled=[int(v) for v in circuit_input["output_enabled"]],
            amount_out=int(circuit_input["amount_out"]),
            fee=int(circuit_input["fee_amount"]),
            circuit_id=int(circuit_input["circuit_id"]),
        )
        return ProofBundle(proof=bytes(256), public_inputs=public.to_bytes(), public_signals=public.to_signals())
