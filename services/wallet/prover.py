# services/wallet/prover.py
# Boundary to the external proving system: circuit input assembly, the
# public-input wire layout the ledger parses, and a snarkjs CLI prover.
from __future__ import annotations

import asyncio
import json
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from services.config import MAX_INPUTS, MAX_OUTPUTS, PUBLIC_INPUTS_LEN
from services.crypto_core.errors import DecodeError
from services.crypto_core.field import FIELD_BYTES, bytes_to_int_be, int_to_bytes32
from services.wallet.command import run_with_retry

U64_MAX = (1 << 64) - 1
U32_MAX = (1 << 32) - 1


@dataclass(frozen=True)
class ProofBundle:
    proof: bytes
    public_inputs: bytes
    public_signals: List[str]


class Prover(Protocol):
    async def prove(self, circuit_input: Dict[str, Any]) -> ProofBundle: ...


@dataclass(frozen=True)
class PublicInputs:
    """
    Thirteen 32-byte big-endian words, in ledger order:
    root, identity_root, nullifiers[4], output_commitments[2],
    output_enabled[2], amount_out (u64), fee (u64), circuit_id (u32).
    """

    root: int
    identity_root: int
    nullifiers: List[int]
    output_commitments: List[int]
    output_enabled: List[int]
    amount_out: int
    fee: int
    circuit_id: int

    def words(self) -> List[int]:
        if len(self.nullifiers) != MAX_INPUTS or len(self.output_commitments) != MAX_OUTPUTS:
            raise ValueError("Public inputs must carry fixed-width nullifier and output lists")
        if len(self.output_enabled) != MAX_OUTPUTS or any(v not in (0, 1) for v in self.output_enabled):
            raise ValueError("Output enabled flags must be 0 or 1")
        if not 0 <= self.amount_out <= U64_MAX or not 0 <= self.fee <= U64_MAX:
            raise ValueError("amount_out and fee must fit in u64")
        if not 0 <= self.circuit_id <= U32_MAX:
            raise ValueError("circuit_id must fit in u32")
        return [
            self.root,
            self.identity_root,
            *self.nullifiers,
            *self.output_commitments,
            *self.output_enabled,
            self.amount_out,
            self.fee,
            self.circuit_id,
        ]

    def to_bytes(self) -> bytes:
        return b"".join(int_to_bytes32(w) for w in self.words())

    def to_signals(self) -> List[str]:
        return [str(w) for w in self.words()]

    @classmethod
    def from_bytes(cls, data: bytes) -> "PublicInputs":
        if len(data) != PUBLIC_INPUTS_LEN * FIELD_BYTES:
            raise DecodeError(f"Public inputs must be {PUBLIC_INPUTS_LEN * FIELD_BYTES} bytes, got {len(data)}")
        w = [bytes_to_int_be(data[i:i + FIELD_BYTES]) for i in range(0, len(data), FIELD_BYTES)]
        n, m = MAX_INPUTS, MAX_OUTPUTS
        return cls(
            root=w[0],
            identity_root=w[1],
            nullifiers=w[2:2 + n],
            output_commitments=w[2 + n:2 + n + m],
            output_enabled=w[2 + n + m:2 + n + 2 * m],
            amount_out=w[2 + n + 2 * m],
            fee=w[3 + n + 2 * m],
            circuit_id=w[4 + n + 2 * m],
        )


def encode_proof(proof: Dict[str, Any]) -> bytes:
    """Groth16 proof as eight 32-byte words: a.x, a.y, b[0][0], b[0][1], b[1][0], b[1][1], c.x, c.y."""
    a, b, c = proof["pi_a"], proof["pi_b"], proof["pi_c"]
    words = [a[0], a[1], b[0][0], b[0][1], b[1][0], b[1][1], c[0], c[1]]
    return b"".join(int_to_bytes32(int(w)) for w in words)


def bundle_from_snarkjs(proof: Dict[str, Any], public_signals: Sequence[Any]) -> ProofBundle:
    signals = [str(s) for s in public_signals]
    return ProofBundle(
        proof=encode_proof(proof),
        public_inputs=b"".join(int_to_bytes32(int(s)) for s in signals),
        public_signals=signals,
    )


class SnarkjsProver:
    """Runs `snarkjs groth16 fullprove` in a scratch directory."""

    def __init__(self, wasm_path: str, zkey_path: str, snarkjs_cmd: Optional[List[str]] = None,
                 max_retries: int = 2, timeout: int = 300, backoff_seconds: float = 1.0):
        self.wasm_path = wasm_path
        self.zkey_path = zkey_path
        self.snarkjs_cmd = snarkjs_cmd or ["snarkjs"]
        self.max_retries = max_retries
        self.timeout = timeout
        self.backoff_seconds = backoff_seconds

    def _prove_sync(self, circuit_input: Dict[str, Any]) -> ProofBundle:
        with tempfile.TemporaryDirectory(prefix="veilpay-prove-") as tmp:
            work = Path(tmp)
            (work / "input.json").write_text(json.dumps(circuit_input))
            run_with_retry(
                self.snarkjs_cmd + [
                    "groth16", "fullprove", "input.json",
                    str(Path(self.wasm_path).resolve()), str(Path(self.zkey_path).resolve()),
                    "proof.json", "public.json",
                ],
                max_retries=self.max_retries,
                timeout=self.timeout,
                backoff_seconds=self.backoff_seconds,
                cwd=work,
                description="Groth16 proof",
            )
            proof = json.loads((work / "proof.json").read_text())
            public = json.loads((work / "public.json").read_text())
        return bundle_from_snarkjs(proof, public)

    async def prove(self, circuit_input: Dict[str, Any]) -> ProofBundle:
        return await asyncio.to_thread(self._prove_sync, circuit_input)
