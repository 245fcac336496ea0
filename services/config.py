# services/config.py
from __future__ import annotations

import os
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

# ===== Environment =====
SOLANA_RPC_URL: str = os.getenv("SOLANA_RPC_URL", "http://127.0.0.1:8899")
VEILPAY_PROGRAM_ID: str = os.getenv("VEILPAY_PROGRAM_ID", "4C6H1aqxks1AgjtsLPbNrDXFsb6DwQ6c1Jhw2ZugTLv2")
DATA_DIR: str = os.getenv("DATA_DIR", os.path.join(os.getcwd(), "data"))
RPC_TIMEOUT_SEC: float = float(os.getenv("RPC_TIMEOUT_SEC", "10"))
RPC_MAX_RETRIES: int = int(os.getenv("RPC_MAX_RETRIES", "3"))
RPC_COMMITMENT: str = os.getenv("RPC_COMMITMENT", "confirmed")

# ===== Protocol constants =====
MERKLE_DEPTH: int = 20
MAX_INPUTS: int = 4
MAX_OUTPUTS: int = 2
NOTE_CIPHERTEXT_BYTES: int = 128
NULLIFIER_BITS: int = 8192
PUBLIC_INPUTS_LEN: int = 13
SIGNATURE_PAGE_LIMIT: int = 1000
DEFAULT_VIEW_KEY_SCAN_MAX_INDEX: int = 0


class RpcConfig(BaseModel):
    url: str = Field(default_factory=lambda: SOLANA_RPC_URL, description="Solana JSON-RPC endpoint.")
    timeout_seconds: float = Field(default_factory=lambda: RPC_TIMEOUT_SEC, gt=0, description="Per-request timeout.")
    max_retries: int = Field(default_factory=lambda: RPC_MAX_RETRIES, ge=1, description="Attempts per RPC call.")
    commitment: str = Field(default_factory=lambda: RPC_COMMITMENT, description="Commitment level for reads.")
    backoff_seconds: float = Field(1.0, ge=0, description="Base delay; doubles after each failed attempt.")


class RescanConfig(BaseModel):
    """Bounds and key selection for a chain rescan."""

    max_signatures: Optional[int] = Field(
        None, ge=0, description="Cap on program signatures walked (None = until history is exhausted)."
    )
    start_slot: Optional[int] = Field(
        None, ge=0, description="Scan floor; when unset the identity registration slot is looked up."
    )
    view_key_indices: List[int] = Field(
        default_factory=list, description="Explicit view-key indices to trial-decrypt with."
    )
    view_key_max_index: int = Field(
        DEFAULT_VIEW_KEY_SCAN_MAX_INDEX, ge=0, description="Scan indices 0..N when no explicit list is given."
    )
    page_limit: int = Field(SIGNATURE_PAGE_LIMIT, gt=0, le=SIGNATURE_PAGE_LIMIT, description="Signatures per page.")

    @field_validator("view_key_indices")
    @classmethod
    def _non_negative(cls, v: List[int]) -> List[int]:
        return [i for i in v if i >= 0]

    def scan_indices(self) -> List[int]:
        if self.view_key_indices:
            return sorted(set(self.view_key_indices))
        return list(range(self.view_key_max_index + 1))


class NullifierConfig(BaseModel):
    chunk_bits: int = Field(NULLIFIER_BITS, gt=0, le=65536, description="Bits per on-chain nullifier chunk.")
    padding_chunks: int = Field(
        0, ge=0, description="Decoy chunks 0..N-1 touched alongside the real ones."
    )


class SpendConfig(BaseModel):
    max_inputs: int = Field(MAX_INPUTS, gt=0, description="Input slots of the spend circuit.")
    max_outputs: int = Field(MAX_OUTPUTS, gt=0, description="Output slots of the spend circuit.")
    merkle_depth: int = Field(MERKLE_DEPTH, gt=0, description="Depth of the note and identity trees.")
    circuit_id: int = Field(0, ge=0, description="Verifier circuit identifier.")
    confirm_attempts: int = Field(5, ge=1, description="Polls while waiting for the ledger counter.")
    confirm_backoff_seconds: float = Field(1.0, ge=0, description="Fixed delay between polls.")
    nullifiers: NullifierConfig = Field(default_factory=NullifierConfig)
