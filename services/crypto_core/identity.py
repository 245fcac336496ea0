# services/crypto_core/identity.py
from __future__ import annotations

from typing import Optional

from services.crypto_core.context import CryptoContext
from services.crypto_core.commitments import compute_identity_commitment
from services.crypto_core.field import field_from_bytes, sha256
from services.crypto_core.view_keys import SignMessage, request_signature

IDENTITY_DOMAIN = "VeilPay:identity:"


def identity_message(owner: str, program_id: str) -> bytes:
    return f"{IDENTITY_DOMAIN}{program_id}:{owner}".encode()


async def derive_identity_seed(owner: str, program_id: str, sign: Optional[SignMessage]) -> bytes:
    """SHA-256 of the wallet's signature over the identity message."""
    signature = await request_signature(sign, identity_message(owner, program_id))
    return sha256(signature)


def identity_secret_from_seed(seed: bytes) -> int:
    return field_from_bytes(seed)


async def derive_identity_commitment(owner: str, program_id: str, sign: Optional[SignMessage],
                                     ctx: Optional[CryptoContext] = None) -> int:
    seed = await derive_identity_seed(owner, program_id, sign)
    return compute_identity_commitment(identity_secret_from_seed(seed), ctx)
