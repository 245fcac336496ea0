"""
Additive ECIES over Baby Jubjub.

    c1      = r * B
    shared  = r * pubkey
    c2.amt  = amount     + Poseidon(shared.x, shared.y, 0)   (mod p)
    c2.rnd  = randomness + Poseidon(shared.x, shared.y, 1)   (mod p)

This is a one-time pad keyed by a Diffie-Hellman point and carries no MAC.
Recipients only trust a decryption after recomputing the note commitment
and comparing it against the on-chain leaf.

Wire format: 128 bytes, four 32-byte big-endian field elements in the order
c1.x, c1.y, c2.amount, c2.randomness.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from services.config import NOTE_CIPHERTEXT_BYTES
from services.crypto_core.babyjub import Point
from services.crypto_core.context import CryptoContext, resolve
from services.crypto_core.errors import DecodeError
from services.crypto_core.field import (
    FIELD_BYTES,
    bytes_to_int_be,
    int_to_bytes32,
    mod_field,
    random_field,
)


@dataclass(frozen=True)
class Ciphertext:
    c1x: int
    c1y: int
    c2_amount: int
    c2_randomness: int

    def to_bytes(self) -> bytes:
        return b"".join(int_to_bytes32(v) for v in (self.c1x, self.c1y, self.c2_amount, self.c2_randomness))

    @classmethod
    def from_bytes(cls, data: bytes) -> "Ciphertext":
        if len(data) != NOTE_CIPHERTEXT_BYTES:
            raise DecodeError(f"Ciphertext must be {NOTE_CIPHERTEXT_BYTES} bytes, got {len(data)}")
        words = [bytes_to_int_be(data[i:i + FIELD_BYTES]) for i in range(0, NOTE_CIPHERTEXT_BYTES, FIELD_BYTES)]
        return cls(*words)

    @property
    def c1(self) -> Point:
        return (self.c1x, self.c1y)


@dataclass(frozen=True)
class Encryption:
    ciphertext: Ciphertext
    enc_randomness: int

    def to_bytes(self) -> bytes:
        return self.ciphertext.to_bytes()


def _masks(shared: Point, ctx: CryptoContext) -> Tuple[int, int]:
    return ctx.hash(shared[0], shared[1], 0), ctx.hash(shared[0], shared[1], 1)


def ecies_encrypt(pubkey: Point, amount: int, randomness: int,
                  ctx: Optional[CryptoContext] = None,
                  ephemeral: Optional[int] = None) -> Encryption:
    ctx = resolve(ctx)
    curve = ctx.curve
    r = curve.reduce_scalar(ephemeral if ephemeral is not None else random_field())
    c1 = curve.mul_base(r)
    shared = curve.mul(pubkey, r)
    mask_amount, mask_randomness = _masks(shared, ctx)
    ct = Ciphertext(
        c1x=c1[0],
        c1y=c1[1],
        c2_amount=mod_field(amount + mask_amount),
        c2_randomness=mod_field(randomness + mask_randomness),
    )
    return Encryption(ciphertext=ct, enc_randomness=r)


def ecies_decrypt(secret: int, ciphertext: Ciphertext,
                  ctx: Optional[CryptoContext] = None) -> Tuple[int, int]:
    ctx = resolve(ctx)
    shared = ctx.curve.mul(ciphertext.c1, secret)
    mask_amount, mask_randomness = _masks(shared, ctx)
    return mod_field(ciphertext.c2_amount - mask_amount), mod_field(ciphertext.c2_randomness - mask_randomness)
