# services/crypto_core/commitments.py
# Note construction: commitment, ECIES ciphertext and the stored record.
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from services.crypto_core.babyjub import Point
from services.crypto_core.context import CryptoContext, resolve
from services.crypto_core.ecies import Ciphertext, ecies_encrypt
from services.crypto_core.errors import MalformedNoteError
from services.crypto_core.field import random_field
from services.crypto_core.view_keys import parse_view_key, recipient_tag_hash
from services.notes.models import NoteRecord, note_id

ViewKeyLike = Union[str, Point]


def compute_commitment(amount: int, randomness: int, tag_hash: int,
                       ctx: Optional[CryptoContext] = None) -> int:
    """Poseidon(amount, randomness, recipientTagHash)."""
    return resolve(ctx).hash(amount, randomness, tag_hash)


def compute_identity_commitment(secret: int, ctx: Optional[CryptoContext] = None) -> int:
    return resolve(ctx).hash(secret)


def _as_point(view_key: ViewKeyLike) -> Point:
    if isinstance(view_key, str):
        return parse_view_key(view_key)
    return (int(view_key[0]), int(view_key[1]))


def create_note(mint: str, amount: int, recipient_view_key: ViewKeyLike, leaf_index: int,
                ctx: Optional[CryptoContext] = None,
                randomness: Optional[int] = None,
                view_key_index: Optional[int] = None) -> Tuple[NoteRecord, bytes]:
    """
    Build a note addressed to a recipient's view public key.

    The sender secret equals the randomness so that a recipient who only
    decrypts the ciphertext can still derive the nullifier.

    Returns:
        (note record, 128-byte wire ciphertext)
    """
    if amount < 0:
        raise ValueError("Amount must be non-negative")
    ctx = resolve(ctx)
    pubkey = _as_point(recipient_view_key)
    r = randomness if randomness is not None else random_field()
    tag = recipient_tag_hash(pubkey, ctx)
    commitment = compute_commitment(amount, r, tag, ctx)
    enc = ecies_encrypt(pubkey, amount, r, ctx)
    ct = enc.ciphertext
    note = NoteRecord(
        id=note_id(mint, leaf_index),
        mint=mint,
        amount=amount,
        randomness=r,
        recipient_tag_hash=tag,
        commitment=commitment,
        sender_secret=r,
        c1x=ct.c1x,
        c1y=ct.c1y,
        c2_amount=ct.c2_amount,
        c2_randomness=ct.c2_randomness,
        enc_randomness=enc.enc_randomness,
        recipient_pubkey_x=pubkey[0],
        recipient_pubkey_y=pubkey[1],
        view_key_index=view_key_index,
        leaf_index=leaf_index,
        spent=False,
    )
    return note, ct.to_bytes()


def assert_ciphertext_fields(note: NoteRecord) -> Ciphertext:
    ct = note.ciphertext
    if ct is None:
        raise MalformedNoteError(note.id, "missing ciphertext fields")
    if ct.c1x == 0 and ct.c1y == 0:
        raise MalformedNoteError(note.id, "ciphertext c1 is zero")
    return ct


def note_ciphertext(note: NoteRecord) -> bytes:
    """Rebuild the 128-byte wire ciphertext from the stored components."""
    return assert_ciphertext_fields(note).to_bytes()


@dataclass(frozen=True)
class AmountCiphertext:
    payee_tag_hash: int
    ciphertext: bytes


def build_amount_ciphertext(payee_view_key: ViewKeyLike, amount: int,
                            ctx: Optional[CryptoContext] = None) -> AmountCiphertext:
    """Encrypt an amount to a payee for an authorisation intent."""
    ctx = resolve(ctx)
    pubkey = _as_point(payee_view_key)
    enc = ecies_encrypt(pubkey, amount, random_field(), ctx)
    return AmountCiphertext(payee_tag_hash=recipient_tag_hash(pubkey, ctx), ciphertext=enc.to_bytes())
