# services/crypto_core/view_keys.py
from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from services.crypto_core.babyjub import Point
from services.crypto_core.context import CryptoContext, resolve
from services.crypto_core.errors import MissingSignerError
from services.crypto_core.field import bytes_to_int_be, int_to_bytes32, mod_field, sha256

SignMessage = Callable[[bytes], Union[bytes, Awaitable[bytes]]]

VIEW_KEY_DOMAIN = "VeilPay:view-key:"


@dataclass(frozen=True)
class ViewKeypair:
    secret: int
    pubkey: Point
    index: int

    def __repr__(self) -> str:
        return f"ViewKeypair(index={self.index}, pubkey={serialize_view_key(self.pubkey)})"


def view_key_message(owner: str) -> bytes:
    return f"{VIEW_KEY_DOMAIN}{owner}".encode()


async def request_signature(sign: Optional[SignMessage], message: bytes) -> bytes:
    """Call a wallet's sign function, sync or async. No signer is fatal."""
    if sign is None:
        raise MissingSignerError()
    result = sign(message)
    if inspect.isawaitable(result):
        result = await result
    return bytes(result)


async def derive_view_secret(owner: str, sign: Optional[SignMessage]) -> bytes:
    """32-byte seed = SHA-256(signature over the owner's view-key message)."""
    signature = await request_signature(sign, view_key_message(owner))
    return sha256(signature)


def derive_keypair(seed: bytes, index: int = 0, ctx: Optional[CryptoContext] = None) -> ViewKeypair:
    if index < 0 or index > 0xFFFFFFFF:
        raise ValueError(f"View key index out of range: {index}")
    ctx = resolve(ctx)
    keyed = sha256(bytes(seed) + index.to_bytes(4, "big"))
    secret = ctx.curve.reduce_scalar(mod_field(bytes_to_int_be(keyed)))
    return ViewKeypair(secret=secret, pubkey=ctx.curve.mul_base(secret), index=index)


async def derive_view_keypair(owner: str, sign: Optional[SignMessage], index: int = 0,
                              ctx: Optional[CryptoContext] = None) -> ViewKeypair:
    seed = await derive_view_secret(owner, sign)
    return derive_keypair(seed, index, ctx)


def recipient_tag_hash(pubkey: Point, ctx: Optional[CryptoContext] = None) -> int:
    return resolve(ctx).hash(pubkey[0], pubkey[1])


def serialize_view_key(pubkey: Point) -> str:
    return f"{int_to_bytes32(pubkey[0]).hex()}:{int_to_bytes32(pubkey[1]).hex()}"


def parse_view_key(value: str) -> Point:
    parts = value.strip().split(":")
    if len(parts) != 2:
        raise ValueError('Invalid view key format. Expected "<x>:<y>" hex.')
    x_hex, y_hex = (p.lower().removeprefix("0x") for p in parts)
    if len(x_hex) != 64 or len(y_hex) != 64:
        raise ValueError("Invalid view key length. Expected 32-byte hex parts.")
    return (int(x_hex, 16), int(y_hex, 16))
