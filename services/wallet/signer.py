# services/wallet/signer.py
from __future__ import annotations

import json
from pathlib import Path
from typing import List, Union

from nacl.signing import SigningKey

from services.ledger.pda import b58encode


class KeypairSigner:
    """
    Ed25519 message signer over a Solana keypair.

    Plays the wallet's `signMessage` role: deterministic signatures, so
    view and identity secrets re-derive identically on every call.
    """

    def __init__(self, signing_key: SigningKey):
        self._key = signing_key

    @classmethod
    def from_seed(cls, seed: bytes) -> "KeypairSigner":
        if len(seed) != 32:
            raise ValueError("Ed25519 seed must be 32 bytes")
        return cls(SigningKey(bytes(seed)))

    @classmethod
    def from_secret_key(cls, secret: Union[bytes, List[int]]) -> "KeypairSigner":
        """Solana's 64-byte secret key layout: seed followed by public key."""
        raw = bytes(secret)
        if len(raw) != 64:
            raise ValueError(f"Solana secret key must be 64 bytes, got {len(raw)}")
        signer = cls.from_seed(raw[:32])
        if signer.public_key != raw[32:]:
            raise ValueError("Secret key public half does not match its seed")
        return signer

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "KeypairSigner":
        """Load a `solana-keygen` JSON keypair file."""
        with open(path, "r") as f:
            return cls.from_secret_key(json.load(f))

    @classmethod
    def generate(cls) -> "KeypairSigner":
        return cls(SigningKey.generate())

    @property
    def public_key(self) -> bytes:
        return bytes(self._key.verify_key)

    @property
    def owner(self) -> str:
        return b58encode(self.public_key)

    def sign_message(self, message: bytes) -> bytes:
        return self._key.sign(bytes(message)).signature

    def __call__(self, message: bytes) -> bytes:
        return self.sign_message(message)

    def __repr__(self) -> str:
        return f"KeypairSigner(owner={self.owner})"
