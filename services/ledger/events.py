"""
Boundary decoders for note-output events and identity instructions.

Log data reaches us in more than one wire form (Anchor `Program data:`
base64 lines, already-decoded dicts with camelCase or snake_case keys, byte
fields as lists, base58, base64 or hex). Each form has one decoder and the
decoders are tried in order; anything none of them accepts raises
DecodeError, which scanners count and skip.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import base58

from services.config import MERKLE_DEPTH, NOTE_CIPHERTEXT_BYTES
from services.crypto_core.errors import DecodeError
from services.crypto_core.field import FIELD_BYTES, bytes_to_int_be
from services.ledger.accounts import BorshReader
from services.ledger.pda import b58encode

PROGRAM_DATA_PREFIX = "Program data:"
NOTE_EVENT_NAMES = ("NoteOutputEvent", "noteOutputEvent")
REGISTER_IDENTITY_NAMES = ("register_identity", "registerIdentity")
MAX_LEAF_INDEX = (1 << MERKLE_DEPTH) - 1


def event_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"event:{name}".encode()).digest()[:8]


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


NOTE_EVENT_DISCRIMINATOR = event_discriminator("NoteOutputEvent")
_REGISTER_IDENTITY_DISCRIMINATORS = {instruction_discriminator(n) for n in REGISTER_IDENTITY_NAMES}


@dataclass(frozen=True)
class NoteOutputEvent:
    mint: str
    leaf_index: int
    commitment: int
    ciphertext: bytes


@dataclass(frozen=True)
class RegisterIdentityArgs:
    commitment: bytes
    new_root: bytes


# ---------- byte candidates ----------
def _string_candidates(value: str) -> List[bytes]:
    out: List[bytes] = []
    text = value.strip()
    try:
        out.append(base58.b58decode(text))
    except ValueError:
        pass
    try:
        out.append(base64.b64decode(text, validate=True))
    except (binascii.Error, ValueError):
        pass
    hex_text = text[2:] if text.startswith("0x") else text
    if hex_text and len(hex_text) % 2 == 0:
        try:
            out.append(bytes.fromhex(hex_text))
        except ValueError:
            pass
    return out


def byte_candidates(value: Any) -> List[bytes]:
    """Every plausible byte decoding of `value`, in preference order."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return [bytes(value)]
    if isinstance(value, str):
        return _string_candidates(value)
    if isinstance(value, (list, tuple)):
        try:
            return [bytes(value)]
        except (TypeError, ValueError):
            return []
    if isinstance(value, dict) and "data" in value:
        return byte_candidates(value["data"])
    return []


def bytes_of_length(value: Any, length: int) -> bytes:
    for candidate in byte_candidates(value):
        if len(candidate) == length:
            return candidate
    raise DecodeError(f"No {length}-byte decoding for field value")


def check_leaf_index(leaf_index: int) -> int:
    """Reject leaf indices the fixed-depth note tree cannot hold."""
    if leaf_index < 0:
        raise DecodeError("Negative leaf index")
    if leaf_index > MAX_LEAF_INDEX:
        raise DecodeError(f"Leaf index {leaf_index} exceeds tree capacity {MAX_LEAF_INDEX + 1}")
    return leaf_index


# ---------- event decoders ----------
class AnchorLogDecoder:
    """`Program data: <base64>` lines carrying a Borsh-encoded NoteOutputEvent."""

    def accepts(self, raw: Any) -> bool:
        return isinstance(raw, str) and raw.startswith(PROGRAM_DATA_PREFIX)

    def decode(self, raw: Any) -> NoteOutputEvent:
        payload = raw[len(PROGRAM_DATA_PREFIX):].strip()
        if not payload:
            raise DecodeError("Empty program data")
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Program data is not base64: {e}") from e
        if data[:8] != NOTE_EVENT_DISCRIMINATOR:
            raise DecodeError("Program data is not a NoteOutputEvent")
        r = BorshReader(data, 8)
        mint = r.pubkey()
        leaf_index = r.u64()
        commitment = r.take(FIELD_BYTES)
        ciphertext = r.vec_bytes()
        if len(ciphertext) != NOTE_CIPHERTEXT_BYTES:
            raise DecodeError(f"Ciphertext length {len(ciphertext)} != {NOTE_CIPHERTEXT_BYTES}")
        check_leaf_index(leaf_index)
        return NoteOutputEvent(mint, leaf_index, bytes_to_int_be(commitment), ciphertext)


class StructuredEventDecoder:
    """Already-decoded event dicts, with or without a {name, data} envelope."""

    def accepts(self, raw: Any) -> bool:
        return isinstance(raw, dict)

    def decode(self, raw: Any) -> NoteOutputEvent:
        body: Dict[str, Any] = raw
        if "name" in raw and isinstance(raw.get("data"), dict):
            if raw["name"] not in NOTE_EVENT_NAMES:
                raise DecodeError(f"Unrelated event {raw['name']}")
            body = raw["data"]
        mint_raw = body.get("mint")
        leaf_raw = body.get("leafIndex", body.get("leaf_index"))
        if mint_raw is None or leaf_raw is None:
            raise DecodeError("Event lacks mint or leaf index")
        mint = mint_raw if isinstance(mint_raw, str) else b58encode(bytes_of_length(mint_raw, 32))
        try:
            if isinstance(leaf_raw, str) and leaf_raw.lower().startswith("0x"):
                leaf_index = int(leaf_raw, 16)
            else:
                leaf_index = int(leaf_raw)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Bad leaf index {leaf_raw!r}") from e
        check_leaf_index(leaf_index)
        commitment = bytes_of_length(body.get("commitment"), FIELD_BYTES)
        ciphertext = bytes_of_length(body.get("ciphertext"), NOTE_CIPHERTEXT_BYTES)
        return NoteOutputEvent(mint, leaf_index, bytes_to_int_be(commitment), ciphertext)


DEFAULT_EVENT_DECODERS = (AnchorLogDecoder(), StructuredEventDecoder())


def decode_note_event(raw: Any, decoders: Sequence = DEFAULT_EVENT_DECODERS) -> NoteOutputEvent:
    last: Optional[DecodeError] = None
    for decoder in decoders:
        if not decoder.accepts(raw):
            continue
        try:
            return decoder.decode(raw)
        except DecodeError as e:
            last = e
    raise last or DecodeError("No decoder accepts this input")


# ---------- instructions ----------
def decode_register_identity(data: Any) -> RegisterIdentityArgs:
    """Decode `register_identity` instruction data, trying base58 then base64."""
    for candidate in byte_candidates(data):
        if candidate[:8] not in _REGISTER_IDENTITY_DISCRIMINATORS:
            continue
        try:
            r = BorshReader(candidate, 8)
            return RegisterIdentityArgs(commitment=r.vec_bytes(), new_root=r.vec_bytes())
        except DecodeError:
            continue
    raise DecodeError("Not a register_identity instruction")


def is_register_identity(data: Any) -> bool:
    return any(c[:8] in _REGISTER_IDENTITY_DISCRIMINATORS for c in byte_candidates(data))
