# services/notes/keys.py
# Every persisted key is built here so namespacing cannot drift between
# the note store, the identity store and the scanners.
from __future__ import annotations


def notes_key(program_id: str, owner: str, mint: str) -> str:
    return f"notes.{program_id}.{owner}.{mint}"


def commitments_key(program_id: str, owner: str, mint: str) -> str:
    return f"commitments.{program_id}.{owner}.{mint}"


def view_seed_key(program_id: str, owner: str) -> str:
    return f"view-seed.{program_id}.{owner}"


def identity_secret_key(program_id: str, owner: str) -> str:
    return f"identity-secret.{program_id}.{owner}"


def identity_index_key(program_id: str, owner: str) -> str:
    return f"identity-index.{program_id}.{owner}"


def identity_commitments_key(program_id: str) -> str:
    return f"identity-commitments.{program_id}"
