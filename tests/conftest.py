"""
VeilPay client core test fixtures
"""

import asyncio

import pytest

from services.crypto_core.context import default_context
from services.notes.identity_store import IdentityStore
from services.notes.storage import MemoryStorage
from services.notes.store import NoteStore
from services.wallet.signer import KeypairSigner

from tests.fakes import FakeLedger, FakeProver, ShieldedPool, pubkey_for


@pytest.fixture
def ctx():
    """Process-wide crypto context."""
    return default_context()


@pytest.fixture
def program_id() -> str:
    return pubkey_for("veilpay-program")


@pytest.fixture
def mint() -> str:
    return pubkey_for("mint-usdc")


@pytest.fixture
def other_mint() -> str:
    return pubkey_for("mint-other")


@pytest.fixture
def signer() -> KeypairSigner:
    """Deterministic wallet signer."""
    return KeypairSigner.from_seed(bytes([7]) * 32)


@pytest.fixture
def other_signer() -> KeypairSigner:
    return KeypairSigner.from_seed(bytes([9]) * 32)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage, program_id, signer, mint) -> NoteStore:
    return NoteStore(storage, program_id, signer.owner, mint)


@pytest.fixture
def identity(storage, program_id, signer, ctx) -> IdentityStore:
    return IdentityStore(storage, program_id, signer.owner, ctx)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def pool(ledger, program_id, ctx) -> ShieldedPool:
    return ShieldedPool(ledger, program_id, ctx)


@pytest.fixture
def prover() -> FakeProver:
    return FakeProver()


# Async fixtures helper
@pytest.fixture
def async_runner():
    """Helper for running async functions in tests."""
    def runner(coro):
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(coro)
        finally:
            loop.close()
    return runner
