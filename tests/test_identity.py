"""
Identity registry tests
"""

import pytest

from services.crypto_core.commitments import compute_identity_commitment
from services.crypto_core.errors import LedgerError, MissingSignerError
from services.crypto_core.identity import derive_identity_commitment, identity_message
from services.crypto_core.merkle import build_root, verify_path
from services.ledger.pda import derive_identity_registry
from services.scanner.identity_scanner import rescan_identity_registry

from tests.fakes import encode_identity_registry


class TestIdentitySecret:
    """Tests for the signature-derived identity secret."""

    def test_message_format(self):
        assert identity_message("Owner", "Prog") == b"VeilPay:identity:Prog:Owner"

    def test_missing_signer(self, async_runner, identity):
        with pytest.raises(MissingSignerError):
            async_runner(identity.get_secret())

    def test_cached_after_first_signature(self, async_runner, identity, signer):
        secret = async_runner(identity.get_secret(signer))
        assert identity.load_seed() is not None
        assert async_runner(identity.get_secret()) == secret

    def test_commitment_matches_derivation(self, async_runner, identity, signer, program_id, ctx):
        expected = async_runner(derive_identity_commitment(signer.owner, program_id, signer, ctx))
        assert async_runner(identity.get_commitment(signer)) == expected


class TestIdentityStore:
    """Tests for the local identity tree."""

    def test_ensure_appends_once(self, async_runner, identity, signer):
        commitment, index = async_runner(identity.ensure_identity_commitment(signer))
        assert index == 0
        assert identity.load_commitments() == [commitment]
        assert async_runner(identity.ensure_identity_commitment(signer)) == (commitment, 0)
        assert identity.leaf_index() == 0

    def test_ensure_finds_existing(self, async_runner, identity, signer):
        own = async_runner(identity.get_commitment(signer))
        identity.save_commitments([111, own])
        assert async_runner(identity.ensure_identity_commitment(signer)) == (own, 1)

    def test_merkle_path(self, async_runner, identity, signer, ctx):
        identity.save_commitments([111, 222])
        path = async_runner(identity.identity_merkle_path(signer))
        own = async_runner(identity.get_commitment())
        assert path.leaf_index == 2
        assert verify_path(own, path, ctx)
        assert path.root == identity.identity_root()


class TestIdentityRescan:
    """Tests for rebuilding the identity leaves from ledger history."""

    def test_multiple_registrations(self, async_runner, pool, ledger, identity, signer, other_signer, ctx):
        other = compute_identity_commitment(31337, ctx)
        own = async_runner(identity.get_commitment(signer))
        pool.register_identity(other_signer.owner, other)
        pool.register_identity(signer.owner, own)

        result = async_runner(rescan_identity_registry(ledger, identity, signer, ctx=ctx))

        assert result.commitments == [other, own]
        assert result.on_chain_count == 2
        assert result.root_matches
        assert result.leaf_index == 1
        assert identity.leaf_index() == 1
        assert identity.load_commitments() == [other, own]

    def test_same_slot_keeps_registration_order(self, async_runner, pool, ledger, identity, signer, other_signer,
                                                ctx):
        """Registrations landing in one slot come back oldest-first."""
        other = compute_identity_commitment(31337, ctx)
        own = async_runner(identity.get_commitment(signer))
        pool.register_identity(other_signer.owner, other, slot=500)
        pool.register_identity(signer.owner, own, slot=500)

        result = async_runner(rescan_identity_registry(ledger, identity, signer, ctx=ctx))

        assert result.commitments == [other, own]
        assert result.root_matches
        assert result.leaf_index == 1

    def test_single_registration(self, async_runner, pool, ledger, identity, signer, ctx):
        own = async_runner(identity.get_commitment(signer))
        pool.register_identity(signer.owner, own)
        result = async_runner(rescan_identity_registry(ledger, identity, ctx=ctx))
        assert result.commitments == [own]
        assert result.leaf_index == 0

    def test_single_recovered_from_signature(self, async_runner, ledger, identity, signer, program_id, ctx):
        """No register instruction in history, but the lone root matches our own commitment."""
        own = async_runner(derive_identity_commitment(signer.owner, program_id, signer, ctx))
        ledger.accounts[derive_identity_registry(program_id)] = encode_identity_registry(
            build_root([own], identity.depth, ctx), 1)
        messages = []
        result = async_runner(rescan_identity_registry(ledger, identity, signer, ctx=ctx,
                                                       on_status=messages.append))
        assert result.commitments == [own]
        assert "Recovered identity commitment from signature." in messages
        assert identity.leaf_index() == 0

    def test_root_mismatch_warns(self, async_runner, pool, ledger, identity, program_id, ctx):
        pool.register_identity("Someone", compute_identity_commitment(1, ctx))
        pool.register_identity("Else", compute_identity_commitment(2, ctx))
        ledger.accounts[derive_identity_registry(program_id)] = encode_identity_registry(424242, 2)
        messages = []
        result = async_runner(rescan_identity_registry(ledger, identity, ctx=ctx, on_status=messages.append))
        assert not result.root_matches
        assert any("root mismatch" in m for m in messages)

    def test_own_commitment_absent_clears_index(self, async_runner, pool, ledger, identity, signer, ctx):
        async_runner(identity.ensure_identity_commitment(signer))
        pool.register_identity("Someone", compute_identity_commitment(1, ctx))
        pool.register_identity("Else", compute_identity_commitment(2, ctx))
        result = async_runner(rescan_identity_registry(ledger, identity, ctx=ctx))
        assert result.leaf_index is None
        assert identity.leaf_index() is None

    def test_registry_missing(self, async_runner, ledger, identity):
        with pytest.raises(LedgerError):
            async_runner(rescan_identity_registry(ledger, identity))
