"""
Program-derived address tests
"""

import pytest

from services.crypto_core.errors import DecodeError
from services.ledger.pda import (
    b58decode_pubkey,
    b58encode,
    create_program_address,
    derive_config,
    derive_identity_member,
    derive_identity_registry,
    derive_nullifier_set,
    derive_shielded_state,
    derive_vault,
    find_program_address,
    is_on_ed25519_curve,
)

from tests.fakes import pubkey_for

PROGRAM = pubkey_for("pda-program")
MINT = pubkey_for("pda-mint")


class TestCurveCheck:
    """Tests for the ed25519 on-curve test."""

    def test_base_point_on_curve(self):
        raw = bytes.fromhex("5866666666666666666666666666666666666666666666666666666666666666")
        assert is_on_ed25519_curve(raw)

    def test_wrong_length(self):
        assert not is_on_ed25519_curve(b"\x00" * 31)


class TestFindProgramAddress:
    """Tests for bump search."""

    def test_off_curve_and_deterministic(self):
        addr, bump = find_program_address([b"shielded", b58decode_pubkey(MINT)], PROGRAM)
        assert 0 <= bump <= 255
        assert not is_on_ed25519_curve(b58decode_pubkey(addr))
        assert find_program_address([b"shielded", b58decode_pubkey(MINT)], PROGRAM) == (addr, bump)
        assert b58encode(create_program_address([b"shielded", b58decode_pubkey(MINT), bytes([bump])],
                                                PROGRAM)) == addr

    def test_seed_too_long(self):
        with pytest.raises(ValueError):
            create_program_address([b"x" * 33], PROGRAM)

    def test_helpers_distinct(self):
        assert derive_shielded_state(PROGRAM, MINT) != derive_identity_registry(PROGRAM)
        assert derive_nullifier_set(PROGRAM, MINT, 0) != derive_nullifier_set(PROGRAM, MINT, 1)

    def test_account_seeds(self):
        """Each helper derives from its Anchor seed list."""
        owner = pubkey_for("pda-owner")
        assert derive_config(PROGRAM) == find_program_address([b"config", b58decode_pubkey(PROGRAM)], PROGRAM)[0]
        assert derive_vault(PROGRAM, MINT) == find_program_address([b"vault", b58decode_pubkey(MINT)], PROGRAM)[0]
        assert derive_identity_member(PROGRAM, owner) == find_program_address(
            [b"identity_member", b58decode_pubkey(owner)], PROGRAM)[0]
        assert derive_nullifier_set(PROGRAM, MINT, 3) == find_program_address(
            [b"nullifier_set", b58decode_pubkey(MINT), b"\x03\x00\x00\x00"], PROGRAM)[0]
        addresses = {
            derive_config(PROGRAM),
            derive_vault(PROGRAM, MINT),
            derive_shielded_state(PROGRAM, MINT),
            derive_identity_member(PROGRAM, owner),
        }
        assert len(addresses) == 4

    def test_bad_pubkey(self):
        with pytest.raises(DecodeError):
            b58decode_pubkey(b58encode(b"\x01" * 20))
