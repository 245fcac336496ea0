"""
Field helper tests
"""

import random

import pytest

from services.crypto_core.field import (
    FIELD_MODULUS,
    bytes_to_int_be,
    field_from_bytes,
    field_to_hex,
    from_hex,
    int_to_bytes32,
    mod_field,
    random_field,
    to_hex,
)


class TestModField:
    """Tests for modular reduction."""

    def test_output_in_range(self):
        """Reduced values land in [0, p), negatives included."""
        rng = random.Random(1)
        for _ in range(200):
            v = rng.randrange(-(1 << 300), 1 << 300)
            assert 0 <= mod_field(v) < FIELD_MODULUS

    def test_addition_compatible(self):
        """mod(mod(a) + mod(b)) == mod(a + b)."""
        rng = random.Random(2)
        for _ in range(200):
            a = rng.randrange(-(1 << 260), 1 << 260)
            b = rng.randrange(-(1 << 260), 1 << 260)
            assert mod_field(mod_field(a) + mod_field(b)) == mod_field(a + b)

    def test_modulus_wraps_to_zero(self):
        assert mod_field(FIELD_MODULUS) == 0
        assert mod_field(-1) == FIELD_MODULUS - 1


class TestEncoding:
    """Tests for 32-byte big-endian encoding."""

    def test_big_endian(self):
        raw = int_to_bytes32(0x0102)
        assert len(raw) == 32
        assert raw[-2:] == b"\x01\x02"
        assert bytes_to_int_be(raw) == 0x0102

    def test_too_large_rejected(self):
        with pytest.raises(ValueError):
            int_to_bytes32(1 << 256)

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            int_to_bytes32(-5)

    def test_field_from_bytes_reduces(self):
        assert field_from_bytes(b"\xff" * 32) < FIELD_MODULUS

    def test_hex_helpers(self):
        assert from_hex("0x" + to_hex(b"\x00\xab")) == b"\x00\xab"
        assert field_to_hex(1) == "00" * 31 + "01"

    def test_random_field_in_range(self):
        for _ in range(20):
            assert 0 <= random_field() < FIELD_MODULUS
