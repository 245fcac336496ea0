"""
Note selection tests
"""

import pytest

from services.crypto_core.splits import OutputSlot, pad_outputs, select_notes_for_amount
from services.notes.models import NoteRecord, note_id


def make_note(leaf: int, amount: int, spent: bool = False) -> NoteRecord:
    return NoteRecord(
        id=note_id("mint", leaf),
        mint="mint",
        amount=amount,
        randomness=leaf + 1,
        recipient_tag_hash=9,
        commitment=1000 + leaf,
        leaf_index=leaf,
        spent=spent,
    )


class TestSelectNotes:
    """Tests for smallest-first greedy selection."""

    def test_two_notes_cover_target(self):
        """Notes of 1000 and 2000 cover 2500 with total 3000."""
        notes = [make_note(0, 2000), make_note(1, 1000)]
        chosen, total = select_notes_for_amount(notes, 2500, 4)
        assert total == 3000
        assert [n.amount for n in chosen] == [1000, 2000]

    def test_stops_at_target(self):
        notes = [make_note(i, 100) for i in range(5)]
        chosen, total = select_notes_for_amount(notes, 150, 4)
        assert len(chosen) == 2
        assert total == 200

    def test_spent_ignored(self):
        notes = [make_note(0, 5000, spent=True), make_note(1, 100)]
        chosen, total = select_notes_for_amount(notes, 1000, 4)
        assert total == 100
        assert [n.leaf_index for n in chosen] == [1]

    def test_max_inputs_cap(self):
        """Insufficiency shows as total below target."""
        notes = [make_note(i, 10) for i in range(10)]
        chosen, total = select_notes_for_amount(notes, 1000, 4)
        assert len(chosen) == 4
        assert total == 40

    def test_ties_by_leaf(self):
        notes = [make_note(3, 10), make_note(1, 10)]
        chosen, _ = select_notes_for_amount(notes, 10, 4)
        assert chosen[0].leaf_index == 1


class TestOutputs:
    """Tests for output slot padding."""

    def test_pad(self):
        slots = pad_outputs([OutputSlot(True, 5, 77)], 2)
        assert len(slots) == 2
        assert slots[1].enabled is False
        assert slots[1].commitment == 0

    def test_too_many(self):
        with pytest.raises(ValueError):
            pad_outputs([OutputSlot(True), OutputSlot(True), OutputSlot(True)], 2)
