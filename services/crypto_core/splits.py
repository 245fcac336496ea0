# crypto_core/splits.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from services.config import MAX_INPUTS, MAX_OUTPUTS
from services.notes.models import NoteRecord


def select_notes_for_amount(notes: Iterable[NoteRecord], target: int,
                            max_inputs: int = MAX_INPUTS) -> Tuple[List[NoteRecord], int]:
    """
    Greedy smallest-first selection over unspent notes.

    Stops once the running total reaches `target` or `max_inputs` notes are
    taken. The caller compares `total < target` to detect insufficiency.
    """
    cand = sorted((n for n in notes if not n.spent), key=lambda n: (n.amount, n.leaf_index))
    total = 0
    chosen: List[NoteRecord] = []
    for n in cand:
        if total >= target or len(chosen) >= max_inputs:
            break
        chosen.append(n)
        total += n.amount
    return chosen, total


@dataclass
class OutputSlot:
    """One circuit output. Disabled slots carry a zero commitment."""

    enabled: bool
    amount: int = 0
    commitment: int = 0
    note: Optional[NoteRecord] = None
    ciphertext: bytes = field(default=b"", repr=False)
    owned: bool = False

    @classmethod
    def disabled(cls) -> "OutputSlot":
        return cls(enabled=False)


def pad_outputs(outputs: List[OutputSlot], max_outputs: int = MAX_OUTPUTS) -> List[OutputSlot]:
    if len(outputs) > max_outputs:
        raise ValueError(f"Too many outputs: {len(outputs)} > {max_outputs}")
    return list(outputs) + [OutputSlot.disabled() for _ in range(max_outputs - len(outputs))]
