from __future__ import annotations

from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from services.crypto_core.babyjub import Point
from services.crypto_core.ecies import Ciphertext

# Field elements are held as ints in memory and persisted as decimal strings
# so stored records stay human-diffable and survive JSON number limits.
NonNegInt = Annotated[int, Field(ge=0)]
FieldInt = Annotated[NonNegInt, PlainSerializer(lambda v: str(v), return_type=str, when_used="json")]
OptFieldInt = Annotated[
    Optional[NonNegInt],
    PlainSerializer(lambda v: None if v is None else str(v), return_type=Optional[str], when_used="json"),
]


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, validate_assignment=True)


def note_id(mint: str, leaf_index: int) -> str:
    return f"{mint}:{leaf_index}"


class NoteRecord(_Record):
    id: str = Field(..., description="<mint>:<leafIndex>")
    mint: str = Field(..., description="Asset mint (base58).")
    amount: FieldInt = Field(..., description="Amount in base units.")
    randomness: FieldInt = Field(..., description="Commitment randomness.")
    recipient_tag_hash: FieldInt = Field(..., description="Poseidon(view pubkey).")
    commitment: FieldInt = Field(..., description="Poseidon(amount, randomness, tag hash).")
    sender_secret: OptFieldInt = Field(None, description="Nullifier secret; equals randomness for received notes.")
    c1x: OptFieldInt = None
    c1y: OptFieldInt = None
    c2_amount: OptFieldInt = None
    c2_randomness: OptFieldInt = None
    enc_randomness: OptFieldInt = Field(None, description="ECIES ephemeral scalar, known only to the sender.")
    recipient_pubkey_x: OptFieldInt = None
    recipient_pubkey_y: OptFieldInt = None
    view_key_index: Optional[NonNegInt] = Field(None, description="View-key index that decrypted this note.")
    leaf_index: int = Field(..., ge=0, description="Position in the note tree.")
    spent: bool = False

    @property
    def ciphertext(self) -> Optional[Ciphertext]:
        parts = (self.c1x, self.c1y, self.c2_amount, self.c2_randomness)
        if any(v is None for v in parts):
            return None
        return Ciphertext(*parts)  # type: ignore[arg-type]

    @property
    def recipient_pubkey(self) -> Optional[Point]:
        if self.recipient_pubkey_x is None or self.recipient_pubkey_y is None:
            return None
        return (self.recipient_pubkey_x, self.recipient_pubkey_y)


class CommitmentCache(_Record):
    commitments: List[FieldInt] = Field(default_factory=list, description="Leaves ordered by leaf index.")
    complete: bool = Field(False, description="True only when the list mirrors the full on-chain range.")


class NoteList(_Record):
    notes: List[NoteRecord] = Field(default_factory=list)


class IdentityCommitments(_Record):
    commitments: List[FieldInt] = Field(default_factory=list)
