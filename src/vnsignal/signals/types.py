"""
Data contracts for classified signals.

A ``Signal`` is immutable once produced: re-running the classifier on new
data yields a new instance, and later pipeline stages (golden-cross bonus,
dual-confirmation downgrade) derive copies via ``model_copy`` instead of
mutating the original.

``InsufficientData`` is the classifier's explicit refusal to score.  It is
a distinct result type so a short history can never be mistaken for a
HOLD.
"""
from datetime import date
from typing import List, Literal, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

Direction = Literal["BUY", "HOLD", "WATCH", "SELL"]


class Signal(BaseModel):
    """Classified trading signal for one symbol at one as-of date."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    direction: Direction
    confidence: float = Field(..., ge=0, le=100)

    net_score: float = Field(..., description="bullish_weight - bearish_weight")
    bullish_weight: float = Field(..., ge=0)
    bearish_weight: float = Field(..., ge=0)

    technical_score: float = Field(..., ge=0, le=100)
    fundamental_score: float = Field(..., ge=0, le=100)
    fundamental_coverage: float = Field(
        0.0, ge=0, le=100,
        description="Fundamental weight actually backed by a ratio",
    )

    technical_reasons: Tuple[str, ...] = ()
    fundamental_reasons: Tuple[str, ...] = ()
    notes: Tuple[str, ...] = Field(
        (), description="Pipeline annotations (cross recency, gate outcome)",
    )

    computed_at: date = Field(..., description="As-of date of the input series")

    @computed_field
    @property
    def reasons(self) -> List[str]:
        """Ordered reasons: technical first, then fundamental, then notes."""
        return [*self.technical_reasons, *self.fundamental_reasons, *self.notes]

    @property
    def combined_score(self) -> float:
        return (self.technical_score + self.fundamental_score) / 2


class InsufficientData(BaseModel):
    """Explicit "cannot score" result for a too-short series."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["insufficient_data"] = "insufficient_data"
    symbol: str
    required: int
    available: int
    reason: str


ClassificationResult = Union[Signal, InsufficientData]
