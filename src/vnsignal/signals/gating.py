"""
Dual-confirmation gate for the golden-cross BUY path.

A BUY is persisted only when every check below passes.  It is an AND
gate, not a vote: a strong technical score cannot make up for a missing
narrative assessment or an absent target price.

1. The technical classification is BUY.
2. A narrative assessment is present and its short-term call is BUY.
3. ``(technical_score + fundamental_score) / 2 >= min_combined_score``.
4. The assessment supplies a target price above the current price.

Any failed check downgrades the result to WATCH and is listed in
``failed_checks`` so reports can explain the downgrade.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from src.vnsignal.enrichment.base import NarrativeAssessment
from src.vnsignal.signals.types import Direction, Signal


class ConfirmationResult(BaseModel):
    confirmed: bool
    direction: Direction
    combined_score: float
    target_price: Optional[float] = None
    failed_checks: List[str] = Field(default_factory=list)


def evaluate_dual_confirmation(
    signal: Signal,
    assessment: Optional[NarrativeAssessment],
    current_price: float,
    min_combined_score: float = 70.0,
) -> ConfirmationResult:
    """Apply the dual-confirmation predicate to one classified signal.

    Args:
        signal: The engine's technical classification.
        assessment: Narrative assessment, or ``None`` when enrichment was
                    skipped or failed.
        current_price: Latest close the recommendation would be issued at.
        min_combined_score: Minimum average of technical and fundamental
                            scores.
    """
    failed: List[str] = []
    combined = signal.combined_score

    if signal.direction != "BUY":
        failed.append(f"technical signal is {signal.direction}, not BUY")

    if assessment is None:
        failed.append("no narrative assessment available")
    elif not assessment.is_bullish:
        failed.append(
            f"narrative short-term call is {assessment.short_term_signal}, not BUY"
        )

    if combined < min_combined_score:
        failed.append(
            f"combined score {combined:.1f} below {min_combined_score:.0f}"
        )

    target = assessment.target_price if assessment is not None else None
    if target is None:
        failed.append("no target price derivable")
    elif target <= current_price:
        failed.append(
            f"target price {target:,.2f} not above current price {current_price:,.2f}"
        )

    confirmed = not failed
    return ConfirmationResult(
        confirmed=confirmed,
        direction="BUY" if confirmed else "WATCH",
        combined_score=combined,
        target_price=target if confirmed else None,
        failed_checks=failed,
    )
