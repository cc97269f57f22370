"""
Data contracts for pipeline runs.

A run never raises to its caller; everything it learned is returned in a
``PipelineReport``: one ``SymbolResult`` per evaluated symbol (including
HOLD / WATCH / SELL and insufficient-data outcomes), the recommendations
that were persisted, and an explicit ``SymbolFailure`` for every unit
that could not complete a stage.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from src.vnsignal.data.schemas import Recommendation, SeriesWarning
from src.vnsignal.enrichment.base import NarrativeAssessment
from src.vnsignal.signals.gating import ConfirmationResult
from src.vnsignal.signals.golden_cross import GoldenCrossEvent
from src.vnsignal.signals.types import InsufficientData, Signal

FailureStage = Literal["watchlist", "fetch_prices", "fetch_ratios", "persist", "unit"]


class SymbolFailure(BaseModel):
    """Why one symbol (or the watch-list itself) produced no result."""

    symbol: str
    stage: FailureStage
    error_type: str
    message: str


class SymbolResult(BaseModel):
    """Everything the pipeline derived for one symbol in one run."""

    symbol: str
    technical_signal: Optional[Signal] = Field(
        None, description="Classifier output before any pipeline adjustment",
    )
    signal: Optional[Signal] = Field(
        None, description="Final signal after recency bonus and gating",
    )
    insufficient: Optional[InsufficientData] = None
    golden_cross: Optional[GoldenCrossEvent] = None
    assessment: Optional[NarrativeAssessment] = None
    confirmation: Optional[ConfirmationResult] = None
    warnings: List[SeriesWarning] = Field(default_factory=list)
    recommendation_id: Optional[str] = None
    calls_used: int = 0


class PipelineReport(BaseModel):
    """Outcome of one pipeline run."""

    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    candidates: List[str] = Field(default_factory=list)
    results: List[SymbolResult] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    failures: List[SymbolFailure] = Field(default_factory=list)
    not_evaluated: List[str] = Field(
        default_factory=list, description="Candidates beyond the per-run cap",
    )
    skipped_by_timeout: List[str] = Field(
        default_factory=list, description="Candidates not dispatched before the run deadline",
    )

    @property
    def signals(self) -> List[Signal]:
        return [r.signal for r in self.results if r.signal is not None]

    @property
    def failed_symbols(self) -> List[str]:
        return [f.symbol for f in self.failures]

    def result_for(self, symbol: str) -> Optional[SymbolResult]:
        for result in self.results:
            if result.symbol == symbol:
                return result
        return None
