"""
Narrative enrichment contract.

An enricher asks an external model for a qualitative read on one symbol
(short/long-term call, price levels, risks, opportunities).  The result is
advisory: it never changes the engine's own numeric classification, and
the only place it can influence an outcome is the dual-confirmation gate.

``NarrativeEnricher.enrich`` is the single public entry point and it never
raises.  Any failure (timeout, transport error, unparseable answer) is
logged and turned into ``None``, so callers branch on an explicit
``Optional[NarrativeAssessment]`` instead of wrapping every call in
``try``.  Dispatch throttling lives here as well, so that every concrete
enricher respects the same minimum spacing between upstream calls.
"""
import threading
import time
from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, Dict, List, Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field

from src.vnsignal.errors import EnrichmentError, EnrichmentTimeoutError

NarrativeCall = Literal["BUY", "SELL", "WATCH"]


class NarrativeAssessment(BaseModel):
    """Structured answer expected from the narrative model."""

    short_term_signal: NarrativeCall = Field(
        description="Call for the next 1-4 weeks: BUY, SELL or WATCH."
    )
    long_term_signal: NarrativeCall = Field(
        description="Call for the next 6-12 months: BUY, SELL or WATCH."
    )
    confidence: float = Field(
        ge=0, le=100,
        description="Confidence in the short-term call, 0-100.",
    )
    summary: str = Field(description="Two or three sentence rationale.")
    buy_price: Optional[float] = Field(
        None, gt=0,
        description="Suggested entry price in VND; null if none.",
    )
    target_price: Optional[float] = Field(
        None, gt=0,
        description="Price target in VND; null if it cannot be justified.",
    )
    stop_loss: Optional[float] = Field(
        None, gt=0,
        description="Stop-loss level in VND; null if none.",
    )
    risks: List[str] = Field(default_factory=list, description="Key risks.")
    opportunities: List[str] = Field(
        default_factory=list, description="Key opportunities."
    )

    @property
    def is_bullish(self) -> bool:
        return self.short_term_signal == "BUY"


class TechnicalContext(BaseModel):
    """Technical facts handed to the model for one symbol."""

    symbol: str
    as_of: date
    close: float
    ma_fast: float
    ma_slow: float
    bollinger_upper: float
    bollinger_lower: float
    pivot_support: Optional[float] = None
    pivot_resistance: Optional[float] = None
    momentum_5d: Optional[float] = None
    momentum_10d: Optional[float] = None
    volume_ratio: Optional[float] = None
    direction: str
    confidence: float
    reasons: List[str] = Field(default_factory=list)

    def render(self) -> str:
        lines = [
            f"As of {self.as_of}: close {self.close:,.2f}",
            f"Fast MA {self.ma_fast:,.2f} / slow MA {self.ma_slow:,.2f}",
            f"Bollinger {self.bollinger_lower:,.2f} - {self.bollinger_upper:,.2f}",
        ]
        if self.pivot_support is not None and self.pivot_resistance is not None:
            lines.append(
                f"Woodie S2 {self.pivot_support:,.2f} / R3 {self.pivot_resistance:,.2f}"
            )
        if self.momentum_5d is not None:
            lines.append(f"Momentum 5d {self.momentum_5d:+.2f}%")
        if self.momentum_10d is not None:
            lines.append(f"Momentum 10d {self.momentum_10d:+.2f}%")
        if self.volume_ratio is not None:
            lines.append(f"Volume {self.volume_ratio:.2f}x 20-day average")
        lines.append(f"Engine signal: {self.direction} ({self.confidence:.0f})")
        lines.extend(f"- {r}" for r in self.reasons)
        return "\n".join(lines)


class FundamentalContext(BaseModel):
    """Fundamental facts handed to the model for one symbol."""

    symbol: str
    ratios: Dict[str, float] = Field(default_factory=dict)
    score: float = 50.0
    reasons: List[str] = Field(default_factory=list)

    def render(self) -> str:
        if not self.ratios:
            return "No fundamental ratios available."
        lines = [f"{code}: {value:,.4g}" for code, value in sorted(self.ratios.items())]
        lines.append(f"Engine fundamental score: {self.score:.1f}/100")
        lines.extend(f"- {r}" for r in self.reasons)
        return "\n".join(lines)


class NarrativeEnricher(ABC):
    """Base class for optional, failure-tolerant narrative enrichment."""

    def __init__(
        self,
        min_interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._throttle_lock = threading.Lock()
        self._last_call: Optional[float] = None

    def _throttle(self) -> None:
        """Keep at least ``min_interval_seconds`` between two model calls."""
        with self._throttle_lock:
            if self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval_seconds:
                    self._sleep(self.min_interval_seconds - elapsed)
            self._last_call = self._clock()

    def enrich(
        self,
        symbol: str,
        technical: TechnicalContext,
        fundamental: FundamentalContext,
    ) -> Optional[NarrativeAssessment]:
        """Request an assessment for *symbol*; ``None`` on any failure."""
        self._throttle()
        try:
            assessment = self._request_assessment(symbol, technical, fundamental)
        except (EnrichmentTimeoutError, TimeoutError) as e:
            logger.warning(f"{symbol}: narrative enrichment timed out ({e})")
            return None
        except EnrichmentError as e:
            logger.warning(f"{symbol}: narrative enrichment failed ({e})")
            return None
        except Exception as e:
            logger.error(f"{symbol}: narrative enrichment crashed: {e}")
            return None

        if assessment is None:
            logger.warning(f"{symbol}: narrative model returned no assessment")
            return None

        logger.info(
            f"{symbol}: narrative call {assessment.short_term_signal} "
            f"(confidence {assessment.confidence:.0f}, target {assessment.target_price})"
        )
        return assessment

    @abstractmethod
    def _request_assessment(
        self,
        symbol: str,
        technical: TechnicalContext,
        fundamental: FundamentalContext,
    ) -> Optional[NarrativeAssessment]:
        """Call the upstream model.  May raise; ``enrich`` contains it."""
