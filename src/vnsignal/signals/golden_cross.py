"""
Golden-cross detector.

Flags symbols whose fast moving average currently sits above the slow
one.  Two horizon configurations are supported:

* ``short``: MA10 / MA30
* ``long``:  MA50 / MA200

Inclusion only requires "fast above slow right now".  The age of the
most recent upward cross, looked up inside a trailing window, adds a
tapering confidence bonus (≤7 days +15, ≤30 days +10, ≤60 days +5) and
never excludes a symbol.
"""
import math
from datetime import date
from typing import Dict, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel

from src.vnsignal.config import DetectorConfig
from src.vnsignal.data.schemas import PriceSeries
from src.vnsignal.indicators.technical import days_since_cross, sma

HORIZON_PERIODS: Dict[str, Tuple[int, int]] = {
    "short": (10, 30),
    "long": (50, 200),
}

# (max age in days, bonus), checked in order.
RECENCY_BONUS: List[Tuple[int, float]] = [(7, 15.0), (30, 10.0), (60, 5.0)]


class GoldenCrossEvent(BaseModel):
    symbol: str
    horizon: str
    fast_period: int
    slow_period: int
    fast_ma: float
    slow_ma: float
    days_since_cross: Optional[int] = None
    confidence_bonus: float = 0.0
    as_of: date

    @property
    def spread_pct(self) -> float:
        return (self.fast_ma - self.slow_ma) / self.slow_ma * 100


def recency_bonus(days: Optional[int]) -> float:
    """Confidence bonus for a cross that happened *days* ago."""
    if days is None:
        return 0.0
    for max_age, bonus in RECENCY_BONUS:
        if days <= max_age:
            return bonus
    return 0.0


class GoldenCrossDetector:
    """Evaluates one horizon configuration over price series."""

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()
        self.fast_period, self.slow_period = HORIZON_PERIODS[self.config.horizon]

    def evaluate(self, symbol: str, series: PriceSeries) -> Optional[GoldenCrossEvent]:
        """Return an event if the fast MA is above the slow MA on the latest bar.

        Returns ``None`` both when there is no cross and when the series is
        too short for the slow average.
        """
        if len(series) < self.slow_period:
            logger.debug(
                f"{symbol}: {len(series)} sessions, {self.slow_period} needed "
                f"for {self.config.horizon} golden cross"
            )
            return None

        closes = series.closes
        fast = sma(closes, self.fast_period)
        slow = sma(closes, self.slow_period)
        fast_now, slow_now = fast[-1], slow[-1]

        if math.isnan(fast_now) or math.isnan(slow_now) or fast_now <= slow_now:
            return None

        days = days_since_cross(
            fast, slow, series.dates, self.config.lookback_sessions
        )
        event = GoldenCrossEvent(
            symbol=symbol,
            horizon=self.config.horizon,
            fast_period=self.fast_period,
            slow_period=self.slow_period,
            fast_ma=fast_now,
            slow_ma=slow_now,
            days_since_cross=days,
            confidence_bonus=recency_bonus(days),
            as_of=series.as_of,
        )
        logger.info(
            f"{symbol}: golden cross MA{self.fast_period}/MA{self.slow_period} "
            f"(crossed {days if days is not None else '>lookback'} days ago, "
            f"bonus +{event.confidence_bonus:.0f})"
        )
        return event

    def scan(self, series_by_symbol: Dict[str, PriceSeries]) -> List[GoldenCrossEvent]:
        """Evaluate a batch; events are returned freshest cross first."""
        events: List[GoldenCrossEvent] = []
        for symbol, series in series_by_symbol.items():
            event = self.evaluate(symbol, series)
            if event is not None:
                events.append(event)
        events.sort(key=lambda e: (-e.confidence_bonus, e.symbol))
        logger.success(
            f"Golden-cross scan: {len(events)}/{len(series_by_symbol)} symbols flagged"
        )
        return events
