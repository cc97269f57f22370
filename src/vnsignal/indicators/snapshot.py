"""
Indicator snapshots and their short-lived cache.

An ``IndicatorSnapshot`` is the latest-session reading of every indicator
the classifier needs.  It is derived data: always recomputable from the
price series, never persisted as a source of truth.

``SnapshotCache`` is an explicit object handed to the pipeline.  Entries
are keyed per symbol and expire after a TTL; an entry is also treated as
a miss when the series it was computed from is no longer the latest one
(``as_of`` differs), so a fresh bar always produces a fresh snapshot.
"""
import math
import threading
import time
from datetime import date
from typing import Callable, Dict, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict

from src.vnsignal.config import IndicatorConfig
from src.vnsignal.data.schemas import PriceSeries
from src.vnsignal.errors import DataInsufficientError
from src.vnsignal.indicators.technical import (
    WoodiePivots,
    bollinger_bands,
    momentum,
    pivots_from_series,
    range_position,
    sma,
    volume_ratio,
)


class IndicatorSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    as_of: date
    close: float
    prev_close: Optional[float] = None
    price_change_pct: Optional[float] = None

    ma_fast: float
    ma_slow: float
    ma_fast_period: int = 10
    ma_slow_period: int = 30

    bollinger_upper: float
    bollinger_middle: float
    bollinger_lower: float

    pivots: Optional[WoodiePivots] = None
    pivot_support: Optional[float] = None
    pivot_resistance: Optional[float] = None

    momentum_5d: Optional[float] = None
    momentum_10d: Optional[float] = None
    volume_ratio: Optional[float] = None
    range_position: Optional[float] = None

    @property
    def ma10(self) -> float:
        return self.ma_fast

    @property
    def ma30(self) -> float:
        return self.ma_slow

    @property
    def is_up_session(self) -> bool:
        return self.prev_close is None or self.close >= self.prev_close


def compute_snapshot(
    series: PriceSeries,
    config: Optional[IndicatorConfig] = None,
) -> IndicatorSnapshot:
    """Compute the latest indicator readings for *series*.

    Raises:
        DataInsufficientError: If the series is shorter than
            ``config.min_points``.
    """
    config = config or IndicatorConfig()
    if len(series) < config.min_points:
        raise DataInsufficientError(series.symbol, config.min_points, len(series))

    closes = series.closes
    ma_fast = sma(closes, config.ma_fast_period)[-1]
    ma_slow = sma(closes, config.ma_slow_period)[-1]
    bands = bollinger_bands(
        closes, config.bollinger_period, config.bollinger_std_multiplier
    )

    # min_points covers every window above, so NaN here means bad input.
    if any(math.isnan(v) for v in (ma_fast, ma_slow, bands.middle[-1])):
        raise DataInsufficientError(series.symbol, config.min_points, len(series))

    pivots = pivots_from_series(series.points)
    prev_close = closes[-2] if len(closes) >= 2 else None
    change_pct = (
        (closes[-1] - prev_close) / prev_close * 100 if prev_close else None
    )

    return IndicatorSnapshot(
        symbol=series.symbol,
        as_of=series.as_of,
        close=closes[-1],
        prev_close=prev_close,
        price_change_pct=change_pct,
        ma_fast=ma_fast,
        ma_slow=ma_slow,
        ma_fast_period=config.ma_fast_period,
        ma_slow_period=config.ma_slow_period,
        bollinger_upper=bands.upper[-1],
        bollinger_middle=bands.middle[-1],
        bollinger_lower=bands.lower[-1],
        pivots=pivots,
        pivot_support=pivots.S2 if pivots else None,
        pivot_resistance=pivots.R3 if pivots else None,
        momentum_5d=momentum(closes, 5),
        momentum_10d=momentum(closes, 10),
        volume_ratio=volume_ratio(series.volumes, config.volume_avg_period),
        range_position=range_position(closes, config.range_window),
    )


class SnapshotCache:
    """Per-symbol TTL cache of indicator snapshots.

    Thread-safe; each pipeline unit only touches its own symbol's entry.
    """

    def __init__(
        self,
        ttl_seconds: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[IndicatorSnapshot, float]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, symbol: str, as_of: date) -> Optional[IndicatorSnapshot]:
        """Return the cached snapshot if it is unexpired and matches *as_of*."""
        with self._lock:
            entry = self._entries.get(symbol)
            if entry is None:
                self.misses += 1
                return None

            snapshot, stored_at = entry
            expired = self._clock() - stored_at > self.ttl_seconds
            if expired or snapshot.as_of != as_of:
                del self._entries[symbol]
                self.misses += 1
                return None

            self.hits += 1
            return snapshot

    def put(self, snapshot: IndicatorSnapshot) -> None:
        with self._lock:
            self._entries[snapshot.symbol] = (snapshot, self._clock())

    def get_or_compute(
        self,
        series: PriceSeries,
        config: Optional[IndicatorConfig] = None,
    ) -> IndicatorSnapshot:
        """Serve *series*' snapshot from cache, computing it on a miss.

        Raises:
            DataInsufficientError: Propagated from ``compute_snapshot``.
        """
        if series.as_of is not None:
            cached = self.get(series.symbol, series.as_of)
            if cached is not None:
                logger.debug(f"{series.symbol}: snapshot cache hit ({cached.as_of})")
                return cached

        snapshot = compute_snapshot(series, config)
        self.put(snapshot)
        return snapshot

    def invalidate(self, symbol: str) -> None:
        with self._lock:
            self._entries.pop(symbol, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
