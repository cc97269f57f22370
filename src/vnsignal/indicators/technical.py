"""
Indicator library.

Pure functions over ordered (ascending) price and volume sequences:
simple moving average, Bollinger Bands, Woodie pivot points and the small
set of derived readings the classifier consumes (momentum, volume ratio,
52-week range position, days since the last moving-average cross).

Conventions shared by every function here:

* Inputs are never mutated; each call returns freshly allocated output.
* Rolling outputs have the same length as the input.  Indices without a
  full trailing window hold ``NaN``, so a series shorter than the window
  yields ``NaN`` everywhere.
* Scalar readings return ``None`` when the history is too short.
* No I/O and no clock access.
"""
import math
from datetime import date
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel

from src.vnsignal.data.schemas import PricePoint


class BollingerBands(BaseModel):
    upper: List[float]
    middle: List[float]
    lower: List[float]


class WoodiePivots(BaseModel):
    """Woodie pivot levels derived from one completed session."""

    pivot: float
    R1: float
    R2: float
    R3: float
    S1: float
    S2: float
    S3: float


def _check_period(period: int) -> None:
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")


def sma(values: Sequence[float], period: int) -> List[float]:
    """Trailing simple moving average.

    Args:
        values: Ascending observations (usually adjusted closes).
        period: Window length in sessions.

    Returns:
        A list of ``len(values)`` floats; the first ``period - 1`` entries
        are ``NaN``.

    Raises:
        ValueError: If *period* < 1.
    """
    _check_period(period)
    series = pd.Series(list(values), dtype="float64")
    return series.rolling(window=period, min_periods=period).mean().tolist()


def bollinger_bands(
    values: Sequence[float],
    period: int = 20,
    std_multiplier: float = 2.0,
) -> BollingerBands:
    """Bollinger Bands: SMA(period) ± multiplier × population std.

    The standard deviation is taken over the same trailing window as the
    middle band with ``ddof=0``.  Leading ``NaN`` policy matches ``sma``.
    """
    _check_period(period)
    series = pd.Series(list(values), dtype="float64")
    rolling = series.rolling(window=period, min_periods=period)
    middle = rolling.mean()
    band = std_multiplier * rolling.std(ddof=0)

    return BollingerBands(
        upper=(middle + band).tolist(),
        middle=middle.tolist(),
        lower=(middle - band).tolist(),
    )


def woodie_pivot_points(
    prev_high: float,
    prev_low: float,
    prev_close: float,
) -> WoodiePivots:
    """Woodie pivots from the previous completed session's H/L/C.

    The close is double-weighted: ``pivot = (H + L + 2C) / 4``.  Levels are
    returned unrounded; rounding is a display concern.
    """
    pivot = (prev_high + prev_low + 2 * prev_close) / 4
    spread = prev_high - prev_low

    return WoodiePivots(
        pivot=pivot,
        R1=2 * pivot - prev_low,
        R2=pivot + spread,
        R3=prev_high + 2 * (pivot - prev_low),
        S1=2 * pivot - prev_high,
        S2=pivot - spread,
        S3=prev_low - 2 * (prev_high - pivot),
    )


def pivots_from_series(points: Sequence[PricePoint]) -> Optional[WoodiePivots]:
    """Pivots for the latest session, computed from the one before it.

    The latest point may be a partial (in-progress) session, so only
    ``points[-2]`` is read.  Returns ``None`` for fewer than two points.
    """
    if len(points) < 2:
        return None
    prev = points[-2]
    return woodie_pivot_points(
        prev.adjusted_high, prev.adjusted_low, prev.adjusted_close
    )


def momentum(values: Sequence[float], days: int) -> Optional[float]:
    """Percent change between the latest value and the one *days* back."""
    _check_period(days)
    if len(values) <= days:
        return None
    base = values[-1 - days]
    if base <= 0:
        return None
    return (values[-1] - base) / base * 100


def volume_ratio(volumes: Sequence[float], period: int = 20) -> Optional[float]:
    """Latest volume relative to the mean of the preceding *period* sessions."""
    _check_period(period)
    if len(volumes) < period + 1:
        return None
    average = float(np.mean(volumes[-period - 1:-1]))
    if average <= 0:
        return None
    return volumes[-1] / average


def range_position(values: Sequence[float], window: int = 250) -> Optional[float]:
    """Position of the latest value inside the trailing high/low range.

    Returns a value in ``[0, 1]`` (0 = at the low, 1 = at the high), or
    ``None`` when fewer than two values exist or the range is flat.
    """
    _check_period(window)
    if len(values) < 2:
        return None
    trailing = values[-window:]
    high, low = max(trailing), min(trailing)
    if high == low:
        return None
    return (values[-1] - low) / (high - low)


def days_since_cross(
    fast: Sequence[float],
    slow: Sequence[float],
    dates: Sequence[date],
    lookback: int,
) -> Optional[int]:
    """Calendar days since the fast line last crossed above the slow line.

    Only crosses inside the trailing *lookback* sessions are considered.
    A cross at index ``i`` means ``fast - slow`` was ``<= 0`` at ``i - 1``
    and ``> 0`` at ``i``; indices where either average is ``NaN`` are
    ignored.

    Returns:
        Days between the cross session and the latest session, or ``None``
        if no upward cross occurred in the window.
    """
    _check_period(lookback)
    if not (len(fast) == len(slow) == len(dates)):
        raise ValueError("fast, slow and dates must have the same length")
    if len(dates) < 2:
        return None

    first = max(1, len(dates) - lookback)
    for i in range(len(dates) - 1, first - 1, -1):
        values = (fast[i], slow[i], fast[i - 1], slow[i - 1])
        if any(math.isnan(v) for v in values):
            continue
        if fast[i - 1] - slow[i - 1] <= 0 < fast[i] - slow[i]:
            return (dates[-1] - dates[i]).days
    return None
