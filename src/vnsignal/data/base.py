"""
Abstract base class for market data providers.

Every concrete data adapter (VNDirect, Yahoo Finance, ...) must implement
the two fetch operations defined here.  The base class also provides a
shared ``to_series`` step that runs the OHLC validation rule on the
adapter's rows, so no adapter can hand unvalidated bars to the engine.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from loguru import logger

from src.vnsignal.data.parsing import RatiosParseResult
from src.vnsignal.data.schemas import PriceSeries
from src.vnsignal.data.validation import build_price_series
from src.vnsignal.errors import UpstreamFetchError


class MarketDataProvider(ABC):
    """Contract that all market data adapters must satisfy."""

    def __init__(self, stale_tolerance_pct: float = 0.5):
        self.stale_tolerance_pct = stale_tolerance_pct

    @abstractmethod
    def fetch_price_series(self, symbol: str, lookback_days: int) -> PriceSeries:
        """Fetch the daily OHLCV history for *symbol*.

        Args:
            symbol: Exchange ticker (e.g. ``"FPT"``).
            lookback_days: Number of trading sessions requested.

        Returns:
            A validated, ascending ``PriceSeries``.

        Raises:
            UpstreamFetchError: If the provider cannot be reached or
                                returns nothing usable.
        """

    @abstractmethod
    def fetch_fundamental_ratios(self, symbol: str) -> RatiosParseResult:
        """Fetch the latest fundamental ratios for *symbol*.

        Returns:
            ``RatiosParsed`` on success or ``RatiosParseError`` when the
            payload could not be interpreted.

        Raises:
            UpstreamFetchError: On transport failure.
        """

    def to_series(self, symbol: str, rows: List[Dict[str, Any]]) -> PriceSeries:
        """Validate adapter rows and wrap them in a ``PriceSeries``.

        Raises:
            UpstreamFetchError: If no row survives validation.
        """
        series = build_price_series(
            symbol, rows, stale_tolerance_pct=self.stale_tolerance_pct
        )
        if not series.points:
            logger.error(f"{symbol}: no valid price rows after validation")
            raise UpstreamFetchError(f"{symbol}: no valid price rows returned")

        logger.debug(
            f"{symbol}: {len(series)} valid sessions "
            f"({series.points[0].trade_date} → {series.as_of})"
        )
        return series
