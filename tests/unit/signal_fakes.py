"""
Deterministic builders and in-memory collaborators shared by the unit tests.

Nothing here touches the network or the wall clock.
"""
import threading
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from src.vnsignal.data.base import MarketDataProvider
from src.vnsignal.data.parsing import RatiosParsed, RatiosParseError
from src.vnsignal.data.schemas import PE, ROE, FundamentalRatios, PriceSeries, Recommendation
from src.vnsignal.data.validation import build_price_series
from src.vnsignal.data.watchlist import WatchlistProvider
from src.vnsignal.enrichment.base import NarrativeAssessment, NarrativeEnricher
from src.vnsignal.errors import PersistenceError, UpstreamFetchError
from src.vnsignal.storage.base import RecommendationStore

START = date(2025, 1, 1)


def make_rows(
    closes: Sequence[float],
    volumes: Optional[Sequence[float]] = None,
    start: date = START,
) -> List[dict]:
    """One valid bar per close: high = close + 1, low = close - 1, open = close - 0.5."""
    rows = []
    for i, close in enumerate(closes):
        rows.append({
            "trade_date": start + timedelta(days=i),
            "open_price": close - 0.5,
            "high_price": close + 1,
            "low_price": close - 1,
            "close_price": close,
            "volume": volumes[i] if volumes is not None else 1_000_000,
        })
    return rows


def make_series(
    closes: Sequence[float],
    symbol: str = "FPT",
    volumes: Optional[Sequence[float]] = None,
    start: date = START,
) -> PriceSeries:
    return build_price_series(symbol, make_rows(closes, volumes, start))


def scenario_a_series(symbol: str = "FPT") -> PriceSeries:
    """35 rising sessions (100..134) on constant volume."""
    closes = [100.0 + i for i in range(35)]
    return make_series(closes, symbol=symbol)


def scenario_a_ratios(symbol: str = "FPT") -> FundamentalRatios:
    return FundamentalRatios(symbol=symbol, values={PE: 8.0, ROE: 0.18})


def falling_series(symbol: str = "HPG") -> PriceSeries:
    closes = [150.0 - i for i in range(35)]
    return make_series(closes, symbol=symbol)


def bullish_assessment(**overrides) -> NarrativeAssessment:
    data = {
        "short_term_signal": "BUY",
        "long_term_signal": "BUY",
        "confidence": 80,
        "summary": "Breakout on strong volume.",
        "buy_price": None,
        "target_price": 150.0,
        "stop_loss": 128.0,
        "risks": ["Foreign outflows"],
        "opportunities": ["Earnings growth"],
    }
    data.update(overrides)
    return NarrativeAssessment(**data)


class FakeProvider(MarketDataProvider):
    """Serves prepared series and ratios; records every call."""

    def __init__(
        self,
        series: Dict[str, PriceSeries],
        ratios: Optional[Dict[str, FundamentalRatios]] = None,
        failing_prices: Iterable[str] = (),
        failing_ratios: Iterable[str] = (),
    ):
        super().__init__()
        self.series = series
        self.ratios = ratios or {}
        self.failing_prices = set(failing_prices)
        self.failing_ratios = set(failing_ratios)
        self.price_calls: List[str] = []
        self.ratio_calls: List[str] = []
        self._lock = threading.Lock()

    def fetch_price_series(self, symbol: str, lookback_days: int) -> PriceSeries:
        with self._lock:
            self.price_calls.append(symbol)
        if symbol in self.failing_prices or symbol not in self.series:
            raise UpstreamFetchError(f"{symbol}: upstream unavailable")
        return self.series[symbol]

    def fetch_fundamental_ratios(self, symbol: str):
        with self._lock:
            self.ratio_calls.append(symbol)
        if symbol in self.failing_ratios:
            raise UpstreamFetchError(f"{symbol}: ratio endpoint down")
        ratios = self.ratios.get(symbol)
        if ratios is None:
            return RatiosParseError(symbol=symbol, reason="response has no 'data' field")
        return RatiosParsed(ratios=ratios)


class FakeWatchlist(WatchlistProvider):
    def __init__(self, symbols: List[str], error: Optional[Exception] = None):
        self.symbols = symbols
        self.error = error

    def fetch_candidate_watchlist(self, limit: int) -> List[str]:
        if self.error is not None:
            raise self.error
        return self.symbols[:limit]


class MemoryStore(RecommendationStore):
    def __init__(self, failing: Iterable[str] = ()):
        self.failing = set(failing)
        self.records: Dict[str, Recommendation] = {}
        self._lock = threading.Lock()

    def persist(self, recommendation: Recommendation) -> str:
        if recommendation.symbol in self.failing:
            raise PersistenceError(f"{recommendation.symbol}: disk full")
        with self._lock:
            rec_id = f"rec-{len(self.records) + 1}"
            self.records[rec_id] = recommendation.model_copy(update={"id": rec_id})
        return rec_id

    def get(self, recommendation_id: str) -> Optional[Recommendation]:
        return self.records.get(recommendation_id)


class StubEnricher(NarrativeEnricher):
    """Returns a fixed assessment or raises a fixed error."""

    def __init__(
        self,
        assessment: Optional[NarrativeAssessment] = None,
        error: Optional[Exception] = None,
    ):
        super().__init__(min_interval_seconds=0)
        self.assessment = assessment
        self.error = error
        self.calls: List[str] = []

    def _request_assessment(self, symbol, technical, fundamental):
        self.calls.append(symbol)
        if self.error is not None:
            raise self.error
        return self.assessment
