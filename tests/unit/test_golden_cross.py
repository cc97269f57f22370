"""
Tests for the golden-cross detector.

Series are built as 30 flat sessions at 100 followed by N rising sessions,
so the MA10/MA30 cross happens exactly on the first rising session and its
age in calendar days is N - 1.
"""
import pytest

from signal_fakes import falling_series, make_series
from src.vnsignal.config import DetectorConfig
from src.vnsignal.signals.golden_cross import GoldenCrossDetector, recency_bonus


def _crossed_series(rising_sessions: int, symbol: str = "FPT"):
    closes = [100.0] * 30 + [101.0 + i for i in range(rising_sessions)]
    return make_series(closes, symbol=symbol)


@pytest.mark.parametrize("days,bonus", [
    (0, 15.0), (7, 15.0), (8, 10.0), (30, 10.0), (31, 5.0), (60, 5.0), (61, 0.0), (None, 0.0),
])
def test_recency_bonus_tapers(days, bonus):
    assert recency_bonus(days) == bonus


class TestEvaluate:
    def test_fresh_cross_gets_top_bonus(self):
        event = GoldenCrossDetector().evaluate("FPT", _crossed_series(5))
        assert event is not None
        assert event.days_since_cross == 4
        assert event.confidence_bonus == 15.0
        assert (event.fast_period, event.slow_period) == (10, 30)

    def test_month_old_cross(self):
        event = GoldenCrossDetector().evaluate("FPT", _crossed_series(26))
        assert event.days_since_cross == 25
        assert event.confidence_bonus == 10.0

    def test_older_cross(self):
        event = GoldenCrossDetector().evaluate("FPT", _crossed_series(46))
        assert event.days_since_cross == 45
        assert event.confidence_bonus == 5.0

    def test_cross_beyond_lookback_is_still_included(self):
        event = GoldenCrossDetector().evaluate("FPT", _crossed_series(70))
        assert event is not None
        assert event.days_since_cross is None
        assert event.confidence_bonus == 0.0

    def test_fast_below_slow_is_not_flagged(self):
        assert GoldenCrossDetector().evaluate("HPG", falling_series()) is None

    def test_long_horizon_needs_200_sessions(self):
        detector = GoldenCrossDetector(DetectorConfig(horizon="long"))
        assert (detector.fast_period, detector.slow_period) == (50, 200)
        assert detector.evaluate("FPT", _crossed_series(70)) is None

    def test_long_horizon_cross(self):
        closes = [100.0] * 200 + [101.0 + i for i in range(10)]
        event = GoldenCrossDetector(DetectorConfig(horizon="long")).evaluate(
            "FPT", make_series(closes)
        )
        assert event is not None
        assert event.days_since_cross == 9
        assert event.confidence_bonus == 10.0


def test_scan_orders_freshest_first():
    batch = {
        "OLD": _crossed_series(46, "OLD"),
        "NEW": _crossed_series(5, "NEW"),
        "DOWN": falling_series("DOWN"),
    }
    events = GoldenCrossDetector().scan(batch)
    assert [e.symbol for e in events] == ["NEW", "OLD"]
