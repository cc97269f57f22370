"""
Tests for the per-symbol indicator snapshot cache.
"""
import pytest

from signal_fakes import make_series, scenario_a_series
from src.vnsignal.errors import DataInsufficientError
from src.vnsignal.indicators.snapshot import SnapshotCache, compute_snapshot


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_second_lookup_is_a_hit(clock):
    cache = SnapshotCache(ttl_seconds=120, clock=clock)
    series = scenario_a_series()

    first = cache.get_or_compute(series)
    second = cache.get_or_compute(series)

    assert first is second
    assert cache.hits == 1
    assert cache.misses == 1


def test_entry_expires_after_ttl(clock):
    cache = SnapshotCache(ttl_seconds=120, clock=clock)
    series = scenario_a_series()
    cache.get_or_compute(series)

    clock.now = 120.0
    assert cache.get("FPT", series.as_of) is not None

    clock.now = 120.5
    assert cache.get("FPT", series.as_of) is None
    assert len(cache) == 0


def test_newer_bar_is_never_served_a_stale_snapshot(clock):
    cache = SnapshotCache(ttl_seconds=120, clock=clock)
    cache.get_or_compute(scenario_a_series())

    extended = make_series([100.0 + i for i in range(36)])
    snapshot = cache.get_or_compute(extended)

    assert snapshot.as_of == extended.as_of
    assert snapshot.close == 135.0


def test_cached_value_matches_fresh_computation(clock):
    cache = SnapshotCache(clock=clock)
    series = scenario_a_series()
    cache.get_or_compute(series)
    assert cache.get_or_compute(series) == compute_snapshot(series)


def test_invalidate_and_clear(clock):
    cache = SnapshotCache(clock=clock)
    cache.get_or_compute(scenario_a_series("FPT"))
    cache.get_or_compute(scenario_a_series("VNM"))
    assert len(cache) == 2

    cache.invalidate("FPT")
    assert len(cache) == 1
    cache.invalidate("NOPE")

    cache.clear()
    assert len(cache) == 0


def test_short_series_is_not_cached(clock):
    cache = SnapshotCache(clock=clock)
    with pytest.raises(DataInsufficientError):
        cache.get_or_compute(make_series([100.0] * 5))
    assert len(cache) == 0


def test_negative_ttl_rejected():
    with pytest.raises(ValueError):
        SnapshotCache(ttl_seconds=-1)
