"""
Tests for the recommendation pipeline.

Every collaborator is an in-memory fake from ``signal_fakes``; the run
deadline is driven by a fake clock that only the dispatch delay advances.
"""
import pytest

from signal_fakes import (
    FakeProvider,
    FakeWatchlist,
    MemoryStore,
    StubEnricher,
    bullish_assessment,
    falling_series,
    make_series,
    scenario_a_ratios,
    scenario_a_series,
)
from src.vnsignal.errors import EnrichmentError
from src.vnsignal.pipeline.recommendation import RecommendationPipeline, _RunState


def _universe(symbols):
    series = {s: scenario_a_series(s) for s in symbols}
    ratios = {s: scenario_a_ratios(s) for s in symbols}
    return series, ratios


def _pipeline(config, symbols, provider=None, store=None, enricher=None, **kwargs):
    if provider is None:
        series, ratios = _universe(symbols)
        provider = FakeProvider(series, ratios)
    return RecommendationPipeline(
        provider=provider,
        watchlist=FakeWatchlist(list(symbols)),
        store=store if store is not None else MemoryStore(),
        config=config,
        enricher=enricher,
        **kwargs,
    )


class TestStrictConfirmation:
    def test_failed_enrichment_downgrades_buy_to_watch(self, fast_config):
        store = MemoryStore()
        enricher = StubEnricher(error=EnrichmentError("model unavailable"))
        report = _pipeline(fast_config, ["FPT"], store=store, enricher=enricher).run()

        result = report.result_for("FPT")
        assert result.technical_signal.direction == "BUY"
        assert result.golden_cross is not None
        assert result.signal.direction == "WATCH"
        assert any(n.startswith("Dual confirmation failed") for n in result.signal.notes)
        assert report.recommendations == []
        assert store.records == {}
        assert report.failures == []

    def test_confirmed_buy_is_persisted_once(self, fast_config):
        store = MemoryStore()
        enricher = StubEnricher(bullish_assessment())
        report = _pipeline(fast_config, ["FPT"], store=store, enricher=enricher).run()

        assert len(report.recommendations) == 1
        rec = report.recommendations[0]
        assert rec.id == "rec-1"
        assert rec.signal_source == "dual_confirmation"
        assert rec.target_price == 150.0
        assert rec.stop_loss == 128.0
        assert rec.recommended_price == 134.0
        assert rec.risks == ["Foreign outflows"]

        result = report.result_for("FPT")
        assert result.signal.direction == "BUY"
        assert result.recommendation_id == "rec-1"
        assert result.calls_used == 3
        assert enricher.calls == ["FPT"]

    def test_no_enricher_means_no_recommendation(self, fast_config):
        report = _pipeline(fast_config, ["FPT"]).run()
        assert report.recommendations == []
        assert report.result_for("FPT").signal.direction == "WATCH"


class TestTechnicalMode:
    def test_target_is_pivot_resistance(self, fast_config):
        fast_config.pipeline.confirmation_mode = "technical"
        report = _pipeline(fast_config, ["FPT"]).run()

        rec = report.recommendations[0]
        assert rec.signal_source == "technical"
        # previous bar H 134 / L 132 / C 133 → R3 = 134 + 2 · (133 - 132)
        assert rec.target_price == pytest.approx(136.0)
        assert rec.stop_loss == pytest.approx(134.0 * 0.965)

    def test_persist_error_is_reported_not_raised(self, fast_config):
        fast_config.pipeline.confirmation_mode = "technical"
        store = MemoryStore(failing=["FPT"])
        report = _pipeline(fast_config, ["FPT", "VNM"], store=store).run()

        assert [f.stage for f in report.failures] == ["persist"]
        assert report.failed_symbols == ["FPT"]
        assert report.result_for("FPT").recommendation_id is None
        assert [r.symbol for r in report.recommendations] == ["VNM"]

    def test_symbol_is_persisted_at_most_once_per_run(self, fast_config):
        fast_config.pipeline.confirmation_mode = "technical"
        store = MemoryStore()
        pipeline = _pipeline(fast_config, ["FPT"], store=store)
        state = _RunState()

        first_result, first_failure, first_rec = pipeline._evaluate_symbol("FPT", state)
        second_result, second_failure, second_rec = pipeline._evaluate_symbol("FPT", state)

        assert len(store.records) == 1
        assert first_failure is None and second_failure is None
        assert first_rec.id == "rec-1"
        assert first_result.recommendation_id == "rec-1"
        assert second_rec is None
        assert second_result.recommendation_id is None
        assert second_result.signal.direction == "BUY"

    def test_failed_persist_releases_the_claim(self, fast_config):
        fast_config.pipeline.confirmation_mode = "technical"
        store = MemoryStore(failing=["FPT"])
        pipeline = _pipeline(fast_config, ["FPT"], store=store)
        state = _RunState()

        _, failure, _ = pipeline._evaluate_symbol("FPT", state)
        assert failure.stage == "persist"
        assert state.claim("FPT")


class TestFailureIsolation:
    def test_one_failing_symbol_does_not_affect_siblings(self, fast_config):
        symbols = ["FPT", "VNM", "HPG", "MWG", "VCB"]
        series, ratios = _universe(symbols)
        provider = FakeProvider(series, ratios, failing_prices=["HPG"])
        report = _pipeline(fast_config, symbols, provider=provider).run()

        assert len(report.results) == 4
        assert len(report.failures) == 1
        failure = report.failures[0]
        assert failure.symbol == "HPG"
        assert failure.stage == "fetch_prices"
        assert failure.error_type == "UpstreamFetchError"

    def test_watchlist_failure_ends_run_with_report(self, fast_config):
        pipeline = RecommendationPipeline(
            provider=FakeProvider({}),
            watchlist=FakeWatchlist([], error=RuntimeError("firebase down")),
            store=MemoryStore(),
            config=fast_config,
        )
        report = pipeline.run()

        assert report.results == []
        assert report.failures[0].symbol == "*"
        assert report.failures[0].stage == "watchlist"
        assert report.finished_at is not None

    def test_ratio_fetch_failure_skips_symbol(self, fast_config):
        fast_config.pipeline.confirmation_mode = "technical"
        series, ratios = _universe(["FPT", "VNM"])
        provider = FakeProvider(series, ratios, failing_ratios=["FPT"])
        store = MemoryStore()
        report = _pipeline(fast_config, ["FPT", "VNM"], provider=provider, store=store).run()

        assert report.result_for("FPT") is None
        assert len(report.failures) == 1
        failure = report.failures[0]
        assert failure.symbol == "FPT"
        assert failure.stage == "fetch_ratios"
        assert failure.error_type == "UpstreamFetchError"
        assert [r.symbol for r in store.records.values()] == ["VNM"]

    def test_unusable_ratio_payload_is_a_warning(self, fast_config):
        series, _ = _universe(["FPT"])
        provider = FakeProvider(series, {})
        report = _pipeline(fast_config, ["FPT"], provider=provider).run()

        result = report.result_for("FPT")
        assert report.failures == []
        assert "ratios_unavailable" in [w.kind for w in result.warnings]
        assert result.technical_signal.fundamental_score == 50.0


class TestClassificationOutcomes:
    def test_short_history_reports_insufficient_data(self, fast_config):
        provider = FakeProvider({"NEW": make_series([100.0] * 10, symbol="NEW")})
        report = _pipeline(fast_config, ["NEW"], provider=provider).run()

        result = report.result_for("NEW")
        assert result.insufficient is not None
        assert result.insufficient.available == 10
        assert result.signal is None
        assert report.signals == []

    def test_sell_signal_is_reported(self, fast_config):
        provider = FakeProvider({"HPG": falling_series("HPG")})
        report = _pipeline(fast_config, ["HPG"], provider=provider).run()
        assert report.result_for("HPG").signal.direction == "SELL"
        assert report.result_for("HPG").golden_cross is None

    def test_buy_without_golden_cross_is_watch(self, fast_config):
        fast_config.pipeline.confirmation_mode = "technical"
        # 35 sessions are too few for MA50/MA200, so no cross is detected.
        fast_config.detector.horizon = "long"
        report = _pipeline(fast_config, ["FPT"]).run()

        result = report.result_for("FPT")
        assert result.technical_signal.direction == "BUY"
        assert result.signal.direction == "WATCH"
        assert report.recommendations == []


class TestCandidateSelection:
    def test_duplicates_are_dropped_before_dispatch(self, fast_config):
        fast_config.pipeline.confirmation_mode = "technical"
        series, ratios = _universe(["FPT"])
        provider = FakeProvider(series, ratios)
        pipeline = RecommendationPipeline(
            provider=provider,
            watchlist=FakeWatchlist(["FPT", "fpt ", "FPT"]),
            store=MemoryStore(),
            config=fast_config,
        )
        report = pipeline.run()

        assert report.candidates == ["FPT"]
        assert provider.price_calls == ["FPT"]
        assert len(report.recommendations) == 1

    def test_first_n_cap(self, fast_config):
        fast_config.pipeline.max_symbols_per_run = 2
        report = _pipeline(fast_config, ["A", "B", "C", "D"]).run()

        assert [r.symbol for r in report.results] == ["A", "B"]
        assert report.not_evaluated == ["C", "D"]

    def test_rotate_cap_covers_list_across_runs(self, fast_config):
        fast_config.pipeline.max_symbols_per_run = 2
        fast_config.pipeline.cap_policy = "rotate"
        pipeline = _pipeline(fast_config, ["A", "B", "C", "D", "E"])

        runs = [[r.symbol for r in pipeline.run().results] for _ in range(3)]
        assert runs == [["A", "B"], ["C", "D"], ["E", "A"]]

    def test_call_budget_skips_ratios(self, fast_config):
        fast_config.pipeline.max_calls_per_symbol = 1
        series, ratios = _universe(["FPT"])
        provider = FakeProvider(series, ratios)
        report = _pipeline(fast_config, ["FPT"], provider=provider).run()

        assert provider.ratio_calls == []
        assert report.result_for("FPT").calls_used == 1


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def test_deadline_stops_dispatch(fast_config):
    fast_config.pipeline.max_concurrency = 1
    fast_config.pipeline.dispatch_delay_seconds = 5.0
    fast_config.pipeline.run_timeout_seconds = 12.0
    clock = FakeClock()
    symbols = ["S0", "S1", "S2", "S3", "S4"]
    pipeline = _pipeline(fast_config, symbols, clock=clock, sleep=clock.sleep)

    report = pipeline.run()

    assert [r.symbol for r in report.results] == ["S0", "S1", "S2"]
    assert report.skipped_by_timeout == ["S3", "S4"]
