"""
Recommendation pipeline.

One ``run()`` processes a watch-list end to end:

  1. Fetch the candidate watch-list and drop duplicate symbols.
  2. Apply the per-run cap (``first_n`` keeps input order, ``rotate``
     advances a start offset across runs so long lists are covered in
     turn).  Candidates beyond the cap are reported as ``not_evaluated``.
  3. Dispatch one unit of work per symbol to a bounded thread pool, with
     a fixed delay between dispatches to respect upstream rate limits.
     Once the run deadline passes, nothing new is dispatched; units
     already running finish on their own.
  4. Each unit: fetch prices → fetch ratios → snapshot (cache) →
     classify → golden-cross check → optional enrichment and gating →
     persist.  A unit spends at most ``max_calls_per_symbol`` external
     calls.
  5. Collect results into a ``PipelineReport``.

Failure isolation: a unit's error becomes a ``SymbolFailure`` entry and
never reaches sibling units or the caller.  A recommendation is only
built after the unit's own classification succeeded, and at most one
recommendation is persisted per symbol per run.
"""
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from loguru import logger

from src.vnsignal.config import EngineConfig
from src.vnsignal.data.base import MarketDataProvider
from src.vnsignal.data.parsing import RatiosParseError
from src.vnsignal.data.schemas import (
    FundamentalRatios,
    PriceSeries,
    Recommendation,
    SeriesWarning,
)
from src.vnsignal.data.watchlist import WatchlistProvider
from src.vnsignal.enrichment.base import (
    FundamentalContext,
    NarrativeAssessment,
    NarrativeEnricher,
    TechnicalContext,
)
from src.vnsignal.errors import PersistenceError, UpstreamFetchError
from src.vnsignal.indicators.snapshot import IndicatorSnapshot, SnapshotCache
from src.vnsignal.pipeline.models import PipelineReport, SymbolFailure, SymbolResult
from src.vnsignal.signals.classifier import SignalClassifier
from src.vnsignal.signals.gating import evaluate_dual_confirmation
from src.vnsignal.signals.golden_cross import GoldenCrossDetector, GoldenCrossEvent
from src.vnsignal.signals.types import InsufficientData, Signal
from src.vnsignal.storage.base import RecommendationStore

UnitOutcome = Tuple[Optional[SymbolResult], Optional[SymbolFailure], Optional[Recommendation]]


class _CallBudget:
    """Counts the external calls one unit may still make."""

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    def take(self) -> bool:
        if self.used >= self.limit:
            return False
        self.used += 1
        return True


class _RunState:
    """Per-run bookkeeping shared by the units of one run."""

    def __init__(self):
        self.lock = threading.Lock()
        self.persisted: Set[str] = set()

    def claim(self, symbol: str) -> bool:
        """Reserve *symbol* for persistence; ``False`` if already claimed."""
        with self.lock:
            if symbol in self.persisted:
                return False
            self.persisted.add(symbol)
            return True

    def release(self, symbol: str) -> None:
        with self.lock:
            self.persisted.discard(symbol)


class RecommendationPipeline:
    """Watch-list → classified signals → persisted BUY recommendations."""

    def __init__(
        self,
        provider: MarketDataProvider,
        watchlist: WatchlistProvider,
        store: RecommendationStore,
        config: Optional[EngineConfig] = None,
        enricher: Optional[NarrativeEnricher] = None,
        cache: Optional[SnapshotCache] = None,
        classifier: Optional[SignalClassifier] = None,
        detector: Optional[GoldenCrossDetector] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            provider: Price and ratio source.
            watchlist: Candidate symbol source.
            store: Sink for persisted recommendations.
            config: Engine configuration; defaults when omitted.
            enricher: Optional narrative enricher.  Without one, the strict
                      confirmation path can never confirm a BUY.
            cache: Snapshot cache shared across runs of this pipeline.
            classifier: Override for the configured classifier.
            detector: Override for the configured golden-cross detector.
            clock: Monotonic clock used for the run deadline.
            sleep: Used for the dispatch delay.
        """
        self.config = config or EngineConfig()
        self.provider = provider
        self.watchlist = watchlist
        self.store = store
        self.enricher = enricher
        self.cache = cache if cache is not None else SnapshotCache(
            ttl_seconds=self.config.pipeline.snapshot_ttl_seconds
        )
        self.classifier = classifier or SignalClassifier(self.config.classifier)
        self.detector = detector or GoldenCrossDetector(self.config.detector)
        self._clock = clock
        self._sleep = sleep
        self._rotation_offset = 0

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, limit: Optional[int] = None) -> PipelineReport:
        """Execute one pipeline run.  Never raises.

        Args:
            limit: Watch-list size requested from the source; defaults to
                   ``pipeline.watchlist_limit``.
        """
        cfg = self.config.pipeline
        report = PipelineReport(run_id=uuid.uuid4().hex[:12], started_at=datetime.now())
        logger.info(
            f"Run {report.run_id}: mode={cfg.confirmation_mode}, "
            f"horizon={self.detector.config.horizon}, workers={cfg.max_concurrency}"
        )

        try:
            candidates = self.watchlist.fetch_candidate_watchlist(limit or cfg.watchlist_limit)
        except Exception as e:
            logger.error(f"Run {report.run_id}: watch-list unavailable: {e}")
            report.failures.append(
                SymbolFailure(
                    symbol="*",
                    stage="watchlist",
                    error_type=type(e).__name__,
                    message=str(e),
                )
            )
            report.finished_at = datetime.now()
            return report

        symbols = self._dedupe(candidates)
        selected, report.not_evaluated = self._apply_cap(symbols)
        report.candidates = symbols
        if report.not_evaluated:
            logger.warning(
                f"Run {report.run_id}: cap of {cfg.max_symbols_per_run} reached, "
                f"{len(report.not_evaluated)} candidates not evaluated"
            )

        outcomes, report.skipped_by_timeout = self._dispatch(selected, _RunState())

        for outcome in outcomes:
            result, failure, recommendation = outcome
            if result is not None:
                report.results.append(result)
            if failure is not None:
                report.failures.append(failure)
            if recommendation is not None:
                report.recommendations.append(recommendation)

        report.finished_at = datetime.now()
        logger.success(
            f"Run {report.run_id} finished: {len(report.signals)} signals, "
            f"{len(report.recommendations)} recommendations, "
            f"{len(report.failures)} failures, "
            f"{len(report.skipped_by_timeout)} skipped by timeout"
        )
        return report

    @staticmethod
    def _dedupe(candidates: List[str]) -> List[str]:
        seen: Set[str] = set()
        symbols: List[str] = []
        for raw in candidates:
            symbol = str(raw).strip().upper()
            if not symbol:
                continue
            if symbol in seen:
                logger.debug(f"Duplicate candidate {symbol} dropped")
                continue
            seen.add(symbol)
            symbols.append(symbol)
        return symbols

    def _apply_cap(self, symbols: List[str]) -> Tuple[List[str], List[str]]:
        """Split *symbols* into (selected, not_evaluated) per the cap policy."""
        cfg = self.config.pipeline
        cap = cfg.max_symbols_per_run
        if not symbols:
            return [], []

        if cfg.cap_policy == "rotate":
            offset = self._rotation_offset % len(symbols)
            ordered = symbols[offset:] + symbols[:offset]
            selected = ordered[:cap]
            self._rotation_offset = offset + len(selected)
            return selected, ordered[cap:]

        return symbols[:cap], symbols[cap:]

    def _dispatch(
        self,
        symbols: List[str],
        state: _RunState,
    ) -> Tuple[List[UnitOutcome], List[str]]:
        """Run one unit per symbol on the worker pool.

        A slot semaphore keeps the number of dispatched-but-unfinished
        units at the pool size, so "dispatched" always means "running".

        Returns:
            Unit outcomes in dispatch order, and the symbols that were
            never dispatched because the run deadline passed.
        """
        cfg = self.config.pipeline
        deadline = self._clock() + cfg.run_timeout_seconds
        slots = threading.BoundedSemaphore(cfg.max_concurrency)
        futures: Dict[str, Future] = {}
        skipped: List[str] = []

        with ThreadPoolExecutor(
            max_workers=cfg.max_concurrency, thread_name_prefix="unit"
        ) as pool:
            for i, symbol in enumerate(symbols):
                if i > 0 and cfg.dispatch_delay_seconds > 0:
                    self._sleep(cfg.dispatch_delay_seconds)
                slots.acquire()

                if self._clock() >= deadline:
                    slots.release()
                    skipped = symbols[i:]
                    logger.warning(
                        f"Run deadline reached; {len(skipped)} symbols not dispatched"
                    )
                    break

                future = pool.submit(self._evaluate_symbol, symbol, state)
                future.add_done_callback(lambda _: slots.release())
                futures[symbol] = future

        return [f.result() for f in futures.values()], skipped

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _evaluate_symbol(self, symbol: str, state: _RunState) -> UnitOutcome:
        """Evaluate one symbol.  Never raises."""
        try:
            return self._evaluate(symbol, state)
        except Exception as e:
            logger.exception(f"{symbol}: unit crashed: {e}")
            return None, SymbolFailure(
                symbol=symbol,
                stage="unit",
                error_type=type(e).__name__,
                message=str(e),
            ), None

    def _evaluate(self, symbol: str, state: _RunState) -> UnitOutcome:
        cfg = self.config.pipeline
        budget = _CallBudget(cfg.max_calls_per_symbol)
        result = SymbolResult(symbol=symbol)

        # 1. Prices
        budget.take()
        try:
            series = self.provider.fetch_price_series(symbol, cfg.lookback_days)
        except Exception as e:
            logger.error(f"{symbol}: price fetch failed: {e}")
            return None, SymbolFailure(
                symbol=symbol,
                stage="fetch_prices",
                error_type=type(e).__name__,
                message=str(e),
            ), None
        result.warnings.extend(series.warnings)

        # 2. Ratios: transport failure skips the symbol, unusable payload does not
        try:
            ratios = self._fetch_ratios(symbol, budget, result)
        except UpstreamFetchError as e:
            logger.error(f"{symbol}: ratio fetch failed: {e}")
            return None, SymbolFailure(
                symbol=symbol,
                stage="fetch_ratios",
                error_type=type(e).__name__,
                message=str(e),
            ), None

        # 3. Snapshot and classification
        snapshot: Optional[IndicatorSnapshot] = None
        if len(series) >= self.classifier.config.indicators.min_points:
            snapshot = self.cache.get_or_compute(series, self.classifier.config.indicators)

        classification = self.classifier.classify(series, ratios, snapshot=snapshot)
        result.calls_used = budget.used
        if isinstance(classification, InsufficientData):
            result.insufficient = classification
            return result, None, None

        signal = classification
        result.technical_signal = signal

        # 4. Golden cross
        cross = self.detector.evaluate(symbol, series)
        result.golden_cross = cross
        if cross is not None and cross.confidence_bonus > 0:
            signal = signal.model_copy(update={
                "confidence": min(signal.confidence + cross.confidence_bonus, 100.0),
                "notes": signal.notes + (self._cross_note(cross),),
            })

        if signal.direction != "BUY":
            result.signal = signal
            return result, None, None

        if cross is None:
            result.signal = signal.model_copy(update={
                "direction": "WATCH",
                "notes": signal.notes + ("No active golden cross; not eligible for a recommendation",),
            })
            return result, None, None

        # 5. Enrichment and gating
        current_price = series.closes[-1]
        assessment = self._enrich(symbol, signal, snapshot, ratios, budget)
        result.assessment = assessment
        result.calls_used = budget.used

        if cfg.confirmation_mode == "strict":
            confirmation = evaluate_dual_confirmation(
                signal, assessment, current_price, cfg.min_combined_score
            )
            result.confirmation = confirmation
            if not confirmation.confirmed:
                logger.info(
                    f"{symbol}: BUY downgraded to WATCH ({'; '.join(confirmation.failed_checks)})"
                )
                result.signal = signal.model_copy(update={
                    "direction": "WATCH",
                    "notes": signal.notes + tuple(
                        f"Dual confirmation failed: {c}" for c in confirmation.failed_checks
                    ),
                })
                return result, None, None
            target_price = confirmation.target_price
            source = "dual_confirmation"
        else:
            resistance = snapshot.pivot_resistance if snapshot is not None else None
            target_price = resistance if resistance and resistance > current_price else None
            source = "technical"

        result.signal = signal

        # 6. Persist
        recommendation = self._build_recommendation(
            signal, current_price, series, target_price, assessment, source
        )
        return self._persist(recommendation, result, state)

    def _fetch_ratios(
        self,
        symbol: str,
        budget: _CallBudget,
        result: SymbolResult,
    ) -> Optional[FundamentalRatios]:
        """Fetch ratios for *symbol*.

        An exhausted call budget or an unusable payload is recorded as a
        warning and the symbol is scored without fundamentals.

        Raises:
            UpstreamFetchError: Propagated from the provider.
        """
        if not budget.take():
            self._ratio_warning(result, "call budget exhausted before ratio fetch")
            return None

        parsed = self.provider.fetch_fundamental_ratios(symbol)
        if isinstance(parsed, RatiosParseError):
            self._ratio_warning(result, f"ratio payload unusable: {parsed.reason}")
            return None
        return parsed.ratios

    @staticmethod
    def _ratio_warning(result: SymbolResult, message: str) -> None:
        logger.warning(f"{result.symbol}: {message}; scoring without fundamentals")
        result.warnings.append(SeriesWarning(kind="ratios_unavailable", message=message))

    @staticmethod
    def _cross_note(cross: GoldenCrossEvent) -> str:
        return (
            f"Golden cross MA{cross.fast_period}/MA{cross.slow_period} "
            f"{cross.days_since_cross} days ago: confidence +{cross.confidence_bonus:.0f}"
        )

    def _enrich(
        self,
        symbol: str,
        signal: Signal,
        snapshot: Optional[IndicatorSnapshot],
        ratios: Optional[FundamentalRatios],
        budget: _CallBudget,
    ) -> Optional[NarrativeAssessment]:
        if self.enricher is None or snapshot is None:
            return None
        if not budget.take():
            logger.warning(f"{symbol}: call budget exhausted, skipping enrichment")
            return None

        technical = TechnicalContext(
            symbol=symbol,
            as_of=snapshot.as_of,
            close=snapshot.close,
            ma_fast=snapshot.ma_fast,
            ma_slow=snapshot.ma_slow,
            bollinger_upper=snapshot.bollinger_upper,
            bollinger_lower=snapshot.bollinger_lower,
            pivot_support=snapshot.pivot_support,
            pivot_resistance=snapshot.pivot_resistance,
            momentum_5d=snapshot.momentum_5d,
            momentum_10d=snapshot.momentum_10d,
            volume_ratio=snapshot.volume_ratio,
            direction=signal.direction,
            confidence=signal.confidence,
            reasons=list(signal.technical_reasons),
        )
        fundamental = FundamentalContext(
            symbol=symbol,
            ratios=dict(ratios.values) if ratios is not None else {},
            score=signal.fundamental_score,
            reasons=list(signal.fundamental_reasons),
        )
        return self.enricher.enrich(symbol, technical, fundamental)

    def _build_recommendation(
        self,
        signal: Signal,
        current_price: float,
        series: PriceSeries,
        target_price: Optional[float],
        assessment: Optional[NarrativeAssessment],
        source: str,
    ) -> Recommendation:
        price = current_price
        if assessment is not None and assessment.buy_price:
            price = assessment.buy_price

        stop_loss = price * self.config.pipeline.stop_loss_factor
        if assessment is not None and assessment.stop_loss and assessment.stop_loss < price:
            stop_loss = assessment.stop_loss

        return Recommendation(
            symbol=signal.symbol,
            recommended_price=price,
            current_price=current_price,
            target_price=target_price,
            stop_loss=stop_loss,
            confidence=signal.confidence,
            signal_source=source,
            technical_analysis=list(signal.technical_reasons) + list(signal.notes),
            fundamental_analysis=list(signal.fundamental_reasons),
            risks=list(assessment.risks) if assessment is not None else [],
            opportunities=list(assessment.opportunities) if assessment is not None else [],
            as_of=series.as_of,
            created_at=datetime.now(),
        )

    def _persist(
        self,
        recommendation: Recommendation,
        result: SymbolResult,
        state: _RunState,
    ) -> UnitOutcome:
        symbol = recommendation.symbol
        if not state.claim(symbol):
            logger.warning(f"{symbol}: already persisted in this run, skipping")
            return result, None, None

        try:
            rec_id = self.store.persist(recommendation)
        except PersistenceError as e:
            state.release(symbol)
            logger.error(f"{symbol}: recommendation not saved: {e}")
            return result, SymbolFailure(
                symbol=symbol,
                stage="persist",
                error_type=type(e).__name__,
                message=str(e),
            ), None

        result.recommendation_id = rec_id
        logger.success(f"{symbol}: BUY recommendation persisted ({rec_id})")
        return result, None, recommendation.model_copy(update={"id": rec_id})
