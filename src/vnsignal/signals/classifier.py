"""
Signal classifier.

Turns an indicator snapshot and a set of fundamental ratios into a
discrete BUY / HOLD / SELL signal with a 0–100 confidence.

Two sub-scores are computed independently and never feed into each other:

**Technical** (addressable weight 100, see ``TechnicalWeights``)
  Bullish and bearish increments accumulate in separate buckets.
  ``net = bullish - bearish``, ``confidence = min(|net|, 100)``; a ±15
  dead band around zero maps to HOLD so that noise near zero does not
  flip the signal.  The direction is decided by the technical net score
  alone.

**Fundamental** (addressable weight 100, see ``FundamentalWeights``)
  Valuation and profitability ratios each contribute only when present.
  The result is normalised by the weight that was actually available, so
  a symbol with two known ratios is not penalised for the four missing
  ones.  50 is neutral; with no ratios at all the score stays at 50.
"""
import math
from typing import List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel

from src.vnsignal.config import ClassifierConfig
from src.vnsignal.data.schemas import (
    DIVIDEND_YIELD,
    FREE_FLOAT,
    MARKET_CAP,
    PB,
    PE,
    ROA,
    ROE,
    FundamentalRatios,
    PriceSeries,
)
from src.vnsignal.errors import DataInsufficientError
from src.vnsignal.indicators.snapshot import IndicatorSnapshot, compute_snapshot
from src.vnsignal.signals.types import ClassificationResult, Direction, InsufficientData, Signal

_TRILLION_VND = 1e12

# Band width below which the Bollinger position is undefined.
_FLAT_BAND_EPSILON = 1e-9


class TechnicalScore(BaseModel):
    bullish: float = 0.0
    bearish: float = 0.0
    reasons: List[str] = []

    @property
    def net(self) -> float:
        return self.bullish - self.bearish

    def add_bullish(self, weight: float, reason: str) -> None:
        if weight > 0:
            self.bullish += weight
        self.reasons.append(reason)

    def add_bearish(self, weight: float, reason: str) -> None:
        if weight > 0:
            self.bearish += weight
        self.reasons.append(reason)


class FundamentalScore(BaseModel):
    net: float = 0.0
    available_weight: float = 0.0
    reasons: List[str] = []

    @property
    def score(self) -> float:
        if self.available_weight <= 0:
            return 50.0
        raw = 50.0 + 50.0 * self.net / self.available_weight
        return min(max(raw, 0.0), 100.0)


class SignalClassifier:
    """Stateless scorer; one instance can be shared across worker threads."""

    def __init__(self, config: Optional[ClassifierConfig] = None):
        self.config = config or ClassifierConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def classify(
        self,
        series: PriceSeries,
        ratios: Optional[FundamentalRatios] = None,
        snapshot: Optional[IndicatorSnapshot] = None,
    ) -> ClassificationResult:
        """Classify *series* (and optional *ratios*) into a ``Signal``.

        Args:
            series: Validated price history.
            ratios: Latest fundamental ratios; ``None`` scores fundamentals
                    as neutral.
            snapshot: Pre-computed snapshot for ``series`` (e.g. from the
                      cache).  Computed on demand when omitted.

        Returns:
            A ``Signal``, or ``InsufficientData`` when the history is
            shorter than the indicator minimum.  Never raises for a short
            series.
        """
        min_points = self.config.indicators.min_points
        if len(series) < min_points:
            return self._insufficient(series.symbol, min_points, len(series))

        if snapshot is None:
            try:
                snapshot = compute_snapshot(series, self.config.indicators)
            except DataInsufficientError as e:
                return self._insufficient(e.symbol, e.required, e.available)
        elif snapshot.as_of != series.as_of:
            raise ValueError(
                f"{series.symbol}: snapshot as_of {snapshot.as_of} does not "
                f"match series as_of {series.as_of}"
            )

        technical = self.score_technical(snapshot)
        fundamental = self.score_fundamental(ratios)

        net = technical.net
        signal = Signal(
            symbol=series.symbol,
            direction=self._direction(net),
            confidence=min(abs(net), 100.0),
            net_score=net,
            bullish_weight=technical.bullish,
            bearish_weight=technical.bearish,
            technical_score=min(max((net + 100.0) / 2.0, 0.0), 100.0),
            fundamental_score=fundamental.score,
            fundamental_coverage=fundamental.available_weight,
            technical_reasons=tuple(technical.reasons),
            fundamental_reasons=tuple(fundamental.reasons),
            computed_at=snapshot.as_of,
        )

        logger.debug(
            f"{signal.symbol}: {signal.direction} net={net:+.1f} "
            f"tech={signal.technical_score:.1f} fund={signal.fundamental_score:.1f}"
        )
        return signal

    def _direction(self, net: float) -> Direction:
        if net > self.config.buy_threshold:
            return "BUY"
        if net < self.config.sell_threshold:
            return "SELL"
        return "HOLD"

    @staticmethod
    def _insufficient(symbol: str, required: int, available: int) -> InsufficientData:
        logger.info(f"{symbol}: insufficient data ({available}/{required} points)")
        return InsufficientData(
            symbol=symbol,
            required=required,
            available=available,
            reason=f"{available} price points available, {required} required",
        )

    # ------------------------------------------------------------------
    # Technical score
    # ------------------------------------------------------------------

    def score_technical(self, snap: IndicatorSnapshot) -> TechnicalScore:
        """Accumulate bullish/bearish technical weight for one snapshot."""
        score = TechnicalScore()
        self._score_moving_average(snap, score)
        self._score_bollinger(snap, score)
        self._score_momentum(snap, score)
        self._score_volume(snap, score)
        self._score_range_position(snap, score)
        return score

    def _score_moving_average(self, snap: IndicatorSnapshot, score: TechnicalScore) -> None:
        cfg = self.config
        weight = cfg.technical_weights.moving_average
        fast, slow = f"MA{snap.ma_fast_period}", f"MA{snap.ma_slow_period}"
        gap_pct = (snap.ma_fast - snap.ma_slow) / snap.ma_slow * 100

        if cfg.ma_scoring == "scaled":
            weight *= min(abs(gap_pct) / cfg.ma_strong_trend_pct, 1.0)

        if snap.ma_fast > snap.ma_slow:
            score.add_bullish(weight, f"{fast} > {slow} ({gap_pct:+.2f}%): uptrend")
        else:
            score.add_bearish(weight, f"{fast} <= {slow} ({gap_pct:+.2f}%): downtrend")

    def _score_bollinger(self, snap: IndicatorSnapshot, score: TechnicalScore) -> None:
        weight = self.config.technical_weights.bollinger
        width = snap.bollinger_upper - snap.bollinger_lower
        if not width > _FLAT_BAND_EPSILON:
            return

        position = (snap.close - snap.bollinger_lower) / width
        if position < 0:
            score.add_bullish(weight, "Close below lower Bollinger band: oversold")
        elif position > 1:
            score.add_bearish(weight, "Close above upper Bollinger band: overbought")
        elif position >= 0.5:
            score.add_bullish(weight / 2, f"Close in upper Bollinger half ({position:.2f})")
        else:
            score.add_bearish(weight / 2, f"Close in lower Bollinger half ({position:.2f})")

    def _score_momentum(self, snap: IndicatorSnapshot, score: TechnicalScore) -> None:
        cfg = self.config
        half = cfg.technical_weights.momentum / 2
        quarter = cfg.technical_weights.momentum / 4

        readings: List[Tuple[str, Optional[float], float]] = [
            ("5-day", snap.momentum_5d, cfg.momentum_5d_strong_pct),
            ("10-day", snap.momentum_10d, cfg.momentum_10d_strong_pct),
        ]
        for label, value, strong in readings:
            if value is None or value == 0 or math.isnan(value):
                continue
            if value >= strong:
                score.add_bullish(half, f"Strong {label} momentum ({value:+.2f}%)")
            elif value > 0:
                score.add_bullish(quarter, f"Positive {label} momentum ({value:+.2f}%)")
            elif value <= -strong:
                score.add_bearish(half, f"Sharp {label} decline ({value:+.2f}%)")
            else:
                score.add_bearish(quarter, f"Negative {label} momentum ({value:+.2f}%)")

    def _score_volume(self, snap: IndicatorSnapshot, score: TechnicalScore) -> None:
        cfg = self.config
        ratio = snap.volume_ratio
        if ratio is None:
            return

        weight = cfg.technical_weights.volume
        if ratio >= cfg.volume_high_ratio:
            if snap.is_up_session:
                score.add_bullish(weight, f"Volume {ratio:.1f}x average on an up session")
            else:
                score.add_bearish(weight, f"Volume {ratio:.1f}x average on a down session")
        elif ratio <= cfg.volume_low_ratio:
            score.reasons.append(f"Thin volume ({ratio:.1f}x average)")

    def _score_range_position(self, snap: IndicatorSnapshot, score: TechnicalScore) -> None:
        """Mean-reversion read of the trailing range.

        An extreme only scores when it runs against the MA trend: new highs
        in an uptrend (or new lows in a downtrend) confirm the trend and add
        no weight.
        """
        cfg = self.config
        position = snap.range_position
        if position is None:
            return

        weight = cfg.technical_weights.range_position
        uptrend = snap.ma_fast > snap.ma_slow
        if position < cfg.range_bottom:
            if uptrend:
                score.add_bullish(weight, f"Near 52-week low ({position:.0%} of range)")
            else:
                score.reasons.append(
                    f"Near 52-week low ({position:.0%} of range), in line with downtrend"
                )
        elif position > cfg.range_top:
            if uptrend:
                score.reasons.append(
                    f"Near 52-week high ({position:.0%} of range), in line with uptrend"
                )
            else:
                score.add_bearish(weight, f"Near 52-week high ({position:.0%} of range)")

    # ------------------------------------------------------------------
    # Fundamental score
    # ------------------------------------------------------------------

    def score_fundamental(self, ratios: Optional[FundamentalRatios]) -> FundamentalScore:
        """Score valuation and profitability; missing ratios are skipped."""
        score = FundamentalScore()
        if ratios is None or len(ratios) == 0:
            score.reasons.append("No fundamental ratios available")
            return score

        w = self.config.fundamental_weights
        self._score_pe(ratios.get(PE), w.pe, score)
        self._score_pb(ratios.get(PB), w.pb, score)
        self._score_profitability(ratios.get(ROE), ratios.get(ROA), w.roe, score)
        self._score_dividend(ratios.get(DIVIDEND_YIELD), w.dividend_yield, score)
        self._score_market_cap(ratios.get(MARKET_CAP), w.market_cap, score)
        self._score_free_float(ratios.get(FREE_FLOAT), w.free_float, score)
        return score

    @staticmethod
    def _apply(score: FundamentalScore, weight: float, fraction: float, reason: str) -> None:
        """Record a ratio worth *fraction* (-1..1) of its *weight*."""
        score.available_weight += weight
        score.net += weight * fraction
        score.reasons.append(reason)

    def _score_pe(self, pe: Optional[float], weight: float, score: FundamentalScore) -> None:
        if pe is None:
            return
        if pe <= 0:
            self._apply(score, weight, -1.0, f"Negative earnings (P/E {pe:.2f})")
        elif pe < 10:
            self._apply(score, weight, 1.0, f"Low P/E ({pe:.2f})")
        elif pe <= 20:
            self._apply(score, weight, 0.5, f"Reasonable P/E ({pe:.2f})")
        elif pe <= 30:
            self._apply(score, weight, -0.5, f"Elevated P/E ({pe:.2f})")
        else:
            self._apply(score, weight, -1.0, f"Expensive P/E ({pe:.2f})")

    def _score_pb(self, pb: Optional[float], weight: float, score: FundamentalScore) -> None:
        if pb is None or pb <= 0:
            return
        if pb < 1:
            self._apply(score, weight, 1.0, f"Trading below book (P/B {pb:.2f})")
        elif pb <= 2:
            self._apply(score, weight, 0.5, f"Reasonable P/B ({pb:.2f})")
        elif pb <= 3:
            self._apply(score, weight, -0.5, f"Elevated P/B ({pb:.2f})")
        else:
            self._apply(score, weight, -1.0, f"Expensive P/B ({pb:.2f})")

    def _score_profitability(
        self,
        roe: Optional[float],
        roa: Optional[float],
        weight: float,
        score: FundamentalScore,
    ) -> None:
        """ROE, or ROA when ROE is not published (banks, new listings)."""
        if roe is not None:
            pct = roe * 100
            if pct >= 20:
                self._apply(score, weight, 1.0, f"High ROE ({pct:.1f}%)")
            elif pct >= 15:
                self._apply(score, weight, 0.6, f"Good ROE ({pct:.1f}%)")
            elif pct >= 10:
                self._apply(score, weight, 0.0, f"Average ROE ({pct:.1f}%)")
            elif pct >= 0:
                self._apply(score, weight, -0.5, f"Weak ROE ({pct:.1f}%)")
            else:
                self._apply(score, weight, -1.0, f"Negative ROE ({pct:.1f}%)")
            return

        if roa is not None:
            pct = roa * 100
            if pct >= 10:
                self._apply(score, weight, 1.0, f"High ROA ({pct:.1f}%)")
            elif pct >= 5:
                self._apply(score, weight, 0.5, f"Good ROA ({pct:.1f}%)")
            elif pct >= 2:
                self._apply(score, weight, 0.0, f"Average ROA ({pct:.1f}%)")
            elif pct >= 0:
                self._apply(score, weight, -0.5, f"Weak ROA ({pct:.1f}%)")
            else:
                self._apply(score, weight, -1.0, f"Negative ROA ({pct:.1f}%)")

    def _score_dividend(self, dy: Optional[float], weight: float, score: FundamentalScore) -> None:
        if dy is None:
            return
        pct = dy * 100
        if pct >= 5:
            self._apply(score, weight, 1.0, f"High dividend yield ({pct:.1f}%)")
        elif pct >= 3:
            self._apply(score, weight, 0.5, f"Decent dividend yield ({pct:.1f}%)")
        else:
            self._apply(score, weight, 0.0, f"Low dividend yield ({pct:.1f}%)")

    def _score_market_cap(self, cap: Optional[float], weight: float, score: FundamentalScore) -> None:
        if cap is None or cap <= 0:
            return
        trillions = cap / _TRILLION_VND
        if trillions >= 10:
            self._apply(score, weight, 1.0, f"Large cap ({trillions:,.0f}T VND)")
        elif trillions >= 1:
            self._apply(score, weight, 0.5, f"Mid cap ({trillions:,.1f}T VND)")
        else:
            self._apply(score, weight, 0.0, f"Small cap ({trillions:,.2f}T VND)")

    def _score_free_float(self, ff: Optional[float], weight: float, score: FundamentalScore) -> None:
        if ff is None:
            return
        pct = ff * 100
        if pct >= 30:
            self._apply(score, weight, 1.0, f"Liquid free float ({pct:.0f}%)")
        elif pct < 15:
            self._apply(score, weight, -1.0, f"Thin free float ({pct:.0f}%)")
        else:
            self._apply(score, weight, 0.0, f"Moderate free float ({pct:.0f}%)")
