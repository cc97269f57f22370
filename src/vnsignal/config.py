"""
Engine configuration models.

Every tunable of the engine lives in a pydantic model so that a bad
override (negative period, weights that no longer add up to 100, a
concurrency cap of zero) is rejected at load time instead of quietly
skewing scores mid-run.  Defaults mirror the constants the dashboard has
always used for the Vietnamese market.

Overrides can be supplied as a JSON document whose top-level keys match
the sections of ``EngineConfig``::

    {
      "classifier": {"ma_scoring": "scaled"},
      "pipeline": {"max_symbols_per_run": 30, "confirmation_mode": "technical"}
    }
"""
import json
from pathlib import Path
from typing import Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field, model_validator


class IndicatorConfig(BaseModel):
    """Window lengths used to build an indicator snapshot."""

    ma_fast_period: int = Field(10, ge=1)
    ma_slow_period: int = Field(30, ge=2)
    bollinger_period: int = Field(20, ge=2)
    bollinger_std_multiplier: float = Field(2.0, gt=0)
    volume_avg_period: int = Field(20, ge=1)
    range_window: int = Field(
        250, ge=2,
        description="Sessions used for the 52-week high/low position",
    )
    min_points: int = Field(
        30, ge=2,
        description="Minimum history for a valid snapshot",
    )

    @model_validator(mode="after")
    def slow_window_must_fit(self) -> "IndicatorConfig":
        """The minimum history must cover the slowest window."""
        needed = max(self.ma_slow_period, self.bollinger_period)
        if self.min_points < needed:
            raise ValueError(
                f"min_points ({self.min_points}) must be at least {needed}"
            )
        if self.ma_fast_period >= self.ma_slow_period:
            raise ValueError("ma_fast_period must be shorter than ma_slow_period")
        return self


class TechnicalWeights(BaseModel):
    """Addressable weight per technical factor.  Must total 100."""

    moving_average: float = Field(30, ge=0)
    bollinger: float = Field(25, ge=0)
    momentum: float = Field(20, ge=0)
    volume: float = Field(15, ge=0)
    range_position: float = Field(10, ge=0)

    @model_validator(mode="after")
    def must_total_100(self) -> "TechnicalWeights":
        total = (
            self.moving_average + self.bollinger + self.momentum
            + self.volume + self.range_position
        )
        if abs(total - 100.0) > 1e-9:
            raise ValueError(f"Technical weights must sum to 100, got {total}")
        return self


class FundamentalWeights(BaseModel):
    """Addressable weight per fundamental ratio.  Must total 100."""

    pe: float = Field(25, ge=0)
    pb: float = Field(20, ge=0)
    roe: float = Field(25, ge=0)
    dividend_yield: float = Field(15, ge=0)
    market_cap: float = Field(10, ge=0)
    free_float: float = Field(5, ge=0)

    @model_validator(mode="after")
    def must_total_100(self) -> "FundamentalWeights":
        total = (
            self.pe + self.pb + self.roe + self.dividend_yield
            + self.market_cap + self.free_float
        )
        if abs(total - 100.0) > 1e-9:
            raise ValueError(f"Fundamental weights must sum to 100, got {total}")
        return self


class ClassifierConfig(BaseModel):
    """Scoring weights and thresholds for the signal classifier."""

    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    technical_weights: TechnicalWeights = Field(default_factory=TechnicalWeights)
    fundamental_weights: FundamentalWeights = Field(default_factory=FundamentalWeights)

    buy_threshold: float = Field(15, description="net score above this → BUY")
    sell_threshold: float = Field(-15, description="net score below this → SELL")

    ma_scoring: Literal["binary", "scaled"] = Field(
        "binary",
        description="binary: flat MA weight; scaled: weight × min(|gap%| / ma_strong_trend_pct, 1)",
    )
    ma_strong_trend_pct: float = Field(2.0, gt=0)

    momentum_5d_strong_pct: float = Field(3.0, gt=0)
    momentum_10d_strong_pct: float = Field(5.0, gt=0)
    volume_high_ratio: float = Field(1.5, gt=0)
    volume_low_ratio: float = Field(0.7, gt=0)
    range_bottom: float = Field(0.3, ge=0, le=1)
    range_top: float = Field(0.7, ge=0, le=1)

    @model_validator(mode="after")
    def thresholds_must_bracket_zero(self) -> "ClassifierConfig":
        if not self.sell_threshold < 0 < self.buy_threshold:
            raise ValueError("sell_threshold < 0 < buy_threshold is required")
        return self


class DetectorConfig(BaseModel):
    """Golden-cross detector settings."""

    horizon: Literal["short", "long"] = Field(
        "short",
        description="short: MA10/MA30, long: MA50/MA200",
    )
    lookback_sessions: int = Field(
        60, ge=1,
        description="Trailing sessions searched for the latest cross",
    )


class EnrichmentConfig(BaseModel):
    """Narrative (LLM) enrichment settings."""

    enabled: bool = True
    model_name: str = "gemini-2.0-flash"
    timeout_seconds: float = Field(45.0, gt=0, le=120)
    max_retries: int = Field(1, ge=0)
    min_interval_seconds: float = Field(
        1.0, ge=0,
        description="Minimum spacing between two model calls",
    )
    use_search: bool = False


class PipelineConfig(BaseModel):
    """Batch-run settings for the recommendation pipeline."""

    lookback_days: int = Field(270, ge=30)
    watchlist_limit: int = Field(100, ge=1)
    max_symbols_per_run: int = Field(50, ge=1)
    cap_policy: Literal["first_n", "rotate"] = "first_n"
    confirmation_mode: Literal["strict", "technical"] = "strict"
    min_combined_score: float = Field(70.0, ge=0, le=100)
    stop_loss_factor: float = Field(0.965, gt=0, lt=1)

    max_concurrency: int = Field(4, ge=1, le=9)
    dispatch_delay_seconds: float = Field(0.5, ge=0)
    run_timeout_seconds: float = Field(600.0, gt=0)
    max_calls_per_symbol: int = Field(
        3, ge=1,
        description="External calls one symbol may spend (prices, ratios, narrative)",
    )

    stale_price_tolerance_pct: float = Field(0.5, ge=0)
    snapshot_ttl_seconds: float = Field(120.0, ge=0)


class EngineConfig(BaseModel):
    """Aggregate configuration for one engine instance."""

    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)


def load_engine_config(path: Optional[str] = None) -> EngineConfig:
    """Load an ``EngineConfig``, applying the JSON overrides at *path*.

    Args:
        path: Optional path to a JSON override file.  ``None`` returns the
              defaults.

    Raises:
        FileNotFoundError: If *path* is given but does not exist.
        ValueError: If the file is not valid JSON or fails validation.
    """
    if path is None:
        return EngineConfig()

    file_path = Path(path)
    if not file_path.exists():
        logger.critical(f"Config file not found at: {file_path}")
        raise FileNotFoundError(f"Missing engine config file: {file_path}")

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        logger.critical(f"Invalid JSON in config file: {e}")
        raise ValueError("Corrupted engine config file") from e

    config = EngineConfig.model_validate(raw)
    logger.info(f"Loaded engine config overrides from {file_path.name}")
    return config
