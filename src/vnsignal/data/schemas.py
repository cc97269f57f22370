"""
Strict data contracts for market data.

Pydantic models defined here act as the single source of truth for the
OHLCV schema.  Indicator math fails silently on bad data (High < Close,
non-positive prices), so validation is enforced at the boundary, before
anything reaches the indicator library.  Rows that violate the OHLC rule
are rejected, never clamped into shape.
"""
from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Currency-unit tolerance for the OHLC consistency rule.
OHLC_TOLERANCE = 0.01

# Ratio codes as published by the upstream ratio provider.
PE = "PRICE_TO_EARNINGS"
PB = "PRICE_TO_BOOK"
ROE = "ROAE_TR_AVG5Q"
ROA = "ROAA_TR_AVG5Q"
DIVIDEND_YIELD = "DIVIDEND_YIELD"
MARKET_CAP = "MARKETCAP"
FREE_FLOAT = "FREEFLOAT"
EPS = "EPS_TR"
BVPS = "BVPS_CR"


def is_valid_ohlc(
    open_price: float,
    high_price: float,
    low_price: float,
    close_price: float,
    tolerance: float = OHLC_TOLERANCE,
) -> bool:
    """Return ``True`` iff the four prices form a consistent OHLC bar.

    The high must cover both open and close and the low must sit under
    both, each within *tolerance*; all four prices must be positive.
    """
    if min(open_price, high_price, low_price, close_price) <= 0:
        return False
    return (
        high_price >= max(open_price, close_price) - tolerance
        and low_price <= min(open_price, close_price) + tolerance
    )


class PricePoint(BaseModel):
    """Validated OHLCV record for one trading session."""

    trade_date: date = Field(..., description="Calendar date of the trading session")

    open_price: float = Field(..., gt=0, description="Opening price")
    high_price: float = Field(..., gt=0, description="Session high")
    low_price: float = Field(..., gt=0, description="Session low")
    close_price: float = Field(..., gt=0, description="Closing price")

    # Split/dividend-adjusted prices; fall back to the raw fields when absent.
    adj_open: Optional[float] = Field(None, gt=0)
    adj_high: Optional[float] = Field(None, gt=0)
    adj_low: Optional[float] = Field(None, gt=0)
    adj_close: Optional[float] = Field(None, gt=0)

    # Volume of zero is valid (e.g. trading halt), negative is not.
    volume: float = Field(0, ge=0, description="Matched-order volume")

    @model_validator(mode="after")
    def ohlc_must_be_consistent(self) -> "PricePoint":
        """Reject bars whose high/low do not bracket open and close."""
        if not is_valid_ohlc(
            self.open_price, self.high_price, self.low_price, self.close_price
        ):
            raise ValueError(
                f"Inconsistent OHLC on {self.trade_date}: "
                f"O={self.open_price} H={self.high_price} "
                f"L={self.low_price} C={self.close_price}"
            )

        adjusted = (self.adj_open, self.adj_high, self.adj_low, self.adj_close)
        if all(v is not None for v in adjusted) and not is_valid_ohlc(*adjusted):
            raise ValueError(
                f"Inconsistent adjusted OHLC on {self.trade_date}: {adjusted}"
            )
        return self

    @property
    def adjusted_open(self) -> float:
        return self.adj_open if self.adj_open is not None else self.open_price

    @property
    def adjusted_high(self) -> float:
        return self.adj_high if self.adj_high is not None else self.high_price

    @property
    def adjusted_low(self) -> float:
        return self.adj_low if self.adj_low is not None else self.low_price

    @property
    def adjusted_close(self) -> float:
        return self.adj_close if self.adj_close is not None else self.close_price


class RejectedPoint(BaseModel):
    """A raw row that was dropped before indicator computation."""

    trade_date: Optional[date] = None
    close_price: Optional[float] = None
    reason: str


class SeriesWarning(BaseModel):
    """Data-quality warning attached to a series and surfaced in run reports."""

    kind: Literal["stale_current_price", "rows_rejected", "ratios_unavailable"]
    message: str


class PriceSeries(BaseModel):
    """Ascending, de-duplicated, validated price history for one symbol."""

    symbol: str
    points: List[PricePoint] = Field(default_factory=list)
    rejected: List[RejectedPoint] = Field(default_factory=list)
    warnings: List[SeriesWarning] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def latest(self) -> Optional[PricePoint]:
        return self.points[-1] if self.points else None

    @property
    def as_of(self) -> Optional[date]:
        return self.points[-1].trade_date if self.points else None

    @property
    def closes(self) -> List[float]:
        return [p.adjusted_close for p in self.points]

    @property
    def highs(self) -> List[float]:
        return [p.adjusted_high for p in self.points]

    @property
    def lows(self) -> List[float]:
        return [p.adjusted_low for p in self.points]

    @property
    def volumes(self) -> List[float]:
        return [p.volume for p in self.points]

    @property
    def dates(self) -> List[date]:
        return [p.trade_date for p in self.points]


class FundamentalRatios(BaseModel):
    """Latest available fundamental ratios for one symbol."""

    symbol: str
    values: Dict[str, float] = Field(default_factory=dict)

    def get(self, code: str) -> Optional[float]:
        return self.values.get(code)

    def __len__(self) -> int:
        return len(self.values)


class Recommendation(BaseModel):
    """An actionable BUY recommendation.  Created once, read-only thereafter."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(None, description="Assigned by the store on persist")
    symbol: str
    recommended_price: float = Field(..., gt=0)
    current_price: float = Field(..., gt=0)
    target_price: Optional[float] = Field(None, gt=0)
    stop_loss: Optional[float] = Field(None, gt=0)
    confidence: float = Field(..., ge=0, le=100)
    signal_source: Literal["dual_confirmation", "technical"]
    technical_analysis: List[str] = Field(default_factory=list)
    fundamental_analysis: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    opportunities: List[str] = Field(default_factory=list)
    as_of: date
    created_at: datetime
