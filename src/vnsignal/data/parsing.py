"""
Explicit parse results for loosely-typed upstream payloads.

Provider responses are untyped JSON whose shape drifts without notice.
Instead of reading them with permissive defaults, each parser returns a
tagged result: a ``*Parsed`` model on success or a ``*ParseError`` model
naming what was missing.  Callers branch on ``isinstance`` (or ``kind``),
which keeps "the provider sent nothing usable" an explicit, testable path.
"""
import math
from typing import Any, Dict, List, Literal, Mapping, Union

from loguru import logger
from pydantic import BaseModel, Field

from src.vnsignal.data.schemas import FundamentalRatios


class RatiosParsed(BaseModel):
    kind: Literal["ok"] = "ok"
    ratios: FundamentalRatios
    skipped: int = Field(0, description="Entries dropped for a missing or non-numeric value")


class RatiosParseError(BaseModel):
    kind: Literal["error"] = "error"
    symbol: str
    reason: str


RatiosParseResult = Union[RatiosParsed, RatiosParseError]


class PriceRowsParsed(BaseModel):
    kind: Literal["ok"] = "ok"
    rows: List[Dict[str, Any]]


class PriceRowsParseError(BaseModel):
    kind: Literal["error"] = "error"
    symbol: str
    reason: str


PriceRowsParseResult = Union[PriceRowsParsed, PriceRowsParseError]

# VNDirect stock_prices field → PricePoint field.
_VNDIRECT_PRICE_FIELDS = {
    "date": "trade_date",
    "open": "open_price",
    "high": "high_price",
    "low": "low_price",
    "close": "close_price",
    "adOpen": "adj_open",
    "adHigh": "adj_high",
    "adLow": "adj_low",
    "adClose": "adj_close",
    "nmVolume": "volume",
}


def _as_number(value: Any):
    """Return *value* as a finite float, or ``None``."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _data_array(payload: Any):
    """Extract the ``data`` list from a provider envelope, or an error reason."""
    if not isinstance(payload, Mapping):
        return None, f"expected a JSON object, got {type(payload).__name__}"
    data = payload.get("data")
    if data is None:
        return None, "response has no 'data' field"
    if not isinstance(data, list):
        return None, f"'data' is {type(data).__name__}, expected a list"
    return data, None


def parse_vndirect_ratios(symbol: str, payload: Any) -> RatiosParseResult:
    """Parse a ``/v4/ratios/latest`` response into ``FundamentalRatios``.

    Each entry must carry a ``ratioCode`` and a numeric ``value``; entries
    failing either are skipped and counted.  An empty ``data`` array is a
    valid (empty) result: missing ratios are not an error.
    """
    data, reason = _data_array(payload)
    if reason:
        logger.warning(f"{symbol}: ratio payload unusable ({reason})")
        return RatiosParseError(symbol=symbol, reason=reason)

    values: Dict[str, float] = {}
    skipped = 0
    for entry in data:
        if not isinstance(entry, Mapping):
            skipped += 1
            continue
        code = entry.get("ratioCode")
        number = _as_number(entry.get("value"))
        if not code or number is None:
            skipped += 1
            continue
        values[str(code)] = number

    if skipped:
        logger.debug(f"{symbol}: skipped {skipped} malformed ratio entries")

    return RatiosParsed(
        ratios=FundamentalRatios(symbol=symbol, values=values),
        skipped=skipped,
    )


def ratios_from_mapping(symbol: str, raw: Mapping[str, Any]) -> RatiosParseResult:
    """Build a parse result from an already-keyed ``{code: value}`` mapping."""
    if not isinstance(raw, Mapping):
        return RatiosParseError(
            symbol=symbol,
            reason=f"expected a mapping, got {type(raw).__name__}",
        )

    values: Dict[str, float] = {}
    skipped = 0
    for code, value in raw.items():
        number = _as_number(value)
        if number is None:
            skipped += 1
            continue
        values[code] = number

    return RatiosParsed(
        ratios=FundamentalRatios(symbol=symbol, values=values),
        skipped=skipped,
    )


def parse_vndirect_prices(symbol: str, payload: Any) -> PriceRowsParseResult:
    """Parse a ``/v4/stock_prices`` response into ``PricePoint``-shaped rows.

    Field names are mapped to the internal schema; value validation is
    left to ``build_price_series`` so that a single bad bar is dropped
    rather than failing the whole response.
    """
    data, reason = _data_array(payload)
    if reason:
        logger.warning(f"{symbol}: price payload unusable ({reason})")
        return PriceRowsParseError(symbol=symbol, reason=reason)

    if not data:
        return PriceRowsParseError(symbol=symbol, reason="no price rows returned")

    rows: List[Dict[str, Any]] = []
    for entry in data:
        if not isinstance(entry, Mapping):
            continue
        rows.append({
            internal: entry[external]
            for external, internal in _VNDIRECT_PRICE_FIELDS.items()
            if entry.get(external) is not None
        })

    if not rows:
        return PriceRowsParseError(symbol=symbol, reason="price rows are not objects")

    return PriceRowsParsed(rows=rows)
