"""
Series validation: loose provider rows → validated ``PriceSeries``.

Every adapter funnels its rows through ``build_price_series`` before the
data is handed to the engine.  Malformed bars are dropped and recorded;
duplicate sessions keep their first occurrence; the result is sorted
ascending by date.

Dropping the most recent bar is the one case that is never silent: the
series would then present an older close as the "current price", so a
``stale_current_price`` warning is attached whenever the surviving close
differs materially from the rejected one.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from loguru import logger
from pydantic import ValidationError

from src.vnsignal.data.schemas import (
    PricePoint,
    PriceSeries,
    RejectedPoint,
    SeriesWarning,
)
from src.vnsignal.errors import PriceValidationError


def _coerce_date(value: Any) -> Optional[date]:
    """Best-effort date parsing used only to label rejected rows."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _coerce_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def validate_row(row: Mapping[str, Any]) -> PricePoint:
    """Build one ``PricePoint`` from a loose provider row.

    Raises:
        PriceValidationError: If the row is incomplete or its OHLC values
            are inconsistent.
    """
    try:
        return PricePoint.model_validate(dict(row))
    except ValidationError as e:
        raise PriceValidationError(_first_error(e)) from e


def build_price_series(
    symbol: str,
    rows: Sequence[Mapping[str, Any]],
    stale_tolerance_pct: float = 0.5,
) -> PriceSeries:
    """Validate raw rows and assemble an ascending ``PriceSeries``.

    Args:
        symbol: Ticker the rows belong to.
        rows: Mappings whose keys follow the ``PricePoint`` field names.
              Order does not matter.
        stale_tolerance_pct: Percentage difference between a rejected
            latest close and the surviving latest close above which the
            series is flagged as showing a stale current price.

    Returns:
        A ``PriceSeries`` carrying the valid points, the rejected rows and
        any data-quality warnings.
    """
    accepted: Dict[date, PricePoint] = {}
    rejected: List[RejectedPoint] = []

    for row in rows:
        try:
            point = validate_row(row)
        except PriceValidationError as e:
            rejected.append(
                RejectedPoint(
                    trade_date=_coerce_date(row.get("trade_date")),
                    close_price=_coerce_float(row.get("close_price")),
                    reason=str(e),
                )
            )
            continue

        if point.trade_date in accepted:
            rejected.append(
                RejectedPoint(
                    trade_date=point.trade_date,
                    close_price=point.close_price,
                    reason="duplicate trade_date",
                )
            )
            continue

        accepted[point.trade_date] = point

    points = [accepted[d] for d in sorted(accepted)]
    warnings: List[SeriesWarning] = []

    if rejected:
        logger.warning(
            f"{symbol}: dropped {len(rejected)} of {len(rows)} price rows "
            "before indicator computation"
        )
        for r in rejected:
            logger.debug(f"{symbol}: rejected {r.trade_date} ({r.reason})")
        warnings.append(
            SeriesWarning(
                kind="rows_rejected",
                message=f"{len(rejected)} price rows rejected",
            )
        )

    stale = _check_stale_latest(symbol, points, rejected, stale_tolerance_pct)
    if stale is not None:
        warnings.append(stale)

    return PriceSeries(
        symbol=symbol,
        points=points,
        rejected=rejected,
        warnings=warnings,
    )


def _check_stale_latest(
    symbol: str,
    points: List[PricePoint],
    rejected: List[RejectedPoint],
    tolerance_pct: float,
) -> Optional[SeriesWarning]:
    """Flag a series whose newest raw bar was dropped."""
    dated_rejects = [
        r for r in rejected
        if r.trade_date is not None and r.reason != "duplicate trade_date"
    ]
    if not dated_rejects:
        return None

    newest_reject = max(dated_rejects, key=lambda r: r.trade_date)
    if points and newest_reject.trade_date <= points[-1].trade_date:
        return None

    if not points:
        message = (
            f"Latest bar {newest_reject.trade_date} rejected and no valid "
            "bars remain"
        )
    else:
        surviving = points[-1]
        if newest_reject.close_price is not None and newest_reject.close_price > 0:
            diff_pct = (
                abs(surviving.close_price - newest_reject.close_price)
                / newest_reject.close_price * 100
            )
            if diff_pct <= tolerance_pct:
                return None
            detail = f"{diff_pct:.2f}% away from the rejected close"
        else:
            detail = "rejected bar had no readable close"

        message = (
            f"Latest bar {newest_reject.trade_date} rejected; current price "
            f"falls back to {surviving.trade_date} close "
            f"{surviving.close_price} ({detail})"
        )

    logger.warning(f"{symbol}: {message}")
    return SeriesWarning(kind="stale_current_price", message=message)
