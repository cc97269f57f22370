"""
VNDirect finfo market data adapter.

Fetches daily OHLCV bars and the latest fundamental ratios from the public
``api-finfo.vndirect.com.vn`` v4 endpoints.  Prices come back newest first
with both raw and adjusted fields; ratios come back as a flat list of
``{ratioCode, value}`` entries.

Transport failures (timeouts, HTTP errors, non-JSON bodies) are raised as
``UpstreamFetchError`` so the pipeline can skip the symbol; payload shape
problems are returned as explicit parse errors.
"""
from typing import Optional

import requests
from loguru import logger

from src.vnsignal.data.base import MarketDataProvider
from src.vnsignal.data.parsing import (
    PriceRowsParseError,
    RatiosParseResult,
    parse_vndirect_prices,
    parse_vndirect_ratios,
)
from src.vnsignal.data.schemas import (
    BVPS,
    DIVIDEND_YIELD,
    EPS,
    FREE_FLOAT,
    MARKET_CAP,
    PB,
    PE,
    ROA,
    ROE,
    PriceSeries,
)
from src.vnsignal.errors import UpstreamFetchError

REQUEST_TIMEOUT = 15  # seconds per request

RATIO_CODES = [PE, PB, ROE, ROA, DIVIDEND_YIELD, MARKET_CAP, FREE_FLOAT, EPS, BVPS]


class VNDirectAdapter(MarketDataProvider):
    """Concrete MarketDataProvider backed by the VNDirect finfo API."""

    BASE_URL = "https://api-finfo.vndirect.com.vn/v4"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
        stale_tolerance_pct: float = 0.5,
    ):
        """
        Args:
            session: Optional pre-configured session (tests inject a fake).
            timeout: Per-request timeout in seconds.
            stale_tolerance_pct: Forwarded to series validation.
        """
        super().__init__(stale_tolerance_pct=stale_tolerance_pct)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
            "Referer": "https://dstock.vndirect.com.vn/",
        })

    def _get_json(self, symbol: str, path: str, params: dict):
        url = f"{self.BASE_URL}/{path}"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            logger.error(f"{symbol}: VNDirect request to /{path} failed: {e}")
            raise UpstreamFetchError(f"{symbol}: VNDirect /{path} failed: {e}") from e
        except ValueError as e:
            logger.error(f"{symbol}: VNDirect /{path} returned non-JSON body")
            raise UpstreamFetchError(f"{symbol}: VNDirect /{path} returned non-JSON") from e

    def fetch_price_series(self, symbol: str, lookback_days: int) -> PriceSeries:
        """Download the latest *lookback_days* sessions for *symbol*."""
        code = symbol.upper()
        logger.info(f"Fetching {lookback_days} sessions for {code} from VNDirect")

        payload = self._get_json(
            code,
            "stock_prices",
            {"sort": "date:desc", "q": f"code:{code}", "size": lookback_days},
        )

        parsed = parse_vndirect_prices(code, payload)
        if isinstance(parsed, PriceRowsParseError):
            raise UpstreamFetchError(f"{code}: {parsed.reason}")

        return self.to_series(code, parsed.rows)

    def fetch_fundamental_ratios(self, symbol: str) -> RatiosParseResult:
        """Download the latest ratio snapshot for *symbol*."""
        code = symbol.upper()
        logger.debug(f"Fetching ratios for {code} from VNDirect")

        payload = self._get_json(
            code,
            "ratios/latest",
            {
                "filter": ",".join(f"ratioCode:{r}" for r in RATIO_CODES),
                "where": f"code:{code}",
            },
        )
        return parse_vndirect_ratios(code, payload)
