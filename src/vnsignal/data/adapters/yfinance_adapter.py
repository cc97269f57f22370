"""
YFinance Market Data Adapter.

Fallback provider for HOSE/HNX listings through Yahoo Finance, where
Vietnamese tickers carry a ``.VN`` suffix (``FPT`` → ``FPT.VN``).  Handles
quirks across yfinance versions (MultiIndex columns on single-ticker
downloads, renamed 'Adj Close' variants) so the engine always receives
rows in the internal ``PricePoint`` shape.

Fundamental ratios are read from ``Ticker.info`` and renamed to the ratio
codes the classifier understands.
"""
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd
import yfinance as yf
from loguru import logger

from src.vnsignal.data.base import MarketDataProvider
from src.vnsignal.data.parsing import RatiosParseError, RatiosParseResult, ratios_from_mapping
from src.vnsignal.data.schemas import (
    BVPS,
    DIVIDEND_YIELD,
    EPS,
    MARKET_CAP,
    PB,
    PE,
    ROA,
    ROE,
    PriceSeries,
)
from src.vnsignal.errors import UpstreamFetchError

# Ticker.info key → internal ratio code.
_INFO_TO_RATIO = {
    "trailingPE": PE,
    "priceToBook": PB,
    "returnOnEquity": ROE,
    "returnOnAssets": ROA,
    "dividendYield": DIVIDEND_YIELD,
    "marketCap": MARKET_CAP,
    "trailingEps": EPS,
    "bookValue": BVPS,
}

_COLUMN_MAP = {
    "open": "open_price",
    "high": "high_price",
    "low": "low_price",
    "close": "close_price",
    "adj close": "adj_close",
    "adj_close": "adj_close",
    "adjclose": "adj_close",
    "volume": "volume",
}


class YFinanceAdapter(MarketDataProvider):
    """Concrete MarketDataProvider backed by Yahoo Finance."""

    def __init__(
        self,
        suffix: str = ".VN",
        proxy: Optional[str] = None,
        stale_tolerance_pct: float = 0.5,
    ):
        """
        Args:
            suffix: Exchange suffix appended to bare tickers.
            proxy: Optional HTTP/SOCKS proxy URL for restricted networks.
            stale_tolerance_pct: Forwarded to series validation.
        """
        super().__init__(stale_tolerance_pct=stale_tolerance_pct)
        self.suffix = suffix
        self.proxy = proxy

    def _yahoo_ticker(self, symbol: str) -> str:
        code = symbol.upper()
        return code if code.endswith(self.suffix) else f"{code}{self.suffix}"

    def fetch_price_series(self, symbol: str, lookback_days: int) -> PriceSeries:
        """Download daily bars covering roughly *lookback_days* sessions."""
        ticker = self._yahoo_ticker(symbol)
        end_date = date.today() + timedelta(days=1)  # yfinance end is exclusive
        # ~1.5 calendar days per trading session covers weekends and holidays.
        start_date = end_date - timedelta(days=int(lookback_days * 1.5) + 7)

        logger.info(
            f"Fetching {ticker} ({start_date} to {end_date}) | Proxy: {self.proxy}"
        )

        try:
            if self.proxy:
                yf.set_config(proxy=self.proxy)
            df = yf.download(
                ticker,
                start=start_date,
                end=end_date,
                auto_adjust=False,   # Keep raw Close AND Adj Close
                actions=False,
                progress=False,
                threads=False,
            )
        except Exception as e:
            logger.error(f"YFinance download failed for {ticker}: {e}")
            raise UpstreamFetchError(f"{symbol}: yfinance download failed: {e}") from e

        if df is None or df.empty:
            logger.warning(f"No data returned for {ticker}. Possible delisted symbol.")
            raise UpstreamFetchError(f"{symbol}: yfinance returned no rows")

        rows = self._to_rows(df)
        if not rows:
            raise UpstreamFetchError(f"{symbol}: yfinance columns unrecognised")

        series = self.to_series(symbol.upper(), rows[-lookback_days:])
        logger.success(f"Fetched {len(series)} sessions for {ticker}.")
        return series

    def _to_rows(self, df: pd.DataFrame) -> List[Dict[str, Any]]:
        """Transform a raw yfinance frame into ``PricePoint``-shaped rows.

        Recent yfinance versions return a (Price, Ticker) MultiIndex even
        for a single ticker; the ticker level is dropped so column lookup
        is uniform.

        Returns:
            One dict per session, or an empty list when the required price
            columns are missing.
        """
        data = df.copy()

        # Protect against zombie DataFrames that have an index but no columns.
        if len(data.columns) == 0:
            return []

        if isinstance(data.columns, pd.MultiIndex):
            price_level = 0
            for level in range(data.columns.nlevels):
                values = {str(v).lower() for v in data.columns.get_level_values(level)}
                if "close" in values:
                    price_level = level
                    break
            data.columns = data.columns.get_level_values(price_level)

        data.columns = [str(c).lower() for c in data.columns]
        data = data.rename(columns=_COLUMN_MAP)

        required = {"open_price", "high_price", "low_price", "close_price"}
        if not required.issubset(data.columns):
            logger.warning(f"Missing price columns: {required - set(data.columns)}")
            return []

        data = data.loc[:, ~data.columns.duplicated()]
        data = data.dropna(subset=sorted(required))
        data["trade_date"] = pd.to_datetime(data.index).date

        keep = ["trade_date"] + [
            c for c in ("open_price", "high_price", "low_price", "close_price", "adj_close", "volume")
            if c in data.columns
        ]
        return data[keep].to_dict(orient="records")

    def fetch_fundamental_ratios(self, symbol: str) -> RatiosParseResult:
        """Read ratio fields from ``Ticker.info``."""
        ticker = self._yahoo_ticker(symbol)
        try:
            info = yf.Ticker(ticker).info
        except Exception as e:
            logger.error(f"YFinance info lookup failed for {ticker}: {e}")
            raise UpstreamFetchError(f"{symbol}: yfinance info failed: {e}") from e

        if not info:
            return RatiosParseError(symbol=symbol.upper(), reason="empty Ticker.info")

        raw = {
            code: info.get(key)
            for key, code in _INFO_TO_RATIO.items()
            if info.get(key) is not None
        }
        return ratios_from_mapping(symbol.upper(), raw)
