"""
Factory for market data providers.

Maps a provider name (``"vndirect"``, ``"yfinance"``) to the concrete
``MarketDataProvider`` used for a run.
"""
from typing import Literal

from loguru import logger

from src.vnsignal.data.adapters.vndirect_adapter import VNDirectAdapter
from src.vnsignal.data.adapters.yfinance_adapter import YFinanceAdapter
from src.vnsignal.data.base import MarketDataProvider

ProviderName = Literal["vndirect", "yfinance"]


class ProviderFactory:
    """Stateless factory that resolves a provider name to an adapter instance."""

    @staticmethod
    def get_provider(name: ProviderName, **kwargs) -> MarketDataProvider:
        """Create and return a ``MarketDataProvider``.

        Args:
            name: ``"vndirect"`` or ``"yfinance"``.
            **kwargs: Forwarded to the adapter constructor
                - *vndirect*: ``session``, ``timeout``.
                - *yfinance*: ``proxy``, ``suffix``.
                - both: ``stale_tolerance_pct``.

        Raises:
            ValueError: If *name* is not recognised.
        """
        logger.info(f"Initializing market data provider: {name.upper()}")

        if name == "vndirect":
            return VNDirectAdapter(**kwargs)

        if name == "yfinance":
            return YFinanceAdapter(**kwargs)

        raise ValueError(f"Unknown market data provider: {name}")
