"""
Exception taxonomy for the signal engine.

Each error maps to one recovery policy in the pipeline:
  - ``DataInsufficientError``: recovered by the classifier, which reports
    an explicit "insufficient data" result instead of a signal.
  - ``UpstreamFetchError``: the affected symbol is skipped and logged.
  - ``EnrichmentError`` / ``EnrichmentTimeoutError``: the pipeline falls
    back to the non-enriched classification.
  - ``PriceValidationError``: the offending OHLC row is dropped.
  - ``PersistenceError``: fatal for that symbol's recommendation only.
"""


class EngineError(Exception):
    """Root of every error raised by the engine."""


class DataInsufficientError(EngineError):
    """Raised when a series is shorter than an indicator's minimum window."""

    def __init__(self, symbol: str, required: int, available: int):
        self.symbol = symbol
        self.required = required
        self.available = available
        super().__init__(
            f"{symbol}: {available} price points available, "
            f"{required} required"
        )


class UpstreamFetchError(EngineError):
    """Raised when a price, ratio or watch-list fetch fails."""


class EnrichmentError(EngineError):
    """Raised by narrative enrichers on a non-recoverable failure."""


class EnrichmentTimeoutError(EnrichmentError):
    """Raised when the narrative model does not answer in time."""


class PriceValidationError(EngineError):
    """Raised for an OHLC row that violates the price consistency rule."""


class PersistenceError(EngineError):
    """Raised when a recommendation cannot be written to storage."""
