"""Exception hierarchy for the quote aggregator."""

from typing import Any


class AggregatorError(Exception):
    """Base exception for aggregator errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class UpstreamUnavailable(AggregatorError):
    """Raised when a price, liquidity or aggregator upstream cannot be reached."""

    def __init__(
        self,
        message: str,
        source: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.source = source


class NoQuoteAvailable(AggregatorError):
    """Raised when a DEX cannot price a token pair."""

    def __init__(
        self,
        message: str,
        dex: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.dex = dex


class ConfigurationError(AggregatorError):
    """Raised for unsupported tokens, routers or malformed request values."""

    pass


class TransactionPreparationFailure(AggregatorError):
    """Raised when a swap payload cannot be built."""

    pass
