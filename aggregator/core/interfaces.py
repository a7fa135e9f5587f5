"""Core interfaces for the quote aggregator."""

from typing import Any, Protocol

from .types import DexDescriptor, PoolSnapshot, SwapRoute


class PriceSource(Protocol):
    """Upstream USD price provider."""

    async def fetch_price(self, symbol: str) -> float:
        """Fetch the USD price of one token."""
        ...

    async def fetch_prices(self, symbols: list[str]) -> dict[str, float]:
        """Fetch USD prices in one request; unknown symbols are omitted."""
        ...

    async def fetch_market_data(self, symbol: str) -> dict[str, Any]:
        """Fetch detailed market data for one token."""
        ...


class LiquiditySource(Protocol):
    """Upstream liquidity/TVL provider."""

    async def fetch_liquidity(self, dex: DexDescriptor) -> PoolSnapshot:
        """Fetch the liquidity snapshot of one DEX."""
        ...


class ExternalAggregator(Protocol):
    """Third-party swap quote aggregator."""

    async def best_route(
        self, token_in: str, token_out: str, amount: str
    ) -> SwapRoute | None:
        """Return the aggregator's best route, or None when it has none."""
        ...


class ReserveReader(Protocol):
    """On-chain account resource reader."""

    async def account_resources(self, account: str) -> list[dict[str, Any]]:
        """List the Move resources stored under an account."""
        ...
