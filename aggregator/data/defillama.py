"""DeFiLlama liquidity, TVL and yield data."""

import time
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from ..core.errors import UpstreamUnavailable
from ..core.interfaces import LiquiditySource
from ..core.types import DexDescriptor, PoolSnapshot
from .http import JsonHttpClient

logger = structlog.get_logger(__name__)

# Approximate chain TVL served when DeFiLlama has never answered
FALLBACK_CHAIN_TVL_USD = 117_000_000.0


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def map_protocol_tvl(payload: Any, chain: str) -> float | None:
    """Extract a TVL figure from a DeFiLlama /protocol response.

    Prefers the current TVL on the given chain, then a numeric top-level
    ``tvl``, then the last point of the ``tvl`` history.
    """
    if not isinstance(payload, dict):
        return None

    chain_tvls = payload.get("currentChainTvls")
    if isinstance(chain_tvls, dict):
        chain_tvl = _as_float(chain_tvls.get(chain))
        if chain_tvl is not None:
            return chain_tvl

    tvl = payload.get("tvl")
    numeric = _as_float(tvl)
    if numeric is not None:
        return numeric

    if isinstance(tvl, list) and tvl:
        last = tvl[-1]
        if isinstance(last, dict):
            return _as_float(last.get("totalLiquidityUSD"))

    return None


def map_yield_opportunity(pool: dict[str, Any]) -> dict[str, Any]:
    project = str(pool.get("project", ""))
    return {
        "protocol": project,
        "pool": pool.get("symbol"),
        "apy": pool.get("apy") or 0,
        "tvl": pool.get("tvlUsd") or 0,
        "apy_base": pool.get("apyBase") or 0,
        "apy_reward": pool.get("apyReward") or 0,
        "reward_tokens": pool.get("rewardTokens") or [],
        "pool_id": pool.get("pool"),
    }


class DefiLlamaClient(JsonHttpClient, LiquiditySource):
    """DeFiLlama client for per-DEX liquidity and chain-wide data.

    Chain pools and chain TVL are cached here for ``list_ttl_seconds`` and
    served stale when a refresh fails. Per-DEX snapshots are cached by the
    pool cache, not by this client.
    """

    source_name = "defillama"

    def __init__(
        self,
        base_url: str = "https://api.llama.fi",
        yields_base_url: str = "https://yields.llama.fi",
        chain: str = "Aptos",
        list_ttl_seconds: float = 600.0,
        session: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        now_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(base_url, session=session, timeout=timeout)
        self.yields_base_url = yields_base_url.rstrip("/")
        self.chain = chain
        self.list_ttl_seconds = list_ttl_seconds
        self.now_fn = now_fn

        self._pools: list[dict[str, Any]] | None = None
        self._pools_at = 0.0
        self._chain_tvl: float | None = None
        self._chain_tvl_at = 0.0

    def _is_fresh(self, stamped_at: float) -> bool:
        return self.now_fn() - stamped_at < self.list_ttl_seconds

    async def fetch_liquidity(self, dex: DexDescriptor) -> PoolSnapshot:
        """Fetch one DEX's protocol record.

        Raises:
            UpstreamUnavailable: If DeFiLlama cannot be reached
        """
        payload = await self._make_request(f"protocol/{dex.liquidity_source_id}")
        tvl = map_protocol_tvl(payload, self.chain)

        logger.debug("Fetched DEX liquidity", dex=dex.name, tvl_usd=tvl)
        return PoolSnapshot(dex_name=dex.name, payload=payload, tvl_usd=tvl)

    async def get_chain_pools(self) -> list[dict[str, Any]]:
        """All yield pools on the configured chain; never raises."""
        if self._pools is not None and self._is_fresh(self._pools_at):
            logger.debug("Using cached chain pools", count=len(self._pools))
            return self._pools

        try:
            data = await self._make_request(f"{self.yields_base_url}/pools")
            entries = data.get("data") if isinstance(data, dict) else None
            if not isinstance(entries, list):
                raise UpstreamUnavailable(
                    "Invalid pools response", source=self.source_name
                )

            chain = self.chain.lower()
            pools = [
                pool
                for pool in entries
                if isinstance(pool, dict) and str(pool.get("chain", "")).lower() == chain
            ]
            self._pools = pools
            self._pools_at = self.now_fn()

            logger.info("Fetched chain pools", chain=self.chain, count=len(pools))
            return pools

        except UpstreamUnavailable as e:
            if self._pools is not None:
                logger.warning(
                    "Pools refresh failed; serving stale list",
                    chain=self.chain,
                    error=str(e),
                )
                return self._pools
            logger.error("Pools refresh failed with no cached list", error=str(e))
            return []

    async def get_chain_tvl(self) -> float:
        """Total TVL of the configured chain; never raises."""
        if self._chain_tvl is not None and self._is_fresh(self._chain_tvl_at):
            return self._chain_tvl

        try:
            data = await self._make_request("v2/chains")
            if not isinstance(data, list):
                raise UpstreamUnavailable(
                    "Invalid chains response", source=self.source_name
                )

            chain = self.chain.lower()
            entry = next(
                (
                    item
                    for item in data
                    if isinstance(item, dict) and str(item.get("name", "")).lower() == chain
                ),
                None,
            )
            tvl = _as_float(entry.get("tvl")) if entry else None
            if tvl is None:
                raise UpstreamUnavailable(
                    f"{self.chain} not found in chains response", source=self.source_name
                )

            self._chain_tvl = tvl
            self._chain_tvl_at = self.now_fn()
            logger.info("Fetched chain TVL", chain=self.chain, tvl_usd=tvl)
            return tvl

        except UpstreamUnavailable as e:
            if self._chain_tvl is not None:
                logger.warning("Chain TVL refresh failed; serving stale", error=str(e))
                return self._chain_tvl
            logger.warning(
                "Chain TVL unavailable; using fallback",
                fallback=FALLBACK_CHAIN_TVL_USD,
                error=str(e),
            )
            return FALLBACK_CHAIN_TVL_USD

    async def best_yield_opportunities(
        self, symbol: str, limit: int = 5
    ) -> list[dict[str, Any]]:
        """Highest-APY chain pools whose symbol contains the token.

        Args:
            symbol: Token symbol, matched case-insensitively
            limit: Maximum number of opportunities

        Returns:
            Opportunities sorted by APY, highest first
        """
        pools = await self.get_chain_pools()
        needle = symbol.upper()
        matching = [
            pool for pool in pools if needle in str(pool.get("symbol", "")).upper()
        ]
        matching.sort(key=lambda pool: _as_float(pool.get("apy")) or 0.0, reverse=True)
        return [map_yield_opportunity(pool) for pool in matching[: max(0, limit)]]

    def clear_cache(self) -> None:
        self._pools = None
        self._pools_at = 0.0
        self._chain_tvl = None
        self._chain_tvl_at = 0.0
