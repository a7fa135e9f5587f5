"""USD price cache with process-wide rate limiting."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from ..core.errors import UpstreamUnavailable
from ..core.interfaces import PriceSource
from ..core.registry import fallback_price
from ..core.types import PriceOrigin, PriceQuote

logger = structlog.get_logger(__name__)


class IntervalRateLimiter:
    """Keeps consecutive upstream calls at least ``min_interval`` seconds apart.

    One shared last-call timestamp for every caller; concurrent callers queue
    on a lock so their start times are serialized.
    """

    def __init__(
        self,
        min_interval: float = 1.1,
        now_fn: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize rate limiter.

        Args:
            min_interval: Minimum seconds between call start times
            now_fn: Clock used to stamp calls
            sleep_fn: Coroutine used to wait out the interval
        """
        self.min_interval = min_interval
        self.now_fn = now_fn
        self.sleep_fn = sleep_fn
        self.last_call: float | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """Wait for the next call slot.

        Returns:
            Seconds spent waiting
        """
        async with self._lock:
            waited = 0.0
            now = self.now_fn()
            if self.last_call is not None:
                remaining = self.min_interval - (now - self.last_call)
                if remaining > 0:
                    logger.debug("Rate limit wait", seconds=round(remaining, 3))
                    await self.sleep_fn(remaining)
                    waited = remaining
                    now = self.now_fn()
            self.last_call = now
            return waited


class PriceCache:
    """Last-known USD prices keyed by lowercase symbol.

    Entries never leave the map on their own; freshness is judged on read.
    A fetch failure serves the stale entry, or the static default price when
    nothing was ever fetched, so price lookups never fail.
    """

    def __init__(
        self,
        source: PriceSource,
        rate_limiter: IntervalRateLimiter | None = None,
        ttl_seconds: float = 300.0,
        market_ttl_seconds: float = 300.0,
        timeout_seconds: float = 10.0,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        self.source = source
        self.rate_limiter = rate_limiter or IntervalRateLimiter()
        self.ttl_seconds = ttl_seconds
        self.market_ttl_seconds = market_ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.now_fn = now_fn

        self._prices: dict[str, PriceQuote] = {}
        self._market: dict[str, tuple[dict[str, Any], float]] = {}
        # Bumped by clear() so fetches started before a reset are not stored
        self._generation = 0

    @property
    def size(self) -> int:
        return len(self._prices)

    def peek(self, symbol: str) -> PriceQuote | None:
        return self._prices.get(symbol.lower())

    def _is_fresh(self, fetched_at: float, ttl: float) -> bool:
        return self.now_fn() - fetched_at < ttl

    def _store(self, quote: PriceQuote, generation: int) -> None:
        if generation != self._generation:
            logger.debug("Dropping price fetched before cache reset", symbol=quote.symbol)
            return
        self._prices[quote.symbol.lower()] = quote

    def _recover(self, symbol: str, error: Exception) -> PriceQuote:
        cached = self._prices.get(symbol.lower())
        if cached is not None:
            logger.warning(
                "Price fetch failed; serving stale cache",
                symbol=symbol,
                age_seconds=round(self.now_fn() - cached.fetched_at, 1),
                error=str(error),
            )
            return cached.model_copy(update={"origin": PriceOrigin.STALE})

        return self._default(symbol, reason=str(error))

    def _default(self, symbol: str, reason: str) -> PriceQuote:
        price = fallback_price(symbol)
        logger.warning(
            "No price available; using static default",
            symbol=symbol,
            price=price,
            reason=reason,
        )
        return PriceQuote(
            symbol=symbol,
            usd_price=price,
            fetched_at=self.now_fn(),
            origin=PriceOrigin.DEFAULT,
        )

    async def lookup(self, symbol: str) -> PriceQuote:
        """Resolve one price, reporting where it came from.

        Args:
            symbol: Token symbol, any case

        Returns:
            Price quote with origin fresh, cached, stale or default
        """
        symbol = symbol.upper()
        cached = self._prices.get(symbol.lower())
        if cached is not None and self._is_fresh(cached.fetched_at, self.ttl_seconds):
            logger.debug("Price cache hit", symbol=symbol)
            return cached.model_copy(update={"origin": PriceOrigin.CACHED})

        generation = self._generation
        try:
            await self.rate_limiter.acquire()
            price = await asyncio.wait_for(
                self.source.fetch_price(symbol), timeout=self.timeout_seconds
            )
            quote = PriceQuote(
                symbol=symbol,
                usd_price=price,
                fetched_at=self.now_fn(),
                origin=PriceOrigin.FRESH,
            )
        except Exception as e:
            return self._recover(symbol, e)

        self._store(quote, generation)
        logger.debug("Price fetched", symbol=symbol, price=quote.usd_price)
        return quote

    async def get_price(self, symbol: str) -> float:
        return (await self.lookup(symbol)).usd_price

    async def lookup_many(self, symbols: list[str]) -> dict[str, PriceQuote]:
        """Resolve several prices with at most one upstream call.

        Symbols missing from the upstream response get the static default.
        If the whole request fails, each symbol recovers as in ``lookup``.

        Returns:
            Quotes keyed by uppercase symbol
        """
        requested = list(dict.fromkeys(s.upper() for s in symbols))
        results: dict[str, PriceQuote] = {}
        missing: list[str] = []

        for symbol in requested:
            cached = self._prices.get(symbol.lower())
            if cached is not None and self._is_fresh(cached.fetched_at, self.ttl_seconds):
                results[symbol] = cached.model_copy(update={"origin": PriceOrigin.CACHED})
            else:
                missing.append(symbol)

        if not missing:
            return results

        generation = self._generation
        try:
            await self.rate_limiter.acquire()
            prices = await asyncio.wait_for(
                self.source.fetch_prices(missing), timeout=self.timeout_seconds
            )
        except Exception as e:
            logger.warning("Batch price fetch failed", symbols=missing, error=str(e))
            for symbol in missing:
                results[symbol] = self._recover(symbol, e)
            return results

        fetched_at = self.now_fn()
        for symbol in missing:
            price = prices.get(symbol)
            if isinstance(price, (int, float)) and price > 0:
                quote = PriceQuote(
                    symbol=symbol,
                    usd_price=float(price),
                    fetched_at=fetched_at,
                    origin=PriceOrigin.FRESH,
                )
                self._store(quote, generation)
                results[symbol] = quote
            else:
                results[symbol] = self._default(symbol, reason="missing from batch response")

        logger.debug(
            "Batch prices resolved",
            requested=len(requested),
            fetched=len(missing),
        )
        return results

    async def get_prices(self, symbols: list[str]) -> dict[str, float]:
        quotes = await self.lookup_many(symbols)
        return {symbol: quote.usd_price for symbol, quote in quotes.items()}

    async def get_market_data(self, symbol: str) -> dict[str, Any]:
        """Detailed market data for a token, cached and rate-limited.

        Raises:
            UpstreamUnavailable: If the fetch fails and nothing is cached
        """
        key = symbol.lower()
        cached = self._market.get(key)
        if cached is not None and self._is_fresh(cached[1], self.market_ttl_seconds):
            return cached[0]

        generation = self._generation
        try:
            await self.rate_limiter.acquire()
            data = await asyncio.wait_for(
                self.source.fetch_market_data(symbol.upper()),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            if cached is not None:
                logger.warning(
                    "Market data fetch failed; serving stale cache",
                    symbol=symbol,
                    error=str(e),
                )
                return cached[0]
            if isinstance(e, UpstreamUnavailable):
                raise
            raise UpstreamUnavailable(
                f"Market data unavailable for {symbol}: {e}", source="price"
            ) from e

        if generation == self._generation:
            self._market[key] = (data, self.now_fn())
        return data

    def clear(self) -> None:
        """Forget every price and market data entry."""
        self._prices.clear()
        self._market.clear()
        self._generation += 1
        logger.info("Price cache cleared")
