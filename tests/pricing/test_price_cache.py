"""Tests for the price cache and rate limiter."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from aggregator.core.errors import UpstreamUnavailable
from aggregator.core.types import PriceOrigin
from aggregator.pricing.cache import IntervalRateLimiter, PriceCache


def make_source(price: float = 6.5) -> Mock:
    source = Mock()
    source.fetch_price = AsyncMock(return_value=price)
    source.fetch_prices = AsyncMock(return_value={})
    source.fetch_market_data = AsyncMock(return_value={"market_data": {}})
    return source


def make_cache(source, clock, ttl: float = 300.0) -> PriceCache:
    limiter = IntervalRateLimiter(1.1, now_fn=clock, sleep_fn=clock.sleep)
    return PriceCache(source, limiter, ttl_seconds=ttl, now_fn=clock)


class TestIntervalRateLimiter:
    """Test the shared-timestamp rate limiter."""

    @pytest.mark.asyncio
    async def test_first_call_does_not_wait(self, clock) -> None:
        """Test the first acquisition is immediate."""
        limiter = IntervalRateLimiter(1.1, now_fn=clock, sleep_fn=clock.sleep)

        waited = await limiter.acquire()

        assert waited == 0.0
        assert limiter.last_call == 1000.0
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_waits_out_remaining_interval(self, clock) -> None:
        """Test a call inside the interval sleeps for the remainder."""
        limiter = IntervalRateLimiter(1.1, now_fn=clock, sleep_fn=clock.sleep)

        await limiter.acquire()
        clock.advance(0.5)
        waited = await limiter.acquire()

        assert waited == pytest.approx(0.6)
        assert clock.now == pytest.approx(1001.1)

    @pytest.mark.asyncio
    async def test_no_wait_after_interval(self, clock) -> None:
        """Test no sleep once the interval has passed."""
        limiter = IntervalRateLimiter(1.1, now_fn=clock, sleep_fn=clock.sleep)

        await limiter.acquire()
        clock.advance(5)
        assert await limiter.acquire() == 0.0


class TestPriceCache:
    """Test price cache freshness, staleness and fallbacks."""

    @pytest.mark.asyncio
    async def test_fresh_entry_served_without_upstream_call(self, clock) -> None:
        """Test two lookups inside the TTL make one upstream call."""
        source = make_source(6.5)
        cache = make_cache(source, clock)

        first = await cache.lookup("APT")
        clock.advance(299)
        second = await cache.lookup("apt")

        assert first.origin == PriceOrigin.FRESH
        assert second.origin == PriceOrigin.CACHED
        assert second.usd_price == 6.5
        assert source.fetch_price.await_count == 1

    @pytest.mark.asyncio
    async def test_expired_entry_triggers_one_new_call(self, clock) -> None:
        """Test a lookup after the TTL makes exactly one new call."""
        source = make_source(6.5)
        cache = make_cache(source, clock)

        await cache.lookup("APT")
        clock.advance(301)
        source.fetch_price.return_value = 7.25
        quote = await cache.lookup("APT")

        assert quote.origin == PriceOrigin.FRESH
        assert quote.usd_price == 7.25
        assert source.fetch_price.await_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_cold_lookups_are_spaced(self, clock) -> None:
        """Test concurrent lookups of distinct symbols hit upstream 1.1s apart."""
        call_times: list[float] = []

        async def fetch_price(symbol: str) -> float:
            call_times.append(clock())
            return 1.0

        source = make_source()
        source.fetch_price = AsyncMock(side_effect=fetch_price)
        cache = make_cache(source, clock)

        quotes = await asyncio.gather(
            *(cache.lookup(symbol) for symbol in ["APT", "USDC", "USDT", "DAI"])
        )

        assert all(quote.origin == PriceOrigin.FRESH for quote in quotes)
        assert len(call_times) == 4
        ordered = sorted(call_times)
        gaps = [b - a for a, b in zip(ordered, ordered[1:])]
        assert all(gap >= 1.1 - 1e-9 for gap in gaps)

    @pytest.mark.asyncio
    async def test_serves_stale_entry_on_failure(self, clock) -> None:
        """Test an expired entry is served when the refresh fails."""
        source = make_source(6.5)
        cache = make_cache(source, clock)

        await cache.lookup("APT")
        clock.advance(600)
        source.fetch_price.side_effect = UpstreamUnavailable("down", source="test")

        quote = await cache.lookup("APT")

        assert quote.origin == PriceOrigin.STALE
        assert quote.usd_price == 6.5

    @pytest.mark.asyncio
    async def test_static_default_without_cache(self, clock) -> None:
        """Test the static default is used when nothing was ever fetched."""
        source = make_source()
        source.fetch_price.side_effect = UpstreamUnavailable("down", source="test")
        cache = make_cache(source, clock)

        apt = await cache.lookup("APT")
        dai = await cache.lookup("DAI")

        assert apt.origin == PriceOrigin.DEFAULT
        assert apt.usd_price == 6.75
        assert dai.usd_price == 1.0
        assert cache.peek("APT") is None  # defaults are not cached

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, clock) -> None:
        """Test a hung upstream falls back instead of blocking."""

        async def hang(symbol: str) -> float:
            await asyncio.sleep(10)
            return 1.0

        source = make_source()
        source.fetch_price = AsyncMock(side_effect=hang)
        limiter = IntervalRateLimiter(1.1, now_fn=clock, sleep_fn=clock.sleep)
        cache = PriceCache(source, limiter, timeout_seconds=0.01, now_fn=clock)

        quote = await cache.lookup("APT")

        assert quote.origin == PriceOrigin.DEFAULT
        assert quote.usd_price == 6.75

    @pytest.mark.asyncio
    async def test_batch_lookup_single_call(self, clock) -> None:
        """Test batch lookup makes one call and defaults missing symbols."""
        source = make_source()
        source.fetch_prices.return_value = {"APT": 7.0}
        cache = make_cache(source, clock)

        quotes = await cache.lookup_many(["APT", "usdc"])

        assert source.fetch_prices.await_count == 1
        assert source.fetch_prices.await_args.args[0] == ["APT", "USDC"]
        assert quotes["APT"].origin == PriceOrigin.FRESH
        assert quotes["APT"].usd_price == 7.0
        assert quotes["USDC"].origin == PriceOrigin.DEFAULT
        assert quotes["USDC"].usd_price == 1.0

        again = await cache.get_prices(["APT"])
        assert again == {"APT": 7.0}
        assert source.fetch_prices.await_count == 1

    @pytest.mark.asyncio
    async def test_batch_failure_recovers_per_symbol(self, clock) -> None:
        """Test a failed batch serves stale entries and defaults."""
        source = make_source(6.0)
        cache = make_cache(source, clock)
        await cache.lookup("APT")
        clock.advance(400)
        source.fetch_prices.side_effect = UpstreamUnavailable("down", source="test")

        quotes = await cache.lookup_many(["APT", "USDC"])

        assert quotes["APT"].origin == PriceOrigin.STALE
        assert quotes["APT"].usd_price == 6.0
        assert quotes["USDC"].origin == PriceOrigin.DEFAULT

    @pytest.mark.asyncio
    async def test_clear_forces_refetch(self, clock) -> None:
        """Test clearing the cache forces a new upstream call."""
        source = make_source(6.5)
        cache = make_cache(source, clock)

        await cache.lookup("APT")
        cache.clear()
        clock.advance(2)
        quote = await cache.lookup("APT")

        assert quote.origin == PriceOrigin.FRESH
        assert source.fetch_price.await_count == 2

    @pytest.mark.asyncio
    async def test_fetch_in_flight_during_clear_is_dropped(self, clock) -> None:
        """Test a price fetched across a reset is returned but not stored."""
        source = make_source()
        cache = make_cache(source, clock)

        async def fetch_and_reset(symbol: str) -> float:
            cache.clear()
            return 9.0

        source.fetch_price = AsyncMock(side_effect=fetch_and_reset)

        quote = await cache.lookup("APT")

        assert quote.usd_price == 9.0
        assert cache.peek("APT") is None


class TestMarketData:
    """Test market data caching."""

    @pytest.mark.asyncio
    async def test_market_data_cached(self, clock) -> None:
        """Test market data is served from cache inside the TTL."""
        source = make_source()
        source.fetch_market_data.return_value = {"market_data": {"market_cap": {}}}
        cache = make_cache(source, clock)

        first = await cache.get_market_data("APT")
        second = await cache.get_market_data("APT")

        assert first is second
        assert source.fetch_market_data.await_count == 1

    @pytest.mark.asyncio
    async def test_market_data_stale_on_error(self, clock) -> None:
        """Test stale market data is served when the refresh fails."""
        source = make_source()
        cache = make_cache(source, clock)
        data = await cache.get_market_data("APT")

        clock.advance(301)
        source.fetch_market_data.side_effect = UpstreamUnavailable("down")

        assert await cache.get_market_data("APT") == data

    @pytest.mark.asyncio
    async def test_market_data_raises_without_cache(self, clock) -> None:
        """Test market data failure with an empty cache raises."""
        source = make_source()
        source.fetch_market_data.side_effect = RuntimeError("boom")
        cache = make_cache(source, clock)

        with pytest.raises(UpstreamUnavailable, match="Market data unavailable"):
            await cache.get_market_data("APT")
