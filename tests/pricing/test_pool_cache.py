"""Tests for the per-DEX pool snapshot cache."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from aggregator.core.errors import UpstreamUnavailable
from aggregator.core.registry import APTOS_DEXES
from aggregator.core.types import PoolSnapshot
from aggregator.pricing.pools import PoolCache

DEXES = list(APTOS_DEXES.values())


def snapshot_for(dex, tvl: float = 2_000_000.0) -> PoolSnapshot:
    return PoolSnapshot(dex_name=dex.name, payload={"tvl": tvl}, tvl_usd=tvl)


def make_source(failing: set[str] | None = None) -> Mock:
    failing = failing or set()

    async def fetch_liquidity(dex):
        if dex.key in failing:
            raise UpstreamUnavailable(f"{dex.name} down", source="test")
        return snapshot_for(dex)

    source = Mock()
    source.fetch_liquidity = AsyncMock(side_effect=fetch_liquidity)
    return source


class TestPoolCache:
    """Test pool cache refresh behaviour."""

    @pytest.mark.asyncio
    async def test_refresh_populates_all_dexes(self, clock) -> None:
        """Test a refresh fetches every DEX once."""
        source = make_source()
        cache = PoolCache(source, DEXES, ttl_seconds=300, now_fn=clock)

        await cache.ensure_fresh()

        assert cache.size == len(DEXES)
        assert cache.get("PancakeSwap").tvl_usd == 2_000_000.0
        assert source.fetch_liquidity.await_count == len(DEXES)

    @pytest.mark.asyncio
    async def test_fresh_cache_is_reused(self, clock) -> None:
        """Test no refetch happens inside the TTL."""
        source = make_source()
        cache = PoolCache(source, DEXES, ttl_seconds=300, now_fn=clock)

        await cache.ensure_fresh()
        clock.advance(299)
        await cache.ensure_fresh()

        assert source.fetch_liquidity.await_count == len(DEXES)

        clock.advance(2)
        await cache.ensure_fresh()
        assert source.fetch_liquidity.await_count == 2 * len(DEXES)

    @pytest.mark.asyncio
    async def test_failed_dex_has_no_entry(self, clock) -> None:
        """Test one failing DEX does not fail the refresh."""
        source = make_source(failing={"AUX"})
        cache = PoolCache(source, DEXES, now_fn=clock)

        await cache.ensure_fresh()

        assert cache.get("AUX Exchange") is None
        assert cache.get("Thala") is not None
        assert cache.size == len(DEXES) - 1

    @pytest.mark.asyncio
    async def test_refresh_rebuilds_whole_map(self, clock) -> None:
        """Test entries of DEXes that fail later disappear on refresh."""
        source = make_source()
        cache = PoolCache(source, DEXES, ttl_seconds=300, now_fn=clock)
        await cache.ensure_fresh()

        clock.advance(301)
        failing_source = make_source(failing={"PANCAKE", "LIQUIDSWAP"})
        cache.source = failing_source
        await cache.ensure_fresh()

        assert cache.get("PancakeSwap") is None
        assert cache.get("Liquidswap") is None
        assert cache.get("Panora") is not None

    @pytest.mark.asyncio
    async def test_refresh_error_propagates_when_empty(self, clock, monkeypatch) -> None:
        """Test a refresh that throws with an empty cache raises."""
        cache = PoolCache(make_source(), DEXES, now_fn=clock)
        monkeypatch.setattr(cache, "_refresh", AsyncMock(side_effect=RuntimeError("boom")))

        with pytest.raises(RuntimeError, match="boom"):
            await cache.ensure_fresh()

    @pytest.mark.asyncio
    async def test_refresh_error_keeps_prior_cache(self, clock, monkeypatch) -> None:
        """Test a refresh that throws keeps the previous snapshots."""
        cache = PoolCache(make_source(), DEXES, ttl_seconds=300, now_fn=clock)
        await cache.ensure_fresh()

        clock.advance(301)
        monkeypatch.setattr(cache, "_refresh", AsyncMock(side_effect=RuntimeError("boom")))
        await cache.ensure_fresh()

        assert cache.size == len(DEXES)
        assert cache.get("PancakeSwap") is not None

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_refresh(self, clock) -> None:
        """Test overlapping ensure_fresh calls issue one fetch per DEX."""
        gate = asyncio.Event()

        async def slow_fetch(dex):
            await gate.wait()
            return snapshot_for(dex)

        source = Mock()
        source.fetch_liquidity = AsyncMock(side_effect=slow_fetch)
        cache = PoolCache(source, DEXES, now_fn=clock)

        waiters = [asyncio.ensure_future(cache.ensure_fresh()) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        await asyncio.gather(*waiters)

        assert source.fetch_liquidity.await_count == len(DEXES)
        assert cache.size == len(DEXES)

    @pytest.mark.asyncio
    async def test_slow_dex_times_out(self, clock) -> None:
        """Test a hung liquidity fetch is bounded by the timeout."""

        async def fetch(dex):
            if dex.key == "THALA":
                await asyncio.sleep(10)
            return snapshot_for(dex)

        source = Mock()
        source.fetch_liquidity = AsyncMock(side_effect=fetch)
        cache = PoolCache(source, DEXES, timeout_seconds=0.01, now_fn=clock)

        await cache.ensure_fresh()

        assert cache.get("Thala") is None
        assert cache.size == len(DEXES) - 1

    @pytest.mark.asyncio
    async def test_clear_empties_cache(self, clock) -> None:
        """Test clear drops every snapshot and forces a refetch."""
        source = make_source()
        cache = PoolCache(source, DEXES, now_fn=clock)
        await cache.ensure_fresh()

        cache.clear()

        assert cache.size == 0
        assert not cache.is_fresh()
        await cache.ensure_fresh()
        assert source.fetch_liquidity.await_count == 2 * len(DEXES)
