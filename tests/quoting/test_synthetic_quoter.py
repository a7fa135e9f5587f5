"""Tests for the synthetic DEX quoter and the multi-DEX fan-out."""

from unittest.mock import AsyncMock, Mock

import pytest

from aggregator.core.registry import APTOS_DEXES
from aggregator.core.types import DexQuote, PoolSnapshot
from aggregator.quoting.synthetic import (
    MultiDexQuoter,
    SyntheticDexQuoter,
    liquidity_factor,
    slippage_factor,
)

PRICES = {"APT": 6.75, "USDC": 1.0}


def make_price_cache(prices: dict[str, float] | None = None) -> Mock:
    prices = prices or PRICES
    cache = Mock()
    cache.get_price = AsyncMock(side_effect=lambda symbol: prices[symbol])
    cache.get_prices = AsyncMock(
        side_effect=lambda symbols: {s: prices[s] for s in symbols}
    )
    return cache


def make_pool_cache(tvl: float | None = 2_000_000.0, missing: set[str] | None = None):
    missing = missing or set()
    cache = Mock()
    cache.ensure_fresh = AsyncMock()
    cache.get = Mock(
        side_effect=lambda name: None
        if name in missing
        else PoolSnapshot(dex_name=name, payload={}, tvl_usd=tvl)
    )
    return cache


class TestFactors:
    """Test liquidity and slippage factors."""

    def test_liquidity_factor_clamped(self) -> None:
        """Test the liquidity factor stays within [0.9, 1.0]."""
        assert liquidity_factor(2_000_000) == 1.0
        assert liquidity_factor(1_000) == 0.9
        assert liquidity_factor(500_000) == pytest.approx(0.94982, rel=1e-4)
        assert liquidity_factor(None) == 1.0
        assert liquidity_factor(0) == 1.0

    def test_slippage_factor_capped(self) -> None:
        """Test slippage is capped at 10% and uses a 1M TVL floor."""
        assert slippage_factor(675, 2_000_000) == pytest.approx(0.0003375)
        assert slippage_factor(500, 10_000) == pytest.approx(0.0005)
        assert slippage_factor(10_000_000, 2_000_000) == 0.1
        assert slippage_factor(1_000, None) == pytest.approx(0.001)


class TestSyntheticDexQuoter:
    """Test single-DEX quotes."""

    @pytest.mark.asyncio
    async def test_reference_quote(self) -> None:
        """Test the 100 APT -> USDC quote on a 2M TVL pool."""
        quoter = SyntheticDexQuoter(make_price_cache(), make_pool_cache())

        quote = await quoter.quote(APTOS_DEXES["PANCAKE"], "APT", "USDC", "100")

        assert isinstance(quote, DexQuote)
        assert quote.dex == "PANCAKE"
        assert quote.dex_name == "PancakeSwap"
        assert quote.output_amount == "672.747871"
        assert quote.price_impact == "0.03"
        assert quote.fee == "0.3%"
        assert quote.gas_estimate == 0.0002
        assert quote.dex_url == "https://pancakeswap.finance/aptos/swap"

    @pytest.mark.asyncio
    async def test_uses_supplied_prices(self) -> None:
        """Test prices passed by the caller skip the price cache."""
        price_cache = make_price_cache()
        quoter = SyntheticDexQuoter(price_cache, make_pool_cache())

        quote = await quoter.quote(
            APTOS_DEXES["PANCAKE"], "APT", "USDC", 100, prices=PRICES
        )

        assert quote.output_amount == "672.747871"
        price_cache.get_price.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0.001", "1", "100", "1e6", "1e12"])
    async def test_price_impact_never_exceeds_ten_percent(self, amount) -> None:
        """Test price impact is bounded for any trade size."""
        quoter = SyntheticDexQuoter(make_price_cache(), make_pool_cache(tvl=50_000))

        quote = await quoter.quote(APTOS_DEXES["THALA"], "APT", "USDC", amount)

        assert 0 <= float(quote.price_impact) <= 10.0
        assert float(quote.output_amount) >= 0

    @pytest.mark.asyncio
    async def test_missing_pool_gives_no_quote(self) -> None:
        """Test a DEX without a pool snapshot yields None."""
        quoter = SyntheticDexQuoter(
            make_price_cache(), make_pool_cache(missing={"Liquidswap"})
        )

        assert await quoter.quote(APTOS_DEXES["LIQUIDSWAP"], "APT", "USDC", "1") is None

    @pytest.mark.asyncio
    async def test_zero_price_gives_no_quote(self) -> None:
        """Test an unresolvable price yields None."""
        quoter = SyntheticDexQuoter(
            make_price_cache({"APT": 6.75, "USDC": 0.0}), make_pool_cache()
        )

        assert await quoter.quote(APTOS_DEXES["PANCAKE"], "APT", "USDC", "1") is None

    @pytest.mark.asyncio
    async def test_errors_become_no_quote(self) -> None:
        """Test unexpected errors never escape the quoter."""
        price_cache = Mock()
        price_cache.get_price = AsyncMock(side_effect=RuntimeError("boom"))
        quoter = SyntheticDexQuoter(price_cache, make_pool_cache())

        assert await quoter.quote(APTOS_DEXES["PANCAKE"], "APT", "USDC", "1") is None
        assert await quoter.quote(APTOS_DEXES["PANCAKE"], "APT", "USDC", "x") is None


class TestMultiDexQuoter:
    """Test the concurrent fan-out."""

    @pytest.mark.asyncio
    async def test_one_slot_per_dex_in_registry_order(self) -> None:
        """Test results keep registry order and None for missing DEXes."""
        pool_cache = make_pool_cache(missing={"AUX Exchange"})
        price_cache = make_price_cache()
        quoter = SyntheticDexQuoter(price_cache, pool_cache)
        fanout = MultiDexQuoter(
            quoter, pool_cache, price_cache, list(APTOS_DEXES.values())
        )

        quotes = await fanout.all_quotes("APT", "USDC", "10")

        assert len(quotes) == len(APTOS_DEXES)
        assert [q.dex if q else None for q in quotes] == [
            "PANCAKE",
            "LIQUIDSWAP",
            None,
            "THALA",
            "PANORA",
        ]
        pool_cache.ensure_fresh.assert_awaited_once()
        price_cache.get_prices.assert_awaited_once_with(["APT", "USDC"])
        price_cache.get_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_raising_quoter_keeps_siblings(self) -> None:
        """Test one DEX raising does not cancel the others."""
        pool_cache = make_pool_cache()
        price_cache = make_price_cache()
        dexes = list(APTOS_DEXES.values())

        async def quote(dex, *args, **kwargs):
            if dex.key == "LIQUIDSWAP":
                raise RuntimeError("boom")
            return DexQuote(
                dex=dex.key,
                dex_name=dex.name,
                output_amount="1.000000",
                price_impact="0.00",
                fee="0.3%",
                dex_url=dex.url,
            )

        quoter = Mock()
        quoter.quote = AsyncMock(side_effect=quote)
        fanout = MultiDexQuoter(quoter, pool_cache, price_cache, dexes)

        quotes = await fanout.all_quotes("APT", "USDC", "1")

        assert quotes[1] is None
        assert sum(1 for q in quotes if q is not None) == len(dexes) - 1

    @pytest.mark.asyncio
    async def test_pool_refresh_failure_propagates(self) -> None:
        """Test a pool refresh failure with no cache reaches the caller."""
        pool_cache = make_pool_cache()
        pool_cache.ensure_fresh.side_effect = RuntimeError("no pools")
        price_cache = make_price_cache()
        fanout = MultiDexQuoter(
            SyntheticDexQuoter(price_cache, pool_cache),
            pool_cache,
            price_cache,
            list(APTOS_DEXES.values()),
        )

        with pytest.raises(RuntimeError, match="no pools"):
            await fanout.all_quotes("APT", "USDC", "1")
