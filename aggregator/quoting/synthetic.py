"""Synthetic per-DEX quotes from prices, liquidity and fees."""

import asyncio
import math

import structlog

from ..core.amounts import format_amount, format_fee, format_percent, parse_amount
from ..core.errors import NoQuoteAvailable
from ..core.types import DexDescriptor, DexQuote
from ..pricing.cache import PriceCache
from ..pricing.pools import PoolCache

logger = structlog.get_logger(__name__)

REFERENCE_TVL_USD = 1_000_000.0
MIN_LIQUIDITY_FACTOR = 0.9
MAX_SLIPPAGE = 0.1


def liquidity_factor(tvl_usd: float | None) -> float:
    """Rate multiplier for pool depth, clamped to [0.9, 1.0]."""
    if not tvl_usd or tvl_usd <= 0:
        return 1.0
    factor = math.log10(tvl_usd) / math.log10(REFERENCE_TVL_USD)
    return min(1.0, max(MIN_LIQUIDITY_FACTOR, factor))


def slippage_factor(amount_usd: float, tvl_usd: float | None) -> float:
    """Trade size relative to pool depth, capped at 10%."""
    return min(MAX_SLIPPAGE, amount_usd / max(tvl_usd or 0.0, REFERENCE_TVL_USD))


class SyntheticDexQuoter:
    """Estimates a single DEX's output without touching the chain."""

    def __init__(self, price_cache: PriceCache, pool_cache: PoolCache) -> None:
        self.price_cache = price_cache
        self.pool_cache = pool_cache

    async def _price(self, symbol: str, prices: dict[str, float] | None) -> float:
        if prices is not None and symbol in prices:
            return prices[symbol]
        return await self.price_cache.get_price(symbol)

    async def quote(
        self,
        dex: DexDescriptor,
        token_in: str,
        token_out: str,
        amount: str | float,
        prices: dict[str, float] | None = None,
    ) -> DexQuote | None:
        """Estimate the output of swapping ``amount`` on one DEX.

        Args:
            dex: DEX registry entry
            token_in: Input token symbol
            token_out: Output token symbol
            amount: Input amount in whole tokens
            prices: Prices already resolved by the caller, keyed by symbol

        Returns:
            Quote, or None when the DEX cannot price the pair
        """
        token_in, token_out = token_in.upper(), token_out.upper()
        try:
            value = parse_amount(amount)
            price_in = await self._price(token_in, prices)
            price_out = await self._price(token_out, prices)
            if not price_in or not price_out:
                raise NoQuoteAvailable(
                    f"Missing price for {token_in} or {token_out}", dex=dex.key
                )

            snapshot = self.pool_cache.get(dex.name)
            if snapshot is None:
                raise NoQuoteAvailable(f"No pool data for {dex.name}", dex=dex.key)

            tvl = snapshot.tvl_usd
            perfect_output = value * price_in / price_out
            slippage = slippage_factor(value * price_in, tvl)
            output = (
                perfect_output
                * liquidity_factor(tvl)
                * (1 - slippage)
                * (1 - dex.fee)
            )

            return DexQuote(
                dex=dex.key,
                dex_name=dex.name,
                output_amount=format_amount(output),
                price_impact=format_percent(slippage * 100),
                fee=format_fee(dex.fee),
                dex_url=dex.url,
                gas_estimate=dex.gas_estimate,
            )

        except NoQuoteAvailable as e:
            logger.info("No quote from DEX", dex=dex.name, reason=str(e))
            return None
        except Exception as e:
            logger.warning("DEX quote failed", dex=dex.name, error=str(e))
            return None


class MultiDexQuoter:
    """Quotes every registered DEX concurrently."""

    def __init__(
        self,
        quoter: SyntheticDexQuoter,
        pool_cache: PoolCache,
        price_cache: PriceCache,
        dexes: list[DexDescriptor],
    ) -> None:
        self.quoter = quoter
        self.pool_cache = pool_cache
        self.price_cache = price_cache
        self.dexes = dexes

    async def all_quotes(
        self, token_in: str, token_out: str, amount: str | float
    ) -> list[DexQuote | None]:
        """One slot per DEX in registry order; None where a DEX had no quote.

        Raises:
            Exception: If the pool refresh fails with nothing cached
        """
        await self.pool_cache.ensure_fresh()

        # One rate-limited call resolves both prices for every DEX
        prices = await self.price_cache.get_prices([token_in, token_out])

        results = await asyncio.gather(
            *(
                self.quoter.quote(dex, token_in, token_out, amount, prices=prices)
                for dex in self.dexes
            ),
            return_exceptions=True,
        )

        quotes: list[DexQuote | None] = []
        for dex, result in zip(self.dexes, results):
            if isinstance(result, BaseException):
                logger.warning("DEX quote raised", dex=dex.name, error=str(result))
                quotes.append(None)
            else:
                quotes.append(result)

        logger.debug(
            "DEX fan-out complete",
            token_in=token_in,
            token_out=token_out,
            quoted=sum(1 for q in quotes if q is not None),
            total=len(quotes),
        )
        return quotes
