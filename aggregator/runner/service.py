"""Quote aggregator service facade and command line entry point."""

import argparse
import asyncio
import logging
import sys
from typing import Any

import httpx
import structlog

from ..config.settings import PROFILES, AppSettings, load_settings
from ..core.amounts import parse_amount
from ..core.registry import APTOS_DEXES, NetworkContext, parse_symbol
from ..core.types import DexQuote, Network, PriceQuote, SwapExecution, SwapRoute
from ..data.aptos import AptosReserveReader
from ..data.coingecko import CoinGeckoPriceSource
from ..data.defillama import DefiLlamaClient
from ..data.panora import PanoraAggregator
from ..pricing.cache import IntervalRateLimiter, PriceCache
from ..pricing.pools import PoolCache
from ..quoting.fallback import FallbackRouteSynthesizer
from ..quoting.synthetic import MultiDexQuoter, SyntheticDexQuoter
from ..routing.rates import ExchangeRateService
from ..routing.selector import RouteSelector

logger = structlog.get_logger(__name__)


class AggregatorService:
    """Quoting and routing entry point for the chat and dashboard layers.

    One instance owns one set of caches, one rate limiter and one network
    context; every component it assembles shares them.
    """

    def __init__(
        self, settings: AppSettings, session: httpx.AsyncClient | None = None
    ) -> None:
        """Initialize service with assembled components."""
        self.settings = settings
        self.session = session or httpx.AsyncClient(
            timeout=settings.upstream_timeout_seconds,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        self._owns_session = session is None

        self.components = self._assemble(settings)
        self.context: NetworkContext = self.components["context"]

        logger.info(
            "Aggregator service initialized",
            network=self.context.network.value,
            aggregator_enabled=self.components["aggregator"] is not None,
            dexes=len(APTOS_DEXES),
        )

    def _assemble(self, settings: AppSettings) -> dict[str, Any]:
        """Assemble all quoting components from settings.

        Args:
            settings: Application settings

        Returns:
            Dictionary of assembled components
        """
        components: dict[str, Any] = {}
        timeout = settings.upstream_timeout_seconds
        dexes = list(APTOS_DEXES.values())

        context = NetworkContext(Network(settings.network))
        components["context"] = context

        # Upstream sources
        components["price_source"] = CoinGeckoPriceSource(
            base_url=settings.coingecko_base,
            api_key=settings.coingecko_api_key,
            session=self.session,
            timeout=timeout,
        )
        components["liquidity"] = DefiLlamaClient(
            base_url=settings.defillama_base,
            yields_base_url=settings.defillama_yields_base,
            chain=settings.defillama_chain,
            list_ttl_seconds=settings.pools_list_cache_ttl_seconds,
            session=self.session,
            timeout=timeout,
        )
        components["reserves"] = AptosReserveReader(
            context,
            mainnet_url=settings.aptos_mainnet_url,
            testnet_url=settings.aptos_testnet_url,
            session=self.session,
            timeout=timeout,
        )

        if settings.panora_api_key:
            components["aggregator"] = PanoraAggregator(
                context,
                api_key=settings.panora_api_key,
                base_url=settings.panora_base,
                slippage_pct=settings.default_slippage_pct,
                session=self.session,
                timeout=timeout,
            )
            logger.info("Added Panora aggregator tier")
        else:
            components["aggregator"] = None
            logger.warning("Panora API key not provided, skipping aggregator tier")

        # Caches
        components["price_cache"] = PriceCache(
            components["price_source"],
            IntervalRateLimiter(settings.price_rate_limit_seconds),
            ttl_seconds=settings.price_cache_ttl_seconds,
            market_ttl_seconds=settings.price_cache_ttl_seconds,
            timeout_seconds=timeout,
        )
        components["pool_cache"] = PoolCache(
            components["liquidity"],
            dexes,
            ttl_seconds=settings.pool_cache_ttl_seconds,
            timeout_seconds=timeout,
        )

        # Quoting and routing
        quoter = SyntheticDexQuoter(components["price_cache"], components["pool_cache"])
        components["fanout"] = MultiDexQuoter(
            quoter, components["pool_cache"], components["price_cache"], dexes
        )
        components["fallback"] = FallbackRouteSynthesizer(
            components["price_cache"], context
        )
        components["selector"] = RouteSelector(
            context,
            components["fanout"],
            components["fallback"],
            aggregator=components["aggregator"],
            timeout_seconds=timeout,
        )
        components["rates"] = ExchangeRateService(
            components["fanout"],
            context,
            reserve_reader=components["reserves"],
            ttl_seconds=settings.testnet_rate_cache_ttl_seconds,
        )

        return components

    async def get_all_dex_quotes(
        self, token_in: str, token_out: str, amount: str | float
    ) -> list[DexQuote | None]:
        """Synthetic quotes from every registered DEX, in registry order.

        Raises:
            ConfigurationError: If a token is unsupported or the amount is malformed
        """
        token_in = self.context.token(token_in).symbol
        token_out = self.context.token(token_out).symbol
        parse_amount(amount)

        try:
            return await self.components["fanout"].all_quotes(token_in, token_out, amount)
        except Exception as e:
            logger.error("DEX quotes unavailable", error=str(e))
            return [None] * len(APTOS_DEXES)

    async def get_best_swap_route(
        self, token_in: str, token_out: str, amount: str
    ) -> SwapRoute:
        return await self.components["selector"].get_best_swap_route(
            token_in, token_out, amount
        )

    async def execute_swap(
        self,
        wallet_address: str,
        token_in: str,
        token_out: str,
        amount: str,
        slippage_pct: float | None = None,
        deadline_seconds: int | None = None,
    ) -> SwapExecution:
        return await self.components["selector"].execute_swap(
            wallet_address,
            token_in,
            token_out,
            amount,
            slippage_pct=(
                self.settings.default_slippage_pct if slippage_pct is None else slippage_pct
            ),
            deadline_seconds=deadline_seconds or self.settings.swap_deadline_seconds,
        )

    async def get_token_price(self, symbol: str) -> PriceQuote:
        return await self.components["price_cache"].lookup(parse_symbol(symbol).value)

    async def get_token_prices(self, symbols: list[str]) -> dict[str, PriceQuote]:
        return await self.components["price_cache"].lookup_many(
            [parse_symbol(symbol).value for symbol in symbols]
        )

    async def get_market_data(self, symbol: str) -> dict[str, Any]:
        return await self.components["price_cache"].get_market_data(
            parse_symbol(symbol).value
        )

    async def get_testnet_exchange_rate(self, token_in: str, token_out: str) -> float:
        return await self.components["rates"].get_exchange_rate(token_in, token_out)

    async def get_chain_tvl(self) -> float:
        return await self.components["liquidity"].get_chain_tvl()

    async def get_chain_pools(self) -> list[dict[str, Any]]:
        return await self.components["liquidity"].get_chain_pools()

    async def best_yield_opportunities(
        self, symbol: str, limit: int = 5
    ) -> list[dict[str, Any]]:
        return await self.components["liquidity"].best_yield_opportunities(
            parse_symbol(symbol).value, limit
        )

    def reset_caches(self) -> None:
        """Drop prices, market data, pool snapshots, pool lists and rates."""
        self.components["price_cache"].clear()
        self.components["pool_cache"].clear()
        self.components["liquidity"].clear_cache()
        self.components["rates"].clear()

    def set_network_mode(self, is_testnet: bool) -> None:
        """Switch networks; caches are reset before the switch takes effect."""
        network = Network.TESTNET if is_testnet else Network.MAINNET
        previous = self.context.network

        self.reset_caches()
        self.context.network = network

        logger.info(
            "Network mode changed", previous=previous.value, network=network.value
        )

    async def close(self) -> None:
        if self._owns_session:
            await self.session.aclose()


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


async def main() -> None:
    """Main entry point for the quote CLI."""
    parser = argparse.ArgumentParser(description="Aptos DEX quote aggregator")
    parser.add_argument(
        "--config", default="configs/testnet.yaml", help="Configuration file path"
    )
    parser.add_argument(
        "--profile",
        default="testnet",
        choices=PROFILES,
        help="Network profile",
    )
    parser.add_argument(
        "--wallet", help="Prepare a swap payload for this wallet address"
    )
    parser.add_argument("--log-level", default="INFO", help="Log level")
    parser.add_argument("token_in", help="Input token symbol, e.g. APT")
    parser.add_argument("token_out", help="Output token symbol, e.g. USDC")
    parser.add_argument("amount", help="Input amount in whole tokens")

    args = parser.parse_args()
    configure_logging(args.log_level)

    try:
        settings = load_settings(args.profile, args.config)
        service = AggregatorService(settings)

        try:
            if args.wallet:
                result = await service.execute_swap(
                    args.wallet, args.token_in, args.token_out, args.amount
                )
            else:
                result = await service.get_best_swap_route(
                    args.token_in, args.token_out, args.amount
                )
            print(result.model_dump_json(indent=2))
        finally:
            await service.close()

    except Exception as e:
        logger.error("Fatal error", error=str(e))
        sys.exit(1)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
