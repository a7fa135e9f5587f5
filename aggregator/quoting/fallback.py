"""Price-only route estimate used when every other tier has failed."""

import structlog

from ..core.amounts import format_amount, format_fee, parse_amount
from ..core.errors import ConfigurationError
from ..core.registry import (
    APTOS_DEXES,
    DEFAULT_DEX_KEY,
    FALLBACK_ALTERNATIVE_DEX_KEY,
    NetworkContext,
    fallback_price,
)
from ..core.types import AlternativeRoute, RouteHop, RouteSource, SwapRoute, TokenInfo
from ..pricing.cache import PriceCache

logger = structlog.get_logger(__name__)

FALLBACK_PRICE_IMPACT = 0.5
FALLBACK_GAS = 0.0002
ALTERNATIVE_OUTPUT_RATIO = 0.995
ALTERNATIVE_PRICE_IMPACT = "0.7"
ALTERNATIVE_GAS = 0.00025


class FallbackRouteSynthesizer:
    """Builds a route from prices alone; never raises."""

    def __init__(
        self, price_cache: PriceCache, context: NetworkContext | None = None
    ) -> None:
        self.price_cache = price_cache
        self.context = context

    async def _price(self, symbol: str) -> float:
        try:
            price = await self.price_cache.get_price(symbol)
        except Exception as e:
            logger.warning("Fallback price lookup failed", symbol=symbol, error=str(e))
            return fallback_price(symbol)
        return price or fallback_price(symbol)

    def _token(self, symbol: str) -> TokenInfo | None:
        if self.context is None:
            return None
        try:
            return self.context.token(symbol)
        except ConfigurationError:
            return None

    async def fallback_route(
        self, token_in: str, token_out: str, amount: str
    ) -> SwapRoute:
        """Estimate output as ``amount * price_in / price_out``.

        The route names the default DEX with fixed impact and gas, plus one
        alternative at 99.5% of the primary output.
        """
        token_in, token_out = token_in.upper(), token_out.upper()

        try:
            value = parse_amount(amount)
        except Exception:
            logger.warning("Unparseable amount in fallback route", amount=amount)
            value = 0.0

        price_in = await self._price(token_in)
        price_out = await self._price(token_out)
        try:
            expected = format_amount(value * price_in / price_out)
        except ConfigurationError as e:
            logger.warning("Fallback output out of range", amount=amount, error=str(e))
            expected = format_amount(0.0)
        alternative = format_amount(float(expected) * ALTERNATIVE_OUTPUT_RATIO)

        primary = APTOS_DEXES[DEFAULT_DEX_KEY]
        runner_up = APTOS_DEXES[FALLBACK_ALTERNATIVE_DEX_KEY]

        logger.info(
            "Using fallback route",
            token_in=token_in,
            token_out=token_out,
            amount=amount,
            expected_output=expected,
        )

        return SwapRoute(
            from_token=token_in,
            to_token=token_out,
            from_amount=str(amount),
            expected_output=expected,
            price_impact=FALLBACK_PRICE_IMPACT,
            estimated_gas=FALLBACK_GAS,
            dex=primary.name,
            protocol=primary.name,
            alternative_routes=[
                AlternativeRoute(
                    protocol=runner_up.name,
                    expected_output=alternative,
                    price_impact=ALTERNATIVE_PRICE_IMPACT,
                    estimated_gas=ALTERNATIVE_GAS,
                )
            ],
            token_in=self._token(token_in),
            token_out=self._token(token_out),
            path=[
                RouteHop(
                    dex=primary.name,
                    token_in=token_in,
                    token_out=token_out,
                    fee=format_fee(primary.fee),
                )
            ],
            dex_url=primary.url,
            source=RouteSource.FALLBACK,
        )
