"""Best-route selection across the aggregator, DEX fan-out and fallback tiers."""

import asyncio
from typing import Any

import structlog

from ..core.amounts import parse_amount, to_base_units
from ..core.errors import ConfigurationError, TransactionPreparationFailure
from ..core.interfaces import ExternalAggregator
from ..core.registry import APTOS_DEXES, DEFAULT_DEX_KEY, NetworkContext, router_for
from ..core.types import (
    AlternativeRoute,
    DexDescriptor,
    DexQuote,
    Network,
    RouteHop,
    RouteSource,
    SwapExecution,
    SwapRoute,
    TokenInfo,
)
from ..quoting.fallback import FallbackRouteSynthesizer
from ..quoting.synthetic import MultiDexQuoter

logger = structlog.get_logger(__name__)

DEFAULT_QUOTE_GAS = 0.0002


def select_best_quote(
    quotes: list[DexQuote | None],
) -> tuple[DexQuote, list[DexQuote]] | None:
    """Pick the highest-output quote.

    Args:
        quotes: Fan-out results, None where a DEX had no quote

    Returns:
        ``(best, rest)`` with ``rest`` ordered by output, highest first, or
        None when no DEX produced a quote
    """
    present = [quote for quote in quotes if quote is not None]
    if not present:
        return None
    present.sort(key=lambda quote: float(quote.output_amount), reverse=True)
    return present[0], present[1:]


def map_quotes_to_route(
    best: DexQuote,
    rest: list[DexQuote],
    token_in: TokenInfo,
    token_out: TokenInfo,
    amount: str,
) -> SwapRoute:
    return SwapRoute(
        from_token=token_in.symbol,
        to_token=token_out.symbol,
        from_amount=amount,
        expected_output=best.output_amount,
        price_impact=float(best.price_impact),
        estimated_gas=best.gas_estimate or DEFAULT_QUOTE_GAS,
        dex=best.dex_name,
        protocol=best.dex_name,
        alternative_routes=[
            AlternativeRoute(
                protocol=quote.dex_name,
                expected_output=quote.output_amount,
                price_impact=quote.price_impact,
                estimated_gas=quote.gas_estimate or DEFAULT_QUOTE_GAS,
            )
            for quote in rest
        ],
        token_in=token_in,
        token_out=token_out,
        path=[
            RouteHop(
                dex=best.dex_name,
                token_in=token_in.symbol,
                token_out=token_out.symbol,
                fee=best.fee,
            )
        ],
        dex_url=best.dex_url,
        source=RouteSource.DEX_FANOUT,
    )


def build_swap_payload(
    dex: DexDescriptor,
    token_in: TokenInfo,
    token_out: TokenInfo,
    amount: str,
    network: Network,
) -> dict[str, Any]:
    """Build an entry-function payload for the DEX router.

    The minimum output is nominal ("1" on testnet, "0" on mainnet); no
    slippage protection is applied here.

    Raises:
        TransactionPreparationFailure: If the router or amount is unusable
    """
    try:
        router = router_for(dex, network)
        amount_in = to_base_units(amount, token_in.decimals)
    except ConfigurationError as e:
        raise TransactionPreparationFailure(str(e), details=e.details) from e

    min_amount_out = "1" if network is Network.TESTNET else "0"

    return {
        "type": "entry_function_payload",
        "function": f"{router}::router::swap_exact_input",
        "type_arguments": [token_in.address, token_out.address],
        "arguments": [amount_in, min_amount_out],
    }


class RouteSelector:
    """Tries the aggregator, then the DEX fan-out, then the fallback estimate.

    The first tier that yields a route wins. A tier that fails, times out or
    comes back empty is logged and skipped; the fallback tier always answers.
    """

    def __init__(
        self,
        context: NetworkContext,
        fanout: MultiDexQuoter,
        fallback: FallbackRouteSynthesizer,
        aggregator: ExternalAggregator | None = None,
        timeout_seconds: float = 10.0,
        default_dex_key: str = DEFAULT_DEX_KEY,
    ) -> None:
        """Initialize route selector.

        Args:
            context: Network context used to resolve tokens and routers
            fanout: Synthetic multi-DEX quoter
            fallback: Price-only route synthesizer
            aggregator: Optional external aggregator, tried first
            timeout_seconds: Time allowed for each of the first two tiers
            default_dex_key: DEX whose router is used for built payloads
        """
        self.context = context
        self.fanout = fanout
        self.fallback = fallback
        self.aggregator = aggregator
        self.timeout_seconds = timeout_seconds
        self.default_dex_key = default_dex_key

    async def _try_aggregator(
        self, token_in: str, token_out: str, amount: str
    ) -> SwapRoute | None:
        if self.aggregator is None:
            return None
        try:
            return await asyncio.wait_for(
                self.aggregator.best_route(token_in, token_out, amount),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Aggregator tier timed out", timeout=self.timeout_seconds)
        except Exception as e:
            logger.warning("Aggregator tier failed", error=str(e))
        return None

    async def _try_fanout(
        self,
        token_in: TokenInfo,
        token_out: TokenInfo,
        amount: str,
    ) -> SwapRoute | None:
        try:
            quotes = await asyncio.wait_for(
                self.fanout.all_quotes(token_in.symbol, token_out.symbol, amount),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("DEX fan-out tier timed out", timeout=self.timeout_seconds)
            return None
        except Exception as e:
            logger.warning("DEX fan-out tier failed", error=str(e))
            return None

        selected = select_best_quote(quotes)
        if selected is None:
            logger.info("DEX fan-out returned no quotes")
            return None

        best, rest = selected
        return map_quotes_to_route(best, rest, token_in, token_out, amount)

    async def get_best_swap_route(
        self, token_in: str, token_out: str, amount: str
    ) -> SwapRoute:
        """Best available route for swapping ``amount`` of ``token_in``.

        Args:
            token_in: Input token symbol
            token_out: Output token symbol
            amount: Input amount in whole tokens

        Returns:
            Route tagged with the tier that produced it

        Raises:
            ConfigurationError: If a token is unsupported or the amount is malformed
        """
        in_info = self.context.token(token_in)
        out_info = self.context.token(token_out)
        parse_amount(amount)
        amount = str(amount)

        log = logger.bind(
            token_in=in_info.symbol,
            token_out=out_info.symbol,
            amount=amount,
            network=self.context.network.value,
        )

        route = await self._try_aggregator(in_info.symbol, out_info.symbol, amount)
        if route is not None:
            log.info("Route from aggregator", dex=route.dex)
            return route

        route = await self._try_fanout(in_info, out_info, amount)
        if route is not None:
            log.info(
                "Route from DEX fan-out",
                dex=route.dex,
                alternatives=len(route.alternative_routes),
            )
            return route

        log.warning("All quoting tiers failed; using fallback estimate")
        return await self.fallback.fallback_route(
            in_info.symbol, out_info.symbol, amount
        )

    async def execute_swap(
        self,
        wallet_address: str,
        token_in: str,
        token_out: str,
        amount: str,
        slippage_pct: float = 0.5,
        deadline_seconds: int = 1200,
    ) -> SwapExecution:
        """Prepare a swap payload for the wallet to sign.

        Uses the aggregator's payload when the best route carries one,
        otherwise builds a router payload for the default DEX. Failures are
        reported in the result, never raised.
        """
        logger.info(
            "Preparing swap",
            wallet=wallet_address,
            token_in=token_in,
            token_out=token_out,
            amount=amount,
            slippage_pct=slippage_pct,
            deadline_seconds=deadline_seconds,
        )

        try:
            route = await self.get_best_swap_route(token_in, token_out, amount)
            if route.swap_payload:
                logger.info("Using aggregator swap payload", dex=route.dex)
                return SwapExecution(
                    success=True, payload=route.swap_payload, route=route
                )

            payload = build_swap_payload(
                APTOS_DEXES[self.default_dex_key],
                route.token_in or self.context.token(token_in),
                route.token_out or self.context.token(token_out),
                str(amount),
                self.context.network,
            )
            logger.info("Built router swap payload", function=payload["function"])
            return SwapExecution(success=True, payload=payload, route=route)

        except Exception as e:
            logger.error("Swap preparation failed", error=str(e))
            return SwapExecution(success=False, error=f"Failed to execute swap: {e}")
