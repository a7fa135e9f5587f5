"""Panora swap-quote adapter."""

from typing import Any

import httpx
import structlog

from ..core.interfaces import ExternalAggregator
from ..core.registry import NetworkContext
from ..core.types import (
    AlternativeRoute,
    RouteHop,
    RouteSource,
    SwapRoute,
    TokenInfo,
)
from .http import JsonHttpClient

logger = structlog.get_logger(__name__)

DEFAULT_PRICE_IMPACT = 0.5
DEFAULT_GAS = 0.0001
DEFAULT_ALTERNATIVE_GAS = 0.0002
DEFAULT_ROUTE_NAME = "Aptos DEX"
PANORA_URL = "https://app.panora.exchange"


def normalize_address(address: str) -> str:
    """Ensure an address carries the canonical 0x prefix."""
    return address if address.startswith("0x") else f"0x{address}"


def build_quote_params(
    chain_id: str,
    from_address: str,
    to_address: str,
    amount: str,
    slippage_pct: float = 0.5,
) -> dict[str, str]:
    return {
        "chainId": chain_id,
        "fromTokenAddress": normalize_address(from_address),
        "toTokenAddress": normalize_address(to_address),
        "fromTokenAmount": amount,
        "slippagePercentage": f"{slippage_pct:g}",
        "getTransactionData": "transactionPayload",
    }


def _number(value: Any, default: float) -> float:
    """Parse a numeric response field; missing or empty values take the default."""
    if value is None or value == "":
        return default
    return float(value)


def map_panora_quote(
    body: Any,
    token_in: TokenInfo,
    token_out: TokenInfo,
    amount: str,
) -> SwapRoute | None:
    """Map a Panora quote response to a swap route.

    Args:
        body: Decoded response, either wrapped in ``data`` or bare
        token_in: Input token info
        token_out: Output token info
        amount: Requested input amount

    Returns:
        Route built from the top-ranked candidate, or None without candidates

    Raises:
        ValueError: If a numeric field cannot be parsed
    """
    if not isinstance(body, dict):
        return None
    data = body.get("data") if isinstance(body.get("data"), dict) else body

    routes = data.get("routes") or data.get("quotes") or []
    routes = [route for route in routes if isinstance(route, dict)]
    if not routes:
        return None

    best = routes[0]
    name = best.get("name") or DEFAULT_ROUTE_NAME
    expected_output = data.get("toTokenAmount") or best.get("toTokenAmount") or "0"

    alternatives = [
        AlternativeRoute(
            protocol=route.get("name") or DEFAULT_ROUTE_NAME,
            expected_output=str(route.get("toTokenAmount") or "0"),
            price_impact=str(route.get("priceImpact") or DEFAULT_PRICE_IMPACT),
            estimated_gas=_number(route.get("estimatedGas"), DEFAULT_ALTERNATIVE_GAS),
        )
        for route in routes[1:]
    ]
    alternatives.sort(key=lambda alt: float(alt.expected_output), reverse=True)

    payload = data.get("transactionPayload") or data.get("rawTransaction")

    return SwapRoute(
        from_token=token_in.symbol,
        to_token=token_out.symbol,
        from_amount=amount,
        expected_output=str(expected_output),
        price_impact=_number(data.get("priceImpact"), DEFAULT_PRICE_IMPACT),
        estimated_gas=_number(data.get("estimatedGas"), DEFAULT_GAS),
        dex=name,
        protocol=best.get("name") or "Aptos DEX Aggregator",
        alternative_routes=alternatives,
        swap_payload=payload if isinstance(payload, dict) else None,
        token_in=token_in,
        token_out=token_out,
        path=[
            RouteHop(
                dex=name,
                token_in=token_in.symbol,
                token_out=token_out.symbol,
                fee=str(best.get("fee") or "0.3%"),
            )
        ],
        dex_url=PANORA_URL,
        source=RouteSource.AGGREGATOR,
    )


class PanoraAggregator(JsonHttpClient, ExternalAggregator):
    """External aggregator tier backed by the Panora quote API."""

    source_name = "panora"

    def __init__(
        self,
        context: NetworkContext,
        api_key: str,
        base_url: str = "https://api.panora.exchange",
        slippage_pct: float = 0.5,
        session: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(
            base_url,
            session=session,
            timeout=timeout,
            headers={"x-api-key": api_key, "Accept": "application/json"},
        )
        self.context = context
        self.slippage_pct = slippage_pct

    async def best_route(
        self, token_in: str, token_out: str, amount: str
    ) -> SwapRoute | None:
        """Ask Panora for its best route.

        Every failure is logged and reported as None so the caller can move on
        to the next tier.
        """
        try:
            in_info = self.context.token(token_in)
            out_info = self.context.token(token_out)
            params = build_quote_params(
                self.context.chain_id,
                in_info.address,
                out_info.address,
                amount,
                self.slippage_pct,
            )

            body = await self._make_request("swap/quote", params, method="POST")
            route = map_panora_quote(body, in_info, out_info, amount)

            if route is None:
                logger.info("Panora returned no routes", token_in=token_in, token_out=token_out)
                return None

            logger.info(
                "Panora route found",
                token_in=token_in,
                token_out=token_out,
                expected_output=route.expected_output,
                alternatives=len(route.alternative_routes),
            )
            return route

        except Exception as e:
            logger.warning(
                "Panora quote failed",
                token_in=token_in,
                token_out=token_out,
                error=str(e),
            )
            return None
