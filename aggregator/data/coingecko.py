"""CoinGecko price source."""

from typing import Any

import httpx
import structlog

from ..core.errors import ConfigurationError, UpstreamUnavailable
from ..core.interfaces import PriceSource
from ..core.registry import COINGECKO_IDS
from .http import JsonHttpClient

logger = structlog.get_logger(__name__)


def coingecko_id(symbol: str) -> str | None:
    return COINGECKO_IDS.get(symbol.upper())


def map_simple_prices(
    data: dict[str, Any], symbols: list[str]
) -> dict[str, float]:
    """Map a /simple/price response back to token symbols.

    Args:
        data: Raw API response keyed by CoinGecko id
        symbols: Requested token symbols

    Returns:
        Prices for the symbols present in the response
    """
    prices: dict[str, float] = {}
    for symbol in symbols:
        gecko_id = coingecko_id(symbol)
        entry = data.get(gecko_id) if gecko_id else None
        usd = entry.get("usd") if isinstance(entry, dict) else None
        if isinstance(usd, (int, float)) and usd > 0:
            prices[symbol] = float(usd)
    return prices


class CoinGeckoPriceSource(JsonHttpClient, PriceSource):
    """CoinGecko API price source.

    Rate limiting is owned by the price cache; this client only talks HTTP.
    """

    source_name = "coingecko"

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str | None = None,
        session: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-cg-pro-api-key"] = api_key
        super().__init__(base_url, session=session, timeout=timeout, headers=headers)
        self.api_key = api_key

    async def fetch_price(self, symbol: str) -> float:
        gecko_id = coingecko_id(symbol)
        if not gecko_id:
            raise ConfigurationError(f"No CoinGecko id for token: {symbol}")

        data = await self._make_request(
            "simple/price", {"ids": gecko_id, "vs_currencies": "usd"}
        )
        prices = map_simple_prices(data if isinstance(data, dict) else {}, [symbol])
        if symbol not in prices:
            raise UpstreamUnavailable(
                f"No price data for {symbol}", source=self.source_name
            )

        logger.debug("Fetched CoinGecko price", symbol=symbol, price=prices[symbol])
        return prices[symbol]

    async def fetch_prices(self, symbols: list[str]) -> dict[str, float]:
        ids = sorted({gid for gid in map(coingecko_id, symbols) if gid})
        if not ids:
            logger.warning("No CoinGecko ids for requested tokens", symbols=symbols)
            return {}

        data = await self._make_request(
            "simple/price", {"ids": ",".join(ids), "vs_currencies": "usd"}
        )
        prices = map_simple_prices(data if isinstance(data, dict) else {}, symbols)

        logger.debug(
            "Fetched CoinGecko prices", requested=len(symbols), received=len(prices)
        )
        return prices

    async def fetch_market_data(self, symbol: str) -> dict[str, Any]:
        gecko_id = coingecko_id(symbol)
        if not gecko_id:
            raise ConfigurationError(f"No CoinGecko id for token: {symbol}")

        data = await self._make_request(
            f"coins/{gecko_id}",
            {
                "localization": "false",
                "tickers": "false",
                "market_data": "true",
                "community_data": "false",
                "developer_data": "false",
                "sparkline": "false",
            },
        )
        if not isinstance(data, dict) or not data.get("market_data"):
            raise UpstreamUnavailable(
                f"Invalid market data response for {symbol}", source=self.source_name
            )

        market = data["market_data"]
        logger.info(
            "Fetched CoinGecko market data",
            symbol=symbol,
            price=market.get("current_price", {}).get("usd"),
            change_24h=market.get("price_change_percentage_24h"),
        )
        return data
