"""Testnet exchange rates for display and sanity checks."""

import time
from collections.abc import Callable

import structlog

from ..core.interfaces import ReserveReader
from ..core.registry import (
    APTOS_DEXES,
    DEFAULT_DEX_KEY,
    NetworkContext,
    parse_symbol,
    router_for,
)
from ..data.aptos import find_pair_reserves
from ..quoting.synthetic import MultiDexQuoter

logger = structlog.get_logger(__name__)

STATIC_RATES: dict[tuple[str, str], float] = {
    ("APT", "USDC"): 58.034,
    ("USDC", "APT"): 0.0172,
}
DEFAULT_STATIC_RATE = 10.0


def static_rate(token_in: str, token_out: str) -> float:
    return STATIC_RATES.get((token_in, token_out), DEFAULT_STATIC_RATE)


class ExchangeRateService:
    """Units of ``token_out`` per unit of ``token_in``.

    Resolution order: best 1-unit quote across the DEX fan-out, then the
    on-chain reserves of the pair at the default DEX router, then a static
    table. Every result is cached per pair for ``ttl_seconds``.
    """

    def __init__(
        self,
        fanout: MultiDexQuoter,
        context: NetworkContext,
        reserve_reader: ReserveReader | None = None,
        ttl_seconds: float = 60.0,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        self.fanout = fanout
        self.context = context
        self.reserve_reader = reserve_reader
        self.ttl_seconds = ttl_seconds
        self.now_fn = now_fn

        self._rates: dict[str, tuple[float, float]] = {}
        self._generation = 0

    @property
    def size(self) -> int:
        return len(self._rates)

    async def _fanout_rate(self, token_in: str, token_out: str) -> float:
        quotes = await self.fanout.all_quotes(token_in, token_out, 1)
        outputs = [float(quote.output_amount) for quote in quotes if quote is not None]
        return max(outputs, default=0.0)

    async def _on_chain_rate(self, token_in: str, token_out: str) -> float:
        if self.reserve_reader is None:
            return 0.0

        try:
            in_info = self.context.token(token_in)
            out_info = self.context.token(token_out)
            router = router_for(APTOS_DEXES[DEFAULT_DEX_KEY], self.context.network)

            resources = await self.reserve_reader.account_resources(router)
            reserves = find_pair_reserves(resources, in_info.address, out_info.address)
            if reserves is None:
                logger.info("No on-chain pool for pair", token_in=token_in, token_out=token_out)
                return 0.0

            reserve_in, reserve_out = reserves
            # Reserves are in base units; compare whole tokens
            return (reserve_out / 10**out_info.decimals) / (
                reserve_in / 10**in_info.decimals
            )

        except Exception as e:
            logger.warning(
                "On-chain reserve lookup failed",
                token_in=token_in,
                token_out=token_out,
                error=str(e),
            )
            return 0.0

    async def get_exchange_rate(self, token_in: str, token_out: str) -> float:
        """Exchange rate for a pair; never fails for supported tokens.

        Raises:
            ConfigurationError: If a token symbol is unsupported
        """
        token_in = parse_symbol(token_in).value
        token_out = parse_symbol(token_out).value
        key = f"{token_in}-{token_out}"

        cached = self._rates.get(key)
        if cached is not None and self.now_fn() - cached[1] < self.ttl_seconds:
            logger.debug("Using cached testnet rate", pair=key, rate=cached[0])
            return cached[0]

        generation = self._generation
        try:
            rate = await self._fanout_rate(token_in, token_out)
            if not rate:
                rate = await self._on_chain_rate(token_in, token_out)
            if not rate:
                rate = static_rate(token_in, token_out)
                logger.info("Using static testnet rate", pair=key, rate=rate)
        except Exception as e:
            rate = static_rate(token_in, token_out)
            logger.warning(
                "Testnet rate lookup failed; using static rate",
                pair=key,
                rate=rate,
                error=str(e),
            )

        if generation == self._generation:
            self._rates[key] = (rate, self.now_fn())

        logger.info("Testnet rate resolved", pair=key, rate=rate)
        return rate

    def clear(self) -> None:
        self._rates.clear()
        self._generation += 1
