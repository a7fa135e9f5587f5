"""Per-DEX liquidity snapshot cache."""

import asyncio
import time
from collections.abc import Callable

import structlog

from ..core.interfaces import LiquiditySource
from ..core.types import DexDescriptor, PoolSnapshot

logger = structlog.get_logger(__name__)


class PoolCache:
    """Liquidity snapshots keyed by DEX display name.

    The whole map is rebuilt on each refresh from the DEXes that answered.
    Overlapping ``ensure_fresh`` calls share one in-flight refresh.
    """

    def __init__(
        self,
        source: LiquiditySource,
        dexes: list[DexDescriptor],
        ttl_seconds: float = 300.0,
        timeout_seconds: float = 10.0,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        self.source = source
        self.dexes = dexes
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.now_fn = now_fn

        self._snapshots: dict[str, PoolSnapshot] = {}
        self._refreshed_at = 0.0
        self._generation = 0
        self._inflight: asyncio.Task[None] | None = None

    @property
    def size(self) -> int:
        return len(self._snapshots)

    def is_fresh(self) -> bool:
        return bool(self._snapshots) and (
            self.now_fn() - self._refreshed_at < self.ttl_seconds
        )

    def get(self, dex_name: str) -> PoolSnapshot | None:
        return self._snapshots.get(dex_name)

    async def ensure_fresh(self) -> None:
        """Refresh the snapshots unless they are still fresh.

        Raises:
            Exception: The refresh error, only when no prior snapshots exist
        """
        if self.is_fresh():
            return

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._refresh())
        task = self._inflight

        try:
            await asyncio.shield(task)
        except Exception as e:
            if not self._snapshots:
                logger.error("Pool refresh failed with empty cache", error=str(e))
                raise
            logger.warning(
                "Pool refresh failed; keeping previous snapshots",
                cached=len(self._snapshots),
                error=str(e),
            )

    async def _fetch_one(self, dex: DexDescriptor) -> PoolSnapshot | None:
        try:
            return await asyncio.wait_for(
                self.source.fetch_liquidity(dex), timeout=self.timeout_seconds
            )
        except Exception as e:
            logger.warning("Liquidity fetch failed", dex=dex.name, error=str(e))
            return None

    async def _refresh(self) -> None:
        generation = self._generation
        results = await asyncio.gather(*(self._fetch_one(dex) for dex in self.dexes))

        if generation != self._generation:
            logger.debug("Discarding pool refresh started before cache reset")
            return

        self._snapshots = {
            snapshot.dex_name: snapshot for snapshot in results if snapshot is not None
        }
        self._refreshed_at = self.now_fn()

        logger.info(
            "Pool snapshots refreshed",
            dexes=len(self._snapshots),
            failed=len(self.dexes) - len(self._snapshots),
        )

    def clear(self) -> None:
        self._snapshots = {}
        self._refreshed_at = 0.0
        self._generation += 1
        self._inflight = None
        logger.info("Pool cache cleared")
