"""Aptos fullnode REST reader for on-chain pool reserves."""

from typing import Any

import httpx
import structlog

from ..core.errors import UpstreamUnavailable
from ..core.interfaces import ReserveReader
from ..core.registry import NetworkContext
from .http import JsonHttpClient

logger = structlog.get_logger(__name__)

PAIR_RESERVE_MARKER = "::swap::TokenPairReserve<"


def split_type_arguments(resource_type: str) -> list[str]:
    """Split the top-level generic arguments of a Move type string.

    ``a::m::T<X, b::n::U<Y, Z>>`` gives ``["X", "b::n::U<Y, Z>"]``.
    """
    start = resource_type.find("<")
    end = resource_type.rfind(">")
    if start == -1 or end <= start:
        return []

    args: list[str] = []
    depth = 0
    current = ""
    for char in resource_type[start + 1 : end]:
        if char == "<":
            depth += 1
        elif char == ">":
            depth -= 1
        elif char == "," and depth == 0:
            args.append(current.strip())
            current = ""
            continue
        current += char
    if current.strip():
        args.append(current.strip())
    return args


def find_pair_reserves(
    resources: list[dict[str, Any]], in_address: str, out_address: str
) -> tuple[float, float] | None:
    """Find the reserves of a token pair among account resources.

    Args:
        resources: Resources returned by the fullnode
        in_address: Coin type of the input token
        out_address: Coin type of the output token

    Returns:
        ``(reserve_in, reserve_out)`` in base units, or None if no usable pool
    """
    for resource in resources:
        resource_type = str(resource.get("type", ""))
        if PAIR_RESERVE_MARKER not in resource_type:
            continue

        args = split_type_arguments(resource_type)
        if len(args) != 2:
            continue

        data = resource.get("data") or {}
        try:
            reserve_x = float(data["reserve_x"])
            reserve_y = float(data["reserve_y"])
        except (KeyError, TypeError, ValueError):
            continue

        if reserve_x <= 0 or reserve_y <= 0:
            continue

        if args == [in_address, out_address]:
            return reserve_x, reserve_y
        if args == [out_address, in_address]:
            return reserve_y, reserve_x

    return None


class AptosReserveReader(JsonHttpClient, ReserveReader):
    """Reads account resources from the fullnode of the current network."""

    source_name = "aptos"

    def __init__(
        self,
        context: NetworkContext,
        mainnet_url: str = "https://fullnode.mainnet.aptoslabs.com/v1",
        testnet_url: str = "https://fullnode.testnet.aptoslabs.com/v1",
        session: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(mainnet_url, session=session, timeout=timeout)
        self.context = context
        self.mainnet_url = mainnet_url.rstrip("/")
        self.testnet_url = testnet_url.rstrip("/")

    @property
    def node_url(self) -> str:
        return self.testnet_url if self.context.is_testnet else self.mainnet_url

    async def account_resources(self, account: str) -> list[dict[str, Any]]:
        """List resources under an account.

        Raises:
            UpstreamUnavailable: If the fullnode fails or answers unexpectedly
        """
        data = await self._make_request(f"{self.node_url}/accounts/{account}/resources")
        if not isinstance(data, list):
            raise UpstreamUnavailable(
                "Invalid account resources response",
                source=self.source_name,
                details={"account": account},
            )

        logger.debug("Fetched account resources", account=account, count=len(data))
        return data
