"""Core data types for the quote aggregator."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Network(str, Enum):
    """Aptos network the aggregator resolves tokens and routers against."""

    MAINNET = "mainnet"
    TESTNET = "testnet"


class TokenSymbol(str, Enum):
    """Supported token symbols."""

    APT = "APT"
    USDC = "USDC"
    USDT = "USDT"
    DAI = "DAI"


class PriceOrigin(str, Enum):
    """Where a price handed out by the price cache came from."""

    FRESH = "fresh"
    CACHED = "cached"
    STALE = "stale"
    DEFAULT = "default"


class RouteSource(str, Enum):
    """Routing tier that produced a swap route."""

    AGGREGATOR = "aggregator"
    DEX_FANOUT = "dex_fanout"
    FALLBACK = "fallback"


class TokenInfo(BaseModel):
    """On-chain token identity for one network."""

    symbol: str = Field(description="Token symbol")
    address: str = Field(description="Fully qualified coin type address")
    decimals: int = Field(ge=0, description="Token decimals")

    model_config = {"frozen": True}


class DexDescriptor(BaseModel):
    """Static registry entry for a supported DEX."""

    key: str = Field(description="Registry key, e.g. PANCAKE")
    name: str = Field(description="Display name")
    fee: float = Field(ge=0.0, lt=1.0, description="Swap fee as a fraction")
    gas_estimate: float = Field(description="Gas estimate in APT")
    liquidity_source_id: str = Field(description="DeFiLlama protocol slug")
    router: str = Field(description="Mainnet router address")
    testnet_router: str | None = Field(default=None, description="Testnet router")
    url: str = Field(description="DEX web app URL")

    model_config = {"frozen": True}


class PriceQuote(BaseModel):
    """USD price for a token symbol."""

    symbol: str = Field(description="Token symbol")
    usd_price: float = Field(gt=0, description="Price in USD")
    fetched_at: float = Field(description="Clock time of the upstream fetch")
    origin: PriceOrigin = Field(description="Fresh fetch, cache hit or fallback")

    model_config = {"frozen": True}


class PoolSnapshot(BaseModel):
    """Liquidity snapshot for one DEX."""

    dex_name: str = Field(description="DEX display name")
    payload: Any = Field(default=None, description="Raw liquidity source payload")
    tvl_usd: float | None = Field(default=None, description="Total value locked")


class DexQuote(BaseModel):
    """Synthetic quote from a single DEX."""

    dex: str = Field(description="DEX registry key")
    dex_name: str = Field(description="DEX display name")
    output_amount: str = Field(description="Expected output, 6 decimal places")
    price_impact: str = Field(description="Price impact percent, 2 decimal places")
    fee: str = Field(description="Fee as a percent string, e.g. 0.3%")
    dex_url: str = Field(description="DEX web app URL")
    gas_estimate: float | None = Field(default=None, description="Gas estimate")


class AlternativeRoute(BaseModel):
    """Runner-up route shown next to the primary one."""

    protocol: str = Field(description="DEX or protocol name")
    expected_output: str = Field(description="Expected output amount")
    price_impact: str = Field(description="Price impact percent")
    estimated_gas: float = Field(description="Gas estimate")


class RouteHop(BaseModel):
    """Single hop of a swap path."""

    dex: str
    token_in: str
    token_out: str
    fee: str


class SwapRoute(BaseModel):
    """Best swap route for a token pair and amount."""

    from_token: str = Field(description="Input token symbol")
    to_token: str = Field(description="Output token symbol")
    from_amount: str = Field(description="Input amount as requested")
    expected_output: str = Field(description="Expected output amount")
    price_impact: float = Field(ge=0, description="Price impact percent")
    estimated_gas: float = Field(description="Gas estimate")
    dex: str = Field(description="Primary DEX")
    protocol: str = Field(description="Primary protocol")
    alternative_routes: list[AlternativeRoute] = Field(
        default_factory=list, description="Alternatives, best output first"
    )
    swap_payload: dict[str, Any] | None = Field(
        default=None, description="Ready-to-sign transaction payload"
    )
    token_in: TokenInfo | None = Field(default=None, description="Input token info")
    token_out: TokenInfo | None = Field(default=None, description="Output token info")
    path: list[RouteHop] = Field(default_factory=list, description="Swap path")
    dex_url: str | None = Field(default=None, description="Primary DEX URL")
    source: RouteSource = Field(description="Tier that produced the route")

    model_config = {"frozen": True}


class SwapExecution(BaseModel):
    """Outcome of preparing a swap for the wallet."""

    success: bool = Field(description="Whether a payload was prepared")
    payload: dict[str, Any] | None = Field(default=None, description="Payload")
    error: str | None = Field(default=None, description="Failure description")
    route: SwapRoute | None = Field(default=None, description="Route it was built on")
