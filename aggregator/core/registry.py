"""Static token and DEX registries plus the process network context."""

import structlog

from .errors import ConfigurationError
from .types import DexDescriptor, Network, TokenInfo, TokenSymbol

logger = structlog.get_logger(__name__)

_MAINNET_ASSET = "0xf22bede237a07e121b56d91a491eb7bcdfd1f5907926a9e58338f964a01b17fa::asset"
_TESTNET_DEVNET_COINS = (
    "0x8c805723ebc0a7fc5b7d3e7b75d567918e806b3461cb9fa21941a9edc0220bf::devnet_coins"
)

APTOS_COINS: dict[Network, dict[TokenSymbol, TokenInfo]] = {
    Network.MAINNET: {
        TokenSymbol.APT: TokenInfo(
            symbol="APT", address="0x1::aptos_coin::AptosCoin", decimals=8
        ),
        TokenSymbol.USDC: TokenInfo(
            symbol="USDC", address=f"{_MAINNET_ASSET}::USDC", decimals=6
        ),
        TokenSymbol.USDT: TokenInfo(
            symbol="USDT", address=f"{_MAINNET_ASSET}::USDT", decimals=6
        ),
        TokenSymbol.DAI: TokenInfo(
            symbol="DAI", address=f"{_MAINNET_ASSET}::DAI", decimals=6
        ),
    },
    Network.TESTNET: {
        TokenSymbol.APT: TokenInfo(
            symbol="APT", address="0x1::aptos_coin::AptosCoin", decimals=8
        ),
        TokenSymbol.USDC: TokenInfo(
            symbol="USDC", address=f"{_TESTNET_DEVNET_COINS}::DevnetUSDC", decimals=6
        ),
        TokenSymbol.USDT: TokenInfo(
            symbol="USDT", address=f"{_TESTNET_DEVNET_COINS}::DevnetUSDT", decimals=6
        ),
        TokenSymbol.DAI: TokenInfo(
            symbol="DAI", address=f"{_TESTNET_DEVNET_COINS}::DevnetDAI", decimals=6
        ),
    },
}

# Registry order is the fan-out slot order.
APTOS_DEXES: dict[str, DexDescriptor] = {
    "PANCAKE": DexDescriptor(
        key="PANCAKE",
        name="PancakeSwap",
        fee=0.003,
        gas_estimate=0.0002,
        liquidity_source_id="pancakeswap-amm",
        router="0xc7efb4076dbe143cbcd98cfaaa929ecfc8f299203dfff63b95ccb6bfe19850fa",
        testnet_router="0xc7efb4076dbe143cbcd98cfaaa929ecfc8f299203dfff63b95ccb6bfe19850fa",
        url="https://pancakeswap.finance/aptos/swap",
    ),
    "LIQUIDSWAP": DexDescriptor(
        key="LIQUIDSWAP",
        name="Liquidswap",
        fee=0.003,
        gas_estimate=0.00025,
        liquidity_source_id="liquidswap",
        router="0x190d44266241744264b964a37b8f09863167a12d3e70cda39376cfb4e3561e12",
        testnet_router="0x305d6fe5d70b02e9c7d5b0f2f5e5934c6a0d9b867d6e2c4c6fad7c293e0cd8c5",
        url="https://liquidswap.com/",
    ),
    "AUX": DexDescriptor(
        key="AUX",
        name="AUX Exchange",
        fee=0.003,
        gas_estimate=0.00022,
        liquidity_source_id="aux-exchange",
        router="0x8b7311d78d47e37d09435b8dc37c14afd977c5cbc5f1bc2a615ef159a58b2d1d",
        url="https://aux.exchange/",
    ),
    "THALA": DexDescriptor(
        key="THALA",
        name="Thala",
        fee=0.003,
        gas_estimate=0.00023,
        liquidity_source_id="thalaswap",
        router="0x7c0321a4d97c3bea5892d9c6a4f5e2a369a3a7d3824cee3f9c6e1e273b384e8c",
        url="https://app.thala.fi/swap",
    ),
    "PANORA": DexDescriptor(
        key="PANORA",
        name="Panora",
        fee=0.002,
        gas_estimate=0.0002,
        liquidity_source_id="panora-exchange",
        router="0x8f396e4246b2ba87b51c0739ef5ea4f26515a98375308c31ac2ec1e42142a57f",
        testnet_router="0x8f396e4246b2ba87b51c0739ef5ea4f26515a98375308c31ac2ec1e42142a57f",
        url="https://app.panora.exchange",
    ),
}

DEFAULT_DEX_KEY = "PANCAKE"
FALLBACK_ALTERNATIVE_DEX_KEY = "LIQUIDSWAP"

COINGECKO_IDS: dict[str, str] = {
    "APT": "aptos",
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
}

FALLBACK_PRICES: dict[str, float] = {
    "APT": 6.75,
    "USDC": 1.0,
    "USDT": 1.0,
    "DAI": 1.0,
}
DEFAULT_FALLBACK_PRICE = 1.0

PANORA_CHAIN_IDS: dict[Network, str] = {
    Network.MAINNET: "1",
    Network.TESTNET: "2",
}


def parse_symbol(symbol: str | TokenSymbol) -> TokenSymbol:
    """Normalize a token symbol.

    Raises:
        ConfigurationError: If the symbol is not supported
    """
    if isinstance(symbol, TokenSymbol):
        return symbol
    try:
        return TokenSymbol(str(symbol).strip().upper())
    except ValueError as e:
        raise ConfigurationError(
            f"Unsupported token: {symbol}", details={"symbol": symbol}
        ) from e


def resolve_token(symbol: str | TokenSymbol, network: Network) -> TokenInfo:
    """Look up token info for the given network.

    Raises:
        ConfigurationError: If the token is not configured on that network
    """
    token = parse_symbol(symbol)
    info = APTOS_COINS.get(network, {}).get(token)
    if info is None:
        raise ConfigurationError(
            f"Token {token.value} not found in {network.value} configuration",
            details={"symbol": token.value, "network": network.value},
        )
    return info


def router_for(dex: DexDescriptor, network: Network) -> str:
    """Router address of a DEX on the given network."""
    if network is Network.TESTNET:
        if dex.testnet_router is None:
            raise ConfigurationError(
                f"{dex.name} has no testnet router", details={"dex": dex.key}
            )
        return dex.testnet_router
    return dex.router


def fallback_price(symbol: str) -> float:
    """Static USD price used when no upstream or cached price exists."""
    return FALLBACK_PRICES.get(str(symbol).upper(), DEFAULT_FALLBACK_PRICE)


class NetworkContext:
    """Network mode shared by the components of one aggregator instance."""

    def __init__(self, network: Network = Network.TESTNET) -> None:
        self.network = network

    @property
    def is_testnet(self) -> bool:
        return self.network is Network.TESTNET

    @property
    def chain_id(self) -> str:
        """Panora chain id for the current network."""
        return PANORA_CHAIN_IDS[self.network]

    def token(self, symbol: str | TokenSymbol) -> TokenInfo:
        return resolve_token(symbol, self.network)

    def __repr__(self) -> str:
        return f"NetworkContext(network={self.network.value})"
