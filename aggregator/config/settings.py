"""Application settings and configuration management."""

from pathlib import Path
from typing import Literal

import structlog
import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

PROFILES = ("mainnet", "testnet")


class AppSettings(BaseSettings):
    """Application settings with environment variable support."""

    # Network
    network: Literal["mainnet", "testnet"] = Field(
        default="testnet", description="Aptos network: mainnet, testnet"
    )
    aptos_mainnet_url: str = Field(
        default="https://fullnode.mainnet.aptoslabs.com/v1",
        description="Aptos mainnet fullnode REST URL",
    )
    aptos_testnet_url: str = Field(
        default="https://fullnode.testnet.aptoslabs.com/v1",
        description="Aptos testnet fullnode REST URL",
    )

    # Upstream APIs
    coingecko_base: str = Field(
        default="https://api.coingecko.com/api/v3",
        description="CoinGecko API base URL",
    )
    coingecko_api_key: str | None = Field(default=None, description="CoinGecko key")
    defillama_base: str = Field(
        default="https://api.llama.fi", description="DeFiLlama API base URL"
    )
    defillama_yields_base: str = Field(
        default="https://yields.llama.fi", description="DeFiLlama yields base URL"
    )
    defillama_chain: str = Field(
        default="Aptos", description="Chain name used to filter DeFiLlama data"
    )
    panora_base: str = Field(
        default="https://api.panora.exchange", description="Panora API base URL"
    )
    panora_api_key: str | None = Field(default=None, description="Panora API key")

    # Caching and rate limiting
    price_cache_ttl_seconds: float = Field(
        default=300.0, description="Price cache freshness window"
    )
    price_rate_limit_seconds: float = Field(
        default=1.1, description="Minimum spacing between price API calls"
    )
    pool_cache_ttl_seconds: float = Field(
        default=300.0, description="Per-DEX liquidity snapshot freshness window"
    )
    pools_list_cache_ttl_seconds: float = Field(
        default=600.0, description="Chain pools list freshness window"
    )
    testnet_rate_cache_ttl_seconds: float = Field(
        default=60.0, description="Testnet exchange rate freshness window"
    )
    upstream_timeout_seconds: float = Field(
        default=10.0, description="Timeout for each upstream call and routing tier"
    )

    # Swap defaults
    default_slippage_pct: float = Field(
        default=0.5, description="Slippage tolerance sent to the aggregator"
    )
    swap_deadline_seconds: int = Field(
        default=1200, description="Default swap deadline in seconds"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


def load_settings(profile: str, yaml_path: str) -> AppSettings:
    """Load settings from YAML file and environment variables.

    Args:
        profile: Network profile name (mainnet, testnet)
        yaml_path: Path to YAML configuration file

    Returns:
        AppSettings instance with loaded configuration

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValidationError: If configuration is invalid
        ValueError: If profile is invalid
    """
    if profile not in PROFILES:
        raise ValueError(
            f"Invalid profile: {profile}. Must be one of: {', '.join(PROFILES)}"
        )

    yaml_file = Path(yaml_path)
    if not yaml_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

    try:
        with open(yaml_file, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        # Profile decides the network
        yaml_config["network"] = profile

        logger.info("Loading configuration", profile=profile, yaml_path=yaml_path)

        settings = AppSettings(**yaml_config)

        logger.info(
            "Configuration loaded successfully",
            profile=profile,
            aggregator_enabled=settings.panora_api_key is not None,
            price_cache_ttl_seconds=settings.price_cache_ttl_seconds,
        )

        return settings

    except yaml.YAMLError as e:
        logger.error("Failed to parse YAML configuration", error=str(e))
        raise ValueError(f"Invalid YAML configuration: {e}") from e
    except ValidationError as e:
        logger.error("Configuration validation failed", error=str(e))
        raise
    except Exception as e:
        logger.error("Unexpected error loading configuration", error=str(e))
        raise
