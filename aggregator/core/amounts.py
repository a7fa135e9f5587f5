"""Amount parsing and formatting.

Amounts are handled as floats and rendered as fixed decimal strings. This is an
approximation: tokens with many decimals lose precision. All conversions go
through this module so the policy can be changed in one place.
"""

import math

from .errors import ConfigurationError

OUTPUT_DECIMALS = 6
PERCENT_DECIMALS = 2

# Move coin amounts are u64; no whole-token amount can exceed this
MAX_AMOUNT = float(2**64 - 1)


def parse_amount(amount: str | float | int) -> float:
    """Parse a human-readable token amount.

    Raises:
        ConfigurationError: If the amount is not a finite, non-negative number
            no larger than MAX_AMOUNT
    """
    try:
        value = float(amount)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid amount: {amount}", details={"amount": amount}
        ) from e

    if not math.isfinite(value) or value < 0 or value > MAX_AMOUNT:
        raise ConfigurationError(f"Invalid amount: {amount}", details={"amount": amount})
    return value


def format_amount(value: float, places: int = OUTPUT_DECIMALS) -> str:
    """Render an amount as a fixed decimal string.

    Raises:
        ConfigurationError: If the value is not finite
    """
    if not math.isfinite(value):
        raise ConfigurationError(f"Amount out of range: {value}", details={"amount": value})
    return f"{value:.{places}f}"


def format_percent(value: float, places: int = PERCENT_DECIMALS) -> str:
    return f"{value:.{places}f}"


def format_fee(fee: float) -> str:
    """Render a fee fraction as a percent string, e.g. 0.003 -> '0.3%'."""
    return f"{fee * 100:g}%"


def to_base_units(amount: str | float, decimals: int) -> str:
    """Convert a human-readable amount to integer base units.

    Args:
        amount: Amount in whole tokens
        decimals: Token decimals

    Returns:
        Integer amount in the token's smallest unit, rounded to the nearest unit
    """
    value = parse_amount(amount)
    return str(round(value * 10**decimals))
