"""
Formatting utilities.
"""

from typing import Optional


def format_currency(amount: float, currency: str = "USD", decimals: int = 0) -> str:
    """
    Format an amount as currency.

    Args:
        amount: The amount in whole units (e.g., dollars, not cents).
        currency: Currency code (default USD).
        decimals: Number of decimal places; use 2 for $/SF values.

    Returns:
        Formatted currency string.
    """
    symbols = {
        "USD": "$",
        "GBP": "£",
        "EUR": "€",
    }
    symbol = symbols.get(currency, currency + " ")
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.{decimals}f}"


def format_percent(value: float, decimals: int = 1) -> str:
    """
    Format a number as a percentage.

    Args:
        value: The percentage value.
        decimals: Number of decimal places.

    Returns:
        Formatted percentage string.
    """
    return f"{value:.{decimals}f}%"


def format_trend_rate(pct_per_month: Optional[float], decimals: int = 2) -> str:
    """
    Format a monthly trend rate given as a decimal (0.005 -> "+0.50%/mo").

    None formats as "n/a".
    """
    if pct_per_month is None:
        return "n/a"
    return f"{pct_per_month * 100:+.{decimals}f}%/mo"


def format_range(lo: float, hi: float, per_sqft: bool = False) -> str:
    """Format a Hi-Lo box; $/SF boxes keep cents."""
    decimals = 2 if per_sqft else 0
    suffix = "/SF" if per_sqft else ""
    return f"{format_currency(lo, decimals=decimals)}{suffix} - {format_currency(hi, decimals=decimals)}{suffix}"
