"""
Formatting utilities.
"""

from typing import Optional


def format_currency(amount: int, currency: str = "EUR") -> str:
    """
    Format an integer amount as currency.

    Args:
        amount: The amount in whole units (e.g., euros, not cents).
        currency: Currency code (default EUR).

    Returns:
        Formatted currency string.
    """
    symbols = {
        "EUR": "€",
        "GBP": "£",
        "USD": "$",
    }
    symbol = symbols.get(currency, currency + " ")
    return f"{symbol}{amount:,}"


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


def format_distance(meters: Optional[float]) -> str:
    """
    Format a distance for display.

    Under a kilometre in whole metres, otherwise kilometres with one
    decimal. None (no coordinates involved) gives "n/a".
    """
    if meters is None:
        return "n/a"
    if meters < 1000:
        return f"{meters:.0f} m"
    return f"{meters / 1000:.1f} km"
