"""
Presentation formatting for money and dates.

Calculations never call these; they exist for API responses and exports.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union, Optional


def round_money(value: Union[Decimal, int, str], places: int = 3) -> Decimal:
    """Round half-up to a fixed number of decimal places."""
    return Decimal(str(value)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def format_money(value: Union[int, float, Decimal, str, None], places: int = 3, currency: Optional[str] = None) -> str:
    """
    Format a monetary amount with a fixed number of decimals.

    Examples:
        format_money(Decimal('12.5')) -> "12.500"
        format_money(Decimal('1234.5678'), currency='BHD') -> "1,234.568 BHD"
        format_money(None) -> "-"
    """
    if value is None or value == "":
        return "-"
    try:
        amount = round_money(value, places)
    except (InvalidOperation, ValueError):
        return "-"
    text = f"{amount:,.{places}f}"
    return f"{text} {currency}" if currency else text
