"""Parsing helpers that turn raw request values into Decimals, ints and dates."""
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from app.exceptions import ValidationError


def parse_decimal(value, field: str, default=None, places: int = None) -> Decimal:
    """
    Parse a numeric request value to Decimal.

    Accepts Decimal, int, float and numeric strings. Floats go through str()
    so 0.1 becomes Decimal('0.1') rather than its binary expansion.
    With `places`, values carrying more significant decimal places than the
    column that stores them are rejected instead of being truncated on save.

    Raises:
        ValidationError: if the value is missing (and no default), not a
            number, NaN or infinite, or has more than `places` decimals.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is not None:
            return Decimal(str(default))
        raise ValidationError(f'{field} is required', field=field)

    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number', field=field)

    if isinstance(value, Decimal):
        decimal_value = value
    else:
        try:
            decimal_value = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f'{field} must be a number', field=field)

    if not decimal_value.is_finite():
        raise ValidationError(f'{field} must be a finite number', field=field)

    if places is not None and decimal_value.normalize().as_tuple().exponent < -places:
        raise ValidationError(f'{field} allows at most {places} decimal places', field=field)

    return decimal_value


def parse_non_negative(value, field: str, default=None, places: int = None) -> Decimal:
    """Parse a Decimal and reject negatives."""
    decimal_value = parse_decimal(value, field, default, places)
    if decimal_value < 0:
        raise ValidationError(f'{field} cannot be negative', field=field)
    return decimal_value


def parse_int(value, field: str, default=None) -> int:
    """Parse a whole number. '2', 2 and 2.0 are accepted; 2.5 is not."""
    decimal_value = parse_decimal(value, field, default)
    if decimal_value != decimal_value.to_integral_value():
        raise ValidationError(f'{field} must be a whole number', field=field)
    return int(decimal_value)


def parse_date(value, field: str):
    """Parse an ISO date (YYYY-MM-DD). Returns None for empty values."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f'{field} must be a date in YYYY-MM-DD format', field=field)
