"""Shared utilities for pandas conversion operations."""

from datetime import date, datetime
from decimal import Decimal

import pandas as pd  # type: ignore


def decimal_to_float(value: Decimal) -> float:
    """Convert Decimal to float for pandas compatibility."""
    return float(value)


def to_decimal(value: object) -> Decimal:
    """Convert a numeric cell to Decimal via its string form.

    Args:
        value: int, float, Decimal or numeric string

    Returns:
        Decimal representation of the value

    Raises:
        TypeError: If value is not numeric

    Example:
        >>> to_decimal(12.5)
        Decimal('12.5')
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise TypeError(f"Expected numeric type, got {type(value)}")
    return Decimal(str(value))


def to_date(value: object) -> date:
    """Normalise a pandas Timestamp / datetime / date cell to ``date``."""
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.Timestamp(value).date()
