"""Shared numeric helpers for the metric aggregators."""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Sequence

import numpy as np

# Standard precision for all percentages and averages (2 decimal places)
PERCENTAGE_PRECISION = Decimal("0.01")
MONEY_PRECISION = Decimal("0.01")


def percentage(numerator: Decimal | int, denominator: Decimal | int) -> Decimal:
    """``100 * numerator / denominator`` rounded half-up; 0 when undefined."""
    if not denominator:
        return Decimal("0.00")
    return (Decimal(numerator) / Decimal(denominator) * 100).quantize(
        PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
    )


def money(value: Decimal | int) -> Decimal:
    return Decimal(value).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def mean(values: Sequence[Decimal | int]) -> Decimal:
    """Arithmetic mean rounded to 2 places; 0 for an empty sample."""
    if not values:
        return Decimal("0.00")
    total = sum((Decimal(v) for v in values), Decimal("0"))
    return (total / len(values)).quantize(PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP)


def percentiles(
    values: Sequence[Decimal | float], quantiles: Sequence[int]
) -> dict[int, Decimal]:
    """Continuous percentiles (linear interpolation between order statistics).

    Returns zeros for an empty sample.
    """
    if not values:
        return {q: Decimal("0.00") for q in quantiles}
    sample = np.sort(np.asarray([float(v) for v in values], dtype=float))
    computed = np.percentile(sample, list(quantiles), method="linear")
    return {
        q: Decimal(str(float(result))).quantize(
            PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
        )
        for q, result in zip(quantiles, computed)
    }
