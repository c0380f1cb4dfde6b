"""Headline KPIs for issuer X: a previous-period comparison and a daily series.

The previous period is the window of equal length ending where the current
window starts (see :meth:`Window.previous`). Change percentages are ``None``
when the previous value is zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from panel_cohort_audit._utils import PERCENTAGE_PRECISION, money
from panel_cohort_audit.foundation.cohorts import CohortScope
from panel_cohort_audit.foundation.transaction_contract import TransactionLine


def _ratio(numerator: Decimal | int, denominator: Decimal | int) -> Decimal:
    if not denominator:
        return Decimal("0.00")
    return (Decimal(numerator) / Decimal(denominator)).quantize(
        PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
    )


def change_pct(current: Decimal | int, previous: Decimal | int) -> Decimal | None:
    """Relative change in percent; ``None`` when ``previous`` is zero.

    >>> change_pct(Decimal("120"), Decimal("100"))
    Decimal('20.00')
    >>> change_pct(5, 0) is None
    True
    """
    if not previous:
        return None
    return (
        (Decimal(current) - Decimal(previous)) / Decimal(previous) * 100
    ).quantize(PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class KpiSnapshot:
    """Activity at X over one window.

    Attributes
    ----------
    receipts:
        Distinct invoices.
    buyers:
        Distinct users.
    gross_sales:
        Sum of line amounts.
    aov:
        Average order value (gross_sales / receipts).
    frequency:
        Receipts per buyer.
    active_days:
        Distinct invoice dates.
    daily_avg_sales:
        gross_sales / active_days.
    """

    receipts: int
    buyers: int
    gross_sales: Decimal
    aov: Decimal
    frequency: Decimal
    active_days: int
    daily_avg_sales: Decimal
    period_start: date | None = None
    period_end: date | None = None

    def __post_init__(self) -> None:
        if self.gross_sales < 0:
            raise ValueError(f"gross_sales cannot be negative: {self.gross_sales}")

    def as_dict(self) -> dict[str, object]:
        return {
            "receipts": self.receipts,
            "buyers": self.buyers,
            "gross_sales": float(self.gross_sales),
            "aov": float(self.aov),
            "frequency": float(self.frequency),
            "active_days": self.active_days,
            "daily_avg_sales": float(self.daily_avg_sales),
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
        }


@dataclass(frozen=True)
class KpiComparison:
    current: KpiSnapshot
    previous: KpiSnapshot

    @property
    def sales_change_pct(self) -> Decimal | None:
        return change_pct(self.current.gross_sales, self.previous.gross_sales)

    @property
    def receipts_change_pct(self) -> Decimal | None:
        return change_pct(self.current.receipts, self.previous.receipts)

    @property
    def buyers_change_pct(self) -> Decimal | None:
        return change_pct(self.current.buyers, self.previous.buyers)

    def as_dict(self) -> dict[str, object]:
        def _as_float(value: Decimal | None) -> float | None:
            return None if value is None else float(value)

        return {
            **self.current.as_dict(),
            "prev_receipts": self.previous.receipts,
            "prev_buyers": self.previous.buyers,
            "prev_gross_sales": float(self.previous.gross_sales),
            "sales_change_pct": _as_float(self.sales_change_pct),
            "receipts_change_pct": _as_float(self.receipts_change_pct),
            "buyers_change_pct": _as_float(self.buyers_change_pct),
        }


def calculate_kpis(lines: Iterable[TransactionLine], scope: CohortScope) -> KpiSnapshot:
    """Summarise activity at X (optionally one store) for lines in ``scope``."""
    invoices: set[str] = set()
    buyers: set[str] = set()
    days: set[date] = set()
    gross = Decimal("0")
    for line in lines:
        if not scope.in_scope(line) or not scope.is_in_x(line):
            continue
        invoices.add(line.invoice_id)
        buyers.add(line.user_id)
        days.add(line.invoice_date)
        gross += line.line_amount

    return KpiSnapshot(
        receipts=len(invoices),
        buyers=len(buyers),
        gross_sales=money(gross),
        aov=_ratio(gross, len(invoices)),
        frequency=_ratio(len(invoices), len(buyers)),
        active_days=len(days),
        daily_avg_sales=_ratio(gross, len(days)),
        period_start=min(days) if days else None,
        period_end=max(days) if days else None,
    )


def compare_kpis(
    current_lines: Iterable[TransactionLine],
    previous_lines: Iterable[TransactionLine],
    scope: CohortScope,
) -> KpiComparison:
    """KPIs for ``scope`` and for the same scope shifted to the previous window."""
    previous_scope = CohortScope(
        window=scope.window.previous(),
        issuer_id=scope.issuer_id,
        store_id=scope.store_id,
        reconciled=scope.reconciled,
        dimension=scope.dimension,
    )
    return KpiComparison(
        current=calculate_kpis(current_lines, scope),
        previous=calculate_kpis(previous_lines, previous_scope),
    )


@dataclass(frozen=True)
class DailyKpi:
    """Activity at X on one invoice date."""

    day: date
    receipts: int
    buyers: int
    gross_sales: Decimal
    aov: Decimal

    def as_dict(self) -> dict[str, object]:
        return {
            "invoice_date": self.day.isoformat(),
            "receipts": self.receipts,
            "buyers": self.buyers,
            "gross_sales": float(self.gross_sales),
            "aov": float(self.aov),
        }


def calculate_daily_kpis(
    lines: Iterable[TransactionLine], scope: CohortScope
) -> list[DailyKpi]:
    """Per-day receipts, buyers, gross sales and AOV at X, oldest first.

    Only dates with at least one line appear; idle days are not zero-filled.
    """
    invoices: dict[date, set[str]] = {}
    buyers: dict[date, set[str]] = {}
    gross: dict[date, Decimal] = {}
    for line in lines:
        if not scope.in_scope(line) or not scope.is_in_x(line):
            continue
        day = line.invoice_date
        invoices.setdefault(day, set()).add(line.invoice_id)
        buyers.setdefault(day, set()).add(line.user_id)
        gross[day] = gross.get(day, Decimal("0")) + line.line_amount

    return [
        DailyKpi(
            day=day,
            receipts=len(invoices[day]),
            buyers=len(buyers[day]),
            gross_sales=money(gross[day]),
            aov=_ratio(gross[day], len(invoices[day])),
        )
        for day in sorted(invoices)
    ]
