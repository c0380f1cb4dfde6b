"""Data coverage at issuer X: how much spend carries usable attributes."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from panel_cohort_audit._utils import money, percentage
from panel_cohort_audit.foundation.cohorts import CohortScope
from panel_cohort_audit.foundation.transaction_contract import UNKNOWN, TransactionLine


@dataclass(frozen=True)
class CoverageReport:
    """Share of X's spend with known attributes.

    All percentages are 0 when there is no spend.
    """

    lines: int
    gross_sales: Decimal
    product_l1_known_pct: Decimal
    commerce_l1_known_pct: Decimal
    brand_known_pct: Decimal
    reconciled_pct: Decimal
    unknown_product_lines: int

    def as_dict(self) -> dict[str, object]:
        return {
            "lines": self.lines,
            "gross_sales": float(self.gross_sales),
            "product_l1_known_pct": float(self.product_l1_known_pct),
            "commerce_l1_known_pct": float(self.commerce_l1_known_pct),
            "brand_known_pct": float(self.brand_known_pct),
            "reconciled_pct": float(self.reconciled_pct),
            "unknown_product_lines": self.unknown_product_lines,
        }


def calculate_coverage(lines: Iterable[TransactionLine], scope: CohortScope) -> CoverageReport:
    """Coverage of product, commerce, brand and reconciliation over X's lines."""
    total = product = commerce = brand = reconciled = Decimal("0")
    count = unknown_product = 0
    for line in lines:
        if not scope.in_scope(line) or not scope.is_in_x(line):
            continue
        count += 1
        amount = line.line_amount
        total += amount
        if line.product_path[0] != UNKNOWN:
            product += amount
        else:
            unknown_product += 1
        if line.commerce_path[0] != UNKNOWN:
            commerce += amount
        if line.brand != UNKNOWN:
            brand += amount
        if line.reconciled is True:
            reconciled += amount

    return CoverageReport(
        lines=count,
        gross_sales=money(total),
        product_l1_known_pct=percentage(product, total),
        commerce_l1_known_pct=percentage(commerce, total),
        brand_known_pct=percentage(brand, total),
        reconciled_pct=percentage(reconciled, total),
        unknown_product_lines=unknown_product,
    )
