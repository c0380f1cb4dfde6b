"""Tests for attribute coverage at issuer X."""

from datetime import date
from decimal import Decimal

from panel_cohort_audit.analyses.coverage import calculate_coverage
from panel_cohort_audit.foundation.cohorts import CohortScope
from panel_cohort_audit.foundation.transaction_contract import UNKNOWN, Window

SCOPE = CohortScope(Window(date(2025, 1, 1), date(2025, 2, 1)), "X")


def test_coverage_shares(make_line):
    """Test each attribute's known share of spend."""
    lines = [
        make_line("A", date(2025, 1, 2), "60", brand="Acme", commerce="GROCERY", reconciled=True),
        make_line("A", date(2025, 1, 3), "30", category=UNKNOWN, brand="Acme"),
        make_line("B", date(2025, 1, 4), "10", reconciled=False),
        make_line("B", date(2025, 1, 5), "500", category=UNKNOWN, issuer_id="Y"),
    ]

    report = calculate_coverage(lines, SCOPE)

    assert report.lines == 3
    assert report.gross_sales == Decimal("100.00")
    assert report.product_l1_known_pct == Decimal("70.00")
    assert report.commerce_l1_known_pct == Decimal("60.00")
    assert report.brand_known_pct == Decimal("90.00")
    assert report.reconciled_pct == Decimal("60.00")
    assert report.unknown_product_lines == 1


def test_coverage_without_spend():
    """Test percentages are zero when X has no lines."""
    report = calculate_coverage([], SCOPE)
    assert report.lines == 0
    assert report.as_dict()["brand_known_pct"] == 0.0
