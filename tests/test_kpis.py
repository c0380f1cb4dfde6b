"""Tests for headline KPIs and period comparison."""

from datetime import date
from decimal import Decimal

import pytest

from panel_cohort_audit.analyses.kpis import (
    DailyKpi,
    KpiSnapshot,
    calculate_daily_kpis,
    calculate_kpis,
    change_pct,
    compare_kpis,
)
from panel_cohort_audit.foundation.cohorts import CohortScope
from panel_cohort_audit.foundation.transaction_contract import Window

SCOPE = CohortScope(Window(date(2025, 2, 1), date(2025, 3, 1)), "X")


@pytest.fixture
def kpi_lines(make_line):
    return [
        make_line("A", date(2025, 2, 3), "60", invoice_id="I1"),
        make_line("A", date(2025, 2, 3), "40", invoice_id="I1", category="DRINKS"),
        make_line("A", date(2025, 2, 10), "50"),
        make_line("B", date(2025, 2, 10), "50"),
        make_line("B", date(2025, 2, 11), "999", issuer_id="Y"),
        make_line("A", date(2025, 1, 10), "100"),
        make_line("B", date(2025, 1, 5), "60"),
    ]


class TestChangePct:
    def test_increase(self):
        assert change_pct(Decimal("120"), Decimal("100")) == Decimal("20.00")

    def test_decrease(self):
        assert change_pct(3, 4) == Decimal("-25.00")

    def test_zero_previous_is_none(self):
        assert change_pct(5, 0) is None


class TestCalculateKpis:
    """Test KPI snapshot for the current window."""

    def test_snapshot(self, kpi_lines):
        """Test receipts count distinct invoices, not lines."""
        snapshot = calculate_kpis(kpi_lines, SCOPE)

        assert snapshot.receipts == 3
        assert snapshot.buyers == 2
        assert snapshot.gross_sales == Decimal("200.00")
        assert snapshot.aov == Decimal("66.67")
        assert snapshot.frequency == Decimal("1.50")
        assert snapshot.active_days == 2
        assert snapshot.daily_avg_sales == Decimal("100.00")
        assert snapshot.period_start == date(2025, 2, 3)
        assert snapshot.period_end == date(2025, 2, 10)

    def test_empty_window(self):
        """Test an empty window yields zeros and no period."""
        snapshot = calculate_kpis([], SCOPE)
        assert snapshot.receipts == 0
        assert snapshot.aov == Decimal("0.00")
        assert snapshot.period_start is None

    def test_negative_sales_rejected(self):
        with pytest.raises(ValueError, match="gross_sales"):
            KpiSnapshot(
                receipts=1,
                buyers=1,
                gross_sales=Decimal("-1"),
                aov=Decimal("0"),
                frequency=Decimal("0"),
                active_days=1,
                daily_avg_sales=Decimal("0"),
            )


class TestCompareKpis:
    """Test comparison with the preceding window of equal length."""

    def test_comparison(self, kpi_lines):
        comparison = compare_kpis(kpi_lines, kpi_lines, SCOPE)

        assert comparison.previous.gross_sales == Decimal("160.00")
        assert comparison.sales_change_pct == Decimal("25.00")
        assert comparison.receipts_change_pct == Decimal("50.00")
        assert comparison.buyers_change_pct == Decimal("0.00")

        payload = comparison.as_dict()
        assert payload["prev_receipts"] == 2
        assert payload["sales_change_pct"] == 25.0

    def test_no_previous_activity(self, kpi_lines):
        """Test change percentages are None without previous activity."""
        current_only = [line for line in kpi_lines if line.invoice_date.month == 2]
        comparison = compare_kpis(current_only, current_only, SCOPE)
        assert comparison.sales_change_pct is None
        assert comparison.as_dict()["buyers_change_pct"] is None


class TestDailyKpis:
    """Test the per-day KPI series at X."""

    def test_series(self, kpi_lines):
        days = calculate_daily_kpis(kpi_lines, SCOPE)

        assert days == [
            DailyKpi(date(2025, 2, 3), 1, 1, Decimal("100.00"), Decimal("100.00")),
            DailyKpi(date(2025, 2, 10), 2, 2, Decimal("100.00"), Decimal("50.00")),
        ]

    def test_other_issuers_and_windows_ignored(self, kpi_lines):
        """Test Y's line and January lines never create a day."""
        days = {day.day for day in calculate_daily_kpis(kpi_lines, SCOPE)}
        assert date(2025, 2, 11) not in days
        assert all(SCOPE.window.contains(day) for day in days)

    def test_as_dict(self, kpi_lines):
        payload = calculate_daily_kpis(kpi_lines, SCOPE)[1].as_dict()
        assert payload == {
            "invoice_date": "2025-02-10",
            "receipts": 2,
            "buyers": 2,
            "gross_sales": 100.0,
            "aov": 50.0,
        }

    def test_empty(self):
        assert calculate_daily_kpis([], SCOPE) == []
