"""Tests for cohort resolution and monthly user states."""

from datetime import date
from decimal import Decimal

import pytest

from panel_cohort_audit.foundation.cohorts import CohortScope, MonthlyUserState, build_cohort
from panel_cohort_audit.foundation.dimensions import DimensionSpec, resolve_dimension
from panel_cohort_audit.foundation.transaction_contract import Window

WINDOW = Window(date(2025, 1, 1), date(2025, 4, 1))


class TestCohortMembership:
    """Test presence-only cohort membership."""

    def test_cohort_is_users_with_a_line_at_x(self, waterfall_lines):
        """Test only users with lines at X are cohort members."""
        resolution = build_cohort(waterfall_lines, CohortScope(WINDOW, "X"))
        assert resolution.cohort == frozenset({"A", "B"})
        assert resolution.cohort_size == 2

    def test_zero_amount_line_qualifies(self, make_line):
        """Test a zero-amount line at X still puts the user in the cohort."""
        lines = [make_line("Z", date(2025, 1, 1), "0")]
        assert build_cohort(lines, CohortScope(WINDOW, "X")).cohort == frozenset({"Z"})

    def test_lines_outside_window_ignored(self, make_line):
        """Test the window end is exclusive."""
        lines = [make_line("Z", date(2025, 4, 1), "10")]
        assert build_cohort(lines, CohortScope(WINDOW, "X")).cohort_size == 0

    def test_store_filter(self, make_line):
        """Test a store restriction applies to in-X activity."""
        lines = [
            make_line("A", date(2025, 1, 1), "10", store_id="S1"),
            make_line("B", date(2025, 1, 1), "10", store_id="S2"),
        ]
        resolution = build_cohort(lines, CohortScope(WINDOW, "X", store_id="S1"))
        assert resolution.cohort == frozenset({"A"})

    def test_reconciliation_filter_excludes_unknown_flag(self, make_line):
        """Test explicit reconciliation filters never match unknown flags."""
        lines = [
            make_line("A", date(2025, 1, 1), "10", reconciled=True),
            make_line("B", date(2025, 1, 1), "10", reconciled=False),
            make_line("C", date(2025, 1, 1), "10", reconciled=None),
        ]
        assert build_cohort(lines, CohortScope(WINDOW, "X", reconciled=True)).cohort == {"A"}
        assert build_cohort(lines, CohortScope(WINDOW, "X", reconciled=False)).cohort == {"B"}
        assert build_cohort(lines, CohortScope(WINDOW, "X")).cohort_size == 3

    def test_path_filter_restricts_lines(self, make_line):
        """Test the dimension path filter applies to every line in scope."""
        lines = [
            make_line("A", date(2025, 1, 1), "10", category="FOOD"),
            make_line("B", date(2025, 1, 1), "10", category="DRINKS"),
        ]
        scope = CohortScope(
            WINDOW,
            "X",
            dimension=resolve_dimension(DimensionSpec("product", "l1", ("FOOD",))),
        )
        resolution = build_cohort(lines, scope)
        assert resolution.cohort == frozenset({"A"})
        assert len(resolution.lines) == 1


class TestMonthlyStates:
    """Test per-user monthly aggregation."""

    def test_states_split_in_x_and_total(self, waterfall_lines):
        """Test in-X and market-wide activity are tracked separately."""
        resolution = build_cohort(waterfall_lines, CohortScope(WINDOW, "X"))
        feb_b = resolution.state("B", date(2025, 2, 1))
        assert feb_b.visits_in_x == 0
        assert feb_b.visits_total == 1
        assert feb_b.spend_total == Decimal("30")

    def test_non_cohort_users_have_states(self, waterfall_lines):
        """Test users outside the cohort still get monthly states."""
        resolution = build_cohort(waterfall_lines, CohortScope(WINDOW, "X"))
        assert ("C", date(2025, 1, 1)) in resolution.states

    def test_idle_month_is_zero_state(self, waterfall_lines):
        """Test a missing (user, month) returns an all-zero state."""
        resolution = build_cohort(waterfall_lines, CohortScope(WINDOW, "X"))
        state = resolution.state("A", date(2025, 3, 1))
        assert state.visits_total == 0
        assert state.spend_in_x == Decimal("0")

    def test_months_only_where_active(self, waterfall_lines):
        """Test months without activity are absent, not zero-filled."""
        resolution = build_cohort(waterfall_lines, CohortScope(WINDOW, "X"))
        assert resolution.months == (date(2025, 1, 1), date(2025, 2, 1))

    def test_visits_are_distinct_invoices(self, make_line):
        """Test two lines on one invoice count as one visit."""
        lines = [
            make_line("A", date(2025, 1, 1), "10", invoice_id="I1"),
            make_line("A", date(2025, 1, 1), "5", invoice_id="I1", category="DRINKS"),
        ]
        state = build_cohort(lines, CohortScope(WINDOW, "X")).state("A", date(2025, 1, 1))
        assert state.visits_in_x == 1
        assert state.distinct_categories_in_x == 2
        assert state.spend_in_x == Decimal("15")

    def test_state_validation(self):
        """Test visits at X cannot exceed total visits."""
        with pytest.raises(ValueError, match="cannot exceed visits_total"):
            MonthlyUserState("A", date(2025, 1, 1), visits_in_x=2, visits_total=1)
