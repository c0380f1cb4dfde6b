"""Tests for capture / leakage aggregation."""

from datetime import date
from decimal import Decimal

import pytest

from panel_cohort_audit.analyses.capture import (
    CaptureRow,
    PeerScope,
    calculate_capture,
    resolve_peer_issuers,
)
from panel_cohort_audit.config import SuppressionMode
from panel_cohort_audit.foundation.cohorts import CohortScope, build_cohort
from panel_cohort_audit.foundation.transaction_contract import OTHER_SUPPRESSED, Window
from panel_cohort_audit.policy.suppression import TrustLevel

WINDOW = Window(date(2025, 1, 1), date(2025, 4, 1))


def _capture(lines, **kwargs):
    return calculate_capture(build_cohort(lines, CohortScope(WINDOW, "X")), **kwargs)


class TestCaptureAggregation:
    """Test share of wallet and leakage per category."""

    def test_six_users_reported_one_user_merged(self, capture_lines):
        """Test FOOD (6 users) keeps its name and DRINKS (1 user) is merged."""
        metrics = _capture(capture_lines, k=5)
        rows = {row.category_value: row for row in metrics.rows}

        assert set(rows) == {"FOOD", OTHER_SUPPRESSED}
        food = rows["FOOD"]
        assert food.users == 6
        assert food.spend_in_x_usd == Decimal("180.00")
        assert food.spend_market_usd == Decimal("240.00")
        assert food.leakage_usd == Decimal("60.00")
        assert food.sow_pct == Decimal("75.00")
        assert food.trust_level is TrustLevel.LOW
        assert rows[OTHER_SUPPRESSED].trust_level is TrustLevel.SUPPRESSED

    def test_single_user_category_merged(self, make_line):
        """Test a FOOD category with one qualifying user is merged at k=5."""
        metrics = _capture([make_line("A", date(2025, 1, 2), "10")], k=5)
        assert [row.category_value for row in metrics.rows] == [OTHER_SUPPRESSED]

    def test_sorted_by_spend_in_x(self, capture_lines):
        """Test rows are sorted by spend at X, descending."""
        metrics = _capture(capture_lines, k=1)
        assert [row.category_value for row in metrics.rows] == ["FOOD", "DRINKS"]

    def test_leakage_identity_after_merge(self, make_line):
        """Test leakage equals market minus in-X spend on merged rows too."""
        lines = [
            make_line("A", date(2025, 1, 2), "10", category="TOYS"),
            make_line("A", date(2025, 1, 3), "25", category="TOYS", issuer_id="Y"),
            make_line("B", date(2025, 1, 2), "7", category="PETS"),
        ]
        merged = _capture(lines, k=5).rows[0]
        assert merged.category_value == OTHER_SUPPRESSED
        assert merged.spend_in_x_usd == Decimal("17.00")
        assert merged.spend_market_usd == Decimal("42.00")
        assert merged.leakage_usd == merged.spend_market_usd - merged.spend_in_x_usd
        assert merged.sow_pct == Decimal("40.48")

    def test_zero_market_spend_reports_zero_sow(self, make_line):
        """Test sow_pct is 0, not NaN, when market spend is 0."""
        metrics = _capture([make_line("A", date(2025, 1, 2), "0")], k=1)
        assert metrics.rows[0].sow_pct == Decimal("0.00")

    def test_drop_mode(self, capture_lines):
        """Test DROP removes the low-support category."""
        metrics = _capture(capture_lines, k=5, mode=SuppressionMode.DROP)
        assert [row.category_value for row in metrics.rows] == ["FOOD"]
        assert metrics.suppressed_keys == ("DRINKS",)

    def test_non_cohort_users_excluded(self, capture_lines, make_line):
        """Test users who never bought at X do not contribute market spend."""
        extra = make_line("OUT", date(2025, 1, 2), "1000", issuer_id="Y")
        food = _capture(capture_lines + [extra], k=5).rows[0]
        assert food.spend_market_usd == Decimal("240.00")

    def test_household_projection(self, capture_lines):
        """Test a non-unit expansion factor adds projected spend."""
        food = _capture(capture_lines, k=5, expansion_factor=Decimal("2.5")).rows[0]
        assert food.projected_spend_in_x_usd == Decimal("450.00")
        assert "projected_spend_in_x_usd" in food.as_dict()

    def test_no_projection_by_default(self, capture_lines):
        """Test rows carry no projection with the default factor."""
        food = _capture(capture_lines, k=5).rows[0]
        assert food.projected_spend_in_x_usd is None
        assert "projected_spend_in_x_usd" not in food.as_dict()

    def test_row_rejects_inconsistent_leakage(self):
        """Test CaptureRow enforces the leakage identity."""
        with pytest.raises(ValueError, match="leakage_usd"):
            CaptureRow(
                category_value="FOOD",
                users=5,
                spend_in_x_usd=Decimal("10"),
                spend_market_usd=Decimal("20"),
                leakage_usd=Decimal("5"),
                sow_pct=Decimal("50"),
                trust_level=TrustLevel.LOW,
            )


class TestPeerScope:
    """Test market denominators under each peer scope."""

    @pytest.fixture
    def peer_lines(self, make_line):
        return [
            make_line("A", date(2025, 1, 2), "10", commerce="SUPERMARKET"),
            make_line("A", date(2025, 1, 3), "10", issuer_id="Y", commerce="SUPERMARKET"),
            make_line("A", date(2025, 1, 4), "10", issuer_id="Z", commerce="PHARMACY"),
            make_line("A", date(2025, 1, 5), "10", issuer_id="W", commerce="PHARMACY", category="TOYS"),
        ]

    def test_resolve_peers(self, peer_lines):
        """Test peers share X's dominant commerce category."""
        assert resolve_peer_issuers(peer_lines, "X", PeerScope.ALL) is None
        assert resolve_peer_issuers(peer_lines, "X", PeerScope.PEERS) == {"X", "Y"}
        assert resolve_peer_issuers(peer_lines, "X", PeerScope.EXTENDED) == {"X", "Y", "Z"}

    def test_market_spend_by_scope(self, peer_lines):
        """Test FOOD market spend shrinks with the peer scope."""
        def food_market(scope):
            rows = _capture(peer_lines, k=1, peer_scope=scope).rows
            return next(r for r in rows if r.category_value == "FOOD").spend_market_usd

        assert food_market("all") == Decimal("30.00")
        assert food_market("peers") == Decimal("20.00")
        assert food_market("extended") == Decimal("30.00")
