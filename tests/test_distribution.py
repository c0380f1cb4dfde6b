"""Tests for the market-wide retailer distribution."""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from panel_cohort_audit.analyses.distribution import calculate_issuer_distribution
from panel_cohort_audit.config import SuppressionMode
from panel_cohort_audit.foundation.cohorts import CohortScope
from panel_cohort_audit.foundation.transaction_contract import (
    OTHER_SUPPRESSED,
    UNKNOWN,
    Window,
)
from panel_cohort_audit.policy.suppression import TrustLevel

SCOPE = CohortScope(Window(date(2025, 1, 1), date(2025, 2, 1)), "X")


@pytest.fixture
def market_lines(make_line):
    """X: 6 buyers, 180. Y: 3 buyers, 300. Z and W: one buyer each."""
    lines = [
        make_line(f"U{idx}", date(2025, 1, 2 + idx), "30", commerce="GROCERY")
        for idx in range(6)
    ]
    lines += [
        make_line(f"U{idx}", date(2025, 1, 10), "100", issuer_id="Y", commerce="PHARMACY")
        for idx in range(3)
    ]
    lines.append(make_line("U0", date(2025, 1, 12), "20", issuer_id="Z"))
    lines.append(make_line("U1", date(2025, 1, 13), "10", issuer_id="W"))
    # outside the window
    lines.append(make_line("U2", date(2025, 2, 3), "999", issuer_id="Z"))
    return lines


class TestIssuerDistribution:
    """Test issuers are ranked by gross sales with k-anonymity on buyers."""

    def test_ranking_and_merge(self, market_lines):
        result = calculate_issuer_distribution(market_lines, SCOPE, k=3)

        assert [row.issuer_id for row in result.rows] == ["Y", "X", OTHER_SUPPRESSED]
        assert result.suppressed_keys == ("Z", "W")
        assert result.issuers_total == 4
        assert result.market_buyers == 6
        assert result.market_gross_sales == Decimal("510.00")

    def test_row_measures(self, market_lines):
        rows = {row.issuer_id: row for row in calculate_issuer_distribution(market_lines, SCOPE, k=3).rows}

        y = rows["Y"]
        assert (y.receipts, y.buyers, y.gross_sales) == (3, 3, Decimal("300.00"))
        assert y.avg_ticket == Decimal("100.00")
        assert y.market_share_pct == Decimal("58.82")
        assert y.commerce_l1 == "PHARMACY"
        assert y.trust_level is TrustLevel.LOW
        assert not y.is_target

        x = rows["X"]
        assert x.is_target
        assert x.avg_ticket == Decimal("30.00")
        assert x.market_share_pct == Decimal("35.29")

    def test_merged_row_has_no_commerce(self, market_lines):
        """Test the merged row sums measures and hides commerce identity."""
        merged = calculate_issuer_distribution(market_lines, SCOPE, k=3).rows[-1]

        assert merged.receipts == 2
        assert merged.buyers == 2
        assert merged.gross_sales == Decimal("30.00")
        assert merged.avg_ticket == Decimal("15.00")
        assert (merged.commerce_l1, merged.commerce_l2) == (UNKNOWN, UNKNOWN)
        assert merged.trust_level is TrustLevel.SUPPRESSED

    def test_drop_mode(self, market_lines):
        result = calculate_issuer_distribution(
            market_lines, SCOPE, k=3, mode=SuppressionMode.DROP
        )
        assert [row.issuer_id for row in result.rows] == ["Y", "X"]

    def test_limit(self, market_lines):
        result = calculate_issuer_distribution(market_lines, SCOPE, k=1, limit=2)
        assert [row.issuer_id for row in result.rows] == ["Y", "X"]
        assert result.issuers_total == 4

    def test_limit_must_be_positive(self, market_lines):
        with pytest.raises(ValueError, match="limit"):
            calculate_issuer_distribution(market_lines, SCOPE, limit=0)

    def test_dominant_commerce_by_spend(self, make_line):
        """Test l1/l2 come from the commerce path carrying the most spend."""
        lines = [
            replace(
                make_line("A", date(2025, 1, 5), "70", commerce="GROCERY"),
                commerce_path=("GROCERY", "SUPERMARKET", UNKNOWN, UNKNOWN),
            ),
            replace(
                make_line("B", date(2025, 1, 6), "40", commerce="GROCERY"),
                commerce_path=("GROCERY", "MINIMARKET", UNKNOWN, UNKNOWN),
            ),
            make_line("C", date(2025, 1, 7), "60"),
        ]
        [row] = calculate_issuer_distribution(lines, SCOPE, k=1).rows

        assert (row.commerce_l1, row.commerce_l2) == ("GROCERY", "SUPERMARKET")

    def test_as_dict(self, market_lines):
        payload = calculate_issuer_distribution(market_lines, SCOPE, k=3).rows[0].as_dict()
        assert payload["issuer_id"] == "Y"
        assert payload["gross_sales"] == 300.0
        assert payload["trust_level"] == "LOW"
        assert payload["is_target"] is False
