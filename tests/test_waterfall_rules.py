"""Tests for retention waterfall rule sets."""

from datetime import date
from decimal import Decimal

import pytest

from panel_cohort_audit.foundation.cohorts import MonthlyUserState
from panel_cohort_audit.policy.waterfall_rules import (
    CANONICAL_V2,
    CHURN_FALLBACK_V1,
    WaterfallBucket,
    get_rule_set,
)

JAN = date(2025, 1, 1)
FEB = date(2025, 2, 1)


def _state(month, visits_in_x=0, spend_in_x="0", visits_total=None, spend_total=None):
    visits_total = visits_in_x if visits_total is None else visits_total
    return MonthlyUserState(
        user_id="A",
        month=month,
        visits_in_x=visits_in_x,
        spend_in_x=Decimal(spend_in_x),
        visits_total=visits_total,
        spend_total=Decimal(spend_total if spend_total is not None else spend_in_x),
    )


class TestCanonicalRuleOrder:
    """Test the canonical first-match-wins classification."""

    def test_retained_wins_over_reduced_basket(self):
        """Test 100 -> 95 with a visit is RETAINED, not REDUCED_BASKET."""
        origin = _state(JAN, visits_in_x=1, spend_in_x="100")
        nxt = _state(FEB, visits_in_x=1, spend_in_x="95")
        assert CANONICAL_V2.classify(origin, nxt) is WaterfallBucket.RETAINED

    def test_retained_at_exact_threshold(self):
        """Test exactly 90% of origin spend is RETAINED."""
        origin = _state(JAN, visits_in_x=1, spend_in_x="100")
        nxt = _state(FEB, visits_in_x=1, spend_in_x="90")
        assert CANONICAL_V2.classify(origin, nxt) is WaterfallBucket.RETAINED

    def test_category_gone(self):
        """Test activity elsewhere but none at X is CATEGORY_GONE."""
        origin = _state(JAN, visits_in_x=1, spend_in_x="50")
        nxt = _state(FEB, visits_in_x=0, visits_total=1, spend_total="30")
        assert CANONICAL_V2.classify(origin, nxt) is WaterfallBucket.CATEGORY_GONE

    def test_reduced_basket(self):
        """Test spend under half the origin is REDUCED_BASKET."""
        origin = _state(JAN, visits_in_x=2, spend_in_x="100")
        nxt = _state(FEB, visits_in_x=1, spend_in_x="40")
        assert CANONICAL_V2.classify(origin, nxt) is WaterfallBucket.REDUCED_BASKET

    def test_reduced_freq(self):
        """Test fewer visits with moderate spend drop is REDUCED_FREQ."""
        origin = _state(JAN, visits_in_x=3, spend_in_x="100")
        nxt = _state(FEB, visits_in_x=2, spend_in_x="70")
        assert CANONICAL_V2.classify(origin, nxt) is WaterfallBucket.REDUCED_FREQ

    def test_full_churn(self):
        """Test no activity anywhere is FULL_CHURN."""
        origin = _state(JAN, visits_in_x=1, spend_in_x="100")
        nxt = _state(FEB)
        assert CANONICAL_V2.classify(origin, nxt) is WaterfallBucket.FULL_CHURN

    def test_delayed_only_fallback(self):
        """Test a moderate drop with equal visits falls through to DELAYED_ONLY."""
        origin = _state(JAN, visits_in_x=1, spend_in_x="100")
        nxt = _state(FEB, visits_in_x=1, spend_in_x="70")
        assert CANONICAL_V2.classify(origin, nxt) is WaterfallBucket.DELAYED_ONLY


class TestChurnFallbackVariant:
    """Test the earlier variant with FULL_CHURN as catch-all."""

    def test_same_transitions_differ_only_in_fallback(self):
        """Test the fall-through case still lands in DELAYED_ONLY via an explicit rule."""
        origin = _state(JAN, visits_in_x=1, spend_in_x="100")
        nxt = _state(FEB, visits_in_x=1, spend_in_x="70")
        assert CHURN_FALLBACK_V1.classify(origin, nxt) is WaterfallBucket.DELAYED_ONLY

    def test_no_activity_is_full_churn(self):
        """Test the catch-all FULL_CHURN handles idle users."""
        origin = _state(JAN, visits_in_x=1, spend_in_x="100")
        assert CHURN_FALLBACK_V1.classify(origin, _state(FEB)) is WaterfallBucket.FULL_CHURN


class TestRegistry:
    """Test rule set lookup."""

    def test_lookup_by_name(self):
        """Test registered names resolve."""
        assert get_rule_set("canonical-v2") is CANONICAL_V2
        assert get_rule_set("churn-fallback-v1") is CHURN_FALLBACK_V1

    def test_unknown_name(self):
        """Test unknown names raise ValueError listing the options."""
        with pytest.raises(ValueError, match="Unknown waterfall rule set"):
            get_rule_set("v0")

    def test_describe(self):
        """Test describe() exposes the evaluation order."""
        described = CANONICAL_V2.describe()
        assert described["order"] == [
            "RETAINED",
            "CATEGORY_GONE",
            "REDUCED_BASKET",
            "REDUCED_FREQ",
            "FULL_CHURN",
        ]
        assert described["fallback"] == "DELAYED_ONLY"
