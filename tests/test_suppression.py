"""Tests for k-anonymity and window trust."""

from decimal import Decimal

import pytest

from panel_cohort_audit.config import SuppressionMode
from panel_cohort_audit.foundation.transaction_contract import OTHER_SUPPRESSED, UNKNOWN
from panel_cohort_audit.policy.suppression import (
    REASON_BELOW_MIN_N,
    REASON_LOW_COVERAGE,
    SupportGroup,
    TrustLevel,
    apply_k_anonymity,
    classify_window_trust,
    known_coverage_pct,
)


def _group(key, n_users, spend="10", offset=0):
    users = frozenset(f"{key}-{i + offset}" for i in range(n_users))
    return SupportGroup(key=key, users=users, measures={"spend": Decimal(spend)})


class TestKAnonymity:
    """Test low-support groups lose their identity."""

    def test_low_support_groups_merge(self):
        """Test groups below k are summed into OTHER_SUPPRESSED."""
        outcome = apply_k_anonymity(
            [_group("FOOD", 6, "60"), _group("TOYS", 2, "5"), _group("PETS", 1, "7")], k=5
        )
        keys = [g.key for g in outcome.groups]
        assert keys == ["FOOD", OTHER_SUPPRESSED]
        merged = outcome.groups[-1]
        assert merged.support == 3
        assert merged.measures["spend"] == Decimal("12")
        assert merged.trust_level is TrustLevel.SUPPRESSED
        assert merged.merged_keys == ("TOYS", "PETS")
        assert outcome.suppressed_keys == ("TOYS", "PETS")

    def test_is_merged_flags_only_the_merged_row(self):
        outcome = apply_k_anonymity(
            [_group("FOOD", 6), _group("TOYS", 2), _group(UNKNOWN, 1)], k=5
        )
        flags = {g.key: g.is_merged for g in outcome.groups}
        assert flags == {"FOOD": False, UNKNOWN: False, OTHER_SUPPRESSED: True}

    def test_merged_support_is_distinct_users(self):
        """Test a user in two merged groups counts once."""
        shared = frozenset({"u1", "u2"})
        outcome = apply_k_anonymity(
            [SupportGroup("A", shared), SupportGroup("B", shared)], k=5
        )
        assert outcome.groups[0].support == 2

    def test_unknown_never_merged(self):
        """Test UNKNOWN stays standalone and is always SUPPRESSED."""
        outcome = apply_k_anonymity([_group(UNKNOWN, 1), _group(UNKNOWN + "x", 1)], k=5)
        unknown = [g for g in outcome.groups if g.key == UNKNOWN]
        assert len(unknown) == 1
        assert unknown[0].trust_level is TrustLevel.SUPPRESSED

        big_unknown = apply_k_anonymity([_group(UNKNOWN, 500)], k=5).groups[0]
        assert big_unknown.trust_level is TrustLevel.SUPPRESSED

    def test_drop_mode(self):
        """Test DROP removes low-support groups without a merged row."""
        outcome = apply_k_anonymity(
            [_group("FOOD", 6), _group("TOYS", 2)], k=5, mode=SuppressionMode.DROP
        )
        assert [g.key for g in outcome.groups] == ["FOOD"]
        assert outcome.suppressed_keys == ("TOYS",)

    def test_flag_mode_rejected(self):
        """Test FLAG is not valid for identity-bearing groups."""
        with pytest.raises(ValueError, match="FLAG mode"):
            apply_k_anonymity([_group("FOOD", 6)], k=5, mode=SuppressionMode.FLAG)

    def test_k_must_be_positive(self):
        """Test k < 1 is rejected."""
        with pytest.raises(ValueError, match="k must be >= 1"):
            apply_k_anonymity([], k=0)

    def test_row_trust_from_support(self):
        """Test reported groups get LOW/MEDIUM/HIGH from their own support."""
        outcome = apply_k_anonymity(
            [_group("A", 5), _group("B", 30), _group("C", 100)], k=5
        )
        levels = {g.key: g.trust_level for g in outcome.groups}
        assert levels == {"A": TrustLevel.LOW, "B": TrustLevel.MEDIUM, "C": TrustLevel.HIGH}


class TestWindowTrust:
    """Test window trust classification."""

    @pytest.mark.parametrize(
        "users,level",
        [
            (9, TrustLevel.SUPPRESSED),
            (10, TrustLevel.LOW),
            (29, TrustLevel.LOW),
            (30, TrustLevel.MEDIUM),
            (99, TrustLevel.MEDIUM),
            (100, TrustLevel.HIGH),
        ],
    )
    def test_thresholds(self, users, level):
        """Test the default min_n / 30 / 100 boundaries."""
        assert classify_window_trust(users, Decimal("80")).level is level

    def test_low_coverage_suppresses(self):
        """Test coverage below threshold suppresses regardless of size."""
        verdict = classify_window_trust(1000, Decimal("59.99"))
        assert verdict.is_suppressed
        assert verdict.reasons == (REASON_LOW_COVERAGE,)

    def test_both_reasons_reported(self):
        """Test every failing condition is listed."""
        verdict = classify_window_trust(3, Decimal("10"))
        assert verdict.reasons == (REASON_BELOW_MIN_N, REASON_LOW_COVERAGE)

    def test_monotonic_in_eligible_users(self):
        """Test more users never lowers trust at fixed coverage."""
        ranks = [classify_window_trust(n, Decimal("75")).level.rank for n in range(0, 250)]
        assert ranks == sorted(ranks)

    def test_negative_users_rejected(self):
        """Test eligible_users must be non-negative."""
        with pytest.raises(ValueError):
            classify_window_trust(-1, Decimal("100"))


class TestKnownCoverage:
    """Test known-value spend coverage."""

    def test_share_of_known_spend(self):
        """Test UNKNOWN spend is excluded from the numerator."""
        coverage = known_coverage_pct({"FOOD": Decimal("75"), UNKNOWN: Decimal("25")})
        assert coverage == Decimal("75.00")

    def test_zero_spend(self):
        """Test coverage is 0 when there is no spend."""
        assert known_coverage_pct({}) == Decimal("0.00")
