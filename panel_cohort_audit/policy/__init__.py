"""Suppression, trust and retention classification policy."""

from .suppression import (
    SupportGroup,
    SuppressionOutcome,
    TrustLevel,
    TrustVerdict,
    apply_k_anonymity,
    classify_window_trust,
    known_coverage_pct,
)
from .waterfall_rules import (
    CANONICAL_V2,
    CHURN_FALLBACK_V1,
    RULE_SETS,
    WaterfallBucket,
    WaterfallRuleSet,
    get_rule_set,
)

__all__ = [
    "SupportGroup",
    "SuppressionOutcome",
    "TrustLevel",
    "TrustVerdict",
    "apply_k_anonymity",
    "classify_window_trust",
    "known_coverage_pct",
    "CANONICAL_V2",
    "CHURN_FALLBACK_V1",
    "RULE_SETS",
    "WaterfallBucket",
    "WaterfallRuleSet",
    "get_rule_set",
]
