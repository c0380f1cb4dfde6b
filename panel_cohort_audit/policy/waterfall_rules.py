"""Retention waterfall rule sets.

A rule set is an ordered list of ``(bucket, predicate)`` pairs plus a
fallback bucket. Classification evaluates the rules in order and the first
match wins, so the order is part of the rule set's identity: two rule sets
with the same predicates in a different order are different versions.

Rule sets are registered by name so a caller can pin a version through
configuration (``EngineConfig.waterfall_rule_set``).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable

from panel_cohort_audit.foundation.cohorts import MonthlyUserState


class WaterfallBucket(str, Enum):
    """Month-over-month retention states relative to issuer X."""

    RETAINED = "RETAINED"
    CATEGORY_GONE = "CATEGORY_GONE"
    REDUCED_BASKET = "REDUCED_BASKET"
    REDUCED_FREQ = "REDUCED_FREQ"
    DELAYED_ONLY = "DELAYED_ONLY"
    FULL_CHURN = "FULL_CHURN"


#: Order buckets are reported in, independent of evaluation order.
REPORT_ORDER = (
    WaterfallBucket.RETAINED,
    WaterfallBucket.CATEGORY_GONE,
    WaterfallBucket.REDUCED_BASKET,
    WaterfallBucket.REDUCED_FREQ,
    WaterfallBucket.DELAYED_ONLY,
    WaterfallBucket.FULL_CHURN,
)

Predicate = Callable[[MonthlyUserState, MonthlyUserState, "WaterfallRuleSet"], bool]


def _retained(origin: MonthlyUserState, nxt: MonthlyUserState, rs: "WaterfallRuleSet") -> bool:
    return nxt.visits_in_x > 0 and nxt.spend_in_x >= rs.retained_ratio * origin.spend_in_x


def _category_gone(origin: MonthlyUserState, nxt: MonthlyUserState, rs: "WaterfallRuleSet") -> bool:
    # Still buying the category elsewhere, absent from X.
    return nxt.visits_total > 0 and nxt.visits_in_x == 0


def _reduced_basket(origin: MonthlyUserState, nxt: MonthlyUserState, rs: "WaterfallRuleSet") -> bool:
    return nxt.visits_in_x > 0 and nxt.spend_in_x < rs.reduced_basket_ratio * origin.spend_in_x


def _reduced_freq(origin: MonthlyUserState, nxt: MonthlyUserState, rs: "WaterfallRuleSet") -> bool:
    return nxt.visits_in_x > 0 and nxt.visits_in_x < origin.visits_in_x


def _full_churn(origin: MonthlyUserState, nxt: MonthlyUserState, rs: "WaterfallRuleSet") -> bool:
    return nxt.visits_total == 0


def _delayed_only(origin: MonthlyUserState, nxt: MonthlyUserState, rs: "WaterfallRuleSet") -> bool:
    return nxt.visits_in_x > 0


@dataclass(frozen=True)
class WaterfallRule:
    bucket: WaterfallBucket
    predicate: Predicate
    description: str


@dataclass(frozen=True)
class WaterfallRuleSet:
    """Named, versioned classification strategy.

    Attributes
    ----------
    name:
        Registry key, e.g. ``"canonical-v2"``.
    rules:
        Evaluated in order; first match wins.
    fallback:
        Bucket used when no rule matches.
    retained_ratio:
        Next-month spend at X must reach this fraction of the origin spend
        to count as retained.
    reduced_basket_ratio:
        Next-month spend below this fraction of origin spend is a reduced
        basket.
    """

    name: str
    rules: tuple[WaterfallRule, ...]
    fallback: WaterfallBucket
    retained_ratio: Decimal = Decimal("0.9")
    reduced_basket_ratio: Decimal = Decimal("0.5")

    def classify(
        self, origin: MonthlyUserState, next_state: MonthlyUserState
    ) -> WaterfallBucket:
        """Classify one transition; the first matching rule wins."""
        for rule in self.rules:
            if rule.predicate(origin, next_state, self):
                return rule.bucket
        return self.fallback

    def describe(self) -> dict[str, object]:
        return {
            "name": self.name,
            "order": [rule.bucket.value for rule in self.rules],
            "fallback": self.fallback.value,
            "retained_ratio": float(self.retained_ratio),
            "reduced_basket_ratio": float(self.reduced_basket_ratio),
        }


_RETAINED_RULE = WaterfallRule(
    WaterfallBucket.RETAINED, _retained, "visits at X and spend >= 90% of origin"
)
_CATEGORY_GONE_RULE = WaterfallRule(
    WaterfallBucket.CATEGORY_GONE, _category_gone, "active in category elsewhere, absent from X"
)
_REDUCED_BASKET_RULE = WaterfallRule(
    WaterfallBucket.REDUCED_BASKET, _reduced_basket, "visits at X and spend < 50% of origin"
)
_REDUCED_FREQ_RULE = WaterfallRule(
    WaterfallBucket.REDUCED_FREQ, _reduced_freq, "fewer visits at X than origin"
)
_FULL_CHURN_RULE = WaterfallRule(
    WaterfallBucket.FULL_CHURN, _full_churn, "no activity anywhere"
)
_DELAYED_ONLY_RULE = WaterfallRule(
    WaterfallBucket.DELAYED_ONLY, _delayed_only, "still visiting X, no larger change"
)

CANONICAL_V2 = WaterfallRuleSet(
    name="canonical-v2",
    rules=(
        _RETAINED_RULE,
        _CATEGORY_GONE_RULE,
        _REDUCED_BASKET_RULE,
        _REDUCED_FREQ_RULE,
        _FULL_CHURN_RULE,
    ),
    fallback=WaterfallBucket.DELAYED_ONLY,
)

# Earlier variant: DELAYED_ONLY is an explicit rule (still visiting X) and the
# catch-all is FULL_CHURN instead.
CHURN_FALLBACK_V1 = WaterfallRuleSet(
    name="churn-fallback-v1",
    rules=(
        _RETAINED_RULE,
        _CATEGORY_GONE_RULE,
        _REDUCED_BASKET_RULE,
        _REDUCED_FREQ_RULE,
        _DELAYED_ONLY_RULE,
    ),
    fallback=WaterfallBucket.FULL_CHURN,
)

RULE_SETS: dict[str, WaterfallRuleSet] = {
    CANONICAL_V2.name: CANONICAL_V2,
    CHURN_FALLBACK_V1.name: CHURN_FALLBACK_V1,
}


def get_rule_set(name: str) -> WaterfallRuleSet:
    """Look up a registered rule set by name.

    Raises
    ------
    ValueError
        If no rule set is registered under ``name``.
    """
    try:
        return RULE_SETS[name]
    except KeyError as exc:
        raise ValueError(
            f"Unknown waterfall rule set {name!r}; available: {sorted(RULE_SETS)}"
        ) from exc
