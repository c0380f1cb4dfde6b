"""Retention waterfall: month-over-month state of the cohort at issuer X.

The monthly states are first restricted to one category value of the
resolved dimension. Every cohort member with at least one visit at X in an
origin month transitions to the *next month present in the series* (months
with no activity at all are absent, not zero-filled) and is classified by a
:class:`~panel_cohort_audit.policy.waterfall_rules.WaterfallRuleSet`.

Buckets for one origin month partition the transitioning users, so
``sum(bucket.users) == cohort_size`` for every reported month.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from panel_cohort_audit._utils import percentage
from panel_cohort_audit.errors import MissingRequiredParameter
from panel_cohort_audit.foundation.cohorts import (
    CohortResolution,
    CohortScope,
    build_monthly_states,
)
from panel_cohort_audit.policy.suppression import DEFAULT_MIN_N
from panel_cohort_audit.policy.waterfall_rules import (
    CANONICAL_V2,
    REPORT_ORDER,
    WaterfallBucket,
    WaterfallRuleSet,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BucketCount:
    bucket: WaterfallBucket
    users: int
    pct: Decimal

    def as_dict(self) -> dict[str, object]:
        return {"bucket": self.bucket.value, "users": self.users, "pct": float(self.pct)}


@dataclass(frozen=True)
class WaterfallMonth:
    """Transitions out of one origin month."""

    origin_month: date
    next_month: date
    cohort_size: int
    buckets: tuple[BucketCount, ...]

    def __post_init__(self) -> None:
        total = sum(bucket.users for bucket in self.buckets)
        if total != self.cohort_size:
            raise ValueError(
                f"Buckets for {self.origin_month} hold {total} users, "
                f"expected cohort_size={self.cohort_size}"
            )

    def bucket(self, name: WaterfallBucket | str) -> BucketCount:
        name = WaterfallBucket(name)
        for bucket in self.buckets:
            if bucket.bucket is name:
                return bucket
        raise KeyError(name)

    def as_dict(self) -> dict[str, object]:
        return {
            "origin_month": self.origin_month.isoformat(),
            "next_month": self.next_month.isoformat(),
            "cohort_size": self.cohort_size,
            "buckets": [bucket.as_dict() for bucket in self.buckets],
        }


@dataclass(frozen=True)
class WaterfallMetrics:
    months: tuple[WaterfallMonth, ...]
    suppressed_months: tuple[date, ...]
    category_value: str
    rule_set: str
    eligible_users: int


def calculate_waterfall(
    resolution: CohortResolution,
    category_value: str | None,
    *,
    rule_set: WaterfallRuleSet = CANONICAL_V2,
    min_n: int = DEFAULT_MIN_N,
) -> WaterfallMetrics:
    """Classify month-to-month transitions for one category.

    Parameters
    ----------
    resolution:
        Cohort resolution for the request.
    category_value:
        Value of the resolved grouping dimension the states are restricted
        to. Required.
    rule_set:
        Ordered classification rules; the first match wins.
    min_n:
        Origin months with fewer transitioning users are moved to
        ``suppressed_months``.

    Raises
    ------
    MissingRequiredParameter
        If ``category_value`` is empty.
    """
    if not category_value:
        raise MissingRequiredParameter(
            "category_value is required for the retention waterfall",
            {"parameter": "category_value"},
        )

    scope = resolution.scope
    category_scope = CohortScope(
        window=scope.window,
        issuer_id=scope.issuer_id,
        store_id=scope.store_id,
        reconciled=scope.reconciled,
        dimension=scope.dimension.with_value(category_value),
    )
    category_lines = tuple(
        line for line in resolution.lines if category_scope.dimension.matches(line)
    )
    states = build_monthly_states(category_lines, category_scope)
    series = sorted({month for _, month in states})
    restricted = CohortResolution(
        scope=category_scope,
        lines=category_lines,
        cohort=resolution.cohort,
        states=states,
        months=tuple(series),
    )

    reported: list[WaterfallMonth] = []
    suppressed: list[date] = []
    eligible: set[str] = set()
    for origin_month, next_month in zip(series, series[1:]):
        counts: Counter[WaterfallBucket] = Counter()
        transitioning = 0
        for user_id in sorted(resolution.cohort):
            origin = restricted.states.get((user_id, origin_month))
            if origin is None or origin.visits_in_x == 0:
                continue
            next_state = restricted.state(user_id, next_month)
            counts[rule_set.classify(origin, next_state)] += 1
            transitioning += 1
            eligible.add(user_id)

        if transitioning < min_n:
            if transitioning:
                suppressed.append(origin_month)
            continue
        reported.append(
            WaterfallMonth(
                origin_month=origin_month,
                next_month=next_month,
                cohort_size=transitioning,
                buckets=tuple(
                    BucketCount(
                        bucket=bucket,
                        users=counts[bucket],
                        pct=percentage(counts[bucket], transitioning),
                    )
                    for bucket in REPORT_ORDER
                ),
            )
        )

    if suppressed:
        logger.debug(
            "Waterfall for %s: %d origin month(s) below min_n=%d",
            category_value,
            len(suppressed),
            min_n,
        )
    return WaterfallMetrics(
        months=tuple(reported),
        suppressed_months=tuple(suppressed),
        category_value=category_value,
        rule_set=rule_set.name,
        eligible_users=len(eligible),
    )

