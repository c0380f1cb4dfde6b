"""Suppression & trust policy shared by every metric.

Two independent mechanisms:

1. **k-anonymity**: a group whose distinct-user support is below ``k`` may
   not be reported under its own identity. Depending on the metric family's
   :class:`~panel_cohort_audit.config.SuppressionMode` it is folded into a
   single ``OTHER_SUPPRESSED`` group (measures summed, users unioned) or
   dropped. ``UNKNOWN`` is never merged but is always tagged ``SUPPRESSED``.
2. **Window trust**: classifies the whole result from the eligible-user count
   and the share of spend attributable to known dimension values. A
   ``SUPPRESSED`` window returns no row-level detail.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping, Sequence

from panel_cohort_audit._utils import percentage
from panel_cohort_audit.config import SuppressionMode
from panel_cohort_audit.foundation.transaction_contract import OTHER_SUPPRESSED, UNKNOWN

logger = logging.getLogger(__name__)

DEFAULT_K = 5
DEFAULT_MIN_N = 10
DEFAULT_COVERAGE_THRESHOLD_PCT = Decimal("60")
LOW_TRUST_BELOW = 30
MEDIUM_TRUST_BELOW = 100

REASON_BELOW_MIN_N = "eligible_users_below_min_n"
REASON_LOW_COVERAGE = "known_coverage_below_threshold"


class TrustLevel(str, Enum):
    """Reliability classification, ordered from least to most trustworthy."""

    SUPPRESSED = "SUPPRESSED"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _TRUST_RANK[self]


_TRUST_RANK = {
    TrustLevel.SUPPRESSED: 0,
    TrustLevel.LOW: 1,
    TrustLevel.MEDIUM: 2,
    TrustLevel.HIGH: 3,
}


@dataclass(frozen=True)
class TrustVerdict:
    """Window trust outcome.

    Attributes
    ----------
    level:
        Classified trust level.
    eligible_users:
        Distinct users the metric is computed over.
    known_coverage_pct:
        Share of spend attributable to non-``UNKNOWN`` values of the relevant
        dimension.
    reasons:
        Why the window was suppressed (empty otherwise).
    """

    level: TrustLevel
    eligible_users: int
    known_coverage_pct: Decimal
    reasons: tuple[str, ...] = ()

    @property
    def is_suppressed(self) -> bool:
        return self.level is TrustLevel.SUPPRESSED

    def as_dict(self) -> dict[str, object]:
        return {
            "trust_level": self.level.value,
            "eligible_users": self.eligible_users,
            "known_coverage_pct": float(self.known_coverage_pct),
            "suppression_reasons": list(self.reasons),
        }


def classify_window_trust(
    eligible_users: int,
    known_coverage_pct: Decimal | float,
    *,
    min_n: int = DEFAULT_MIN_N,
    coverage_threshold_pct: Decimal | float = DEFAULT_COVERAGE_THRESHOLD_PCT,
    low_trust_below: int = LOW_TRUST_BELOW,
    medium_trust_below: int = MEDIUM_TRUST_BELOW,
) -> TrustVerdict:
    """Classify a window's reliability.

    ``SUPPRESSED`` when ``eligible_users < min_n`` or coverage is below the
    threshold; otherwise ``LOW``/``MEDIUM``/``HIGH`` by eligible users. The
    classification is monotonic in ``eligible_users`` at fixed coverage.

    Examples
    --------
    >>> classify_window_trust(45, Decimal("90")).level
    <TrustLevel.MEDIUM: 'MEDIUM'>
    >>> classify_window_trust(45, Decimal("40")).reasons
    ('known_coverage_below_threshold',)
    """
    if eligible_users < 0:
        raise ValueError(f"eligible_users must be >= 0, got {eligible_users}")
    coverage = Decimal(str(known_coverage_pct))
    threshold = Decimal(str(coverage_threshold_pct))

    reasons: list[str] = []
    if eligible_users < min_n:
        reasons.append(REASON_BELOW_MIN_N)
    if coverage < threshold:
        reasons.append(REASON_LOW_COVERAGE)

    if reasons:
        level = TrustLevel.SUPPRESSED
    elif eligible_users < low_trust_below:
        level = TrustLevel.LOW
    elif eligible_users < medium_trust_below:
        level = TrustLevel.MEDIUM
    else:
        level = TrustLevel.HIGH

    return TrustVerdict(
        level=level,
        eligible_users=eligible_users,
        known_coverage_pct=coverage,
        reasons=tuple(reasons),
    )


def classify_group_trust(
    users: int,
    k: int = DEFAULT_K,
    *,
    low_trust_below: int = LOW_TRUST_BELOW,
    medium_trust_below: int = MEDIUM_TRUST_BELOW,
) -> TrustLevel:
    """Row-level trust from a group's own support."""
    if users < k:
        return TrustLevel.SUPPRESSED
    if users < low_trust_below:
        return TrustLevel.LOW
    if users < medium_trust_below:
        return TrustLevel.MEDIUM
    return TrustLevel.HIGH


def known_coverage_pct(spend_by_value: Mapping[str, Decimal]) -> Decimal:
    """Share of spend on non-``UNKNOWN`` values; 0 when there is no spend."""
    total = sum(spend_by_value.values(), Decimal("0"))
    known = sum(
        (amount for value, amount in spend_by_value.items() if value != UNKNOWN),
        Decimal("0"),
    )
    return percentage(known, total)


@dataclass
class SupportGroup:
    """An aggregation bucket before suppression.

    ``users`` is the distinct-user support; ``measures`` are summable
    counts/amounts; ``samples`` are raw values kept for statistics that must
    be recomputed after a merge (e.g. percentiles).
    """

    key: str
    users: frozenset[str]
    measures: dict[str, Decimal | int] = field(default_factory=dict)
    samples: tuple[Decimal, ...] = ()

    @property
    def support(self) -> int:
        return len(self.users)


@dataclass(frozen=True)
class ReportedGroup:
    """A group as it may be reported after suppression."""

    key: str
    users: frozenset[str]
    measures: Mapping[str, Decimal | int]
    samples: tuple[Decimal, ...]
    trust_level: TrustLevel
    merged_keys: tuple[str, ...] = ()

    @property
    def support(self) -> int:
        return len(self.users)

    @property
    def is_unknown(self) -> bool:
        return self.key == UNKNOWN

    @property
    def is_merged(self) -> bool:
        return self.key == OTHER_SUPPRESSED


@dataclass(frozen=True)
class SuppressionOutcome:
    groups: tuple[ReportedGroup, ...]
    suppressed_keys: tuple[str, ...]
    mode: SuppressionMode

    @property
    def suppressed_count(self) -> int:
        return len(self.suppressed_keys)


def apply_k_anonymity(
    groups: Sequence[SupportGroup],
    k: int = DEFAULT_K,
    *,
    mode: SuppressionMode = SuppressionMode.MERGE,
    low_trust_below: int = LOW_TRUST_BELOW,
    medium_trust_below: int = MEDIUM_TRUST_BELOW,
) -> SuppressionOutcome:
    """Enforce k-anonymity on a list of groups.

    Parameters
    ----------
    groups:
        Buckets with their distinct-user support.
    k:
        Minimum support for a group to keep its identity (``k >= 1``).
    mode:
        ``MERGE`` folds low-support groups into ``OTHER_SUPPRESSED`` by
        summing measures, unioning users and concatenating samples; ``DROP``
        removes them. ``FLAG`` is not valid for identity-bearing groups.

    Returns
    -------
    SuppressionOutcome
        Reportable groups (input order preserved, merged group last) and the
        keys that lost their identity.

    Raises
    ------
    ValueError
        If ``k < 1`` or ``mode`` is ``FLAG``.
    """
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")
    if mode is SuppressionMode.FLAG:
        raise ValueError("FLAG mode cannot be used for identity-bearing groups")

    def trust_for(users: int) -> TrustLevel:
        return classify_group_trust(
            users,
            k,
            low_trust_below=low_trust_below,
            medium_trust_below=medium_trust_below,
        )

    reported: list[ReportedGroup] = []
    low_support: list[SupportGroup] = []
    for group in groups:
        if group.key == UNKNOWN:
            reported.append(
                ReportedGroup(
                    key=group.key,
                    users=group.users,
                    measures=dict(group.measures),
                    samples=tuple(group.samples),
                    trust_level=TrustLevel.SUPPRESSED,
                )
            )
        elif group.support < k or group.key == OTHER_SUPPRESSED:
            low_support.append(group)
        else:
            reported.append(
                ReportedGroup(
                    key=group.key,
                    users=group.users,
                    measures=dict(group.measures),
                    samples=tuple(group.samples),
                    trust_level=trust_for(group.support),
                )
            )

    if low_support and mode is SuppressionMode.MERGE:
        reported.append(_merge(low_support))

    suppressed_keys = tuple(group.key for group in low_support)
    if suppressed_keys:
        logger.debug(
            "k-anonymity suppressed %d group(s) with k=%d (mode=%s)",
            len(suppressed_keys),
            k,
            mode.value,
        )
    return SuppressionOutcome(
        groups=tuple(reported), suppressed_keys=suppressed_keys, mode=mode
    )


def _merge(groups: Iterable[SupportGroup]) -> ReportedGroup:
    users: set[str] = set()
    measures: dict[str, Decimal | int] = {}
    samples: list[Decimal] = []
    keys: list[str] = []
    for group in groups:
        keys.append(group.key)
        users.update(group.users)
        samples.extend(group.samples)
        for name, value in group.measures.items():
            measures[name] = measures.get(name, 0) + value
    return ReportedGroup(
        key=OTHER_SUPPRESSED,
        users=frozenset(users),
        measures=measures,
        samples=tuple(samples),
        trust_level=TrustLevel.SUPPRESSED,
        merged_keys=tuple(keys),
    )
