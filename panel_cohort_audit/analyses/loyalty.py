"""Brand loyalty within one category at issuer X.

Steps
-----
1. Keep lines at X in the requested category and sum each user's category
   spend; users meeting the eligibility rule (distinct receipts or distinct
   active months) are *eligible users*.
2. For every ``(user, brand)`` with positive spend, ``share_pct`` is the
   brand's share of the user's category spend.
3. Shares are tiered (EXCLUSIVE >= 95, LOYAL >= 80, PREFER >= 50, else LIGHT)
   and summarised globally (tier counts, p10..p90) and per brand.
4. Brands with fewer than ``k`` buyers lose their identity. A merged
   ``OTHER_SUPPRESSED`` row combines each user's shares across the merged
   brands so tiers still partition its buyers.
5. Window trust uses eligible users and known-brand spend coverage; a
   ``SUPPRESSED`` window carries no rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from panel_cohort_audit._utils import percentage, percentiles
from panel_cohort_audit.config import SuppressionMode
from panel_cohort_audit.errors import MissingRequiredParameter
from panel_cohort_audit.foundation.cohorts import CohortResolution
from panel_cohort_audit.foundation.transaction_contract import OTHER_SUPPRESSED, UNKNOWN
from panel_cohort_audit.policy.suppression import (
    DEFAULT_COVERAGE_THRESHOLD_PCT,
    DEFAULT_K,
    DEFAULT_MIN_N,
    LOW_TRUST_BELOW,
    MEDIUM_TRUST_BELOW,
    SupportGroup,
    TrustLevel,
    TrustVerdict,
    apply_k_anonymity,
    classify_window_trust,
    known_coverage_pct,
)

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
DISTRIBUTION_QUANTILES = (10, 25, 50, 75, 90)


class EligibilityMode(str, Enum):
    """Minimum activity a user needs before their brand shares count."""

    RECEIPTS = "receipts"
    MONTHS = "months"


class LoyaltyTier(str, Enum):
    EXCLUSIVE = "EXCLUSIVE"
    LOYAL = "LOYAL"
    PREFER = "PREFER"
    LIGHT = "LIGHT"


def loyalty_tier(share_pct: Decimal) -> LoyaltyTier:
    """Tier for one brand share.

    >>> loyalty_tier(Decimal("95")).value
    'EXCLUSIVE'
    >>> loyalty_tier(Decimal("79.99")).value
    'PREFER'
    """
    if share_pct >= 95:
        return LoyaltyTier.EXCLUSIVE
    if share_pct >= 80:
        return LoyaltyTier.LOYAL
    if share_pct >= 50:
        return LoyaltyTier.PREFER
    return LoyaltyTier.LIGHT


def _tier_counts(shares) -> dict[LoyaltyTier, int]:
    counts = {tier: 0 for tier in LoyaltyTier}
    for share in shares:
        counts[loyalty_tier(share)] += 1
    return counts


@dataclass(frozen=True)
class BrandLoyaltyRow:
    """Loyalty statistics for one brand (or the merged low-support brands)."""

    brand: str
    brand_buyers: int
    penetration_pct: Decimal
    p75_share_pct: Decimal
    loyal_users: int
    loyalty_rate_pct: Decimal
    tier_counts: dict[LoyaltyTier, int]
    trust_level: TrustLevel
    merged_brands: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if sum(self.tier_counts.values()) != self.brand_buyers:
            raise ValueError(
                f"Tier counts for {self.brand} must sum to brand_buyers ({self.brand_buyers})"
            )

    def as_dict(self) -> dict[str, object]:
        return {
            "brand": self.brand,
            "brand_buyers": self.brand_buyers,
            "penetration_pct": float(self.penetration_pct),
            "p75_share_pct": float(self.p75_share_pct),
            "loyal_users": self.loyal_users,
            "loyalty_rate_pct": float(self.loyalty_rate_pct),
            "tier_exclusive": self.tier_counts[LoyaltyTier.EXCLUSIVE],
            "tier_loyal": self.tier_counts[LoyaltyTier.LOYAL],
            "tier_prefer": self.tier_counts[LoyaltyTier.PREFER],
            "tier_light": self.tier_counts[LoyaltyTier.LIGHT],
            "trust_level": self.trust_level.value,
            "is_unknown": self.brand == UNKNOWN,
        }


@dataclass(frozen=True)
class LoyaltyMetrics:
    category_value: str
    eligibility: EligibilityMode
    trust: TrustVerdict
    rows: tuple[BrandLoyaltyRow, ...] = ()
    tier_counts: dict[LoyaltyTier, int] = field(default_factory=dict)
    distribution: dict[int, Decimal] = field(default_factory=dict)
    suppressed_keys: tuple[str, ...] = ()

    def summary(self) -> dict[str, object]:
        if self.trust.is_suppressed:
            return {}
        return {
            "category_value": self.category_value,
            "eligibility": self.eligibility.value,
            "tiers": {tier.value.lower(): count for tier, count in self.tier_counts.items()},
            "distribution": {f"p{q}": float(v) for q, v in self.distribution.items()},
        }


def _brand_row(
    brand: str,
    shares_by_user: dict[str, Decimal],
    eligible_users: int,
    trust_level: TrustLevel,
    merged_brands: tuple[str, ...] = (),
) -> BrandLoyaltyRow:
    shares = list(shares_by_user.values())
    buyers = len(shares)
    loyal = sum(1 for share in shares if share >= 80)
    return BrandLoyaltyRow(
        brand=brand,
        brand_buyers=buyers,
        penetration_pct=percentage(buyers, eligible_users),
        p75_share_pct=percentiles(shares, (75,))[75],
        loyal_users=loyal,
        loyalty_rate_pct=percentage(loyal, buyers),
        tier_counts=_tier_counts(shares),
        trust_level=trust_level,
        merged_brands=merged_brands,
    )


def calculate_loyalty(
    resolution: CohortResolution,
    category_value: str | None,
    *,
    eligibility: EligibilityMode | str = EligibilityMode.RECEIPTS,
    min_receipts: int = 2,
    min_months: int = 2,
    k: int = DEFAULT_K,
    mode: SuppressionMode = SuppressionMode.MERGE,
    min_n: int = DEFAULT_MIN_N,
    coverage_threshold_pct: Decimal = DEFAULT_COVERAGE_THRESHOLD_PCT,
    low_trust_below: int = LOW_TRUST_BELOW,
    medium_trust_below: int = MEDIUM_TRUST_BELOW,
) -> LoyaltyMetrics:
    """Compute brand loyalty for one category at issuer X.

    Parameters
    ----------
    resolution:
        Cohort resolution for the request.
    category_value:
        Value of the resolved grouping dimension. Required: loyalty is not
        defined market-wide.
    eligibility:
        ``receipts`` (>= ``min_receipts`` distinct invoices) or ``months``
        (>= ``min_months`` distinct active months).
    k, mode:
        k-anonymity on ``brand_buyers``; ``UNKNOWN`` is never merged.

    Returns
    -------
    LoyaltyMetrics
        Per-brand rows sorted by buyers descending, global tiers and the
        share distribution. Empty apart from ``trust`` when the window is
        suppressed.

    Raises
    ------
    MissingRequiredParameter
        If ``category_value`` is empty.
    """
    if not category_value:
        raise MissingRequiredParameter(
            "category_value is required for brand loyalty",
            {"parameter": "category_value"},
        )
    eligibility = EligibilityMode(eligibility)

    scope = resolution.scope
    dimension = scope.dimension.with_value(category_value)
    lines = [
        line for line in resolution.lines if scope.is_in_x(line) and dimension.matches(line)
    ]

    category_spend: dict[str, Decimal] = {}
    brand_spend: dict[tuple[str, str], Decimal] = {}
    invoices: dict[str, set[str]] = {}
    months: dict[str, set] = {}
    for line in lines:
        category_spend[line.user_id] = category_spend.get(line.user_id, _ZERO) + line.line_amount
        key = (line.user_id, line.brand)
        brand_spend[key] = brand_spend.get(key, _ZERO) + line.line_amount
        invoices.setdefault(line.user_id, set()).add(line.invoice_id)
        months.setdefault(line.user_id, set()).add(line.month)

    if eligibility is EligibilityMode.RECEIPTS:
        eligible = {user for user, seen in invoices.items() if len(seen) >= min_receipts}
    else:
        eligible = {user for user, seen in months.items() if len(seen) >= min_months}

    spend_by_brand: dict[str, Decimal] = {}
    shares: dict[str, dict[str, Decimal]] = {}
    for (user_id, brand), amount in brand_spend.items():
        if user_id not in eligible:
            continue
        spend_by_brand[brand] = spend_by_brand.get(brand, _ZERO) + amount
        if amount > 0:
            # unrounded: tier bounds are inclusive on the exact share
            shares.setdefault(brand, {})[user_id] = amount / category_spend[user_id] * 100

    trust = classify_window_trust(
        len(eligible),
        known_coverage_pct(spend_by_brand),
        min_n=min_n,
        coverage_threshold_pct=coverage_threshold_pct,
        low_trust_below=low_trust_below,
        medium_trust_below=medium_trust_below,
    )
    if trust.is_suppressed:
        logger.debug("Loyalty for %s suppressed: %s", category_value, trust.reasons)
        return LoyaltyMetrics(category_value=category_value, eligibility=eligibility, trust=trust)

    all_shares = [share for by_user in shares.values() for share in by_user.values()]
    groups = [
        SupportGroup(key=brand, users=frozenset(by_user), samples=tuple(by_user.values()))
        for brand, by_user in shares.items()
    ]
    outcome = apply_k_anonymity(
        groups,
        k,
        mode=mode,
        low_trust_below=low_trust_below,
        medium_trust_below=medium_trust_below,
    )

    rows: list[BrandLoyaltyRow] = []
    for group in outcome.groups:
        if group.is_merged:
            combined: dict[str, Decimal] = {}
            for brand in group.merged_keys:
                for user_id, share in shares[brand].items():
                    combined[user_id] = combined.get(user_id, _ZERO) + share
            rows.append(
                _brand_row(
                    OTHER_SUPPRESSED,
                    {user: min(share, _HUNDRED) for user, share in combined.items()},
                    len(eligible),
                    group.trust_level,
                    merged_brands=group.merged_keys,
                )
            )
        else:
            rows.append(_brand_row(group.key, shares[group.key], len(eligible), group.trust_level))
    rows.sort(key=lambda row: (-row.brand_buyers, row.brand))

    return LoyaltyMetrics(
        category_value=category_value,
        eligibility=eligibility,
        trust=trust,
        rows=tuple(rows),
        tier_counts=_tier_counts(all_shares),
        distribution=percentiles(all_shares, DISTRIBUTION_QUANTILES),
        suppressed_keys=outcome.suppressed_keys,
    )
