"""Capture / leakage: share of wallet by category for the issuer's cohort.

For every cohort user, spend is summed per resolved dimension value and split
into spend at issuer X and spend across the market (issuers in peer scope,
X included). Aggregating across users gives, per value:

- ``spend_in_x_usd`` and ``spend_market_usd``
- ``leakage_usd = spend_market_usd - spend_in_x_usd``
- ``sow_pct = 100 * spend_in_x_usd / spend_market_usd`` (0 when undefined)

k-anonymity is applied on distinct users *before* the percentages are
derived, so merged rows sum amounts and recompute ratios from the sums.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable

from panel_cohort_audit._utils import money, percentage
from panel_cohort_audit.config import SuppressionMode
from panel_cohort_audit.foundation.cohorts import CohortResolution
from panel_cohort_audit.foundation.transaction_contract import UNKNOWN, TransactionLine
from panel_cohort_audit.policy.suppression import (
    DEFAULT_K,
    LOW_TRUST_BELOW,
    MEDIUM_TRUST_BELOW,
    SupportGroup,
    TrustLevel,
    apply_k_anonymity,
    known_coverage_pct,
)

_ZERO = Decimal("0")


class PeerScope(str, Enum):
    """Which issuers count toward the market denominator."""

    ALL = "all"
    PEERS = "peers"
    EXTENDED = "extended"


def dominant_commerce_category(lines: Iterable[TransactionLine], issuer_id: str) -> str:
    """The commerce ``l1`` carrying most of the issuer's spend."""
    spend: Counter[str] = Counter()
    for line in lines:
        if line.issuer_id == issuer_id:
            spend[line.commerce_path[0]] += line.line_amount
    if not spend:
        return UNKNOWN
    return max(spend.items(), key=lambda item: (item[1], item[0] != UNKNOWN, item[0]))[0]


def resolve_peer_issuers(
    lines: Iterable[TransactionLine],
    issuer_id: str,
    peer_scope: PeerScope | str = PeerScope.ALL,
    *,
    extended_overlap_pct: Decimal = Decimal("50"),
) -> frozenset[str] | None:
    """Issuers in the market denominator; ``None`` means every issuer.

    ``peers`` keeps issuers whose dominant commerce ``l1`` equals X's.
    ``extended`` adds issuers with at least ``extended_overlap_pct`` of their
    spend in product ``l1`` values X also sells.
    """
    scope = PeerScope(peer_scope)
    if scope is PeerScope.ALL:
        return None

    lines = list(lines)
    issuer_spend: dict[str, Counter[str]] = {}
    issuer_commerce: dict[str, Counter[str]] = {}
    for line in lines:
        issuer_spend.setdefault(line.issuer_id, Counter())[line.product_path[0]] += line.line_amount
        issuer_commerce.setdefault(line.issuer_id, Counter())[line.commerce_path[0]] += line.line_amount

    target_category = dominant_commerce_category(lines, issuer_id)
    peers = {issuer_id}
    for other, spend_by_commerce in issuer_commerce.items():
        dominant = max(
            spend_by_commerce.items(),
            key=lambda item: (item[1], item[0] != UNKNOWN, item[0]),
        )[0]
        if target_category != UNKNOWN and dominant == target_category:
            peers.add(other)

    if scope is PeerScope.EXTENDED:
        x_categories = {
            value for value in issuer_spend.get(issuer_id, Counter()) if value != UNKNOWN
        }
        for other, spend_by_product in issuer_spend.items():
            total = sum(spend_by_product.values(), _ZERO)
            overlap = sum(
                (amount for value, amount in spend_by_product.items() if value in x_categories),
                _ZERO,
            )
            if total > 0 and percentage(overlap, total) >= extended_overlap_pct:
                peers.add(other)

    return frozenset(peers)


@dataclass(frozen=True)
class CaptureRow:
    """Share-of-wallet row for one dimension value."""

    category_value: str
    users: int
    spend_in_x_usd: Decimal
    spend_market_usd: Decimal
    leakage_usd: Decimal
    sow_pct: Decimal
    trust_level: TrustLevel
    projected_spend_in_x_usd: Decimal | None = None

    def __post_init__(self) -> None:
        if self.leakage_usd != self.spend_market_usd - self.spend_in_x_usd:
            raise ValueError(
                f"leakage_usd ({self.leakage_usd}) must equal spend_market_usd - "
                f"spend_in_x_usd for {self.category_value}"
            )
        if not 0 <= self.sow_pct <= 100:
            raise ValueError(f"sow_pct must be 0-100: {self.sow_pct}")

    @property
    def is_unknown(self) -> bool:
        return self.category_value == UNKNOWN

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "category_value": self.category_value,
            "users": self.users,
            "spend_in_x_usd": float(self.spend_in_x_usd),
            "spend_market_usd": float(self.spend_market_usd),
            "leakage_usd": float(self.leakage_usd),
            "sow_pct": float(self.sow_pct),
            "trust_level": self.trust_level.value,
            "is_unknown": self.is_unknown,
        }
        if self.projected_spend_in_x_usd is not None:
            payload["projected_spend_in_x_usd"] = float(self.projected_spend_in_x_usd)
        return payload


@dataclass(frozen=True)
class CaptureMetrics:
    rows: tuple[CaptureRow, ...]
    cohort_size: int
    known_coverage_pct: Decimal
    peer_issuers: frozenset[str] | None
    suppressed_keys: tuple[str, ...]


def calculate_capture(
    resolution: CohortResolution,
    *,
    peer_scope: PeerScope | str = PeerScope.ALL,
    k: int = DEFAULT_K,
    mode: SuppressionMode = SuppressionMode.MERGE,
    extended_overlap_pct: Decimal = Decimal("50"),
    expansion_factor: Decimal = Decimal("1"),
    low_trust_below: int = LOW_TRUST_BELOW,
    medium_trust_below: int = MEDIUM_TRUST_BELOW,
) -> CaptureMetrics:
    """Compute share of wallet and leakage per dimension value.

    Parameters
    ----------
    resolution:
        Cohort and in-scope lines from the cohort resolver.
    peer_scope:
        Market denominator: ``all``, ``peers`` or ``extended``.
    k:
        k-anonymity threshold on distinct users per row.
    mode:
        ``MERGE`` or ``DROP`` for low-support rows.
    expansion_factor:
        Linear household expansion; rows carry a projected in-X spend when it
        differs from 1.

    Returns
    -------
    CaptureMetrics
        Rows sorted by ``spend_in_x_usd`` descending.
    """
    scope = resolution.scope
    dimension = scope.dimension
    peers = resolve_peer_issuers(
        resolution.lines,
        scope.issuer_id,
        peer_scope,
        extended_overlap_pct=extended_overlap_pct,
    )

    users: dict[str, set[str]] = {}
    spend_in_x: dict[str, Decimal] = {}
    spend_market: dict[str, Decimal] = {}
    for line in resolution.cohort_lines():
        in_x = scope.is_in_x(line)
        if not in_x and peers is not None and line.issuer_id not in peers:
            continue
        value = dimension.value_of(line)
        users.setdefault(value, set()).add(line.user_id)
        spend_market[value] = spend_market.get(value, _ZERO) + line.line_amount
        if in_x:
            spend_in_x[value] = spend_in_x.get(value, _ZERO) + line.line_amount
        else:
            spend_in_x.setdefault(value, _ZERO)

    groups = [
        SupportGroup(
            key=value,
            users=frozenset(users[value]),
            measures={
                "spend_in_x_usd": spend_in_x[value],
                "spend_market_usd": spend_market[value],
            },
        )
        for value in users
    ]
    outcome = apply_k_anonymity(
        groups,
        k,
        mode=mode,
        low_trust_below=low_trust_below,
        medium_trust_below=medium_trust_below,
    )

    rows: list[CaptureRow] = []
    for group in outcome.groups:
        in_x_total = money(group.measures["spend_in_x_usd"])
        market_total = money(group.measures["spend_market_usd"])
        projected = None
        if expansion_factor != 1:
            projected = money(in_x_total * expansion_factor)
        rows.append(
            CaptureRow(
                category_value=group.key,
                users=group.support,
                spend_in_x_usd=in_x_total,
                spend_market_usd=market_total,
                leakage_usd=market_total - in_x_total,
                sow_pct=percentage(in_x_total, market_total),
                trust_level=group.trust_level,
                projected_spend_in_x_usd=projected,
            )
        )
    rows.sort(key=lambda row: (-row.spend_in_x_usd, row.category_value))

    return CaptureMetrics(
        rows=tuple(rows),
        cohort_size=resolution.cohort_size,
        known_coverage_pct=known_coverage_pct(spend_market),
        peer_issuers=peers,
        suppressed_keys=outcome.suppressed_keys,
    )
