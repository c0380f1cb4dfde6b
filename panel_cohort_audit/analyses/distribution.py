"""Retailer distribution: every issuer in the market ranked by panel sales.

Unlike the cohort metrics this view is market-wide: all lines in the window
(after the reconciliation and dimension path filters) count, whoever bought
them. Issuers are k-anonymised on distinct buyers like any other identity.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from panel_cohort_audit._utils import money, percentage
from panel_cohort_audit.config import SuppressionMode
from panel_cohort_audit.foundation.cohorts import CohortScope
from panel_cohort_audit.foundation.transaction_contract import UNKNOWN, TransactionLine
from panel_cohort_audit.policy.suppression import (
    DEFAULT_K,
    LOW_TRUST_BELOW,
    MEDIUM_TRUST_BELOW,
    SupportGroup,
    TrustLevel,
    apply_k_anonymity,
)

logger = logging.getLogger(__name__)

DEFAULT_DISTRIBUTION_LIMIT = 50


@dataclass(frozen=True)
class IssuerShare:
    """One issuer's panel sales in the window."""

    issuer_id: str
    commerce_l1: str
    commerce_l2: str
    receipts: int
    buyers: int
    gross_sales: Decimal
    avg_ticket: Decimal
    market_share_pct: Decimal
    trust_level: TrustLevel
    is_target: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "issuer_id": self.issuer_id,
            "commerce_l1": self.commerce_l1,
            "commerce_l2": self.commerce_l2,
            "receipts": self.receipts,
            "buyers": self.buyers,
            "gross_sales": float(self.gross_sales),
            "avg_ticket": float(self.avg_ticket),
            "market_share_pct": float(self.market_share_pct),
            "trust_level": self.trust_level.value,
            "is_target": self.is_target,
        }


@dataclass(frozen=True)
class IssuerDistribution:
    rows: tuple[IssuerShare, ...]
    market_buyers: int
    market_gross_sales: Decimal
    issuers_total: int
    suppressed_keys: tuple[str, ...]


def _dominant(spend: Counter) -> tuple[str, str]:
    # Known values win ties against UNKNOWN, then alphabetical.
    return max(
        spend.items(),
        key=lambda item: (item[1], item[0][0] != UNKNOWN, item[0]),
    )[0]


def calculate_issuer_distribution(
    lines: Iterable[TransactionLine],
    scope: CohortScope,
    *,
    k: int = DEFAULT_K,
    mode: SuppressionMode = SuppressionMode.MERGE,
    limit: int = DEFAULT_DISTRIBUTION_LIMIT,
    low_trust_below: int = LOW_TRUST_BELOW,
    medium_trust_below: int = MEDIUM_TRUST_BELOW,
) -> IssuerDistribution:
    """Rank issuers by gross sales in the window.

    Parameters
    ----------
    lines:
        Market lines; anything outside the scope's window, reconciliation or
        path filter is ignored.
    scope:
        Request filters. ``scope.issuer_id`` only marks the target row.
    k, mode:
        k-anonymity on distinct buyers per issuer.
    limit:
        Maximum number of rows after ranking.

    Returns
    -------
    IssuerDistribution
        Rows sorted by ``gross_sales`` descending, each with its dominant
        commerce ``l1``/``l2`` and share of market sales.

    Raises
    ------
    ValueError
        If ``limit < 1``.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")

    invoices: dict[str, set[str]] = {}
    buyers: dict[str, set[str]] = {}
    gross: dict[str, Decimal] = {}
    commerce: dict[str, Counter] = {}
    for line in lines:
        if not scope.in_scope(line):
            continue
        issuer = line.issuer_id
        invoices.setdefault(issuer, set()).add(line.invoice_id)
        buyers.setdefault(issuer, set()).add(line.user_id)
        gross[issuer] = gross.get(issuer, Decimal("0")) + line.line_amount
        commerce.setdefault(issuer, Counter())[line.commerce_path[:2]] += line.line_amount

    market_gross = sum(gross.values(), Decimal("0"))
    market_buyers = len(set().union(*buyers.values())) if buyers else 0

    groups = [
        SupportGroup(
            key=issuer,
            users=frozenset(buyers[issuer]),
            measures={"receipts": len(invoices[issuer]), "gross_sales": gross[issuer]},
        )
        for issuer in gross
    ]
    outcome = apply_k_anonymity(
        groups,
        k,
        mode=mode,
        low_trust_below=low_trust_below,
        medium_trust_below=medium_trust_below,
    )

    rows: list[IssuerShare] = []
    for group in outcome.groups:
        receipts = int(group.measures["receipts"])
        sales = money(group.measures["gross_sales"])
        if group.is_merged:
            commerce_l1 = commerce_l2 = UNKNOWN
        else:
            commerce_l1, commerce_l2 = _dominant(commerce[group.key])
        rows.append(
            IssuerShare(
                issuer_id=group.key,
                commerce_l1=commerce_l1,
                commerce_l2=commerce_l2,
                receipts=receipts,
                buyers=group.support,
                gross_sales=sales,
                avg_ticket=money(sales / receipts) if receipts else Decimal("0.00"),
                market_share_pct=percentage(group.measures["gross_sales"], market_gross),
                trust_level=group.trust_level,
                is_target=group.key == scope.issuer_id,
            )
        )
    rows.sort(key=lambda row: (-row.gross_sales, row.issuer_id))
    if len(rows) > limit:
        logger.debug("Issuer distribution truncated from %d to %d rows", len(rows), limit)

    return IssuerDistribution(
        rows=tuple(rows[:limit]),
        market_buyers=market_buyers,
        market_gross_sales=money(market_gross),
        issuers_total=len(gross),
        suppressed_keys=outcome.suppressed_keys,
    )
