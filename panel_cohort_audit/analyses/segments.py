"""Buyer segments at issuer X by visit count."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from panel_cohort_audit._utils import mean, money
from panel_cohort_audit.foundation.cohorts import CohortScope
from panel_cohort_audit.foundation.transaction_contract import TransactionLine

#: ``(label, min_visits, max_visits)``; ``None`` is open-ended.
SEGMENT_BANDS: tuple[tuple[str, int, int | None], ...] = (
    ("One-time", 1, 1),
    ("Occasional", 2, 3),
    ("Regular", 4, 10),
    ("Loyal", 11, None),
)


def segment_for_visits(visits: int) -> str:
    """Segment label for a buyer's visit count.

    >>> segment_for_visits(3)
    'Occasional'
    >>> segment_for_visits(11)
    'Loyal'
    """
    if visits < 1:
        raise ValueError(f"visits must be >= 1, got {visits}")
    for label, low, high in SEGMENT_BANDS:
        if visits >= low and (high is None or visits <= high):
            return label
    raise AssertionError("unreachable: bands cover every visit count >= 1")


@dataclass(frozen=True)
class BuyerSegment:
    segment: str
    buyer_count: int
    segment_spend: Decimal
    avg_spend: Decimal
    avg_visits: Decimal

    def as_dict(self) -> dict[str, object]:
        return {
            "segment": self.segment,
            "buyer_count": self.buyer_count,
            "segment_spend": float(self.segment_spend),
            "avg_spend": float(self.avg_spend),
            "avg_visits": float(self.avg_visits),
        }


@dataclass(frozen=True)
class BuyerSegmentMetrics:
    segments: tuple[BuyerSegment, ...]
    total_buyers: int
    avg_visits_per_buyer: Decimal
    avg_spend_per_buyer: Decimal


def calculate_buyer_segments(
    lines: Iterable[TransactionLine], scope: CohortScope
) -> BuyerSegmentMetrics:
    """Bucket buyers at X by distinct invoices in the window.

    Segments without buyers are omitted; the rest follow band order.
    """
    invoices: dict[str, set[str]] = {}
    spend: dict[str, Decimal] = {}
    for line in lines:
        if not scope.in_scope(line) or not scope.is_in_x(line):
            continue
        invoices.setdefault(line.user_id, set()).add(line.invoice_id)
        spend[line.user_id] = spend.get(line.user_id, Decimal("0")) + line.line_amount

    members: dict[str, list[str]] = {}
    for user_id, seen in invoices.items():
        members.setdefault(segment_for_visits(len(seen)), []).append(user_id)

    segments = []
    for label, _, _ in SEGMENT_BANDS:
        users = members.get(label)
        if not users:
            continue
        segments.append(
            BuyerSegment(
                segment=label,
                buyer_count=len(users),
                segment_spend=money(sum((spend[u] for u in users), Decimal("0"))),
                avg_spend=mean([spend[u] for u in users]),
                avg_visits=mean([len(invoices[u]) for u in users]),
            )
        )

    return BuyerSegmentMetrics(
        segments=tuple(segments),
        total_buyers=len(invoices),
        avg_visits_per_buyer=mean([len(seen) for seen in invoices.values()]),
        avg_spend_per_buyer=mean(list(spend.values())),
    )
