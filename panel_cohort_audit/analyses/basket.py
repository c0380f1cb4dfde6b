"""Basket breadth: how many distinct categories the cohort buys at X vs. anywhere."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from panel_cohort_audit._utils import mean
from panel_cohort_audit.config import SuppressionMode
from panel_cohort_audit.foundation.cohorts import CohortResolution
from panel_cohort_audit.policy.suppression import DEFAULT_K


@dataclass(frozen=True)
class BasketMonth:
    month: date
    users: int
    avg_breadth_market: Decimal
    avg_breadth_in_x: Decimal
    is_suppressed: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "month": self.month.isoformat(),
            "users": self.users,
            "avg_breadth_market": float(self.avg_breadth_market),
            "avg_breadth_in_x": float(self.avg_breadth_in_x),
            "is_suppressed": self.is_suppressed,
        }


@dataclass(frozen=True)
class BasketMetrics:
    months: tuple[BasketMonth, ...]
    eligible_users: int
    dropped_months: tuple[date, ...] = ()


def calculate_basket_breadth(
    resolution: CohortResolution,
    *,
    k: int = DEFAULT_K,
    mode: SuppressionMode = SuppressionMode.FLAG,
) -> BasketMetrics:
    """Average distinct-category breadth per month for cohort users active at X.

    Breadth is the number of distinct values of the resolved dimension a user
    bought in the month: anywhere in scope (``avg_breadth_market``) or at X
    only (``avg_breadth_in_x``). Months with fewer than ``k`` users are either
    flagged ``is_suppressed`` (``FLAG``) or omitted (``DROP``).

    Raises
    ------
    ValueError
        If ``mode`` is ``MERGE``; months cannot be merged.
    """
    if mode is SuppressionMode.MERGE:
        raise ValueError("MERGE mode is not valid for basket breadth; use FLAG or DROP")

    months: list[BasketMonth] = []
    dropped: list[date] = []
    eligible: set[str] = set()
    for month in resolution.months:
        active = resolution.active_in_x(month)
        if not active:
            continue
        eligible.update(state.user_id for state in active)
        below_k = len(active) < k
        if below_k and mode is SuppressionMode.DROP:
            dropped.append(month)
            continue
        months.append(
            BasketMonth(
                month=month,
                users=len(active),
                avg_breadth_market=mean([s.distinct_categories_total for s in active]),
                avg_breadth_in_x=mean([s.distinct_categories_in_x for s in active]),
                is_suppressed=below_k,
            )
        )

    return BasketMetrics(
        months=tuple(months),
        eligible_users=len(eligible),
        dropped_months=tuple(dropped),
    )
