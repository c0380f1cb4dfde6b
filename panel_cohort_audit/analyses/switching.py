"""Switching destinations: where the issuer's cohort also shops.

For each cohort user, spend at every issuer other than X is summed per
destination issuer. A destination's ``users`` is the number of distinct
cohort members who bought there in the window, and ``pct_of_cohort`` relates
it to the full cohort size.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from panel_cohort_audit._utils import money, percentage
from panel_cohort_audit.config import SuppressionMode
from panel_cohort_audit.foundation.cohorts import CohortResolution
from panel_cohort_audit.foundation.transaction_contract import UNKNOWN
from panel_cohort_audit.policy.suppression import (
    DEFAULT_K,
    LOW_TRUST_BELOW,
    MEDIUM_TRUST_BELOW,
    SupportGroup,
    TrustLevel,
    apply_k_anonymity,
)

logger = logging.getLogger(__name__)

DEFAULT_SWITCHING_LIMIT = 20


@dataclass(frozen=True)
class SwitchingRow:
    destination_issuer: str
    users: int
    spend_usd: Decimal
    pct_of_cohort: Decimal
    trust_level: TrustLevel

    def as_dict(self) -> dict[str, object]:
        return {
            "destination_issuer": self.destination_issuer,
            "users": self.users,
            "spend_usd": float(self.spend_usd),
            "pct_of_cohort": float(self.pct_of_cohort),
            "trust_level": self.trust_level.value,
            "is_unknown": self.destination_issuer == UNKNOWN,
        }


@dataclass(frozen=True)
class SwitchingMetrics:
    rows: tuple[SwitchingRow, ...]
    cohort_size: int
    switching_users: int
    destinations_total: int
    suppressed_keys: tuple[str, ...]


def calculate_switching(
    resolution: CohortResolution,
    *,
    k: int = DEFAULT_K,
    mode: SuppressionMode = SuppressionMode.MERGE,
    limit: int = DEFAULT_SWITCHING_LIMIT,
    low_trust_below: int = LOW_TRUST_BELOW,
    medium_trust_below: int = MEDIUM_TRUST_BELOW,
) -> SwitchingMetrics:
    """Aggregate cohort spend at other issuers by destination.

    Parameters
    ----------
    resolution:
        Cohort and in-scope lines; the dimension path filter has already been
        applied to ``resolution.lines``.
    k:
        k-anonymity threshold on distinct users per destination.
    mode:
        ``MERGE`` or ``DROP`` for low-support destinations.
    limit:
        Maximum number of rows returned after sorting.

    Returns
    -------
    SwitchingMetrics
        Rows sorted by ``users`` descending (spend breaks ties), capped at
        ``limit``.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")

    issuer_id = resolution.scope.issuer_id
    users: dict[str, set[str]] = {}
    spend: dict[str, Decimal] = {}
    for line in resolution.cohort_lines():
        if line.issuer_id == issuer_id:
            continue
        users.setdefault(line.issuer_id, set()).add(line.user_id)
        spend[line.issuer_id] = spend.get(line.issuer_id, Decimal("0")) + line.line_amount

    groups = [
        SupportGroup(
            key=destination,
            users=frozenset(members),
            measures={"spend_usd": spend[destination]},
        )
        for destination, members in users.items()
    ]
    outcome = apply_k_anonymity(
        groups,
        k,
        mode=mode,
        low_trust_below=low_trust_below,
        medium_trust_below=medium_trust_below,
    )

    cohort_size = resolution.cohort_size
    rows = sorted(
        (
            SwitchingRow(
                destination_issuer=group.key,
                users=group.support,
                spend_usd=money(group.measures["spend_usd"]),
                pct_of_cohort=percentage(group.support, cohort_size),
                trust_level=group.trust_level,
            )
            for group in outcome.groups
        ),
        key=lambda row: (-row.users, -row.spend_usd, row.destination_issuer),
    )
    if len(rows) > limit:
        logger.debug("Switching destinations truncated from %d to %d", len(rows), limit)

    switching_users = set()
    for members in users.values():
        switching_users.update(members)

    return SwitchingMetrics(
        rows=tuple(rows[:limit]),
        cohort_size=cohort_size,
        switching_users=len(switching_users),
        destinations_total=len(users),
        suppressed_keys=outcome.suppressed_keys,
    )
