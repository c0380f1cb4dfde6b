"""Cohort resolution and per-user monthly state construction.

The cohort for a request is every user with at least one qualifying line at
the target issuer (optionally a single store) inside the window, after the
reconciliation and dimension-path filters. Membership is presence-only: a
zero-amount line still qualifies.

Alongside the cohort the resolver builds a :class:`MonthlyUserState` for
every user that appears anywhere in scope, because several metrics compare a
user's activity at the issuer with their market-wide activity. Months with no
qualifying line for anyone are absent from the series rather than zero-filled.

Quick Start
-----------
>>> from panel_cohort_audit.foundation.cohorts import CohortScope, build_cohort
>>> from panel_cohort_audit.foundation.transaction_contract import Window
>>> scope = CohortScope(window=Window.parse("2025-01-01", "2025-04-01"), issuer_id="X")
>>> resolution = build_cohort(lines, scope)  # doctest: +SKIP
>>> sorted(resolution.cohort)  # doctest: +SKIP
['U1', 'U2']
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping

from panel_cohort_audit.foundation.dimensions import ResolvedDimension, resolve_dimension
from panel_cohort_audit.foundation.store import ScanQuery
from panel_cohort_audit.foundation.transaction_contract import TransactionLine, Window

_ZERO = Decimal("0")


@dataclass(frozen=True)
class CohortScope:
    """Filters that define one request's cohort.

    Attributes
    ----------
    window:
        Analysis window ``[start, end)``.
    issuer_id:
        Target retailer ("issuer X").
    store_id:
        Optional store restriction for in-X activity.
    reconciled:
        ``True``/``False`` keep matching lines only; ``None`` ignores the flag.
    dimension:
        Resolved grouping dimension; its path filter restricts every line.
    """

    window: Window
    issuer_id: str
    store_id: str | None = None
    reconciled: bool | None = None
    dimension: ResolvedDimension = field(default_factory=lambda: resolve_dimension(None))

    def market_query(self) -> ScanQuery:
        """Scan for every issuer's lines in scope (market-wide view)."""
        return ScanQuery(
            window=self.window,
            reconciled=self.reconciled,
            dimension=self.dimension,
        )

    def is_in_x(self, line: TransactionLine) -> bool:
        if line.issuer_id != self.issuer_id:
            return False
        return self.store_id is None or line.store_id == self.store_id

    def in_scope(self, line: TransactionLine) -> bool:
        return self.market_query().matches(line)

    def echo(self) -> dict[str, object]:
        return {
            **self.window.as_dict(),
            "issuer_id": self.issuer_id,
            "store_id": self.store_id,
            "reconciled": self.reconciled,
            "dimension": self.dimension.column,
            "path": {
                f"l{idx + 1}": value for idx, value in self.dimension.path_filter
            },
        }


@dataclass(frozen=True, slots=True)
class MonthlyUserState:
    """Aggregated activity of one user in one calendar month.

    ``*_in_x`` fields count only lines at the target issuer; ``*_total``
    fields count lines at every issuer in scope. Visits are distinct invoices.
    """

    user_id: str
    month: date
    visits_in_x: int = 0
    spend_in_x: Decimal = _ZERO
    distinct_categories_in_x: int = 0
    visits_total: int = 0
    spend_total: Decimal = _ZERO
    distinct_categories_total: int = 0

    def __post_init__(self) -> None:
        if self.visits_in_x > self.visits_total:
            raise ValueError(
                f"visits_in_x ({self.visits_in_x}) cannot exceed visits_total "
                f"({self.visits_total}) for user {self.user_id}"
            )


@dataclass(frozen=True)
class CohortResolution:
    """Cohort membership plus the monthly state series for one request."""

    scope: CohortScope
    lines: tuple[TransactionLine, ...]
    cohort: frozenset[str]
    states: Mapping[tuple[str, date], MonthlyUserState]
    months: tuple[date, ...]

    @property
    def cohort_size(self) -> int:
        return len(self.cohort)

    def state(self, user_id: str, month: date) -> MonthlyUserState:
        """State for ``(user, month)``; an all-zero state when the user was idle."""
        found = self.states.get((user_id, month))
        if found is None:
            return MonthlyUserState(user_id=user_id, month=month)
        return found

    def active_in_x(self, month: date) -> list[MonthlyUserState]:
        """Cohort members with at least one visit at X in ``month``."""
        return sorted(
            (
                state
                for (user_id, state_month), state in self.states.items()
                if state_month == month and user_id in self.cohort and state.visits_in_x > 0
            ),
            key=lambda state: state.user_id,
        )

    def cohort_lines(self) -> list[TransactionLine]:
        return [line for line in self.lines if line.user_id in self.cohort]


def build_monthly_states(
    lines: Iterable[TransactionLine], scope: CohortScope
) -> dict[tuple[str, date], MonthlyUserState]:
    """Aggregate lines into per-user, per-month states."""
    buckets: dict[tuple[str, date], dict[str, object]] = {}
    for line in lines:
        key = (line.user_id, line.month)
        bucket = buckets.setdefault(
            key,
            {
                "invoices_in_x": set(),
                "spend_in_x": _ZERO,
                "categories_in_x": set(),
                "invoices_total": set(),
                "spend_total": _ZERO,
                "categories_total": set(),
            },
        )
        category = scope.dimension.value_of(line)
        bucket["invoices_total"].add(line.invoice_id)
        bucket["spend_total"] += line.line_amount
        bucket["categories_total"].add(category)
        if scope.is_in_x(line):
            bucket["invoices_in_x"].add(line.invoice_id)
            bucket["spend_in_x"] += line.line_amount
            bucket["categories_in_x"].add(category)

    return {
        (user_id, month): MonthlyUserState(
            user_id=user_id,
            month=month,
            visits_in_x=len(payload["invoices_in_x"]),
            spend_in_x=payload["spend_in_x"],
            distinct_categories_in_x=len(payload["categories_in_x"]),
            visits_total=len(payload["invoices_total"]),
            spend_total=payload["spend_total"],
            distinct_categories_total=len(payload["categories_total"]),
        )
        for (user_id, month), payload in buckets.items()
    }


def build_cohort(
    lines: Iterable[TransactionLine], scope: CohortScope
) -> CohortResolution:
    """Resolve cohort membership and monthly states for ``scope``.

    Parameters
    ----------
    lines:
        Candidate lines; anything outside the scope's window, reconciliation
        or path filter is ignored, so a broader scan is acceptable.
    scope:
        Request filters.

    Returns
    -------
    CohortResolution
        Cohort user set, monthly states for every user in scope and the
        sorted series of months that actually contain activity.
    """
    query = scope.market_query()
    in_scope = tuple(line for line in lines if query.matches(line))
    cohort = frozenset(line.user_id for line in in_scope if scope.is_in_x(line))
    states = build_monthly_states(in_scope, scope)
    months = tuple(sorted({month for _, month in states}))
    return CohortResolution(
        scope=scope,
        lines=in_scope,
        cohort=cohort,
        states=states,
        months=months,
    )
