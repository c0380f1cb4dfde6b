"""Dimension resolution for hierarchical product/commerce taxonomies.

A request names a domain (``product`` or ``commerce``), a level and an
optional partial path. The resolver turns that into the concrete grouping
column used by every aggregator. Supplying a path drills down: the effective
grouping level is one level deeper than the deepest fixed path entry.

>>> from panel_cohort_audit.foundation.dimensions import DimensionSpec, resolve_dimension
>>> resolve_dimension(DimensionSpec("product", "l1", ("FOOD", "DAIRY"))).column
'product_l3'
>>> resolve_dimension(DimensionSpec("commerce", "l2")).column
'commerce_l2'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping

from panel_cohort_audit.errors import InvalidDimension
from panel_cohort_audit.foundation.transaction_contract import (
    DIMENSION_LEVELS,
    UNKNOWN,
    TransactionLine,
)


class DimensionDomain(str, Enum):
    """Independent taxonomies carried on every line."""

    PRODUCT = "product"
    COMMERCE = "commerce"


@dataclass(frozen=True)
class DimensionSpec:
    """Requested grouping dimension.

    Attributes
    ----------
    domain:
        ``product`` or ``commerce``.
    level:
        Requested level (``l1``..``l4``); used directly when no path is given.
    path:
        Partial prefix of level values, e.g. ``("FOOD",)`` fixes ``l1``.
        ``None`` entries are unfixed.
    """

    domain: str = DimensionDomain.PRODUCT.value
    level: str = "l1"
    path: tuple[str | None, ...] = field(default_factory=tuple)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "DimensionSpec":
        """Build a spec from a loose mapping (``domain``, ``level``, ``path``)."""
        if not payload:
            return cls()
        path = payload.get("path") or ()
        if isinstance(path, str):
            path = tuple(part for part in path.split("/"))
        return cls(
            domain=str(payload.get("domain", DimensionDomain.PRODUCT.value)),
            level=str(payload.get("level", "l1")),
            path=tuple(p if p not in ("", None) else None for p in path),
        )

    def as_dict(self) -> dict[str, object]:
        return {"domain": self.domain, "level": self.level, "path": list(self.path)}


@dataclass(frozen=True)
class ResolvedDimension:
    """Concrete grouping dimension produced by :func:`resolve_dimension`."""

    domain: str
    grouping_level: str
    column: str
    path_filter: tuple[tuple[int, str], ...] = ()

    @property
    def level_index(self) -> int:
        return DIMENSION_LEVELS.index(self.grouping_level)

    def value_of(self, line: TransactionLine) -> str:
        """The line's value at the effective grouping level."""
        return line.path(self.domain)[self.level_index]

    def matches(self, line: TransactionLine) -> bool:
        """True when the line satisfies every fixed path entry."""
        if not self.path_filter:
            return True
        values = line.path(self.domain)
        return all(values[idx] == expected for idx, expected in self.path_filter)

    def with_value(self, value: str) -> "ResolvedDimension":
        """Return a dimension additionally fixed at its grouping level."""
        fixed = dict(self.path_filter)
        fixed[self.level_index] = value
        return ResolvedDimension(
            domain=self.domain,
            grouping_level=self.grouping_level,
            column=self.column,
            path_filter=tuple(sorted(fixed.items())),
        )


def resolve_dimension(spec: DimensionSpec | None) -> ResolvedDimension:
    """Resolve a :class:`DimensionSpec` to a concrete grouping column.

    Parameters
    ----------
    spec:
        Requested dimension. ``None`` resolves to product ``l1``.

    Returns
    -------
    ResolvedDimension
        Grouping column plus the equality filters implied by the path.

    Raises
    ------
    InvalidDimension
        If the domain or level is unknown, or the path is deeper than the
        taxonomy.
    """
    if spec is None:
        spec = DimensionSpec()

    try:
        domain = DimensionDomain(spec.domain).value
    except ValueError as exc:
        raise InvalidDimension(
            f"Unknown dimension domain: {spec.domain!r}",
            {"domain": spec.domain, "allowed": [d.value for d in DimensionDomain]},
        ) from exc
    if spec.level not in DIMENSION_LEVELS:
        raise InvalidDimension(
            f"Unknown dimension level: {spec.level!r}",
            {"level": spec.level, "allowed": list(DIMENSION_LEVELS)},
        )
    if len(spec.path) > len(DIMENSION_LEVELS):
        raise InvalidDimension(
            f"Path has {len(spec.path)} entries; taxonomy has {len(DIMENSION_LEVELS)} levels",
            {"path": list(spec.path)},
        )

    path_filter = tuple(
        (idx, str(value)) for idx, value in enumerate(spec.path) if value is not None
    )
    if path_filter:
        deepest = path_filter[-1][0]
        # A fully fixed path stays at the leaf level.
        grouping_index = min(deepest + 1, len(DIMENSION_LEVELS) - 1)
        grouping_level = DIMENSION_LEVELS[grouping_index]
    else:
        grouping_level = spec.level

    return ResolvedDimension(
        domain=domain,
        grouping_level=grouping_level,
        column=f"{domain}_{grouping_level}",
        path_filter=path_filter,
    )


@dataclass(frozen=True)
class DimensionChild:
    """One drill-down child of a dimension path."""

    value: str
    users: int
    spend: Decimal
    is_unknown: bool

    def as_dict(self) -> dict[str, object]:
        return {
            "value": self.value,
            "users": self.users,
            "spend": float(self.spend),
            "is_unknown": self.is_unknown,
        }


def dimension_children(
    lines: Iterable[TransactionLine], spec: DimensionSpec | None
) -> list[DimensionChild]:
    """List the children under ``spec.path`` with their support and spend.

    Children are ordered by spend (descending), ``UNKNOWN`` last on ties.
    """
    dimension = resolve_dimension(spec)
    users: dict[str, set[str]] = {}
    spend: dict[str, Decimal] = {}
    for line in lines:
        if not dimension.matches(line):
            continue
        value = dimension.value_of(line)
        users.setdefault(value, set()).add(line.user_id)
        spend[value] = spend.get(value, Decimal("0")) + line.line_amount

    children = [
        DimensionChild(
            value=value,
            users=len(users[value]),
            spend=spend[value],
            is_unknown=value == UNKNOWN,
        )
        for value in users
    ]
    children.sort(key=lambda child: (-child.spend, child.is_unknown, child.value))
    return children
