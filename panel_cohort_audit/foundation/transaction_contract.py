"""Transaction line contract, window definition and record normalisation.

The transaction line is the only raw input the engine consumes. Lines come
from an external panel ledger, so every record is normalised once on entry:
blank dimension values become the ``UNKNOWN`` sentinel, amounts become
``Decimal`` and the reconciliation flag becomes a tri-state ``bool | None``.
Downstream code can then rely on the contract instead of re-checking it.

Quick Start
-----------
>>> from panel_cohort_audit.foundation.transaction_contract import TransactionLine, Window
>>> line = TransactionLine.from_record({
...     "user_id": "U1", "invoice_id": "INV-1", "invoice_date": "2025-01-15",
...     "issuer_id": "X", "product_l1": "FOOD", "line_amount": "12.50",
... })
>>> line.product_path
('FOOD', 'UNKNOWN', 'UNKNOWN', 'UNKNOWN')
>>> Window.parse("2025-01-01", "2025-04-01").contains(line.invoice_date)
True
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

from panel_cohort_audit.errors import InvalidWindow

#: Sentinel for missing/blank dimension values. Never dropped by filters.
UNKNOWN = "UNKNOWN"

#: Bucket that absorbs groups below the k-anonymity threshold.
OTHER_SUPPRESSED = "OTHER_SUPPRESSED"

DIMENSION_LEVELS = ("l1", "l2", "l3", "l4")

_TRUE_STRINGS = frozenset({"true", "1", "t", "yes", "y"})
_FALSE_STRINGS = frozenset({"false", "0", "f", "no", "n"})


def normalise_dimension_value(value: object) -> str:
    """Return the stripped string value or ``UNKNOWN`` for blanks."""
    if value is None:
        return UNKNOWN
    text = str(value).strip()
    if not text or text.lower() in {"null", "none", "nan"}:
        return UNKNOWN
    return text


def parse_reconciled(value: object) -> bool | None:
    """Parse the tri-state reconciliation flag.

    ``None``/blank/unrecognised strings mean *unknown*, not false.
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return None


def parse_date(value: object) -> date:
    """Coerce ``date``/``datetime``/ISO string to a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            return date.fromisoformat(text[:10])
    raise TypeError(f"Expected a date, datetime or ISO string, got {type(value).__name__}")


def month_start(day: date) -> date:
    """Truncate a calendar date to the first day of its month."""
    return day.replace(day=1)


def next_month_start(day: date) -> date:
    """First day of the calendar month after ``day``'s month."""
    return (day.replace(day=28) + timedelta(days=4)).replace(day=1)


@dataclass(frozen=True, slots=True)
class TransactionLine:
    """A single observed purchase line from the panel ledger.

    Attributes
    ----------
    user_id:
        Panelist identifier.
    invoice_id:
        Receipt identifier; distinct invoices count as visits.
    invoice_date:
        Calendar date of the receipt.
    issuer_id:
        Retailer (issuer) that emitted the receipt.
    store_id:
        Optional store of the issuer.
    product_path:
        Product taxonomy ``(l1, l2, l3, l4)``.
    commerce_path:
        Commerce (retailer category) taxonomy ``(l1, l2, l3, l4)``.
    brand:
        Brand of the product, ``UNKNOWN`` when unmatched.
    line_amount:
        Non-negative monetary amount of the line.
    reconciled:
        Tri-state reconciliation flag consumed from upstream data quality.
    """

    user_id: str
    invoice_id: str
    invoice_date: date
    issuer_id: str
    product_path: tuple[str, str, str, str]
    commerce_path: tuple[str, str, str, str]
    line_amount: Decimal
    brand: str = UNKNOWN
    store_id: str | None = None
    reconciled: bool | None = None

    def __post_init__(self) -> None:
        if self.line_amount < 0:
            raise ValueError(
                f"line_amount cannot be negative: {self.line_amount} "
                f"(invoice {self.invoice_id})"
            )
        if len(self.product_path) != 4 or len(self.commerce_path) != 4:
            raise ValueError("product_path and commerce_path must have 4 levels")

    @property
    def month(self) -> date:
        return month_start(self.invoice_date)

    def path(self, domain: str) -> tuple[str, str, str, str]:
        """Return the taxonomy path for ``domain`` (``product``/``commerce``)."""
        if domain == "product":
            return self.product_path
        if domain == "commerce":
            return self.commerce_path
        raise KeyError(domain)

    @classmethod
    def from_record(
        cls, record: Mapping[str, Any], *, index: int | None = None
    ) -> "TransactionLine":
        """Build a normalised line from a raw mapping.

        Dimension columns are read as ``product_l1``..``product_l4`` and
        ``commerce_l1``..``commerce_l4``.

        Raises
        ------
        KeyError
            If ``user_id``, ``invoice_id`` or ``invoice_date`` is missing.
        ValueError
            If the amount is negative or not numeric.
        """
        try:
            user_id = str(record["user_id"]).strip()
            invoice_id = str(record["invoice_id"]).strip()
            raw_date = record["invoice_date"]
        except KeyError as exc:
            raise KeyError(
                f"Transaction at index {index} missing key {exc.args[0]}"
            ) from exc
        if not user_id:
            raise ValueError("Transaction user_id cannot be blank", {"index": index})

        try:
            amount = Decimal(str(record.get("line_amount", 0) or 0))
        except InvalidOperation as exc:
            raise ValueError(
                "line_amount must be numeric",
                {"index": index, "line_amount": record.get("line_amount")},
            ) from exc
        if amount < 0:
            raise ValueError(
                "Line amount cannot be negative",
                {"index": index, "line_amount": amount},
            )

        store_raw = record.get("store_id")
        store_id = None if store_raw is None or not str(store_raw).strip() else str(store_raw).strip()

        return cls(
            user_id=user_id,
            invoice_id=invoice_id,
            invoice_date=parse_date(raw_date),
            issuer_id=normalise_dimension_value(record.get("issuer_id")),
            store_id=store_id,
            product_path=tuple(  # type: ignore[arg-type]
                normalise_dimension_value(record.get(f"product_{level}"))
                for level in DIMENSION_LEVELS
            ),
            commerce_path=tuple(  # type: ignore[arg-type]
                normalise_dimension_value(record.get(f"commerce_{level}"))
                for level in DIMENSION_LEVELS
            ),
            brand=normalise_dimension_value(record.get("brand")),
            line_amount=amount,
            reconciled=parse_reconciled(record.get("reconciled")),
        )

    def as_record(self) -> dict[str, object]:
        """Return a flat, JSON-friendly record (inverse of :meth:`from_record`)."""
        record: dict[str, object] = {
            "user_id": self.user_id,
            "invoice_id": self.invoice_id,
            "invoice_date": self.invoice_date.isoformat(),
            "issuer_id": self.issuer_id,
            "store_id": self.store_id,
            "brand": self.brand,
            "line_amount": str(self.line_amount),
            "reconciled": self.reconciled,
        }
        for idx, level in enumerate(DIMENSION_LEVELS):
            record[f"product_{level}"] = self.product_path[idx]
            record[f"commerce_{level}"] = self.commerce_path[idx]
        return record


def load_lines(records: Iterable[Mapping[str, Any]]) -> list[TransactionLine]:
    """Normalise raw records into :class:`TransactionLine` objects."""
    return [
        TransactionLine.from_record(record, index=idx)
        for idx, record in enumerate(records)
    ]


@dataclass(frozen=True)
class Window:
    """Half-open analysis window ``[start, end)``.

    Attributes
    ----------
    start:
        Inclusive first day.
    end:
        Exclusive bound; a line dated ``end`` is outside the window.
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        """Validate window bounds."""
        if self.start >= self.end:
            raise InvalidWindow(
                f"start must be before end: "
                f"start={self.start.isoformat()}, end={self.end.isoformat()}",
                {"start": self.start.isoformat(), "end": self.end.isoformat()},
            )

    @classmethod
    def parse(cls, start: object, end: object) -> "Window":
        """Build a window from loosely typed bounds.

        Raises
        ------
        InvalidWindow
            If either bound cannot be parsed or ``start >= end``.
        """
        try:
            start_date = parse_date(start)
            end_date = parse_date(end)
        except (TypeError, ValueError) as exc:
            raise InvalidWindow(
                f"Unparseable window bound: start={start!r}, end={end!r}",
                {"start": repr(start), "end": repr(end)},
            ) from exc
        return cls(start=start_date, end=end_date)

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def previous(self) -> "Window":
        """The window of equal length immediately preceding this one."""
        return Window(start=self.start - timedelta(days=self.days), end=self.start)

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}
