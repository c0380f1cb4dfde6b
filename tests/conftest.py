"""Shared fixtures: in-memory transaction lines and panels."""

from datetime import date
from decimal import Decimal
from itertools import count

import pytest

from panel_cohort_audit.foundation.transaction_contract import UNKNOWN, TransactionLine

_invoice_ids = count(1)


def _make_line(
    user_id,
    invoice_date,
    amount,
    *,
    issuer_id="X",
    category="FOOD",
    subcategory=UNKNOWN,
    brand=UNKNOWN,
    commerce=UNKNOWN,
    store_id=None,
    reconciled=None,
    invoice_id=None,
):
    return TransactionLine(
        user_id=user_id,
        invoice_id=invoice_id or f"INV-{next(_invoice_ids)}",
        invoice_date=invoice_date,
        issuer_id=issuer_id,
        product_path=(category, subcategory, UNKNOWN, UNKNOWN),
        commerce_path=(commerce, UNKNOWN, UNKNOWN, UNKNOWN),
        line_amount=Decimal(str(amount)),
        brand=brand,
        store_id=store_id,
        reconciled=reconciled,
    )


@pytest.fixture
def make_line():
    """Factory for TransactionLine objects with sensible defaults.

    Each call gets a fresh invoice id unless ``invoice_id`` is given.
    """
    return _make_line


@pytest.fixture
def waterfall_lines():
    """Three users at issuer X, Jan-Feb 2025.

    - A: $100 at X in Jan, $95 at X in Feb (RETAINED)
    - B: $50 at X in Jan, $30 elsewhere in Feb (CATEGORY_GONE)
    - C: only buys elsewhere (not in the cohort)
    """
    return [
        _make_line("A", date(2025, 1, 10), "100"),
        _make_line("A", date(2025, 2, 12), "95"),
        _make_line("B", date(2025, 1, 15), "50"),
        _make_line("B", date(2025, 2, 20), "30", issuer_id="Y"),
        _make_line("C", date(2025, 1, 5), "40", issuer_id="Y"),
    ]


@pytest.fixture
def capture_lines():
    """Six users buy FOOD at X and elsewhere; one user buys DRINKS at X."""
    lines = []
    for idx in range(6):
        user = f"U{idx}"
        lines.append(_make_line(user, date(2025, 1, 3 + idx), "30", category="FOOD"))
        lines.append(
            _make_line(user, date(2025, 1, 10 + idx), "10", category="FOOD", issuer_id="Y")
        )
    lines.append(_make_line("U0", date(2025, 1, 20), "12", category="DRINKS"))
    return lines
