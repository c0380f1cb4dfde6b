"""Pandas DataFrame adapters for transaction lines."""

from typing import Iterable, List

import pandas as pd  # type: ignore

from panel_cohort_audit.foundation.transaction_contract import TransactionLine
from ._utils import decimal_to_float, to_date, to_decimal

LINE_COLUMNS = [
    "user_id",
    "invoice_id",
    "invoice_date",
    "issuer_id",
    "store_id",
    "product_l1",
    "product_l2",
    "product_l3",
    "product_l4",
    "commerce_l1",
    "commerce_l2",
    "commerce_l3",
    "commerce_l4",
    "brand",
    "line_amount",
    "reconciled",
]


def lines_to_dataframe(lines: Iterable[TransactionLine]) -> pd.DataFrame:
    """Convert TransactionLine objects to a flat DataFrame.

    Args:
        lines: Transaction lines

    Returns:
        DataFrame with one row per line; ``invoice_date`` is datetime64 and
        ``line_amount`` is float.

    Example:
        >>> df = lines_to_dataframe(lines)
        >>> df.groupby('issuer_id')['line_amount'].sum()
    """
    records = []
    for line in lines:
        record = line.as_record()
        record["line_amount"] = decimal_to_float(line.line_amount)
        records.append(record)
    df = pd.DataFrame(records, columns=LINE_COLUMNS)
    df["invoice_date"] = pd.to_datetime(df["invoice_date"])
    return df


def dataframe_to_lines(df: pd.DataFrame) -> List[TransactionLine]:
    """Convert a flat DataFrame to TransactionLine objects.

    Missing dimension columns and blank cells normalise to ``UNKNOWN``;
    amounts are converted to Decimal through their string form.

    Args:
        df: DataFrame with at least user_id, invoice_id, invoice_date,
            issuer_id and line_amount columns

    Returns:
        List of TransactionLine objects

    Raises:
        ValueError: If required columns are missing or a row violates the
            line contract
    """
    required = {"user_id", "invoice_id", "invoice_date", "issuer_id", "line_amount"}
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"DataFrame missing required columns: {sorted(missing)}")

    frame = df.astype(object).where(df.notna(), None)
    lines = []
    for idx, record in enumerate(frame.to_dict("records")):
        record["invoice_date"] = to_date(record["invoice_date"])
        if record["line_amount"] is not None:
            record["line_amount"] = to_decimal(record["line_amount"])
        lines.append(TransactionLine.from_record(record, index=idx))
    return lines
