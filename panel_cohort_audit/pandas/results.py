"""Pandas DataFrame adapters for metric results."""

import pandas as pd  # type: ignore

from panel_cohort_audit.engine import MetricResult


def metric_result_to_dataframe(result: MetricResult) -> pd.DataFrame:
    """Convert a MetricResult's rows to a DataFrame.

    A suppressed result yields an empty DataFrame; the trust verdict stays on
    the result object.

    Args:
        result: Result returned by a PanelAuditEngine method

    Returns:
        DataFrame with one row per data row
    """
    if result.metric == "retention_waterfall":
        return waterfall_to_dataframe(result)
    return pd.DataFrame(result.data)


def waterfall_to_dataframe(result: MetricResult) -> pd.DataFrame:
    """Flatten waterfall months to one row per (origin_month, bucket).

    Args:
        result: Retention waterfall MetricResult

    Returns:
        DataFrame with origin_month, next_month, cohort_size, bucket, users
        and pct columns, buckets in report order

    Example:
        >>> df = waterfall_to_dataframe(engine.retention_waterfall(request))
        >>> df.pivot(index='origin_month', columns='bucket', values='pct')
    """
    if result.metric != "retention_waterfall":
        raise ValueError(f"Expected a retention_waterfall result, got {result.metric!r}")
    rows = []
    for month in result.data:
        for bucket in month["buckets"]:
            rows.append(
                {
                    "origin_month": month["origin_month"],
                    "next_month": month["next_month"],
                    "cohort_size": month["cohort_size"],
                    "bucket": bucket["bucket"],
                    "users": bucket["users"],
                    "pct": bucket["pct"],
                }
            )
    columns = ["origin_month", "next_month", "cohort_size", "bucket", "users", "pct"]
    return pd.DataFrame(rows, columns=columns)
