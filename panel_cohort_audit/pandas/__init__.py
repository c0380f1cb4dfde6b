"""Pandas DataFrame adapters for panel cohort audit components."""

from .lines import (
    LINE_COLUMNS,
    dataframe_to_lines,
    lines_to_dataframe,
)
from .results import (
    metric_result_to_dataframe,
    waterfall_to_dataframe,
)

__all__ = [
    # Line adapters
    "LINE_COLUMNS",
    "dataframe_to_lines",
    "lines_to_dataframe",
    # Result adapters
    "metric_result_to_dataframe",
    "waterfall_to_dataframe",
]
