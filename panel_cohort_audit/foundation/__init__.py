"""Foundational building blocks: the transaction contract, dimension and
cohort resolution, and access to the transaction store."""

from .cohorts import (
    CohortResolution,
    CohortScope,
    MonthlyUserState,
    build_cohort,
    build_monthly_states,
)
from .dimensions import (
    DimensionChild,
    DimensionDomain,
    DimensionSpec,
    ResolvedDimension,
    dimension_children,
    resolve_dimension,
)
from .store import (
    DataFrameTransactionStore,
    InMemoryTransactionStore,
    ScanQuery,
    StoreGateway,
    TransactionStore,
)
from .transaction_contract import (
    OTHER_SUPPRESSED,
    UNKNOWN,
    TransactionLine,
    Window,
    load_lines,
)

__all__ = [
    "CohortResolution",
    "CohortScope",
    "MonthlyUserState",
    "build_cohort",
    "build_monthly_states",
    "DimensionChild",
    "DimensionDomain",
    "DimensionSpec",
    "ResolvedDimension",
    "dimension_children",
    "resolve_dimension",
    "DataFrameTransactionStore",
    "InMemoryTransactionStore",
    "ScanQuery",
    "StoreGateway",
    "TransactionStore",
    "OTHER_SUPPRESSED",
    "UNKNOWN",
    "TransactionLine",
    "Window",
    "load_lines",
]
