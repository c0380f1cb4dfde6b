"""Panel cohort analytics: share of wallet, switching, retention, basket
breadth and brand loyalty for an issuer's buyers, computed from a consumer
receipt panel under k-anonymity and window-trust rules."""

__version__ = "0.1.0"

from .config import EngineConfig, SuppressionMode
from .engine import MetricRequest, MetricResult, PanelAuditEngine
from .errors import (
    InvalidDimension,
    InvalidWindow,
    MissingRequiredParameter,
    PanelAuditError,
    StoreUnavailable,
)

__all__ = [
    "__version__",
    "EngineConfig",
    "SuppressionMode",
    "MetricRequest",
    "MetricResult",
    "PanelAuditEngine",
    "InvalidDimension",
    "InvalidWindow",
    "MissingRequiredParameter",
    "PanelAuditError",
    "StoreUnavailable",
]
