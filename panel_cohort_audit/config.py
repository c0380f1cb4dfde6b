"""Engine configuration.

Configuration is an immutable value object handed to the engine at
construction time. Nothing in the engine reads process-wide settings; use
:meth:`EngineConfig.from_env` at the edge if environment overrides are wanted.
"""

from __future__ import annotations

import os
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SuppressionMode(str, Enum):
    """How groups below the k-anonymity threshold are handled."""

    MERGE = "merge"  # fold into OTHER_SUPPRESSED
    DROP = "drop"  # remove entirely
    FLAG = "flag"  # keep, mark is_suppressed (distributional metrics only)


IDENTITY_MODES = frozenset({SuppressionMode.MERGE, SuppressionMode.DROP})
DISTRIBUTION_MODES = frozenset({SuppressionMode.FLAG, SuppressionMode.DROP})


class EngineConfig(BaseModel):
    """Thresholds and operational settings for one engine instance."""

    model_config = ConfigDict(frozen=True)

    # Suppression & trust policy
    k_threshold: int = Field(default=5, ge=1, description="Minimum distinct-user support per group")
    min_n: int = Field(default=10, ge=1, description="Minimum eligible users for a window")
    coverage_threshold_pct: Decimal = Field(
        default=Decimal("60"), ge=0, le=100,
        description="Minimum known-dimension spend coverage for a window",
    )
    low_trust_below: int = Field(default=30, ge=1)
    medium_trust_below: int = Field(default=100, ge=1)

    # Metric settings
    switching_limit: int = Field(default=20, ge=1)
    waterfall_rule_set: str = Field(default="canonical-v2")
    loyalty_min_receipts: int = Field(default=2, ge=1)
    loyalty_min_months: int = Field(default=2, ge=1)
    extended_peer_overlap_pct: Decimal = Field(default=Decimal("50"), ge=0, le=100)
    household_expansion_factor: Decimal = Field(default=Decimal("1"), gt=0)

    capture_suppression: SuppressionMode = SuppressionMode.MERGE
    switching_suppression: SuppressionMode = SuppressionMode.MERGE
    loyalty_suppression: SuppressionMode = SuppressionMode.MERGE
    basket_suppression: SuppressionMode = SuppressionMode.FLAG

    # Store access
    store_timeout_seconds: float = Field(default=30.0, gt=0)
    store_retry_attempts: int = Field(default=3, ge=1)
    store_retry_max_wait_seconds: float = Field(default=4.0, ge=0)
    store_breaker_fail_max: int = Field(default=5, ge=1)
    store_breaker_reset_seconds: int = Field(default=60, ge=1)

    @model_validator(mode="after")
    def _check_consistency(self) -> "EngineConfig":
        if self.low_trust_below > self.medium_trust_below:
            raise ValueError(
                f"low_trust_below ({self.low_trust_below}) must not exceed "
                f"medium_trust_below ({self.medium_trust_below})"
            )
        for name in ("capture_suppression", "switching_suppression", "loyalty_suppression"):
            mode = getattr(self, name)
            if mode not in IDENTITY_MODES:
                raise ValueError(
                    f"{name} must be one of {sorted(m.value for m in IDENTITY_MODES)}, "
                    f"got {mode.value!r}: identity-bearing groups cannot be soft-flagged"
                )
        if self.basket_suppression not in DISTRIBUTION_MODES:
            raise ValueError(
                f"basket_suppression must be one of "
                f"{sorted(m.value for m in DISTRIBUTION_MODES)}, got {self.basket_suppression.value!r}"
            )
        return self

    @classmethod
    def from_env(
        cls,
        prefix: str = "PANEL_AUDIT_",
        environ: Mapping[str, str] | None = None,
    ) -> "EngineConfig":
        """Build a config from ``<prefix><FIELD_NAME>`` environment variables.

        Unset variables keep their defaults; values are validated by pydantic.
        """
        environ = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name in cls.model_fields:
            key = f"{prefix}{name.upper()}"
            if key in environ:
                overrides[name] = environ[key]
        return cls(**overrides)

    def echo(self) -> dict[str, Any]:
        """Thresholds worth echoing back alongside a result."""
        return {
            "k_threshold": self.k_threshold,
            "min_n": self.min_n,
            "coverage_threshold_pct": float(self.coverage_threshold_pct),
        }
