"""Tests for engine configuration."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from panel_cohort_audit.config import EngineConfig, SuppressionMode


def test_defaults():
    config = EngineConfig()
    assert config.k_threshold == 5
    assert config.min_n == 10
    assert config.coverage_threshold_pct == Decimal("60")
    assert config.basket_suppression is SuppressionMode.FLAG
    assert config.echo() == {"k_threshold": 5, "min_n": 10, "coverage_threshold_pct": 60.0}


def test_config_is_frozen():
    config = EngineConfig()
    with pytest.raises(ValidationError):
        config.k_threshold = 3


@pytest.mark.parametrize(
    "overrides",
    [
        {"k_threshold": 0},
        {"coverage_threshold_pct": Decimal("101")},
        {"low_trust_below": 200, "medium_trust_below": 100},
        {"capture_suppression": SuppressionMode.FLAG},
        {"loyalty_suppression": "flag"},
        {"basket_suppression": SuppressionMode.MERGE},
    ],
)
def test_invalid_settings_rejected(overrides):
    with pytest.raises(ValidationError):
        EngineConfig(**overrides)


def test_from_env():
    environ = {
        "PANEL_AUDIT_K_THRESHOLD": "3",
        "PANEL_AUDIT_SWITCHING_SUPPRESSION": "drop",
        "PANEL_AUDIT_COVERAGE_THRESHOLD_PCT": "55.5",
        "UNRELATED": "1",
    }
    config = EngineConfig.from_env(environ=environ)
    assert config.k_threshold == 3
    assert config.switching_suppression is SuppressionMode.DROP
    assert config.coverage_threshold_pct == Decimal("55.5")
    assert config.min_n == 10


def test_from_env_validates():
    with pytest.raises(ValidationError):
        EngineConfig.from_env(environ={"PANEL_AUDIT_MIN_N": "zero"})
