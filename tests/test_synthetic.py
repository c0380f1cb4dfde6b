from datetime import date

import pytest

from panel_cohort_audit.engine import MetricRequest, PanelAuditEngine
from panel_cohort_audit.foundation.store import InMemoryTransactionStore
from panel_cohort_audit.foundation.transaction_contract import UNKNOWN
from panel_cohort_audit.synthetic import DEFAULT_ISSUERS, PanelScenario, generate_panel


def test_generate_panel_basic() -> None:
    lines = generate_panel(40, date(2025, 1, 1), date(2025, 4, 1), scenario=PanelScenario(seed=7))
    assert len(lines) > 0
    assert all(line.line_amount > 0 for line in lines)
    assert {line.issuer_id for line in lines} <= set(DEFAULT_ISSUERS)
    assert all(date(2025, 1, 1) <= line.invoice_date < date(2025, 4, 1) for line in lines)


def test_generate_panel_is_reproducible() -> None:
    scenario = PanelScenario(seed=11)
    first = generate_panel(10, date(2025, 1, 1), date(2025, 3, 1), scenario=scenario)
    second = generate_panel(10, date(2025, 1, 1), date(2025, 3, 1), scenario=scenario)
    assert [line.as_record() for line in first] == [line.as_record() for line in second]


def test_unknown_rates_respected() -> None:
    # No unknowns at all when both rates are zero
    scenario = PanelScenario(seed=3, unknown_product_rate=0.0, unknown_brand_rate=0.0)
    lines = generate_panel(20, date(2025, 1, 1), date(2025, 2, 1), scenario=scenario)
    assert all(line.product_path[0] != UNKNOWN for line in lines)
    assert all(line.brand != UNKNOWN for line in lines)


def test_empty_and_invalid_inputs() -> None:
    assert generate_panel(0, date(2025, 1, 1), date(2025, 2, 1)) == []
    with pytest.raises(ValueError):
        generate_panel(5, date(2025, 2, 1), date(2025, 2, 1))


def test_synthetic_panel_through_engine() -> None:
    lines = generate_panel(
        300,
        date(2025, 1, 1),
        date(2025, 4, 1),
        scenario=PanelScenario(seed=42, churn_hazard=0.0),
    )
    request = MetricRequest(
        start="2025-01-01", end="2025-04-01", issuer_id="X", category_value="FOOD"
    )
    with PanelAuditEngine(InMemoryTransactionStore(lines)) as engine:
        results = engine.run_all(request)

    capture = results["capture_leakage"]
    assert not capture.is_suppressed
    assert capture.trust.eligible_users > 100
    waterfall = results["retention_waterfall"]
    for month in waterfall.data:
        assert sum(bucket["users"] for bucket in month["buckets"]) == month["cohort_size"]
