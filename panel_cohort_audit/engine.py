"""Request-scoped facade over the panel cohort metrics.

:class:`PanelAuditEngine` exposes one method per metric. Each method scans
the store through the guarded :class:`StoreGateway`, resolves the cohort,
runs the pure aggregation, applies window trust and wraps everything in a
:class:`MetricResult` envelope::

    {metric, filters_echoed, data[], disclaimers[], trust, summary}

A ``SUPPRESSED`` window is a valid result, not an error: ``data`` and
``summary`` are empty and ``trust.reasons`` says why.

Example
-------
>>> from panel_cohort_audit.engine import MetricRequest, PanelAuditEngine
>>> engine = PanelAuditEngine(InMemoryTransactionStore(lines))  # doctest: +SKIP
>>> request = MetricRequest(start="2025-01-01", end="2025-04-01", issuer_id="X")
>>> engine.capture_leakage(request).trust.level  # doctest: +SKIP
<TrustLevel.MEDIUM: 'MEDIUM'>
"""

from __future__ import annotations

import contextvars
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from typing import Any, Callable

import structlog
from opentelemetry import trace
from pydantic import BaseModel, ConfigDict, Field

from panel_cohort_audit.analyses.basket import calculate_basket_breadth
from panel_cohort_audit.analyses.capture import PeerScope, calculate_capture
from panel_cohort_audit.analyses.coverage import calculate_coverage
from panel_cohort_audit.analyses.distribution import (
    DEFAULT_DISTRIBUTION_LIMIT,
    calculate_issuer_distribution,
)
from panel_cohort_audit.analyses.kpis import calculate_daily_kpis, compare_kpis
from panel_cohort_audit.analyses.loyalty import EligibilityMode, calculate_loyalty
from panel_cohort_audit.analyses.segments import calculate_buyer_segments
from panel_cohort_audit.analyses.switching import calculate_switching
from panel_cohort_audit.analyses.waterfall import calculate_waterfall
from panel_cohort_audit.config import EngineConfig, SuppressionMode
from panel_cohort_audit.errors import MissingRequiredParameter
from panel_cohort_audit.foundation.cohorts import CohortResolution, CohortScope, build_cohort
from panel_cohort_audit.foundation.dimensions import (
    DimensionSpec,
    dimension_children,
    resolve_dimension,
)
from panel_cohort_audit.foundation.store import ScanQuery, StoreGateway, TransactionStore
from panel_cohort_audit.foundation.transaction_contract import OTHER_SUPPRESSED, UNKNOWN, Window
from panel_cohort_audit.policy.suppression import (
    SupportGroup,
    TrustLevel,
    TrustVerdict,
    apply_k_anonymity,
    classify_window_trust,
    known_coverage_pct,
)
from panel_cohort_audit.policy.waterfall_rules import get_rule_set

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

PANEL_DISCLAIMER = (
    "Figures describe receipts captured from panel members, not total issuer sales."
)
UNKNOWN_DISCLAIMER = (
    "UNKNOWN rows hold spend without a known attribute; they are always "
    "reported with trust_level=SUPPRESSED."
)

CORE_METRICS = (
    "capture_leakage",
    "switching_destinations",
    "retention_waterfall",
    "basket_breadth",
    "brand_loyalty",
)


class DimensionRequest(BaseModel):
    """Loose dimension parameters; validated by the dimension resolver."""

    model_config = ConfigDict(frozen=True)

    domain: str = "product"
    level: str = "l1"
    path: tuple[str | None, ...] = ()

    def to_spec(self) -> DimensionSpec:
        return DimensionSpec(
            domain=self.domain,
            level=self.level,
            path=tuple(p if p not in ("", None) else None for p in self.path),
        )


class MetricRequest(BaseModel):
    """Parameters shared by every metric call."""

    model_config = ConfigDict(frozen=True)

    start: date | str
    end: date | str
    issuer_id: str = Field(min_length=1)
    store_id: str | None = None
    reconciled: bool | None = None
    dimension: DimensionRequest = Field(default_factory=DimensionRequest)
    peer_scope: PeerScope = PeerScope.ALL
    category_value: str | None = None
    eligibility: EligibilityMode = EligibilityMode.RECEIPTS

    def scope(self) -> CohortScope:
        """Parse the window and resolve the dimension.

        Raises
        ------
        InvalidWindow
            If the bounds are unparseable or ``start >= end``.
        InvalidDimension
            If the dimension domain or level is unknown.
        """
        return CohortScope(
            window=Window.parse(self.start, self.end),
            issuer_id=self.issuer_id,
            store_id=self.store_id,
            reconciled=self.reconciled,
            dimension=resolve_dimension(self.dimension.to_spec()),
        )


class TrustReport(BaseModel):
    """Window trust verdict as carried on a result."""

    level: TrustLevel
    eligible_users: int
    known_coverage_pct: float
    reasons: list[str] = Field(default_factory=list)

    @classmethod
    def from_verdict(cls, verdict: TrustVerdict) -> "TrustReport":
        return cls(
            level=verdict.level,
            eligible_users=verdict.eligible_users,
            known_coverage_pct=float(verdict.known_coverage_pct),
            reasons=list(verdict.reasons),
        )


class MetricResult(BaseModel):
    """Structured result returned by every engine method."""

    metric: str
    filters_echoed: dict[str, Any]
    data: list[dict[str, Any]] = Field(default_factory=list)
    disclaimers: list[str] = Field(default_factory=list)
    trust: TrustReport
    summary: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_suppressed(self) -> bool:
        return self.trust.level is TrustLevel.SUPPRESSED


def _dimension_coverage(resolution: CohortResolution) -> Decimal:
    spend: dict[str, Decimal] = {}
    dimension = resolution.scope.dimension
    for line in resolution.cohort_lines():
        value = dimension.value_of(line)
        spend[value] = spend.get(value, Decimal("0")) + line.line_amount
    return known_coverage_pct(spend)


def _suppression_disclaimer(count: int, k: int, mode: SuppressionMode) -> str:
    if mode is SuppressionMode.MERGE:
        return f"{count} group(s) with fewer than {k} users were merged into {OTHER_SUPPRESSED}."
    return f"{count} group(s) with fewer than {k} users were removed."


class PanelAuditEngine:
    """Compute panel cohort metrics for one issuer at a time.

    Parameters
    ----------
    store:
        A :class:`TransactionStore`, or an already configured
        :class:`StoreGateway`.
    config:
        Thresholds and store settings; defaults to :class:`EngineConfig`.
    max_workers:
        Threads used by :meth:`run_all`.
    """

    def __init__(
        self,
        store: TransactionStore | StoreGateway,
        config: EngineConfig | None = None,
        max_workers: int = len(CORE_METRICS),
    ):
        self.config = config or EngineConfig()
        if isinstance(store, StoreGateway):
            self.gateway = store
        else:
            self.gateway = StoreGateway(store, self.config)
        self.rule_set = get_rule_set(self.config.waterfall_rule_set)
        self.max_workers = max_workers

    def close(self) -> None:
        self.gateway.close()

    def __enter__(self) -> "PanelAuditEngine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    def resolve(self, request: MetricRequest) -> CohortResolution:
        """Scan the market for the request window and resolve the cohort."""
        scope = request.scope()
        with tracer.start_as_current_span("cohort.resolve") as span:
            lines = self.gateway.scan(scope.market_query())
            resolution = build_cohort(lines, scope)
            span.set_attribute("cohort.size", resolution.cohort_size)
            span.set_attribute("cohort.lines", len(resolution.lines))
        logger.debug(
            "cohort_resolved",
            issuer_id=scope.issuer_id,
            cohort_size=resolution.cohort_size,
            lines=len(resolution.lines),
        )
        return resolution

    def _issuer_lines(self, scope: CohortScope, window: Window | None = None):
        return self.gateway.scan(
            ScanQuery(
                window=window or scope.window,
                issuer_id=scope.issuer_id,
                store_id=scope.store_id,
                dimension=scope.dimension,
                reconciled=scope.reconciled,
            )
        )

    def _verdict(
        self,
        eligible_users: int,
        coverage: Decimal,
        coverage_threshold_pct: Decimal | None = None,
    ) -> TrustVerdict:
        return classify_window_trust(
            eligible_users,
            coverage,
            min_n=self.config.min_n,
            coverage_threshold_pct=(
                self.config.coverage_threshold_pct
                if coverage_threshold_pct is None
                else coverage_threshold_pct
            ),
            low_trust_below=self.config.low_trust_below,
            medium_trust_below=self.config.medium_trust_below,
        )

    def _echo(self, scope: CohortScope, **extra: Any) -> dict[str, Any]:
        return {**scope.echo(), **extra, **self.config.echo()}

    def _result(
        self,
        metric: str,
        filters: dict[str, Any],
        verdict: TrustVerdict,
        data: list[dict[str, Any]],
        summary: dict[str, Any],
        disclaimers: list[str],
    ) -> MetricResult:
        disclaimers = [PANEL_DISCLAIMER, *disclaimers]
        if verdict.is_suppressed:
            data, summary = [], {}
            disclaimers.append(
                "Result suppressed: " + ", ".join(verdict.reasons) + "."
            )
        elif verdict.level is TrustLevel.LOW:
            disclaimers.append(
                f"Fewer than {self.config.low_trust_below} eligible users; "
                "treat results as directional."
            )
        return MetricResult(
            metric=metric,
            filters_echoed=filters,
            data=data,
            disclaimers=disclaimers,
            trust=TrustReport.from_verdict(verdict),
            summary=summary,
        )

    def _traced(self, metric: str, compute: Callable[[], MetricResult]) -> MetricResult:
        started = time.perf_counter()
        with tracer.start_as_current_span(f"metric.{metric}") as span:
            result = compute()
            span.set_attribute("metric.rows", len(result.data))
            span.set_attribute("metric.trust_level", result.trust.level.value)
        logger.info(
            "metric_computed",
            metric=metric,
            rows=len(result.data),
            trust_level=result.trust.level.value,
            eligible_users=result.trust.eligible_users,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return result

    # ------------------------------------------------------------------
    # Core metrics
    # ------------------------------------------------------------------

    def capture_leakage(
        self, request: MetricRequest, resolution: CohortResolution | None = None
    ) -> MetricResult:
        """Share of wallet and leakage by dimension value."""

        def compute() -> MetricResult:
            res = resolution or self.resolve(request)
            metrics = calculate_capture(
                res,
                peer_scope=request.peer_scope,
                k=self.config.k_threshold,
                mode=self.config.capture_suppression,
                extended_overlap_pct=self.config.extended_peer_overlap_pct,
                expansion_factor=self.config.household_expansion_factor,
                low_trust_below=self.config.low_trust_below,
                medium_trust_below=self.config.medium_trust_below,
            )
            verdict = self._verdict(metrics.cohort_size, metrics.known_coverage_pct)
            disclaimers = []
            if metrics.suppressed_keys:
                disclaimers.append(
                    _suppression_disclaimer(
                        len(metrics.suppressed_keys),
                        self.config.k_threshold,
                        self.config.capture_suppression,
                    )
                )
            if any(row.is_unknown for row in metrics.rows):
                disclaimers.append(UNKNOWN_DISCLAIMER)
            if self.config.household_expansion_factor != 1:
                disclaimers.append(
                    "projected_spend_in_x_usd applies a linear household expansion "
                    f"factor of {self.config.household_expansion_factor}."
                )
            summary = {
                "cohort_size": metrics.cohort_size,
                "peer_issuers": sorted(metrics.peer_issuers) if metrics.peer_issuers else None,
                "spend_in_x_usd": float(sum((r.spend_in_x_usd for r in metrics.rows), Decimal("0"))),
                "spend_market_usd": float(
                    sum((r.spend_market_usd for r in metrics.rows), Decimal("0"))
                ),
                "suppressed_groups": len(metrics.suppressed_keys),
            }
            return self._result(
                "capture_leakage",
                self._echo(res.scope, peer_scope=request.peer_scope.value),
                verdict,
                [row.as_dict() for row in metrics.rows],
                summary,
                disclaimers,
            )

        return self._traced("capture_leakage", compute)

    def switching_destinations(
        self, request: MetricRequest, resolution: CohortResolution | None = None
    ) -> MetricResult:
        """Other issuers the cohort buys at, by distinct users."""

        def compute() -> MetricResult:
            res = resolution or self.resolve(request)
            metrics = calculate_switching(
                res,
                k=self.config.k_threshold,
                mode=self.config.switching_suppression,
                limit=self.config.switching_limit,
                low_trust_below=self.config.low_trust_below,
                medium_trust_below=self.config.medium_trust_below,
            )
            verdict = self._verdict(metrics.cohort_size, _dimension_coverage(res))
            disclaimers = []
            if metrics.suppressed_keys:
                disclaimers.append(
                    _suppression_disclaimer(
                        len(metrics.suppressed_keys),
                        self.config.k_threshold,
                        self.config.switching_suppression,
                    )
                )
            if metrics.destinations_total > len(metrics.rows):
                disclaimers.append(
                    f"Showing the top {len(metrics.rows)} destinations by users."
                )
            summary = {
                "cohort_size": metrics.cohort_size,
                "switching_users": metrics.switching_users,
                "destinations_total": metrics.destinations_total,
                "suppressed_groups": len(metrics.suppressed_keys),
            }
            return self._result(
                "switching_destinations",
                self._echo(res.scope, limit=self.config.switching_limit),
                verdict,
                [row.as_dict() for row in metrics.rows],
                summary,
                disclaimers,
            )

        return self._traced("switching_destinations", compute)

    def retention_waterfall(
        self, request: MetricRequest, resolution: CohortResolution | None = None
    ) -> MetricResult:
        """Month-over-month retention buckets for ``request.category_value``.

        Raises
        ------
        MissingRequiredParameter
            If the request has no ``category_value``.
        """
        self._require_category(request, "retention_waterfall")

        def compute() -> MetricResult:
            res = resolution or self.resolve(request)
            metrics = calculate_waterfall(
                res,
                request.category_value,
                rule_set=self.rule_set,
                min_n=self.config.min_n,
            )
            verdict = self._verdict(metrics.eligible_users, _dimension_coverage(res))
            disclaimers = []
            if metrics.suppressed_months:
                disclaimers.append(
                    f"{len(metrics.suppressed_months)} origin month(s) had fewer than "
                    f"{self.config.min_n} transitioning users and are listed in "
                    "suppressed_months."
                )
            summary = {
                "category_value": metrics.category_value,
                "rule_set": self.rule_set.describe(),
                "suppressed_months": [m.isoformat() for m in metrics.suppressed_months],
            }
            return self._result(
                "retention_waterfall",
                self._echo(res.scope, category_value=request.category_value),
                verdict,
                [month.as_dict() for month in metrics.months],
                summary,
                disclaimers,
            )

        return self._traced("retention_waterfall", compute)

    def basket_breadth(
        self, request: MetricRequest, resolution: CohortResolution | None = None
    ) -> MetricResult:
        """Average distinct categories bought at X vs. anywhere, per month."""

        def compute() -> MetricResult:
            res = resolution or self.resolve(request)
            metrics = calculate_basket_breadth(
                res, k=self.config.k_threshold, mode=self.config.basket_suppression
            )
            verdict = self._verdict(metrics.eligible_users, _dimension_coverage(res))
            disclaimers = []
            flagged = sum(1 for month in metrics.months if month.is_suppressed)
            if flagged:
                disclaimers.append(
                    f"{flagged} month(s) with fewer than {self.config.k_threshold} users "
                    "are flagged is_suppressed."
                )
            if metrics.dropped_months:
                disclaimers.append(
                    f"{len(metrics.dropped_months)} month(s) with fewer than "
                    f"{self.config.k_threshold} users were removed."
                )
            summary = {
                "suppression_mode": self.config.basket_suppression.value,
                "dropped_months": [m.isoformat() for m in metrics.dropped_months],
            }
            return self._result(
                "basket_breadth",
                self._echo(res.scope),
                verdict,
                [month.as_dict() for month in metrics.months],
                summary,
                disclaimers,
            )

        return self._traced("basket_breadth", compute)

    def brand_loyalty(
        self, request: MetricRequest, resolution: CohortResolution | None = None
    ) -> MetricResult:
        """Brand shares and loyalty tiers within ``request.category_value``.

        Raises
        ------
        MissingRequiredParameter
            If the request has no ``category_value``.
        """
        self._require_category(request, "brand_loyalty")

        def compute() -> MetricResult:
            res = resolution or self.resolve(request)
            metrics = calculate_loyalty(
                res,
                request.category_value,
                eligibility=request.eligibility,
                min_receipts=self.config.loyalty_min_receipts,
                min_months=self.config.loyalty_min_months,
                k=self.config.k_threshold,
                mode=self.config.loyalty_suppression,
                min_n=self.config.min_n,
                coverage_threshold_pct=self.config.coverage_threshold_pct,
                low_trust_below=self.config.low_trust_below,
                medium_trust_below=self.config.medium_trust_below,
            )
            disclaimers = []
            if metrics.suppressed_keys:
                disclaimers.append(
                    _suppression_disclaimer(
                        len(metrics.suppressed_keys),
                        self.config.k_threshold,
                        self.config.loyalty_suppression,
                    )
                )
            if any(row.brand == UNKNOWN for row in metrics.rows):
                disclaimers.append(UNKNOWN_DISCLAIMER)
            return self._result(
                "brand_loyalty",
                self._echo(
                    res.scope,
                    category_value=request.category_value,
                    eligibility=request.eligibility.value,
                ),
                metrics.trust,
                [row.as_dict() for row in metrics.rows],
                metrics.summary(),
                disclaimers,
            )

        return self._traced("brand_loyalty", compute)

    def run_all(self, request: MetricRequest) -> dict[str, MetricResult]:
        """Run the five core metrics in parallel over one cohort resolution.

        Raises
        ------
        MissingRequiredParameter
            If the request has no ``category_value`` (waterfall and loyalty
            need one).
        """
        self._require_category(request, "run_all")
        with tracer.start_as_current_span("engine.run_all"):
            resolution = self.resolve(request)
            with ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="panel-metric"
            ) as pool:
                # a context copy per task keeps metric spans under engine.run_all
                futures = {
                    name: pool.submit(
                        contextvars.copy_context().run,
                        getattr(self, name),
                        request,
                        resolution,
                    )
                    for name in CORE_METRICS
                }
                return {name: future.result() for name, future in futures.items()}

    # ------------------------------------------------------------------
    # Drill-down and summaries
    # ------------------------------------------------------------------

    def dimension_children(self, request: MetricRequest) -> MetricResult:
        """Children of the request's dimension path at issuer X.

        Values below ``k`` users are merged (or dropped) like capture rows.
        """

        def compute() -> MetricResult:
            scope = request.scope()
            lines = self._issuer_lines(scope)
            children = dimension_children(lines, request.dimension.to_spec())
            users_by_value: dict[str, set[str]] = {}
            for line in lines:
                users_by_value.setdefault(scope.dimension.value_of(line), set()).add(line.user_id)
            groups = [
                SupportGroup(
                    key=child.value,
                    users=frozenset(users_by_value.get(child.value, ())),
                    measures={"spend": child.spend},
                )
                for child in children
            ]
            outcome = apply_k_anonymity(
                groups,
                self.config.k_threshold,
                mode=self.config.capture_suppression,
                low_trust_below=self.config.low_trust_below,
                medium_trust_below=self.config.medium_trust_below,
            )
            eligible = len({line.user_id for line in lines})
            verdict = self._verdict(
                eligible, known_coverage_pct({c.value: c.spend for c in children})
            )
            rows = sorted(
                (
                    {
                        "value": group.key,
                        "users": group.support,
                        "spend": float(group.measures["spend"]),
                        "is_unknown": group.is_unknown,
                        "trust_level": group.trust_level.value,
                    }
                    for group in outcome.groups
                ),
                key=lambda row: (-row["spend"], row["is_unknown"], row["value"]),
            )
            disclaimers = []
            if outcome.suppressed_keys:
                disclaimers.append(
                    _suppression_disclaimer(
                        outcome.suppressed_count,
                        self.config.k_threshold,
                        self.config.capture_suppression,
                    )
                )
            return self._result(
                "dimension_children",
                self._echo(scope),
                verdict,
                rows,
                {"grouping_column": scope.dimension.column},
                disclaimers,
            )

        return self._traced("dimension_children", compute)

    def kpi_summary(self, request: MetricRequest) -> MetricResult:
        """Headline KPIs at X compared with the previous equal-length window."""

        def compute() -> MetricResult:
            scope = request.scope()
            current = self._issuer_lines(scope)
            previous_window = scope.window.previous()
            previous = self._issuer_lines(scope, previous_window)
            comparison = compare_kpis(current, previous, scope)
            coverage = calculate_coverage(current, scope)
            verdict = self._verdict(
                comparison.current.buyers,
                coverage.product_l1_known_pct,
                coverage_threshold_pct=Decimal("0"),
            )
            return self._result(
                "kpi_summary",
                self._echo(scope, previous_window=previous_window.as_dict()),
                verdict,
                [comparison.as_dict()],
                {"previous_window": previous_window.as_dict()},
                [],
            )

        return self._traced("kpi_summary", compute)

    def kpi_daily(self, request: MetricRequest) -> MetricResult:
        """Receipts, buyers, gross sales and AOV at X per invoice date."""

        def compute() -> MetricResult:
            scope = request.scope()
            lines = self._issuer_lines(scope)
            days = calculate_daily_kpis(lines, scope)
            coverage = calculate_coverage(lines, scope)
            buyers = len({line.user_id for line in lines})
            verdict = self._verdict(
                buyers, coverage.product_l1_known_pct, coverage_threshold_pct=Decimal("0")
            )
            return self._result(
                "kpi_daily",
                self._echo(scope),
                verdict,
                [day.as_dict() for day in days],
                {"days_with_activity": len(days), "buyers": buyers},
                [],
            )

        return self._traced("kpi_daily", compute)

    def retailer_distribution(
        self, request: MetricRequest, limit: int | None = None
    ) -> MetricResult:
        """Every issuer in the market ranked by panel gross sales.

        Issuers below ``k`` distinct buyers are merged (or dropped) the way
        capture rows are; the request's issuer is flagged ``is_target``.
        """

        def compute() -> MetricResult:
            scope = request.scope()
            lines = self.gateway.scan(scope.market_query())
            distribution = calculate_issuer_distribution(
                lines,
                scope,
                k=self.config.k_threshold,
                mode=self.config.capture_suppression,
                limit=limit or DEFAULT_DISTRIBUTION_LIMIT,
                low_trust_below=self.config.low_trust_below,
                medium_trust_below=self.config.medium_trust_below,
            )
            commerce_spend: Counter = Counter()
            for line in lines:
                if scope.in_scope(line):
                    commerce_spend[line.commerce_path[0]] += line.line_amount
            verdict = self._verdict(
                distribution.market_buyers,
                known_coverage_pct(commerce_spend),
                coverage_threshold_pct=Decimal("0"),
            )
            disclaimers = []
            if distribution.suppressed_keys:
                disclaimers.append(
                    _suppression_disclaimer(
                        len(distribution.suppressed_keys),
                        self.config.k_threshold,
                        self.config.capture_suppression,
                    )
                )
            summary = {
                "issuers_total": distribution.issuers_total,
                "market_buyers": distribution.market_buyers,
                "market_gross_sales": float(distribution.market_gross_sales),
            }
            return self._result(
                "retailer_distribution",
                self._echo(scope, limit=limit or DEFAULT_DISTRIBUTION_LIMIT),
                verdict,
                [row.as_dict() for row in distribution.rows],
                summary,
                disclaimers,
            )

        return self._traced("retailer_distribution", compute)

    def coverage_report(self, request: MetricRequest) -> MetricResult:
        """Known-attribute coverage of X's spend.

        Only the eligible-user floor applies; low coverage is what this
        report exists to show.
        """

        def compute() -> MetricResult:
            scope = request.scope()
            lines = self._issuer_lines(scope)
            report = calculate_coverage(lines, scope)
            buyers = len({line.user_id for line in lines})
            verdict = self._verdict(
                buyers, report.product_l1_known_pct, coverage_threshold_pct=Decimal("0")
            )
            disclaimers = []
            if report.product_l1_known_pct < self.config.coverage_threshold_pct:
                disclaimers.append(
                    f"Known product coverage ({report.product_l1_known_pct}%) is below "
                    f"the {self.config.coverage_threshold_pct}% threshold; category "
                    "metrics for this window will be suppressed."
                )
            return self._result(
                "coverage_report",
                self._echo(scope),
                verdict,
                [report.as_dict()],
                {},
                disclaimers,
            )

        return self._traced("coverage_report", compute)

    def buyer_segments(self, request: MetricRequest) -> MetricResult:
        """Buyers at X bucketed by visit count."""

        def compute() -> MetricResult:
            scope = request.scope()
            lines = self._issuer_lines(scope)
            metrics = calculate_buyer_segments(lines, scope)
            coverage = calculate_coverage(lines, scope)
            verdict = self._verdict(
                metrics.total_buyers,
                coverage.product_l1_known_pct,
                coverage_threshold_pct=Decimal("0"),
            )
            summary = {
                "total_buyers": metrics.total_buyers,
                "avg_visits_per_buyer": float(metrics.avg_visits_per_buyer),
                "avg_spend_per_buyer": float(metrics.avg_spend_per_buyer),
            }
            return self._result(
                "buyer_segments",
                self._echo(scope),
                verdict,
                [segment.as_dict() for segment in metrics.segments],
                summary,
                [],
            )

        return self._traced("buyer_segments", compute)

    @staticmethod
    def _require_category(request: MetricRequest, metric: str) -> None:
        if not request.category_value:
            raise MissingRequiredParameter(
                f"{metric} requires category_value",
                {"parameter": "category_value", "metric": metric},
            )
