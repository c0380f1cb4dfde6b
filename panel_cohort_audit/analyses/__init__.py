"""Panel cohort metrics.

Each module computes one metric over a resolved cohort:

1. Capture / leakage - share of wallet by category
2. Switching destinations - other issuers the cohort buys at
3. Retention waterfall - month-over-month retention states
4. Basket breadth - distinct categories bought at X vs. anywhere
5. Brand loyalty - brand shares within one category

plus the headline KPI, daily KPI, data coverage, buyer segment and retailer
distribution summaries.
"""

from .basket import BasketMetrics, BasketMonth, calculate_basket_breadth
from .capture import (
    CaptureMetrics,
    CaptureRow,
    PeerScope,
    calculate_capture,
    resolve_peer_issuers,
)
from .coverage import CoverageReport, calculate_coverage
from .distribution import IssuerDistribution, IssuerShare, calculate_issuer_distribution
from .kpis import (
    DailyKpi,
    KpiComparison,
    KpiSnapshot,
    calculate_daily_kpis,
    calculate_kpis,
    change_pct,
    compare_kpis,
)
from .loyalty import (
    BrandLoyaltyRow,
    EligibilityMode,
    LoyaltyMetrics,
    LoyaltyTier,
    calculate_loyalty,
    loyalty_tier,
)
from .segments import BuyerSegment, BuyerSegmentMetrics, calculate_buyer_segments
from .switching import SwitchingMetrics, SwitchingRow, calculate_switching
from .waterfall import BucketCount, WaterfallMetrics, WaterfallMonth, calculate_waterfall

__all__ = [
    # Capture
    "CaptureMetrics",
    "CaptureRow",
    "PeerScope",
    "calculate_capture",
    "resolve_peer_issuers",
    # Switching
    "SwitchingMetrics",
    "SwitchingRow",
    "calculate_switching",
    # Waterfall
    "BucketCount",
    "WaterfallMetrics",
    "WaterfallMonth",
    "calculate_waterfall",
    # Basket
    "BasketMetrics",
    "BasketMonth",
    "calculate_basket_breadth",
    # Loyalty
    "BrandLoyaltyRow",
    "EligibilityMode",
    "LoyaltyMetrics",
    "LoyaltyTier",
    "calculate_loyalty",
    "loyalty_tier",
    # Summaries
    "CoverageReport",
    "calculate_coverage",
    "IssuerDistribution",
    "IssuerShare",
    "calculate_issuer_distribution",
    "DailyKpi",
    "KpiComparison",
    "KpiSnapshot",
    "calculate_daily_kpis",
    "calculate_kpis",
    "change_pct",
    "compare_kpis",
    "BuyerSegment",
    "BuyerSegmentMetrics",
    "calculate_buyer_segments",
]
