"""
Analytics Module
"""
from .anomalies import DailyAnomaly, DailyAnomalyDetector
from .engine import (
    analyze_daily_trends,
    classify_severity,
    classify_trend,
    generate_report,
    generate_summary,
)
from .models import (
    AnalyticsReport,
    Insight,
    InsightSeverity,
    Period,
    PeriodMetrics,
    ProductPeriodMetrics,
    TrendDirection,
    Trends,
)
from .periods import get_comparison_range, get_date_range, resolve_period
from .query import MetricsQuery, aggregate_to_period

__all__ = [
    "AnalyticsReport",
    "DailyAnomaly",
    "DailyAnomalyDetector",
    "Insight",
    "InsightSeverity",
    "MetricsQuery",
    "Period",
    "PeriodMetrics",
    "ProductPeriodMetrics",
    "TrendDirection",
    "Trends",
    "aggregate_to_period",
    "analyze_daily_trends",
    "classify_severity",
    "classify_trend",
    "generate_report",
    "generate_summary",
    "get_comparison_range",
    "get_date_range",
    "resolve_period",
]
