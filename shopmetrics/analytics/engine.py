"""
Analytics Engine

Turns reduced period metrics into a ranked insight report and a short
plain-text summary. Pure: no storage access.
"""

import datetime as dt
from typing import List, Optional, Sequence, Tuple

from shopmetrics.analytics.anomalies import DailyAnomalyDetector
from shopmetrics.analytics.models import (
    AnalyticsReport,
    Insight,
    InsightSeverity,
    Period,
    PeriodMetrics,
    ProductPeriodMetrics,
    TrendDirection,
    Trends,
)
from shopmetrics.analytics.rules import RULES, AnalysisContext, classify_severity
from shopmetrics.config import get_settings

SEVERITY_GLYPHS = {
    InsightSeverity.CRITICAL: "🔴",
    InsightSeverity.WARNING: "🟡",
    InsightSeverity.POSITIVE: "🟢",
    InsightSeverity.INFO: "ℹ️",
}

__all__ = [
    "classify_severity",
    "classify_trend",
    "rank_insights",
    "generate_insights",
    "generate_report",
    "generate_summary",
    "analyze_daily_trends",
]


def classify_trend(current: float, previous: Optional[float]) -> TrendDirection:
    if not previous:
        return TrendDirection.STABLE
    change = (current - previous) / previous * 100
    if change > 5:
        return TrendDirection.UP
    if change < -5:
        return TrendDirection.DOWN
    return TrendDirection.STABLE


def rank_insights(insights: List[Insight], limit: Optional[int] = None) -> List[Insight]:
    """Largest absolute impact first; stable for ties."""
    limit = limit if limit is not None else get_settings().analytics.max_insights
    return sorted(insights, key=lambda i: abs(i.impact), reverse=True)[:limit]


def generate_insights(ctx: AnalysisContext) -> List[Insight]:
    insights = []
    for rule in RULES:
        insights.extend(rule(ctx))
    return insights


def generate_report(
    current: PeriodMetrics,
    comparison: Optional[PeriodMetrics],
    current_products: List[ProductPeriodMetrics],
    comparison_products: List[ProductPeriodMetrics],
    period: Period,
    comparison_period: Optional[Period] = None,
) -> AnalyticsReport:
    """
    Build a report for ``period``.

    Insights are only produced when comparison metrics are given. Products
    are expected sorted by revenue, descending.
    """
    analytics = get_settings().analytics
    insights = []
    if comparison is not None:
        insights = generate_insights(AnalysisContext(
            current=current,
            previous=comparison,
            current_products=current_products,
            previous_products=comparison_products,
        ))

    return AnalyticsReport(
        period=period,
        comparison_period=comparison_period,
        metrics=current,
        comparison_metrics=comparison,
        insights=rank_insights(insights, analytics.max_insights),
        top_products=current_products[:analytics.top_products],
        trends=Trends(
            revenue=classify_trend(current.revenue, comparison.revenue if comparison else None),
            orders=classify_trend(current.orders, comparison.orders if comparison else None),
            aov=classify_trend(current.aov, comparison.aov if comparison else None),
        ),
    )


def analyze_daily_trends(series: Sequence[Tuple[dt.date, float]]) -> List[Insight]:
    """Spike and dip insights for a (date, revenue) series in date order."""
    analytics = get_settings().analytics
    detector = DailyAnomalyDetector(
        z_threshold=analytics.anomaly_z_threshold,
        min_points=analytics.anomaly_min_points,
    )
    return detector.insights(series)


def generate_summary(report: AnalyticsReport) -> str:
    current, comparison = report.metrics, report.comparison_metrics

    if comparison is not None:
        delta = current.revenue - comparison.revenue
        change = delta / comparison.revenue * 100 if comparison.revenue > 0 else 0.0
        direction = "up" if delta >= 0 else "down"
        summary = f"📊 Revenue is {direction} {abs(change):.1f}% (${abs(delta):.2f})\n\n"
    else:
        summary = f"📊 Total Revenue: ${current.revenue:.2f}\n\n"

    if report.insights:
        summary += "🔍 Key Insights:\n"
        for i, insight in enumerate(report.insights[:3], start=1):
            summary += f"{i}. {SEVERITY_GLYPHS[insight.severity]} {insight.message}\n"

    return summary
