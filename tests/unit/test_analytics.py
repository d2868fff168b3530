"""
Unit Tests - Insight Engine

Covers the comparison rules, ranking, anomaly detection and summaries.
"""
import datetime as dt
import math

import pytest

from shopmetrics.analytics import DailyAnomalyDetector
from shopmetrics.analytics.engine import (
    classify_trend,
    generate_report,
    generate_summary,
    rank_insights,
)
from shopmetrics.analytics.models import (
    Insight,
    InsightSeverity,
    Period,
    PeriodMetrics,
    ProductPeriodMetrics,
    TrendDirection,
)
from shopmetrics.analytics.rules import (
    AnalysisContext,
    classify_severity,
    customer_mix,
    discount_usage,
    pct_change,
    product_contribution,
    refund_trend,
    revenue_change,
)

PERIOD = Period(dt.date(2024, 3, 1), dt.date(2024, 3, 31))


def metrics(revenue, orders, **kwargs) -> PeriodMetrics:
    return PeriodMetrics(revenue=revenue, orders=orders, aov=revenue / orders if orders else 0.0, **kwargs)


class TestRevenueRules:

    def test_order_volume_is_primary_driver(self):
        current, previous = metrics(10000, 120), metrics(8000, 100)

        report = generate_report(current, previous, [], [], PERIOD)

        assert [i.type for i in report.insights] == ["revenue_change", "order_volume_driver"]
        change, driver = report.insights
        assert change.message == "Revenue increased +25.0% ($2000.00)"
        assert change.severity is InsightSeverity.POSITIVE
        assert change.impact == pytest.approx(2000)
        assert driver.impact == pytest.approx(1600)
        assert driver.message == "More orders (+20.0%) is the primary driver"

    def test_aov_driver(self):
        insights = revenue_change(AnalysisContext(metrics(6000, 100), metrics(8000, 100)))

        assert [i.type for i in insights] == ["revenue_change", "aov_driver"]
        assert insights[0].message == "Revenue decreased -25.0% ($2000.00)"
        assert insights[1].message.startswith("Lower average order value")

    def test_stable_revenue(self):
        insights = revenue_change(AnalysisContext(metrics(10100, 100), metrics(10000, 100)))

        assert [i.type for i in insights] == ["revenue_stable"]
        assert insights[0].message == "Revenue is stable (+1.0%)"

    def test_zero_previous_revenue_is_safe(self):
        current, previous = metrics(500, 5, items_sold=10), PeriodMetrics()

        report = generate_report(current, previous, [], [], PERIOD)

        assert pct_change(500, 0) == 0.0
        assert all(math.isfinite(i.impact) for i in report.insights)
        assert "revenue_stable" in {i.type for i in report.insights}

    def test_empty_periods(self):
        report = generate_report(PeriodMetrics(), PeriodMetrics(), [], [], PERIOD)

        assert [i.type for i in report.insights] == ["revenue_stable"]
        assert report.trends.revenue is TrendDirection.STABLE


class TestCustomerAndRefundRules:

    def test_acquisition_shift(self):
        current = metrics(1000, 10, new_customer_orders=8, returning_customer_orders=2)
        previous = metrics(1000, 10, new_customer_orders=4, returning_customer_orders=6)

        types = [i.type for i in customer_mix(AnalysisContext(current, previous))]

        assert types == ["customer_acquisition", "returning_customer_decline"]

    def test_retention_shift(self):
        current = metrics(1000, 10, new_customer_orders=1, returning_customer_orders=9)
        previous = metrics(1000, 10, new_customer_orders=5, returning_customer_orders=5)

        insights = customer_mix(AnalysisContext(current, previous))

        assert insights[0].type == "customer_retention"
        assert insights[0].severity is InsightSeverity.POSITIVE
        assert insights[1].message == "New customer acquisition dropped by 80%"

    def test_high_refund_rate(self):
        current = metrics(1000, 10, refund_total=120)
        previous = metrics(1000, 10, refund_total=20)

        insights = refund_trend(AnalysisContext(current, previous))

        assert [i.type for i in insights] == ["high_refund_rate", "refund_rate_increase"]
        assert insights[0].severity is InsightSeverity.CRITICAL
        assert insights[0].message == "Refund rate is high at 12.0%"
        assert insights[1].impact == pytest.approx(-100)

    def test_discount_dependency_and_promo_end(self):
        dependent = discount_usage(AnalysisContext(
            metrics(1000, 10, orders_with_discount=6, discount_total=60),
            metrics(1000, 10, orders_with_discount=2, discount_total=20),
        ))
        ended = discount_usage(AnalysisContext(
            metrics(1000, 10, orders_with_discount=1, discount_total=10),
            metrics(1000, 10, orders_with_discount=5, discount_total=50),
        ))

        assert [i.type for i in dependent] == ["discount_dependency"]
        assert [i.type for i in ended] == ["promo_ended"]
        assert ended[0].impact == pytest.approx(40)


class TestProductRules:
    """Tests for product-level contribution insights"""

    def test_growth_new_and_stopped(self):
        ctx = AnalysisContext(
            current=metrics(1500, 15),
            previous=metrics(1000, 10),
            current_products=[
                ProductPeriodMetrics("a", "Mug", revenue=1100),
                ProductPeriodMetrics("c", "Poster", revenue=400),
            ],
            previous_products=[
                ProductPeriodMetrics("a", "Mug", revenue=600),
                ProductPeriodMetrics("b", "Cap", revenue=400),
            ],
        )

        insights = {i.type: i for i in product_contribution(ctx)}

        assert set(insights) == {"product_growth", "new_products", "stopped_products"}
        assert insights["product_growth"].message == "Top growing products drove 100% of revenue increase"
        assert [p["product"] for p in insights["product_growth"].details["products"]] == ["Mug", "Poster"]
        assert insights["new_products"].message == "1 new product(s) contributed $400.00 (27% of revenue)"
        assert insights["stopped_products"].impact == pytest.approx(-400)

    def test_decline(self):
        ctx = AnalysisContext(
            current=metrics(800, 8),
            previous=metrics(1000, 10),
            current_products=[ProductPeriodMetrics("a", "Mug", revenue=700)],
            previous_products=[ProductPeriodMetrics("a", "Mug", revenue=1000)],
        )

        [decline] = product_contribution(ctx)

        assert decline.type == "product_decline"
        assert decline.message == "Top declining products account for 100% of revenue drop"
        assert decline.details["products"][0]["delta"] == -300

    def test_small_revenue_moves_are_ignored(self):
        ctx = AnalysisContext(
            current=metrics(1050, 10),
            previous=metrics(1000, 10),
            current_products=[ProductPeriodMetrics("a", "Mug", revenue=1050)],
            previous_products=[ProductPeriodMetrics("b", "Cap", revenue=1000)],
        )
        assert product_contribution(ctx) == []


class TestClassification:

    @pytest.mark.parametrize("change,negative,expected", [
        (25, False, InsightSeverity.POSITIVE),
        (20, False, InsightSeverity.INFO),
        (35, True, InsightSeverity.CRITICAL),
        (20, True, InsightSeverity.WARNING),
        (10, True, InsightSeverity.INFO),
    ])
    def test_severity(self, change, negative, expected):
        assert classify_severity(change, negative) is expected

    @pytest.mark.parametrize("current,previous,expected", [
        (110, 100, TrendDirection.UP),
        (90, 100, TrendDirection.DOWN),
        (103, 100, TrendDirection.STABLE),
        (50, 0, TrendDirection.STABLE),
        (50, None, TrendDirection.STABLE),
    ])
    def test_trend(self, current, previous, expected):
        assert classify_trend(current, previous) is expected

    def test_rank_by_absolute_impact(self):
        insights = [
            Insight("a", InsightSeverity.INFO, "a", 10),
            Insight("b", InsightSeverity.WARNING, "b", -50),
            Insight("c", InsightSeverity.INFO, "c", 20),
        ]
        assert [i.type for i in rank_insights(insights, limit=2)] == ["b", "c"]


class TestDailyAnomalyDetector:

    def test_single_spike(self):
        days = [dt.date(2024, 3, d) for d in range(1, 6)]
        series = list(zip(days, [100, 100, 100, 100, 1000]))

        [anomaly] = DailyAnomalyDetector().detect(series)

        assert anomaly.date == dt.date(2024, 3, 5)
        assert anomaly.is_spike
        assert anomaly.z_score == pytest.approx(2.0)

    def test_spike_insight(self):
        days = [dt.date(2024, 3, d) for d in range(1, 6)]
        [insight] = DailyAnomalyDetector().insights(list(zip(days, [100, 100, 100, 100, 1000])))

        assert insight.type == "daily_spike"
        assert insight.severity is InsightSeverity.POSITIVE
        assert insight.message == "Unusual spike on 2024-03-05: $1000.00 (+257% vs average)"
        assert insight.impact == pytest.approx(720)

    def test_dip(self):
        days = [dt.date(2024, 3, d) for d in range(1, 6)]
        [insight] = DailyAnomalyDetector().insights(list(zip(days, [1000, 1000, 1000, 1000, 100])))

        assert insight.type == "daily_dip"
        assert insight.severity is InsightSeverity.WARNING

    def test_too_few_points_or_flat_series(self):
        detector = DailyAnomalyDetector()
        day = dt.date(2024, 3, 1)

        assert detector.detect([(day, 100), (day, 1000)]) == []
        assert detector.detect([(day, 100)] * 5) == []


class TestSummary:

    def test_with_comparison(self):
        report = generate_report(metrics(10000, 120), metrics(8000, 100), [], [], PERIOD)

        assert generate_summary(report) == (
            "📊 Revenue is up 25.0% ($2000.00)\n\n"
            "🔍 Key Insights:\n"
            "1. 🟢 Revenue increased +25.0% ($2000.00)\n"
            "2. ℹ️ More orders (+20.0%) is the primary driver\n"
        )

    def test_without_comparison(self):
        report = generate_report(metrics(500, 5), None, [], [], PERIOD)

        assert report.insights == []
        assert generate_summary(report) == "📊 Total Revenue: $500.00\n\n"

    def test_report_to_dict(self):
        report = generate_report(
            metrics(10000, 120), metrics(8000, 100),
            [ProductPeriodMetrics("a", "Mug", units_sold=4, revenue=80, units_refunded=1, refund_amount=20)],
            [], PERIOD,
        )

        data = report.to_dict()

        assert data["period"] == {"start": "2024-03-01", "end": "2024-03-31"}
        assert data["trends"] == {"revenue": "up", "orders": "up", "aov": "stable"}
        assert data["top_products"][0]["net_revenue"] == 60
        assert data["top_products"][0]["refund_rate"] == 25
        assert data["insights"][0]["severity"] == "positive"
