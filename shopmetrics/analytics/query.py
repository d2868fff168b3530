"""
Metrics Query

Read-side facade over the aggregate store. Reduces stored daily rows (cents)
into dollar-denominated period metrics and builds analytics reports.
"""

import datetime as dt
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from shopmetrics.analytics.engine import (
    analyze_daily_trends,
    classify_trend,
    generate_report,
    generate_summary,
    rank_insights,
)
from shopmetrics.analytics.models import AnalyticsReport, Period, PeriodMetrics, ProductPeriodMetrics
from shopmetrics.analytics.periods import get_comparison_range, get_date_range
from shopmetrics.config import get_settings
from shopmetrics.database.models import DailyMetrics
from shopmetrics.store.base import AggregateStore
from shopmetrics.store.money import to_currency

logger = structlog.get_logger(__name__)

_COUNT_FIELDS = (
    "new_customer_orders",
    "returning_customer_orders",
    "orders_with_discount",
    "refund_count",
    "cancelled_orders",
    "paid_orders",
    "pending_orders",
    "refunded_orders",
    "partially_refunded_orders",
    "fulfilled_orders",
    "unfulfilled_orders",
    "partially_fulfilled_orders",
)


def net_revenue_cents(row: DailyMetrics) -> int:
    """Gross revenue less cancelled revenue and refunds."""
    return row.total_revenue - row.cancelled_revenue - row.total_refunds


def aggregate_to_period(daily: List[DailyMetrics]) -> PeriodMetrics:
    """
    Reduce daily rows into one period.

    ``revenue`` is net revenue; ``aov`` is net revenue per order.
    """
    gross = sum(row.total_revenue for row in daily)
    cancelled = sum(row.cancelled_revenue for row in daily)
    refunds = sum(row.total_refunds for row in daily)
    orders = sum(row.total_orders for row in daily)
    net = gross - cancelled - refunds

    counts = {name: sum(getattr(row, name) for row in daily) for name in _COUNT_FIELDS}
    return PeriodMetrics(
        revenue=to_currency(net),
        gross_revenue=to_currency(gross),
        orders=orders,
        aov=to_currency(net) / orders if orders > 0 else 0.0,
        items_sold=sum(row.total_items_sold for row in daily),
        discount_total=to_currency(sum(row.total_discounts for row in daily)),
        refund_total=to_currency(refunds),
        cancelled_revenue=to_currency(cancelled),
        **counts,
    )


def daily_to_dict(row: DailyMetrics) -> Dict[str, Any]:
    return {
        "date": row.date.isoformat(),
        "total_revenue": to_currency(row.total_revenue),
        "net_revenue": to_currency(net_revenue_cents(row)),
        "total_orders": row.total_orders,
        "new_customer_orders": row.new_customer_orders,
        "returning_customer_orders": row.returning_customer_orders,
        "total_items_sold": row.total_items_sold,
        "total_discounts": to_currency(row.total_discounts),
        "orders_with_discount": row.orders_with_discount,
        "total_refunds": to_currency(row.total_refunds),
        "refund_count": row.refund_count,
        "cancelled_orders": row.cancelled_orders,
        "cancelled_revenue": to_currency(row.cancelled_revenue),
        "aov": to_currency(row.total_revenue) / row.total_orders if row.total_orders else 0.0,
    }


@dataclass
class ReportBundle:
    """A report plus the pieces the HTTP layer renders next to it"""
    report: AnalyticsReport
    summary: str
    daily: List[DailyMetrics] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.report.to_dict()
        data["summary"] = self.summary
        data["daily_data"] = [daily_to_dict(row) for row in self.daily]
        return data


class MetricsQuery:
    """
    Read queries for one store.

    Example:
        query = MetricsQuery(store)
        bundle = await query.build_report(shop, get_date_range("last30days"))
    """

    def __init__(self, store: AggregateStore):
        self.store = store

    async def get_daily_range(self, shop: str, period: Period) -> List[DailyMetrics]:
        return await self.store.get_daily_metrics(shop, period.start, period.end)

    async def get_period_metrics(self, shop: str, period: Period) -> PeriodMetrics:
        return aggregate_to_period(await self.get_daily_range(shop, period))

    async def get_products(self, shop: str, period: Period) -> List[ProductPeriodMetrics]:
        """Product rows grouped by product id, highest revenue first."""
        grouped: Dict[str, Dict[str, Any]] = {}
        for row in await self.store.get_product_metrics(shop, period.start, period.end):
            entry = grouped.setdefault(row.product_id, {
                "title": "",
                "units_sold": 0,
                "revenue": 0,
                "units_refunded": 0,
                "refund_amount": 0,
            })
            if not entry["title"] and row.product_title:
                entry["title"] = row.product_title
            entry["units_sold"] += row.units_sold
            entry["revenue"] += row.revenue
            entry["units_refunded"] += row.units_refunded
            entry["refund_amount"] += row.refund_amount

        products = [
            ProductPeriodMetrics(
                product_id=product_id,
                title=entry["title"],
                units_sold=entry["units_sold"],
                revenue=to_currency(entry["revenue"]),
                units_refunded=entry["units_refunded"],
                refund_amount=to_currency(entry["refund_amount"]),
            )
            for product_id, entry in grouped.items()
        ]
        products.sort(key=lambda p: p.revenue, reverse=True)
        return products

    async def get_breakdowns(
        self,
        shop: str,
        period: Period,
        breakdown_type: Optional[str] = None,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Breakdown values summed over the period, busiest first, keyed by breakdown type."""
        totals: Dict[str, Dict[str, List[int]]] = defaultdict(lambda: defaultdict(lambda: [0, 0]))
        for row in await self.store.get_order_breakdown(shop, period.start, period.end, breakdown_type):
            acc = totals[row.breakdown_type][row.breakdown_value]
            acc[0] += row.order_count
            acc[1] += row.revenue

        result = {}
        for kind, values in totals.items():
            entries = [
                {"value": value, "order_count": count, "revenue": to_currency(revenue)}
                for value, (count, revenue) in values.items()
            ]
            entries.sort(key=lambda e: e["order_count"], reverse=True)
            result[kind] = entries
        return result

    async def get_hourly_distribution(self, shop: str, period: Period) -> List[Dict[str, Any]]:
        """All 24 hours, summed across the period's dates."""
        hours = {hour: [0, 0, 0] for hour in range(24)}
        for row in await self.store.get_hourly_metrics(shop, period.start, period.end):
            acc = hours[row.hour]
            acc[0] += row.order_count
            acc[1] += row.revenue
            acc[2] += row.items_sold
        return [
            {"hour": hour, "order_count": count, "revenue": to_currency(revenue), "items_sold": items}
            for hour, (count, revenue, items) in hours.items()
        ]

    async def get_customer_growth(self, shop: str, period: Period) -> Dict[str, Any]:
        daily = await self.store.get_customer_metrics(shop, period.start, period.end)
        return {
            "total_new": sum(d.new_customers for d in daily),
            "total_returning": sum(d.returning_customers for d in daily),
            "daily": [
                {
                    "date": d.date.isoformat(),
                    "new_customers": d.new_customers,
                    "returning_customers": d.returning_customers,
                }
                for d in daily
            ],
        }

    async def get_customer_value_stats(self, shop: str) -> Dict[str, Any]:
        customers = await self.store.list_customer_lifetimes(shop)
        total = len(customers)
        repeat = sum(1 for c in customers if c.is_repeat_customer)
        spent = sum(c.total_spent for c in customers)
        return {
            "total_customers": total,
            "repeat_customers": repeat,
            "one_time_customers": total - repeat,
            "avg_lifetime_value": to_currency(spent) / total if total else 0.0,
            "total_revenue": to_currency(spent),
            "avg_orders_per_customer": sum(c.total_orders for c in customers) / total if total else 0.0,
        }

    @staticmethod
    def _by_reason(rows) -> List[Dict[str, Any]]:
        grouped: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        for row in rows:
            acc = grouped[row.reason or "unspecified"]
            acc[0] += 1
            acc[1] += row.amount
        result = [
            {"reason": reason, "count": count, "amount": to_currency(amount)}
            for reason, (count, amount) in grouped.items()
        ]
        result.sort(key=lambda r: r["amount"], reverse=True)
        return result

    async def get_refunds_by_reason(self, shop: str, period: Period) -> List[Dict[str, Any]]:
        return self._by_reason(await self.store.get_refund_details(shop, period.start, period.end))

    async def get_cancellations_by_reason(self, shop: str, period: Period) -> List[Dict[str, Any]]:
        return self._by_reason(await self.store.get_cancellation_details(shop, period.start, period.end))

    async def get_customer_geography(self, shop: str) -> List[Dict[str, Any]]:
        rows = sorted(await self.store.get_customer_geography(shop), key=lambda r: r.customer_count, reverse=True)
        return [
            {
                "country": row.country,
                "country_code": row.country_code,
                "customer_count": row.customer_count,
                "total_spent": to_currency(row.total_spent),
                "total_orders": row.total_orders,
            }
            for row in rows
        ]

    async def get_events(self, shop: str, period: Period) -> List[Dict[str, Any]]:
        return [
            {
                "id": event.id,
                "date": event.date.isoformat(),
                "event_type": event.event_type,
                "description": event.description,
                "impact_amount": to_currency(event.impact_amount),
                "metadata": event.event_metadata or {},
            }
            for event in await self.store.get_events(shop, period.start, period.end)
        ]

    async def build_report(self, shop: str, period: Period, compare: bool = True) -> ReportBundle:
        """
        Report for ``period``, compared against the equal-length period before it.

        Daily spike/dip insights are merged in when the period has at least
        the configured minimum of daily rows.
        """
        analytics = get_settings().analytics
        daily = await self.get_daily_range(shop, period)
        current = aggregate_to_period(daily)
        products = await self.get_products(shop, period)

        comparison = None
        comparison_products: List[ProductPeriodMetrics] = []
        comparison_period = None
        if compare:
            comparison_period = get_comparison_range(period)
            comparison = await self.get_period_metrics(shop, comparison_period)
            comparison_products = await self.get_products(shop, comparison_period)

        report = generate_report(current, comparison, products, comparison_products, period, comparison_period)

        if len(daily) >= analytics.anomaly_min_points:
            series = [(row.date, to_currency(net_revenue_cents(row))) for row in daily]
            report.insights = rank_insights(report.insights + analyze_daily_trends(series), analytics.max_insights)

        logger.debug(
            "Built report",
            shop=shop,
            start=period.start.isoformat(),
            end=period.end.isoformat(),
            insights=len(report.insights),
        )
        return ReportBundle(report=report, summary=generate_summary(report), daily=daily)

    async def get_dashboard_summary(self, shop: str, today: Optional[dt.date] = None) -> Dict[str, Any]:
        """Today vs yesterday and this month vs last month."""
        today = today or dt.date.today()
        today_metrics = await self.get_period_metrics(shop, get_date_range("today", today))
        yesterday_metrics = await self.get_period_metrics(shop, get_date_range("yesterday", today))
        this_month = await self.get_period_metrics(shop, get_date_range("thisMonth", today))
        last_month = await self.get_period_metrics(shop, get_date_range("lastMonth", today))

        def change(cur: float, prev: float) -> float:
            return (cur - prev) / prev * 100 if prev > 0 else 0.0

        daily_change = change(today_metrics.gross_revenue, yesterday_metrics.gross_revenue)
        monthly_change = change(this_month.revenue, last_month.revenue)
        return {
            "today": {
                "revenue": today_metrics.gross_revenue,
                "orders": today_metrics.orders,
                "change": round(daily_change, 2),
            },
            "this_month": {
                "revenue": this_month.revenue,
                "orders": this_month.orders,
                "aov": round(this_month.aov, 2),
                "change": round(monthly_change, 2),
            },
            "trends": {
                "daily": classify_trend(today_metrics.gross_revenue, yesterday_metrics.gross_revenue).value,
                "monthly": classify_trend(this_month.revenue, last_month.revenue).value,
            },
        }
