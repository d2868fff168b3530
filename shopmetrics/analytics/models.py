"""
Analytics value types.

All money here is in dollars (floats); conversion from stored cents happens
when periods are reduced.
"""

import datetime as dt
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class InsightSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"
    POSITIVE = "positive"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


@dataclass(frozen=True)
class Period:
    start: dt.date
    end: dt.date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class PeriodMetrics:
    """Reduced metrics for a date range. ``revenue`` is net of refunds and cancellations."""
    revenue: float = 0.0
    gross_revenue: float = 0.0
    orders: int = 0
    aov: float = 0.0
    new_customer_orders: int = 0
    returning_customer_orders: int = 0
    items_sold: int = 0
    discount_total: float = 0.0
    orders_with_discount: int = 0
    refund_total: float = 0.0
    refund_count: int = 0
    cancelled_orders: int = 0
    cancelled_revenue: float = 0.0
    paid_orders: int = 0
    pending_orders: int = 0
    refunded_orders: int = 0
    partially_refunded_orders: int = 0
    fulfilled_orders: int = 0
    unfulfilled_orders: int = 0
    partially_fulfilled_orders: int = 0

    @property
    def items_per_order(self) -> float:
        return self.items_sold / self.orders if self.orders > 0 else 0.0

    @property
    def new_customer_ratio(self) -> float:
        total = self.new_customer_orders + self.returning_customer_orders
        return self.new_customer_orders / total if total > 0 else 0.0

    @property
    def refund_rate(self) -> float:
        """Refund total as a percentage of revenue"""
        return self.refund_total / self.revenue * 100 if self.revenue > 0 else 0.0

    @property
    def discount_rate(self) -> float:
        """Share of orders carrying a discount, in percent"""
        return self.orders_with_discount / self.orders * 100 if self.orders > 0 else 0.0

    @property
    def avg_discount(self) -> float:
        return self.discount_total / self.orders_with_discount if self.orders_with_discount > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProductPeriodMetrics:
    product_id: str
    title: str
    units_sold: int = 0
    revenue: float = 0.0
    units_refunded: int = 0
    refund_amount: float = 0.0

    @property
    def net_revenue(self) -> float:
        return self.revenue - self.refund_amount

    @property
    def refund_rate(self) -> float:
        return self.units_refunded / self.units_sold * 100 if self.units_sold > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["net_revenue"] = round(self.net_revenue, 2)
        data["refund_rate"] = round(self.refund_rate, 2)
        return data


@dataclass
class Insight:
    type: str
    severity: InsightSeverity
    message: str
    impact: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "message": self.message,
            "impact": round(self.impact, 2),
            "details": self.details,
        }


@dataclass
class Trends:
    revenue: TrendDirection = TrendDirection.STABLE
    orders: TrendDirection = TrendDirection.STABLE
    aov: TrendDirection = TrendDirection.STABLE

    def to_dict(self) -> Dict[str, str]:
        return {"revenue": self.revenue.value, "orders": self.orders.value, "aov": self.aov.value}


@dataclass
class AnalyticsReport:
    period: Period
    metrics: PeriodMetrics
    insights: List[Insight]
    top_products: List[ProductPeriodMetrics]
    trends: Trends
    comparison_period: Optional[Period] = None
    comparison_metrics: Optional[PeriodMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period.to_dict(),
            "comparison_period": self.comparison_period.to_dict() if self.comparison_period else None,
            "metrics": self.metrics.to_dict(),
            "comparison_metrics": self.comparison_metrics.to_dict() if self.comparison_metrics else None,
            "insights": [insight.to_dict() for insight in self.insights],
            "top_products": [product.to_dict() for product in self.top_products],
            "trends": self.trends.to_dict(),
        }
