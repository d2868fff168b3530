"""
Insight Rules

Each rule is a pure function of an ``AnalysisContext`` returning zero or more
insights. Rules only run when a comparison period is available; ``RULES``
fixes their order.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Tuple

from shopmetrics.analytics.models import Insight, InsightSeverity, PeriodMetrics, ProductPeriodMetrics

STABLE_REVENUE_PCT = 2.0
BASKET_SIZE_PCT = 10.0
MIX_SHIFT_POINTS = 10.0
CUSTOMER_DROP_PCT = -20.0
HIGH_REFUND_RATE = 5.0
CRITICAL_REFUND_RATE = 10.0
REFUND_RATE_INCREASE = 2.0
DISCOUNT_DEPENDENT_RATE = 50.0
DISCOUNT_BASELINE_RATE = 30.0
PROMO_ACTIVE_RATE = 40.0
PROMO_ENDED_RATE = 20.0
DISCOUNT_SIZE_PCT = 20.0
PRODUCT_MIN_REVENUE_DELTA = 100.0
NEW_PRODUCT_SHARE = 0.10
STOPPED_PRODUCT_SHARE = 0.05
TOP_MOVERS = 3


@dataclass(frozen=True)
class AnalysisContext:
    current: PeriodMetrics
    previous: PeriodMetrics
    current_products: List[ProductPeriodMetrics] = field(default_factory=list)
    previous_products: List[ProductPeriodMetrics] = field(default_factory=list)


def pct_change(current: float, previous: float) -> float:
    """Percentage change, 0 when there is no baseline."""
    return (current - previous) / previous * 100 if previous > 0 else 0.0


def classify_severity(change_pct: float, is_negative: bool) -> InsightSeverity:
    magnitude = abs(change_pct)
    if not is_negative:
        return InsightSeverity.POSITIVE if magnitude > 20 else InsightSeverity.INFO
    if magnitude > 30:
        return InsightSeverity.CRITICAL
    if magnitude > 15:
        return InsightSeverity.WARNING
    return InsightSeverity.INFO


def _signed(value: float) -> str:
    return f"{value:+.1f}%"


# =============================================================================
# REVENUE
# =============================================================================

def revenue_change(ctx: AnalysisContext) -> List[Insight]:
    """
    Revenue delta decomposed into order volume and average order value.

    Small moves produce a single stability note. Otherwise the change itself
    is reported together with whichever factor contributed more:
    ``Δorders × previous AOV`` versus ``ΔAOV × current orders``.
    """
    cur, prev = ctx.current, ctx.previous
    delta = cur.revenue - prev.revenue
    change = pct_change(cur.revenue, prev.revenue)

    if abs(change) < STABLE_REVENUE_PCT:
        return [Insight(
            type="revenue_stable",
            severity=InsightSeverity.INFO,
            message=f"Revenue is stable ({_signed(change)})",
            impact=delta,
        )]

    declined = delta < 0
    insights = [Insight(
        type="revenue_change",
        severity=classify_severity(change, declined),
        message=f"Revenue {'decreased' if declined else 'increased'} {_signed(change)} (${abs(delta):.2f})",
        impact=delta,
        details={"previous": prev.revenue, "current": cur.revenue, "change_pct": round(change, 2)},
    )]

    orders_delta = cur.orders - prev.orders
    orders_change = pct_change(cur.orders, prev.orders)
    aov_delta = cur.aov - prev.aov
    aov_change = pct_change(cur.aov, prev.aov)

    order_contribution = orders_delta * prev.aov
    aov_contribution = aov_delta * cur.orders

    if abs(order_contribution) > abs(aov_contribution):
        insights.append(Insight(
            type="order_volume_driver",
            severity=classify_severity(orders_change, orders_delta < 0),
            message=f"{'Fewer' if orders_delta < 0 else 'More'} orders ({_signed(orders_change)}) is the primary driver",
            impact=order_contribution,
            details={"orders_delta": orders_delta, "orders_change_pct": round(orders_change, 2)},
        ))
    else:
        insights.append(Insight(
            type="aov_driver",
            severity=classify_severity(aov_change, aov_delta < 0),
            message=(
                f"{'Lower' if aov_delta < 0 else 'Higher'} average order value "
                f"({_signed(aov_change)}) is the primary driver"
            ),
            impact=aov_contribution,
            details={
                "aov_delta": round(aov_delta, 2),
                "aov_change_pct": round(aov_change, 2),
                "current_aov": round(cur.aov, 2),
                "previous_aov": round(prev.aov, 2),
            },
        ))
    return insights


# =============================================================================
# ORDERS
# =============================================================================

def basket_size(ctx: AnalysisContext) -> List[Insight]:
    cur, prev = ctx.current, ctx.previous
    cur_ipo, prev_ipo = cur.items_per_order, prev.items_per_order
    change = pct_change(cur_ipo, prev_ipo)
    if abs(change) <= BASKET_SIZE_PCT:
        return []

    value_per_item = cur.aov / cur_ipo if cur_ipo > 0 else 0.0
    return [Insight(
        type="basket_size",
        severity=InsightSeverity.WARNING if change < -BASKET_SIZE_PCT else InsightSeverity.INFO,
        message=f"Customers are buying {'more' if change > 0 else 'fewer'} items per order ({_signed(change)})",
        impact=(cur_ipo - prev_ipo) * cur.orders * value_per_item,
        details={"current_items_per_order": round(cur_ipo, 2), "previous_items_per_order": round(prev_ipo, 2)},
    )]


# =============================================================================
# CUSTOMERS
# =============================================================================

def customer_mix(ctx: AnalysisContext) -> List[Insight]:
    cur, prev = ctx.current, ctx.previous
    cur_ratio = cur.new_customer_orders / cur.orders if cur.orders > 0 else 0.0
    prev_ratio = prev.new_customer_orders / prev.orders if prev.orders > 0 else 0.0
    new_delta = cur.new_customer_orders - prev.new_customer_orders
    returning_delta = cur.returning_customer_orders - prev.returning_customer_orders
    ratios = {"current_new_ratio": round(cur_ratio, 4), "previous_new_ratio": round(prev_ratio, 4)}

    insights = []
    shift = (cur_ratio - prev_ratio) * 100
    if shift > MIX_SHIFT_POINTS:
        insights.append(Insight(
            type="customer_acquisition",
            severity=InsightSeverity.INFO,
            message=f"Higher proportion of new customers ({cur_ratio * 100:.0f}% vs {prev_ratio * 100:.0f}%)",
            impact=new_delta * cur.aov,
            details=ratios,
        ))
    elif shift < -MIX_SHIFT_POINTS:
        insights.append(Insight(
            type="customer_retention",
            severity=InsightSeverity.POSITIVE,
            message=(
                f"Higher proportion of returning customers "
                f"({(1 - cur_ratio) * 100:.0f}% vs {(1 - prev_ratio) * 100:.0f}%)"
            ),
            impact=returning_delta * cur.aov,
            details=ratios,
        ))

    if new_delta < 0 and prev.new_customer_orders > 0:
        drop = new_delta / prev.new_customer_orders * 100
        if drop < CUSTOMER_DROP_PCT:
            insights.append(Insight(
                type="new_customer_decline",
                severity=InsightSeverity.WARNING,
                message=f"New customer acquisition dropped by {abs(drop):.0f}%",
                impact=new_delta * cur.aov,
                details={"current": cur.new_customer_orders, "previous": prev.new_customer_orders},
            ))

    if returning_delta < 0 and prev.returning_customer_orders > 0:
        drop = returning_delta / prev.returning_customer_orders * 100
        if drop < CUSTOMER_DROP_PCT:
            insights.append(Insight(
                type="returning_customer_decline",
                severity=InsightSeverity.WARNING,
                message=f"Returning customer orders dropped by {abs(drop):.0f}%",
                impact=returning_delta * cur.aov,
                details={"current": cur.returning_customer_orders, "previous": prev.returning_customer_orders},
            ))
    return insights


# =============================================================================
# REFUNDS
# =============================================================================

def refund_trend(ctx: AnalysisContext) -> List[Insight]:
    cur, prev = ctx.current, ctx.previous
    cur_rate, prev_rate = cur.refund_rate, prev.refund_rate

    insights = []
    if cur_rate > HIGH_REFUND_RATE:
        insights.append(Insight(
            type="high_refund_rate",
            severity=InsightSeverity.CRITICAL if cur_rate > CRITICAL_REFUND_RATE else InsightSeverity.WARNING,
            message=f"Refund rate is high at {cur_rate:.1f}%",
            impact=-cur.refund_total,
            details={"refund_rate": round(cur_rate, 2), "refund_total": cur.refund_total},
        ))

    if cur_rate - prev_rate > REFUND_RATE_INCREASE:
        insights.append(Insight(
            type="refund_rate_increase",
            severity=InsightSeverity.WARNING,
            message=f"Refund rate increased from {prev_rate:.1f}% to {cur_rate:.1f}%",
            impact=-(cur.refund_total - prev.refund_total),
            details={"current_rate": round(cur_rate, 2), "previous_rate": round(prev_rate, 2)},
        ))
    return insights


# =============================================================================
# DISCOUNTS
# =============================================================================

def discount_usage(ctx: AnalysisContext) -> List[Insight]:
    cur, prev = ctx.current, ctx.previous
    cur_rate, prev_rate = cur.discount_rate, prev.discount_rate

    insights = []
    if cur_rate > DISCOUNT_DEPENDENT_RATE and prev_rate < DISCOUNT_BASELINE_RATE:
        insights.append(Insight(
            type="discount_dependency",
            severity=InsightSeverity.WARNING,
            message=f"Sales became heavily discount-dependent ({cur_rate:.0f}% of orders used discounts)",
            impact=-cur.discount_total,
            details={"current_rate": round(cur_rate, 2), "previous_rate": round(prev_rate, 2)},
        ))

    if prev_rate > PROMO_ACTIVE_RATE and cur_rate < PROMO_ENDED_RATE:
        discount_change = prev.discount_total - cur.discount_total
        insights.append(Insight(
            type="promo_ended",
            severity=InsightSeverity.INFO,
            message=(
                f"A promotion appears to have ended "
                f"(discount usage dropped from {prev_rate:.0f}% to {cur_rate:.0f}%)"
            ),
            impact=discount_change,
            details={"discount_change": round(discount_change, 2)},
        ))

    cur_avg, prev_avg = cur.avg_discount, prev.avg_discount
    if prev_avg > 0:
        change = pct_change(cur_avg, prev_avg)
        if abs(change) > DISCOUNT_SIZE_PCT:
            insights.append(Insight(
                type="discount_size_change",
                severity=InsightSeverity.INFO,
                message=(
                    f"Average discount per order is {'larger' if change > 0 else 'smaller'} "
                    f"(${cur_avg:.2f} vs ${prev_avg:.2f})"
                ),
                impact=(cur_avg - prev_avg) * cur.orders_with_discount,
            ))
    return insights


# =============================================================================
# PRODUCTS
# =============================================================================

@dataclass(frozen=True)
class ProductChange:
    product_id: str
    title: str
    current_revenue: float
    previous_revenue: float

    @property
    def delta(self) -> float:
        return self.current_revenue - self.previous_revenue

    def to_dict(self) -> Dict[str, float]:
        return {
            "product": self.title,
            "delta": round(self.delta, 2),
            "previous_revenue": round(self.previous_revenue, 2),
            "current_revenue": round(self.current_revenue, 2),
        }


def product_changes(
    current: List[ProductPeriodMetrics],
    previous: List[ProductPeriodMetrics],
) -> List[ProductChange]:
    """Per-product revenue deltas, including products that stopped selling, largest |delta| first."""
    previous_by_id = {p.product_id: p for p in previous}
    current_ids = {p.product_id for p in current}

    changes = [
        ProductChange(
            product_id=p.product_id,
            title=p.title,
            current_revenue=p.revenue,
            previous_revenue=previous_by_id[p.product_id].revenue if p.product_id in previous_by_id else 0.0,
        )
        for p in current
    ]
    changes.extend(
        ProductChange(product_id=p.product_id, title=p.title, current_revenue=0.0, previous_revenue=p.revenue)
        for p in previous
        if p.product_id not in current_ids
    )
    changes.sort(key=lambda c: abs(c.delta), reverse=True)
    return changes


def product_contribution(ctx: AnalysisContext) -> List[Insight]:
    revenue_delta = ctx.current.revenue - ctx.previous.revenue
    if abs(revenue_delta) < PRODUCT_MIN_REVENUE_DELTA:
        return []

    changes = product_changes(ctx.current_products, ctx.previous_products)
    insights = []

    if revenue_delta < 0:
        decliners = [c for c in changes if c.delta < 0][:TOP_MOVERS]
        if decliners:
            total = sum(abs(c.delta) for c in decliners)
            share = min(total / abs(revenue_delta) * 100, 100)
            insights.append(Insight(
                type="product_decline",
                severity=InsightSeverity.WARNING,
                message=f"Top declining products account for {share:.0f}% of revenue drop",
                impact=-total,
                details={"products": [c.to_dict() for c in decliners]},
            ))
    else:
        growers = [c for c in changes if c.delta > 0][:TOP_MOVERS]
        if growers:
            total = sum(c.delta for c in growers)
            share = min(total / revenue_delta * 100, 100)
            insights.append(Insight(
                type="product_growth",
                severity=InsightSeverity.POSITIVE,
                message=f"Top growing products drove {share:.0f}% of revenue increase",
                impact=total,
                details={"products": [c.to_dict() for c in growers]},
            ))

    new_products = [c for c in changes if c.previous_revenue == 0 and c.current_revenue > 0]
    new_revenue = sum(c.current_revenue for c in new_products)
    if new_products and new_revenue > ctx.current.revenue * NEW_PRODUCT_SHARE:
        share = new_revenue / ctx.current.revenue * 100 if ctx.current.revenue > 0 else 100.0
        insights.append(Insight(
            type="new_products",
            severity=InsightSeverity.POSITIVE,
            message=f"{len(new_products)} new product(s) contributed ${new_revenue:.2f} ({share:.0f}% of revenue)",
            impact=new_revenue,
            details={"products": [
                {"product": c.title, "revenue": round(c.current_revenue, 2)} for c in new_products[:5]
            ]},
        ))

    stopped = [c for c in changes if c.current_revenue == 0 and c.previous_revenue > 0]
    lost_revenue = sum(c.previous_revenue for c in stopped)
    if stopped and lost_revenue > ctx.previous.revenue * STOPPED_PRODUCT_SHARE:
        insights.append(Insight(
            type="stopped_products",
            severity=InsightSeverity.WARNING,
            message=f"{len(stopped)} product(s) had no sales this period (previously ${lost_revenue:.2f})",
            impact=-lost_revenue,
            details={"products": [
                {"product": c.title, "lost_revenue": round(c.previous_revenue, 2)} for c in stopped[:5]
            ]},
        ))
    return insights


Rule = Callable[[AnalysisContext], List[Insight]]

RULES: Tuple[Rule, ...] = (
    revenue_change,
    basket_size,
    customer_mix,
    refund_trend,
    discount_usage,
    product_contribution,
)
