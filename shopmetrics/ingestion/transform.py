"""
Order Transformation

Fans a normalized order out into every aggregate table. Webhook ingestion and
reconciliation both go through ``OrderTransformer`` so the two paths produce
identical aggregates.

Every effect is guarded by a per-event marker in the store:

- order creation effects by the applied-order marker (shop, order id)
- refund effects by the refund detail row (shop, refund id)
- cancellation effects by the cancellation detail row (shop, order id)

so replaying any order, refund or cancellation is a no-op. Each marker is
written in the same store transaction as its effects. Refunds are booked on
the refund date; cancellations offset the order creation date and take back
the status counters creation booked.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from shopmetrics.config import get_settings
from shopmetrics.database.models import BreakdownType, ShopEventType
from shopmetrics.ingestion.normalize import NormalizedOrder, Refund
from shopmetrics.store.base import AggregateStore, DEFAULT_PRODUCT_ID, DEFAULT_VARIANT_TITLE
from shopmetrics.store.deltas import (
    BreakdownDelta,
    CancellationDetailRecord,
    CustomerMetricsDelta,
    CustomerOrderUpdate,
    DailyMetricsDelta,
    HourlyMetricsDelta,
    ProductMetricsDelta,
    RefundDetailRecord,
    ShopEventRecord,
)
from shopmetrics.store.money import to_currency, to_minor_units

logger = structlog.get_logger(__name__)

PAID_STATUSES = frozenset({"paid", "partially_paid"})
PENDING_STATUSES = frozenset({"pending", "authorized"})
PARTIALLY_FULFILLED_STATUSES = frozenset({"partially_fulfilled", "partial"})

UNKNOWN_CHANNEL = "unknown"
UNKNOWN_PAYMENT_METHOD = "unknown"
UNKNOWN_COUNTRY = "Unknown"
WITH_DISCOUNT = "with_discount"
WITHOUT_DISCOUNT = "without_discount"


# =============================================================================
# CLASSIFICATION
# =============================================================================

def financial_status(order: NormalizedOrder) -> str:
    return order.financial_status or "pending"


def fulfillment_status(order: NormalizedOrder) -> str:
    return order.fulfillment_status or "unfulfilled"


def is_new_customer(order: NormalizedOrder) -> bool:
    """Point-in-time classification; an order without a customer counts as new."""
    if order.customer is None:
        return True
    return order.customer.orders_count <= 1


def status_delta(financial: str, fulfillment: str, sign: int = 1) -> DailyMetricsDelta:
    """Paid/pending/fulfillment counters of a live order; ``sign=-1`` takes them back."""
    return DailyMetricsDelta(
        paid_orders=sign if financial in PAID_STATUSES else 0,
        pending_orders=sign if financial in PENDING_STATUSES else 0,
        fulfilled_orders=sign if fulfillment == "fulfilled" else 0,
        unfulfilled_orders=sign if fulfillment == "unfulfilled" else 0,
        partially_fulfilled_orders=sign if fulfillment in PARTIALLY_FULFILLED_STATUSES else 0,
    )


def order_daily_delta(order: NormalizedOrder, cancelled: Optional[bool] = None) -> DailyMetricsDelta:
    """
    Creation-time daily delta.

    Gross revenue is always included. Cancelled orders are kept out of the
    paid/pending/fulfilled/unfulfilled/partially fulfilled counters;
    ``cancelled`` overrides ``order.is_cancelled`` when the cancellation is
    already known from elsewhere. Cancellation and refund amounts are booked
    by their own events.
    """
    if cancelled is None:
        cancelled = order.is_cancelled
    new = is_new_customer(order)
    financial = financial_status(order)

    delta = DailyMetricsDelta(
        total_revenue=order.total_price,
        total_orders=1,
        new_customer_orders=1 if new else 0,
        returning_customer_orders=0 if new else 1,
        total_items_sold=order.items_sold,
        total_discounts=order.total_discounts,
        orders_with_discount=1 if order.total_discounts > 0 else 0,
        refunded_orders=1 if financial == "refunded" else 0,
        partially_refunded_orders=1 if financial == "partially_refunded" else 0,
    )
    if cancelled:
        return delta
    return delta + status_delta(financial, fulfillment_status(order))


def order_breakdowns(order: NormalizedOrder):
    """(breakdown type, value) pairs for the six breakdown dimensions."""
    return [
        (BreakdownType.CHANNEL.value, order.source_name or UNKNOWN_CHANNEL),
        (BreakdownType.PAYMENT_METHOD.value,
         order.payment_gateways[0] if order.payment_gateways else UNKNOWN_PAYMENT_METHOD),
        (BreakdownType.FULFILLMENT_STATUS.value, fulfillment_status(order)),
        (BreakdownType.FINANCIAL_STATUS.value, financial_status(order)),
        (BreakdownType.DISCOUNT.value, WITH_DISCOUNT if order.total_discounts > 0 else WITHOUT_DISCOUNT),
        (BreakdownType.COUNTRY.value, order.shipping_country or UNKNOWN_COUNTRY),
    ]


# =============================================================================
# TRANSFORMER
# =============================================================================

@dataclass(frozen=True)
class EventThresholds:
    """Notable-event thresholds in cents"""
    large_order: int
    significant_refund: int

    @classmethod
    def from_settings(cls) -> "EventThresholds":
        events = get_settings().events
        return cls(
            large_order=to_minor_units(events.large_order_amount),
            significant_refund=to_minor_units(events.significant_refund_amount),
        )


@dataclass(frozen=True)
class OrderOutcome:
    """What an ``apply_order`` call actually changed"""
    order_applied: bool
    refunds_applied: int
    cancellation_applied: bool

    @property
    def changed(self) -> bool:
        return self.order_applied or self.refunds_applied > 0 or self.cancellation_applied


class OrderTransformer:
    """
    Applies normalized orders, refunds and cancellations to an aggregate store.

    Example:
        transformer = OrderTransformer(store)
        await transformer.apply_order(shop, order_from_webhook(payload))
    """

    def __init__(self, store: AggregateStore, thresholds: Optional[EventThresholds] = None):
        self.store = store
        self.thresholds = thresholds or EventThresholds.from_settings()

    async def apply_order(self, shop: str, order: NormalizedOrder) -> OrderOutcome:
        """Apply creation effects once, then any refunds and the cancellation the order carries."""
        customer_id = order.customer.id if order.customer else None

        async with self.store.transaction():
            cancelled = order.is_cancelled or await self._cancellation_recorded(shop, order)
            order_applied = await self.store.mark_order_applied(
                shop,
                order.id,
                order.order_date,
                customer_id,
                financial_status=None if cancelled else financial_status(order),
                fulfillment_status=None if cancelled else fulfillment_status(order),
            )
            if order_applied:
                await self._apply_creation(shop, order, cancelled)
            else:
                logger.debug("Order already applied", shop=shop, order_id=order.id)

            refunds_applied = 0
            for refund in order.refunds:
                if await self.apply_refund(shop, refund, customer_id=customer_id):
                    refunds_applied += 1

            cancellation_applied = False
            if order.is_cancelled:
                cancellation_applied = await self.apply_cancellation(shop, order)

        return OrderOutcome(order_applied, refunds_applied, cancellation_applied)

    async def _cancellation_recorded(self, shop: str, order: NormalizedOrder) -> bool:
        details = await self.store.get_cancellation_details(shop, order.order_date, order.order_date)
        return any(d.order_id == order.id for d in details)

    async def _apply_creation(self, shop: str, order: NormalizedOrder, cancelled: bool) -> None:
        day = order.order_date
        new = is_new_customer(order)

        await self.store.increment_daily_metrics(shop, day, order_daily_delta(order, cancelled))
        await self.store.increment_hourly_metrics(shop, day, order.hour, HourlyMetricsDelta(
            order_count=1,
            revenue=order.total_price,
            items_sold=order.items_sold,
        ))

        for item in order.line_items:
            await self.store.increment_product_metrics(
                shop,
                day,
                item.product_id,
                item.title,
                item.variant_id,
                item.variant_title,
                ProductMetricsDelta(
                    units_sold=item.quantity,
                    revenue=item.revenue,
                    discount_amount=item.discount,
                ),
            )

        await self.store.increment_customer_metrics(shop, day, CustomerMetricsDelta(
            new_customers=1 if new else 0,
            returning_customers=0 if new else 1,
            total_customers=1,
        ))

        if order.customer is not None:
            await self.store.upsert_customer_lifetime(shop, order.customer.id, CustomerOrderUpdate(
                order_date=day,
                order_amount=order.total_price,
                email=order.customer.email,
            ))

        for breakdown_type, value in order_breakdowns(order):
            await self.store.increment_order_breakdown(
                shop, day, breakdown_type, value,
                BreakdownDelta(order_count=1, revenue=order.total_price),
            )

        if order.total_price > self.thresholds.large_order:
            await self.store.log_event(ShopEventRecord(
                shop=shop,
                date=day,
                event_type=ShopEventType.LARGE_ORDER.value,
                description=f"Large order {order.display_name} (${to_currency(order.total_price):.2f})",
                impact_amount=order.total_price,
                metadata={"order_id": order.id, "order_name": order.name},
            ))

    async def apply_refund(self, shop: str, refund: Refund, customer_id: Optional[str] = None) -> bool:
        """Book a refund on its own date. Returns False when the refund id was already recorded."""
        day = refund.refund_date
        async with self.store.transaction():
            inserted = await self.store.record_refund_details(RefundDetailRecord(
                shop=shop,
                refund_id=refund.id,
                order_id=refund.order_id,
                date=day,
                amount=refund.amount,
                reason=refund.reason,
                note=refund.note,
            ))
            if not inserted:
                logger.debug("Refund already recorded", shop=shop, refund_id=refund.id)
                return False

            await self.store.increment_daily_metrics(shop, day, DailyMetricsDelta(
                total_refunds=refund.amount,
                refund_count=1,
            ))

            for item in refund.line_items:
                if item.product_id == DEFAULT_PRODUCT_ID:
                    continue
                await self.store.increment_product_metrics(
                    shop,
                    day,
                    item.product_id,
                    "",
                    item.variant_id,
                    DEFAULT_VARIANT_TITLE,
                    ProductMetricsDelta(units_refunded=item.quantity, refund_amount=item.subtotal),
                )

            customer_id = customer_id or await self.store.get_order_customer(shop, refund.order_id)
            if customer_id:
                await self.store.add_customer_refund(shop, customer_id, refund.amount)

            if refund.amount > self.thresholds.significant_refund:
                await self.store.log_event(ShopEventRecord(
                    shop=shop,
                    date=day,
                    event_type=ShopEventType.SIGNIFICANT_REFUND.value,
                    description=f"Refund of ${to_currency(refund.amount):.2f} processed",
                    impact_amount=-refund.amount,
                    metadata={"refund_id": refund.id, "order_id": refund.order_id},
                ))
            return True

    async def apply_cancellation(self, shop: str, order: NormalizedOrder) -> bool:
        """
        Book a cancellation against the order creation date.

        Works whether or not the order's creation was applied first; the
        status counters creation booked are taken back.
        Returns False when the order was already recorded as cancelled.
        """
        day = order.order_date
        cancellation_date = order.cancelled_at.date() if order.cancelled_at else day
        async with self.store.transaction():
            inserted = await self.store.record_cancellation_details(CancellationDetailRecord(
                shop=shop,
                order_id=order.id,
                date=day,
                cancellation_date=cancellation_date,
                amount=order.total_price,
                reason=order.cancel_reason,
            ))
            if not inserted:
                logger.debug("Cancellation already recorded", shop=shop, order_id=order.id)
                return False

            delta = DailyMetricsDelta(cancelled_orders=1, cancelled_revenue=order.total_price)
            applied = await self.store.get_applied_order(shop, order.id)
            if applied is not None and applied.financial_status is not None:
                delta = delta + status_delta(applied.financial_status, applied.fulfillment_status, sign=-1)
            await self.store.increment_daily_metrics(shop, day, delta)
            await self.store.log_event(ShopEventRecord(
                shop=shop,
                date=cancellation_date,
                event_type=ShopEventType.ORDER_CANCELLED.value,
                description=(
                    f"Order {order.display_name} cancelled (${to_currency(order.total_price):.2f})"
                    f" - originally placed {day.isoformat()}"
                ),
                impact_amount=-order.total_price,
                metadata={"order_id": order.id, "order_name": order.name, "original_date": day.isoformat()},
            ))
            return True
