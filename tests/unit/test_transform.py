"""
Unit Tests - Order Transformation
"""
import datetime as dt

from shopmetrics.ingestion.normalize import order_from_graphql, order_from_webhook, refund_from_webhook
from shopmetrics.ingestion.transform import (
    OrderTransformer,
    is_new_customer,
    order_breakdowns,
    order_daily_delta,
)

DAY = dt.date(2024, 3, 15)
REFUND_DAY = dt.date(2024, 3, 18)
WINDOW = (dt.date(2024, 1, 1), dt.date(2024, 12, 31))


def net_revenue(rows) -> int:
    return sum(r.total_revenue - r.cancelled_revenue - r.total_refunds for r in rows)


class TestClassification:

    def test_daily_delta_for_paid_unfulfilled_order(self, order_webhook):
        delta = order_daily_delta(order_from_webhook(order_webhook))

        assert delta.total_revenue == 12000
        assert delta.total_orders == 1
        assert delta.new_customer_orders == 1
        assert delta.returning_customer_orders == 0
        assert delta.total_items_sold == 3
        assert delta.orders_with_discount == 1
        assert delta.paid_orders == 1
        assert delta.unfulfilled_orders == 1
        assert delta.fulfilled_orders == 0
        assert delta.total_refunds == 0

    def test_cancelled_order_skips_status_counters(self, order_webhook):
        order_webhook["cancelled_at"] = "2024-03-16T08:00:00-05:00"
        delta = order_daily_delta(order_from_webhook(order_webhook))

        assert delta.total_revenue == 12000
        assert delta.paid_orders == 0
        assert delta.unfulfilled_orders == 0
        assert delta.cancelled_orders == 0

    def test_returning_customer(self, order_webhook):
        order_webhook["customer"]["orders_count"] = 3
        assert not is_new_customer(order_from_webhook(order_webhook))

    def test_guest_checkout_counts_as_new(self, order_webhook):
        order_webhook["customer"] = None
        assert is_new_customer(order_from_webhook(order_webhook))

    def test_breakdowns(self, order_webhook):
        order_webhook["payment_gateway_names"] = []
        order_webhook["shipping_address"] = None

        pairs = dict(order_breakdowns(order_from_webhook(order_webhook)))

        assert pairs == {
            "channel": "web",
            "payment_method": "unknown",
            "fulfillment_status": "unfulfilled",
            "financial_status": "paid",
            "discount": "with_discount",
            "country": "Unknown",
        }


class TestOrderTransformer:
    """Tests for applying orders, refunds and cancellations"""

    async def test_order_fans_out_to_every_table(self, memory_store, shop, order_webhook, thresholds):
        transformer = OrderTransformer(memory_store, thresholds)

        outcome = await transformer.apply_order(shop, order_from_webhook(order_webhook))

        assert outcome.order_applied and outcome.changed
        [daily] = await memory_store.get_daily_metrics(shop, DAY, DAY)
        assert daily.total_revenue == 12000
        [hourly] = await memory_store.get_hourly_metrics(shop, DAY, DAY)
        assert (hourly.hour, hourly.order_count, hourly.items_sold) == (10, 1, 3)
        products = await memory_store.get_product_metrics(shop, DAY, DAY)
        assert {(p.product_id, p.units_sold, p.revenue) for p in products} == {("9001", 2, 8000), ("9002", 1, 5000)}
        [customers] = await memory_store.get_customer_metrics(shop, DAY, DAY)
        assert (customers.new_customers, customers.total_customers) == (1, 1)
        lifetime = await memory_store.get_customer_lifetime(shop, "501")
        assert lifetime.total_spent == 12000 and lifetime.first_order_date == DAY
        breakdowns = await memory_store.get_order_breakdown(shop, DAY, DAY)
        assert len(breakdowns) == 6
        assert await memory_store.get_events(shop, *WINDOW) == []

    async def test_replayed_order_is_a_noop(self, memory_store, shop, order_webhook, thresholds):
        transformer = OrderTransformer(memory_store, thresholds)
        order = order_from_webhook(order_webhook)

        await transformer.apply_order(shop, order)
        outcome = await transformer.apply_order(shop, order)

        assert not outcome.changed
        [daily] = await memory_store.get_daily_metrics(shop, DAY, DAY)
        assert daily.total_orders == 1
        lifetime = await memory_store.get_customer_lifetime(shop, "501")
        assert lifetime.total_orders == 1

    async def test_refund_is_booked_on_refund_date(self, memory_store, shop, order_webhook, refund_webhook, thresholds):
        transformer = OrderTransformer(memory_store, thresholds)
        await transformer.apply_order(shop, order_from_webhook(order_webhook))

        applied = await transformer.apply_refund(shop, refund_from_webhook(refund_webhook))

        assert applied
        [refund_day] = await memory_store.get_daily_metrics(shop, REFUND_DAY, REFUND_DAY)
        assert (refund_day.total_refunds, refund_day.refund_count, refund_day.total_orders) == (4000, 1, 0)
        [product] = await memory_store.get_product_metrics(shop, REFUND_DAY, REFUND_DAY)
        assert (product.product_id, product.units_refunded, product.refund_amount) == ("9001", 1, 4000)
        lifetime = await memory_store.get_customer_lifetime(shop, "501")
        assert lifetime.total_refunded == 4000
        assert net_revenue(await memory_store.get_daily_metrics(shop, *WINDOW)) == 8000

    async def test_refund_recorded_once(self, memory_store, shop, refund_webhook, thresholds):
        transformer = OrderTransformer(memory_store, thresholds)
        refund = refund_from_webhook(refund_webhook)

        assert await transformer.apply_refund(shop, refund)
        assert not await transformer.apply_refund(shop, refund)

        [day] = await memory_store.get_daily_metrics(shop, REFUND_DAY, REFUND_DAY)
        assert day.refund_count == 1

    async def test_cancellation_offsets_creation_date(self, memory_store, shop, order_webhook, thresholds):
        transformer = OrderTransformer(memory_store, thresholds)
        await transformer.apply_order(shop, order_from_webhook(order_webhook))
        order_webhook["cancelled_at"] = "2024-03-17T12:00:00-05:00"
        order_webhook["cancel_reason"] = "inventory"

        applied = await transformer.apply_cancellation(shop, order_from_webhook(order_webhook))

        assert applied
        [daily] = await memory_store.get_daily_metrics(shop, DAY, DAY)
        assert (daily.cancelled_orders, daily.cancelled_revenue) == (1, 12000)
        [event] = await memory_store.get_events(shop, *WINDOW)
        assert event.event_type == "order_cancelled"
        assert event.date == dt.date(2024, 3, 17)
        assert event.description == "Order #1001 cancelled ($120.00) - originally placed 2024-03-15"
        assert net_revenue(await memory_store.get_daily_metrics(shop, *WINDOW)) == 0

    async def test_cancellation_before_creation_converges(self, memory_store, shop, order_webhook, thresholds):
        order_webhook["cancelled_at"] = "2024-03-17T12:00:00-05:00"
        cancelled = order_from_webhook(order_webhook)
        transformer = OrderTransformer(memory_store, thresholds)

        await transformer.apply_cancellation(shop, cancelled)
        outcome = await transformer.apply_order(shop, cancelled)

        assert outcome.order_applied
        assert not outcome.cancellation_applied
        [daily] = await memory_store.get_daily_metrics(shop, DAY, DAY)
        assert (daily.total_orders, daily.cancelled_orders) == (1, 1)

    async def test_events_for_large_order_and_refund(self, memory_store, shop, order_webhook, refund_webhook, thresholds):
        order_webhook["total_price"] = "650.00"
        refund_webhook["transactions"] = [{"amount": "150.00", "status": "success"}]
        transformer = OrderTransformer(memory_store, thresholds)

        await transformer.apply_order(shop, order_from_webhook(order_webhook))
        await transformer.apply_refund(shop, refund_from_webhook(refund_webhook))

        events = await memory_store.get_events(shop, *WINDOW)
        assert [e.event_type for e in events] == ["significant_refund", "large_order"]
        assert events[0].impact_amount == -15000
        assert events[1].description == "Large order #1001 ($650.00)"

    async def test_webhook_and_graphql_paths_agree(
        self, shop, order_webhook, refund_webhook, graphql_order, graphql_refund, thresholds
    ):
        from shopmetrics.store import InMemoryAggregateStore

        via_webhooks = InMemoryAggregateStore()
        transformer = OrderTransformer(via_webhooks, thresholds)
        await transformer.apply_order(shop, order_from_webhook(order_webhook))
        await transformer.apply_refund(shop, refund_from_webhook(refund_webhook))

        via_graphql = InMemoryAggregateStore()
        graphql_order["refunds"] = [graphql_refund]
        await OrderTransformer(via_graphql, thresholds).apply_order(shop, order_from_graphql(graphql_order))

        webhook_days = await via_webhooks.get_daily_metrics(shop, *WINDOW)
        graphql_days = await via_graphql.get_daily_metrics(shop, *WINDOW)
        assert [(d.date, d.total_revenue, d.total_refunds, d.total_orders) for d in webhook_days] == \
            [(d.date, d.total_revenue, d.total_refunds, d.total_orders) for d in graphql_days]
        assert net_revenue(webhook_days) == net_revenue(graphql_days) == 8000
        assert (await via_webhooks.get_customer_lifetime(shop, "501")).total_refunded == \
            (await via_graphql.get_customer_lifetime(shop, "501")).total_refunded
