"""
Unit Tests - Reconciliation Pipeline
"""
import copy
import datetime as dt

import pytest

from shopmetrics.exceptions import UpstreamHTTPError
from shopmetrics.ingestion.transform import OrderTransformer
from shopmetrics.reconciliation import Page, ReconciliationPipeline, ReconciliationStatus
from shopmetrics.reconciliation.pipeline import orders_search_query, window_start

NOW = dt.datetime(2024, 6, 1, 12, 0, tzinfo=dt.timezone.utc)
WINDOW = (dt.date(2024, 1, 1), dt.date(2024, 12, 31))


def order_node(base, order_id):
    node = copy.deepcopy(base)
    node["id"] = f"gid://shopify/Order/{order_id}"
    node["name"] = f"#{order_id}"
    return node


class FakeClient:
    """Serves fixed order and customer pages"""

    def __init__(self, order_pages, customer_pages=(), fail_orders_at=None, fail_customers_at=None):
        self.order_pages = list(order_pages)
        self.customer_pages = list(customer_pages)
        self.fail_orders_at = fail_orders_at
        self.fail_customers_at = fail_customers_at
        self.order_calls = []
        self.customer_calls = []

    async def fetch_orders_page(self, cursor, search_query, page_size=100, line_items=50):
        index = len(self.order_calls)
        self.order_calls.append((cursor, search_query, page_size))
        if index == self.fail_orders_at:
            raise UpstreamHTTPError("GraphQL request failed: 502", status_code=502)
        return self.order_pages[index]

    async def fetch_customers_page(self, cursor, page_size=250):
        index = len(self.customer_calls)
        self.customer_calls.append(cursor)
        if index == self.fail_customers_at:
            raise UpstreamHTTPError("GraphQL request failed: 502", status_code=502)
        return self.customer_pages[index]


@pytest.fixture
def order_pages(graphql_order, graphql_refund):
    refunded = order_node(graphql_order, 1001)
    refunded["refunds"] = [graphql_refund]
    return [
        Page([refunded, order_node(graphql_order, 1002)], True, "c1"),
        Page([order_node(graphql_order, 1003)], False, None),
    ]


@pytest.fixture
def customer_pages():
    return [
        Page([
            {"id": "gid://shopify/Customer/1", "numberOfOrders": "2", "amountSpent": {"amount": "80.00"},
             "defaultAddress": {"country": "Canada", "countryCodeV2": "CA"}},
            {"id": "gid://shopify/Customer/2", "numberOfOrders": "1", "amountSpent": {"amount": "20.00"}},
        ], True, "k1"),
        Page([
            {"id": "gid://shopify/Customer/3", "numberOfOrders": "5", "amountSpent": {"amount": "300.00"},
             "defaultAddress": {"country": "Canada", "countryCodeV2": "CA"}},
        ], False, None),
    ]


def make_pipeline(store, client, thresholds) -> ReconciliationPipeline:
    return ReconciliationPipeline(store, client, transformer=OrderTransformer(store, thresholds), now=lambda: NOW)


class TestWindow:

    def test_window_start(self):
        assert window_start(NOW, 3) == dt.date(2021, 6, 1)

    def test_leap_day_falls_back(self):
        leap = dt.datetime(2024, 2, 29, tzinfo=dt.timezone.utc)
        assert window_start(leap, 3) == dt.date(2021, 2, 28)

    def test_search_query(self):
        assert orders_search_query(dt.date(2021, 6, 1)) == "created_at:>='2021-06-01'"


class TestReconciliationPipeline:
    """Tests for full rebuilds"""

    async def test_completed_run(self, memory_store, shop, thresholds, order_pages, customer_pages):
        client = FakeClient(order_pages, customer_pages)

        progress = await make_pipeline(memory_store, client, thresholds).run(shop)

        assert progress.status is ReconciliationStatus.COMPLETED
        assert progress.orders_processed == 3
        assert progress.customers_processed == 3
        assert progress.pages_fetched == 4
        assert progress.error is None
        assert progress.completed_at == NOW
        assert [c[0] for c in client.order_calls] == [None, "c1"]
        assert client.order_calls[0][1] == "created_at:>='2021-06-01'"
        assert client.customer_calls == [None, "k1"]

        [day] = await memory_store.get_daily_metrics(shop, dt.date(2024, 3, 15), dt.date(2024, 3, 15))
        assert (day.total_orders, day.total_revenue) == (3, 36000)
        geography = {g.country: g for g in await memory_store.get_customer_geography(shop)}
        assert geography["Canada"].customer_count == 2
        assert geography["Canada"].total_spent == 38000
        assert geography["Unknown"].total_orders == 1

    async def test_rebuild_is_idempotent(self, memory_store, shop, thresholds, order_pages, customer_pages):
        await make_pipeline(memory_store, FakeClient(order_pages, customer_pages), thresholds).run(shop)
        first = [(d.date, d.total_revenue, d.total_refunds) for d in await memory_store.get_daily_metrics(shop, *WINDOW)]

        await make_pipeline(memory_store, FakeClient(order_pages, customer_pages), thresholds).run(shop)
        second = [(d.date, d.total_revenue, d.total_refunds) for d in await memory_store.get_daily_metrics(shop, *WINDOW)]

        assert first == second
        assert len(await memory_store.get_customer_geography(shop)) == 2
        assert (await memory_store.get_customer_geography(shop))[0].customer_count == 2

    async def test_rebuild_clears_stale_rows_but_keeps_webhook_ledger(
        self, memory_store, shop, thresholds, order_pages
    ):
        await memory_store.mark_webhook_processed(shop, "wh-1", "orders/create")
        await memory_store.mark_order_applied(shop, "stale", dt.date(2023, 1, 1))

        await make_pipeline(memory_store, FakeClient(order_pages, [Page([], False, None)]), thresholds).run(shop)

        assert await memory_store.is_webhook_processed(shop, "wh-1")
        assert await memory_store.mark_order_applied(shop, "stale", dt.date(2023, 1, 1))

    async def test_order_failure_keeps_partial_progress(self, memory_store, shop, thresholds, order_pages):
        client = FakeClient(order_pages, fail_orders_at=1)

        progress = await make_pipeline(memory_store, client, thresholds).run(shop)

        assert progress.status is ReconciliationStatus.FAILED
        assert progress.orders_processed == 2
        assert "502" in progress.error
        assert client.customer_calls == []
        [day] = await memory_store.get_daily_metrics(shop, dt.date(2024, 3, 15), dt.date(2024, 3, 15))
        assert day.total_orders == 2

    async def test_customer_failure_still_completes(
        self, memory_store, shop, thresholds, order_pages, customer_pages
    ):
        client = FakeClient(order_pages, customer_pages, fail_customers_at=1)

        progress = await make_pipeline(memory_store, client, thresholds).run(shop)

        assert progress.status is ReconciliationStatus.COMPLETED
        assert progress.customers_processed == 2
        assert progress.orders_processed == 3

    async def test_progress_callback(self, memory_store, shop, thresholds, order_pages, customer_pages):
        snapshots = []

        await make_pipeline(memory_store, FakeClient(order_pages, customer_pages), thresholds).run(
            shop, on_progress=snapshots.append
        )

        assert snapshots[0].status is ReconciliationStatus.RUNNING
        assert snapshots[-1].status is ReconciliationStatus.COMPLETED
        assert [s.orders_processed for s in snapshots[1:3]] == [2, 3]
        assert not snapshots[0].is_finished and snapshots[-1].is_finished

    async def test_failing_callback_is_ignored(self, memory_store, shop, thresholds, order_pages, customer_pages):
        def explode(progress):
            raise RuntimeError("listener gone")

        progress = await make_pipeline(memory_store, FakeClient(order_pages, customer_pages), thresholds).run(
            shop, on_progress=explode
        )

        assert progress.status is ReconciliationStatus.COMPLETED

    def test_progress_to_dict(self):
        from shopmetrics.reconciliation import ReconciliationProgress

        progress = ReconciliationProgress("s", ReconciliationStatus.FAILED, NOW, error="boom")

        assert progress.to_dict() == {
            "shop": "s",
            "status": "failed",
            "orders_processed": 0,
            "customers_processed": 0,
            "pages_fetched": 0,
            "started_at": NOW.isoformat(),
            "completed_at": None,
            "error": "boom",
        }
