"""
Unit Tests - Payload Normalization
"""
import datetime as dt

import pytest

from shopmetrics.exceptions import PayloadError
from shopmetrics.ingestion.normalize import (
    customer_from_graphql,
    gid_tail,
    order_from_graphql,
    order_from_webhook,
    parse_timestamp,
    refund_from_webhook,
)


class TestHelpers:

    def test_gid_tail(self):
        assert gid_tail("gid://shopify/Product/42") == "42"
        assert gid_tail(42) == "42"
        assert gid_tail(None) is None
        assert gid_tail("") is None

    def test_parse_timestamp_keeps_offset(self):
        ts = parse_timestamp("2024-03-15T23:30:00-05:00")
        assert ts.date() == dt.date(2024, 3, 15)
        assert ts.utcoffset() == dt.timedelta(hours=-5)

    def test_parse_timestamp_zulu(self):
        ts = parse_timestamp("2024-03-15T10:00:00Z")
        assert ts.utcoffset() == dt.timedelta(0)

    def test_parse_timestamp_invalid(self):
        with pytest.raises(PayloadError):
            parse_timestamp("yesterday-ish")


class TestWebhookOrder:
    """Tests for REST webhook order normalization"""

    def test_money_and_identity(self, order_webhook):
        order = order_from_webhook(order_webhook)

        assert order.id == "1001"
        assert order.total_price == 12000
        assert order.total_discounts == 1000
        assert order.order_date == dt.date(2024, 3, 15)
        assert order.hour == 10
        assert order.items_sold == 3
        assert order.financial_status == "paid"
        assert order.fulfillment_status is None
        assert order.customer.id == "501"
        assert order.customer.orders_count == 1

    def test_line_items(self, order_webhook):
        order = order_from_webhook(order_webhook)
        mug, tee = order.line_items

        assert (mug.product_id, mug.variant_id, mug.title, mug.variant_title) == ("9001", "7001", "Enamel Mug", "Blue")
        assert mug.revenue == 8000
        assert mug.discount == 500
        assert tee.variant_title == "Default"

    def test_missing_product_and_customer_are_defaulted(self, order_webhook):
        order_webhook["customer"] = None
        order_webhook["line_items"][0]["product_id"] = None
        order_webhook["line_items"][0]["variant_id"] = None

        order = order_from_webhook(order_webhook)

        assert order.customer is None
        assert order.line_items[0].product_id == "unknown"
        assert order.line_items[0].variant_id == "default"

    def test_name_falls_back_to_order_number(self, order_webhook):
        del order_webhook["name"]
        order_webhook["order_number"] = 1001

        assert order_from_webhook(order_webhook).display_name == "#1001"

    def test_missing_required_fields(self, order_webhook):
        del order_webhook["created_at"]
        with pytest.raises(PayloadError) as exc:
            order_from_webhook(order_webhook)
        assert "created_at" in str(exc.value)

    def test_cancelled_order(self, order_webhook):
        order_webhook["cancelled_at"] = "2024-03-16T08:00:00-05:00"
        order_webhook["cancel_reason"] = "customer"

        order = order_from_webhook(order_webhook)

        assert order.is_cancelled
        assert order.cancel_reason == "customer"


class TestWebhookRefund:

    def test_amount_from_transactions(self, refund_webhook):
        refund = refund_from_webhook(refund_webhook)

        assert refund.id == "3001"
        assert refund.order_id == "1001"
        assert refund.amount == 4000
        assert refund.refund_date == dt.date(2024, 3, 18)
        assert refund.line_items[0].product_id == "9001"

    def test_failed_transactions_are_ignored(self, refund_webhook):
        refund_webhook["transactions"].append({"amount": "999.00", "status": "failure"})
        assert refund_from_webhook(refund_webhook).amount == 4000

    def test_amount_falls_back_to_line_subtotals(self, refund_webhook):
        refund_webhook["transactions"] = []
        refund_webhook["refund_line_items"][0]["subtotal"] = "35.50"
        assert refund_from_webhook(refund_webhook).amount == 3550


class TestGraphQL:
    """Tests for Admin GraphQL node normalization"""

    def test_matches_webhook_shape(self, order_webhook, graphql_order):
        from_webhook = order_from_webhook(order_webhook)
        from_graphql = order_from_graphql(graphql_order)

        assert from_graphql.id == from_webhook.id
        assert from_graphql.total_price == from_webhook.total_price
        assert from_graphql.items_sold == from_webhook.items_sold
        assert from_graphql.financial_status == from_webhook.financial_status
        assert from_graphql.customer == from_webhook.customer
        assert from_graphql.line_items == from_webhook.line_items
        assert from_graphql.shipping_country_code == "CA"

    def test_refund_uses_total_refunded(self, graphql_order, graphql_refund):
        graphql_refund["totalRefundedSet"] = {"shopMoney": {"amount": "45.00"}}
        graphql_order["refunds"] = [graphql_refund]

        refund = order_from_graphql(graphql_order).refunds[0]

        assert refund.id == "3001"
        assert refund.order_id == "1001"
        assert refund.amount == 4500

    def test_customer_node(self):
        customer = customer_from_graphql({
            "id": "gid://shopify/Customer/77",
            "email": "x@example.com",
            "numberOfOrders": "4",
            "amountSpent": {"amount": "310.10", "currencyCode": "USD"},
            "defaultAddress": {"country": "Germany", "countryCodeV2": "DE"},
        })

        assert customer.id == "77"
        assert customer.orders_count == 4
        assert customer.amount_spent == 31010
        assert (customer.country, customer.country_code) == ("Germany", "DE")

    def test_customer_without_address(self):
        customer = customer_from_graphql({"id": "gid://shopify/Customer/78"})
        assert customer.country is None
        assert customer.amount_spent == 0
