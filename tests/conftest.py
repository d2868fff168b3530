"""
Test Suite Configuration
"""
import copy
from typing import Any, Dict

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from shopmetrics.config import Settings
from shopmetrics.database.models import Base
from shopmetrics.ingestion.transform import EventThresholds
from shopmetrics.store import InMemoryAggregateStore, SqlAggregateStore

SHOP = "test-shop.myshopify.com"


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(APP_ENV="testing", DEBUG=True)


@pytest.fixture
async def sql_engine():
    """In-memory SQLite engine shared across sessions through a single connection"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def memory_store() -> InMemoryAggregateStore:
    return InMemoryAggregateStore()


@pytest.fixture
def sql_store(sql_engine) -> SqlAggregateStore:
    return SqlAggregateStore(sql_engine)


@pytest.fixture(params=["memory", "sql"])
def any_store(request, sql_engine):
    """Runs a test against both store backends"""
    if request.param == "memory":
        return InMemoryAggregateStore()
    return SqlAggregateStore(sql_engine)


@pytest.fixture
def thresholds() -> EventThresholds:
    """$500 large order, $100 significant refund"""
    return EventThresholds(large_order=50000, significant_refund=10000)


@pytest.fixture
def shop() -> str:
    return SHOP


ORDER_WEBHOOK: Dict[str, Any] = {
    "id": 1001,
    "name": "#1001",
    "created_at": "2024-03-15T10:30:00-05:00",
    "cancelled_at": None,
    "cancel_reason": None,
    "total_price": "120.00",
    "total_discounts": "10.00",
    "financial_status": "paid",
    "fulfillment_status": None,
    "source_name": "web",
    "payment_gateway_names": ["shopify_payments"],
    "shipping_address": {"country": "Canada", "country_code": "CA"},
    "customer": {"id": 501, "email": "ada@example.com", "orders_count": 1},
    "line_items": [
        {
            "product_id": 9001,
            "variant_id": 7001,
            "title": "Enamel Mug",
            "variant_title": "Blue",
            "quantity": 2,
            "price": "40.00",
            "total_discount": "5.00",
        },
        {
            "product_id": 9002,
            "variant_id": 7002,
            "title": "Logo Tee",
            "variant_title": None,
            "quantity": 1,
            "price": "50.00",
            "total_discount": "5.00",
        },
    ],
    "refunds": [],
}

REFUND_WEBHOOK: Dict[str, Any] = {
    "id": 3001,
    "order_id": 1001,
    "created_at": "2024-03-18T09:00:00-05:00",
    "note": "arrived chipped",
    "refund_line_items": [
        {"quantity": 1, "subtotal": "40.00", "line_item": {"product_id": 9001, "variant_id": 7001}},
    ],
    "transactions": [
        {"amount": "40.00", "status": "success"},
    ],
}


def _money(amount: str) -> Dict[str, Any]:
    return {"shopMoney": {"amount": amount, "currencyCode": "CAD"}}


GRAPHQL_ORDER: Dict[str, Any] = {
    "id": "gid://shopify/Order/1001",
    "name": "#1001",
    "createdAt": "2024-03-15T10:30:00-05:00",
    "cancelledAt": None,
    "cancelReason": None,
    "displayFinancialStatus": "PAID",
    "displayFulfillmentStatus": None,
    "totalPriceSet": _money("120.00"),
    "totalDiscountsSet": _money("10.00"),
    "shippingAddress": {"country": "Canada", "countryCodeV2": "CA"},
    "customer": {"id": "gid://shopify/Customer/501", "email": "ada@example.com", "numberOfOrders": "1"},
    "lineItems": {"edges": [
        {"node": {
            "id": "gid://shopify/LineItem/1",
            "title": "Enamel Mug",
            "quantity": 2,
            "originalUnitPriceSet": _money("40.00"),
            "totalDiscountSet": _money("5.00"),
            "product": {"id": "gid://shopify/Product/9001"},
            "variant": {"id": "gid://shopify/ProductVariant/7001", "title": "Blue"},
        }},
        {"node": {
            "id": "gid://shopify/LineItem/2",
            "title": "Logo Tee",
            "quantity": 1,
            "originalUnitPriceSet": _money("50.00"),
            "totalDiscountSet": _money("5.00"),
            "product": {"id": "gid://shopify/Product/9002"},
            "variant": {"id": "gid://shopify/ProductVariant/7002", "title": None},
        }},
    ]},
    "refunds": [],
    "sourceName": "web",
    "paymentGatewayNames": ["shopify_payments"],
}

GRAPHQL_REFUND: Dict[str, Any] = {
    "id": "gid://shopify/Refund/3001",
    "createdAt": "2024-03-18T09:00:00-05:00",
    "note": "arrived chipped",
    "totalRefundedSet": _money("40.00"),
    "refundLineItems": {"edges": [
        {"node": {
            "quantity": 1,
            "subtotalSet": _money("40.00"),
            "lineItem": {
                "id": "gid://shopify/LineItem/1",
                "product": {"id": "gid://shopify/Product/9001"},
                "variant": {"id": "gid://shopify/ProductVariant/7001"},
            },
        }},
    ]},
}


@pytest.fixture
def order_webhook() -> Dict[str, Any]:
    """orders/create body for a $120 two-line order from a first-time customer"""
    return copy.deepcopy(ORDER_WEBHOOK)


@pytest.fixture
def refund_webhook() -> Dict[str, Any]:
    """refunds/create body refunding one $40 mug from order 1001"""
    return copy.deepcopy(REFUND_WEBHOOK)


@pytest.fixture
def graphql_order() -> Dict[str, Any]:
    """The same order as ``order_webhook`` as an Admin GraphQL node"""
    return copy.deepcopy(GRAPHQL_ORDER)


@pytest.fixture
def graphql_refund() -> Dict[str, Any]:
    return copy.deepcopy(GRAPHQL_REFUND)
