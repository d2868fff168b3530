"""
Order Normalization

Upstream orders arrive in two shapes: REST-style webhook JSON (snake_case,
numeric ids) and Admin GraphQL nodes (camelCase, ``gid://`` ids, money
wrapped in ``shopMoney``). Both are normalized into the models below before
any aggregate is touched. Money is converted to integer cents here.
"""

import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from shopmetrics.exceptions import PayloadError
from shopmetrics.store.base import DEFAULT_PRODUCT_ID, DEFAULT_VARIANT_ID, DEFAULT_VARIANT_TITLE
from shopmetrics.store.money import to_minor_units


# =============================================================================
# MODELS
# =============================================================================

class CustomerRef(BaseModel):
    """Customer attached to an order, with lifetime order count at order time"""
    id: str
    email: Optional[str] = None
    orders_count: int = 0


class LineItem(BaseModel):
    product_id: str = DEFAULT_PRODUCT_ID
    variant_id: str = DEFAULT_VARIANT_ID
    title: str = ""
    variant_title: str = DEFAULT_VARIANT_TITLE
    quantity: int = 0
    unit_price: int = 0
    discount: int = 0

    @property
    def revenue(self) -> int:
        return self.unit_price * self.quantity


class RefundLineItem(BaseModel):
    product_id: str = DEFAULT_PRODUCT_ID
    variant_id: str = DEFAULT_VARIANT_ID
    quantity: int = 0
    subtotal: int = 0


class Refund(BaseModel):
    """A refund against an order; ``amount`` is the money returned in cents"""
    id: str
    order_id: str
    created_at: dt.datetime
    amount: int = 0
    note: Optional[str] = None
    reason: Optional[str] = None
    line_items: List[RefundLineItem] = Field(default_factory=list)

    @property
    def refund_date(self) -> dt.date:
        return self.created_at.date()


class NormalizedOrder(BaseModel):
    """Order record shared by webhook ingestion and reconciliation"""
    id: str
    name: Optional[str] = None
    created_at: dt.datetime
    cancelled_at: Optional[dt.datetime] = None
    cancel_reason: Optional[str] = None
    total_price: int = 0
    total_discounts: int = 0
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    source_name: Optional[str] = None
    payment_gateways: List[str] = Field(default_factory=list)
    shipping_country: Optional[str] = None
    shipping_country_code: Optional[str] = None
    customer: Optional[CustomerRef] = None
    line_items: List[LineItem] = Field(default_factory=list)
    refunds: List[Refund] = Field(default_factory=list)

    @property
    def order_date(self) -> dt.date:
        """Calendar date in the timestamp's own offset (the shop's timezone)"""
        return self.created_at.date()

    @property
    def hour(self) -> int:
        return self.created_at.hour

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    @property
    def items_sold(self) -> int:
        return sum(item.quantity for item in self.line_items)

    @property
    def display_name(self) -> str:
        return self.name or self.id


class CustomerSummary(BaseModel):
    """Customer record from the customer feed, used for geography"""
    id: str
    email: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    orders_count: int = 0
    amount_spent: int = 0


# =============================================================================
# HELPERS
# =============================================================================

def gid_tail(value: Any) -> Optional[str]:
    """
    Last path segment of a ``gid://shopify/Type/123`` id; plain ids pass through.

    Example:
        >>> gid_tail("gid://shopify/Product/42")
        '42'
    """
    if value is None or value == "":
        return None
    return str(value).rsplit("/", 1)[-1]


def parse_timestamp(value: Any) -> Optional[dt.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return dt.datetime.fromisoformat(text)
    except ValueError as e:
        raise PayloadError("Invalid timestamp", str(value)) from e


def _status(value: Optional[str]) -> Optional[str]:
    return value.lower() if value else None


def _money(node: Optional[Dict[str, Any]]) -> int:
    """Amount from a GraphQL ``{shopMoney: {amount}}`` money bag."""
    if not node:
        return 0
    return to_minor_units((node.get("shopMoney") or {}).get("amount"))


def _edges(connection: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not connection:
        return []
    return [edge.get("node") or {} for edge in connection.get("edges") or []]


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _build(model, data: Dict[str, Any], source: str):
    try:
        return model(**data)
    except ValidationError as e:
        raise PayloadError(f"Invalid {source} payload", str(e)) from e


def _require(payload: Dict[str, Any], *keys: str) -> None:
    if not isinstance(payload, dict):
        raise PayloadError("Payload must be a JSON object")
    missing = [k for k in keys if payload.get(k) in (None, "")]
    if missing:
        raise PayloadError("Payload is missing required fields", ", ".join(missing))


# =============================================================================
# WEBHOOK (REST) PAYLOADS
# =============================================================================

def _webhook_refund(payload: Dict[str, Any], order_id: Optional[str] = None) -> Refund:
    line_items = []
    for rli in payload.get("refund_line_items") or []:
        item = rli.get("line_item") or {}
        line_items.append(RefundLineItem(
            product_id=gid_tail(item.get("product_id")) or DEFAULT_PRODUCT_ID,
            variant_id=gid_tail(item.get("variant_id")) or DEFAULT_VARIANT_ID,
            quantity=_int(rli.get("quantity")),
            subtotal=to_minor_units(rli.get("subtotal")),
        ))

    transactions = [
        t for t in payload.get("transactions") or []
        if (t.get("status") or "success") not in ("failure", "error")
    ]
    if transactions:
        amount = sum(to_minor_units(t.get("amount")) for t in transactions)
    else:
        amount = sum(item.subtotal for item in line_items)

    return _build(Refund, {
        "id": gid_tail(payload.get("id")),
        "order_id": gid_tail(payload.get("order_id")) or order_id,
        "created_at": parse_timestamp(payload.get("created_at")),
        "amount": amount,
        "note": payload.get("note") or None,
        "line_items": line_items,
    }, "refund")


def order_from_webhook(payload: Dict[str, Any]) -> NormalizedOrder:
    """Normalize an ``orders/*`` webhook body."""
    _require(payload, "id", "created_at")
    order_id = gid_tail(payload["id"])

    customer = None
    if payload.get("customer") and payload["customer"].get("id") is not None:
        c = payload["customer"]
        customer = CustomerRef(
            id=gid_tail(c["id"]),
            email=c.get("email"),
            orders_count=_int(c.get("orders_count")),
        )

    line_items = [
        LineItem(
            product_id=gid_tail(item.get("product_id")) or DEFAULT_PRODUCT_ID,
            variant_id=gid_tail(item.get("variant_id")) or DEFAULT_VARIANT_ID,
            title=item.get("title") or "",
            variant_title=item.get("variant_title") or DEFAULT_VARIANT_TITLE,
            quantity=_int(item.get("quantity")),
            unit_price=to_minor_units(item.get("price")),
            discount=to_minor_units(item.get("total_discount")),
        )
        for item in payload.get("line_items") or []
    ]

    shipping = payload.get("shipping_address") or {}
    name = payload.get("name") or (
        f"#{payload['order_number']}" if payload.get("order_number") is not None else None
    )

    return _build(NormalizedOrder, {
        "id": order_id,
        "name": name,
        "created_at": parse_timestamp(payload["created_at"]),
        "cancelled_at": parse_timestamp(payload.get("cancelled_at")),
        "cancel_reason": payload.get("cancel_reason"),
        "total_price": to_minor_units(payload.get("total_price")),
        "total_discounts": to_minor_units(payload.get("total_discounts")),
        "financial_status": _status(payload.get("financial_status")),
        "fulfillment_status": _status(payload.get("fulfillment_status")),
        "source_name": payload.get("source_name"),
        "payment_gateways": list(payload.get("payment_gateway_names") or []),
        "shipping_country": shipping.get("country"),
        "shipping_country_code": shipping.get("country_code"),
        "customer": customer,
        "line_items": line_items,
        "refunds": [_webhook_refund(r, order_id) for r in payload.get("refunds") or []],
    }, "order")


def refund_from_webhook(payload: Dict[str, Any]) -> Refund:
    """Normalize a ``refunds/create`` webhook body."""
    _require(payload, "id", "order_id", "created_at")
    return _webhook_refund(payload)


# =============================================================================
# GRAPHQL NODES
# =============================================================================

def _graphql_refund(node: Dict[str, Any], order_id: str) -> Refund:
    line_items = []
    for rli in _edges(node.get("refundLineItems")):
        item = rli.get("lineItem") or {}
        line_items.append(RefundLineItem(
            product_id=gid_tail((item.get("product") or {}).get("id")) or DEFAULT_PRODUCT_ID,
            variant_id=gid_tail((item.get("variant") or {}).get("id")) or DEFAULT_VARIANT_ID,
            quantity=_int(rli.get("quantity")),
            subtotal=_money(rli.get("subtotalSet")),
        ))

    if node.get("totalRefundedSet"):
        amount = _money(node["totalRefundedSet"])
    else:
        amount = sum(item.subtotal for item in line_items)

    return _build(Refund, {
        "id": gid_tail(node.get("id")),
        "order_id": order_id,
        "created_at": parse_timestamp(node.get("createdAt")),
        "amount": amount,
        "note": node.get("note") or None,
        "line_items": line_items,
    }, "refund")


def order_from_graphql(node: Dict[str, Any]) -> NormalizedOrder:
    """Normalize an ``orders`` connection node from the Admin GraphQL API."""
    _require(node, "id", "createdAt")
    order_id = gid_tail(node["id"])

    customer = None
    if node.get("customer") and node["customer"].get("id"):
        c = node["customer"]
        customer = CustomerRef(
            id=gid_tail(c["id"]),
            email=c.get("email"),
            orders_count=_int(c.get("numberOfOrders")),
        )

    line_items = []
    for item in _edges(node.get("lineItems")):
        variant = item.get("variant") or {}
        line_items.append(LineItem(
            product_id=gid_tail((item.get("product") or {}).get("id")) or DEFAULT_PRODUCT_ID,
            variant_id=gid_tail(variant.get("id")) or DEFAULT_VARIANT_ID,
            title=item.get("title") or "",
            variant_title=variant.get("title") or DEFAULT_VARIANT_TITLE,
            quantity=_int(item.get("quantity")),
            unit_price=_money(item.get("originalUnitPriceSet")),
            discount=_money(item.get("totalDiscountSet")),
        ))

    shipping = node.get("shippingAddress") or {}

    return _build(NormalizedOrder, {
        "id": order_id,
        "name": node.get("name"),
        "created_at": parse_timestamp(node["createdAt"]),
        "cancelled_at": parse_timestamp(node.get("cancelledAt")),
        "cancel_reason": _status(node.get("cancelReason")),
        "total_price": _money(node.get("totalPriceSet")),
        "total_discounts": _money(node.get("totalDiscountsSet")),
        "financial_status": _status(node.get("displayFinancialStatus")),
        "fulfillment_status": _status(node.get("displayFulfillmentStatus")),
        "source_name": node.get("sourceName"),
        "payment_gateways": list(node.get("paymentGatewayNames") or []),
        "shipping_country": shipping.get("country"),
        "shipping_country_code": shipping.get("countryCodeV2"),
        "customer": customer,
        "line_items": line_items,
        "refunds": [_graphql_refund(r, order_id) for r in node.get("refunds") or []],
    }, "order")


def customer_from_graphql(node: Dict[str, Any]) -> CustomerSummary:
    """Normalize a ``customers`` connection node."""
    _require(node, "id")
    address = node.get("defaultAddress") or {}
    return _build(CustomerSummary, {
        "id": gid_tail(node["id"]),
        "email": node.get("email"),
        "country": address.get("country"),
        "country_code": address.get("countryCodeV2"),
        "orders_count": _int(node.get("numberOfOrders")),
        "amount_spent": to_minor_units((node.get("amountSpent") or {}).get("amount")),
    }, "customer")
