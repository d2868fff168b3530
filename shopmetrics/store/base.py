"""
Aggregate Store Interface

Typed increment/upsert/read operations over the per-shop aggregate tables,
plus the webhook dedup ledger and per-event idempotency markers. Ingestion
and analytics depend only on this interface.
"""

import datetime as dt
from abc import ABC, abstractmethod
from typing import AsyncContextManager, List, Optional

from shopmetrics.database.models import (
    AppliedOrder,
    CancellationDetail,
    CustomerGeography,
    CustomerLifetime,
    DailyCustomerMetrics,
    DailyMetrics,
    DailyProductMetrics,
    HourlyOrderMetrics,
    OrderBreakdown,
    RefundDetail,
    ShopEvent,
)
from shopmetrics.store.money import divide_cents
from shopmetrics.store.deltas import (
    BreakdownDelta,
    CancellationDetailRecord,
    CustomerMetricsDelta,
    CustomerOrderUpdate,
    DailyMetricsDelta,
    GeographyDelta,
    HourlyMetricsDelta,
    ProductMetricsDelta,
    RefundDetailRecord,
    ShopEventRecord,
)

DEFAULT_PRODUCT_ID = "unknown"
DEFAULT_VARIANT_ID = "default"
DEFAULT_VARIANT_TITLE = "Default"


class AggregateStore(ABC):
    """
    Repository over the aggregate tables.

    Mutations are increments (a delta added to an existing or implicitly
    zero row) or upserts (an event merged into a long-lived record). Nothing
    is overwritten blindly, and ``clear_shop`` is the only deletion path.

    Writes issued inside ``transaction()`` commit or roll back together, so a
    per-event marker never outlives the effects it guards.
    """

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """Group the writes of one event. Nested calls join the outer transaction."""

    # ------------------------------------------------------------------
    # Increments
    # ------------------------------------------------------------------

    @abstractmethod
    async def increment_daily_metrics(self, shop: str, day: dt.date, delta: DailyMetricsDelta) -> None:
        ...

    @abstractmethod
    async def increment_product_metrics(
        self,
        shop: str,
        day: dt.date,
        product_id: str,
        product_title: str,
        variant_id: str,
        variant_title: str,
        delta: ProductMetricsDelta,
    ) -> None:
        """Add to a product/variant row. An empty title never replaces a known one."""

    @abstractmethod
    async def increment_hourly_metrics(self, shop: str, day: dt.date, hour: int, delta: HourlyMetricsDelta) -> None:
        ...

    @abstractmethod
    async def increment_order_breakdown(
        self,
        shop: str,
        day: dt.date,
        breakdown_type: str,
        breakdown_value: str,
        delta: BreakdownDelta,
    ) -> None:
        ...

    @abstractmethod
    async def increment_customer_metrics(self, shop: str, day: dt.date, delta: CustomerMetricsDelta) -> None:
        ...

    # ------------------------------------------------------------------
    # Upserts
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_customer_lifetime(self, shop: str, customer_id: str, update: CustomerOrderUpdate) -> None:
        """
        Merge one order into a customer's lifetime totals.

        First/last order dates become min/max, totals are summed, average
        order value is recomputed and the repeat flag is ``total_orders > 1``.
        """

    @abstractmethod
    async def add_customer_refund(self, shop: str, customer_id: str, amount: int) -> None:
        """Add to ``total_refunded`` of an existing customer; unknown customers are ignored."""

    @abstractmethod
    async def upsert_customer_geography(
        self,
        shop: str,
        country: str,
        country_code: Optional[str],
        delta: GeographyDelta,
    ) -> None:
        ...

    # ------------------------------------------------------------------
    # Per-event records
    # ------------------------------------------------------------------

    @abstractmethod
    async def record_refund_details(self, record: RefundDetailRecord) -> bool:
        """Insert unless (shop, refund_id) exists. Returns True when a row was inserted."""

    @abstractmethod
    async def record_cancellation_details(self, record: CancellationDetailRecord) -> bool:
        """Insert unless (shop, order_id) exists. Returns True when a row was inserted."""

    @abstractmethod
    async def log_event(self, event: ShopEventRecord) -> None:
        ...

    @abstractmethod
    async def mark_order_applied(
        self,
        shop: str,
        order_id: str,
        order_date: dt.date,
        customer_id: Optional[str] = None,
        financial_status: Optional[str] = None,
        fulfillment_status: Optional[str] = None,
    ) -> bool:
        """
        Claim an order's creation effects. Returns False if already claimed.

        The statuses are those whose daily counters creation booked; leave
        them unset for an order that was cancelled by then.
        """

    @abstractmethod
    async def get_applied_order(self, shop: str, order_id: str) -> Optional[AppliedOrder]:
        ...

    async def get_order_customer(self, shop: str, order_id: str) -> Optional[str]:
        """Customer id recorded when the order was applied, if any."""
        applied = await self.get_applied_order(shop, order_id)
        return applied.customer_id if applied is not None else None

    # ------------------------------------------------------------------
    # Webhook ledger
    # ------------------------------------------------------------------

    @abstractmethod
    async def is_webhook_processed(self, shop: str, webhook_id: str) -> bool:
        ...

    @abstractmethod
    async def mark_webhook_processed(self, shop: str, webhook_id: str, topic: str) -> None:
        ...

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @abstractmethod
    async def clear_shop(self, shop: str) -> None:
        """Delete every aggregate, detail, event and order marker for a shop. The ledger is kept."""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_daily_metrics(self, shop: str, start: dt.date, end: dt.date) -> List[DailyMetrics]:
        """Rows with start <= date <= end, ordered by date."""

    @abstractmethod
    async def get_product_metrics(self, shop: str, start: dt.date, end: dt.date) -> List[DailyProductMetrics]:
        ...

    @abstractmethod
    async def get_hourly_metrics(self, shop: str, start: dt.date, end: dt.date) -> List[HourlyOrderMetrics]:
        ...

    @abstractmethod
    async def get_customer_metrics(self, shop: str, start: dt.date, end: dt.date) -> List[DailyCustomerMetrics]:
        ...

    @abstractmethod
    async def get_order_breakdown(
        self,
        shop: str,
        start: dt.date,
        end: dt.date,
        breakdown_type: Optional[str] = None,
    ) -> List[OrderBreakdown]:
        ...

    @abstractmethod
    async def get_customer_lifetime(self, shop: str, customer_id: str) -> Optional[CustomerLifetime]:
        ...

    @abstractmethod
    async def list_customer_lifetimes(self, shop: str) -> List[CustomerLifetime]:
        ...

    @abstractmethod
    async def get_customer_geography(self, shop: str) -> List[CustomerGeography]:
        ...

    @abstractmethod
    async def get_refund_details(self, shop: str, start: dt.date, end: dt.date) -> List[RefundDetail]:
        ...

    @abstractmethod
    async def get_cancellation_details(self, shop: str, start: dt.date, end: dt.date) -> List[CancellationDetail]:
        """Cancellations whose order creation date falls in the range."""

    @abstractmethod
    async def get_events(self, shop: str, start: dt.date, end: dt.date) -> List[ShopEvent]:
        """Events in the range, newest date first."""


def merge_customer_order(row: CustomerLifetime, update: CustomerOrderUpdate) -> CustomerLifetime:
    """Fold one order into a lifetime row in place; shared by both store backends."""
    if update.email:
        row.email = update.email
    if row.first_order_date is None or update.order_date < row.first_order_date:
        row.first_order_date = update.order_date
    if row.last_order_date is None or update.order_date > row.last_order_date:
        row.last_order_date = update.order_date
    row.total_orders = (row.total_orders or 0) + 1
    row.total_spent = (row.total_spent or 0) + update.order_amount
    row.total_refunded = (row.total_refunded or 0) + update.refund_amount
    row.average_order_value = divide_cents(row.total_spent, row.total_orders)
    row.is_repeat_customer = row.total_orders > 1
    return row
