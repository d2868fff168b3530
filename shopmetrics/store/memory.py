"""
In-memory aggregate store.

Keeps transient ORM instances in dicts keyed by each table's natural key.
Used by the unit tests and handy for local experiments without a database.

Inside ``transaction()`` every touched row is journaled with its column
values, and an exception restores them before propagating.
"""

import datetime as dt
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import inspect as sa_inspect

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
    ProcessedWebhook,
    RefundDetail,
    ShopEvent,
)
from shopmetrics.store.base import AggregateStore, merge_customer_order
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

# (table, key, row or None, column values or None)
JournalEntry = Tuple[Dict[Tuple, Any], Tuple, Optional[Any], Optional[Dict[str, Any]]]


def _accumulate(row, delta) -> None:
    for name, value in delta.as_dict().items():
        setattr(row, name, (getattr(row, name) or 0) + value)


def _zeroed(model, delta_type, **keys):
    row = model(**keys)
    for name in delta_type().as_dict():
        setattr(row, name, 0)
    return row


def _column_values(row) -> Dict[str, Any]:
    return {attr.key: getattr(row, attr.key) for attr in sa_inspect(row).mapper.column_attrs}


def _in_range(day: dt.date, start: dt.date, end: dt.date) -> bool:
    return start <= day <= end


class InMemoryAggregateStore(AggregateStore):
    """Dict-backed ``AggregateStore``; not safe to share across processes."""

    def __init__(self):
        self.daily: Dict[Tuple, DailyMetrics] = {}
        self.products: Dict[Tuple, DailyProductMetrics] = {}
        self.hourly: Dict[Tuple, HourlyOrderMetrics] = {}
        self.breakdowns: Dict[Tuple, OrderBreakdown] = {}
        self.customers: Dict[Tuple, DailyCustomerMetrics] = {}
        self.lifetimes: Dict[Tuple, CustomerLifetime] = {}
        self.geography: Dict[Tuple, CustomerGeography] = {}
        self.refunds: Dict[Tuple, RefundDetail] = {}
        self.cancellations: Dict[Tuple, CancellationDetail] = {}
        self.applied_orders: Dict[Tuple, AppliedOrder] = {}
        self.webhooks: Dict[Tuple, ProcessedWebhook] = {}
        self.events: List[ShopEvent] = []
        self._next_event_id = 1
        self._journal: Optional[List[JournalEntry]] = None

    # Transactions

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._journal is not None:
            yield
            return
        self._journal = []
        events, next_event_id = list(self.events), self._next_event_id
        try:
            yield
        except Exception:
            self._undo(self._journal)
            self.events, self._next_event_id = events, next_event_id
            raise
        finally:
            self._journal = None

    def _get(self, table: Dict[Tuple, Any], key: Tuple) -> Optional[Any]:
        """Look up a row about to be written, journaling its current state."""
        row = table.get(key)
        if self._journal is not None:
            self._journal.append((table, key, row, _column_values(row) if row is not None else None))
        return row

    @staticmethod
    def _undo(journal: List[JournalEntry]) -> None:
        for table, key, row, values in reversed(journal):
            if row is None:
                table.pop(key, None)
                continue
            for name, value in values.items():
                setattr(row, name, value)
            table[key] = row

    # Increments

    async def increment_daily_metrics(self, shop, day, delta: DailyMetricsDelta) -> None:
        key = (shop, day)
        row = self._get(self.daily, key)
        if row is None:
            row = self.daily[key] = _zeroed(DailyMetrics, DailyMetricsDelta, shop=shop, date=day)
        _accumulate(row, delta)

    async def increment_product_metrics(
        self, shop, day, product_id, product_title, variant_id, variant_title, delta: ProductMetricsDelta
    ) -> None:
        key = (shop, day, product_id, variant_id)
        row = self._get(self.products, key)
        if row is None:
            row = self.products[key] = _zeroed(
                DailyProductMetrics,
                ProductMetricsDelta,
                shop=shop,
                date=day,
                product_id=product_id,
                variant_id=variant_id,
                product_title=product_title or "",
                variant_title=variant_title,
            )
        elif not row.product_title and product_title:
            row.product_title = product_title
        _accumulate(row, delta)

    async def increment_hourly_metrics(self, shop, day, hour, delta: HourlyMetricsDelta) -> None:
        key = (shop, day, hour)
        row = self._get(self.hourly, key)
        if row is None:
            row = self.hourly[key] = _zeroed(HourlyOrderMetrics, HourlyMetricsDelta, shop=shop, date=day, hour=hour)
        _accumulate(row, delta)

    async def increment_order_breakdown(self, shop, day, breakdown_type, breakdown_value, delta: BreakdownDelta) -> None:
        key = (shop, day, breakdown_type, breakdown_value)
        row = self._get(self.breakdowns, key)
        if row is None:
            row = self.breakdowns[key] = _zeroed(
                OrderBreakdown,
                BreakdownDelta,
                shop=shop,
                date=day,
                breakdown_type=breakdown_type,
                breakdown_value=breakdown_value,
            )
        _accumulate(row, delta)

    async def increment_customer_metrics(self, shop, day, delta: CustomerMetricsDelta) -> None:
        key = (shop, day)
        row = self._get(self.customers, key)
        if row is None:
            row = self.customers[key] = _zeroed(DailyCustomerMetrics, CustomerMetricsDelta, shop=shop, date=day)
        _accumulate(row, delta)

    # Upserts

    async def upsert_customer_lifetime(self, shop, customer_id, update: CustomerOrderUpdate) -> None:
        key = (shop, customer_id)
        row = self._get(self.lifetimes, key)
        if row is None:
            row = self.lifetimes[key] = CustomerLifetime(
                shop=shop,
                customer_id=customer_id,
                total_orders=0,
                total_spent=0,
                total_refunded=0,
                average_order_value=0,
                is_repeat_customer=False,
            )
        merge_customer_order(row, update)

    async def add_customer_refund(self, shop, customer_id, amount) -> None:
        row = self._get(self.lifetimes, (shop, customer_id))
        if row is not None:
            row.total_refunded += amount

    async def upsert_customer_geography(self, shop, country, country_code, delta: GeographyDelta) -> None:
        key = (shop, country)
        row = self._get(self.geography, key)
        if row is None:
            row = self.geography[key] = _zeroed(
                CustomerGeography, GeographyDelta, shop=shop, country=country, country_code=country_code
            )
        elif row.country_code is None:
            row.country_code = country_code
        _accumulate(row, delta)

    # Per-event records

    async def record_refund_details(self, record: RefundDetailRecord) -> bool:
        key = (record.shop, record.refund_id)
        if self._get(self.refunds, key) is not None:
            return False
        self.refunds[key] = RefundDetail(
            shop=record.shop,
            refund_id=record.refund_id,
            order_id=record.order_id,
            date=record.date,
            amount=record.amount,
            reason=record.reason,
            note=record.note,
        )
        return True

    async def record_cancellation_details(self, record: CancellationDetailRecord) -> bool:
        key = (record.shop, record.order_id)
        if self._get(self.cancellations, key) is not None:
            return False
        self.cancellations[key] = CancellationDetail(
            shop=record.shop,
            order_id=record.order_id,
            date=record.date,
            cancellation_date=record.cancellation_date,
            amount=record.amount,
            reason=record.reason,
        )
        return True

    async def log_event(self, event: ShopEventRecord) -> None:
        self.events.append(ShopEvent(
            id=self._next_event_id,
            shop=event.shop,
            date=event.date,
            event_type=event.event_type,
            description=event.description,
            impact_amount=event.impact_amount,
            event_metadata=dict(event.metadata),
            created_at=dt.datetime.now(dt.timezone.utc).replace(tzinfo=None),
        ))
        self._next_event_id += 1

    async def mark_order_applied(
        self, shop, order_id, order_date, customer_id=None, financial_status=None, fulfillment_status=None
    ) -> bool:
        key = (shop, order_id)
        if self._get(self.applied_orders, key) is not None:
            return False
        self.applied_orders[key] = AppliedOrder(
            shop=shop,
            order_id=order_id,
            order_date=order_date,
            customer_id=customer_id,
            financial_status=financial_status,
            fulfillment_status=fulfillment_status,
        )
        return True

    async def get_applied_order(self, shop, order_id) -> Optional[AppliedOrder]:
        return self.applied_orders.get((shop, order_id))

    # Webhook ledger

    async def is_webhook_processed(self, shop, webhook_id) -> bool:
        return (shop, webhook_id) in self.webhooks

    async def mark_webhook_processed(self, shop, webhook_id, topic) -> None:
        key = (shop, webhook_id)
        if self._get(self.webhooks, key) is None:
            self.webhooks[key] = ProcessedWebhook(
                shop=shop,
                webhook_id=webhook_id,
                topic=topic,
                processed_at=dt.datetime.now(dt.timezone.utc).replace(tzinfo=None),
            )

    # Maintenance

    async def clear_shop(self, shop) -> None:
        for table in (
            self.daily,
            self.products,
            self.hourly,
            self.breakdowns,
            self.customers,
            self.lifetimes,
            self.geography,
            self.refunds,
            self.cancellations,
            self.applied_orders,
        ):
            for key in [k for k in table if k[0] == shop]:
                self._get(table, key)
                del table[key]
        self.events = [e for e in self.events if e.shop != shop]

    # Reads

    async def get_daily_metrics(self, shop, start, end) -> List[DailyMetrics]:
        rows = [r for (s, d), r in self.daily.items() if s == shop and _in_range(d, start, end)]
        return sorted(rows, key=lambda r: r.date)

    async def get_product_metrics(self, shop, start, end) -> List[DailyProductMetrics]:
        rows = [r for r in self.products.values() if r.shop == shop and _in_range(r.date, start, end)]
        return sorted(rows, key=lambda r: (r.date, r.product_id, r.variant_id))

    async def get_hourly_metrics(self, shop, start, end) -> List[HourlyOrderMetrics]:
        rows = [r for r in self.hourly.values() if r.shop == shop and _in_range(r.date, start, end)]
        return sorted(rows, key=lambda r: (r.date, r.hour))

    async def get_customer_metrics(self, shop, start, end) -> List[DailyCustomerMetrics]:
        rows = [r for r in self.customers.values() if r.shop == shop and _in_range(r.date, start, end)]
        return sorted(rows, key=lambda r: r.date)

    async def get_order_breakdown(self, shop, start, end, breakdown_type=None) -> List[OrderBreakdown]:
        rows = [
            r for r in self.breakdowns.values()
            if r.shop == shop
            and _in_range(r.date, start, end)
            and (breakdown_type is None or r.breakdown_type == breakdown_type)
        ]
        return sorted(rows, key=lambda r: (r.date, r.breakdown_type, r.breakdown_value))

    async def get_customer_lifetime(self, shop, customer_id) -> Optional[CustomerLifetime]:
        return self.lifetimes.get((shop, customer_id))

    async def list_customer_lifetimes(self, shop) -> List[CustomerLifetime]:
        rows = [r for r in self.lifetimes.values() if r.shop == shop]
        return sorted(rows, key=lambda r: r.customer_id)

    async def get_customer_geography(self, shop) -> List[CustomerGeography]:
        rows = [r for r in self.geography.values() if r.shop == shop]
        return sorted(rows, key=lambda r: r.country)

    async def get_refund_details(self, shop, start, end) -> List[RefundDetail]:
        rows = [r for r in self.refunds.values() if r.shop == shop and _in_range(r.date, start, end)]
        return sorted(rows, key=lambda r: (r.date, r.refund_id))

    async def get_cancellation_details(self, shop, start, end) -> List[CancellationDetail]:
        rows = [r for r in self.cancellations.values() if r.shop == shop and _in_range(r.date, start, end)]
        return sorted(rows, key=lambda r: (r.date, r.order_id))

    async def get_events(self, shop, start, end) -> List[ShopEvent]:
        rows = [e for e in self.events if e.shop == shop and _in_range(e.date, start, end)]
        return sorted(rows, key=lambda e: (e.date, e.id), reverse=True)
