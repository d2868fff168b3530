"""
SQL aggregate store.

Increments are single ``INSERT ... ON CONFLICT DO UPDATE SET col = col +
excluded.col`` statements, so concurrent writers never lose an update.
Per-event records use ``ON CONFLICT DO NOTHING`` and report whether a row was
inserted. PostgreSQL (asyncpg) and SQLite (aiosqlite) are supported.

Outside ``transaction()`` every call runs in its own session. Inside it, all
calls made from the same task share one session and commit once.
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy import update as sql_update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from shopmetrics.database.connection import create_session_factory, session_scope
from shopmetrics.database.models import (
    AGGREGATE_MODELS,
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

logger = structlog.get_logger(__name__)

_INSERT_BUILDERS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

_active_transaction: ContextVar[Optional[Tuple["SqlAggregateStore", AsyncSession]]] = ContextVar(
    "shopmetrics_sql_transaction", default=None
)


class SqlAggregateStore(AggregateStore):
    """
    ``AggregateStore`` backed by SQLAlchemy async sessions.

    Example:
        engine = await init_database()
        store = SqlAggregateStore(engine)
        await store.increment_daily_metrics(shop, day, DailyMetricsDelta(total_orders=1))
    """

    def __init__(self, engine: AsyncEngine):
        dialect = engine.dialect.name
        if dialect not in _INSERT_BUILDERS:
            raise ValueError(f"Unsupported database dialect for upserts: {dialect}")
        self._insert = _INSERT_BUILDERS[dialect]
        self._session_factory = create_session_factory(engine)

    def _joined_session(self) -> Optional[AsyncSession]:
        active = _active_transaction.get()
        if active is not None and active[0] is self:
            return active[1]
        return None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        session = self._joined_session()
        if session is not None:
            yield session
            return
        async with session_scope(self._session_factory) as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._joined_session() is not None:
            yield
            return
        async with session_scope(self._session_factory) as session:
            token = _active_transaction.set((self, session))
            try:
                yield
            finally:
                _active_transaction.reset(token)

    async def _increment(
        self,
        model,
        keys: Dict[str, Any],
        delta,
        extra: Optional[Dict[str, Any]] = None,
        merge: Optional[Callable[[Any, Any], Dict[str, Any]]] = None,
    ) -> None:
        increments = delta.as_dict()
        stmt = self._insert(model).values(**keys, **(extra or {}), **increments)
        table = model.__table__
        set_ = {name: table.c[name] + stmt.excluded[name] for name in increments}
        if merge is not None:
            set_.update(merge(table, stmt.excluded))
        stmt = stmt.on_conflict_do_update(index_elements=list(keys), set_=set_)
        async with self._session() as session:
            await session.execute(stmt)

    async def _insert_or_ignore(self, model, index_elements: List[str], values: Dict[str, Any]) -> bool:
        stmt = self._insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
        async with self._session() as session:
            result = await session.execute(stmt)
            inserted = result.rowcount == 1
        return inserted

    # Increments

    async def increment_daily_metrics(self, shop, day, delta: DailyMetricsDelta) -> None:
        await self._increment(DailyMetrics, {"shop": shop, "date": day}, delta)

    async def increment_product_metrics(
        self, shop, day, product_id, product_title, variant_id, variant_title, delta: ProductMetricsDelta
    ) -> None:
        await self._increment(
            DailyProductMetrics,
            {"shop": shop, "date": day, "product_id": product_id, "variant_id": variant_id},
            delta,
            extra={"product_title": product_title or "", "variant_title": variant_title},
            merge=lambda table, excluded: {
                "product_title": func.coalesce(
                    func.nullif(table.c.product_title, ""), excluded.product_title
                ),
            },
        )

    async def increment_hourly_metrics(self, shop, day, hour, delta: HourlyMetricsDelta) -> None:
        await self._increment(HourlyOrderMetrics, {"shop": shop, "date": day, "hour": hour}, delta)

    async def increment_order_breakdown(self, shop, day, breakdown_type, breakdown_value, delta: BreakdownDelta) -> None:
        await self._increment(
            OrderBreakdown,
            {"shop": shop, "date": day, "breakdown_type": breakdown_type, "breakdown_value": breakdown_value},
            delta,
        )

    async def increment_customer_metrics(self, shop, day, delta: CustomerMetricsDelta) -> None:
        await self._increment(DailyCustomerMetrics, {"shop": shop, "date": day}, delta)

    # Upserts

    async def upsert_customer_lifetime(self, shop, customer_id, update: CustomerOrderUpdate) -> None:
        async with self._session() as session:
            row = await session.get(
                CustomerLifetime, (shop, customer_id), with_for_update=True, populate_existing=True
            )
            if row is None:
                row = CustomerLifetime(
                    shop=shop,
                    customer_id=customer_id,
                    total_orders=0,
                    total_spent=0,
                    total_refunded=0,
                    average_order_value=0,
                    is_repeat_customer=False,
                )
                session.add(row)
            merge_customer_order(row, update)
            # core statements later in the same transaction must see the row
            await session.flush()

    async def add_customer_refund(self, shop, customer_id, amount) -> None:
        stmt = (
            sql_update(CustomerLifetime)
            .where(CustomerLifetime.shop == shop, CustomerLifetime.customer_id == customer_id)
            .values(total_refunded=CustomerLifetime.total_refunded + amount)
        )
        async with self._session() as session:
            await session.execute(stmt)

    async def upsert_customer_geography(self, shop, country, country_code, delta: GeographyDelta) -> None:
        await self._increment(
            CustomerGeography,
            {"shop": shop, "country": country},
            delta,
            extra={"country_code": country_code},
            merge=lambda table, excluded: {
                "country_code": func.coalesce(table.c.country_code, excluded.country_code),
            },
        )

    # Per-event records

    async def record_refund_details(self, record: RefundDetailRecord) -> bool:
        return await self._insert_or_ignore(
            RefundDetail,
            ["shop", "refund_id"],
            {
                "shop": record.shop,
                "refund_id": record.refund_id,
                "order_id": record.order_id,
                "date": record.date,
                "amount": record.amount,
                "reason": record.reason,
                "note": record.note,
            },
        )

    async def record_cancellation_details(self, record: CancellationDetailRecord) -> bool:
        return await self._insert_or_ignore(
            CancellationDetail,
            ["shop", "order_id"],
            {
                "shop": record.shop,
                "order_id": record.order_id,
                "date": record.date,
                "cancellation_date": record.cancellation_date,
                "amount": record.amount,
                "reason": record.reason,
            },
        )

    async def log_event(self, event: ShopEventRecord) -> None:
        async with self._session() as session:
            session.add(ShopEvent(
                shop=event.shop,
                date=event.date,
                event_type=event.event_type,
                description=event.description,
                impact_amount=event.impact_amount,
                event_metadata=dict(event.metadata),
            ))

    async def mark_order_applied(
        self, shop, order_id, order_date, customer_id=None, financial_status=None, fulfillment_status=None
    ) -> bool:
        return await self._insert_or_ignore(
            AppliedOrder,
            ["shop", "order_id"],
            {
                "shop": shop,
                "order_id": order_id,
                "order_date": order_date,
                "customer_id": customer_id,
                "financial_status": financial_status,
                "fulfillment_status": fulfillment_status,
            },
        )

    async def get_applied_order(self, shop, order_id) -> Optional[AppliedOrder]:
        async with self._session() as session:
            return await session.get(AppliedOrder, (shop, order_id))

    # Webhook ledger

    async def is_webhook_processed(self, shop, webhook_id) -> bool:
        stmt = select(ProcessedWebhook.webhook_id).where(
            ProcessedWebhook.shop == shop, ProcessedWebhook.webhook_id == webhook_id
        )
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def mark_webhook_processed(self, shop, webhook_id, topic) -> None:
        await self._insert_or_ignore(
            ProcessedWebhook,
            ["shop", "webhook_id"],
            {"shop": shop, "webhook_id": webhook_id, "topic": topic},
        )

    # Maintenance

    async def clear_shop(self, shop) -> None:
        async with self._session() as session:
            for model in AGGREGATE_MODELS:
                await session.execute(delete(model).where(model.shop == shop))
        logger.info("Cleared shop aggregates", shop=shop, tables=len(AGGREGATE_MODELS))

    # Reads

    async def _all(self, stmt) -> list:
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def get_daily_metrics(self, shop, start, end) -> List[DailyMetrics]:
        return await self._all(
            select(DailyMetrics)
            .where(DailyMetrics.shop == shop, DailyMetrics.date >= start, DailyMetrics.date <= end)
            .order_by(DailyMetrics.date)
        )

    async def get_product_metrics(self, shop, start, end) -> List[DailyProductMetrics]:
        return await self._all(
            select(DailyProductMetrics)
            .where(
                DailyProductMetrics.shop == shop,
                DailyProductMetrics.date >= start,
                DailyProductMetrics.date <= end,
            )
            .order_by(DailyProductMetrics.date, DailyProductMetrics.product_id, DailyProductMetrics.variant_id)
        )

    async def get_hourly_metrics(self, shop, start, end) -> List[HourlyOrderMetrics]:
        return await self._all(
            select(HourlyOrderMetrics)
            .where(
                HourlyOrderMetrics.shop == shop,
                HourlyOrderMetrics.date >= start,
                HourlyOrderMetrics.date <= end,
            )
            .order_by(HourlyOrderMetrics.date, HourlyOrderMetrics.hour)
        )

    async def get_customer_metrics(self, shop, start, end) -> List[DailyCustomerMetrics]:
        return await self._all(
            select(DailyCustomerMetrics)
            .where(
                DailyCustomerMetrics.shop == shop,
                DailyCustomerMetrics.date >= start,
                DailyCustomerMetrics.date <= end,
            )
            .order_by(DailyCustomerMetrics.date)
        )

    async def get_order_breakdown(self, shop, start, end, breakdown_type=None) -> List[OrderBreakdown]:
        stmt = select(OrderBreakdown).where(
            OrderBreakdown.shop == shop,
            OrderBreakdown.date >= start,
            OrderBreakdown.date <= end,
        )
        if breakdown_type is not None:
            stmt = stmt.where(OrderBreakdown.breakdown_type == breakdown_type)
        return await self._all(
            stmt.order_by(OrderBreakdown.date, OrderBreakdown.breakdown_type, OrderBreakdown.breakdown_value)
        )

    async def get_customer_lifetime(self, shop, customer_id) -> Optional[CustomerLifetime]:
        async with self._session() as session:
            return await session.get(CustomerLifetime, (shop, customer_id))

    async def list_customer_lifetimes(self, shop) -> List[CustomerLifetime]:
        return await self._all(
            select(CustomerLifetime)
            .where(CustomerLifetime.shop == shop)
            .order_by(CustomerLifetime.customer_id)
        )

    async def get_customer_geography(self, shop) -> List[CustomerGeography]:
        return await self._all(
            select(CustomerGeography)
            .where(CustomerGeography.shop == shop)
            .order_by(CustomerGeography.country)
        )

    async def get_refund_details(self, shop, start, end) -> List[RefundDetail]:
        return await self._all(
            select(RefundDetail)
            .where(RefundDetail.shop == shop, RefundDetail.date >= start, RefundDetail.date <= end)
            .order_by(RefundDetail.date, RefundDetail.refund_id)
        )

    async def get_cancellation_details(self, shop, start, end) -> List[CancellationDetail]:
        return await self._all(
            select(CancellationDetail)
            .where(
                CancellationDetail.shop == shop,
                CancellationDetail.date >= start,
                CancellationDetail.date <= end,
            )
            .order_by(CancellationDetail.date, CancellationDetail.order_id)
        )

    async def get_events(self, shop, start, end) -> List[ShopEvent]:
        return await self._all(
            select(ShopEvent)
            .where(ShopEvent.shop == shop, ShopEvent.date >= start, ShopEvent.date <= end)
            .order_by(ShopEvent.date.desc(), ShopEvent.id.desc())
        )
