"""
Database Models - Aggregate Store Schema

Every table is partitioned by ``shop``. Money columns hold integer minor units
(cents); conversion to decimal happens at read/presentation boundaries.

Aggregate Tables (additive only):
- DailyMetrics: per-day order, revenue, refund and status counters
- DailyProductMetrics: per-day, per-product/variant sales and refunds
- DailyCustomerMetrics: per-day new/returning customer counts
- HourlyOrderMetrics: per-hour order volume
- OrderBreakdown: per-day order count/revenue by breakdown dimension
- CustomerLifetime: long-lived per-customer totals
- CustomerGeography: per-country customer totals

Per-event Tables:
- RefundDetail / CancellationDetail: natural-key audit rows, also used as
  at-most-once guards for refund and cancellation accounting
- ShopEvent: append-only notable-event feed
- AppliedOrder: marks an order's creation effects as applied
- ProcessedWebhook: webhook delivery dedup ledger
"""

import datetime as dt
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class BreakdownType(str, Enum):
    """Order breakdown dimensions"""
    CHANNEL = "channel"
    PAYMENT_METHOD = "payment_method"
    FINANCIAL_STATUS = "financial_status"
    FULFILLMENT_STATUS = "fulfillment_status"
    DISCOUNT = "discount"
    COUNTRY = "country"


class ShopEventType(str, Enum):
    """Notable event types in the merchant feed"""
    LARGE_ORDER = "large_order"
    SIGNIFICANT_REFUND = "significant_refund"
    ORDER_CANCELLED = "order_cancelled"


# =============================================================================
# AGGREGATE TABLES
# =============================================================================

class DailyMetrics(Base):
    """
    Daily Shop Metrics

    Gross figures only. Net revenue is derived at read time as
    ``total_revenue - cancelled_revenue - total_refunds``.
    """
    __tablename__ = "daily_metrics"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)

    total_revenue: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    new_customer_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    returning_customer_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_items_sold: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_discounts: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    orders_with_discount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    total_refunds: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    refund_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_revenue: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    # Financial status
    paid_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pending_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refunded_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    partially_refunded_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Fulfillment status
    fulfilled_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unfulfilled_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    partially_fulfilled_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class DailyProductMetrics(Base):
    """Daily per-variant product sales and refunds"""
    __tablename__ = "daily_product_metrics"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    product_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    variant_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    product_title: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    variant_title: Mapped[str] = mapped_column(String(500), default="Default", nullable=False)

    units_sold: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    revenue: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    discount_amount: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    units_refunded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refund_amount: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    __table_args__ = (
        Index("ix_daily_product_metrics_product", "shop", "product_id"),
    )


class DailyCustomerMetrics(Base):
    """Daily new vs returning customer counts"""
    __tablename__ = "daily_customer_metrics"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)

    new_customers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    returning_customers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_customers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class HourlyOrderMetrics(Base):
    """Order volume by hour of day (0-23, shop local time)"""
    __tablename__ = "hourly_order_metrics"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    hour: Mapped[int] = mapped_column(Integer, primary_key=True)

    order_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    revenue: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    items_sold: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class OrderBreakdown(Base):
    """Daily order count and revenue bucketed by a breakdown dimension"""
    __tablename__ = "daily_order_breakdown"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    breakdown_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    breakdown_value: Mapped[str] = mapped_column(String(255), primary_key=True)

    order_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    revenue: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    __table_args__ = (
        Index("ix_daily_order_breakdown_type", "shop", "breakdown_type", "date"),
    )


class CustomerLifetime(Base):
    """
    Customer Lifetime Totals

    Upserted on every order touching the customer. The repeat flag is
    derived from ``total_orders > 1``.
    """
    __tablename__ = "customer_lifetime"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    email: Mapped[Optional[str]] = mapped_column(String(255))
    first_order_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    last_order_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_refunded: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    average_order_value: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    is_repeat_customer: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_customer_lifetime_spent", "shop", "total_spent"),
    )


class CustomerGeography(Base):
    """Customer totals by default-address country"""
    __tablename__ = "customer_geography"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    country: Mapped[str] = mapped_column(String(100), primary_key=True)

    country_code: Mapped[Optional[str]] = mapped_column(String(8))
    customer_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


# =============================================================================
# PER-EVENT TABLES
# =============================================================================

class RefundDetail(Base):
    """One row per upstream refund id"""
    __tablename__ = "refund_details"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    refund_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255))
    note: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_refund_details_date", "shop", "date"),
    )


class CancellationDetail(Base):
    """
    One row per cancelled order.

    ``date`` is the order creation date so cancelled revenue offsets the
    original sale; ``cancellation_date`` is when the cancellation happened.
    """
    __tablename__ = "cancellation_details"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    cancellation_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255))

    __table_args__ = (
        Index("ix_cancellation_details_date", "shop", "date"),
    )


class ShopEvent(Base):
    """Append-only notable-event feed"""
    __tablename__ = "shop_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    impact_amount: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_shop_events_shop_date", "shop", "date"),
    )


class AppliedOrder(Base):
    """Marks that an order's creation effects were applied to the aggregates"""
    __tablename__ = "applied_orders"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    customer_id: Mapped[Optional[str]] = mapped_column(String(64))
    order_date: Mapped[dt.date] = mapped_column(Date, nullable=False)

    # Statuses whose counters creation booked; null when the order was already cancelled
    financial_status: Mapped[Optional[str]] = mapped_column(String(50))
    fulfillment_status: Mapped[Optional[str]] = mapped_column(String(50))


class ProcessedWebhook(Base):
    """Webhook delivery dedup ledger"""
    __tablename__ = "processed_webhooks"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    webhook_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    topic: Mapped[str] = mapped_column(String(64), nullable=False)
    processed_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())


# Tables wiped by a reconciliation rebuild. The webhook ledger is kept.
AGGREGATE_MODELS = (
    DailyMetrics,
    DailyProductMetrics,
    DailyCustomerMetrics,
    HourlyOrderMetrics,
    OrderBreakdown,
    CustomerLifetime,
    CustomerGeography,
    RefundDetail,
    CancellationDetail,
    ShopEvent,
    AppliedOrder,
)
