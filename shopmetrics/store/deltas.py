"""
Delta structs for additive aggregate updates.

Each struct names exactly the columns it increments on its table, every field
defaults to zero, and two deltas combine field by field with ``+``. Money
fields are integer cents.
"""

import datetime as dt
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional


class _Additive:
    """Field-wise addition and dict export shared by the delta structs."""

    def __add__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return type(self)(**{
            f.name: getattr(self, f.name) + getattr(other, f.name)
            for f in fields(self)
        })

    def as_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def is_zero(self) -> bool:
        return all(getattr(self, f.name) == 0 for f in fields(self))


@dataclass(frozen=True)
class DailyMetricsDelta(_Additive):
    total_revenue: int = 0
    total_orders: int = 0
    new_customer_orders: int = 0
    returning_customer_orders: int = 0
    total_items_sold: int = 0
    total_discounts: int = 0
    orders_with_discount: int = 0
    total_refunds: int = 0
    refund_count: int = 0
    cancelled_orders: int = 0
    cancelled_revenue: int = 0
    paid_orders: int = 0
    pending_orders: int = 0
    refunded_orders: int = 0
    partially_refunded_orders: int = 0
    fulfilled_orders: int = 0
    unfulfilled_orders: int = 0
    partially_fulfilled_orders: int = 0


@dataclass(frozen=True)
class ProductMetricsDelta(_Additive):
    units_sold: int = 0
    revenue: int = 0
    discount_amount: int = 0
    units_refunded: int = 0
    refund_amount: int = 0


@dataclass(frozen=True)
class HourlyMetricsDelta(_Additive):
    order_count: int = 0
    revenue: int = 0
    items_sold: int = 0


@dataclass(frozen=True)
class BreakdownDelta(_Additive):
    order_count: int = 0
    revenue: int = 0


@dataclass(frozen=True)
class CustomerMetricsDelta(_Additive):
    new_customers: int = 0
    returning_customers: int = 0
    total_customers: int = 0


@dataclass(frozen=True)
class GeographyDelta(_Additive):
    customer_count: int = 0
    total_spent: int = 0
    total_orders: int = 0


# =============================================================================
# UPSERT / RECORD PAYLOADS
# =============================================================================

@dataclass(frozen=True)
class CustomerOrderUpdate:
    """One order merged into a customer's lifetime record"""
    order_date: dt.date
    order_amount: int
    email: Optional[str] = None
    refund_amount: int = 0


@dataclass(frozen=True)
class RefundDetailRecord:
    shop: str
    refund_id: str
    order_id: str
    date: dt.date
    amount: int
    reason: Optional[str] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class CancellationDetailRecord:
    shop: str
    order_id: str
    date: dt.date
    cancellation_date: dt.date
    amount: int
    reason: Optional[str] = None


@dataclass(frozen=True)
class ShopEventRecord:
    shop: str
    date: dt.date
    event_type: str
    description: str
    impact_amount: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
