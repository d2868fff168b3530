"""
Aggregate Store Module
"""
from .base import AggregateStore
from .deltas import (
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
from .memory import InMemoryAggregateStore
from .sql import SqlAggregateStore

__all__ = [
    "AggregateStore",
    "InMemoryAggregateStore",
    "SqlAggregateStore",
    "BreakdownDelta",
    "CancellationDetailRecord",
    "CustomerMetricsDelta",
    "CustomerOrderUpdate",
    "DailyMetricsDelta",
    "GeographyDelta",
    "HourlyMetricsDelta",
    "ProductMetricsDelta",
    "RefundDetailRecord",
    "ShopEventRecord",
]
