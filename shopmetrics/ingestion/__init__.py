"""
Event Ingestion Module
"""
from .normalize import (
    CustomerSummary,
    NormalizedOrder,
    Refund,
    customer_from_graphql,
    order_from_graphql,
    order_from_webhook,
    refund_from_webhook,
)
from .transform import EventThresholds, OrderOutcome, OrderTransformer
from .webhooks import WebhookProcessor, WebhookResult, WebhookStatus, WebhookTopic

__all__ = [
    "CustomerSummary",
    "NormalizedOrder",
    "Refund",
    "customer_from_graphql",
    "order_from_graphql",
    "order_from_webhook",
    "refund_from_webhook",
    "EventThresholds",
    "OrderOutcome",
    "OrderTransformer",
    "WebhookProcessor",
    "WebhookResult",
    "WebhookStatus",
    "WebhookTopic",
]
