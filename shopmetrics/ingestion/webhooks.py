"""
Webhook Processor

Real-time ingestion of upstream webhook deliveries:
- Delivery dedup through the (shop, webhook id) ledger
- Payload normalization and validation
- Per-topic dispatch into the shared order transformation
- Metrics and observability
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import structlog
from prometheus_client import Counter, Histogram

from shopmetrics.exceptions import PayloadError, UnsupportedTopicError
from shopmetrics.ingestion.normalize import order_from_webhook, refund_from_webhook
from shopmetrics.ingestion.transform import EventThresholds, OrderTransformer
from shopmetrics.store.base import AggregateStore

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

WEBHOOKS_RECEIVED = Counter(
    "shopmetrics_webhooks_total",
    "Webhook deliveries by topic and outcome",
    ["topic", "status"],
)

WEBHOOK_PROCESSING_TIME = Histogram(
    "shopmetrics_webhook_processing_seconds",
    "Time spent processing webhook deliveries",
    ["topic"],
)


# =============================================================================
# MODELS
# =============================================================================

class WebhookTopic(str, Enum):
    """Supported webhook topics"""
    ORDERS_CREATE = "orders/create"
    ORDERS_UPDATED = "orders/updated"
    ORDERS_CANCELLED = "orders/cancelled"
    REFUNDS_CREATE = "refunds/create"


class WebhookStatus(str, Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    ACKNOWLEDGED = "acknowledged"


@dataclass(frozen=True)
class WebhookResult:
    topic: WebhookTopic
    status: WebhookStatus
    changed: bool = False


# =============================================================================
# PROCESSOR
# =============================================================================

class WebhookProcessor:
    """
    Processes one webhook delivery at a time.

    The ledger is checked before and marked after the mutation, all in one
    store transaction, so a failed delivery leaves nothing behind and its
    redelivery is applied in full. Deliveries without a webhook id skip the
    ledger and rely on the per-event markers.

    Example:
        processor = WebhookProcessor(store)
        result = await processor.handle("orders/create", shop, webhook_id, body)
    """

    def __init__(self, store: AggregateStore, thresholds: Optional[EventThresholds] = None):
        self.store = store
        self.transformer = OrderTransformer(store, thresholds)

    async def handle(
        self,
        topic: str,
        shop: str,
        webhook_id: Optional[str],
        payload: Union[bytes, str, Dict[str, Any]],
    ) -> WebhookResult:
        try:
            webhook_topic = WebhookTopic(topic)
        except ValueError:
            WEBHOOKS_RECEIVED.labels(topic="unsupported", status="rejected").inc()
            raise UnsupportedTopicError(topic)

        if not shop:
            WEBHOOKS_RECEIVED.labels(topic=webhook_topic.value, status="rejected").inc()
            raise PayloadError("Missing shop domain")

        log = logger.bind(shop=shop, topic=webhook_topic.value, webhook_id=webhook_id)

        with WEBHOOK_PROCESSING_TIME.labels(topic=webhook_topic.value).time():
            try:
                result = await self._dispatch(webhook_topic, shop, webhook_id, self._decode(payload), log)
            except Exception as e:
                WEBHOOKS_RECEIVED.labels(topic=webhook_topic.value, status="error").inc()
                log.error("Webhook processing failed", error=str(e), error_type=type(e).__name__)
                raise

        WEBHOOKS_RECEIVED.labels(topic=webhook_topic.value, status=result.status.value).inc()
        return result

    @staticmethod
    def _decode(payload: Union[bytes, str, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(payload, dict):
            return payload
        try:
            decoded = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise PayloadError("Webhook body is not valid JSON", str(e)) from e
        if not isinstance(decoded, dict):
            raise PayloadError("Webhook body must be a JSON object")
        return decoded

    async def _dispatch(
        self,
        topic: WebhookTopic,
        shop: str,
        webhook_id: Optional[str],
        payload: Dict[str, Any],
        log,
    ) -> WebhookResult:
        if topic is WebhookTopic.ORDERS_UPDATED:
            # creation-time aggregates are not revised on update
            log.info("Order update acknowledged", order_id=payload.get("id"))
            return WebhookResult(topic, WebhookStatus.ACKNOWLEDGED)

        # ledger mark and effects commit together
        async with self.store.transaction():
            if webhook_id and await self.store.is_webhook_processed(shop, webhook_id):
                log.info("Duplicate webhook, skipping")
                return WebhookResult(topic, WebhookStatus.ALREADY_PROCESSED)

            if topic is WebhookTopic.ORDERS_CREATE:
                order = order_from_webhook(payload)
                outcome = await self.transformer.apply_order(shop, order)
                changed = outcome.changed
                log.info(
                    "Processed order",
                    order_id=order.id,
                    date=order.order_date.isoformat(),
                    order_applied=outcome.order_applied,
                )
            elif topic is WebhookTopic.ORDERS_CANCELLED:
                order = order_from_webhook(payload)
                changed = await self.transformer.apply_cancellation(shop, order)
                log.info(
                    "Processed cancellation",
                    order_id=order.id,
                    created=order.order_date.isoformat(),
                    cancelled_at=order.cancelled_at.isoformat() if order.cancelled_at else None,
                    applied=changed,
                )
            else:
                refund = refund_from_webhook(payload)
                changed = await self.transformer.apply_refund(shop, refund)
                log.info(
                    "Processed refund",
                    refund_id=refund.id,
                    order_id=refund.order_id,
                    amount_cents=refund.amount,
                    applied=changed,
                )

            if webhook_id:
                await self.store.mark_webhook_processed(shop, webhook_id, topic.value)
            return WebhookResult(topic, WebhookStatus.PROCESSED, changed)
