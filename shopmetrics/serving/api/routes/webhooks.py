"""
Webhook Endpoints

Receives upstream webhook deliveries. The shop and delivery id come from the
``X-Shopify-Shop-Domain`` and ``X-Shopify-Webhook-Id`` headers.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from shopmetrics.exceptions import UnsupportedTopicError
from shopmetrics.ingestion.webhooks import WebhookProcessor
from shopmetrics.store.base import AggregateStore
from shopmetrics.serving.api.dependencies import get_store

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/{resource}/{action}")
async def receive_webhook(
    resource: str,
    action: str,
    request: Request,
    shop: Optional[str] = Header(None, alias="X-Shopify-Shop-Domain"),
    webhook_id: Optional[str] = Header(None, alias="X-Shopify-Webhook-Id"),
    store: AggregateStore = Depends(get_store),
):
    """
    Process one delivery.

    Returns ``processed``, ``already_processed`` or ``acknowledged``.
    Unknown topics are 404, a missing shop header is 400, and any
    processing failure is 500 so the sender retries.
    """
    topic = f"{resource}/{action}"
    if not shop:
        return JSONResponse({"error": "Missing X-Shopify-Shop-Domain header"}, status_code=400)

    body = await request.body()
    try:
        result = await WebhookProcessor(store).handle(topic, shop, webhook_id, body)
    except UnsupportedTopicError as e:
        return JSONResponse({"error": str(e)}, status_code=404)
    except Exception as e:
        logger.error("Webhook delivery failed", topic=topic, shop=shop, error=str(e))
        return JSONResponse({"error": "Processing failed", "details": str(e)}, status_code=500)

    return {"status": result.status.value}
