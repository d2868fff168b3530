"""
Reconciliation Endpoint

Runs a full rebuild for one shop and waits for it to finish.
"""

from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shopmetrics.reconciliation.pipeline import ReconciliationPipeline, ReconciliationStatus
from shopmetrics.serving.api.dependencies import ClientFactory, get_client_factory, get_store
from shopmetrics.store.base import AggregateStore

router = APIRouter()
logger = structlog.get_logger(__name__)


class ReconcileRequest(BaseModel):
    shop: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)


class ReconcileResponse(BaseModel):
    status: str
    orders_processed: int
    customers_processed: int
    pages_fetched: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile(
    body: ReconcileRequest,
    store: AggregateStore = Depends(get_store),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Rebuild ``shop``; a FAILED run is reported with status 500 and its partial counters."""
    async with client_factory(body.shop, body.access_token) as client:
        progress = await ReconciliationPipeline(store, client).run(body.shop)

    response = ReconcileResponse(
        status=progress.status.value,
        orders_processed=progress.orders_processed,
        customers_processed=progress.customers_processed,
        pages_fetched=progress.pages_fetched,
        started_at=progress.started_at,
        completed_at=progress.completed_at,
        error=progress.error,
    )
    if progress.status is ReconciliationStatus.FAILED:
        return JSONResponse(response.model_dump(mode="json"), status_code=500)
    return response
