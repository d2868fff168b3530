"""
Insights API Endpoints

Read-only analytics over the aggregate store. Every range endpoint takes
either a named ``period`` or an explicit ``start_date``/``end_date`` pair.
"""

from datetime import date
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from shopmetrics.analytics.models import Period
from shopmetrics.analytics.periods import resolve_period
from shopmetrics.analytics.query import MetricsQuery, daily_to_dict
from shopmetrics.config import get_settings
from shopmetrics.database.models import BreakdownType
from shopmetrics.serving.api.dependencies import get_store
from shopmetrics.store.base import AggregateStore

router = APIRouter()
logger = structlog.get_logger(__name__)


def get_query(store: AggregateStore = Depends(get_store)) -> MetricsQuery:
    return MetricsQuery(store)


def get_period(
    period: Optional[str] = Query(None, description="Named period, e.g. last30days"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Period:
    try:
        return resolve_period(period or get_settings().analytics.default_period, start_date, end_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/report")
async def get_report(
    shop: str,
    compare: str = Query("previous", pattern="^(previous|none)$"),
    period: Period = Depends(get_period),
    query: MetricsQuery = Depends(get_query),
):
    """Insight report with previous-period comparison, summary text and daily rows."""
    bundle = await query.build_report(shop, period, compare=compare != "none")
    logger.info("Report generated", shop=shop, insights=len(bundle.report.insights))
    return bundle.to_dict()


@router.get("/daily")
async def get_daily(
    shop: str,
    period: Period = Depends(get_period),
    query: MetricsQuery = Depends(get_query),
):
    rows = await query.get_daily_range(shop, period)
    return {"period": period.to_dict(), "data": [daily_to_dict(row) for row in rows]}


@router.get("/products")
async def get_products(
    shop: str,
    limit: int = Query(20, ge=1, le=500),
    period: Period = Depends(get_period),
    query: MetricsQuery = Depends(get_query),
):
    products = await query.get_products(shop, period)
    return {
        "period": period.to_dict(),
        "products": [p.to_dict() for p in products[:limit]],
        "total_products": len(products),
    }


@router.get("/events")
async def get_events(
    shop: str,
    period: Period = Depends(get_period),
    query: MetricsQuery = Depends(get_query),
):
    return {"period": period.to_dict(), "events": await query.get_events(shop, period)}


@router.get("/breakdown")
async def get_breakdown(
    shop: str,
    breakdown_type: Optional[BreakdownType] = Query(None, alias="type"),
    period: Period = Depends(get_period),
    query: MetricsQuery = Depends(get_query),
):
    """Order breakdowns by dimension, hourly distribution and refund/cancellation reasons."""
    return {
        "period": period.to_dict(),
        "breakdowns": await query.get_breakdowns(
            shop, period, breakdown_type.value if breakdown_type else None
        ),
        "hourly": await query.get_hourly_distribution(shop, period),
        "refunds_by_reason": await query.get_refunds_by_reason(shop, period),
        "cancellations_by_reason": await query.get_cancellations_by_reason(shop, period),
    }


@router.get("/customers")
async def get_customers(
    shop: str,
    period: Period = Depends(get_period),
    query: MetricsQuery = Depends(get_query),
):
    return {
        "period": period.to_dict(),
        "growth": await query.get_customer_growth(shop, period),
        "value": await query.get_customer_value_stats(shop),
        "geography": await query.get_customer_geography(shop),
    }


@router.get("/summary")
async def get_summary(shop: str, query: MetricsQuery = Depends(get_query)):
    """Today vs yesterday and this month vs last month."""
    return await query.get_dashboard_summary(shop)
