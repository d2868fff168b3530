"""
Reconciliation Pipeline

Rebuilds every aggregate for a shop from the upstream source of truth:

1. Clear the shop's aggregates (the webhook ledger is kept)
2. Page through orders created in the lookback window and apply each one
   through the same transformation webhook ingestion uses
3. Page through customers into the geography table

Runs strictly sequentially. A failure while processing orders marks the run
FAILED and leaves whatever was written in place; the next run clears it.
"""

import datetime as dt
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional, Protocol

import structlog
from prometheus_client import Counter, Histogram

from shopmetrics.config import get_settings
from shopmetrics.ingestion.normalize import customer_from_graphql, order_from_graphql
from shopmetrics.ingestion.transform import UNKNOWN_COUNTRY, OrderTransformer
from shopmetrics.reconciliation.client import Page
from shopmetrics.store.base import AggregateStore
from shopmetrics.store.deltas import GeographyDelta

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

RECONCILIATION_RUNS = Counter(
    "shopmetrics_reconciliation_runs_total",
    "Reconciliation runs by final status",
    ["status"],
)

RECONCILIATION_RECORDS = Counter(
    "shopmetrics_reconciliation_records_total",
    "Upstream records applied during reconciliation",
    ["kind"],
)

RECONCILIATION_DURATION = Histogram(
    "shopmetrics_reconciliation_duration_seconds",
    "Wall time of reconciliation runs",
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600],
)


# =============================================================================
# MODELS
# =============================================================================

class ReconciliationStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconciliationProgress:
    """Snapshot of a reconciliation run"""
    shop: str
    status: ReconciliationStatus
    started_at: dt.datetime
    orders_processed: int = 0
    customers_processed: int = 0
    pages_fetched: int = 0
    completed_at: Optional[dt.datetime] = None
    error: Optional[str] = None

    @property
    def is_finished(self) -> bool:
        return self.status is not ReconciliationStatus.RUNNING

    def to_dict(self):
        return {
            "shop": self.shop,
            "status": self.status.value,
            "orders_processed": self.orders_processed,
            "customers_processed": self.customers_processed,
            "pages_fetched": self.pages_fetched,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


class PageSource(Protocol):
    """The upstream calls the pipeline depends on"""

    async def fetch_orders_page(
        self, cursor: Optional[str], search_query: str, page_size: int = ..., line_items: int = ...
    ) -> Page: ...

    async def fetch_customers_page(self, cursor: Optional[str], page_size: int = ...) -> Page: ...


ProgressCallback = Callable[[ReconciliationProgress], None]


def window_start(now: dt.datetime, years: int) -> dt.date:
    """Same calendar day ``years`` back; Feb 29 falls back to Feb 28."""
    today = now.date()
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        return today.replace(year=today.year - years, day=28)


def orders_search_query(since: dt.date) -> str:
    return f"created_at:>='{since.isoformat()}'"


# =============================================================================
# PIPELINE
# =============================================================================

@dataclass
class ReconciliationPipeline:
    """
    Full rebuild of one shop's aggregates.

    Example:
        async with ShopifyGraphQLClient(shop, token) as client:
            progress = await ReconciliationPipeline(store, client).run(shop)
    """
    store: AggregateStore
    client: PageSource
    transformer: Optional[OrderTransformer] = None
    now: Callable[[], dt.datetime] = field(default=lambda: dt.datetime.now(dt.timezone.utc))

    def __post_init__(self):
        if self.transformer is None:
            self.transformer = OrderTransformer(self.store)
        recon = get_settings().reconciliation
        self.lookback_years = recon.lookback_years
        self.order_page_size = recon.order_page_size
        self.customer_page_size = recon.customer_page_size
        self.line_item_page_size = recon.line_item_page_size

    async def run(self, shop: str, on_progress: Optional[ProgressCallback] = None) -> ReconciliationProgress:
        """
        Rebuild ``shop`` and return the final progress snapshot.

        Never raises for upstream or processing failures; those end in a
        FAILED snapshot carrying the error message.
        """
        log = logger.bind(shop=shop)
        started = time.perf_counter()
        progress = ReconciliationProgress(
            shop=shop,
            status=ReconciliationStatus.RUNNING,
            started_at=self.now(),
        )
        self._notify(on_progress, progress, log)
        log.info("Reconciliation started")

        try:
            await self.store.clear_shop(shop)
            progress = await self._reconcile_orders(shop, progress, on_progress, log)
        except Exception as e:
            progress = replace(
                progress,
                status=ReconciliationStatus.FAILED,
                completed_at=self.now(),
                error=str(e),
            )
            log.error(
                "Reconciliation failed",
                error=str(e),
                error_type=type(e).__name__,
                orders_processed=progress.orders_processed,
            )
        else:
            progress = await self._reconcile_customers(shop, progress, on_progress, log)
            progress = replace(progress, status=ReconciliationStatus.COMPLETED, completed_at=self.now())
            log.info(
                "Reconciliation completed",
                orders_processed=progress.orders_processed,
                customers_processed=progress.customers_processed,
                pages_fetched=progress.pages_fetched,
            )

        RECONCILIATION_RUNS.labels(status=progress.status.value).inc()
        RECONCILIATION_DURATION.observe(time.perf_counter() - started)
        self._notify(on_progress, progress, log)
        return progress

    async def _reconcile_orders(self, shop, progress, on_progress, log) -> ReconciliationProgress:
        since = window_start(self.now(), self.lookback_years)
        search_query = orders_search_query(since)
        log.info("Fetching orders", since=since.isoformat())

        cursor = None
        while True:
            page = await self.client.fetch_orders_page(
                cursor,
                search_query,
                page_size=self.order_page_size,
                line_items=self.line_item_page_size,
            )
            for node in page.nodes:
                await self.transformer.apply_order(shop, order_from_graphql(node))
            RECONCILIATION_RECORDS.labels(kind="order").inc(len(page.nodes))

            progress = replace(
                progress,
                orders_processed=progress.orders_processed + len(page.nodes),
                pages_fetched=progress.pages_fetched + 1,
            )
            self._notify(on_progress, progress, log)
            log.debug("Processed orders page", orders=len(page.nodes), total=progress.orders_processed)

            if not page.has_next_page or not page.end_cursor:
                return progress
            cursor = page.end_cursor

    async def _reconcile_customers(self, shop, progress, on_progress, log) -> ReconciliationProgress:
        cursor = None
        while True:
            try:
                page = await self.client.fetch_customers_page(cursor, page_size=self.customer_page_size)
                for node in page.nodes:
                    customer = customer_from_graphql(node)
                    await self.store.upsert_customer_geography(
                        shop,
                        customer.country or UNKNOWN_COUNTRY,
                        customer.country_code,
                        GeographyDelta(
                            customer_count=1,
                            total_spent=customer.amount_spent,
                            total_orders=customer.orders_count,
                        ),
                    )
                    progress = replace(progress, customers_processed=progress.customers_processed + 1)
            except Exception as e:
                # geography is best effort; the run still completes
                log.warning(
                    "Customer reconciliation stopped",
                    error=str(e),
                    error_type=type(e).__name__,
                    customers_processed=progress.customers_processed,
                )
                return progress

            RECONCILIATION_RECORDS.labels(kind="customer").inc(len(page.nodes))
            progress = replace(progress, pages_fetched=progress.pages_fetched + 1)
            self._notify(on_progress, progress, log)

            if not page.has_next_page or not page.end_cursor:
                return progress
            cursor = page.end_cursor

    @staticmethod
    def _notify(on_progress: Optional[ProgressCallback], progress: ReconciliationProgress, log) -> None:
        if on_progress is None:
            return
        try:
            on_progress(progress)
        except Exception as e:
            log.warning("Progress callback failed", error=str(e))
