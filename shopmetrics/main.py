"""
FastAPI Application

Main entry point for the shop metrics API: webhook intake, reconciliation
trigger, insight queries, health probes and Prometheus metrics.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app

from shopmetrics.config import get_settings
from shopmetrics.config.logging import configure_logging
from shopmetrics.database.connection import close_database, init_database
from shopmetrics.serving.api.dependencies import reset_store
from shopmetrics.serving.api.middleware import RequestLoggingMiddleware
from shopmetrics.serving.api.routes import (
    health_router,
    insights_router,
    reconcile_router,
    webhooks_router,
)

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()
    logger.info("Starting shop metrics API", environment=settings.app_env, version=settings.version)

    await init_database()

    yield

    logger.info("Shutting down...")
    reset_store()
    await close_database()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Order metrics aggregation and rule-based sales insights",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(webhooks_router, prefix="/webhooks", tags=["Webhooks"])
    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(reconcile_router, prefix="/api/v1", tags=["Reconciliation"])
    app.include_router(insights_router, prefix="/api/v1/insights", tags=["Insights"])

    if settings.monitoring.enable_metrics_endpoint:
        app.mount("/metrics", make_asgi_app())

    @app.get("/api/v1/info")
    async def api_info():
        return {
            "name": settings.app_name,
            "version": settings.version,
            "environment": settings.app_env,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
