"""
Reconciliation Module
"""
from .client import Page, ShopifyGraphQLClient
from .pipeline import (
    ReconciliationPipeline,
    ReconciliationProgress,
    ReconciliationStatus,
)
from .rate_limit import RateLimiter

__all__ = [
    "Page",
    "ShopifyGraphQLClient",
    "RateLimiter",
    "ReconciliationPipeline",
    "ReconciliationProgress",
    "ReconciliationStatus",
]
