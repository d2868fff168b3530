"""
FastAPI dependencies.

Routes receive the store and the upstream client factory through
``Depends`` so tests can swap them via ``app.dependency_overrides``.
"""

from typing import Callable, Optional

from shopmetrics.database.connection import get_engine
from shopmetrics.reconciliation.client import ShopifyGraphQLClient
from shopmetrics.store.base import AggregateStore
from shopmetrics.store.sql import SqlAggregateStore

_store: Optional[AggregateStore] = None

ClientFactory = Callable[[str, str], ShopifyGraphQLClient]


def get_store() -> AggregateStore:
    """SQL store bound to the global engine, created on first use."""
    global _store
    if _store is None:
        _store = SqlAggregateStore(get_engine())
    return _store


def reset_store() -> None:
    global _store
    _store = None


def get_client_factory() -> ClientFactory:
    return ShopifyGraphQLClient
