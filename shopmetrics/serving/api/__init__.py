"""
HTTP API Module
"""
from .dependencies import get_client_factory, get_store

__all__ = ["get_client_factory", "get_store"]
