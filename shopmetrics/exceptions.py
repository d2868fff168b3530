"""
Exception hierarchy for the shop metrics engine.

    ShopMetricsError (base)
    ├── UpstreamError              - Shopify Admin API failures
    │   ├── UpstreamHTTPError      - non-2xx response or transport failure
    │   ├── UpstreamGraphQLError   - response carried a GraphQL "errors" array
    │   └── UpstreamDataError      - response has an unexpected structure
    ├── PayloadError               - webhook body could not be normalized
    └── UnsupportedTopicError      - webhook topic has no handler
"""

from typing import Any, List, Optional


class ShopMetricsError(Exception):
    """Base exception for all shop metrics errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class UpstreamError(ShopMetricsError):
    """Fetching from the upstream Admin API failed."""


class UpstreamHTTPError(UpstreamError):
    """
    Transport failure or non-2xx HTTP status.

    status_code is None when no response was received at all.
    """

    def __init__(self, message: str, details: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, details)
        self.status_code = status_code


class UpstreamGraphQLError(UpstreamError):
    """The GraphQL response reported errors."""

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        self.errors = errors or []
        details = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in self.errors)
        super().__init__(message, details or None)


class UpstreamDataError(UpstreamError):
    """
    Upstream response has an unexpected structure.

    The API answered successfully but not in a shape we understand.
    """

    def __init__(self, message: str, details: Optional[str] = None, expected: Optional[str] = None):
        super().__init__(message, details)
        self.expected = expected


class PayloadError(ShopMetricsError):
    """Webhook payload is missing required fields or is not valid JSON."""


class UnsupportedTopicError(ShopMetricsError):
    """No handler is registered for the webhook topic."""

    def __init__(self, topic: str):
        super().__init__("Unsupported webhook topic", topic)
        self.topic = topic
