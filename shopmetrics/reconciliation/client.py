"""
Async client for the Shopify Admin GraphQL API.

Fetches cursor-paginated order and customer pages for reconciliation.
Every page request first takes a token from the rate limiter.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import structlog

from shopmetrics.config import get_settings
from shopmetrics.exceptions import UpstreamDataError, UpstreamGraphQLError, UpstreamHTTPError
from shopmetrics.reconciliation.rate_limit import RateLimiter

logger = structlog.get_logger(__name__)

ORDERS_QUERY = """
query GetOrders($first: Int!, $cursor: String, $query: String!, $lineItems: Int!) {
  orders(first: $first, after: $cursor, query: $query, sortKey: CREATED_AT) {
    edges {
      node {
        id
        name
        createdAt
        cancelledAt
        cancelReason
        displayFinancialStatus
        displayFulfillmentStatus
        totalPriceSet { shopMoney { amount currencyCode } }
        totalDiscountsSet { shopMoney { amount } }
        shippingAddress { country countryCodeV2 }
        customer { id email numberOfOrders }
        lineItems(first: $lineItems) {
          edges {
            node {
              id
              title
              quantity
              originalUnitPriceSet { shopMoney { amount } }
              totalDiscountSet { shopMoney { amount } }
              product { id }
              variant { id title }
            }
          }
        }
        refunds {
          id
          createdAt
          note
          totalRefundedSet { shopMoney { amount } }
          refundLineItems(first: $lineItems) {
            edges {
              node {
                quantity
                subtotalSet { shopMoney { amount } }
                lineItem { id product { id } variant { id } }
              }
            }
          }
        }
        sourceName
        paymentGatewayNames
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

CUSTOMERS_QUERY = """
query GetCustomers($first: Int!, $cursor: String) {
  customers(first: $first, after: $cursor) {
    edges {
      node {
        id
        email
        numberOfOrders
        amountSpent { amount currencyCode }
        defaultAddress { country countryCodeV2 }
        createdAt
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""


@dataclass(frozen=True)
class Page:
    """One page of connection nodes"""
    nodes: List[Dict[str, Any]]
    has_next_page: bool
    end_cursor: Optional[str]


class ShopifyGraphQLClient:
    """
    Admin GraphQL client for one shop.

    Usage:
        async with ShopifyGraphQLClient(shop, token) as client:
            page = await client.fetch_orders_page(None, "created_at:>='2022-01-01'")
    """

    def __init__(
        self,
        shop: str,
        access_token: str,
        api_version: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        if not access_token:
            raise ValueError("access_token is required")
        self.shop = shop
        self.access_token = access_token
        self.api_version = api_version or settings.shopify.api_version
        self.timeout = timeout or settings.shopify.request_timeout
        self.rate_limiter = rate_limiter or RateLimiter(
            rate=settings.shopify.rate_limit_per_second,
            burst=settings.shopify.rate_limit_burst,
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}/graphql.json"

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ShopifyGraphQLClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST one GraphQL query and return its ``data`` object.

        Raises:
            UpstreamHTTPError: Transport failure or non-2xx status
            UpstreamGraphQLError: Response carried ``errors``
            UpstreamDataError: Response body is not a JSON object with ``data``
        """
        await self.connect()
        await self.rate_limiter.acquire()

        try:
            response = await self._client.post(self.endpoint, json={"query": query, "variables": variables})
        except httpx.HTTPError as e:
            logger.error("GraphQL request failed", shop=self.shop, error=str(e))
            raise UpstreamHTTPError("GraphQL request failed", str(e)) from e

        if response.status_code >= 400:
            logger.error("GraphQL request rejected", shop=self.shop, status_code=response.status_code)
            raise UpstreamHTTPError(
                f"GraphQL request failed: {response.status_code}",
                response.text[:500],
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamDataError("GraphQL response is not JSON", str(e)) from e
        if not isinstance(body, dict):
            raise UpstreamDataError("GraphQL response is not an object", expected="object")

        if body.get("errors"):
            raise UpstreamGraphQLError("GraphQL errors", body["errors"])

        data = body.get("data")
        if not isinstance(data, dict):
            raise UpstreamDataError("GraphQL response has no data", expected="data")
        return data

    @staticmethod
    def _page(data: Dict[str, Any], connection: str) -> Page:
        conn = data.get(connection)
        if not isinstance(conn, dict) or not isinstance(conn.get("edges"), list):
            raise UpstreamDataError(f"Unexpected {connection} page structure", expected=f"{connection}.edges")
        page_info = conn.get("pageInfo") or {}
        return Page(
            nodes=[edge.get("node") or {} for edge in conn["edges"]],
            has_next_page=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )

    async def fetch_orders_page(
        self,
        cursor: Optional[str],
        search_query: str,
        page_size: int = 100,
        line_items: int = 50,
    ) -> Page:
        data = await self.execute(ORDERS_QUERY, {
            "first": page_size,
            "cursor": cursor,
            "query": search_query,
            "lineItems": line_items,
        })
        return self._page(data, "orders")

    async def fetch_customers_page(self, cursor: Optional[str], page_size: int = 250) -> Page:
        data = await self.execute(CUSTOMERS_QUERY, {"first": page_size, "cursor": cursor})
        return self._page(data, "customers")
