"""
Unit Tests - Admin GraphQL Client
"""
import json

import httpx
import pytest

from shopmetrics.exceptions import UpstreamDataError, UpstreamGraphQLError, UpstreamHTTPError
from shopmetrics.reconciliation.client import ShopifyGraphQLClient


class CountingLimiter:
    def __init__(self):
        self.calls = 0

    async def acquire(self) -> float:
        self.calls += 1
        return 0.0


def orders_body(nodes, has_next=False, cursor=None):
    return {"data": {"orders": {
        "edges": [{"node": n} for n in nodes],
        "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
    }}}


def make_client(handler, limiter=None) -> ShopifyGraphQLClient:
    return ShopifyGraphQLClient(
        "test-shop.myshopify.com",
        "shpat_secret",
        api_version="2024-10",
        rate_limiter=limiter or CountingLimiter(),
        transport=httpx.MockTransport(handler),
    )


class TestShopifyGraphQLClient:
    """Tests for request building and response mapping"""

    def test_requires_token(self):
        with pytest.raises(ValueError):
            ShopifyGraphQLClient("test-shop.myshopify.com", "")

    def test_endpoint(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        assert client.endpoint == "https://test-shop.myshopify.com/admin/api/2024-10/graphql.json"

    async def test_orders_page_request_and_parsing(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=orders_body([{"id": "gid://shopify/Order/1"}], True, "abc"))

        limiter = CountingLimiter()
        async with make_client(handler, limiter) as client:
            page = await client.fetch_orders_page("prev", "created_at:>='2021-03-15'", page_size=100)

        [request] = seen
        assert request.method == "POST"
        assert request.headers["X-Shopify-Access-Token"] == "shpat_secret"
        variables = json.loads(request.content)["variables"]
        assert variables == {"first": 100, "cursor": "prev", "query": "created_at:>='2021-03-15'", "lineItems": 50}
        assert page.nodes == [{"id": "gid://shopify/Order/1"}]
        assert page.has_next_page
        assert page.end_cursor == "abc"
        assert limiter.calls == 1

    async def test_every_request_takes_a_token(self):
        limiter = CountingLimiter()
        body = {"data": {"customers": {"edges": [], "pageInfo": {"hasNextPage": False, "endCursor": None}}}}
        async with make_client(lambda request: httpx.Response(200, json=body), limiter) as client:
            await client.fetch_customers_page(None)
            page = await client.fetch_customers_page(None)

        assert limiter.calls == 2
        assert page.nodes == []
        assert not page.has_next_page

    async def test_http_error_status(self):
        async with make_client(lambda request: httpx.Response(500, text="boom")) as client:
            with pytest.raises(UpstreamHTTPError) as exc:
                await client.fetch_orders_page(None, "created_at:>='2021-03-15'")

        assert exc.value.status_code == 500
        assert "500" in str(exc.value)

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(UpstreamHTTPError) as exc:
                await client.fetch_orders_page(None, "created_at:>='2021-03-15'")

        assert exc.value.status_code is None

    async def test_graphql_errors(self):
        body = {"errors": [{"message": "Throttled"}]}
        async with make_client(lambda request: httpx.Response(200, json=body)) as client:
            with pytest.raises(UpstreamGraphQLError) as exc:
                await client.fetch_orders_page(None, "created_at:>='2021-03-15'")

        assert "Throttled" in str(exc.value)

    @pytest.mark.parametrize("response", [
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json=[1, 2]),
        httpx.Response(200, json={"data": None}),
        httpx.Response(200, json={"data": {"orders": {"pageInfo": {}}}}),
    ])
    async def test_unexpected_structure(self, response):
        async with make_client(lambda request: response) as client:
            with pytest.raises(UpstreamDataError):
                await client.fetch_orders_page(None, "created_at:>='2021-03-15'")
