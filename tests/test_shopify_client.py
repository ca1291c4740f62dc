"""Tests for the Shopify REST client."""

import json

import httpx
import pytest

from catalog_sync.api.base_client import classify_status
from catalog_sync.api.shopify_client import ShopifyClient, parse_location_id
from catalog_sync.utils.exceptions import (
    ConfigurationError,
    RemoteErrorKind,
    RemotePlatformError,
)

API = "/admin/api/2024-01"


def make_client(handler, location_id=655441491, sleeps=None):
    sleeps = sleeps if sleeps is not None else []
    return ShopifyClient(
        shop_url="test-store.myshopify.com",
        access_token="shpat_test",
        location_id=location_id,
        transport=httpx.MockTransport(handler),
        sleep=sleeps.append,
    )


class TestParseLocationId:
    """Tests for parse_location_id."""

    def test_plain_and_gid(self):
        assert parse_location_id("655441491") == 655441491
        assert parse_location_id("gid://shopify/Location/655441491") == 655441491
        assert parse_location_id(655441491) == 655441491

    def test_missing(self):
        assert parse_location_id(None) is None
        assert parse_location_id("") is None

    def test_invalid(self):
        with pytest.raises(ConfigurationError):
            parse_location_id("warehouse")


class TestClassifyStatus:
    """Tests for classify_status."""

    @pytest.mark.parametrize("status,kind", [
        (404, RemoteErrorKind.NOT_FOUND),
        (422, RemoteErrorKind.VALIDATION),
        (400, RemoteErrorKind.VALIDATION),
        (429, RemoteErrorKind.RATE_LIMITED),
        (401, RemoteErrorKind.UNAUTHORIZED),
        (403, RemoteErrorKind.UNAUTHORIZED),
        (500, RemoteErrorKind.UNAVAILABLE),
        (503, RemoteErrorKind.UNAVAILABLE),
    ])
    def test_failures(self, status, kind):
        assert classify_status(status) == kind

    def test_success(self):
        assert classify_status(200) is None
        assert classify_status(201) is None


class TestShopifyClient:
    """Tests for ShopifyClient."""

    def test_requires_credentials(self):
        """Test missing credentials fail at construction."""
        with pytest.raises(ConfigurationError):
            ShopifyClient(shop_url=None, access_token="x")
        with pytest.raises(ConfigurationError):
            ShopifyClient(shop_url="test-store.myshopify.com", access_token=None)

    def test_get_product(self):
        """Test fetching a product sends the token and unwraps the body."""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["token"] = request.headers.get("X-Shopify-Access-Token")
            return httpx.Response(200, json={"product": {"id": 1001, "title": "Linen Shirt"}})

        with make_client(handler) as client:
            product = client.get_product(1001)

        assert product["title"] == "Linen Shirt"
        assert seen["url"] == f"https://test-store.myshopify.com{API}/products/1001.json"
        assert seen["token"] == "shpat_test"

    def test_list_products_pagination(self):
        """Test the next page cursor is read from the Link header."""
        next_link = (
            f'<https://test-store.myshopify.com{API}/products.json?limit=2&page_info=abc123>; rel="next"'
        )

        def handler(request):
            assert request.url.params["limit"] == "2"
            if "page_info" not in request.url.params:
                return httpx.Response(200, json={"products": [{"id": 1}, {"id": 2}]},
                                      headers={"Link": next_link})
            assert request.url.params["page_info"] == "abc123"
            return httpx.Response(200, json={"products": [{"id": 3}]})

        with make_client(handler) as client:
            first, cursor = client.list_products(limit=2)
            second, last_cursor = client.list_products(limit=2, page_info=cursor)

        assert [p["id"] for p in first] == [1, 2]
        assert cursor == "abc123"
        assert [p["id"] for p in second] == [3]
        assert last_cursor is None

    def test_not_found(self):
        """Test 404 maps to a non-retryable not_found failure."""
        def handler(request):
            return httpx.Response(404, json={"errors": "Not Found"})

        with make_client(handler) as client:
            with pytest.raises(RemotePlatformError) as exc_info:
                client.get_product(4242)

        assert exc_info.value.error_kind == RemoteErrorKind.NOT_FOUND
        assert exc_info.value.retryable is False
        assert exc_info.value.details["errors"] == "Not Found"

    def test_validation(self):
        """Test 422 maps to validation with Shopify's messages."""
        def handler(request):
            return httpx.Response(422, json={"errors": {"title": ["can't be blank"]}})

        with make_client(handler) as client:
            with pytest.raises(RemotePlatformError) as exc_info:
                client.create_product({"title": ""})

        assert exc_info.value.error_kind == RemoteErrorKind.VALIDATION
        assert exc_info.value.details["errors"] == {"title": ["can't be blank"]}

    def test_rate_limited_carries_retry_after(self):
        """Test 429 maps to a retryable failure with the server's hint."""
        def handler(request):
            return httpx.Response(429, json={"errors": "Exceeded"}, headers={"Retry-After": "2.0"})

        with make_client(handler) as client:
            with pytest.raises(RemotePlatformError) as exc_info:
                client.list_locations()

        assert exc_info.value.error_kind == RemoteErrorKind.RATE_LIMITED
        assert exc_info.value.retryable is True
        assert exc_info.value.retry_after == 2.0

    def test_network_error_is_unavailable(self):
        """Test transport failures map to unavailable."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(handler) as client:
            with pytest.raises(RemotePlatformError) as exc_info:
                client.get_product(1)

        assert exc_info.value.error_kind == RemoteErrorKind.UNAVAILABLE

    def test_non_json_error_body(self):
        """Test an HTML error page still produces a classified failure."""
        def handler(request):
            return httpx.Response(502, text="<html>Bad gateway</html>")

        with make_client(handler) as client:
            with pytest.raises(RemotePlatformError) as exc_info:
                client.get_product(1)

        assert exc_info.value.error_kind == RemoteErrorKind.UNAVAILABLE
        assert "Bad gateway" in exc_info.value.details["errors"]

    def test_backs_off_near_call_limit(self):
        """Test the client pauses when the call bucket is nearly full."""
        sleeps = []

        def handler(request):
            return httpx.Response(200, json={"locations": []},
                                  headers={"X-Shopify-Shop-Api-Call-Limit": "38/40"})

        with make_client(handler, sleeps=sleeps) as client:
            client.list_locations()

        assert sleeps == [0.5]

    def test_set_inventory_level(self):
        """Test absolute inventory sets target the configured location."""
        sent = {}

        def handler(request):
            sent["path"] = request.url.path
            sent["body"] = json.loads(request.content)
            return httpx.Response(200, json={"inventory_level": {"available": 12}})

        with make_client(handler) as client:
            level = client.set_inventory_level(3001, 12)

        assert level == {"available": 12}
        assert sent["path"] == f"{API}/inventory_levels/set.json"
        assert sent["body"] == {"location_id": 655441491, "inventory_item_id": 3001, "available": 12}

    def test_adjust_inventory_level(self):
        """Test relative adjustments send the signed amount."""
        sent = {}

        def handler(request):
            sent["body"] = json.loads(request.content)
            return httpx.Response(200, json={"inventory_level": {"available": 7}})

        with make_client(handler) as client:
            client.adjust_inventory_level(3001, -3, location_id="gid://shopify/Location/1")

        assert sent["body"] == {"location_id": 1, "inventory_item_id": 3001, "available_adjustment": -3}

    def test_get_inventory_level(self):
        """Test the level for one item at the configured location is returned."""
        def handler(request):
            assert request.url.params["inventory_item_ids"] == "3001"
            assert request.url.params["location_ids"] == "655441491"
            return httpx.Response(200, json={"inventory_levels": [{"inventory_item_id": 3001, "available": 4}]})

        with make_client(handler) as client:
            level = client.get_inventory_level(3001)

        assert level["available"] == 4

    def test_inventory_requires_location(self):
        """Test inventory calls without any location are a configuration error."""
        with make_client(lambda request: httpx.Response(200), location_id=None) as client:
            with pytest.raises(ConfigurationError):
                client.set_inventory_level(3001, 1)

    def test_delete_product(self):
        """Test delete issues a DELETE to the product."""
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path))
            return httpx.Response(200, json={})

        with make_client(handler) as client:
            client.delete_product(1001)

        assert calls == [("DELETE", f"{API}/products/1001.json")]
