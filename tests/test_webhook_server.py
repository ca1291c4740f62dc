"""Tests for the FastAPI server."""

import json

import pytest
from fastapi.testclient import TestClient

from catalog_sync.bootstrap import Services
from catalog_sync.utils.config import AppConfig, Settings
from catalog_sync.utils.exceptions import RemoteErrorKind, RemotePlatformError
from catalog_sync.webhook_server import create_app


@pytest.fixture
def app_config(tmp_path):
    env = Settings(_env_file=None, environment="test", shopify_webhook_secret="test_secret")
    return AppConfig(env=env, config_path=tmp_path / "missing.yml")


@pytest.fixture
def client(app_config, store, service):
    app = create_app(Services(config=app_config, store=store, reconciliation=service))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def post_webhook(client, signer):
    def _post(topic, payload, event_id=None, signature=None, shop_domain="test-store.myshopify.com"):
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "X-Shopify-Topic": topic,
            "X-Shopify-Hmac-SHA256": signature or signer(body),
            "X-Shopify-Shop-Domain": shop_domain,
            "Content-Type": "application/json",
        }
        if event_id:
            headers["X-Shopify-Webhook-Id"] = event_id
        return client.post("/webhooks/shopify", content=body, headers=headers)
    return _post


class TestWebhookEndpoint:
    """Tests for POST /webhooks/shopify."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["environment"] == "test"

    def test_valid_webhook_committed(self, post_webhook, product_create_webhook):
        """Test a signed products/create is reconciled before the response."""
        response = post_webhook("products/create", product_create_webhook, event_id="wh-1")

        assert response.status_code == 200
        assert response.json() == {
            "status": "committed",
            "topic": "products/create",
            "event_id": "wh-1",
            "action": "created",
            "duplicate": False,
        }

    def test_redelivery_acknowledged(self, post_webhook, seeded, order_webhook, get_variant):
        """Test a redelivered webhook gets 200 and is not applied again."""
        post_webhook("orders/create", order_webhook, event_id="wh-2")
        response = post_webhook("orders/create", order_webhook, event_id="wh-2")

        assert response.status_code == 200
        assert response.json()["duplicate"] is True
        assert get_variant(seeded["small"]).stock == 7

    def test_bad_signature_unauthorized(self, post_webhook, order_webhook):
        """Test a wrong signature answers 401."""
        response = post_webhook("orders/create", order_webhook, signature="0" * 64)

        assert response.status_code == 401
        assert response.json()["error"] == "AuthenticationError"

    def test_foreign_shop_unauthorized(self, post_webhook, order_webhook):
        response = post_webhook("orders/create", order_webhook, shop_domain="shop.example.com")

        assert response.status_code == 401

    def test_malformed_payload_bad_request(self, post_webhook):
        """Test a signed body missing required fields answers 400."""
        response = post_webhook("orders/create", {"line_items": []})

        assert response.status_code == 400
        assert response.json()["status"] == "failed"

    def test_conflict_is_server_error(self, post_webhook, seeded):
        """Test identity conflicts answer 500 so Shopify redelivers later."""
        payload = {"id": 1001, "variants": [{"id": 2001, "inventory_item_id": 4444}]}

        response = post_webhook("products/update", payload, event_id="wh-3")

        assert response.status_code == 500
        assert response.json()["error"] == "IdentityConflictError"

    def test_unsupported_topic_acknowledged(self, post_webhook):
        response = post_webhook("shop/update", {"id": 1})

        assert response.status_code == 200
        assert response.json()["action"] == "ignored"


class TestOperatorEndpoints:
    """Tests for the operator endpoints."""

    def test_import_product(self, client, mock_shopify_client):
        mock_shopify_client.get_product.return_value = {"id": 42, "title": "Imported", "variants": []}

        response = client.post("/sync/products/42")

        assert response.status_code == 200
        assert response.json()["action"] == "created"

    def test_import_product_remote_failure(self, client, mock_shopify_client):
        """Test Shopify failures surface as 502."""
        mock_shopify_client.get_product.side_effect = RemotePlatformError(
            "bad token", kind=RemoteErrorKind.UNAUTHORIZED
        )

        response = client.post("/sync/products/42")

        assert response.status_code == 502
        assert response.json()["error_kind"] == "RemotePlatformError.unauthorized"

    def test_import_all_partial_failure(self, client, mock_shopify_client):
        """Test a partially failed bulk import answers 207 with the failures."""
        mock_shopify_client.list_products.return_value = ([
            {"id": 1, "title": "Good", "variants": []},
            {"id": 2, "title": "Bad", "variants": [{"id": 3, "price": "n/a"}]},
        ], None)

        response = client.post("/sync/products")

        assert response.status_code == 207
        body = response.json()
        assert (body["total"], body["succeeded"], body["failed"]) == (2, 1, 1)
        assert body["errors"][0]["external_id"] == "2"

    def test_list_products(self, client, seeded):
        response = client.get("/products")

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert [v["stock"] for v in body["products"][0]["variants"]] == [10, 4]

    def test_list_products_limit_bounds(self, client):
        response = client.get("/products?limit=0")

        assert response.status_code == 422

    def test_get_product(self, client, seeded):
        response = client.get(f"/products/{seeded['product']}")

        assert response.status_code == 200
        assert response.json()["name"] == "Linen Shirt"

    def test_get_missing_product(self, client):
        """Test an unknown local product is a 404."""
        response = client.get("/products/999")

        assert response.status_code == 404
        assert response.json()["error"] == "Product 999 not found"

    def test_create_product_local_only(self, client, mock_shopify_client):
        response = client.post("/products?sync_remote=false", json={"title": "Mug"})

        assert response.status_code == 200
        assert response.json()["action"] == "created"
        mock_shopify_client.create_product.assert_not_called()

    def test_create_product_invalid(self, client):
        response = client.post("/products", json={"variants": []})

        assert response.status_code == 400

    def test_update_missing_product(self, client):
        response = client.patch("/products/999", json={"vendor": "X"})

        assert response.status_code == 404

    def test_delete_product(self, client, seeded, mock_shopify_client):
        response = client.delete(f"/products/{seeded['product']}")

        assert response.status_code == 200
        assert response.json()["action"] == "deleted"

    def test_set_stock(self, client, seeded, get_variant):
        response = client.put(f"/variants/{seeded['small']}/stock", json={"quantity": 3})

        assert response.status_code == 200
        assert get_variant(seeded["small"]).stock == 3

    def test_set_stock_negative_rejected(self, client, seeded):
        """Test request validation refuses negative quantities."""
        response = client.put(f"/variants/{seeded['small']}/stock", json={"quantity": -1})

        assert response.status_code == 422

    def test_adjust_stock(self, client, seeded, get_variant):
        response = client.post(
            f"/variants/{seeded['small']}/stock/adjust?sync_remote=false", json={"delta": -4}
        )

        assert response.status_code == 200
        assert response.json()["stock_changes"][0]["after"] == 6
        assert get_variant(seeded["small"]).stock == 6

    def test_locations(self, client):
        response = client.get("/locations")

        assert response.status_code == 200
        assert response.json()["locations"][0]["name"] == "Main warehouse"

    def test_locations_remote_failure(self, client, mock_shopify_client):
        mock_shopify_client.list_locations.side_effect = RemotePlatformError("down")

        response = client.get("/locations")

        assert response.status_code == 502
        assert "RemotePlatformError.unavailable" in response.json()["error"]
