"""Pytest configuration and fixtures."""

import base64
import hashlib
import hmac
import json
from decimal import Decimal

import pytest
from unittest.mock import MagicMock

from catalog_sync.database import Store
from catalog_sync.middleware.webhook_validator import SignatureVerifier
from catalog_sync.models.product import Product, Variant
from catalog_sync.services.locks import VariantLockRegistry
from catalog_sync.services.reconciliation import ReconciliationService
from catalog_sync.services.retry import RetryPolicy
from catalog_sync.services.stock_ledger import StockLedger

WEBHOOK_SECRET = "test_secret"
LOCATION_ID = 655441491


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Shopify-style base64 HMAC-SHA256 of ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def to_body(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def store(tmp_path):
    """A fresh SQLite store per test."""
    store = Store(f"sqlite:///{tmp_path / 'catalog.db'}", lock_timeout=2.0)
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture
def verifier():
    return SignatureVerifier(secret=WEBHOOK_SECRET)


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def no_sleep_policy():
    """Retry policy that records waits instead of sleeping."""
    waits = []
    policy = RetryPolicy(max_attempts=3, base_delay=1, max_delay=30, sleep=waits.append)
    policy.waits = waits
    return policy


@pytest.fixture
def mock_shopify_client():
    """Create a mock Shopify client."""
    client = MagicMock()
    client.location_id = LOCATION_ID
    client.list_products.return_value = ([], None)
    client.list_locations.return_value = [{"id": LOCATION_ID, "name": "Main warehouse"}]
    return client


@pytest.fixture
def service(store, verifier, mock_shopify_client, notifier, no_sleep_policy):
    """Reconciliation service wired to a real store and a mock client."""
    return ReconciliationService(
        store=store,
        client=mock_shopify_client,
        verifier=verifier,
        ledger=StockLedger(notifier=notifier, low_stock_threshold=5),
        locks=VariantLockRegistry(timeout=2.0),
        retry_policy=no_sleep_policy,
        location_id=LOCATION_ID,
    )


@pytest.fixture
def deliver(service):
    """Deliver a signed webhook to the service."""
    def _deliver(topic, payload, event_id=None, signature=None):
        body = payload if isinstance(payload, bytes) else to_body(payload)
        return service.handle_event(
            topic,
            body,
            signature if signature is not None else sign(body),
            event_id=event_id,
        )
    return _deliver


@pytest.fixture
def seeded(store):
    """One imported product with two variants (stock 10 and 4)."""
    with store.transaction() as session:
        product = Product(external_id=1001, name="Linen Shirt", vendor="Acme", status="active")
        product.variants = [
            Variant(external_id=2001, inventory_item_id=3001, sku="SHIRT-S", title="S",
                    option1="S", price=Decimal("39.00"), stock=10),
            Variant(external_id=2002, inventory_item_id=3002, sku="SHIRT-M", title="M",
                    option1="M", price=Decimal("39.00"), stock=4),
        ]
        session.add(product)
        session.flush()
        ids = {
            "product": product.id,
            "small": product.variants[0].id,
            "medium": product.variants[1].id,
        }
    return ids


@pytest.fixture
def get_variant(store):
    def _get(variant_id):
        with store.session() as session:
            return session.get(Variant, variant_id)
    return _get


@pytest.fixture
def get_product(store):
    def _get(product_id):
        with store.session() as session:
            product = session.get(Product, product_id)
            if product is not None:
                product.variants  # load before the session closes
            return product
    return _get


@pytest.fixture
def signer():
    return sign


@pytest.fixture
def product_create_webhook():
    """A products/create payload with one variant."""
    return {
        "id": 7001,
        "title": "Canvas Tote",
        "body_html": "<p>Heavy canvas</p>",
        "vendor": "Acme",
        "product_type": "Bags",
        "variants": [
            {
                "id": 8001,
                "inventory_item_id": 9001,
                "sku": "TOTE-NAT",
                "title": "Natural",
                "option1": "Natural",
                "price": "25.00",
                "inventory_quantity": 12,
            }
        ],
    }


@pytest.fixture
def order_webhook():
    """orders/create with one known line item (SHIRT-S x3) and one unknown."""
    return {
        "id": 450789469,
        "name": "#1001",
        "line_items": [
            {"id": 1, "variant_id": 2001, "sku": "SHIRT-S", "quantity": 3, "name": "Linen Shirt - S"},
            {"id": 2, "variant_id": 999999, "sku": "GHOST-1", "quantity": 1, "name": "Ghost item"},
        ],
    }


@pytest.fixture
def refund_webhook():
    """refunds/create returning the three shirts of ``order_webhook``."""
    return {
        "id": 509562969,
        "order_id": 450789469,
        "refund_line_items": [
            {
                "line_item_id": 1,
                "quantity": 3,
                "restock_type": "return",
                "line_item": {"id": 1, "variant_id": 2001, "sku": "SHIRT-S", "quantity": 3},
            }
        ],
    }
