"""Process wiring: builds every collaborator once and hands them out."""

from dataclasses import dataclass
from typing import Optional

from .api.shopify_client import ShopifyClient, parse_location_id
from .database import Store
from .middleware.webhook_validator import SignatureVerifier
from .services.locks import VariantLockRegistry
from .services.reconciliation import ReconciliationService
from .services.retry import RetryPolicy
from .services.stock_ledger import StockLedger
from .utils.config import AppConfig, get_config
from .utils.logger import get_sync_logger


@dataclass
class Services:
    config: AppConfig
    store: Store
    reconciliation: ReconciliationService

    def close(self) -> None:
        self.reconciliation.close()
        self.store.dispose()


def build_services(config: Optional[AppConfig] = None, webhooks: bool = False,
                   client: Optional[ShopifyClient] = None) -> Services:
    """
    Construct the store, client, verifier and orchestrator.

    Args:
        config: Defaults to the cached process configuration
        webhooks: Require a webhook secret (the HTTP server does)
        client: Pre-built Shopify client; built from config when credentials exist

    Raises:
        ConfigurationError: If ``webhooks`` is set and no secret is configured
    """
    config = config or get_config()
    logger = get_sync_logger()

    verifier = None
    if webhooks:
        verifier = SignatureVerifier(
            secret=config.env.shopify_webhook_secret,
            enabled=config.webhook.validate_signature,
            shop_domain_suffix=config.webhook.shop_domain_suffix,
        )

    missing = config.env.missing_shopify_credentials()
    if client is None and not missing:
        client = ShopifyClient.from_config(config)
    elif client is None:
        logger.warning(
            f"Shopify client disabled, {', '.join(missing)} not set; "
            f"pull imports and remote writes will fail"
        )

    store = Store(config.env.database_url, lock_timeout=config.sync.lock_timeout)
    store.create_all()

    reconciliation = ReconciliationService(
        store=store,
        client=client,
        verifier=verifier,
        ledger=StockLedger(low_stock_threshold=config.sync.low_stock_threshold),
        locks=VariantLockRegistry(timeout=config.sync.lock_timeout),
        retry_policy=RetryPolicy.from_config(config.api),
        location_id=parse_location_id(config.env.shopify_location_id),
        page_size=config.sync.page_size,
    )
    return Services(config=config, store=store, reconciliation=reconciliation)
