"""Two-layer configuration: secrets from the environment, tuning from YAML."""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "config.yml"
CONFIG_PATH_ENV = "CATALOG_SYNC_CONFIG"


class APIConfig(BaseModel):
    """Outbound Shopify calls and the retry policy wrapped around them."""
    timeout: int = Field(default=30, gt=0)
    max_retries: int = Field(default=3, ge=1)
    retry_delay: int = Field(default=1, ge=0)
    max_retry_delay: int = Field(default=30, ge=0)
    exponential_backoff: bool = True


class SyncConfig(BaseModel):
    page_size: int = Field(default=50, ge=1, le=250)
    lock_timeout: float = Field(default=10.0, gt=0)
    low_stock_threshold: int = Field(default=10, ge=0)


class ShopifyConfig(BaseModel):
    rate_limit_delay: float = Field(default=0.5, ge=0)
    api_version: str = "2024-01"


class LoggingFilesConfig(BaseModel):
    sync: str = "logs/sync.log"
    webhook: str = "logs/webhook.log"
    api: str = "logs/api.log"
    error: str = "logs/error.log"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_bytes: int = 10485760  # 10MB
    backup_count: int = 5
    files: LoggingFilesConfig = LoggingFilesConfig()

    @field_validator("level")
    @classmethod
    def known_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.upper()


class WebhookConfig(BaseModel):
    # Only for local development against unsigned test payloads
    validate_signature: bool = True
    shop_domain_suffix: str = ".myshopify.com"


class SchedulerConfig(BaseModel):
    """Nightly full import."""
    enabled: bool = False
    timezone: str = "UTC"
    max_instances: int = 1
    coalesce: bool = True
    misfire_grace_time: int = 300

    nightly_import_hour: int = Field(default=3, ge=0, le=23)
    nightly_import_minute: int = Field(default=0, ge=0, le=59)


class YAMLConfig(BaseModel):
    api: APIConfig = APIConfig()
    sync: SyncConfig = SyncConfig()
    shopify: ShopifyConfig = ShopifyConfig()
    logging: LoggingConfig = LoggingConfig()
    webhook: WebhookConfig = WebhookConfig()
    scheduler: SchedulerConfig = SchedulerConfig()

    @classmethod
    def load(cls, path: Path) -> "YAMLConfig":
        if not path.exists():
            return cls()
        with open(path, "r") as f:
            return cls(**(yaml.safe_load(f) or {}))


class Settings(BaseSettings):
    """Secrets and deployment settings from the environment or ``.env``."""

    # Shopify; each is required only by the component that uses it
    shopify_shop_url: Optional[str] = Field(default=None, description="Shopify shop URL")
    shopify_access_token: Optional[str] = Field(default=None, description="Shopify Admin API access token")
    shopify_location_id: Optional[str] = Field(default=None, description="Shopify inventory location ID")
    shopify_webhook_secret: Optional[str] = Field(default=None, description="Shopify webhook secret")

    database_url: str = Field(default="sqlite:///catalog_sync.db", description="SQLAlchemy database URL")

    environment: str = Field(default="development", description="Environment (development/production)")
    log_level: Optional[str] = Field(default=None, description="Override log level")
    port: int = Field(default=8000, description="Server port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def missing_shopify_credentials(self) -> List[str]:
        """Names of the env vars a Shopify client still needs."""
        missing = []
        if not self.shopify_shop_url:
            missing.append("SHOPIFY_SHOP_URL")
        if not self.shopify_access_token:
            missing.append("SHOPIFY_ACCESS_TOKEN")
        return missing


class AppConfig:
    """Environment settings plus the YAML tuning file."""

    def __init__(self, env: Optional[Settings] = None, config_path: Optional[Path] = None):
        """
        Args:
            env: Defaults to reading the environment
            config_path: Defaults to ``$CATALOG_SYNC_CONFIG`` or ``config/config.yml``
        """
        self.env = env or Settings()
        if config_path is None:
            config_path = Path(os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH))
        self.config_path = config_path
        self.yaml = YAMLConfig.load(config_path)

        if self.env.log_level:
            self.yaml.logging.level = self.env.log_level.upper()

    @property
    def api(self) -> APIConfig:
        return self.yaml.api

    @property
    def sync(self) -> SyncConfig:
        return self.yaml.sync

    @property
    def shopify(self) -> ShopifyConfig:
        return self.yaml.shopify

    @property
    def logging(self) -> LoggingConfig:
        return self.yaml.logging

    @property
    def webhook(self) -> WebhookConfig:
        return self.yaml.webhook

    @property
    def scheduler(self) -> SchedulerConfig:
        return self.yaml.scheduler

    @property
    def is_production(self) -> bool:
        return self.env.environment.lower() == "production"


@lru_cache()
def get_config() -> AppConfig:
    """Process-wide configuration; read only at process edges."""
    return AppConfig()
