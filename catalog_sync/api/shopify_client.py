"""Shopify Admin API client (REST)."""

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from .base_client import BaseClient, classify_status
from ..utils.exceptions import ConfigurationError, RemotePlatformError, RemoteErrorKind

GID_LOCATION_PREFIX = "gid://shopify/Location/"
MAX_PAGE_SIZE = 250


def parse_location_id(raw: Optional[Any]) -> Optional[int]:
    """Accept a plain numeric id or a ``gid://shopify/Location/<id>`` string."""
    if raw is None or raw == "":
        return None
    value = str(raw)
    if value.startswith(GID_LOCATION_PREFIX):
        value = value[len(GID_LOCATION_PREFIX):]
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Invalid Shopify location id: {raw}", details={"location_id": raw})


class ShopifyClient(BaseClient):
    """Client for the Shopify Admin REST API.

    Every failure surfaces as a ``RemotePlatformError`` whose ``kind`` tells
    the caller whether a retry makes sense. Nothing is retried here.
    """

    def __init__(
        self,
        shop_url: Optional[str],
        access_token: Optional[str],
        api_version: str = "2024-01",
        location_id: Optional[Any] = None,
        rate_limit_delay: float = 0.5,
        timeout: float = 30,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if not shop_url or not access_token:
            raise ConfigurationError(
                "Shopify credentials are not configured",
                details={"settings": ["SHOPIFY_SHOP_URL", "SHOPIFY_ACCESS_TOKEN"]}
            )

        if not shop_url.startswith("https://"):
            shop_url = f"https://{shop_url}"

        headers = {"X-Shopify-Access-Token": access_token}

        super().__init__(base_url=shop_url, headers=headers, timeout=timeout, transport=transport)
        self.api_version = api_version
        self.rate_limit_delay = rate_limit_delay
        self.location_id = parse_location_id(location_id)
        self.sleep = sleep or time.sleep

    @classmethod
    def from_config(cls, config, transport: Optional[httpx.BaseTransport] = None) -> "ShopifyClient":
        return cls(
            shop_url=config.env.shopify_shop_url,
            access_token=config.env.shopify_access_token,
            api_version=config.shopify.api_version,
            location_id=config.env.shopify_location_id,
            rate_limit_delay=config.shopify.rate_limit_delay,
            timeout=config.api.timeout,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    def _path(self, resource: str) -> str:
        return f"/admin/api/{self.api_version}/{resource}"

    def _handle_rate_limit(self, response: httpx.Response):
        """Back off when the leaky bucket is nearly full."""
        rate_limit_header = response.headers.get("X-Shopify-Shop-Api-Call-Limit")
        if rate_limit_header:
            try:
                current, limit = map(int, rate_limit_header.split("/"))
            except ValueError:
                return
            if current >= limit * 0.9:
                self.logger.warning(f"Approaching rate limit: {current}/{limit}. Waiting...")
                self.sleep(self.rate_limit_delay)

    def _call(self, method: str, resource: str, **kwargs) -> httpx.Response:
        response = self._request(method, self._path(resource), **kwargs)
        self._handle_rate_limit(response)

        kind = classify_status(response.status_code)
        if kind is None:
            return response

        try:
            errors = response.json().get("errors")
        except ValueError:
            errors = response.text[:500]

        retry_after = None
        if kind == RemoteErrorKind.RATE_LIMITED:
            try:
                retry_after = float(response.headers.get("Retry-After", 2))
            except ValueError:
                retry_after = 2.0
            self.logger.warning(f"Rate limited on {method} {resource}. Retry after {retry_after}s")

        raise RemotePlatformError(
            f"Shopify {method} {resource} failed (HTTP {response.status_code})",
            kind=kind,
            details={"status": response.status_code, "errors": errors},
            retry_after=retry_after,
        )

    def _location(self, location_id: Optional[Any]) -> int:
        location = parse_location_id(location_id) if location_id is not None else self.location_id
        if location is None:
            raise ConfigurationError(
                "No Shopify location configured for inventory operations",
                details={"setting": "SHOPIFY_LOCATION_ID"}
            )
        return location

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def get_product(self, product_id: int) -> Dict[str, Any]:
        """Fetch one product with its variants."""
        response = self._call("GET", f"products/{product_id}.json")
        return response.json()["product"]

    def list_products(self, limit: int = 50,
                      page_info: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        Fetch one page of products.

        Returns:
            ``(products, next_page_info)``; ``next_page_info`` is None on the last page
        """
        params: Dict[str, Any] = {"limit": min(max(1, limit), MAX_PAGE_SIZE)}
        if page_info:
            params["page_info"] = page_info

        response = self._call("GET", "products.json", params=params)
        products = response.json().get("products", [])

        next_link = response.links.get("next", {}).get("url")
        next_page_info = httpx.URL(next_link).params.get("page_info") if next_link else None
        return products, next_page_info

    def create_product(self, product: Dict[str, Any]) -> Dict[str, Any]:
        response = self._call("POST", "products.json", json={"product": product})
        created = response.json()["product"]
        self.logger.info(f"Created Shopify product {created.get('id')} ({created.get('title')})")
        return created

    def update_product(self, product_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(fields, id=product_id)
        response = self._call("PUT", f"products/{product_id}.json", json={"product": payload})
        self.logger.info(f"Updated Shopify product {product_id}")
        return response.json()["product"]

    def delete_product(self, product_id: int) -> None:
        self._call("DELETE", f"products/{product_id}.json")
        self.logger.info(f"Deleted Shopify product {product_id}")

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def get_inventory_level(self, inventory_item_id: int,
                            location_id: Optional[Any] = None) -> Optional[Dict[str, Any]]:
        params = {
            "inventory_item_ids": inventory_item_id,
            "location_ids": self._location(location_id),
        }
        response = self._call("GET", "inventory_levels.json", params=params)
        levels = response.json().get("inventory_levels", [])
        return levels[0] if levels else None

    def set_inventory_level(self, inventory_item_id: int, quantity: int,
                            location_id: Optional[Any] = None) -> Dict[str, Any]:
        """Set the available quantity to an absolute value."""
        payload = {
            "location_id": self._location(location_id),
            "inventory_item_id": int(inventory_item_id),
            "available": int(quantity),
        }
        response = self._call("POST", "inventory_levels/set.json", json=payload)
        self.logger.info(f"Set Shopify inventory for item {inventory_item_id}: {quantity}")
        return response.json()["inventory_level"]

    def adjust_inventory_level(self, inventory_item_id: int, adjustment: int,
                               location_id: Optional[Any] = None) -> Dict[str, Any]:
        """Add a signed amount to the available quantity."""
        payload = {
            "location_id": self._location(location_id),
            "inventory_item_id": int(inventory_item_id),
            "available_adjustment": int(adjustment),
        }
        response = self._call("POST", "inventory_levels/adjust.json", json=payload)
        self.logger.info(f"Adjusted Shopify inventory for item {inventory_item_id} by {adjustment}")
        return response.json()["inventory_level"]

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def list_locations(self) -> List[Dict[str, Any]]:
        response = self._call("GET", "locations.json")
        return response.json().get("locations", [])
