"""Typed schemas for the Shopify JSON the service consumes.

Webhook bodies and REST responses share these shapes. Unknown keys are
ignored; known keys are type-checked so malformed values never reach the
merger.
"""

from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ShopifyPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class VariantPayload(ShopifyPayload):
    id: Optional[int] = None
    inventory_item_id: Optional[int] = None
    sku: Optional[str] = None
    title: Optional[str] = None
    option1: Optional[str] = None
    option2: Optional[str] = None
    option3: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    compare_at_price: Optional[Decimal] = Field(default=None, ge=0)
    inventory_quantity: Optional[int] = None
    weight: Optional[Decimal] = Field(default=None, ge=0)
    weight_unit: Optional[str] = None
    image_id: Optional[int] = None

    @field_validator("sku", "compare_at_price", "weight", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)


class ProductPayload(ShopifyPayload):
    id: int
    title: Optional[str] = None
    body_html: Optional[str] = None
    product_type: Optional[str] = None
    vendor: Optional[str] = None
    status: Optional[Literal["draft", "active", "archived"]] = None
    variants: List[VariantPayload] = Field(default_factory=list)


class ProductDeletePayload(ShopifyPayload):
    id: int


class InventoryLevelPayload(ShopifyPayload):
    inventory_item_id: int
    location_id: Optional[int] = None
    available: Optional[int] = None


class LineItemPayload(ShopifyPayload):
    id: Optional[int] = None
    variant_id: Optional[int] = None
    sku: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    quantity: int = Field(default=0, ge=0)

    @field_validator("sku", mode="before")
    @classmethod
    def blank_sku_to_none(cls, value):
        return _blank_to_none(value)

    @property
    def label(self) -> str:
        return self.name or self.title or self.sku or str(self.variant_id)


class OrderPayload(ShopifyPayload):
    id: int
    name: Optional[str] = None
    line_items: List[LineItemPayload] = Field(default_factory=list)


class RefundLineItemPayload(ShopifyPayload):
    line_item_id: Optional[int] = None
    quantity: int = Field(default=0, ge=0)
    restock_type: Optional[str] = None
    line_item: Optional[LineItemPayload] = None


class RefundPayload(ShopifyPayload):
    id: int
    order_id: Optional[int] = None
    refund_line_items: List[RefundLineItemPayload] = Field(default_factory=list)


class ProductInput(ProductPayload):
    """Operator-supplied product; Shopify has not minted its ids yet."""
    id: Optional[int] = None

    def to_remote(self) -> dict:
        """Body for the Shopify product create/update call."""
        body = self.model_dump(mode="json", exclude_unset=True, exclude={"id"})
        for variant in body.get("variants", []):
            # Stock goes through the inventory level endpoints.
            variant.pop("inventory_quantity", None)
        return body
