"""Normalized view of one incoming snapshot, whatever its origin.

Push events and pull imports are both turned into a ``SyncRecord`` before
they reach the reconciliation pipeline. Field dictionaries only carry keys
that were present in the source payload so partial updates stay partial.
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..utils.exceptions import ValidationError
from .payloads import (
    InventoryLevelPayload,
    OrderPayload,
    ProductDeletePayload,
    ProductPayload,
    RefundPayload,
    ShopifyPayload,
    VariantPayload,
)

P = TypeVar("P", bound=ShopifyPayload)

# Shopify payload key -> local column
PRODUCT_FIELD_MAP = {
    "title": "name",
    "body_html": "description",
    "product_type": "product_type",
    "vendor": "vendor",
    "status": "status",
}

VARIANT_FIELD_MAP = {
    "sku": "sku",
    "title": "title",
    "option1": "option1",
    "option2": "option2",
    "option3": "option3",
    "price": "price",
    "compare_at_price": "compare_at_price",
    "weight": "weight",
    "weight_unit": "weight_unit",
    "image_id": "image_id",
}


class RecordKind(str, Enum):
    PRODUCT_SNAPSHOT = "product_snapshot"
    PRODUCT_DELETE = "product_delete"
    STOCK = "stock"


class Origin(str, Enum):
    PUSH = "push"
    PULL = "pull"
    LOCAL = "local"


class StockMode(str, Enum):
    ABSOLUTE = "absolute"
    DELTA = "delta"


class StockInstruction(BaseModel):
    mode: StockMode
    quantity: int
    # Applied only when this unit of work created the variant.
    only_if_created: bool = False

    @classmethod
    def absolute(cls, quantity: int, only_if_created: bool = False) -> "StockInstruction":
        return cls(mode=StockMode.ABSOLUTE, quantity=quantity, only_if_created=only_if_created)

    @classmethod
    def delta(cls, quantity: int) -> "StockInstruction":
        return cls(mode=StockMode.DELTA, quantity=quantity)


class VariantRecord(BaseModel):
    # Set only for operator writes addressing a local variant directly
    local_variant_id: Optional[int] = None
    external_variant_id: Optional[int] = None
    inventory_item_id: Optional[int] = None
    sku: Optional[str] = None
    field_values: Dict[str, Any] = Field(default_factory=dict)
    stock: Optional[StockInstruction] = None
    label: Optional[str] = None

    @property
    def has_identity(self) -> bool:
        return any(
            v is not None
            for v in (self.local_variant_id, self.external_variant_id, self.inventory_item_id, self.sku)
        )

    def describe(self) -> str:
        parts = []
        if self.local_variant_id is not None:
            parts.append(f"local_variant={self.local_variant_id}")
        if self.external_variant_id is not None:
            parts.append(f"variant={self.external_variant_id}")
        if self.inventory_item_id is not None:
            parts.append(f"inventory_item={self.inventory_item_id}")
        if self.sku:
            parts.append(f"sku={self.sku}")
        return ", ".join(parts) or (self.label or "unidentified")


class SyncRecord(BaseModel):
    kind: RecordKind
    origin: Origin
    topic: str
    event_id: Optional[str] = None
    external_product_id: Optional[int] = None
    local_product_id: Optional[int] = None
    product_fields: Dict[str, Any] = Field(default_factory=dict)
    variants: List[VariantRecord] = Field(default_factory=list)
    creation_worthy: bool = False

    @property
    def has_deltas(self) -> bool:
        return any(v.stock is not None and v.stock.mode == StockMode.DELTA for v in self.variants)

    def context(self) -> Dict[str, Any]:
        """Identifiers an operator needs to reconcile this record by hand."""
        return {
            "topic": self.topic,
            "event_id": self.event_id,
            "external_product_id": self.external_product_id,
            "local_product_id": self.local_product_id,
            "variants": [v.describe() for v in self.variants],
        }


# ------------------------------------------------------------------
# Payload parsing
# ------------------------------------------------------------------

def parse_payload(model: Type[P], data: Any) -> P:
    """
    Validate ``data`` against a payload schema.

    Raises:
        ValidationError: Listing every missing or malformed field
    """
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ValidationError(
            f"Malformed {model.__name__}: {'; '.join(problems)}",
            details={"errors": problems}
        )


def decode_body(body: bytes) -> Any:
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid JSON payload: {str(e)}")


def _present(payload: BaseModel, field_map: Dict[str, str]) -> Dict[str, Any]:
    return {
        field_map[key]: getattr(payload, key)
        for key in payload.model_fields_set
        if key in field_map
    }


def _variant_record(variant: VariantPayload, stock: Optional[StockInstruction]) -> VariantRecord:
    fields = _present(variant, VARIANT_FIELD_MAP)
    if "image_id" in fields and fields["image_id"] is not None:
        fields["image_id"] = str(fields["image_id"])
    return VariantRecord(
        external_variant_id=variant.id,
        inventory_item_id=variant.inventory_item_id,
        sku=variant.sku,
        field_values=fields,
        stock=stock,
        label=variant.title,
    )


def product_record(
    payload: ProductPayload,
    topic: str,
    origin: Origin,
    event_id: Optional[str] = None,
    creation_worthy: bool = True,
    local_product_id: Optional[int] = None,
) -> SyncRecord:
    """Build a product snapshot record.

    Pull imports reflect remote truth and carry an absolute stock set for
    every variant. Push snapshots only seed stock for variants they create;
    live stock arrives through inventory level events.
    """
    variants = []
    for variant in payload.variants:
        stock = None
        if variant.inventory_quantity is not None:
            stock = StockInstruction.absolute(
                variant.inventory_quantity,
                only_if_created=origin != Origin.PULL,
            )
        variants.append(_variant_record(variant, stock))

    return SyncRecord(
        kind=RecordKind.PRODUCT_SNAPSHOT,
        origin=origin,
        topic=topic,
        event_id=event_id,
        external_product_id=payload.id,
        local_product_id=local_product_id,
        product_fields=_present(payload, PRODUCT_FIELD_MAP),
        variants=variants,
        creation_worthy=creation_worthy,
    )


def build_pull_record(data: Dict[str, Any], topic: str = "pull/product") -> SyncRecord:
    """Normalize one product fetched from the Shopify REST API."""
    payload = parse_payload(ProductPayload, data)
    return product_record(payload, topic, Origin.PULL)


def build_push_record(
    topic: str,
    body: bytes,
    event_id: Optional[str] = None,
    location_id: Optional[int] = None,
) -> Optional[SyncRecord]:
    """
    Normalize a verified webhook body for ``topic``.

    Args:
        topic: Value of the X-Shopify-Topic header
        body: Raw body bytes (already authenticated)
        event_id: Delivery identifier, stable across redeliveries
        location_id: When set, inventory events for other locations are ignored

    Returns:
        The record, or None when the topic carries nothing to reconcile

    Raises:
        ValidationError: If the body is not valid JSON or misses required fields
    """
    builder = PUSH_BUILDERS.get(topic)
    if builder is None:
        return None
    data = decode_body(body)
    return builder(topic, data, event_id, location_id)


def _product_snapshot(topic, data, event_id, location_id):
    payload = parse_payload(ProductPayload, data)
    return product_record(payload, topic, Origin.PUSH, event_id=event_id)


def _product_delete(topic, data, event_id, location_id):
    payload = parse_payload(ProductDeletePayload, data)
    return SyncRecord(
        kind=RecordKind.PRODUCT_DELETE,
        origin=Origin.PUSH,
        topic=topic,
        event_id=event_id,
        external_product_id=payload.id,
    )


def _inventory_level(topic, data, event_id, location_id):
    payload = parse_payload(InventoryLevelPayload, data)
    if location_id is not None and payload.location_id is not None and payload.location_id != location_id:
        return None

    # available is null for untracked items
    stock = StockInstruction.absolute(payload.available) if payload.available is not None else None
    return SyncRecord(
        kind=RecordKind.STOCK,
        origin=Origin.PUSH,
        topic=topic,
        event_id=event_id,
        variants=[VariantRecord(inventory_item_id=payload.inventory_item_id, stock=stock)],
    )


def _order_items(topic, data, event_id, sign):
    payload = parse_payload(OrderPayload, data)
    variants = [
        VariantRecord(
            external_variant_id=item.variant_id,
            sku=item.sku,
            stock=StockInstruction.delta(sign * item.quantity),
            label=item.label,
        )
        for item in payload.line_items
        if item.quantity > 0
    ]
    return SyncRecord(
        kind=RecordKind.STOCK,
        origin=Origin.PUSH,
        topic=topic,
        event_id=event_id,
        variants=variants,
    )


def _order_created(topic, data, event_id, location_id):
    return _order_items(topic, data, event_id, -1)


def _order_cancelled(topic, data, event_id, location_id):
    return _order_items(topic, data, event_id, 1)


def _refund_created(topic, data, event_id, location_id):
    payload = parse_payload(RefundPayload, data)
    variants = []
    for refund_item in payload.refund_line_items:
        line_item = refund_item.line_item
        if line_item is None or refund_item.quantity <= 0:
            continue
        if refund_item.restock_type == "no_restock":
            continue
        variants.append(VariantRecord(
            external_variant_id=line_item.variant_id,
            sku=line_item.sku,
            stock=StockInstruction.delta(refund_item.quantity),
            label=line_item.label,
        ))
    return SyncRecord(
        kind=RecordKind.STOCK,
        origin=Origin.PUSH,
        topic=topic,
        event_id=event_id,
        variants=variants,
    )


PUSH_BUILDERS = {
    "products/create": _product_snapshot,
    "products/update": _product_snapshot,
    "products/delete": _product_delete,
    "inventory_levels/update": _inventory_level,
    "orders/create": _order_created,
    "orders/cancelled": _order_cancelled,
    "refunds/create": _refund_created,
}

SUPPORTED_TOPICS = tuple(PUSH_BUILDERS)
