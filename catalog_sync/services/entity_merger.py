"""Applies incoming snapshots onto local products and variants."""

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from ..models.product import PRODUCT_STATUSES, Product, Variant
from ..models.sync_record import RecordKind, SyncRecord, VariantRecord
from ..utils.exceptions import IdentityConflictError, ValidationError
from ..utils.logger import get_sync_logger

PRODUCT_FIELDS = ("name", "description", "product_type", "vendor", "status")
VARIANT_FIELDS = (
    "sku", "title", "option1", "option2", "option3", "price",
    "compare_at_price", "weight", "weight_unit", "image_id",
)
# Stock is deliberately absent: only the StockLedger writes it.


class MergeAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    SKIPPED = "skipped"


def bind_identifier(entity, attribute: str, incoming, label: str) -> bool:
    """
    Record an external identifier on ``entity``.

    The first binding is permanent: an identifier already set to a
    different value is never overwritten.

    Returns:
        True if the identifier was newly bound
    """
    if incoming is None:
        return False
    current = getattr(entity, attribute)
    if current is None:
        setattr(entity, attribute, incoming)
        return True
    if current != incoming:
        raise IdentityConflictError(
            f"{label} {entity.id} is bound to {attribute}={current}, refusing to rebind to {incoming}",
            details={"local_id": entity.id, "attribute": attribute, "bound": current, "incoming": incoming}
        )
    return False


def apply_fields(entity, values: Dict[str, Any], allowed) -> bool:
    """Last-write-wins for every present field; absent fields are untouched."""
    changed = False
    for name, value in values.items():
        if name not in allowed:
            continue
        if getattr(entity, name) != value:
            setattr(entity, name, value)
            changed = True
    return changed


class EntityMerger:
    """
    Produces the entity state to persist from an existing record (or none)
    and an incoming ``SyncRecord``.
    """

    def __init__(self):
        self.logger = get_sync_logger()

    def merge_product(self, session: Session, product: Optional[Product],
                      record: SyncRecord) -> Tuple[Optional[Product], MergeAction]:
        if record.kind == RecordKind.PRODUCT_DELETE:
            if product is None:
                self.logger.info(f"Delete for unknown product {record.external_product_id}; nothing to do")
                return None, MergeAction.SKIPPED
            session.delete(product)
            self.logger.info(f"Deleted product {product.id} ({product.name}) and its variants")
            return product, MergeAction.DELETED

        fields = self._product_values(record)

        if product is None:
            if not fields.get("name"):
                raise ValidationError(
                    "Cannot create a product without a title",
                    details={"external_product_id": record.external_product_id}
                )
            product = Product(status="active")
            apply_fields(product, fields, PRODUCT_FIELDS)
            product.external_id = record.external_product_id
            session.add(product)
            if not record.creation_worthy:
                self.logger.warning(f"Product {record.external_product_id} not found locally - creating it")
            return product, MergeAction.CREATED

        bound = bind_identifier(product, "external_id", record.external_product_id, "Product")
        changed = apply_fields(product, fields, PRODUCT_FIELDS)
        if bound or changed:
            product.touch()
            return product, MergeAction.UPDATED
        return product, MergeAction.UNCHANGED

    def merge_variant(self, session: Session, product: Product, variant: Optional[Variant],
                      record: VariantRecord) -> Tuple[Variant, MergeAction]:
        """Merge one variant by identity; the position in the payload is irrelevant."""
        if variant is None:
            variant = Variant(product=product, stock=0)
            apply_fields(variant, record.field_values, VARIANT_FIELDS)
            variant.external_id = record.external_variant_id
            variant.inventory_item_id = record.inventory_item_id
            if variant.sku is None:
                variant.sku = record.sku
            session.add(variant)
            return variant, MergeAction.CREATED

        if variant.product_id is not None and product.id is not None and variant.product_id != product.id:
            raise IdentityConflictError(
                f"Variant {variant.id} belongs to product {variant.product_id}, not {product.id}",
                details={
                    "local_variant_id": variant.id,
                    "local_product_id": variant.product_id,
                    "incoming_product_id": product.id,
                }
            )

        bound = bind_identifier(variant, "external_id", record.external_variant_id, "Variant")
        bound = bind_identifier(variant, "inventory_item_id", record.inventory_item_id, "Variant") or bound
        changed = apply_fields(variant, record.field_values, VARIANT_FIELDS)
        if bound or changed:
            variant.touch()
            return variant, MergeAction.UPDATED
        return variant, MergeAction.UNCHANGED

    @staticmethod
    def _product_values(record: SyncRecord) -> Dict[str, Any]:
        fields = dict(record.product_fields)
        if "name" in fields and not fields["name"]:
            # A product always has a display name; a blank title is ignored.
            fields.pop("name")
        status = fields.get("status")
        if "status" in fields and status not in PRODUCT_STATUSES:
            if status is None:
                fields.pop("status")
            else:
                raise ValidationError(f"Unknown product status: {status}", details={"status": status})
        return fields
