"""Maps Shopify identifiers to local products and variants."""

from typing import List, Optional, Set

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..models.product import Product, Variant
from ..models.sync_record import VariantRecord
from ..utils.exceptions import IdentityConflictError

# Lookup priority; SKU is a fallback key, never authoritative.
KEY_ORDER = ("external_variant_id", "inventory_item_id", "sku")

COLUMNS = {
    "external_variant_id": Variant.external_id,
    "inventory_item_id": Variant.inventory_item_id,
    "sku": Variant.sku,
}

# Attribute on Variant holding each identifier
ATTRIBUTES = {
    "external_variant_id": "external_id",
    "inventory_item_id": "inventory_item_id",
    "sku": "sku",
}


class IdentityResolver:
    """
    Looks up local records for external identifiers.

    Absence is a normal answer (``None``). A variant matched on one key while
    another supplied key points at a different variant, or while it is bound
    to a different external id, is an ``IdentityConflictError``; guessing
    would merge unrelated inventory.
    """

    def resolve_product(self, session: Session, external_product_id: Optional[int],
                        lock: bool = False) -> Optional[Product]:
        if external_product_id is None:
            return None
        stmt = select(Product).where(Product.external_id == external_product_id)
        if lock:
            stmt = stmt.with_for_update()
        return session.execute(stmt).scalars().first()

    def resolve_variant(self, session: Session, record: VariantRecord,
                        lock: bool = False) -> Optional[Variant]:
        """
        Resolve one variant in a single read: by external variant id, then
        inventory item id, then SKU.
        """
        keys = {key: getattr(record, key) for key in KEY_ORDER if getattr(record, key) is not None}
        if not keys:
            return None

        stmt = select(Variant).where(or_(*(COLUMNS[key] == value for key, value in keys.items())))
        if lock:
            stmt = stmt.with_for_update()
        candidates = list(session.execute(stmt).scalars().unique())
        if not candidates:
            return None

        match, matched_on = None, None
        for key in KEY_ORDER:
            if key not in keys:
                continue
            match = next((v for v in candidates if getattr(v, ATTRIBUTES[key]) == keys[key]), None)
            if match is not None:
                matched_on = key
                break

        for key, value in keys.items():
            holder = next((v for v in candidates if getattr(v, ATTRIBUTES[key]) == value), None)
            if holder is not None and holder.id != match.id:
                raise IdentityConflictError(
                    f"{key}={value} belongs to variant {holder.id}, "
                    f"but {matched_on}={keys[matched_on]} resolved to variant {match.id}",
                    details={
                        "key": key,
                        "value": value,
                        "local_variant_id": match.id,
                        "conflicting_variant_id": holder.id,
                    }
                )

        for key in ("external_variant_id", "inventory_item_id"):
            if key not in keys:
                continue
            bound = getattr(match, ATTRIBUTES[key])
            if bound is not None and bound != keys[key]:
                raise IdentityConflictError(
                    f"Variant {match.id} is bound to {key}={bound}, "
                    f"refusing to rebind to {keys[key]}",
                    details={
                        "key": key,
                        "bound": bound,
                        "incoming": keys[key],
                        "local_variant_id": match.id,
                    }
                )

        return match

    def candidate_ids(self, session: Session, records: List[VariantRecord]) -> Set[int]:
        """Ids of every local variant any of ``records`` could resolve to."""
        clauses = []
        for record in records:
            for key in KEY_ORDER:
                value = getattr(record, key)
                if value is not None:
                    clauses.append(COLUMNS[key] == value)
        if not clauses:
            return set()
        stmt = select(Variant.id).where(or_(*clauses))
        return set(session.execute(stmt).scalars())
