"""Product and variant records of the local store."""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Integer,
    Numeric, String, Text,
)
from sqlalchemy.orm import relationship

from ..database import Base

PRODUCT_STATUSES = ("draft", "active", "archived")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    def touch(self) -> None:
        """Advance ``updated_at`` without ever moving it backwards."""
        now = utcnow()
        if self.updated_at is None or now > self.updated_at:
            self.updated_at = now


class Product(TimestampMixin, Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    external_id = Column(BigInteger, unique=True, nullable=True, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text)
    product_type = Column(String(255))
    vendor = Column(String(255))
    status = Column(String(20), nullable=False, default="active")

    variants = relationship(
        "Variant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="Variant.id",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "name": self.name,
            "description": self.description,
            "product_type": self.product_type,
            "vendor": self.vendor,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "variants": [variant.to_dict() for variant in self.variants],
        }

    def __repr__(self):
        return f"<Product(id={self.id}, external_id={self.external_id}, name='{self.name}')>"


class Variant(TimestampMixin, Base):
    __tablename__ = "product_variants"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_variant_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    external_id = Column(BigInteger, unique=True, nullable=True, index=True)
    inventory_item_id = Column(BigInteger, unique=True, nullable=True, index=True)
    sku = Column(String(100), unique=True, nullable=True, index=True)

    title = Column(String(255))
    option1 = Column(String(255))
    option2 = Column(String(255))
    option3 = Column(String(255))
    price = Column(Numeric(10, 2))
    compare_at_price = Column(Numeric(10, 2))
    stock = Column(Integer, nullable=False, default=0)
    weight = Column(Numeric(10, 3))
    weight_unit = Column(String(10))
    image_id = Column(String(64))

    product = relationship("Product", back_populates="variants")

    @property
    def is_sync_pending(self) -> bool:
        """A variant without an inventory item id cannot receive stock events."""
        return self.inventory_item_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "external_id": self.external_id,
            "inventory_item_id": self.inventory_item_id,
            "sku": self.sku,
            "title": self.title,
            "options": [self.option1, self.option2, self.option3],
            "price": str(self.price) if self.price is not None else None,
            "compare_at_price": str(self.compare_at_price) if self.compare_at_price is not None else None,
            "stock": self.stock,
            "weight": str(self.weight) if self.weight is not None else None,
            "weight_unit": self.weight_unit,
            "image_id": self.image_id,
        }

    def __repr__(self):
        return (f"<Variant(id={self.id}, external_id={self.external_id}, "
                f"inventory_item_id={self.inventory_item_id}, sku='{self.sku}', stock={self.stock})>")
