"""Product and variant (sellable unit) models."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hubstock.core.enum_utils import enum_comment
from hubstock.database import Base

if TYPE_CHECKING:
    from hubstock.models.enterprise import Enterprise
    from hubstock.models.order_cycle import ExchangeVariant
    from hubstock.models.inventory import InventoryItem


class VariantUnit(str, Enum):
    """How a product's variants are measured. NULL column means no variant unit."""
    WEIGHT = "WEIGHT"
    VOLUME = "VOLUME"
    ITEMS = "ITEMS"


class Product(Base):
    """
    Sellable template owned by a vendor (supplier).

    Every product has exactly one master variant, which represents the product
    when no other variants are defined.
    """
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    supplier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("enterprises.id"),
        nullable=False,
        index=True
    )

    # Unit classification
    variant_unit: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment=enum_comment(VariantUnit)
    )
    variant_unit_scale: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 3),
        nullable=True,
        comment="Multiplier from unit_value to base unit, e.g. 1000 for kg"
    )
    variant_unit_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    supplier: Mapped["Enterprise"] = relationship("Enterprise")
    variants: Mapped[List["Variant"]] = relationship(
        "Variant",
        back_populates="product",
        order_by="Variant.created_at"
    )

    def __repr__(self) -> str:
        return f"<Product(name='{self.name}')>"


class Variant(Base):
    """
    A specific purchasable unit of a product.

    Stock policy fields (on_hand, on_demand, backorderable) are evaluated by
    the stock policy service. deleted_at is the soft-delete marker.
    """
    __tablename__ = "variants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    is_master: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    # Unit measurement
    unit_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)
    unit_description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), nullable=True)

    # Stock policy
    on_hand: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    on_demand: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    backorderable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    product: Mapped["Product"] = relationship("Product", back_populates="variants")
    exchange_variants: Mapped[List["ExchangeVariant"]] = relationship(
        "ExchangeVariant",
        back_populates="variant",
        passive_deletes=True
    )
    inventory_items: Mapped[List["InventoryItem"]] = relationship(
        "InventoryItem",
        back_populates="variant",
        passive_deletes=True
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Variant(sku='{self.sku}', master={self.is_master})>"
