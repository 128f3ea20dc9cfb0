"""Storefront inventory (visibility override) model."""
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey
from sqlalchemy import UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hubstock.database import Base

if TYPE_CHECKING:
    from hubstock.models.product import Variant


class InventoryItem(Base):
    """
    Per-(storefront, variant) visibility override.

    No row means visible by default. visible=False hides the variant at the
    storefront; visible=True marks it as explicitly stocked.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("enterprise_id", "variant_id", name="uq_inventory_item_enterprise_variant"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    enterprise_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("enterprises.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    variant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("variants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    visible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    variant: Mapped["Variant"] = relationship("Variant", back_populates="inventory_items")
