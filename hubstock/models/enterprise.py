"""Enterprise and enterprise fee models.

An enterprise plays one or more roles in the marketplace: vendor (supplier of
products), coordinator (runs order cycles) and storefront (distributor that
sells to customers).
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hubstock.core.enum_utils import enum_comment
from hubstock.database import Base


class FeeType(str, Enum):
    """What an enterprise fee is charged for."""
    ADMIN = "ADMIN"
    SALES = "SALES"
    PACKING = "PACKING"
    TRANSPORT = "TRANSPORT"
    FUNDRAISING = "FUNDRAISING"


class FeeCalculator(str, Enum):
    """How an enterprise fee amount is derived."""
    FLAT_RATE = "FLAT_RATE"        # Fixed amount regardless of price or quantity
    FLAT_PERCENT = "FLAT_PERCENT"  # Percentage of the unit price
    PER_ITEM = "PER_ITEM"          # Fixed amount per item purchased


class Enterprise(Base):
    """Vendor, coordinator or storefront."""
    __tablename__ = "enterprises"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_primary_producer: Mapped[bool] = mapped_column(Boolean, default=False)
    is_distributor: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Enterprise(name='{self.name}')>"


class EnterpriseFee(Base):
    """
    Fee schedule owned by an enterprise.

    Attached to exchanges (ExchangeFee) or to an order cycle as a coordinator
    fee (CoordinatorFee) and charged on top of a unit's base price.
    """
    __tablename__ = "enterprise_fees"

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
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    fee_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=FeeType.ADMIN.value,
        comment=enum_comment(FeeType)
    )
    calculator: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=FeeCalculator.FLAT_RATE.value,
        comment=enum_comment(FeeCalculator)
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Amount for FLAT_RATE and PER_ITEM calculators"
    )
    percent: Mapped[Decimal] = mapped_column(
        Numeric(6, 3),
        nullable=False,
        default=Decimal("0"),
        comment="Rate for FLAT_PERCENT calculator, e.g. 12.5 = 12.5%"
    )
    tax_category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    enterprise: Mapped["Enterprise"] = relationship("Enterprise")

    def __repr__(self) -> str:
        return f"<EnterpriseFee(name='{self.name}', calculator='{self.calculator}')>"
