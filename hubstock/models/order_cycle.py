"""Order cycle, schedule and exchange (agreement) models.

An exchange is a directed supply link inside one order cycle:
- INCOMING: vendor (sender) -> coordinator (receiver)
- OUTGOING: coordinator (sender) -> storefront (receiver)

Only OUTGOING exchanges make units purchasable by customers.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer
from sqlalchemy import UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hubstock.core.enum_utils import enum_comment, is_status
from hubstock.database import Base

if TYPE_CHECKING:
    from hubstock.models.enterprise import Enterprise, EnterpriseFee
    from hubstock.models.product import Variant


class ExchangeDirection(str, Enum):
    """Exchange direction relative to the order cycle's coordinator."""
    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite round trips) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class OrderCycle(Base):
    """A bounded trading window run by a coordinator."""
    __tablename__ = "order_cycles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    coordinator_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("enterprises.id"),
        nullable=False,
        index=True
    )
    opens_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closes_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Storefronts only offer units they explicitly stock (visible inventory items)
    inventory_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    coordinator: Mapped["Enterprise"] = relationship("Enterprise")
    exchanges: Mapped[List["Exchange"]] = relationship(
        "Exchange",
        back_populates="order_cycle",
        cascade="all, delete-orphan",
        order_by="Exchange.created_at"
    )
    coordinator_fees: Mapped[List["CoordinatorFee"]] = relationship(
        "CoordinatorFee",
        back_populates="order_cycle",
        cascade="all, delete-orphan",
        order_by="CoordinatorFee.position"
    )

    def is_open(self, at: Optional[datetime] = None) -> bool:
        """True while the cycle is mid-cycle: opened and not yet closed."""
        at = at or datetime.now(timezone.utc)
        opens_at = as_utc(self.opens_at)
        closes_at = as_utc(self.closes_at)
        if opens_at is None or opens_at > at:
            return False
        return closes_at is None or closes_at > at

    def is_closed(self, at: Optional[datetime] = None) -> bool:
        at = at or datetime.now(timezone.utc)
        closes_at = as_utc(self.closes_at)
        return closes_at is not None and closes_at <= at

    def __repr__(self) -> str:
        return f"<OrderCycle(name='{self.name}')>"


class Schedule(Base):
    """Recurring grouping of order cycles."""
    __tablename__ = "schedules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class OrderCycleSchedule(Base):
    """Membership of an order cycle in a schedule."""
    __tablename__ = "order_cycle_schedules"
    __table_args__ = (
        UniqueConstraint("order_cycle_id", "schedule_id", name="uq_order_cycle_schedule"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_cycle_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("order_cycles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )


class Exchange(Base):
    """Directed supply link (agreement) between two enterprises in an order cycle."""
    __tablename__ = "exchanges"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_cycle_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("order_cycles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("enterprises.id"),
        nullable=False,
        index=True
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("enterprises.id"),
        nullable=False,
        index=True
    )
    direction: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment=enum_comment(ExchangeDirection)
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    order_cycle: Mapped["OrderCycle"] = relationship("OrderCycle", back_populates="exchanges")
    exchange_variants: Mapped[List["ExchangeVariant"]] = relationship(
        "ExchangeVariant",
        back_populates="exchange",
        cascade="all, delete-orphan"
    )
    exchange_fees: Mapped[List["ExchangeFee"]] = relationship(
        "ExchangeFee",
        back_populates="exchange",
        cascade="all, delete-orphan",
        order_by="ExchangeFee.position"
    )

    @property
    def is_outgoing(self) -> bool:
        return is_status(self.direction, ExchangeDirection.OUTGOING)

    def __repr__(self) -> str:
        return f"<Exchange(direction='{self.direction}', order_cycle_id={self.order_cycle_id})>"


class ExchangeVariant(Base):
    """Membership of a variant in an exchange."""
    __tablename__ = "exchange_variants"
    __table_args__ = (
        UniqueConstraint("exchange_id", "variant_id", name="uq_exchange_variant"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    exchange_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("exchanges.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    variant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("variants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    exchange: Mapped["Exchange"] = relationship("Exchange", back_populates="exchange_variants")
    variant: Mapped["Variant"] = relationship("Variant", back_populates="exchange_variants")


class ExchangeFee(Base):
    """Enterprise fee attached to an exchange, in attachment order."""
    __tablename__ = "exchange_fees"
    __table_args__ = (
        UniqueConstraint("exchange_id", "enterprise_fee_id", name="uq_exchange_fee"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    exchange_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("exchanges.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    enterprise_fee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("enterprise_fees.id", ondelete="CASCADE"),
        nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    exchange: Mapped["Exchange"] = relationship("Exchange", back_populates="exchange_fees")
    enterprise_fee: Mapped["EnterpriseFee"] = relationship("EnterpriseFee")


class CoordinatorFee(Base):
    """Order-cycle-level fee charged by the coordinator on every distributed unit."""
    __tablename__ = "coordinator_fees"
    __table_args__ = (
        UniqueConstraint("order_cycle_id", "enterprise_fee_id", name="uq_coordinator_fee"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_cycle_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("order_cycles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    enterprise_fee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("enterprise_fees.id", ondelete="CASCADE"),
        nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    order_cycle: Mapped["OrderCycle"] = relationship("OrderCycle", back_populates="coordinator_fees")
    enterprise_fee: Mapped["EnterpriseFee"] = relationship("EnterpriseFee")
