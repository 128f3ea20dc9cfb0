"""
Distribution Resolver.

Computes which variants a storefront legitimately offers in an order cycle
(or across a schedule) by resolving OUTGOING exchanges, then applies the
storefront's inventory visibility overrides.

Also discovers availability cache keys affected by a variant, product,
storefront or order cycle so write-side hooks never re-derive them.
"""
import uuid
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Set

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from hubstock.core.exceptions import InconsistentStateError, NotFoundError
from hubstock.models.enterprise import Enterprise
from hubstock.models.inventory import InventoryItem
from hubstock.models.order_cycle import (
    OrderCycle, OrderCycleSchedule, Schedule,
    Exchange, ExchangeDirection, ExchangeVariant,
)
from hubstock.models.product import Product, Variant


class CacheKey(NamedTuple):
    """Availability cache key."""
    storefront_id: uuid.UUID
    order_cycle_id: uuid.UUID

    def __str__(self) -> str:
        return f"{self.storefront_id}:{self.order_cycle_id}"


class Visibility(str, Enum):
    """Inventory visibility of a variant at a storefront."""
    UNSET = "UNSET"      # No inventory item: visible by default
    VISIBLE = "VISIBLE"  # Explicitly stocked
    HIDDEN = "HIDDEN"    # Explicitly hidden


class DistributionService:
    """
    Resolves storefront offerings from exchanges.

    Read-only: never writes to the session.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Lookups ====================

    async def get_order_cycle(self, order_cycle_id: uuid.UUID) -> OrderCycle:
        order_cycle = await self.db.get(OrderCycle, order_cycle_id)
        if order_cycle is None:
            raise NotFoundError("OrderCycle", order_cycle_id)
        return order_cycle

    async def get_enterprise(self, enterprise_id: uuid.UUID) -> Enterprise:
        enterprise = await self.db.get(Enterprise, enterprise_id)
        if enterprise is None:
            raise NotFoundError("Enterprise", enterprise_id)
        return enterprise

    async def get_variant(self, variant_id: uuid.UUID) -> Variant:
        variant = await self.db.get(Variant, variant_id)
        if variant is None:
            raise NotFoundError("Variant", variant_id)
        return variant

    # ==================== Offerings ====================

    async def units_offered_at(
        self,
        storefront_id: uuid.UUID,
        order_cycle_id: uuid.UUID,
        apply_visibility: bool = True
    ) -> Set[uuid.UUID]:
        """
        Variants offered by a storefront in an order cycle.

        Each variant id appears once however many outgoing exchanges carry it.
        Soft-deleted variants and variants of soft-deleted products are never
        returned.
        """
        await self.get_enterprise(storefront_id)
        order_cycle = await self.get_order_cycle(order_cycle_id)

        offered = await self._outgoing_variant_ids(storefront_id, [order_cycle_id])
        if not apply_visibility:
            return offered
        return await self.refine_visibility(
            storefront_id,
            offered,
            inventory_only=order_cycle.inventory_only
        )

    async def units_offered_in_schedule(
        self,
        storefront_id: uuid.UUID,
        schedule_id: uuid.UUID
    ) -> Set[uuid.UUID]:
        """Union of units_offered_at over every order cycle in the schedule."""
        await self.get_enterprise(storefront_id)
        schedule = await self.db.get(Schedule, schedule_id)
        if schedule is None:
            raise NotFoundError("Schedule", schedule_id)

        result = await self.db.execute(
            select(OrderCycle)
            .join(OrderCycleSchedule, OrderCycleSchedule.order_cycle_id == OrderCycle.id)
            .where(OrderCycleSchedule.schedule_id == schedule_id)
        )
        offered: Set[uuid.UUID] = set()
        for order_cycle in result.scalars().all():
            candidates = await self._outgoing_variant_ids(storefront_id, [order_cycle.id])
            offered |= await self.refine_visibility(
                storefront_id,
                candidates,
                inventory_only=order_cycle.inventory_only
            )
        return offered

    async def units_in_distributor(self, storefront_id: uuid.UUID) -> Set[uuid.UUID]:
        """Variants in any outgoing exchange to the storefront, across order cycles."""
        await self.get_enterprise(storefront_id)
        result = await self.db.execute(
            select(ExchangeVariant.variant_id)
            .join(Exchange, Exchange.id == ExchangeVariant.exchange_id)
            .join(Variant, Variant.id == ExchangeVariant.variant_id)
            .where(
                and_(
                    Exchange.receiver_id == storefront_id,
                    Exchange.direction == ExchangeDirection.OUTGOING.value,
                    Variant.deleted_at.is_(None),
                )
            )
            .distinct()
        )
        return set(result.scalars().all())

    async def units_visible_for(self, storefront_id: uuid.UUID) -> Set[uuid.UUID]:
        """Variants the storefront explicitly stocks (visible=True inventory items)."""
        result = await self.db.execute(
            select(InventoryItem.variant_id)
            .join(Variant, Variant.id == InventoryItem.variant_id)
            .where(
                and_(
                    InventoryItem.enterprise_id == storefront_id,
                    InventoryItem.visible.is_(True),
                    Variant.deleted_at.is_(None),
                )
            )
        )
        return set(result.scalars().all())

    async def _outgoing_variant_ids(
        self,
        storefront_id: uuid.UUID,
        order_cycle_ids: List[uuid.UUID]
    ) -> Set[uuid.UUID]:
        if not order_cycle_ids:
            return set()
        result = await self.db.execute(
            select(ExchangeVariant.variant_id, Product.id, Product.deleted_at)
            .join(Exchange, Exchange.id == ExchangeVariant.exchange_id)
            .join(Variant, Variant.id == ExchangeVariant.variant_id)
            .outerjoin(Product, Product.id == Variant.product_id)
            .where(
                and_(
                    Exchange.order_cycle_id.in_(order_cycle_ids),
                    Exchange.receiver_id == storefront_id,
                    Exchange.direction == ExchangeDirection.OUTGOING.value,
                    Variant.deleted_at.is_(None),
                )
            )
            .distinct()
        )
        offered: Set[uuid.UUID] = set()
        for variant_id, product_id, product_deleted_at in result.all():
            if product_id is None:
                raise InconsistentStateError(
                    f"Variant {variant_id} has no owning product",
                    details={"variant_id": str(variant_id)},
                )
            if product_deleted_at is None:
                offered.add(variant_id)
        return offered

    # ==================== Visibility ====================

    async def visibility(
        self,
        storefront_id: uuid.UUID,
        variant_ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, Visibility]:
        """Three-valued visibility lookup for each variant at the storefront."""
        variant_ids = list(variant_ids)
        lookup = {variant_id: Visibility.UNSET for variant_id in variant_ids}
        if not variant_ids:
            return lookup

        result = await self.db.execute(
            select(InventoryItem.variant_id, InventoryItem.visible)
            .where(
                and_(
                    InventoryItem.enterprise_id == storefront_id,
                    InventoryItem.variant_id.in_(variant_ids),
                )
            )
        )
        for variant_id, visible in result.all():
            lookup[variant_id] = Visibility.VISIBLE if visible else Visibility.HIDDEN
        return lookup

    async def refine_visibility(
        self,
        storefront_id: uuid.UUID,
        variant_ids: Iterable[uuid.UUID],
        inventory_only: bool = False
    ) -> Set[uuid.UUID]:
        """
        Drop variants the storefront hides.

        With inventory_only, only explicitly stocked (VISIBLE) variants remain.
        """
        lookup = await self.visibility(storefront_id, variant_ids)
        if inventory_only:
            return {v for v, state in lookup.items() if state == Visibility.VISIBLE}
        return {v for v, state in lookup.items() if state != Visibility.HIDDEN}

    # ==================== Cache key discovery ====================

    async def keys_for_variant(self, variant_id: uuid.UUID) -> Set[CacheKey]:
        """Keys of every outgoing exchange the variant is a member of."""
        return await self._keys_for_variant_ids([variant_id])

    async def keys_for_product(self, product_id: uuid.UUID) -> Set[CacheKey]:
        """Keys of every outgoing exchange carrying any variant of the product."""
        result = await self.db.execute(
            select(Variant.id).where(Variant.product_id == product_id)
        )
        return await self._keys_for_variant_ids(list(result.scalars().all()))

    async def keys_affected_by_variant(self, variant: Variant) -> Set[CacheKey]:
        """
        Keys a change to this variant can affect.

        A master variant of a product without other live variants stands for
        the product, so every key the product appears in is affected.
        """
        if variant.is_master:
            result = await self.db.execute(
                select(func.count(Variant.id)).where(
                    and_(
                        Variant.product_id == variant.product_id,
                        Variant.is_master.is_(False),
                        Variant.deleted_at.is_(None),
                    )
                )
            )
            if (result.scalar() or 0) == 0:
                return await self.keys_for_product(variant.product_id)
        return await self.keys_for_variant(variant.id)

    async def keys_for_storefront(
        self,
        storefront_id: uuid.UUID,
        order_cycle_ids: Optional[Iterable[uuid.UUID]] = None
    ) -> Set[CacheKey]:
        query = select(Exchange.receiver_id, Exchange.order_cycle_id).where(
            and_(
                Exchange.receiver_id == storefront_id,
                Exchange.direction == ExchangeDirection.OUTGOING.value,
            )
        )
        if order_cycle_ids is not None:
            query = query.where(Exchange.order_cycle_id.in_(list(order_cycle_ids)))
        result = await self.db.execute(query.distinct())
        return {CacheKey(receiver_id, oc_id) for receiver_id, oc_id in result.all()}

    async def keys_for_order_cycle(self, order_cycle_id: uuid.UUID) -> Set[CacheKey]:
        result = await self.db.execute(
            select(Exchange.receiver_id, Exchange.order_cycle_id)
            .where(
                and_(
                    Exchange.order_cycle_id == order_cycle_id,
                    Exchange.direction == ExchangeDirection.OUTGOING.value,
                )
            )
            .distinct()
        )
        return {CacheKey(receiver_id, oc_id) for receiver_id, oc_id in result.all()}

    async def _keys_for_variant_ids(self, variant_ids: List[uuid.UUID]) -> Set[CacheKey]:
        if not variant_ids:
            return set()
        result = await self.db.execute(
            select(Exchange.receiver_id, Exchange.order_cycle_id)
            .join(ExchangeVariant, ExchangeVariant.exchange_id == Exchange.id)
            .where(
                and_(
                    ExchangeVariant.variant_id.in_(variant_ids),
                    Exchange.direction == ExchangeDirection.OUTGOING.value,
                )
            )
            .distinct()
        )
        return {CacheKey(receiver_id, oc_id) for receiver_id, oc_id in result.all()}
