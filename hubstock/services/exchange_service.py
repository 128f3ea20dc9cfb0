"""
Exchange write service.

Membership changes on OUTGOING exchanges invalidate the exchange's
(storefront, order cycle) key; when the order cycle is open the key is
rebuilt straight after the commit so listings reflect the change at once.
Incoming exchanges never feed storefront availability.
"""
import logging
import uuid
from typing import Iterable, List, Optional, Set

from sqlalchemy import select, delete, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from hubstock.core.exceptions import NotFoundError, ValidationError
from hubstock.models.enterprise import EnterpriseFee
from hubstock.models.inventory import InventoryItem
from hubstock.models.order_cycle import CoordinatorFee, Exchange, ExchangeFee, ExchangeVariant
from hubstock.models.product import Variant
from hubstock.services.distribution_service import CacheKey, DistributionService
from hubstock.services.products_cache_service import AvailabilityCache, get_availability_cache

logger = logging.getLogger(__name__)


class ExchangeService:
    """Exchange membership, fee attachment and storefront inventory overrides."""

    def __init__(self, db: AsyncSession, cache: Optional[AvailabilityCache] = None):
        self.db = db
        self.cache = cache or get_availability_cache()
        self.distribution = DistributionService(db)

    async def get_exchange(self, exchange_id: uuid.UUID) -> Exchange:
        exchange = await self.db.get(Exchange, exchange_id)
        if exchange is None:
            raise NotFoundError("Exchange", exchange_id)
        return exchange

    async def get_enterprise_fee(self, enterprise_fee_id: uuid.UUID) -> EnterpriseFee:
        fee = await self.db.get(EnterpriseFee, enterprise_fee_id)
        if fee is None:
            raise NotFoundError("EnterpriseFee", enterprise_fee_id)
        return fee

    def _keys_for(self, exchange: Exchange) -> Set[CacheKey]:
        if not exchange.is_outgoing:
            return set()
        return {CacheKey(exchange.receiver_id, exchange.order_cycle_id)}

    # ==================== Membership ====================

    async def add_variants(self, exchange_id: uuid.UUID, variant_ids: Iterable[uuid.UUID]) -> List[uuid.UUID]:
        """
        Add variants to an exchange. Variants already present are skipped.

        Returns the ids actually added.
        """
        exchange = await self.get_exchange(exchange_id)
        requested = list(dict.fromkeys(variant_ids))
        if not requested:
            return []

        result = await self.db.execute(
            select(Variant.id, Variant.deleted_at).where(Variant.id.in_(requested))
        )
        found = {variant_id: deleted_at for variant_id, deleted_at in result.all()}
        for variant_id in requested:
            if variant_id not in found:
                raise NotFoundError("Variant", variant_id)
        deleted = [str(v) for v in requested if found[v] is not None]
        if deleted:
            raise ValidationError(
                "Deleted variants cannot be added to an exchange",
                details={"variant_ids": deleted},
            )

        result = await self.db.execute(
            select(ExchangeVariant.variant_id).where(
                and_(
                    ExchangeVariant.exchange_id == exchange_id,
                    ExchangeVariant.variant_id.in_(requested),
                )
            )
        )
        existing = set(result.scalars().all())
        added = [variant_id for variant_id in requested if variant_id not in existing]
        if not added:
            return []

        async with self.cache.committing(self.db, self._keys_for(exchange)):
            for variant_id in added:
                self.db.add(ExchangeVariant(exchange_id=exchange_id, variant_id=variant_id))

        logger.info(f"Added {len(added)} variant(s) to exchange {exchange_id}")
        await self.cache.exchange_changed(self.db, exchange)
        return added

    async def remove_variants(self, exchange_id: uuid.UUID, variant_ids: Iterable[uuid.UUID]) -> int:
        """Remove variants from an exchange. Returns the number of memberships removed."""
        exchange = await self.get_exchange(exchange_id)
        variant_ids = list(variant_ids)
        if not variant_ids:
            return 0

        async with self.cache.committing(self.db, self._keys_for(exchange)):
            result = await self.db.execute(
                delete(ExchangeVariant).where(
                    and_(
                        ExchangeVariant.exchange_id == exchange_id,
                        ExchangeVariant.variant_id.in_(variant_ids),
                    )
                )
            )
            removed = result.rowcount or 0

        logger.info(f"Removed {removed} variant(s) from exchange {exchange_id}")
        await self.cache.exchange_changed(self.db, exchange)
        return removed

    # ==================== Fees ====================

    async def attach_fee(self, exchange_id: uuid.UUID, enterprise_fee_id: uuid.UUID) -> ExchangeFee:
        """Attach a fee after every fee already on the exchange."""
        await self.get_exchange(exchange_id)
        await self.get_enterprise_fee(enterprise_fee_id)

        result = await self.db.execute(
            select(func.max(ExchangeFee.position)).where(ExchangeFee.exchange_id == exchange_id)
        )
        last_position = result.scalar()
        exchange_fee = ExchangeFee(
            exchange_id=exchange_id,
            enterprise_fee_id=enterprise_fee_id,
            position=0 if last_position is None else last_position + 1,
        )
        self.db.add(exchange_fee)
        await self.db.commit()
        await self.db.refresh(exchange_fee)
        return exchange_fee

    async def add_coordinator_fee(self, order_cycle_id: uuid.UUID, enterprise_fee_id: uuid.UUID) -> CoordinatorFee:
        """Attach an order-cycle-level coordinator fee after the existing ones."""
        await self.distribution.get_order_cycle(order_cycle_id)
        await self.get_enterprise_fee(enterprise_fee_id)

        result = await self.db.execute(
            select(func.max(CoordinatorFee.position)).where(CoordinatorFee.order_cycle_id == order_cycle_id)
        )
        last_position = result.scalar()
        coordinator_fee = CoordinatorFee(
            order_cycle_id=order_cycle_id,
            enterprise_fee_id=enterprise_fee_id,
            position=0 if last_position is None else last_position + 1,
        )
        self.db.add(coordinator_fee)
        await self.db.commit()
        await self.db.refresh(coordinator_fee)
        return coordinator_fee

    # ==================== Storefront overrides ====================

    async def set_inventory_item(
        self,
        storefront_id: uuid.UUID,
        variant_id: uuid.UUID,
        visible: bool
    ) -> InventoryItem:
        """Create or update the storefront's visibility override for a variant."""
        await self.distribution.get_enterprise(storefront_id)
        await self.distribution.get_variant(variant_id)

        result = await self.db.execute(
            select(InventoryItem).where(
                and_(
                    InventoryItem.enterprise_id == storefront_id,
                    InventoryItem.variant_id == variant_id,
                )
            )
        )
        item = result.scalar_one_or_none()

        keys = {
            key for key in await self.distribution.keys_for_variant(variant_id)
            if key.storefront_id == storefront_id
        }
        async with self.cache.committing(self.db, keys):
            if item is None:
                item = InventoryItem(enterprise_id=storefront_id, variant_id=variant_id, visible=visible)
                self.db.add(item)
            else:
                item.visible = visible

        logger.info(f"Inventory item for variant {variant_id} at {storefront_id}: visible={visible}")
        return item

    async def storefront_filters_changed(self, storefront_id: uuid.UUID) -> Set[CacheKey]:
        """Zone or tag rules changed at a storefront."""
        await self.distribution.get_enterprise(storefront_id)
        return await self.cache.storefront_filters_changed(self.db, storefront_id)
