"""
Variant and product write services.

Every write runs inside AvailabilityCache.committing(), so the affected
availability keys are invalidated before the transaction starts and again
after it commits or rolls back.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from hubstock.core.enum_utils import get_enum_value, is_status, status_in
from hubstock.core.exceptions import InconsistentStateError, NotFoundError, ValidationError
from hubstock.models.inventory import InventoryItem
from hubstock.models.order_cycle import ExchangeVariant
from hubstock.models.product import Product, Variant, VariantUnit
from hubstock.schemas.variant import ProductUnitUpdate, VariantStockUpdate, VariantUpdate
from hubstock.services.distribution_service import DistributionService
from hubstock.services.products_cache_service import AvailabilityCache, get_availability_cache

logger = logging.getLogger(__name__)


def unit_errors(
    variant_unit: Optional[str],
    unit_value: Optional[Decimal],
    unit_description: Optional[str]
) -> List[str]:
    """Unit measurement problems of a variant under a product's variant unit."""
    errors = []
    if status_in(variant_unit, VariantUnit.WEIGHT, VariantUnit.VOLUME) and unit_value is None:
        errors.append(f"unit_value is required for {variant_unit.lower()} products")
    if variant_unit is not None and unit_value is None and not unit_description:
        errors.append("unit_description is required when unit_value is missing")
    return errors


def derive_weight(
    variant_unit: Optional[str],
    variant_unit_scale: Optional[Decimal],
    unit_value: Optional[Decimal]
) -> Optional[Decimal]:
    """Weight of a WEIGHT product's variant, or None when it is not derivable."""
    if not is_status(variant_unit, VariantUnit.WEIGHT) or unit_value is None:
        return None
    return Decimal(unit_value) * Decimal(variant_unit_scale or 1)


class VariantService:
    """Stock, price and lifecycle changes for variants."""

    def __init__(self, db: AsyncSession, cache: Optional[AvailabilityCache] = None):
        self.db = db
        self.cache = cache or get_availability_cache()
        self.distribution = DistributionService(db)

    async def _get_product(self, variant: Variant) -> Product:
        product = await self.db.get(Product, variant.product_id)
        if product is None:
            raise InconsistentStateError(
                f"Variant {variant.id} has no owning product",
                details={"variant_id": str(variant.id), "product_id": str(variant.product_id)},
            )
        return product

    async def _variants_of(self, product_id: uuid.UUID, include_deleted: bool = False) -> List[Variant]:
        query = select(Variant).where(Variant.product_id == product_id)
        if not include_deleted:
            query = query.where(Variant.deleted_at.is_(None))
        result = await self.db.execute(query.order_by(Variant.created_at))
        return list(result.scalars().all())

    # ==================== Updates ====================

    async def update_stock(self, variant_id: uuid.UUID, data: VariantStockUpdate) -> Variant:
        """Change on_hand / on_demand / backorderable."""
        variant = await self.distribution.get_variant(variant_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return variant

        keys = await self.distribution.keys_affected_by_variant(variant)
        async with self.cache.committing(self.db, keys):
            for field_name, value in changes.items():
                setattr(variant, field_name, value)

        logger.info(f"Stock updated for variant {variant_id}: {changes}")
        return variant

    async def update(self, variant_id: uuid.UUID, data: VariantUpdate) -> Variant:
        """
        Change price and unit measurement.

        Raises:
            ValidationError: the resulting unit fields are invalid for the
                product's variant unit. Nothing is written.
        """
        variant = await self.distribution.get_variant(variant_id)
        product = await self._get_product(variant)
        changes = data.model_dump(exclude_unset=True)

        unit_value = changes.get("unit_value", variant.unit_value)
        unit_description = changes.get("unit_description", variant.unit_description)
        errors = unit_errors(product.variant_unit, unit_value, unit_description)
        if errors:
            raise ValidationError(
                f"Invalid unit for variant {variant_id}: {'; '.join(errors)}",
                details={"variant_id": str(variant_id), "errors": errors},
            )

        keys = await self.distribution.keys_affected_by_variant(variant)
        async with self.cache.committing(self.db, keys):
            for field_name, value in changes.items():
                setattr(variant, field_name, value)
            weight = derive_weight(product.variant_unit, product.variant_unit_scale, unit_value)
            if weight is not None:
                variant.weight = weight

        return variant

    # ==================== Deletion ====================

    async def soft_delete(self, variant_id: uuid.UUID) -> List[uuid.UUID]:
        """
        Mark a variant deleted. Deleting the master deletes its siblings and
        the product too.

        Returns the ids of every variant marked deleted.
        """
        variant = await self.distribution.get_variant(variant_id)
        if variant.is_deleted:
            return []

        if variant.is_master:
            product = await self._get_product(variant)
            targets = await self._variants_of(variant.product_id)
        else:
            product = None
            targets = [variant]
        # Removing the last non-master variant hands the product back to its master
        keys = await self.distribution.keys_for_product(variant.product_id)

        now = datetime.now(timezone.utc)
        async with self.cache.committing(self.db, keys):
            for target in targets:
                target.deleted_at = now
            if product is not None:
                product.deleted_at = now

        logger.info(f"Soft-deleted {len(targets)} variant(s) starting from {variant_id}")
        return [target.id for target in targets]

    async def destroy(self, variant_id: uuid.UUID) -> List[uuid.UUID]:
        """
        Remove a variant in two phases inside one transaction.

        1. Invalidate its keys and detach its exchange memberships and
           inventory items.
        2. Delete the variant rows and commit.

        Both phases commit together or roll back together. Destroying the
        master destroys every sibling and marks the product deleted.

        Returns the ids of every destroyed variant.
        """
        variant = await self.distribution.get_variant(variant_id)

        if variant.is_master:
            product = await self._get_product(variant)
            targets = await self._variants_of(variant.product_id, include_deleted=True)
        else:
            product = None
            targets = [variant]
        keys = await self.distribution.keys_for_product(variant.product_id)
        target_ids = [target.id for target in targets]

        async with self.cache.variant_destroyed(keys):
            try:
                # Phase 1: detach
                await self.db.execute(
                    delete(ExchangeVariant).where(ExchangeVariant.variant_id.in_(target_ids))
                )
                await self.db.execute(
                    delete(InventoryItem).where(InventoryItem.variant_id.in_(target_ids))
                )
                await self.db.flush()

                # Phase 2: delete
                for target in targets:
                    await self.db.delete(target)
                if product is not None:
                    product.deleted_at = datetime.now(timezone.utc)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                logger.warning(f"Destroy of variant {variant_id} rolled back")
                raise

        logger.info(f"Destroyed {len(target_ids)} variant(s) starting from {variant_id}, {len(keys)} keys invalidated")
        return target_ids


class ProductService:
    """Product-wide changes that affect every variant of a product."""

    def __init__(self, db: AsyncSession, cache: Optional[AvailabilityCache] = None):
        self.db = db
        self.cache = cache or get_availability_cache()
        self.distribution = DistributionService(db)

    async def get_product(self, product_id: uuid.UUID) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    async def update_variant_unit(self, product_id: uuid.UUID, data: ProductUnitUpdate) -> Product:
        """
        Reclassify a product's variant unit.

        Rejected without writing anything when a live variant would become
        invalid; otherwise every key the product appears in is invalidated
        and WEIGHT variants get their weight re-derived.
        """
        product = await self.get_product(product_id)
        changes = data.model_dump(exclude_unset=True)

        variant_unit = get_enum_value(changes["variant_unit"]) if "variant_unit" in changes else product.variant_unit
        scale = changes.get("variant_unit_scale", product.variant_unit_scale)

        result = await self.db.execute(
            select(Variant).where(
                and_(
                    Variant.product_id == product_id,
                    Variant.deleted_at.is_(None),
                )
            )
        )
        variants = list(result.scalars().all())

        invalid: Dict[str, List[str]] = {}
        for variant in variants:
            errors = unit_errors(variant_unit, variant.unit_value, variant.unit_description)
            if errors:
                invalid[str(variant.id)] = errors
        if invalid:
            raise ValidationError(
                f"Variant unit {variant_unit} would leave {len(invalid)} variant(s) invalid",
                details={"product_id": str(product_id), "variants": invalid},
            )

        keys = await self.distribution.keys_for_product(product_id)
        async with self.cache.committing(self.db, keys):
            product.variant_unit = variant_unit
            product.variant_unit_scale = scale
            if "variant_unit_name" in changes:
                product.variant_unit_name = changes["variant_unit_name"]
            for variant in variants:
                weight = derive_weight(variant_unit, scale, variant.unit_value)
                if weight is not None:
                    variant.weight = weight

        logger.info(f"Product {product_id} variant unit set to {variant_unit}, {len(keys)} keys invalidated")
        return product
