"""Variant and product write service tests."""

import uuid
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select

from hubstock.core.exceptions import NotFoundError, ValidationError
from hubstock.models import ExchangeVariant, InventoryItem, Product, Variant, VariantUnit
from hubstock.schemas.variant import ProductUnitUpdate, VariantStockUpdate, VariantUpdate
from hubstock.services.distribution_service import CacheKey
from hubstock.services.products_cache_service import EntryState
from hubstock.services.variant_service import ProductService, VariantService, derive_weight, unit_errors
from tests.factories import add_variant


@pytest.fixture
def key(scenario):
    return CacheKey(scenario.storefront.id, scenario.order_cycle.id)


async def memberships(session_factory, variant_id):
    async with session_factory() as session:
        result = await session.execute(
            select(ExchangeVariant.id).where(ExchangeVariant.variant_id == variant_id)
        )
        return list(result.scalars().all())


async def load_variant(session_factory, variant_id):
    async with session_factory() as session:
        return await session.get(Variant, variant_id)


# ============================================================================
# STOCK AND PRICE
# ============================================================================


async def test_setting_on_hand_to_zero_hides_unit_on_next_read(db_session, cache, scenario, key):
    assert await cache.units_offered_at(*key) == {scenario.unit_x.id}

    await VariantService(db_session, cache).update_stock(scenario.unit_x.id, VariantStockUpdate(on_hand=0))

    assert await cache.units_offered_at(*key) == set()


async def test_backorderable_unit_stays_listed_when_sold_out(db_session, cache, scenario, key):
    service = VariantService(db_session, cache)
    await service.update_stock(scenario.unit_x.id, VariantStockUpdate(on_hand=0, backorderable=True))

    assert await cache.units_offered_at(*key) == {scenario.unit_x.id}


async def test_empty_stock_update_writes_nothing(db_session, cache, scenario, key):
    await cache.get(*key)
    await VariantService(db_session, cache).update_stock(scenario.unit_x.id, VariantStockUpdate())
    assert cache.state_of(*key) == EntryState.VALID


def test_negative_on_hand_rejected_by_schema():
    with pytest.raises(PydanticValidationError):
        VariantStockUpdate(on_hand=-1)


def test_null_price_rejected_by_schema():
    with pytest.raises(PydanticValidationError):
        VariantUpdate(price=None)

    assert VariantUpdate(display_name="Tomatoes 1kg").model_dump(exclude_unset=True) == {
        "display_name": "Tomatoes 1kg"
    }


async def test_price_update_invalidates(db_session, cache, scenario, key):
    await cache.get(*key)
    variant = await VariantService(db_session, cache).update(
        scenario.unit_x.id, VariantUpdate(price=Decimal("12.50"))
    )
    assert variant.price == Decimal("12.50")
    assert cache.state_of(*key) == EntryState.STALE


async def test_update_unknown_variant(db_session, cache, scenario):
    with pytest.raises(NotFoundError):
        await VariantService(db_session, cache).update_stock(uuid.uuid4(), VariantStockUpdate(on_hand=1))


# ============================================================================
# UNIT VALIDATION
# ============================================================================


def test_unit_rules():
    assert unit_errors(None, None, None) == []
    assert unit_errors("WEIGHT", Decimal("500"), None) == []
    assert len(unit_errors("VOLUME", None, "1 bottle")) == 1
    assert len(unit_errors("WEIGHT", None, None)) == 2
    assert unit_errors("ITEMS", None, "dozen") == []
    assert derive_weight("WEIGHT", Decimal("1000"), Decimal("0.5")) == Decimal("500.0")
    assert derive_weight("ITEMS", Decimal("1"), Decimal("6")) is None


async def test_weight_product_requires_unit_value(db_session, cache, scenario):
    scenario.product.variant_unit = VariantUnit.WEIGHT.value
    scenario.product.variant_unit_scale = Decimal("1000")
    scenario.unit_x.unit_value = Decimal("1")
    await db_session.commit()

    service = VariantService(db_session, cache)
    with pytest.raises(ValidationError):
        await service.update(scenario.unit_x.id, VariantUpdate(unit_value=None))

    variant = await service.update(scenario.unit_x.id, VariantUpdate(unit_value=Decimal("0.5")))
    assert variant.weight == Decimal("500")


async def test_variant_unit_change_rejected_when_variants_invalid(db_session, session_factory, cache, scenario, key):
    await cache.get(*key)

    with pytest.raises(ValidationError) as exc_info:
        await ProductService(db_session, cache).update_variant_unit(
            scenario.product.id, ProductUnitUpdate(variant_unit="weight", variant_unit_scale=Decimal("1000"))
        )

    assert str(scenario.unit_x.id) in exc_info.value.details["variants"]
    async with session_factory() as session:
        product = await session.get(Product, scenario.product.id)
        assert product.variant_unit is None
    assert cache.state_of(*key) == EntryState.VALID


async def test_variant_unit_change_invalidates_product_keys(db_session, cache, scenario, key):
    service = VariantService(db_session, cache)
    await service.update(scenario.master.id, VariantUpdate(unit_value=Decimal("1")))
    await service.update(scenario.unit_x.id, VariantUpdate(unit_value=Decimal("2")))
    await cache.get(*key)

    product = await ProductService(db_session, cache).update_variant_unit(
        scenario.product.id, ProductUnitUpdate(variant_unit=VariantUnit.WEIGHT, variant_unit_scale=Decimal("1000"))
    )

    assert product.variant_unit == "WEIGHT"
    assert scenario.unit_x.weight == Decimal("2000")
    assert cache.state_of(*key) == EntryState.STALE


# ============================================================================
# DELETION
# ============================================================================


async def test_soft_deleted_unit_never_listed(db_session, cache, scenario, key):
    await cache.get(*key)

    deleted = await VariantService(db_session, cache).soft_delete(scenario.unit_x.id)

    assert deleted == [scenario.unit_x.id]
    assert await cache.units_offered_at(*key) == set()


async def test_destroy_detaches_and_deletes(db_session, session_factory, cache, scenario, key):
    assert await cache.units_offered_at(*key) == {scenario.unit_x.id}

    destroyed = await VariantService(db_session, cache).destroy(scenario.unit_x.id)

    assert destroyed == [scenario.unit_x.id]
    assert await cache.units_offered_at(*key) == set()
    assert await memberships(session_factory, scenario.unit_x.id) == []
    assert await load_variant(session_factory, scenario.unit_x.id) is None


async def test_destroy_removes_inventory_items(db_session, session_factory, cache, scenario):
    db_session.add(InventoryItem(
        enterprise_id=scenario.storefront.id, variant_id=scenario.unit_x.id, visible=True,
    ))
    await db_session.commit()

    await VariantService(db_session, cache).destroy(scenario.unit_x.id)

    async with session_factory() as session:
        result = await session.execute(
            select(InventoryItem).where(InventoryItem.variant_id == scenario.unit_x.id)
        )
        assert result.scalars().all() == []


async def test_failed_destroy_rolls_back_both_phases(monkeypatch, db_session, session_factory, cache, scenario, key):
    unit_x_id = scenario.unit_x.id
    assert await cache.units_offered_at(*key) == {unit_x_id}

    async def failing_commit():
        raise RuntimeError("connection lost")

    monkeypatch.setattr(db_session, "commit", failing_commit)
    with pytest.raises(RuntimeError):
        await VariantService(db_session, cache).destroy(unit_x_id)

    assert len(await memberships(session_factory, unit_x_id)) == 2
    assert await load_variant(session_factory, unit_x_id) is not None
    assert cache.state_of(*key) == EntryState.STALE
    assert await cache.units_offered_at(*key) == {unit_x_id}


async def test_destroying_master_cascades_to_siblings(db_session, session_factory, cache, scenario, key):
    sibling = await add_variant(db_session, scenario.product, sku="TOM-2KG", price=Decimal("18"), on_hand=4)
    await db_session.commit()
    await cache.get(*key)

    destroyed = await VariantService(db_session, cache).destroy(scenario.master.id)

    assert set(destroyed) == {scenario.master.id, scenario.unit_x.id, sibling.id}
    for variant_id in destroyed:
        assert await load_variant(session_factory, variant_id) is None
    async with session_factory() as session:
        product = await session.get(Product, scenario.product.id)
        assert product.deleted_at is not None
    assert await cache.units_offered_at(*key) == set()


async def test_soft_deleting_master_deletes_product(db_session, session_factory, cache, scenario, key):
    deleted = await VariantService(db_session, cache).soft_delete(scenario.master.id)

    assert set(deleted) == {scenario.master.id, scenario.unit_x.id}
    async with session_factory() as session:
        product = await session.get(Product, scenario.product.id)
        assert product.deleted_at is not None
    assert await cache.units_offered_at(*key) == set()
