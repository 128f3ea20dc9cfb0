"""Availability cache tests: state machine, single flight and write guards."""

import asyncio
import uuid

import pytest
from sqlalchemy import delete

from hubstock.core.exceptions import InconsistentStateError
from hubstock.models import ExchangeDirection, ExchangeVariant, InventoryItem
from hubstock.services.distribution_service import CacheKey
from hubstock.services.products_cache_service import EntryState


def count_builds(monkeypatch, cache, pause_first=None):
    """Wrap cache._compute, recording each pass. Optionally hold the first result until an event."""
    calls = []
    original = cache._compute

    async def counting(key):
        calls.append(key)
        snapshot = await original(key)
        if pause_first is not None and len(calls) == 1:
            started, gate = pause_first
            started.set()
            await gate.wait()
        return snapshot

    monkeypatch.setattr(cache, "_compute", counting)
    return calls


@pytest.fixture
def key(scenario):
    return CacheKey(scenario.storefront.id, scenario.order_cycle.id)


# ============================================================================
# READ PATH
# ============================================================================


async def test_first_read_builds_valid_entry(cache, scenario, key):
    assert cache.state_of(*key) == EntryState.ABSENT

    snapshot = await cache.get(*key)

    assert snapshot.variant_ids == frozenset({scenario.unit_x.id})
    assert snapshot.product_ids == frozenset({scenario.product.id})
    assert snapshot.stale is False
    assert cache.state_of(*key) == EntryState.VALID


async def test_concurrent_reads_share_one_build(monkeypatch, cache, scenario, key):
    calls = count_builds(monkeypatch, cache)

    results = await asyncio.gather(*(cache.units_offered_at(*key) for _ in range(5)))

    assert len(calls) == 1
    assert all(result == {scenario.unit_x.id} for result in results)

    await cache.units_offered_at(*key)
    assert len(calls) == 1


async def test_invalidation_during_build_forces_another_pass(monkeypatch, db_session, cache, scenario, key):
    started, gate = asyncio.Event(), asyncio.Event()
    calls = count_builds(monkeypatch, cache, pause_first=(started, gate))

    reader = asyncio.create_task(cache.get(*key))
    await started.wait()
    assert cache.state_of(*key) == EntryState.BUILDING

    scenario.unit_x.on_hand = 0
    await db_session.commit()
    await cache.invalidate([key])
    gate.set()

    snapshot = await reader
    assert len(calls) == 2
    assert scenario.unit_x.id not in snapshot.variant_ids
    assert cache.state_of(*key) == EntryState.VALID


async def test_sold_out_unit_disappears_after_invalidation(db_session, cache, scenario, key):
    assert await cache.units_offered_at(*key) == {scenario.unit_x.id}

    scenario.unit_x.on_hand = 0
    await db_session.commit()
    keys = await cache.variant_changed(db_session, scenario.unit_x)

    assert keys == {key}
    assert await cache.units_offered_at(*key) == set()


async def test_evicted_snapshot_is_rebuilt(monkeypatch, backend, cache, scenario, key):
    calls = count_builds(monkeypatch, cache)
    await cache.get(*key)

    assert await backend.clear_pattern("hubstock-test:availability:*") == 1
    snapshot = await cache.get(*key)

    assert len(calls) == 2
    assert snapshot.variant_ids == frozenset({scenario.unit_x.id})
    assert cache.state_of(*key) == EntryState.VALID


# ============================================================================
# ERRORS
# ============================================================================


async def test_failed_build_keeps_previous_state(monkeypatch, cache, scenario, key):
    await cache.get(*key)
    await cache.invalidate([key])
    assert cache.state_of(*key) == EntryState.STALE

    async def broken(build_key):
        raise InconsistentStateError("Variant has negative on_hand")

    original = cache._compute
    monkeypatch.setattr(cache, "_compute", broken)
    with pytest.raises(InconsistentStateError):
        await cache.get(*key)
    assert cache.state_of(*key) == EntryState.STALE

    monkeypatch.setattr(cache, "_compute", original)
    assert await cache.units_offered_at(*key) == {scenario.unit_x.id}
    assert cache.state_of(*key) == EntryState.VALID


async def test_failed_first_build_leaves_key_absent(monkeypatch, cache, scenario, key):
    async def broken(build_key):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(cache, "_compute", broken)
    results = await asyncio.gather(cache.get(*key), cache.get(*key), return_exceptions=True)

    assert all(isinstance(result, RuntimeError) for result in results)
    assert cache.state_of(*key) == EntryState.ABSENT
    assert cache.keys() == []


async def test_unknown_storefront_is_not_cached(cache, scenario):
    from hubstock.core.exceptions import NotFoundError

    with pytest.raises(NotFoundError):
        await cache.get(uuid.uuid4(), scenario.order_cycle.id)
    assert cache.keys() == []


# ============================================================================
# WRITE GUARDS
# ============================================================================


async def test_readers_wait_for_pending_write(db_session, cache, scenario, key):
    await cache.get(*key)

    async with cache.writing([key]):
        reader = asyncio.create_task(cache.units_offered_at(*key))

        stale = await cache.get(*key, serve_stale=True)
        assert stale.stale is True
        assert scenario.unit_x.id in stale.variant_ids

        await asyncio.sleep(0.05)
        assert not reader.done()

        await db_session.execute(
            delete(ExchangeVariant).where(ExchangeVariant.variant_id == scenario.unit_x.id)
        )
        await db_session.commit()

    assert await reader == set()
    assert cache.state_of(*key) == EntryState.VALID


async def test_rolled_back_write_keeps_data_and_invalidates(db_session, cache, scenario, key):
    unit_x_id = scenario.unit_x.id
    await cache.get(*key)

    with pytest.raises(RuntimeError):
        async with cache.committing(db_session, [key]):
            await db_session.execute(
                delete(ExchangeVariant).where(ExchangeVariant.variant_id == unit_x_id)
            )
            raise RuntimeError("payment provider timeout")

    assert cache.state_of(*key) == EntryState.STALE
    assert await cache.units_offered_at(*key) == {unit_x_id}


async def test_write_guard_on_absent_key_leaves_nothing_behind(cache, scenario, key):
    async with cache.writing([key]) as guarded:
        assert guarded == {key}
    assert cache.keys() == []


# ============================================================================
# TEARDOWN AND HOOKS
# ============================================================================


async def test_tear_down_order_cycle(backend, cache, scenario, key):
    await cache.get(*key)

    assert await cache.tear_down_order_cycle(scenario.order_cycle.id) == 1
    assert cache.state_of(*key) == EntryState.ABSENT
    assert await backend.get(f"hubstock-test:availability:{key.storefront_id}:{key.order_cycle_id}") is None


async def test_tear_down_during_write_keeps_readers_waiting(db_session, cache, scenario, key):
    unit_x_id = scenario.unit_x.id
    await cache.get(*key)

    async with cache.committing(db_session, [key]):
        await db_session.execute(
            delete(ExchangeVariant).where(ExchangeVariant.variant_id == unit_x_id)
        )
        assert await cache.tear_down_order_cycle(scenario.order_cycle.id) == 1
        assert cache.state_of(*key) == EntryState.TORN_DOWN

        reader = asyncio.create_task(cache.units_offered_at(*key))
        await asyncio.sleep(0.05)
        assert not reader.done()

    assert await reader == set()
    assert cache.state_of(*key) == EntryState.VALID


async def test_inventory_item_hook_hides_unit(db_session, cache, scenario, key):
    await cache.get(*key)
    db_session.add(InventoryItem(
        enterprise_id=scenario.storefront.id, variant_id=scenario.unit_x.id, visible=False,
    ))
    await db_session.commit()

    keys = await cache.inventory_item_changed(db_session, scenario.storefront.id, scenario.unit_x.id)
    assert keys == {key}
    assert await cache.units_offered_at(*key) == set()


async def test_storefront_filter_change_rebuilds_open_cycles(monkeypatch, db_session, cache, scenario, key):
    calls = count_builds(monkeypatch, cache)
    await cache.get(*key)

    keys = await cache.storefront_filters_changed(db_session, scenario.storefront.id)

    assert keys == {key}
    assert len(calls) == 2
    assert cache.state_of(*key) == EntryState.VALID


async def test_incoming_exchange_changes_touch_no_keys(db_session, cache, scenario, key):
    await cache.get(*key)
    assert scenario.incoming.direction == ExchangeDirection.INCOMING.value

    assert await cache.exchange_changed(db_session, scenario.incoming) == set()
    assert cache.state_of(*key) == EntryState.VALID


async def test_product_hook_invalidates_every_key(db_session, cache, scenario, key):
    await cache.get(*key)

    assert await cache.product_changed(db_session, scenario.product.id) == {key}
    assert cache.state_of(*key) == EntryState.STALE
