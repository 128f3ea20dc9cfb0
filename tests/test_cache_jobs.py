"""Background cache job tests."""

import asyncio
from datetime import datetime, timedelta, timezone

from hubstock.config import settings
from hubstock.jobs.cache_jobs import tear_down_closed_order_cycles, warm_open_order_cycles
from hubstock.jobs.scheduler import (
    get_job_status,
    register_jobs,
    scheduler,
    shutdown_scheduler,
    start_scheduler,
)
from hubstock.services.distribution_service import CacheKey
from hubstock.services.products_cache_service import EntryState


async def test_warm_builds_open_cycle_keys(cache, session_factory, scenario):
    key = CacheKey(scenario.storefront.id, scenario.order_cycle.id)

    result = await warm_open_order_cycles(cache, session_factory)

    assert result == {"order_cycles": 1, "keys_built": 1, "keys_failed": 0}
    assert cache.state_of(*key) == EntryState.VALID


async def test_teardown_removes_closed_cycle_keys(db_session, cache, session_factory, scenario):
    key = CacheKey(scenario.storefront.id, scenario.order_cycle.id)
    await cache.get(*key)

    assert await tear_down_closed_order_cycles(cache, session_factory) == {
        "order_cycles": 0, "keys_removed": 0, "snapshots_expired": 0
    }
    assert cache.state_of(*key) == EntryState.VALID

    scenario.order_cycle.closes_at = datetime.now(timezone.utc) - timedelta(hours=1)
    await db_session.commit()

    assert await tear_down_closed_order_cycles(cache, session_factory) == {
        "order_cycles": 1, "keys_removed": 1, "snapshots_expired": 0
    }
    assert cache.state_of(*key) == EntryState.ABSENT


async def test_teardown_purges_expired_snapshots(backend, cache, session_factory):
    await backend.set("hubstock-test:availability:gone", {"variant_ids": []}, ttl=0)
    await backend.set("hubstock-test:availability:live", {"variant_ids": []}, ttl=60)
    await asyncio.sleep(0.01)

    result = await tear_down_closed_order_cycles(cache, session_factory)

    assert result["snapshots_expired"] == 1
    assert await backend.get("hubstock-test:availability:live") == {"variant_ids": []}


async def test_warm_skips_closed_cycles(db_session, cache, session_factory, scenario):
    scenario.order_cycle.closes_at = datetime.now(timezone.utc) - timedelta(hours=1)
    await db_session.commit()

    result = await warm_open_order_cycles(cache, session_factory)

    assert result["order_cycles"] == 0
    assert cache.keys() == []


def test_jobs_registered():
    register_jobs()
    try:
        assert {job["id"] for job in get_job_status()} == {
            "tear_down_closed_order_cycles",
            "warm_open_order_cycles",
        }
    finally:
        scheduler.remove_all_jobs()


async def test_start_and_shutdown_scheduler(monkeypatch):
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", True)
    start_scheduler()
    try:
        assert scheduler.running
        assert {job.id for job in scheduler.get_jobs()} == {
            "tear_down_closed_order_cycles",
            "warm_open_order_cycles",
        }
    finally:
        scheduler.remove_all_jobs()
        shutdown_scheduler()

    await asyncio.sleep(0.01)
    assert not scheduler.running


def test_start_scheduler_disabled(monkeypatch):
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", False)

    start_scheduler()

    assert not scheduler.running
    assert scheduler.get_jobs() == []
