"""
Availability Cache Jobs

Background jobs that keep the availability cache in step with order cycle
lifecycles:
- tear down entries of order cycles that have closed (or no longer exist)
- warm every (storefront, order cycle) key of open order cycles
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from hubstock.database import async_session_factory
from hubstock.models.order_cycle import OrderCycle
from hubstock.services.distribution_service import DistributionService
from hubstock.services.products_cache_service import AvailabilityCache, get_availability_cache

logger = logging.getLogger(__name__)


async def tear_down_closed_order_cycles(
    cache: Optional[AvailabilityCache] = None,
    session_factory: Optional[Callable[[], AsyncSession]] = None
) -> Dict[str, Any]:
    """
    Drop cache entries of order cycles that are closed, and expired
    snapshots from the backend.

    Runs every ORDER_CYCLE_TEARDOWN_INTERVAL_MINUTES.
    """
    cache = cache or get_availability_cache()
    session_factory = session_factory or async_session_factory
    start_time = datetime.now(timezone.utc)
    snapshots_expired = await cache.purge_expired()

    cached_cycle_ids = {key.order_cycle_id for key in cache.keys()}
    if not cached_cycle_ids:
        return {"order_cycles": 0, "keys_removed": 0, "snapshots_expired": snapshots_expired}

    async with session_factory() as session:
        result = await session.execute(
            select(OrderCycle).where(OrderCycle.id.in_(list(cached_cycle_ids)))
        )
        order_cycles = {oc.id: oc for oc in result.scalars().all()}

    closed = [
        oc_id for oc_id in cached_cycle_ids
        if oc_id not in order_cycles or order_cycles[oc_id].is_closed(start_time)
    ]

    keys_removed = 0
    for order_cycle_id in closed:
        keys_removed += await cache.tear_down_order_cycle(order_cycle_id)

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Order cycle teardown completed in {duration:.2f}s: "
        f"{len(closed)} closed order cycles, {keys_removed} keys removed, "
        f"{snapshots_expired} expired snapshots purged"
    )
    return {
        "order_cycles": len(closed),
        "keys_removed": keys_removed,
        "snapshots_expired": snapshots_expired,
    }


async def warm_open_order_cycles(
    cache: Optional[AvailabilityCache] = None,
    session_factory: Optional[Callable[[], AsyncSession]] = None
) -> Dict[str, Any]:
    """
    Build every availability key of currently open order cycles.

    Runs every CACHE_WARM_INTERVAL_MINUTES. A key that fails to build is
    logged and skipped; the next run retries it.
    """
    cache = cache or get_availability_cache()
    session_factory = session_factory or async_session_factory
    now = datetime.now(timezone.utc)

    async with session_factory() as session:
        result = await session.execute(
            select(OrderCycle).where(
                and_(
                    OrderCycle.opens_at.is_not(None),
                    OrderCycle.opens_at <= now,
                    or_(OrderCycle.closes_at.is_(None), OrderCycle.closes_at > now),
                )
            )
        )
        order_cycles = [oc for oc in result.scalars().all() if oc.is_open(now)]

        distribution = DistributionService(session)
        keys = set()
        for order_cycle in order_cycles:
            keys |= await distribution.keys_for_order_cycle(order_cycle.id)

    built = 0
    failed = 0
    for key in sorted(keys, key=str):
        try:
            await cache.get(key.storefront_id, key.order_cycle_id, serve_stale=False)
            built += 1
        except Exception as e:
            failed += 1
            logger.error(f"Failed to warm availability for {key}: {e}")

    logger.info(
        f"Availability warm-up: {built} keys ready, {failed} failed "
        f"across {len(order_cycles)} open order cycles"
    )
    return {"order_cycles": len(order_cycles), "keys_built": built, "keys_failed": failed}
