"""
Availability Cache.

Maps (storefront, order cycle) -> visible variant and product ids, kept
consistent through invalidation rather than incremental patching.

Entry lifecycle per key:

    ABSENT -> BUILDING -> VALID -> STALE -> (BUILDING | TORN_DOWN)

- Transitions happen under a per-key asyncio.Lock; unrelated keys never contend.
- Builds are single-flighted: one build task per key, readers join it.
- Every invalidation bumps the entry version. A build whose starting version
  no longer matches when it finishes is stale on arrival and runs another pass.
- Write guards (writing / variant_destroyed) hold a key "pending" for the
  whole of a database transaction. Builds that finish while a write is
  pending are stored as STALE, and readers wait for the write to settle (or
  take the stale snapshot if they opted into serve-stale).
- Build errors are never cached: the key returns to its previous state and
  the error is raised to every caller waiting on that build.

All mutation hooks (variant, product, exchange, inventory item, storefront
filter, order cycle close) funnel into invalidate() / writing().
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hubstock.config import settings
from hubstock.core.exceptions import InconsistentStateError
from hubstock.database import async_session_factory
from hubstock.models.order_cycle import Exchange, OrderCycle
from hubstock.models.product import Variant
from hubstock.schemas.distribution import AvailabilitySnapshot
from hubstock.services.cache_service import CacheBackend, get_cache_backend
from hubstock.services.distribution_service import CacheKey, DistributionService
from hubstock.services.stock_policy import StockPolicy, get_stock_policy

logger = logging.getLogger(__name__)


class EntryState(str, Enum):
    """Availability cache entry state."""
    ABSENT = "ABSENT"
    BUILDING = "BUILDING"
    VALID = "VALID"
    STALE = "STALE"
    TORN_DOWN = "TORN_DOWN"


@dataclass(eq=False)
class CacheEntry:
    """Per-key state. Only mutated while holding `lock`."""
    key: CacheKey
    state: EntryState = EntryState.ABSENT
    version: int = 0
    snapshot: Optional[AvailabilitySnapshot] = None
    build: Optional[asyncio.Task] = None
    state_before_build: EntryState = EntryState.ABSENT
    pending_writes: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    settled: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self):
        self.settled.set()


def _retrieve_build_error(task: asyncio.Task) -> None:
    # Waiters receive the error; this only stops asyncio warning about it
    if not task.cancelled():
        task.exception()


class AvailabilityCache:
    """
    Invalidation-driven availability index.

    Usage:
        cache = get_availability_cache()
        variant_ids = await cache.units_offered_at(storefront_id, order_cycle_id)

        # write side
        async with cache.writing(keys):
            ...  # mutate and commit
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        stock_policy: Optional[StockPolicy] = None,
        serve_stale: Optional[bool] = None,
        ttl: Optional[int] = None,
        namespace: Optional[str] = None
    ):
        self._backend = backend or get_cache_backend()
        self._session_factory = session_factory or async_session_factory
        self._policy = stock_policy or get_stock_policy()
        self.serve_stale = settings.AVAILABILITY_SERVE_STALE if serve_stale is None else serve_stale
        self._ttl = ttl or settings.AVAILABILITY_CACHE_TTL
        self._namespace = namespace or settings.CACHE_NAMESPACE
        self._entries: Dict[CacheKey, CacheEntry] = {}

    # ==================== Introspection ====================

    def _backend_key(self, key: CacheKey) -> str:
        return f"{self._namespace}:availability:{key.storefront_id}:{key.order_cycle_id}"

    def _entry(self, key: CacheKey) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
        return entry

    def state_of(self, storefront_id: uuid.UUID, order_cycle_id: uuid.UUID) -> EntryState:
        entry = self._entries.get(CacheKey(storefront_id, order_cycle_id))
        return entry.state if entry else EntryState.ABSENT

    def keys(self) -> List[CacheKey]:
        return list(self._entries)

    # ==================== Read path ====================

    async def units_offered_at(
        self,
        storefront_id: uuid.UUID,
        order_cycle_id: uuid.UUID,
        serve_stale: Optional[bool] = None
    ) -> Set[uuid.UUID]:
        """Visible variant ids for listing and checkout re-validation."""
        snapshot = await self.get(storefront_id, order_cycle_id, serve_stale=serve_stale)
        return set(snapshot.variant_ids)

    async def get(
        self,
        storefront_id: uuid.UUID,
        order_cycle_id: uuid.UUID,
        serve_stale: Optional[bool] = None
    ) -> AvailabilitySnapshot:
        """
        Snapshot for a key, building it if needed.

        serve_stale=True returns the last snapshot (flagged stale=True) instead
        of waiting when the key is being rebuilt or a write is pending.
        """
        key = CacheKey(storefront_id, order_cycle_id)
        serve_stale = self.serve_stale if serve_stale is None else serve_stale

        if not settings.CACHE_ENABLED:
            return await self._compute(key)

        while True:
            entry = self._entry(key)
            build: Optional[asyncio.Task] = None
            wait_for_write = False

            async with entry.lock:
                if entry.state == EntryState.VALID:
                    snapshot = AvailabilitySnapshot.from_cache(
                        await self._backend.get(self._backend_key(key))
                    )
                    if snapshot is not None:
                        return snapshot
                    logger.debug(f"Availability snapshot for {key} evicted, rebuilding")
                    entry.state = EntryState.STALE if entry.snapshot is not None else EntryState.ABSENT

                if entry.pending_writes:
                    if serve_stale and entry.snapshot is not None:
                        return entry.snapshot.model_copy(update={"stale": True})
                    wait_for_write = True
                elif entry.build is not None:
                    if serve_stale and entry.snapshot is not None:
                        return entry.snapshot.model_copy(update={"stale": True})
                    logger.debug(f"Joining in-flight availability build for {key}")
                    build = entry.build
                else:
                    build = self._start_build(entry)

            if wait_for_write:
                await entry.settled.wait()
                continue

            snapshot = await asyncio.shield(build)
            if snapshot is not None:
                return snapshot

    def _start_build(self, entry: CacheEntry) -> asyncio.Task:
        """Start the single build task for an entry. Caller holds entry.lock."""
        entry.state_before_build = entry.state
        entry.state = EntryState.BUILDING
        entry.build = asyncio.get_running_loop().create_task(self._run_build(entry))
        entry.build.add_done_callback(_retrieve_build_error)
        return entry.build

    async def _run_build(self, entry: CacheEntry) -> Optional[AvailabilitySnapshot]:
        """
        Recompute until a pass completes with no invalidation in between.

        Returns the snapshot once it is VALID, or None when the result is
        stale because a write is pending or the entry was torn down.
        """
        key = entry.key
        passes = 0
        while True:
            passes += 1
            async with entry.lock:
                started_version = entry.version

            try:
                snapshot = await self._compute(key)
            except Exception as e:
                async with entry.lock:
                    entry.build = None
                    if entry.state != EntryState.TORN_DOWN:
                        entry.state = entry.state_before_build
                    if isinstance(e, InconsistentStateError):
                        entry.version += 1
                    if (entry.state in (EntryState.ABSENT, EntryState.TORN_DOWN) and not entry.pending_writes
                            and self._entries.get(key) is entry):
                        del self._entries[key]
                logger.warning(f"Availability build for {key} failed: {e}")
                raise

            async with entry.lock:
                if self._entries.get(key) is not entry:
                    entry.build = None
                    return None
                if entry.state == EntryState.TORN_DOWN:
                    entry.build = None
                    if not entry.pending_writes:
                        del self._entries[key]
                    return None

                entry.snapshot = snapshot
                if entry.pending_writes:
                    entry.state = EntryState.STALE
                    entry.build = None
                    return None

                if entry.version == started_version:
                    await self._backend.set(self._backend_key(key), snapshot.to_cache(), self._ttl)
                    entry.state = EntryState.VALID
                    entry.build = None
                    logger.info(
                        f"Availability for {key} built: {len(snapshot.variant_ids)} variants "
                        f"({passes} pass{'es' if passes > 1 else ''})"
                    )
                    return snapshot

                logger.debug(f"Availability for {key} invalidated during build, running another pass")

    async def _compute(self, key: CacheKey) -> AvailabilitySnapshot:
        """Resolve offered variants and keep those that can supply one unit."""
        async with self._session_factory() as session:
            distribution = DistributionService(session)
            candidate_ids = await distribution.units_offered_at(key.storefront_id, key.order_cycle_id)

            variant_ids: Set[uuid.UUID] = set()
            product_ids: Set[uuid.UUID] = set()
            if candidate_ids:
                result = await session.execute(
                    select(Variant).where(Variant.id.in_(list(candidate_ids)))
                )
                for variant in result.scalars().all():
                    if self._policy.can_supply(variant, 1):
                        variant_ids.add(variant.id)
                        product_ids.add(variant.product_id)

        return AvailabilitySnapshot(
            storefront_id=key.storefront_id,
            order_cycle_id=key.order_cycle_id,
            variant_ids=frozenset(variant_ids),
            product_ids=frozenset(product_ids),
            built_at=datetime.now(timezone.utc),
        )

    # ==================== Invalidation ====================

    async def invalidate(self, keys: Iterable[CacheKey]) -> int:
        """
        Mark keys stale. The single entry point for all invalidation.

        ABSENT keys are left alone; an in-flight build of an invalidated key
        runs another pass when it finishes.
        """
        count = 0
        for key in set(keys):
            entry = self._entries.get(key)
            if entry is None:
                continue
            async with entry.lock:
                self._mark_stale(entry)
                await self._backend.delete(self._backend_key(key))
            count += 1
        if count:
            logger.debug(f"Invalidated {count} availability keys")
        return count

    def _mark_stale(self, entry: CacheEntry) -> None:
        entry.version += 1
        if entry.state == EntryState.VALID:
            entry.state = EntryState.STALE

    async def refresh(self, keys: Iterable[CacheKey]) -> List[AvailabilitySnapshot]:
        """Invalidate and rebuild keys now instead of on the next read."""
        keys = set(keys)
        await self.invalidate(keys)
        return list(await asyncio.gather(
            *(self.get(key.storefront_id, key.order_cycle_id, serve_stale=False) for key in keys)
        ))

    @asynccontextmanager
    async def writing(self, keys: Iterable[CacheKey]) -> AsyncIterator[Set[CacheKey]]:
        """
        Guard a database write that affects keys.

        Keys are invalidated before the body runs and again after it
        finishes (committed or rolled back). While the body runs no build
        for these keys can become VALID.
        """
        keys = set(keys)
        entries = [self._entry(key) for key in keys]
        for entry in entries:
            entry.pending_writes += 1
            entry.settled.clear()
        try:
            for entry in entries:
                async with entry.lock:
                    self._mark_stale(entry)
                    await self._backend.delete(self._backend_key(entry.key))
            yield keys
        finally:
            for entry in entries:
                async with entry.lock:
                    self._mark_stale(entry)
                    entry.pending_writes -= 1
                    if entry.pending_writes == 0:
                        entry.settled.set()
                        if (entry.state in (EntryState.ABSENT, EntryState.TORN_DOWN) and entry.build is None
                                and self._entries.get(entry.key) is entry):
                            del self._entries[entry.key]

    def variant_destroyed(self, keys: Iterable[CacheKey]):
        """Write guard around detaching and deleting a variant."""
        return self.writing(keys)

    @asynccontextmanager
    async def committing(self, db: AsyncSession, keys: Iterable[CacheKey]) -> AsyncIterator[Set[CacheKey]]:
        """
        Write guard plus the session transaction.

        Commits when the body succeeds. On any error the session is rolled
        back and the error re-raised; keys are invalidated either way.
        """
        async with self.writing(keys) as guarded:
            try:
                yield guarded
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def tear_down_order_cycle(self, order_cycle_id: uuid.UUID) -> int:
        """
        Drop every entry of a closed order cycle.

        Entries held by a write guard stay in place as TORN_DOWN until the
        write settles, so readers keep waiting on the guard.
        """
        keys = [key for key in self._entries if key.order_cycle_id == order_cycle_id]
        entries = []
        for key in keys:
            entry = self._entries[key]
            if not entry.pending_writes:
                del self._entries[key]
            entries.append(entry)
        for entry in entries:
            key = entry.key
            async with entry.lock:
                entry.state = EntryState.TORN_DOWN
                entry.version += 1
                entry.snapshot = None
                await self._backend.delete(self._backend_key(key))
        if keys:
            logger.info(f"Tore down {len(keys)} availability keys for order cycle {order_cycle_id}")
        return len(keys)

    async def purge_expired(self) -> int:
        """Drop expired snapshots from the backend."""
        removed = await self._backend.cleanup_expired()
        if removed:
            logger.debug(f"Purged {removed} expired availability snapshots")
        return removed

    # ==================== Mutation hooks ====================

    async def variant_changed(self, db: AsyncSession, variant: Variant) -> Set[CacheKey]:
        """Price, stock or soft-delete change committed for a variant."""
        keys = await DistributionService(db).keys_affected_by_variant(variant)
        await self.invalidate(keys)
        return keys

    async def product_changed(self, db: AsyncSession, product_id: uuid.UUID) -> Set[CacheKey]:
        """Variant unit classification (or any product-wide) change committed."""
        keys = await DistributionService(db).keys_for_product(product_id)
        await self.invalidate(keys)
        return keys

    async def exchange_changed(self, db: AsyncSession, exchange: Exchange) -> Set[CacheKey]:
        """
        Exchange membership changed.

        Outgoing exchanges invalidate their (storefront, order cycle) key and
        rebuild it immediately while the order cycle is open.
        """
        if not exchange.is_outgoing:
            return set()
        key = CacheKey(exchange.receiver_id, exchange.order_cycle_id)
        order_cycle = await db.get(OrderCycle, exchange.order_cycle_id)
        if order_cycle is not None and order_cycle.is_open():
            await self.refresh([key])
        else:
            await self.invalidate([key])
        return {key}

    async def inventory_item_changed(
        self,
        db: AsyncSession,
        storefront_id: uuid.UUID,
        variant_id: uuid.UUID
    ) -> Set[CacheKey]:
        keys = {
            key for key in await DistributionService(db).keys_for_variant(variant_id)
            if key.storefront_id == storefront_id
        }
        await self.invalidate(keys)
        return keys

    async def storefront_filters_changed(self, db: AsyncSession, storefront_id: uuid.UUID) -> Set[CacheKey]:
        """Zone or tag rule change at a storefront: rebuild open cycles now."""
        keys = await DistributionService(db).keys_for_storefront(storefront_id)
        open_keys = set()
        for key in keys:
            order_cycle = await db.get(OrderCycle, key.order_cycle_id)
            if order_cycle is not None and order_cycle.is_open():
                open_keys.add(key)
        await self.invalidate(keys - open_keys)
        if open_keys:
            await self.refresh(open_keys)
        return keys


# Singleton cache instance
_availability_cache: Optional[AvailabilityCache] = None


def get_availability_cache() -> AvailabilityCache:
    """Get the availability cache singleton."""
    global _availability_cache

    if _availability_cache is None:
        _availability_cache = AvailabilityCache()

    return _availability_cache
