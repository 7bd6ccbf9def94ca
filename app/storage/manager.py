"""
Storage manager.
Owns the pool of connected adapters, one per active storage source, and
routes object operations to them. Adapters are built lazily, cached for the
life of the manager and only evicted through ``invalidate``.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.core.exceptions import (
    BackendNotFoundException,
    CapacityExhaustedException,
    ObjectNotFoundException,
    StorageAPIException,
)
from app.db.session import AsyncSessionLocal
from app.schemas.storage import StorageSourceDescriptor, UploadResult
from app.services.metrics import MetricsCollector, get_metrics_collector
from app.services.quota_ledger import QuotaLedger
from app.services.storage_source_service import StorageSourceService
from app.storage.base import StorageAdapter, guess_content_type
from app.storage.factory import create_adapter
from app.storage.placement import HeuristicPlacementPolicy, PlacementPolicy

logger = logging.getLogger(__name__)
settings = get_settings()

AdapterFactory = Callable[[StorageSourceDescriptor], StorageAdapter]


@dataclass
class PoolEntry:
    """A connected adapter and the descriptor it was built from."""

    descriptor: StorageSourceDescriptor
    adapter: StorageAdapter


@dataclass
class PoolFailure:
    """An active source whose adapter could not be built or connected."""

    descriptor: StorageSourceDescriptor
    error: str


@dataclass
class PoolSnapshot:
    """Active sources at one point in time, split into usable and failed."""

    entries: list[PoolEntry] = field(default_factory=list)
    failures: list[PoolFailure] = field(default_factory=list)

    def get(self, source_id: int) -> PoolEntry | None:
        return next((e for e in self.entries if e.descriptor.id == source_id), None)


class StorageManager:
    """
    Pool of storage adapters keyed by storage source id.

    A source whose adapter fails to build stays excluded from the pool until
    it is invalidated, so a broken configuration is not retried on every
    request.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        adapter_factory: AdapterFactory = create_adapter,
        placement_policy: PlacementPolicy | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.session_factory = session_factory
        self.adapter_factory = adapter_factory
        self.placement_policy = placement_policy or HeuristicPlacementPolicy(
            settings.BULK_THRESHOLD_BYTES
        )
        self.metrics = metrics or get_metrics_collector()
        self.ledger = QuotaLedger(session_factory)

        self._adapters: dict[int, StorageAdapter] = {}
        self._failures: dict[int, str] = {}
        self._locks: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ===================
    # Pool
    # ===================

    async def _active_descriptors(self) -> list[StorageSourceDescriptor]:
        async with self.session_factory() as session:
            return await StorageSourceService(session).list_active()

    async def _active_descriptor(self, source_id: int) -> StorageSourceDescriptor | None:
        async with self.session_factory() as session:
            return await StorageSourceService(session).get_active(source_id)

    async def _get_or_build(self, descriptor: StorageSourceDescriptor) -> StorageAdapter:
        """
        Cached adapter for a descriptor, building and connecting it on first use.

        Raises:
            BackendNotFoundException: The source failed on an earlier attempt
            Exception: Whatever building or connecting raised on this attempt
        """
        source_id = descriptor.id

        async with self._locks[source_id]:
            if source_id in self._adapters:
                return self._adapters[source_id]
            if source_id in self._failures:
                raise BackendNotFoundException(source_id)

            try:
                adapter = self.adapter_factory(descriptor)
                await adapter.connect()
            except Exception as e:
                message = e.message if isinstance(e, StorageAPIException) else str(e)
                self._failures[source_id] = message
                logger.warning(
                    "Failed to initialise storage source %s (%s): %s",
                    source_id, descriptor.name, message,
                )
                raise

            if source_id in self._adapters:
                # Built meanwhile under a lock that invalidate released
                await self._disconnect(source_id, adapter)
                return self._adapters[source_id]

            logger.info("Initialised storage source %s (%s)", source_id, descriptor.name)
            self._adapters[source_id] = adapter
            return adapter

    async def _pool_entry(self, descriptor: StorageSourceDescriptor) -> PoolEntry | PoolFailure:
        try:
            return PoolEntry(descriptor, await self._get_or_build(descriptor))
        except Exception:
            return PoolFailure(descriptor, self._failures.get(descriptor.id, "initialisation failed"))

    async def load_pool(self) -> PoolSnapshot:
        """Connected adapters for every active source, highest priority first."""
        descriptors = await self._active_descriptors()
        results = await asyncio.gather(*(self._pool_entry(d) for d in descriptors))

        snapshot = PoolSnapshot()
        for result in results:
            if isinstance(result, PoolEntry):
                snapshot.entries.append(result)
            else:
                snapshot.failures.append(result)
        return snapshot

    async def best_adapter(self) -> PoolEntry | None:
        """Highest-priority source whose adapter is usable."""
        pool = await self.load_pool()
        return pool.entries[0] if pool.entries else None

    async def get_entry(self, source_id: int) -> PoolEntry:
        """
        Pool entry for one source.

        Raises:
            BackendNotFoundException: Unknown, inactive or failed to initialise
        """
        descriptor = await self._active_descriptor(source_id)
        if descriptor is None:
            raise BackendNotFoundException(source_id)

        try:
            return PoolEntry(descriptor, await self._get_or_build(descriptor))
        except Exception as e:
            raise BackendNotFoundException(source_id) from e

    async def _resolve(self, source_id: int | None) -> PoolEntry:
        if source_id is not None:
            return await self.get_entry(source_id)
        entry = await self.best_adapter()
        if entry is None:
            raise BackendNotFoundException()
        return entry

    # ===================
    # Object operations
    # ===================

    async def _upload_with(
        self,
        entry: PoolEntry,
        data: bytes,
        path: str,
        content_type: str | None,
    ) -> UploadResult:
        result = await entry.adapter.upload(data, path, content_type)
        result.source_id = entry.descriptor.id

        size = result.size if result.size is not None else len(data)
        self.metrics.record_operation(entry.descriptor.name, "upload", result.success, size)
        if result.success:
            await self.ledger.increment(entry.descriptor.id, size)
        return result

    async def upload(
        self,
        data: bytes,
        path: str,
        content_type: str | None = None,
    ) -> UploadResult:
        """Upload to the highest-priority usable source."""
        entry = await self.best_adapter()
        if entry is None:
            return UploadResult.failed("No storage source available")
        return await self._upload_with(entry, data, path, content_type)

    async def upload_to(
        self,
        source_id: int,
        data: bytes,
        path: str,
        content_type: str | None = None,
    ) -> UploadResult:
        """Upload to one explicit source."""
        try:
            entry = await self.get_entry(source_id)
        except BackendNotFoundException:
            return UploadResult.failed("Storage source not found or inactive")
        return await self._upload_with(entry, data, path, content_type)

    async def upload_placed(
        self,
        data: bytes,
        path: str,
        content_type: str | None = None,
    ) -> UploadResult:
        """
        Upload to the source chosen by the placement policy.

        Raises:
            CapacityExhaustedException: No usable source has room for the object
        """
        size = len(data)
        content_type = content_type or guess_content_type(path)
        pool = await self.load_pool()

        candidates = [
            e for e in pool.entries
            if e.adapter.max_file_size is None or size <= e.adapter.max_file_size
        ]
        if not candidates:
            raise CapacityExhaustedException(size)

        chosen = self.placement_policy([e.descriptor for e in candidates], size, content_type)
        entry = next(e for e in candidates if e.descriptor.id == chosen.id)
        logger.info(
            "Placing %s (%s bytes, %s) on storage source %s",
            path, size, content_type, chosen.id,
        )
        return await self._upload_with(entry, data, path, content_type)

    async def download(self, path: str, source_id: int | None = None) -> bytes:
        entry = await self._resolve(source_id)
        try:
            data = await entry.adapter.download(path)
        except StorageAPIException:
            self.metrics.record_operation(entry.descriptor.name, "download", False)
            raise
        self.metrics.record_operation(entry.descriptor.name, "download", True, len(data))
        return data

    async def delete(
        self,
        path: str,
        source_id: int | None = None,
        size: int | None = None,
    ) -> bool:
        """
        Delete an object and release its bytes from the quota ledger.

        When ``size`` is not given the object is stat'ed first.

        Returns:
            True if deleted, False if it did not exist
        """
        entry = await self._resolve(source_id)

        if size is None:
            try:
                size = (await entry.adapter.get_file_info(path)).size
            except ObjectNotFoundException:
                size = 0

        try:
            deleted = await entry.adapter.delete(path)
        except StorageAPIException:
            self.metrics.record_operation(entry.descriptor.name, "delete", False)
            raise

        self.metrics.record_operation(entry.descriptor.name, "delete", True, size if deleted else 0)
        if deleted:
            await self.ledger.decrement(entry.descriptor.id, size)
        return deleted

    # ===================
    # Health
    # ===================

    async def _safe_test(self, source_id: int, adapter: StorageAdapter) -> bool:
        try:
            return await adapter.test_connection()
        except Exception as e:
            logger.warning("Connection test for storage source %s raised: %s", source_id, e)
            return False

    async def test_all(self) -> dict[int, bool]:
        """
        Test every active source concurrently.

        Sources that failed to initialise report False.
        """
        pool = await self.load_pool()
        results = await asyncio.gather(
            *(self._safe_test(e.descriptor.id, e.adapter) for e in pool.entries)
        )

        outcome = {e.descriptor.id: ok for e, ok in zip(pool.entries, results)}
        for failure in pool.failures:
            outcome[failure.descriptor.id] = False
        return outcome

    async def test_source(self, source_id: int) -> bool:
        """
        Test one source with a throwaway adapter built from its current
        configuration, bypassing the cache.
        """
        descriptor = await self._active_descriptor(source_id)
        if descriptor is None:
            raise BackendNotFoundException(source_id)

        try:
            adapter = self.adapter_factory(descriptor)
            await adapter.connect()
        except Exception as e:
            logger.warning("Storage source %s failed to initialise: %s", source_id, e)
            return False

        try:
            return await self._safe_test(source_id, adapter)
        finally:
            await self._disconnect(source_id, adapter)

    # ===================
    # Cache lifecycle
    # ===================

    async def invalidate(self, source_id: int) -> None:
        """Evict one source so its next use rebuilds it from the stored configuration."""
        async with self._locks[source_id]:
            adapter = self._adapters.pop(source_id, None)
            self._failures.pop(source_id, None)
        if not self._locks[source_id].locked():
            self._locks.pop(source_id, None)

        if adapter is not None:
            await self._disconnect(source_id, adapter)
        logger.info("Invalidated storage source %s", source_id)

    async def invalidate_all(self) -> None:
        for source_id in list(self._adapters) + list(self._failures):
            await self.invalidate(source_id)

    async def close(self) -> None:
        await self.invalidate_all()

    async def _disconnect(self, source_id: int, adapter: StorageAdapter) -> None:
        try:
            await adapter.disconnect()
        except Exception as e:
            logger.warning("Error disconnecting storage source %s: %s", source_id, e)

    def is_loaded(self, source_id: int) -> bool:
        return source_id in self._adapters

    def load_error(self, source_id: int) -> str | None:
        return self._failures.get(source_id)


@lru_cache
def get_storage_manager() -> StorageManager:
    """
    Process-wide storage manager.

    Uses lru_cache to ensure only one instance is created.
    """
    return StorageManager(AsyncSessionLocal)
