from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

from ragvault.core.errors import ForbiddenError
from ragvault.domain.entities import DatabaseRecord
from ragvault.persistence.portal import StoragePortal
from ragvault.providers.embeddings.base import EmbeddingProvider, provider_identity
from ragvault.providers.embeddings.factory import get_embedding_provider
from ragvault.services.batch import BatchOptions, BatchProcessor
from ragvault.services.embedding_cache import EmbeddingCache
from ragvault.services.folders import FolderHierarchy
from ragvault.services.permissions import PermissionService
from ragvault.services.registry import DatabaseRegistry
from ragvault.services.sharing import SharingService


logger = logging.getLogger(__name__)


class ContentStore:
    """Composition root owning one instance of every service.

    Services never reach for module-level singletons; everything they share
    (portal, clock, registry) is wired here.
    """

    def __init__(
        self,
        *,
        portal: StoragePortal | None = None,
        time_provider: Callable[[], datetime] | None = None,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self.portal = portal
        self.registry = DatabaseRegistry(portal=portal, time_provider=time_provider)
        self.permissions = PermissionService(self.registry, portal=portal, time_provider=time_provider)
        self.folders = FolderHierarchy(registry=self.registry, portal=portal, time_provider=time_provider)
        self.sharing = SharingService(self.permissions, time_provider=time_provider)
        self._time_source = time_source
        self._caches: dict[str, EmbeddingCache] = {}

    @property
    def notifications(self):
        return self.sharing.get_notification_manager()

    def embedding_cache(
        self,
        provider: EmbeddingProvider | None = None,
        *,
        max_size: int | None = None,
        expiration_ms: int | None = None,
    ) -> EmbeddingCache:
        # One cache per provider identity; later calls reuse it and ignore sizing arguments.
        provider = provider or get_embedding_provider()
        identity = provider_identity(provider)
        cache = self._caches.get(identity)
        if cache is None:
            cache = EmbeddingCache(
                provider, max_size=max_size, expiration_ms=expiration_ms, time_source=self._time_source
            )
            self._caches[identity] = cache
        return cache

    def batch_processor(self, options: BatchOptions | None = None, *, operation: str = "batch") -> BatchProcessor:
        return BatchProcessor(options, operation=operation)

    async def create_folders(
        self,
        database_name: str,
        paths: list[str],
        *,
        requester: str,
        options: BatchOptions | None = None,
    ):
        """Bulk folder creation through the batch processor (one item per path)."""
        self.permissions.require(database_name, requester, "write")
        processor = self.batch_processor(options, operation="create_folders")
        return await processor.process_individual(
            paths, lambda path: self.folders.create_folder(database_name, path)
        )

    async def load(self) -> int:
        # Hydrate registry, grants and folder snapshots from the portal.
        loaded = await self.registry.load()
        for record in self.registry.list():
            await self.permissions.load(record.name)
            if self.portal is not None:
                await self.folders.load(record.name)
        return loaded

    async def unregister_database(self, name: str, requester: str) -> DatabaseRecord:
        record = self.registry.require(name)
        if record.owner != requester:
            raise ForbiddenError("Only the owner can unregister a database", name=name)
        # Purge dependents first so nothing keyed by this name outlives it.
        folders = await self.folders.clear_database(record.name)
        grants = await self.permissions.purge_database(record.name)
        sharing = self.sharing.purge_database(record.name)
        removed = await self.registry.unregister(record.name, requester=requester)
        logger.info(
            "database_unregistered_cascade name=%s folders=%s grants=%s invitations=%s tokens=%s",
            record.name,
            folders,
            grants,
            sharing["invitations"],
            sharing["tokens"],
        )
        return removed
