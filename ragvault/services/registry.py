from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from ragvault.core.errors import AlreadyExistsError, ForbiddenError, InvalidInputError, NotFoundError
from ragvault.domain.entities import DATABASE_TYPES, VISIBILITIES, DatabaseRecord
from ragvault.persistence.portal import StoragePortal
from ragvault.services.locks import KeyedLock
from ragvault.services.telemetry import increment_counter, set_gauge


logger = logging.getLogger(__name__)

_PORTAL_PREFIX = "databases/"


def _utc_now() -> datetime:
    # Keep registry timestamps in UTC for consistent ordering.
    return datetime.now(timezone.utc)


def _portal_key(name: str) -> str:
    return f"{_PORTAL_PREFIX}{name}"


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInputError("Database name cannot be empty", name=name)
    return cleaned


class DatabaseRegistry:
    """Canonical set of named databases.

    Folder, permission and cache state keyed by a database name lives in other
    services; unregistering a database does not reach into them (see
    ``ContentStore.unregister_database`` for the cascading variant).
    """

    def __init__(
        self,
        *,
        portal: StoragePortal | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._databases: dict[str, DatabaseRecord] = {}
        self._locks = KeyedLock()
        self._portal = portal
        self._now = time_provider or _utc_now

    async def _persist(self, record: DatabaseRecord) -> None:
        if self._portal is not None:
            await self._portal.put(_portal_key(record.name), record.model_dump(mode="json"))

    async def register(
        self,
        name: str,
        type: str,
        owner: str,
        *,
        visibility: str = "private",
        description: str | None = None,
    ) -> DatabaseRecord:
        # Validate everything before taking the lock so bad requests never mutate state.
        cleaned = _clean_name(name)
        if type not in DATABASE_TYPES:
            raise InvalidInputError(f"Unsupported database type: {type}", name=cleaned, type=type)
        if visibility not in VISIBILITIES:
            raise InvalidInputError(
                f"Unsupported visibility: {visibility}", name=cleaned, visibility=visibility
            )
        if not owner or not owner.strip():
            raise InvalidInputError("Database owner is required", name=cleaned)

        async with self._locks.hold(cleaned):
            if cleaned in self._databases:
                raise AlreadyExistsError(f"Database already exists: {cleaned}", name=cleaned)
            now = self._now()
            record = DatabaseRecord(
                name=cleaned,
                type=type,
                owner=owner,
                visibility=visibility,
                created_at=now,
                last_accessed_at=now,
                description=description,
            )
            await self._persist(record)
            self._databases[cleaned] = record
        increment_counter("databases_registered_total")
        set_gauge("databases_registered", float(len(self._databases)))
        logger.info("database_registered name=%s type=%s owner=%s", cleaned, type, owner)
        return record.model_copy(deep=True)

    async def unregister(self, name: str, *, requester: str | None = None) -> DatabaseRecord:
        cleaned = _clean_name(name)
        async with self._locks.hold(cleaned):
            record = self._databases.get(cleaned)
            if record is None:
                raise NotFoundError(f"Database not found: {cleaned}", name=cleaned)
            if requester is not None and requester != record.owner:
                raise ForbiddenError("Only the owner can unregister a database", name=cleaned)
            if self._portal is not None:
                await self._portal.delete(_portal_key(cleaned))
            del self._databases[cleaned]
        set_gauge("databases_registered", float(len(self._databases)))
        logger.info("database_unregistered name=%s", cleaned)
        return record

    def get(self, name: str) -> DatabaseRecord | None:
        record = self._databases.get((name or "").strip())
        return record.model_copy(deep=True) if record is not None else None

    def require(self, name: str) -> DatabaseRecord:
        record = self.get(name)
        if record is None:
            raise NotFoundError(f"Database not found: {name}", name=name)
        return record

    def exists(self, name: str) -> bool:
        return (name or "").strip() in self._databases

    def list(
        self,
        *,
        type: str | None = None,
        owner: str | None = None,
        visibility: str | None = None,
    ) -> list[DatabaseRecord]:
        # Ordered by (created_at, name) so equal timestamps still list deterministically.
        records = [
            record
            for record in self._databases.values()
            if (type is None or record.type == type)
            and (owner is None or record.owner == owner)
            and (visibility is None or record.visibility == visibility)
        ]
        records.sort(key=lambda record: (record.created_at, record.name))
        return [record.model_copy(deep=True) for record in records]

    async def update(
        self,
        name: str,
        *,
        description: str | None = None,
        vector_count: int | None = None,
        storage_size_bytes: int | None = None,
    ) -> DatabaseRecord:
        # Immutable fields (name, type, owner, created_at) are not updatable here.
        cleaned = _clean_name(name)
        if vector_count is not None and vector_count < 0:
            raise InvalidInputError("vector_count cannot be negative", name=cleaned)
        if storage_size_bytes is not None and storage_size_bytes < 0:
            raise InvalidInputError("storage_size_bytes cannot be negative", name=cleaned)
        async with self._locks.hold(cleaned):
            record = self._databases.get(cleaned)
            if record is None:
                raise NotFoundError(f"Database not found: {cleaned}", name=cleaned)
            updated = record.model_copy(deep=True)
            if description is not None:
                updated.description = description
            if vector_count is not None:
                updated.vector_count = vector_count
            if storage_size_bytes is not None:
                updated.storage_size_bytes = storage_size_bytes
            updated.last_accessed_at = self._now()
            await self._persist(updated)
            self._databases[cleaned] = updated
        return updated.model_copy(deep=True)

    async def set_visibility(self, name: str, visibility: str, *, requester: str | None = None) -> DatabaseRecord:
        cleaned = _clean_name(name)
        if visibility not in VISIBILITIES:
            raise InvalidInputError(f"Unsupported visibility: {visibility}", name=cleaned, visibility=visibility)
        async with self._locks.hold(cleaned):
            record = self._databases.get(cleaned)
            if record is None:
                raise NotFoundError(f"Database not found: {cleaned}", name=cleaned)
            if requester is not None and requester != record.owner:
                raise ForbiddenError("Only the owner can change visibility", name=cleaned)
            updated = record.model_copy(update={"visibility": visibility})
            await self._persist(updated)
            self._databases[cleaned] = updated
        logger.info("database_visibility_changed name=%s visibility=%s", cleaned, visibility)
        return updated.model_copy(deep=True)

    async def record_access(self, name: str) -> None:
        cleaned = _clean_name(name)
        async with self._locks.hold(cleaned):
            record = self._databases.get(cleaned)
            if record is None:
                raise NotFoundError(f"Database not found: {cleaned}", name=cleaned)
            record.last_accessed_at = self._now()

    async def load(self) -> int:
        # Hydrate from the portal; in-memory records win over stale portal copies.
        if self._portal is None:
            return 0
        loaded = 0
        for key in await self._portal.list(_PORTAL_PREFIX):
            payload = await self._portal.get(key)
            if payload is None:
                continue
            record = DatabaseRecord.model_validate(payload)
            if record.name not in self._databases:
                self._databases[record.name] = record
                loaded += 1
        logger.info("database_registry_loaded count=%s", loaded)
        return loaded
