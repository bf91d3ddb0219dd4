from __future__ import annotations

import copy
import logging
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ragvault.persistence.repos import records as records_repo


logger = logging.getLogger(__name__)


class StoragePortal(Protocol):
    """Durable key/value persistence reached by the logical model.

    Keys are slash-delimited paths; values are JSON-compatible dicts.
    """

    async def put(self, key: str, value: dict[str, Any]) -> None:
        ...

    async def get(self, key: str) -> dict[str, Any] | None:
        ...

    async def list(self, prefix: str) -> list[str]:
        ...

    async def delete(self, key: str) -> bool:
        ...


class InMemoryStoragePortal:
    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}

    async def put(self, key: str, value: dict[str, Any]) -> None:
        # Copy on the way in and out so callers never share the stored dict.
        self._records[key] = copy.deepcopy(value)

    async def get(self, key: str) -> dict[str, Any] | None:
        value = self._records.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def list(self, prefix: str) -> list[str]:
        return sorted(key for key in self._records if key.startswith(prefix))

    async def delete(self, key: str) -> bool:
        return self._records.pop(key, None) is not None


class SqlStoragePortal:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def put(self, key: str, value: dict[str, Any]) -> None:
        async with self._session_factory() as session:
            await records_repo.upsert_record(session, key, value)
            await session.commit()
        logger.debug("portal_put key=%s", key)

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            row = await records_repo.get_record(session, key)
            return dict(row.payload_json) if row is not None else None

    async def list(self, prefix: str) -> list[str]:
        async with self._session_factory() as session:
            return await records_repo.list_keys(session, prefix)

    async def delete(self, key: str) -> bool:
        async with self._session_factory() as session:
            deleted = await records_repo.delete_record(session, key)
            await session.commit()
        logger.debug("portal_delete key=%s deleted=%s", key, deleted)
        return deleted
