from __future__ import annotations

from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ragvault.domain.models import StorageRecord


def namespace_for_key(key: str) -> str:
    return key.split("/", 1)[0]


async def get_record(session: AsyncSession, key: str) -> StorageRecord | None:
    result = await session.execute(select(StorageRecord).where(StorageRecord.key == key))
    return result.scalar_one_or_none()


async def upsert_record(session: AsyncSession, key: str, payload: dict[str, Any]) -> StorageRecord:
    # Fetch first so a put never creates a second row for the same key.
    existing = await get_record(session, key)
    if existing is None:
        row = StorageRecord(key=key, namespace=namespace_for_key(key), payload_json=payload)
        session.add(row)
        return row
    existing.payload_json = payload
    return existing


async def list_keys(session: AsyncSession, prefix: str) -> list[str]:
    # Stable ordering keeps portal listings deterministic across backends.
    stmt = select(StorageRecord.key).order_by(StorageRecord.key)
    if prefix:
        stmt = stmt.where(StorageRecord.key.startswith(prefix, autoescape=True))
        if "/" in prefix:
            # Narrow on the indexed namespace column when the prefix pins one.
            stmt = stmt.where(StorageRecord.namespace == namespace_for_key(prefix))
    result = await session.execute(stmt)
    return [row[0] for row in result.fetchall()]


async def delete_record(session: AsyncSession, key: str) -> bool:
    existing = await get_record(session, key)
    if existing is None:
        return False
    await session.execute(delete(StorageRecord).where(StorageRecord.key == key))
    return True
