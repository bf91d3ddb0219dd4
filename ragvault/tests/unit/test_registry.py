from __future__ import annotations

import asyncio

import pytest

from ragvault.core.errors import AlreadyExistsError, ForbiddenError, InvalidInputError, NotFoundError
from ragvault.persistence.portal import InMemoryStoragePortal
from ragvault.services.registry import DatabaseRegistry
from ragvault.services.telemetry import counters_snapshot


@pytest.mark.asyncio
async def test_register_and_get(clock) -> None:
    registry = DatabaseRegistry(time_provider=clock)
    record = await registry.register("docs", "vector", "alice", description="team docs")

    assert record.name == "docs"
    assert record.visibility == "private"
    assert record.created_at == clock.now
    assert registry.exists("docs")
    assert registry.get("docs").description == "team docs"
    assert counters_snapshot()["databases_registered_total"] == 1


@pytest.mark.asyncio
async def test_register_rejects_invalid_input() -> None:
    registry = DatabaseRegistry()
    with pytest.raises(InvalidInputError):
        await registry.register("  ", "vector", "alice")
    with pytest.raises(InvalidInputError):
        await registry.register("docs", "relational", "alice")
    with pytest.raises(InvalidInputError):
        await registry.register("docs", "vector", "alice", visibility="internal")
    assert registry.list() == []


@pytest.mark.asyncio
async def test_concurrent_register_exactly_one_wins() -> None:
    registry = DatabaseRegistry()
    results = await asyncio.gather(
        registry.register("shared", "vector", "alice"),
        registry.register("shared", "graph", "bob"),
        return_exceptions=True,
    )
    errors = [result for result in results if isinstance(result, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], AlreadyExistsError)
    assert len(registry.list()) == 1


@pytest.mark.asyncio
async def test_unregister_checks_existence_and_owner() -> None:
    registry = DatabaseRegistry()
    await registry.register("docs", "vector", "alice")

    with pytest.raises(ForbiddenError):
        await registry.unregister("docs", requester="bob")
    await registry.unregister("docs", requester="alice")
    assert not registry.exists("docs")
    with pytest.raises(NotFoundError):
        await registry.unregister("docs")


@pytest.mark.asyncio
async def test_list_filters_and_orders_by_creation(clock) -> None:
    registry = DatabaseRegistry(time_provider=clock)
    await registry.register("b-graph", "graph", "alice")
    clock.advance(seconds=1)
    await registry.register("a-vector", "vector", "bob", visibility="public")
    clock.advance(seconds=1)
    await registry.register("c-vector", "vector", "alice")

    assert [r.name for r in registry.list()] == ["b-graph", "a-vector", "c-vector"]
    assert [r.name for r in registry.list(type="vector")] == ["a-vector", "c-vector"]
    assert [r.name for r in registry.list(owner="alice")] == ["b-graph", "c-vector"]
    assert [r.name for r in registry.list(visibility="public")] == ["a-vector"]


@pytest.mark.asyncio
async def test_update_and_visibility(clock) -> None:
    registry = DatabaseRegistry(time_provider=clock)
    await registry.register("docs", "vector", "alice")
    clock.advance(minutes=5)

    updated = await registry.update("docs", vector_count=42, storage_size_bytes=1024)
    assert updated.vector_count == 42
    assert updated.last_accessed_at == clock.now

    with pytest.raises(InvalidInputError):
        await registry.update("docs", vector_count=-1)
    with pytest.raises(ForbiddenError):
        await registry.set_visibility("docs", "public", requester="bob")
    record = await registry.set_visibility("docs", "public", requester="alice")
    assert record.visibility == "public"


@pytest.mark.asyncio
async def test_returned_records_are_copies() -> None:
    registry = DatabaseRegistry()
    record = await registry.register("docs", "vector", "alice")
    record.owner = "mallory"
    assert registry.get("docs").owner == "alice"


@pytest.mark.asyncio
async def test_registry_persists_through_portal() -> None:
    portal = InMemoryStoragePortal()
    registry = DatabaseRegistry(portal=portal)
    await registry.register("docs", "vector", "alice")
    await registry.register("graph", "graph", "bob")

    restored = DatabaseRegistry(portal=portal)
    assert await restored.load() == 2
    assert restored.get("graph").owner == "bob"

    await registry.unregister("docs")
    assert await portal.list("databases/") == ["databases/graph"]
