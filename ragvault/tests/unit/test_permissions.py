from __future__ import annotations

import pytest

from ragvault.core.errors import ForbiddenError, InvalidInputError, NotFoundError
from ragvault.persistence.portal import InMemoryStoragePortal
from ragvault.services.permissions import PermissionService
from ragvault.services.registry import DatabaseRegistry


async def _service(**kwargs) -> PermissionService:
    registry = DatabaseRegistry()
    await registry.register("docs", "vector", "alice")
    await registry.register("wiki", "graph", "alice", visibility="public")
    return PermissionService(registry, **kwargs)


@pytest.mark.asyncio
async def test_owner_is_implicit() -> None:
    permissions = await _service()
    assert permissions.get_role("docs", "alice") == "owner"
    assert permissions.check("docs", "alice", "admin")
    assert permissions.list("docs") == []


@pytest.mark.asyncio
async def test_grant_refreshes_unique_row() -> None:
    permissions = await _service()
    await permissions.grant("docs", "bob", "reader", granted_by="alice")
    assert permissions.check("docs", "bob", "read")
    assert not permissions.check("docs", "bob", "write")

    await permissions.grant("docs", "bob", "writer", granted_by="alice")
    assert [grant.role for grant in permissions.list("docs")] == ["writer"]
    assert permissions.check("docs", "bob", "write")


@pytest.mark.asyncio
async def test_grant_requires_registered_database() -> None:
    permissions = await _service()
    with pytest.raises(NotFoundError):
        await permissions.grant("missing", "bob", "reader")
    with pytest.raises(InvalidInputError):
        await permissions.grant("docs", "bob", "admin")


@pytest.mark.asyncio
async def test_public_visibility_allows_anonymous_read() -> None:
    permissions = await _service()
    assert permissions.check("wiki", "stranger", "read")
    assert not permissions.check("wiki", "stranger", "write")
    assert not permissions.check("docs", "stranger", "read")
    with pytest.raises(ForbiddenError):
        permissions.require("docs", "stranger", "read")


@pytest.mark.asyncio
async def test_revoke_rules() -> None:
    permissions = await _service()
    await permissions.grant("docs", "bob", "reader")
    with pytest.raises(InvalidInputError):
        await permissions.revoke("docs", "alice")
    await permissions.revoke("docs", "bob")
    assert permissions.get_role("docs", "bob") is None
    with pytest.raises(NotFoundError):
        await permissions.revoke("docs", "bob")


@pytest.mark.asyncio
async def test_summary_and_user_listing(clock) -> None:
    permissions = await _service(time_provider=clock)
    await permissions.grant("docs", "bob", "reader")
    await permissions.grant("docs", "carol", "writer")
    clock.advance(hours=1)
    await permissions.grant("wiki", "bob", "writer")

    summary = permissions.get_summary("docs")
    assert (summary.total_permissions, summary.reader_count, summary.writer_count) == (2, 1, 1)
    assert [grant.database_name for grant in permissions.list_for_user("bob")] == ["docs", "wiki"]
    assert permissions.get_summary("wiki").last_granted_at == clock.now


@pytest.mark.asyncio
async def test_grants_round_trip_through_portal() -> None:
    portal = InMemoryStoragePortal()
    permissions = await _service(portal=portal)
    await permissions.grant("docs", "bob", "reader")
    await permissions.grant("docs", "carol", "writer")

    restored = PermissionService(permissions.registry, portal=portal)
    assert await restored.load("docs") == 2
    assert restored.get_role("docs", "carol") == "writer"

    assert await permissions.purge_database("docs") == 2
    assert await portal.list("permissions/docs/") == []
