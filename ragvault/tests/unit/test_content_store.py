from __future__ import annotations

import pytest

from ragvault.core.errors import ForbiddenError, InvalidInputError, NotFoundError
from ragvault.persistence.portal import InMemoryStoragePortal
from ragvault.providers.embeddings.fake import FakeEmbeddingProvider
from ragvault.services.batch import BatchOptions
from ragvault.services.store import ContentStore


@pytest.mark.asyncio
async def test_register_folders_invite_accept_revoke(clock) -> None:
    store = ContentStore(time_provider=clock)
    await store.registry.register("research", "vector", "alice")

    await store.folders.create_folder("research", "/papers/2024")
    await store.folders.create_folder("research", "/notes")
    assert [item.name for item in await store.folders.list_folder("research")] == ["notes", "papers"]

    invitation = await store.sharing.create_invitation("research", "alice", "bob", "writer")
    await store.sharing.accept_invitation(invitation.id, "bob")
    assert store.permissions.check("research", "bob", "write")
    assert not store.permissions.check("research", "bob", "admin")

    await store.sharing.revoke_access("research", "alice", "bob")
    assert not store.permissions.check("research", "bob", "read")

    bob_inbox = [n.type for n in store.notifications.get_notifications("bob")]
    assert bob_inbox == ["access_revoked", "invitation_received"]
    alice_inbox = [n.type for n in store.notifications.get_notifications("alice")]
    assert alice_inbox == ["invitation_accepted"]


@pytest.mark.asyncio
async def test_revoke_access_requires_admin(clock) -> None:
    store = ContentStore(time_provider=clock)
    await store.registry.register("research", "vector", "alice")
    await store.permissions.grant("research", "bob", "writer")
    await store.permissions.grant("research", "carol", "reader")

    with pytest.raises(ForbiddenError):
        await store.sharing.revoke_access("research", "bob", "carol")
    with pytest.raises(InvalidInputError):
        await store.sharing.revoke_access("research", "alice", "alice")


@pytest.mark.asyncio
async def test_unregister_database_cascades(clock) -> None:
    store = ContentStore(portal=InMemoryStoragePortal(), time_provider=clock)
    await store.registry.register("research", "vector", "alice")
    await store.folders.create_folder("research", "/a/b")
    await store.folders.save("research")
    await store.permissions.grant("research", "bob", "reader")
    await store.sharing.create_invitation("research", "alice", "carol", "reader")
    await store.sharing.generate_token("research", "alice", "reader")

    with pytest.raises(ForbiddenError):
        await store.unregister_database("research", "bob")
    await store.unregister_database("research", "alice")

    assert not store.registry.exists("research")
    assert store.permissions.list("research") == []
    assert store.sharing.list_invitations("research") == []
    assert store.sharing.list_tokens("research") == []
    assert await store.portal.list("") == []
    with pytest.raises(NotFoundError):
        await store.folders.list_folder("research")

    # The name is reusable and starts from a clean slate.
    await store.registry.register("research", "graph", "dave")
    assert await store.folders.list_folder("research") == []


@pytest.mark.asyncio
async def test_load_rehydrates_from_portal(clock) -> None:
    portal = InMemoryStoragePortal()
    store = ContentStore(portal=portal, time_provider=clock)
    await store.registry.register("research", "vector", "alice")
    await store.permissions.grant("research", "bob", "writer")
    await store.folders.create_folder("research", "/papers")
    await store.folders.save("research")

    restarted = ContentStore(portal=portal, time_provider=clock)
    assert await restarted.load() == 1
    assert restarted.permissions.get_role("research", "bob") == "writer"
    assert [item.path for item in await restarted.folders.list_folder("research")] == ["/papers"]


@pytest.mark.asyncio
async def test_bulk_folder_creation_reports_failures(clock) -> None:
    store = ContentStore(time_provider=clock)
    await store.registry.register("research", "vector", "alice")
    await store.permissions.grant("research", "bob", "writer")

    result = await store.create_folders(
        "research",
        ["/a", "/b/c", "/a", "/bad*name"],
        requester="bob",
        options=BatchOptions(batch_size=10),
    )
    assert [folder.path for folder in result.successful] == ["/a", "/b/c"]
    assert [item.item for item in result.failed] == ["/a", "/bad*name"]
    with pytest.raises(ForbiddenError):
        await store.create_folders("research", ["/x"], requester="mallory")


@pytest.mark.asyncio
async def test_embedding_cache_is_shared_per_provider_identity() -> None:
    store = ContentStore()
    provider = FakeEmbeddingProvider()
    first = store.embedding_cache(provider, max_size=5)
    await first.embed_text("hello")

    second = store.embedding_cache(provider)
    assert second is first
    assert second.has("hello")
    other = store.embedding_cache(FakeEmbeddingProvider(model="other"))
    assert other is not first
