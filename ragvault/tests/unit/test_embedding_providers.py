from __future__ import annotations

import pytest

from ragvault.core.config import EMBED_DIM
from ragvault.core.errors import InvalidInputError
from ragvault.ingestion.embeddings import count_tokens, embed_text
from ragvault.providers.embeddings.base import provider_identity
from ragvault.providers.embeddings.factory import get_embedding_provider
from ragvault.providers.embeddings.fake import FakeEmbeddingProvider
from ragvault.providers.embeddings.hashing import HashEmbeddingProvider


def test_embed_text_is_deterministic() -> None:
    vec1 = embed_text("ragvault deterministic embedding")
    vec2 = embed_text("ragvault deterministic embedding")

    assert vec1 == vec2
    assert len(vec1) == EMBED_DIM


def test_embed_text_changes_with_input() -> None:
    assert embed_text("alpha") != embed_text("beta")
    assert embed_text("", dim=8) == [0.0] * 8


def test_count_tokens() -> None:
    assert count_tokens("Hello, vector world!") == 3


@pytest.mark.asyncio
async def test_hash_provider_batch_matches_single() -> None:
    provider = HashEmbeddingProvider(dim=16)
    single = await provider.embed_text("shared folders")
    batch = await provider.embed_batch(["shared folders", "tokens"])

    assert batch.embeddings[0] == single
    assert batch.total_tokens == 3
    assert batch.cost == 0.0
    assert provider_identity(provider) == "hash:hash-768"


@pytest.mark.asyncio
async def test_fake_provider_records_calls() -> None:
    provider = FakeEmbeddingProvider()
    await provider.embed_text("one")
    result = await provider.embed_batch(["two words", "three"])

    assert provider.text_calls == ["one"]
    assert provider.batch_calls == [["two words", "three"]]
    assert provider.call_count == 2
    assert result.total_tokens == 3
    assert len(result.embeddings[0].embedding) == 3


def test_factory_selects_provider(monkeypatch) -> None:
    monkeypatch.setenv("RAGVAULT_EMBEDDING_PROVIDER", "fake")
    monkeypatch.setenv("RAGVAULT_EMBEDDING_MODEL", "fake-v2")
    provider = get_embedding_provider()
    assert isinstance(provider, FakeEmbeddingProvider)
    assert provider_identity(provider) == "fake:fake-v2"


def test_factory_rejects_unknown_provider(monkeypatch) -> None:
    monkeypatch.setenv("RAGVAULT_EMBEDDING_PROVIDER", "remote")
    with pytest.raises(InvalidInputError):
        get_embedding_provider()
