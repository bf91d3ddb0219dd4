from __future__ import annotations

from ragvault.core.config import get_settings
from ragvault.core.errors import InvalidInputError
from ragvault.providers.embeddings.fake import FakeEmbeddingProvider
from ragvault.providers.embeddings.hashing import HashEmbeddingProvider


def get_embedding_provider():
    settings = get_settings()
    provider = (settings.embedding_provider or "hash").lower()

    if provider == "fake":
        return FakeEmbeddingProvider(model=settings.embedding_model)
    if provider == "hash":
        return HashEmbeddingProvider(model=settings.embedding_model)

    raise InvalidInputError(f"Unsupported embedding provider: {provider}", provider=provider)
