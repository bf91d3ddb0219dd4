from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class EmbeddingResult:
    embedding: list[float]
    text: str
    token_count: int


@dataclass(frozen=True)
class BatchEmbeddingResult:
    # Embeddings are returned in the order of the requested texts.
    embeddings: list[EmbeddingResult] = field(default_factory=list)
    total_tokens: int = 0
    cost: float = 0.0


class EmbeddingProvider(Protocol):
    # name + model form the provider identity used in cache keys.
    name: str
    model: str

    async def embed_text(self, text: str) -> EmbeddingResult:
        ...

    async def embed_batch(self, texts: list[str]) -> BatchEmbeddingResult:
        ...


def provider_identity(provider: object) -> str:
    # Fall back to the class name for providers that omit name/model attributes.
    name = getattr(provider, "name", None) or type(provider).__name__
    model = getattr(provider, "model", None) or "default"
    return f"{name}:{model}"
