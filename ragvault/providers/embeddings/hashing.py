from __future__ import annotations

from ragvault.core.config import EMBED_DIM
from ragvault.ingestion.embeddings import count_tokens, embed_text
from ragvault.providers.embeddings.base import BatchEmbeddingResult, EmbeddingResult


class HashEmbeddingProvider:
    name = "hash"

    def __init__(self, model: str = "hash-768", dim: int = EMBED_DIM) -> None:
        # Deterministic local embeddings keep dev and tests free of external calls.
        self.model = model
        self._dim = dim

    async def embed_text(self, text: str) -> EmbeddingResult:
        return EmbeddingResult(
            embedding=embed_text(text, self._dim),
            text=text,
            token_count=count_tokens(text),
        )

    async def embed_batch(self, texts: list[str]) -> BatchEmbeddingResult:
        results = [await self.embed_text(text) for text in texts]
        # Local hashing has no billing; cost stays zero.
        return BatchEmbeddingResult(
            embeddings=results,
            total_tokens=sum(result.token_count for result in results),
            cost=0.0,
        )
