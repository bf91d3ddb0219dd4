from __future__ import annotations

from ragvault.providers.embeddings.base import BatchEmbeddingResult, EmbeddingResult


class FakeEmbeddingProvider:
    def __init__(self, name: str = "fake", model: str = "fake-3", dim: int = 3) -> None:
        # Small deterministic vectors keep tests readable; calls are recorded for assertions.
        self.name = name
        self.model = model
        self._dim = dim
        self.text_calls: list[str] = []
        self.batch_calls: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        seed = float(sum(ord(ch) for ch in text))
        return [seed + float(idx) for idx in range(self._dim)]

    async def embed_text(self, text: str) -> EmbeddingResult:
        self.text_calls.append(text)
        return EmbeddingResult(embedding=self._vector(text), text=text, token_count=len(text.split()))

    async def embed_batch(self, texts: list[str]) -> BatchEmbeddingResult:
        self.batch_calls.append(list(texts))
        results = [
            EmbeddingResult(embedding=self._vector(text), text=text, token_count=len(text.split()))
            for text in texts
        ]
        total_tokens = sum(result.token_count for result in results)
        return BatchEmbeddingResult(embeddings=results, total_tokens=total_tokens, cost=total_tokens * 0.0001)

    @property
    def call_count(self) -> int:
        return len(self.text_calls) + len(self.batch_calls)
