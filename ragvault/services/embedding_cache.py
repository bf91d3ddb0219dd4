from __future__ import annotations

import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from ragvault.core.config import get_settings
from ragvault.core.errors import EmbeddingProviderError, InvalidInputError
from ragvault.providers.embeddings.base import (
    BatchEmbeddingResult,
    EmbeddingProvider,
    EmbeddingResult,
    provider_identity,
)
from ragvault.services.locks import KeyedLock
from ragvault.services.telemetry import increment_counter, set_gauge


logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    result: EmbeddingResult
    inserted_at_ms: float
    last_accessed_at_ms: float


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    hit_rate: float
    evictions: int
    max_size: int


def cache_key(identity: str, text: str) -> str:
    # Provider identity is hashed in so two models never share an entry for the same text.
    digest = hashlib.sha256()
    digest.update(identity.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(text.encode("utf-8"))
    return digest.hexdigest()


class EmbeddingCache:
    """LRU + TTL memoization in front of an embedding provider.

    Expiry is lazy: an entry older than ``expiration_ms`` counts as a miss and
    is replaced in place on the next lookup. ``clear()`` drops entries but
    keeps hit/miss statistics; call ``reset_stats()`` to zero them.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        max_size: int | None = None,
        expiration_ms: int | None = None,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self._provider = provider
        self._identity = provider_identity(provider)
        self._max_size = max_size if max_size is not None else settings.embedding_cache_max_size
        self._expiration_ms = (
            expiration_ms if expiration_ms is not None else settings.embedding_cache_expiration_ms
        )
        if self._max_size < 1:
            raise InvalidInputError("max_size must be at least 1", max_size=self._max_size)
        if self._expiration_ms <= 0:
            raise InvalidInputError("expiration_ms must be positive", expiration_ms=self._expiration_ms)
        self._time_source = time_source
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._locks = KeyedLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def identity(self) -> str:
        return self._identity

    def _now_ms(self) -> float:
        return self._time_source() * 1000.0

    def _key(self, text: str) -> str:
        return cache_key(self._identity, text)

    def _is_fresh(self, entry: CacheEntry, now_ms: float) -> bool:
        return now_ms - entry.inserted_at_ms < self._expiration_ms

    def _lookup(self, key: str, now_ms: float) -> EmbeddingResult | None:
        # Record the hit or miss; a hit refreshes recency.
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry, now_ms):
            entry.last_accessed_at_ms = now_ms
            self._entries.move_to_end(key)
            self._hits += 1
            increment_counter("embedding_cache_hits_total")
            return entry.result
        self._misses += 1
        increment_counter("embedding_cache_misses_total")
        return None

    def _store(self, key: str, result: EmbeddingResult, now_ms: float) -> None:
        if key in self._entries:
            # Expired entry replaced in place; no eviction needed.
            self._entries[key] = CacheEntry(result=result, inserted_at_ms=now_ms, last_accessed_at_ms=now_ms)
            self._entries.move_to_end(key)
            return
        if len(self._entries) >= self._max_size:
            evicted_key, _ = self._entries.popitem(last=False)
            self._evictions += 1
            increment_counter("embedding_cache_evictions_total")
            logger.debug("embedding_cache_evicted key=%s", evicted_key[:12])
        self._entries[key] = CacheEntry(result=result, inserted_at_ms=now_ms, last_accessed_at_ms=now_ms)
        set_gauge("embedding_cache_size", float(len(self._entries)))

    async def embed_text(self, text: str) -> EmbeddingResult:
        key = self._key(text)
        # Concurrent callers for the same text wait here and then hit the fresh entry.
        async with self._locks.hold(key):
            cached = self._lookup(key, self._now_ms())
            if cached is not None:
                return cached
            result = await self._provider.embed_text(text)
            self._store(key, result, self._now_ms())
            return result

    async def embed_batch(self, texts: list[str]) -> BatchEmbeddingResult:
        """Embed ``texts`` in order, sending only uncached texts to the provider.

        Uncached texts (deduplicated) go out in a single provider call; a batch
        that is fully cached makes no provider call at all.
        """
        if not texts:
            return BatchEmbeddingResult(embeddings=[], total_tokens=0, cost=0.0)
        keys = [self._key(text) for text in texts]
        async with self._locks.hold_many(keys):
            now_ms = self._now_ms()
            resolved: dict[str, EmbeddingResult] = {}
            pending: dict[str, str] = {}
            for key, text in zip(keys, texts):
                if key in resolved or key in pending:
                    continue
                cached = self._lookup(key, now_ms)
                if cached is not None:
                    resolved[key] = cached
                else:
                    pending[key] = text

            cost = 0.0
            if pending:
                uncached = list(pending.values())
                response = await self._provider.embed_batch(uncached)
                if len(response.embeddings) != len(uncached):
                    raise EmbeddingProviderError(
                        "Provider returned a different number of embeddings than requested",
                        provider=self._identity,
                        requested=len(uncached),
                        returned=len(response.embeddings),
                    )
                cost = response.cost
                stored_at = self._now_ms()
                for key, result in zip(pending, response.embeddings):
                    self._store(key, result, stored_at)
                    resolved[key] = result
            logger.debug(
                "embedding_cache_batch provider=%s total=%s uncached=%s", self._identity, len(texts), len(pending)
            )

        ordered = [resolved[key] for key in keys]
        return BatchEmbeddingResult(
            embeddings=ordered,
            total_tokens=sum(result.token_count for result in ordered),
            cost=cost,
        )

    def get_hit_rate(self) -> float:
        total = self._hits + self._misses
        if total == 0:
            return 0.0
        return self._hits / total

    def get_stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=len(self._entries),
            hit_rate=self.get_hit_rate(),
            evictions=self._evictions,
            max_size=self._max_size,
        )

    def get_size(self) -> int:
        return len(self._entries)

    def has(self, text: str) -> bool:
        # Read-only probe: no recency refresh and no hit/miss accounting.
        entry = self._entries.get(self._key(text))
        return entry is not None and self._is_fresh(entry, self._now_ms())

    def purge_expired(self) -> int:
        now_ms = self._now_ms()
        expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry, now_ms)]
        for key in expired:
            del self._entries[key]
        if expired:
            set_gauge("embedding_cache_size", float(len(self._entries)))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        set_gauge("embedding_cache_size", 0.0)

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0
        self._evictions = 0
