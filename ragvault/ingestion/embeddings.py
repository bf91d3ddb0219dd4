from __future__ import annotations

import hashlib
import math
import re

from ragvault.core.config import EMBED_DIM


_TOKEN_RE = re.compile(r"[A-Za-z0-9_]+")


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def count_tokens(text: str) -> int:
    # Word-level count; used for token accounting by the local hash provider.
    return len(tokenize(text))


def _hash_token(token: str, dim: int) -> tuple[int, float]:
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    # Hash to a stable index within the fixed embedding dimension.
    idx = int(digest[:8], 16) % dim
    sign = 1.0 if int(digest[8:12], 16) % 2 == 0 else -1.0
    magnitude = (int(digest[12:20], 16) % 1000) / 1000.0
    return idx, sign * (0.2 + magnitude)


def embed_text(text: str, dim: int = EMBED_DIM) -> list[float]:
    # Always allocate the full embedding dimension so cached vectors stay uniform.
    vector = [0.0] * dim
    tokens = tokenize(text)
    if not tokens:
        return vector

    for token in tokens:
        idx, value = _hash_token(token, dim)
        vector[idx] += value

    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector

    normalized = [v / norm for v in vector]
    if len(normalized) != dim:
        raise ValueError("embedding dimension mismatch")
    return normalized
