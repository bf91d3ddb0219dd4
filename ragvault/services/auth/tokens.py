from __future__ import annotations

import hashlib
import secrets
from uuid import uuid4

from ragvault.core.config import get_settings


def generate_unique_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def hash_token(raw_token: str) -> str:
    # Use SHA-256 so lookups never index on the plaintext bearer secret.
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_secure_token(prefix: str | None = None) -> tuple[str, str]:
    # Return the raw bearer token and its hash; only the hash is used for lookup.
    resolved_prefix = get_settings().access_token_prefix if prefix is None else prefix
    raw_token = f"{resolved_prefix}{secrets.token_urlsafe(32)}"
    return raw_token, hash_token(raw_token)
