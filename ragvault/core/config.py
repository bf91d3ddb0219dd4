from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


# Keep embedding dimension centralized so providers and cached vectors never drift.
EMBED_DIM = 768


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="RAGVAULT_")

    app_name: str = "ragvault"

    # Storage portal backing store for registry, permission and folder records.
    portal_database_url: str = "sqlite+aiosqlite:///./ragvault.db"

    # Select the embedding provider wrapped by the cache (hash or fake).
    embedding_provider: str = "hash"
    embedding_model: str = "hash-768"
    # Bound cache memory by entry count and entry age.
    embedding_cache_max_size: int = 1000
    embedding_cache_expiration_ms: int = 3_600_000

    # Bulk operation defaults; sequential batches unless explicitly raised.
    batch_size: int = 100
    batch_concurrency: int = 1
    batch_continue_on_error: bool = True

    # Folder hierarchy limits.
    folder_max_depth: int = 10
    folder_name_max_length: int = 255

    # Prefix bearer tokens so operators can recognize leaked credentials.
    access_token_prefix: str = "rvt_"
    # Applied when a token is generated without an explicit expiry.
    access_token_default_ttl_hours: int = 24
    # Invitations never expire unless a TTL is configured.
    invitation_default_ttl_hours: int | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
