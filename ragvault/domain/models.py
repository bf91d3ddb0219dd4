from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# Prefer JSONB on Postgres while keeping SQLite usable for local runs and tests.
PayloadJSON = JSON().with_variant(JSONB(), "postgresql")


class StorageRecord(Base):
    __tablename__ = "storage_records"

    # Portal keys are slash-delimited ("databases/docs", "permissions/docs/0xabc").
    key: Mapped[str] = mapped_column(String, primary_key=True)
    # First key segment, indexed for prefix listings by record kind.
    namespace: Mapped[str] = mapped_column(String, index=True)
    payload_json: Mapped[dict[str, Any]] = mapped_column(PayloadJSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
