"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "storage_records",
        sa.Column("key", sa.String(), primary_key=True),
        # Avoid index=True here because we create explicit indexes below.
        sa.Column("namespace", sa.String(), nullable=False),
        sa.Column("payload_json", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_storage_records_namespace", "storage_records", ["namespace"])


def downgrade() -> None:
    op.drop_index("ix_storage_records_namespace", table_name="storage_records")
    op.drop_table("storage_records")
