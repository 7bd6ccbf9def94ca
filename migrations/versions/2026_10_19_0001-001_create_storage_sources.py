"""Create storage_sources table

Adds the storage backend descriptor table:
- kind tag and opaque per-kind JSON configuration
- selection priority and capability overrides
- quota_limit / quota_used counters maintained by the quota ledger

Revision ID: 001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

def upgrade() -> None:
    op.create_table(
        "storage_sources",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, comment="Human-readable source name"),
        sa.Column(
            "kind",
            sa.String(32),
            nullable=False,
            comment="Backend kind tag",
        ),
        sa.Column("config", sa.JSON(), nullable=False, comment="Opaque per-kind configuration"),
        sa.Column(
            "priority",
            sa.Integer(),
            nullable=False,
            server_default="50",
            comment="Selection priority, higher is preferred",
        ),
        sa.Column(
            "quota_limit",
            sa.BigInteger(),
            nullable=False,
            server_default=str(10 * 1024 * 1024 * 1024),
            comment="Quota limit in bytes",
        ),
        sa.Column(
            "quota_used",
            sa.BigInteger(),
            nullable=False,
            server_default="0",
            comment="Bytes written through this layer, never negative",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "bulk_capable",
            sa.Boolean(),
            nullable=True,
            comment="Override for large-object preference, NULL uses the kind default",
        ),
        sa.Column(
            "cdn_capable",
            sa.Boolean(),
            nullable=True,
            comment="Override for media preference, NULL uses the kind default",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quota_used >= 0", name="ck_storage_sources_quota_used_non_negative"),
    )
    op.create_index("ix_storage_sources_kind", "storage_sources", ["kind"])
    op.create_index("ix_storage_sources_priority", "storage_sources", ["priority"])
    op.create_index("ix_storage_sources_is_active", "storage_sources", ["is_active"])


def downgrade() -> None:
    op.drop_index("ix_storage_sources_is_active", table_name="storage_sources")
    op.drop_index("ix_storage_sources_priority", table_name="storage_sources")
    op.drop_index("ix_storage_sources_kind", table_name="storage_sources")
    op.drop_table("storage_sources")
