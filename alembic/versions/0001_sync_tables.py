"""create sync_checkpoints, sync_audit and synced_records

Revision ID: 0001_sync_tables
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_sync_tables"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "sync_checkpoints",
        sa.Column("checkpoint_id", sa.String(length=255), nullable=False),
        sa.Column("table_id", sa.String(length=100), nullable=False),
        sa.Column("node_ordinal", sa.Integer(), nullable=False),
        sa.Column("last_timestamp", sa.String(length=64), nullable=False),
        sa.Column("records_ingested", sa.BigInteger(), nullable=False),
        sa.Column("last_sync_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("phase", sa.String(length=20), nullable=False),
        sa.Column("last_batch_size", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("checkpoint_id"),
    )
    op.create_index("ix_sync_checkpoints_table_id", "sync_checkpoints", ["table_id"])

    op.create_table(
        "sync_audit",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("node_ordinal", sa.Integer(), nullable=True),
        sa.Column("table_id", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("check_results", JSONType, nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("record_sample", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sync_audit_timestamp", "sync_audit", ["timestamp"])
    op.create_index("ix_sync_audit_table_id", "sync_audit", ["table_id"])

    op.create_table(
        "synced_records",
        sa.Column("target_table", sa.String(length=100), nullable=False),
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("record_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payload", JSONType, nullable=False),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("target_table", "id"),
    )
    op.create_index("ix_synced_records_target_timestamp", "synced_records", ["target_table", "record_timestamp"])


def downgrade() -> None:
    op.drop_index("ix_synced_records_target_timestamp", table_name="synced_records")
    op.drop_table("synced_records")
    op.drop_index("ix_sync_audit_table_id", table_name="sync_audit")
    op.drop_index("ix_sync_audit_timestamp", table_name="sync_audit")
    op.drop_table("sync_audit")
    op.drop_index("ix_sync_checkpoints_table_id", table_name="sync_checkpoints")
    op.drop_table("sync_checkpoints")
