"""Target table for synced warehouse rows.

Every configured source table lands in its own ``target_table`` partition of this
table. The row ``id`` is the deterministic record hash, so re-delivering a batch
overwrites instead of duplicating.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from warehouse_sync.models.base import Base, JSONType


class SyncedRecord(Base):
    __tablename__ = "synced_records"

    target_table: Mapped[str] = mapped_column(String(100), primary_key=True)

    id: Mapped[str] = mapped_column(String(32), primary_key=True)

    record_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Source columns flattened at top level, plus id and _syncedAt
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (Index("ix_synced_records_target_timestamp", "target_table", "record_timestamp"),)
