"""Powers incremental ingestion + resume-on-restart, one row per (table, node)."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from warehouse_sync.models.base import Base


class SyncCheckpoint(Base):
    __tablename__ = "sync_checkpoints"

    # Composite key "{table_id}_{node_ordinal}"
    checkpoint_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    table_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    node_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)

    # Kept as the ISO string that was written so a corrupt value can be detected on load
    last_timestamp: Mapped[str] = mapped_column(String(64), nullable=False)

    records_ingested: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    last_sync_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    phase: Mapped[str] = mapped_column(String(20), nullable=False, default="initial")

    last_batch_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
