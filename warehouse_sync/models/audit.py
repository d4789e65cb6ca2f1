"""Append-only audit trail: skipped records and validation runs."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from warehouse_sync.models.base import Base, JSONType


class SyncAudit(Base):
    __tablename__ = "sync_audit"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    node_ordinal: Mapped[int | None] = mapped_column(Integer, nullable=True)

    table_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,  # skipped | healthy | issues_detected | error
    )

    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    check_results: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    record_sample: Mapped[str | None] = mapped_column(Text, nullable=True)
