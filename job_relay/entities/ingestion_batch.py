"""
Entity for tracking bulk ingestion batches.

A batch groups the items submitted by one bulk request and carries the
aggregate counters that every item callback updates.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from job_relay.core.state_machine import BatchStatus
from job_relay.entities.base import Base, new_id, utcnow


class IngestionBatch(Base):
    """
    One bulk-submission request.

    ``total`` is fixed at creation (after deduplication). ``completed`` and
    ``failed`` only ever move through atomic SQL increments.
    """

    __tablename__ = "ingestion_batches"

    batch_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    contract_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    total: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=BatchStatus.in_progress.value, index=True
    )  # in_progress, completed, completed_with_errors

    options: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
