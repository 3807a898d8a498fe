"""
Entity for one URL within an ingestion batch.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from job_relay.core.state_machine import ItemStatus
from job_relay.entities.base import Base, new_id, utcnow


class IngestionItem(Base):
    __tablename__ = "ingestion_items"
    __table_args__ = (Index("ix_ingestion_items_batch_status", "batch_id", "status"),)

    item_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ingestion_batches.batch_id"), nullable=False, index=True
    )
    contract_id: Mapped[str] = mapped_column(String(36), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ItemStatus.submitted.value
    )  # submitted, scraped, asset_created, categorized, failed

    job_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    run_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    asset_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("content_assets.asset_id"), nullable=True
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
