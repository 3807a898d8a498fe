"""
Entity for deliverables produced by AI generation.

Generation progress is not a table of its own: it lives under
``metadata["generation"]`` and is written with merge semantics.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from job_relay.entities.base import Base, new_id, utcnow


class Deliverable(Base):
    __tablename__ = "deliverables"

    deliverable_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    contract_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    deliverable_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="planned")

    content_raw: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_structured: Mapped[dict | None] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    @property
    def generation(self) -> dict | None:
        return (self.metadata_ or {}).get("generation")
