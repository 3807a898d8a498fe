"""
Repository for deliverables and their embedded generation state.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from job_relay.entities.base import utcnow
from job_relay.entities.deliverable import Deliverable
from job_relay.repositories.base_repo import BaseRepository, merge_json


class DeliverableRepository(BaseRepository[Deliverable]):
    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=Deliverable)

    def get_for_update(self, deliverable_id: str) -> Optional[Deliverable]:
        """
        Load a deliverable with a row lock held until the transaction ends.

        Generation state is re-checked under this lock so two deliveries of
        the same callback cannot both apply.
        """
        stmt = (
            select(Deliverable)
            .where(Deliverable.deliverable_id == deliverable_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalars().first()

    def replace_generation(self, deliverable: Deliverable, state: dict[str, Any]) -> None:
        """Start a new generation record, dropping the previous one."""
        deliverable.metadata_ = merge_json(deliverable.metadata_, {"generation": state})
        deliverable.updated_at = utcnow()

    def update_generation(self, deliverable: Deliverable, patch: dict[str, Any]) -> None:
        """Overlay *patch* on the current generation record."""
        current = deliverable.generation or {}
        self.replace_generation(deliverable, merge_json(current, patch))

    def latest_of_type(
        self, contract_id: str, deliverable_type: str, *, exclude_id: str | None = None
    ) -> Optional[Deliverable]:
        """
        Most recent deliverable of a type for a contract that has structured content.

        Args:
            contract_id: Contract to search
            deliverable_type: e.g. research, roadmap, seo_audit
            exclude_id: Deliverable to skip (usually the one being generated)

        Returns:
            Deliverable or None
        """
        criteria = [
            Deliverable.contract_id == contract_id,
            Deliverable.deliverable_type == deliverable_type,
            Deliverable.content_structured.is_not(None),
        ]
        if exclude_id:
            criteria.append(Deliverable.deliverable_id != exclude_id)
        rows = self.find(*criteria, order_by=[Deliverable.created_at.desc()], limit=1)
        return rows[0] if rows else None
