"""
Repository for ingestion item operations.

Status changes are compare-and-set updates: ``UPDATE ... WHERE item_id = ?
AND status IN (<allowed sources>)``. Two handlers racing on the same item
cannot both win; the loser sees zero affected rows and treats the delivery
as already applied.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from job_relay.core.state_machine import (
    ItemStatus,
    ensure_item_transition,
    item_sources_for,
)
from job_relay.entities.base import utcnow
from job_relay.entities.ingestion_item import IngestionItem
from job_relay.repositories.base_repo import BaseRepository


class IngestionItemRepository(BaseRepository[IngestionItem]):
    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=IngestionItem)

    def create_items(
        self, batch_id: str, contract_id: str, urls: Iterable[str], *, commit: bool = True
    ) -> list[IngestionItem]:
        """Create one ``submitted`` item per URL."""
        items = [
            IngestionItem(
                batch_id=batch_id,
                contract_id=contract_id,
                url=url,
                status=ItemStatus.submitted.value,
            )
            for url in urls
        ]
        self.session.add_all(items)
        if commit:
            self.session.commit()
        else:
            self.session.flush()
        return items

    def get_item(self, item_id: str) -> Optional[IngestionItem]:
        return self.get_by_id(item_id, fresh=True)

    def transition(
        self,
        item_id: str,
        target: ItemStatus,
        *,
        expected: Iterable[ItemStatus] | None = None,
        commit: bool = True,
        **fields: Any,
    ) -> bool:
        """
        Move an item to *target* if its current status allows it.

        Args:
            item_id: Item to update
            target: New status
            expected: Statuses the item may currently be in; defaults to
                every status that has *target* in its transition table
            commit: Whether to commit the transaction
            **fields: Extra columns to write with the status (error, asset_id)

        Returns:
            True if this call performed the transition.

        Raises:
            InvalidTransitionError: if an *expected* source cannot reach *target*
        """
        if expected is None:
            sources = item_sources_for(target)
        else:
            sources = list(expected)
            for source in sources:
                ensure_item_transition(source, target)

        stmt = (
            update(IngestionItem)
            .where(
                IngestionItem.item_id == item_id,
                IngestionItem.status.in_([s.value for s in sources]),
            )
            .values(status=target.value, updated_at=utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if commit:
            self.session.commit()
        return result.rowcount == 1

    def record_submission(
        self, item_id: str, job_id: str, run_id: str | None, *, commit: bool = True
    ) -> None:
        """Store the worker's job/run identifiers; status stays ``submitted``."""
        stmt = (
            update(IngestionItem)
            .where(IngestionItem.item_id == item_id)
            .values(job_id=job_id, run_id=run_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
        if commit:
            self.session.commit()

    def list_by_batch(self, batch_id: str) -> list[IngestionItem]:
        return self.find(
            IngestionItem.batch_id == batch_id,
            order_by=[IngestionItem.created_at, IngestionItem.url],
            limit=None,
        )

    def list_stalled(self, *, older_than, limit: int = 100) -> list[IngestionItem]:
        """Non-terminal items not touched since *older_than*."""
        return self.find(
            IngestionItem.status.not_in(
                [ItemStatus.categorized.value, ItemStatus.failed.value]
            ),
            IngestionItem.updated_at < older_than,
            order_by=[IngestionItem.updated_at],
            limit=limit,
        )
