"""
Repository for ingestion batch operations.

All SQL for the ``ingestion_batches`` table lives here.

Concurrency: counters are mutated only through single ``UPDATE ... SET
col = col + 1`` statements, so concurrent callbacks for items of the same
batch cannot lose updates. The increment is also guarded by
``completed + failed < total`` so the counters can never overshoot.
Completion is a conditional write on ``status = 'in_progress'``; evaluating
it twice is harmless.
"""
from __future__ import annotations

import logging
from typing import Literal, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from job_relay.core.state_machine import BatchStatus
from job_relay.entities.base import utcnow
from job_relay.entities.ingestion_batch import IngestionBatch
from job_relay.repositories.base_repo import BaseRepository
from job_relay.services.batch_completion import evaluate_batch_completion

logger = logging.getLogger(__name__)

CounterField = Literal["completed", "failed"]


class IngestionBatchRepository(BaseRepository[IngestionBatch]):
    """
    Repository for ingestion batches.

    Methods take ``commit`` so callers can group a counter increment with
    the item transition that caused it in one transaction.
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=IngestionBatch)

    def create_batch(
        self,
        contract_id: str,
        total: int,
        *,
        options: dict | None = None,
        created_by: str | None = None,
        commit: bool = True,
    ) -> IngestionBatch:
        """
        Create a batch. A batch with nothing to do is created already completed.

        Args:
            contract_id: Owning contract
            total: Number of items (post-deduplication); fixed for life
            options: Free-form options stored with the batch
            created_by: Requesting user, if known
            commit: Whether to commit the transaction

        Returns:
            Created IngestionBatch entity
        """
        batch = IngestionBatch(
            contract_id=contract_id,
            total=total,
            completed=0,
            failed=0,
            status=BatchStatus.in_progress.value,
            options=options or {},
            created_by=created_by,
        )
        if total == 0:
            batch.status = BatchStatus.completed.value
            batch.completed_at = utcnow()
        return self.create(batch, commit=commit)

    def increment_counter(
        self, batch_id: str, field: CounterField, *, commit: bool = True
    ) -> bool:
        """
        Atomically add one to ``completed`` or ``failed``.

        Args:
            batch_id: Batch to update
            field: Which counter to bump
            commit: Whether to commit the transaction

        Returns:
            True if a row was updated; False if the batch is missing or
            already fully counted.
        """
        column = getattr(IngestionBatch, field)
        stmt = (
            update(IngestionBatch)
            .where(
                IngestionBatch.batch_id == batch_id,
                IngestionBatch.completed + IngestionBatch.failed < IngestionBatch.total,
            )
            .values({field: column + 1})
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if commit:
            self.session.commit()
        if result.rowcount != 1:
            logger.warning("Counter %s not incremented for batch %s", field, batch_id)
            return False
        return True

    def complete_if_finished(
        self, batch_id: str, *, commit: bool = True
    ) -> Optional[BatchStatus]:
        """
        Move the batch to its terminal status once every item is counted.

        Args:
            batch_id: Batch to evaluate
            commit: Whether to commit the transaction

        Returns:
            The terminal status written by this call, or None when nothing
            changed (still running, already terminal, or lost the race).
        """
        batch = self.get_by_id(batch_id, fresh=True)
        if batch is None:
            return None

        final_status = evaluate_batch_completion(
            batch.total, batch.completed, batch.failed, batch.status
        )
        if final_status is None:
            return None

        stmt = (
            update(IngestionBatch)
            .where(
                IngestionBatch.batch_id == batch_id,
                IngestionBatch.status == BatchStatus.in_progress.value,
            )
            .values(status=final_status.value, completed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if commit:
            self.session.commit()
        if result.rowcount != 1:
            return None

        logger.info(
            "Batch %s %s: %d completed, %d failed of %d",
            batch_id,
            final_status,
            batch.completed,
            batch.failed,
            batch.total,
        )
        return final_status

    def list_batches(
        self,
        *,
        contract_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[IngestionBatch]:
        """
        List batches, newest first, optionally filtered.

        Args:
            contract_id: Only batches for this contract
            status: Only batches with this status
            limit: Maximum number of batches to return

        Returns:
            List of IngestionBatch entities
        """
        criteria = []
        if contract_id:
            criteria.append(IngestionBatch.contract_id == contract_id)
        if status:
            criteria.append(IngestionBatch.status == status)
        return self.find(
            *criteria, order_by=[IngestionBatch.created_at.desc()], limit=limit
        )
