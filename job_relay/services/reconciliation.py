"""
Recovery for callbacks that never arrived.

The agent asks the worker for the job by run id and feeds the answer
through the same handlers the webhooks use, so a recovered item or
generation ends up exactly as if its callback had been delivered.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from job_relay.core.exceptions import CannotRecoverError, JobRelayError, NotFoundError
from job_relay.core.state_machine import (
    ItemStatus,
    WorkerOutcome,
    classify_worker_status,
    is_generation_terminal,
    is_item_terminal,
)
from job_relay.core.worker_client import WorkerClient
from job_relay.dtos.webhook_dto import RecoveryReport
from job_relay.entities.base import utcnow
from job_relay.repositories.deliverable_repo import DeliverableRepository
from job_relay.repositories.ingestion_item_repo import IngestionItemRepository
from job_relay.services.deliverable_callback import DeliverableOutcomeApplier
from job_relay.services.ingestion_callback import IngestionCallbackHandler

logger = logging.getLogger(__name__)


class ReconciliationAgent:
    def __init__(
        self,
        session: Session,
        worker_client: WorkerClient,
        *,
        item_handler: IngestionCallbackHandler,
        deliverable_applier: DeliverableOutcomeApplier,
    ) -> None:
        self.session = session
        self.worker_client = worker_client
        self.item_handler = item_handler
        self.deliverable_applier = deliverable_applier
        self.items = IngestionItemRepository(session)
        self.deliverables = DeliverableRepository(session)

    def reconcile_deliverable(self, deliverable_id: str) -> RecoveryReport:
        """
        Recover a generation whose callback was lost.

        Raises:
            NotFoundError: deliverable does not exist or was never generated
            CannotRecoverError: no run id was ever recorded
            WorkerClientError: the worker lookup failed
        """
        deliverable = self.deliverables.get_by_id(deliverable_id, fresh=True)
        if deliverable is None:
            raise NotFoundError(f"Deliverable {deliverable_id} not found")

        generation = deliverable.generation
        if not generation:
            raise NotFoundError(f"No generation metadata found for deliverable {deliverable_id}")
        status = generation.get("status")
        if is_generation_terminal(status):
            return RecoveryReport(
                target_id=deliverable_id,
                recovered=False,
                status=status,
                message="Generation already complete",
            )

        run_id = generation.get("run_id")
        if not run_id:
            raise CannotRecoverError(
                f"No run_id recorded for deliverable {deliverable_id}; cannot recover"
            )

        job = self.worker_client.get_job_by_run_id(run_id)
        outcome = classify_worker_status(job.status)
        logger.info("Reconcile deliverable %s: run %s is %s", deliverable_id, run_id, job.status)

        if outcome not in (WorkerOutcome.completed, WorkerOutcome.failed):
            self.deliverable_applier.mark_polling(deliverable_id)
            return RecoveryReport(
                target_id=deliverable_id,
                recovered=False,
                status="polling",
                message=f"Job still {job.status or 'unknown'}",
            )

        payload = job.as_callback(generation.get("job_id"), {"deliverable_id": deliverable_id})
        ack = self.deliverable_applier.apply(deliverable_id, payload)
        return RecoveryReport(
            target_id=deliverable_id,
            recovered=ack.status == "applied",
            status=ack.entity_status,
            message=f"Applied {outcome} result" if ack.status == "applied" else ack.detail or "",
        )

    def reconcile_item(self, item_id: str) -> RecoveryReport:
        """
        Recover an ingestion item whose callback was lost.

        An item that already has its asset only needs enrichment re-run; the
        worker is not consulted.

        Raises:
            NotFoundError: item does not exist
            CannotRecoverError: no run id was ever recorded
            WorkerClientError: the worker lookup failed
        """
        item = self.items.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")

        if is_item_terminal(item.status):
            return RecoveryReport(
                target_id=item_id,
                recovered=False,
                status=item.status,
                message="Item already complete",
            )

        if item.status == ItemStatus.asset_created:
            self.item_handler.resume_enrichment(item)
            return RecoveryReport(
                target_id=item_id,
                recovered=True,
                status=item.status,
                message="Enrichment re-dispatched",
            )

        if not item.run_id:
            raise CannotRecoverError(f"No run_id recorded for item {item_id}; cannot recover")

        job = self.worker_client.get_job_by_run_id(item.run_id)
        outcome = classify_worker_status(job.status)
        logger.info("Reconcile item %s: run %s is %s", item_id, item.run_id, job.status)

        if outcome not in (WorkerOutcome.completed, WorkerOutcome.failed):
            return RecoveryReport(
                target_id=item_id,
                recovered=False,
                status=item.status,
                message=f"Job still {job.status or 'unknown'}",
            )

        payload = job.as_callback(
            item.job_id,
            {"item_id": item_id, "batch_id": item.batch_id, "contract_id": item.contract_id},
        )
        ack = self.item_handler.apply(item, payload)
        return RecoveryReport(
            target_id=item_id,
            recovered=ack.status == "applied",
            status=ack.entity_status,
            message=f"Applied {outcome} result" if ack.status == "applied" else ack.detail or "",
        )

    def reconcile_stalled_items(
        self, *, older_than: timedelta = timedelta(minutes=30), limit: int = 50
    ) -> list[RecoveryReport]:
        """Reconcile every non-terminal item untouched for *older_than*."""
        cutoff = utcnow() - older_than
        stalled = self.items.list_stalled(older_than=cutoff, limit=limit)
        logger.info("Found %d stalled items older than %s", len(stalled), cutoff)

        reports = []
        for item_id in [item.item_id for item in stalled]:
            try:
                reports.append(self.reconcile_item(item_id))
            except JobRelayError as e:
                logger.warning("Could not reconcile item %s: %s", item_id, e)
                reports.append(
                    RecoveryReport(target_id=item_id, recovered=False, message=str(e))
                )
        return reports
