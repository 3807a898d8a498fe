"""
Applies generation callbacks to deliverables.

Generation state lives inside ``deliverables.metadata['generation']``. It is
read and written under a row lock so a duplicate delivery racing with the
first one sees the terminal state and backs off.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from job_relay.core.database import SessionFactory
from job_relay.core.state_machine import (
    GenerationStatus,
    WorkerOutcome,
    classify_worker_status,
    ensure_generation_transition,
    is_generation_terminal,
)
from job_relay.dtos.webhook_dto import CallbackAck, DeliverableOutput, WorkerCallbackPayload
from job_relay.entities.deliverable import Deliverable
from job_relay.repositories.deliverable_repo import DeliverableRepository
from job_relay.services.enrichment import Dispatch, Enricher, embed_deliverable
from job_relay.services.ingestion_callback import (
    describe_validation_error,
    require_routing_fields,
)

logger = logging.getLogger(__name__)

# Deliverable status once a generation has finished either way.
DELIVERABLE_IDLE_STATUS = "planned"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _current_status(generation: dict) -> GenerationStatus:
    raw = generation.get("status")
    if raw is None:
        return GenerationStatus.submitted
    status = GenerationStatus(raw)
    if status in (GenerationStatus.pending, GenerationStatus.assembling_context):
        # The worker answered before the submission ack was recorded.
        return GenerationStatus.submitted
    return status


class DeliverableOutcomeApplier:
    """Callback handler for deliverable generations; also used by reconciliation."""

    def __init__(
        self,
        session: Session,
        *,
        session_factory: SessionFactory,
        enricher: Enricher,
        dispatch: Dispatch,
    ) -> None:
        self.session = session
        self.session_factory = session_factory
        self.enricher = enricher
        self.dispatch = dispatch
        self.repo = DeliverableRepository(session)

    def handle(self, payload: WorkerCallbackPayload) -> CallbackAck:
        """Entry point for ``job-complete`` deliveries."""
        deliverable_id = require_routing_fields(payload, "deliverable_id")
        return self.apply(deliverable_id, payload)

    def apply(self, deliverable_id: str, payload: WorkerCallbackPayload) -> CallbackAck:
        try:
            ack, embed_text = self._apply_locked(deliverable_id, payload)
        except SQLAlchemyError:
            self.session.rollback()
            raise

        if embed_text:
            self.dispatch(
                embed_deliverable, self.session_factory, self.enricher, deliverable_id, embed_text
            )
        return ack

    def _apply_locked(
        self, deliverable_id: str, payload: WorkerCallbackPayload
    ) -> tuple[CallbackAck, str | None]:
        deliverable = self.repo.get_for_update(deliverable_id)
        if deliverable is None:
            self.session.rollback()
            logger.warning("Callback for unknown deliverable %s", deliverable_id)
            return CallbackAck(status="skipped", detail="deliverable not found"), None

        generation = deliverable.generation or {}
        if is_generation_terminal(generation.get("status")):
            self.session.rollback()
            logger.info(
                "Generation for %s already %s; ignoring callback",
                deliverable_id,
                generation.get("status"),
            )
            return (
                CallbackAck(
                    status="skipped",
                    detail="already processed",
                    entity_status=generation.get("status"),
                ),
                None,
            )

        stored_job_id = generation.get("job_id")
        if stored_job_id and payload.job_id and payload.job_id != stored_job_id:
            self.session.rollback()
            logger.warning(
                "Stale callback for %s: job %s, current job %s",
                deliverable_id,
                payload.job_id,
                stored_job_id,
            )
            return CallbackAck(status="skipped", detail="stale job"), None

        current = _current_status(generation)
        outcome = classify_worker_status(payload.status)

        if outcome == WorkerOutcome.failed:
            self._write_failure(
                deliverable, current, payload, payload.error or "Unknown error from worker"
            )
            return CallbackAck(status="applied", entity_status=GenerationStatus.failed), None

        if outcome != WorkerOutcome.completed or payload.output is None:
            error = (
                f"Unexpected callback: status={payload.status}, "
                f"has_output={payload.output is not None}"
            )
            self._write_failure(deliverable, current, payload, error)
            return CallbackAck(status="applied", entity_status=GenerationStatus.failed), None

        try:
            output = DeliverableOutput.model_validate(payload.output)
        except ValidationError as e:
            self._write_failure(deliverable, current, payload, describe_validation_error(e))
            return CallbackAck(status="applied", entity_status=GenerationStatus.failed), None

        ensure_generation_transition(current, GenerationStatus.completed)
        deliverable.content_raw = output.content_raw
        deliverable.content_structured = output.content_structured
        deliverable.status = DELIVERABLE_IDLE_STATUS
        self.repo.update_generation(
            deliverable,
            {
                "status": GenerationStatus.completed.value,
                "job_id": stored_job_id or payload.job_id,
                "completed_at": _now_iso(),
                "error": None,
            },
        )
        self.session.commit()
        logger.info("Generation for %s completed (job %s)", deliverable_id, payload.job_id)
        return (
            CallbackAck(status="applied", entity_status=GenerationStatus.completed),
            output.embeddable_text(),
        )

    def _write_failure(
        self,
        deliverable: Deliverable,
        current: GenerationStatus,
        payload: WorkerCallbackPayload,
        error: str,
    ) -> None:
        ensure_generation_transition(current, GenerationStatus.failed)
        deliverable.status = DELIVERABLE_IDLE_STATUS
        self.repo.update_generation(
            deliverable,
            {
                "status": GenerationStatus.failed.value,
                "job_id": (deliverable.generation or {}).get("job_id") or payload.job_id,
                "completed_at": _now_iso(),
                "error": error,
            },
        )
        self.session.commit()
        logger.warning("Generation for %s failed: %s", deliverable.deliverable_id, error)

    def mark_polling(self, deliverable_id: str) -> GenerationStatus | None:
        """Record that a reconciliation found the job still running."""
        try:
            deliverable = self.repo.get_for_update(deliverable_id)
            generation = (deliverable.generation if deliverable else None) or {}
            if deliverable is None or is_generation_terminal(generation.get("status")):
                self.session.rollback()
                return None
            ensure_generation_transition(_current_status(generation), GenerationStatus.polling)
            self.repo.update_generation(
                deliverable,
                {"status": GenerationStatus.polling.value, "last_polled_at": _now_iso()},
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return GenerationStatus.polling
