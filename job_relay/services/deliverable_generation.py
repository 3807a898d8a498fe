"""
Starting deliverable generations.

``start_generation`` runs in the request: it refuses to restart an active
generation, writes a fresh ``pending`` record and schedules
``run_generation``. The background part assembles a brief from earlier
deliverables of the same contract, submits it to the worker and records
the job identifiers. The result arrives later on ``job-complete``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from job_relay.core.database import SessionFactory
from job_relay.core.exceptions import GenerationInProgressError, NotFoundError
from job_relay.core.state_machine import (
    GENERATION_ACTIVE,
    GenerationStatus,
    ensure_generation_transition,
    is_generation_terminal,
)
from job_relay.core.worker_client import WorkerClient
from job_relay.dtos.deliverable_dto import ContextSummary, GenerateDeliverableRequest
from job_relay.entities.deliverable import Deliverable
from job_relay.repositories.deliverable_repo import DeliverableRepository
from job_relay.services.enrichment import Dispatch

logger = logging.getLogger(__name__)

DELIVERABLE_WORKING_STATUS = "working"
DELIVERABLE_IDLE_STATUS = "planned"

# Earlier deliverables each type draws on, keyed by the brief field they fill.
# Other types (research included) are generated from the request alone.
CONTEXT_SOURCES: dict[str, dict[str, str]] = {
    "seo_audit": {"research_context": "research"},
    "roadmap": {"research": "research", "previous_roadmap": "roadmap"},
    "content_plan": {
        "roadmap": "roadmap",
        "seo_audit": "seo_audit",
        "research": "research",
        "previous_content_plan": "content_plan",
    },
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _prior_output(deliverable: Deliverable) -> dict[str, Any]:
    data = deliverable.content_structured
    if deliverable.deliverable_type != "research":
        return data
    # The worker only reads these two fields of a research report.
    return {
        "full_document_markdown": data.get("full_document_markdown") or "",
        "competitive_scores": data.get("competitive_scores") or {},
    }


def _profiles_from_seo_audit(
    seo_audit: dict[str, Any],
) -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
    """Client and competitor profiles found by an earlier SEO audit."""
    search = seo_audit.get("competitive_search") or {}
    profile = search.get("client_profile") or {}
    client = None
    if profile.get("company_name") and profile.get("domain"):
        client = {"company_name": profile["company_name"], "domain": profile["domain"]}
    competitors = [
        {"company_name": p.get("company_name"), "domain": p.get("domain")}
        for p in search.get("competitor_profiles") or []
    ]
    return client, competitors


def assemble_brief(
    repo: DeliverableRepository,
    deliverable: Deliverable,
    request: GenerateDeliverableRequest,
) -> tuple[dict[str, Any], ContextSummary]:
    """
    Build the worker brief for *deliverable* and a summary of what went in.

    Args:
        repo: Repository used to find earlier deliverables
        deliverable: Deliverable being generated
        request: Caller-supplied instructions and research inputs

    Returns:
        (brief, context summary)
    """
    brief: dict[str, Any] = {
        "title": deliverable.title,
        "contract_id": deliverable.contract_id,
        "instructions": request.instructions,
        "primary_meeting_ids": request.primary_meeting_ids,
    }
    prior: list[str] = []

    sources = CONTEXT_SOURCES.get(deliverable.deliverable_type, {})
    for field, source_type in sources.items():
        if field == "previous_roadmap" and request.previous_roadmap_id:
            found = repo.get_by_id(request.previous_roadmap_id)
        else:
            found = repo.latest_of_type(
                deliverable.contract_id, source_type, exclude_id=deliverable.deliverable_id
            )
        if (
            found is not None
            and found.contract_id == deliverable.contract_id
            and found.content_structured is not None
        ):
            brief[field] = _prior_output(found)
            prior.append(source_type)

    competitors_count = 0
    inputs = request.research_inputs
    if inputs is not None:
        brief["client"] = inputs.client.model_dump()
        brief["competitors"] = [c.model_dump() for c in inputs.competitors]
        competitors_count = len(inputs.competitors)
    elif "seo_audit" in brief:
        client, competitors = _profiles_from_seo_audit(brief["seo_audit"])
        if client is not None:
            brief["client"] = client
        if competitors:
            brief["competitors"] = competitors
            competitors_count = len(competitors)

    seed_topics = request.resolved_seed_topics()
    if seed_topics:
        brief["seed_topics"] = seed_topics
    max_crawl_pages = request.resolved_max_crawl_pages()
    if max_crawl_pages:
        brief["max_crawl_pages"] = max_crawl_pages

    summary = ContextSummary(
        prior_deliverables=prior,
        primary_meetings_count=len(request.primary_meeting_ids),
        has_instructions=bool(request.instructions),
        competitors_count=competitors_count,
    )
    return brief, summary


class DeliverableGenerationService:
    def __init__(
        self,
        session: Session,
        *,
        session_factory: SessionFactory,
        worker_client: WorkerClient,
        dispatch: Dispatch,
    ) -> None:
        self.session = session
        self.session_factory = session_factory
        self.worker_client = worker_client
        self.dispatch = dispatch
        self.repo = DeliverableRepository(session)

    def start_generation(
        self, deliverable_id: str, request: GenerateDeliverableRequest
    ) -> dict[str, Any]:
        """
        Start a generation unless one is already active.

        Raises:
            NotFoundError: deliverable does not exist
            GenerationInProgressError: current generation is still active
        """
        try:
            deliverable = self.repo.get_for_update(deliverable_id)
            if deliverable is None:
                raise NotFoundError(f"Deliverable {deliverable_id} not found")

            current = (deliverable.generation or {}).get("status")
            if current in GENERATION_ACTIVE:
                raise GenerationInProgressError(
                    f"Generation already {current} for deliverable {deliverable_id}"
                )

            state = {"status": GenerationStatus.pending.value, "requested_at": _now_iso()}
            self.repo.replace_generation(deliverable, state)
            deliverable.status = DELIVERABLE_WORKING_STATUS
            self.session.commit()
        except (NotFoundError, GenerationInProgressError, SQLAlchemyError):
            self.session.rollback()
            raise

        logger.info("Generation requested for deliverable %s", deliverable_id)
        self.dispatch(
            run_generation, self.session_factory, self.worker_client, deliverable_id, request
        )
        return {"deliverable_id": deliverable_id, "generation": state}


def _advance(
    repo: DeliverableRepository, deliverable: Deliverable, target: GenerationStatus, **fields: Any
) -> None:
    current = (deliverable.generation or {}).get("status") or GenerationStatus.pending.value
    ensure_generation_transition(current, target)
    repo.update_generation(deliverable, {"status": target.value, **fields})


def run_generation(
    session_factory: SessionFactory,
    worker_client: WorkerClient,
    deliverable_id: str,
    request: GenerateDeliverableRequest,
) -> None:
    """Assemble context and submit the job; failures mark the generation failed."""
    session = session_factory()
    repo = DeliverableRepository(session)
    try:
        deliverable = repo.get_for_update(deliverable_id)
        if deliverable is None:
            return
        current = (deliverable.generation or {}).get("status")
        if current != GenerationStatus.pending:
            logger.info(
                "Generation for %s is %s, not pending; skipping start", deliverable_id, current
            )
            session.rollback()
            return
        _advance(repo, deliverable, GenerationStatus.assembling_context)
        session.commit()

        brief, summary = assemble_brief(repo, deliverable, request)
        ack = worker_client.submit_deliverable(
            deliverable.deliverable_type,
            brief,
            metadata={
                "deliverable_id": deliverable_id,
                "contract_id": deliverable.contract_id,
                "title": deliverable.title,
            },
        )

        deliverable = repo.get_for_update(deliverable_id)
        patch = {
            "job_id": ack.job_id,
            "run_id": ack.run_id,
            "submitted_at": _now_iso(),
            "context_summary": summary.model_dump(),
        }
        if (deliverable.generation or {}).get("status") == GenerationStatus.assembling_context:
            _advance(repo, deliverable, GenerationStatus.submitted, **patch)
        else:
            # The callback already landed; keep its status, add the identifiers.
            repo.update_generation(deliverable, patch)
        session.commit()
        logger.info(
            "Generation for %s submitted: job=%s run=%s", deliverable_id, ack.job_id, ack.run_id
        )
    except Exception as e:
        logger.exception("Generation for deliverable %s failed to start", deliverable_id)
        session.rollback()
        _record_start_failure(session, deliverable_id, str(e))
    finally:
        session.close()


def _record_start_failure(session: Session, deliverable_id: str, error: str) -> None:
    repo = DeliverableRepository(session)
    try:
        deliverable = repo.get_for_update(deliverable_id)
        if deliverable is None or is_generation_terminal(
            (deliverable.generation or {}).get("status")
        ):
            session.rollback()
            return
        deliverable.status = DELIVERABLE_IDLE_STATUS
        repo.update_generation(
            deliverable,
            {"status": GenerationStatus.failed.value, "error": error, "completed_at": _now_iso()},
        )
        session.commit()
    except SQLAlchemyError:
        logger.exception("Could not record generation failure for %s", deliverable_id)
        session.rollback()
