"""
FastAPI dependencies.

Initialization order: settings -> session factory -> worker client ->
enrichment collaborators -> services. Long-lived objects (worker client,
enricher) are built once per process; services are built per request
around the request's session and its BackgroundTasks.
"""

import logging
import secrets
from functools import lru_cache

from fastapi import BackgroundTasks, Depends, HTTPException, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from job_relay.core.config import settings
from job_relay.core.database import SessionFactory, get_db, get_session_factory
from job_relay.core.exceptions import WebhookAuthError, WorkerNotConfiguredError
from job_relay.core.worker_client import WorkerClient
from job_relay.services.categorization import AnthropicCategorizer
from job_relay.services.deliverable_callback import DeliverableOutcomeApplier
from job_relay.services.deliverable_generation import DeliverableGenerationService
from job_relay.services.enrichment import Enricher
from job_relay.services.ingestion_callback import IngestionCallbackHandler
from job_relay.services.ingestion_submitter import IngestionSubmitter
from job_relay.services.knowledge import OpenAIKnowledgeIngestor
from job_relay.services.reconciliation import ReconciliationAgent

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    api_key: str | None = Security(api_key_header),
):
    """Require X-API-Key header when API_KEY is configured."""
    if not settings.API_KEY:
        return  # auth disabled
    if api_key != settings.API_KEY:
        raise HTTPException(status_code=403, detail="Invalid or missing API key")


async def verify_worker_key(
    api_key: str | None = Security(api_key_header),
):
    """Webhook auth: the worker sends the shared WORKER_API_KEY as x-api-key."""
    if not settings.WORKER_API_KEY:
        logger.error("Webhook received but WORKER_API_KEY is not set")
        raise HTTPException(status_code=500, detail="Webhook auth not configured")
    if not api_key or not secrets.compare_digest(api_key, settings.WORKER_API_KEY):
        raise WebhookAuthError("Unauthorized")


# ---------------------------------------------------------------------------
# Long-lived collaborators
# ---------------------------------------------------------------------------


@lru_cache
def _worker_client() -> WorkerClient:
    return WorkerClient.from_settings(settings)


def get_worker_client() -> WorkerClient:
    try:
        return _worker_client()
    except WorkerNotConfiguredError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


@lru_cache
def get_enricher() -> Enricher:
    categorizer = None
    if settings.ANTHROPIC_API_KEY:
        categorizer = AnthropicCategorizer(
            api_key=settings.ANTHROPIC_API_KEY,
            model=settings.ANTHROPIC_MODEL,
            max_chars=settings.CATEGORIZE_MAX_CHARS,
        )
    else:
        logger.warning("ANTHROPIC_API_KEY not set; categorization disabled")

    ingestor = None
    if settings.OPENAI_API_KEY:
        ingestor = OpenAIKnowledgeIngestor(
            api_key=settings.OPENAI_API_KEY,
            model=settings.EMBEDDING_MODEL,
            chunk_size=settings.CHUNK_SIZE,
            chunk_overlap=settings.CHUNK_OVERLAP,
        )
    else:
        logger.warning("OPENAI_API_KEY not set; knowledge ingestion disabled")

    return Enricher(categorizer=categorizer, ingestor=ingestor)


# ---------------------------------------------------------------------------
# Per-request services
# ---------------------------------------------------------------------------


def get_ingestion_callback_handler(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: SessionFactory = Depends(get_session_factory),
    enricher: Enricher = Depends(get_enricher),
) -> IngestionCallbackHandler:
    return IngestionCallbackHandler(
        db,
        session_factory=session_factory,
        enricher=enricher,
        dispatch=background_tasks.add_task,
        default_asset_status=settings.DEFAULT_ASSET_STATUS,
    )


def get_deliverable_applier(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: SessionFactory = Depends(get_session_factory),
    enricher: Enricher = Depends(get_enricher),
) -> DeliverableOutcomeApplier:
    return DeliverableOutcomeApplier(
        db,
        session_factory=session_factory,
        enricher=enricher,
        dispatch=background_tasks.add_task,
    )


def get_reconciliation_agent(
    db: Session = Depends(get_db),
    worker_client: WorkerClient = Depends(get_worker_client),
    item_handler: IngestionCallbackHandler = Depends(get_ingestion_callback_handler),
    deliverable_applier: DeliverableOutcomeApplier = Depends(get_deliverable_applier),
) -> ReconciliationAgent:
    return ReconciliationAgent(
        db,
        worker_client,
        item_handler=item_handler,
        deliverable_applier=deliverable_applier,
    )


def get_ingestion_submitter(
    db: Session = Depends(get_db),
    worker_client: WorkerClient = Depends(get_worker_client),
) -> IngestionSubmitter:
    return IngestionSubmitter(db, worker_client, max_workers=settings.SUBMIT_MAX_WORKERS)


def get_generation_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: SessionFactory = Depends(get_session_factory),
    worker_client: WorkerClient = Depends(get_worker_client),
) -> DeliverableGenerationService:
    return DeliverableGenerationService(
        db,
        session_factory=session_factory,
        worker_client=worker_client,
        dispatch=background_tasks.add_task,
    )
