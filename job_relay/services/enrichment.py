"""
Non-blocking side effects that run after a callback has been committed.

These functions are handed to ``BackgroundTasks`` and run after the HTTP
response is sent, so each opens its own session from the session factory.
Embedding and categorization failures are logged and absorbed: they never
undo the artifact write and never move an item backwards. The only status
change made here is the forward CAS ``asset_created -> categorized``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from job_relay.core.database import SessionFactory
from job_relay.core.state_machine import ItemStatus
from job_relay.entities.content_asset import ContentAsset
from job_relay.entities.deliverable import Deliverable
from job_relay.repositories.ingestion_item_repo import IngestionItemRepository
from job_relay.services.categorization import Categorizer, categorize_asset
from job_relay.services.item_outcomes import settle_item
from job_relay.services.knowledge import KnowledgeIngestor

logger = logging.getLogger(__name__)

# Schedules ``func(*args, **kwargs)`` to run later; BackgroundTasks.add_task fits.
Dispatch = Callable[..., Any]


class Enricher:
    """Embedding and categorization for newly written artifacts.

    Either collaborator may be None (no API key configured); the step is
    then skipped.
    """

    def __init__(
        self,
        categorizer: Categorizer | None = None,
        ingestor: KnowledgeIngestor | None = None,
    ) -> None:
        self.categorizer = categorizer
        self.ingestor = ingestor

    def enrich_asset(
        self, session: Session, asset: ContentAsset, *, content_type_slug: str | None = None
    ) -> None:
        asset_id = asset.asset_id

        if self.ingestor is not None and asset.content_body:
            try:
                self.ingestor.ingest(
                    session,
                    contract_id=asset.contract_id,
                    source_type="content_asset",
                    source_id=asset_id,
                    title=asset.title,
                    content=asset.content_body,
                )
            except Exception:
                logger.exception("Knowledge ingestion failed for asset %s", asset_id)
                session.rollback()

        if self.categorizer is not None:
            try:
                categorize_asset(
                    session, self.categorizer, asset, content_type_slug=content_type_slug
                )
                session.commit()
            except Exception:
                logger.exception("Categorization failed for asset %s", asset_id)
                session.rollback()

    def embed_deliverable(self, session: Session, deliverable: Deliverable, text: str) -> None:
        if self.ingestor is None:
            return
        try:
            self.ingestor.ingest(
                session,
                contract_id=deliverable.contract_id,
                source_type="deliverable",
                source_id=deliverable.deliverable_id,
                title=deliverable.title,
                content=text,
            )
        except Exception:
            logger.exception(
                "Knowledge ingestion failed for deliverable %s", deliverable.deliverable_id
            )
            session.rollback()


def finalize_ingested_item(
    session_factory: SessionFactory,
    enricher: Enricher,
    item_id: str,
    *,
    content_type_slug: str | None = None,
) -> None:
    """Enrich an item's asset, then settle the item as ``categorized``.

    Safe to run more than once for the same item: only the first run whose
    CAS succeeds increments the batch's ``completed`` counter.
    """
    session = session_factory()
    try:
        item = IngestionItemRepository(session).get_item(item_id)
        if item is None or item.status != ItemStatus.asset_created:
            logger.info("Item %s not awaiting enrichment; skipping", item_id)
            return
        batch_id = item.batch_id
        asset = session.get(ContentAsset, item.asset_id) if item.asset_id else None

        if asset is not None:
            enricher.enrich_asset(session, asset, content_type_slug=content_type_slug)

        settle_item(
            session,
            item_id,
            batch_id,
            ItemStatus.categorized,
            expected=[ItemStatus.asset_created],
        )
    except Exception:
        logger.exception("Finalizing item %s failed", item_id)
        session.rollback()
    finally:
        session.close()


def embed_deliverable(
    session_factory: SessionFactory, enricher: Enricher, deliverable_id: str, text: str
) -> None:
    session = session_factory()
    try:
        deliverable = session.get(Deliverable, deliverable_id)
        if deliverable is None:
            return
        enricher.embed_deliverable(session, deliverable, text)
    finally:
        session.close()
