"""
Applies scrape callbacks to ingestion items.

Flow for one delivery:
    1. idempotency gate   - unknown or terminal item -> acknowledge, no-op
    2. failure branch     - CAS to failed, count, completion check
    3. success branch     - validate output; on problems fall back to (2).
                            Otherwise, in one transaction: CAS submitted ->
                            scraped, create the asset, CAS scraped ->
                            asset_created. Enrichment is then dispatched and
                            settles the item as categorized later.

A store error anywhere rolls the transaction back and propagates, so the
worker receives a 5xx and retries against an unchanged item.
"""

from __future__ import annotations

import logging
from datetime import date

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from job_relay.core.database import SessionFactory
from job_relay.core.exceptions import MalformedCallbackError
from job_relay.core.state_machine import (
    ItemStatus,
    WorkerOutcome,
    classify_worker_status,
    is_item_terminal,
)
from job_relay.dtos.webhook_dto import CallbackAck, ScrapeOutput, WorkerCallbackPayload
from job_relay.entities.content_asset import ContentAsset
from job_relay.entities.ingestion_item import IngestionItem
from job_relay.repositories.content_asset_repo import ContentAssetRepository
from job_relay.repositories.ingestion_batch_repo import IngestionBatchRepository
from job_relay.repositories.ingestion_item_repo import IngestionItemRepository
from job_relay.services.enrichment import Dispatch, Enricher, finalize_ingested_item
from job_relay.services.item_outcomes import fail_item

logger = logging.getLogger(__name__)


def require_routing_fields(payload: WorkerCallbackPayload, id_key: str) -> str:
    """Return the entity id from *payload* or raise MalformedCallbackError."""
    if not payload.job_id:
        raise MalformedCallbackError("Missing job_id")
    if not payload.status:
        raise MalformedCallbackError("Missing status")
    entity_id = payload.identifier(id_key)
    if not entity_id:
        raise MalformedCallbackError(f"Missing {id_key} in metadata")
    return entity_id


def describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "output"
    return f"Invalid output: {location}: {first.get('msg')}"


def parse_published_date(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def _asset_metadata(batch_id: str, item_id: str, output: ScrapeOutput) -> dict:
    metadata = {"source": "bulk_ingest", "batch_id": batch_id, "item_id": item_id}
    optional = {
        "scraped_url": output.url,
        "author": output.author,
        "word_count": output.word_count,
    }
    metadata.update({key: value for key, value in optional.items() if value is not None})
    return metadata


class IngestionCallbackHandler:
    """Callback handler for ingestion items; also used by reconciliation."""

    def __init__(
        self,
        session: Session,
        *,
        session_factory: SessionFactory,
        enricher: Enricher,
        dispatch: Dispatch,
        default_asset_status: str = "published",
    ) -> None:
        self.session = session
        self.session_factory = session_factory
        self.enricher = enricher
        self.dispatch = dispatch
        self.default_asset_status = default_asset_status
        self.items = IngestionItemRepository(session)
        self.batches = IngestionBatchRepository(session)
        self.assets = ContentAssetRepository(session)

    def handle(self, payload: WorkerCallbackPayload) -> CallbackAck:
        """Entry point for ``scrape-complete`` deliveries."""
        item_id = require_routing_fields(payload, "item_id")

        item = self.items.get_item(item_id)
        if item is None:
            logger.warning("Callback for unknown item %s (job %s)", item_id, payload.job_id)
            return CallbackAck(status="skipped", detail="item not found")

        if is_item_terminal(item.status):
            logger.info("Item %s already %s; ignoring duplicate callback", item_id, item.status)
            return CallbackAck(
                status="skipped", detail="already processed", entity_status=item.status
            )

        if (
            item.status == ItemStatus.asset_created
            and classify_worker_status(payload.status) == WorkerOutcome.completed
        ):
            self.resume_enrichment(item)
            return CallbackAck(
                status="skipped", detail="asset already created", entity_status=item.status
            )

        return self.apply(item, payload)

    def apply(self, item: IngestionItem, payload: WorkerCallbackPayload) -> CallbackAck:
        """Route a finished job's result to the success or failure branch."""
        outcome = classify_worker_status(payload.status)
        if outcome == WorkerOutcome.failed:
            return self.apply_failure(item, payload.error or "Scrape failed (unknown error)")

        if outcome != WorkerOutcome.completed or payload.output is None:
            return self.apply_failure(
                item,
                f"Unexpected callback: status={payload.status}, "
                f"has_output={payload.output is not None}",
            )

        try:
            output = ScrapeOutput.model_validate(payload.output)
        except ValidationError as e:
            return self.apply_failure(item, describe_validation_error(e))

        return self.apply_success(item, output)

    def apply_failure(self, item: IngestionItem, error: str) -> CallbackAck:
        item_id = item.item_id
        if fail_item(self.session, item_id, item.batch_id, error):
            logger.warning("Item %s failed: %s", item_id, error)
            return CallbackAck(status="applied", entity_status=ItemStatus.failed)
        return CallbackAck(status="skipped", detail="already processed")

    def apply_success(self, item: IngestionItem, output: ScrapeOutput) -> CallbackAck:
        item_id, batch_id, url = item.item_id, item.batch_id, item.url
        batch = self.batches.get_by_id(batch_id)
        options = (batch.options if batch else None) or {}

        try:
            if not self.items.transition(
                item_id, ItemStatus.scraped, expected=[ItemStatus.submitted], commit=False
            ):
                self.session.rollback()
                return CallbackAck(status="skipped", detail="already processed")

            asset = self.assets.create(
                ContentAsset(
                    contract_id=item.contract_id,
                    title=output.title or url,
                    description=output.meta_description,
                    content_body=output.content_markdown,
                    external_url=url,
                    status=options.get("asset_status") or self.default_asset_status,
                    published_date=parse_published_date(output.published_date),
                    metadata_=_asset_metadata(batch_id, item_id, output),
                    created_by=batch.created_by if batch else None,
                ),
                commit=False,
            )
            self.items.transition(
                item_id,
                ItemStatus.asset_created,
                expected=[ItemStatus.scraped],
                commit=False,
                asset_id=asset.asset_id,
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

        logger.info("Item %s asset %s created from %s", item_id, asset.asset_id, url)
        self.dispatch(
            finalize_ingested_item,
            self.session_factory,
            self.enricher,
            item_id,
            content_type_slug=options.get("content_type_slug"),
        )
        return CallbackAck(status="applied", entity_status=ItemStatus.asset_created)

    def resume_enrichment(self, item: IngestionItem) -> None:
        """Re-dispatch enrichment for an item whose asset already exists."""
        batch = self.batches.get_by_id(item.batch_id)
        options = (batch.options if batch else None) or {}
        self.dispatch(
            finalize_ingested_item,
            self.session_factory,
            self.enricher,
            item.item_id,
            content_type_slug=options.get("content_type_slug"),
        )
