"""
Service for bulk URL ingestion.

Architecture:
    IngestionSubmitter -> ContentAssetRepository   (duplicate detection)
    IngestionSubmitter -> IngestionBatchRepository (batch row, counters)
    IngestionSubmitter -> IngestionItemRepository  (one row per URL)
    IngestionSubmitter -> WorkerClient             (one scrape job per URL)

Lifecycle:
    The batch and its items are committed before any submission is made,
    so a callback can never arrive for a row that does not exist yet.
    Submissions run in a bounded thread pool; results are written back on
    the calling thread as they complete. A failed submission is terminal
    for its item and is counted like any other failure. The caller gets
    the batch id back immediately; results arrive later via callbacks.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any, Iterable

from sqlalchemy.orm import Session

from job_relay.core.exceptions import WorkerClientError
from job_relay.core.worker_client import WorkerClient
from job_relay.dtos.ingestion_dto import BulkIngestResult
from job_relay.dtos.webhook_dto import SubmitJobResponse
from job_relay.entities.ingestion_batch import IngestionBatch
from job_relay.entities.ingestion_item import IngestionItem
from job_relay.repositories.content_asset_repo import ContentAssetRepository
from job_relay.repositories.ingestion_batch_repo import IngestionBatchRepository
from job_relay.repositories.ingestion_item_repo import IngestionItemRepository
from job_relay.services.item_outcomes import fail_item

logger = logging.getLogger(__name__)


def dedupe_urls(urls: Iterable[str]) -> list[str]:
    """
    Trim and de-duplicate URLs case-insensitively.

    The first spelling of each URL wins; blank entries are dropped.

    Args:
        urls: Raw URLs as supplied by the caller

    Returns:
        Unique, trimmed URLs in input order
    """
    seen: set[str] = set()
    unique: list[str] = []
    for raw in urls:
        url = raw.strip()
        key = url.lower()
        if not url or key in seen:
            continue
        seen.add(key)
        unique.append(url)
    return unique


class IngestionSubmitter:
    """
    Creates ingestion batches and submits one scrape job per new URL.

    Handles:
    - Case-insensitive de-duplication, within the request and against
      assets that already exist for the contract
    - Batch and item creation in a single commit
    - Bounded-parallel submission with per-item failure recording
    """

    def __init__(
        self, session: Session, worker_client: WorkerClient, *, max_workers: int = 4
    ) -> None:
        self.session = session
        self.worker_client = worker_client
        self.max_workers = max(1, max_workers)
        self.assets = ContentAssetRepository(session)
        self.batches = IngestionBatchRepository(session)
        self.items = IngestionItemRepository(session)

    def submit_bulk_ingestion(
        self,
        contract_id: str,
        urls: list[str],
        *,
        options: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> BulkIngestResult:
        """
        Create a batch for the new URLs and submit a scrape job for each.

        Args:
            contract_id: Owning contract
            urls: Raw URLs (may contain duplicates, whitespace, mixed case)
            options: Batch options applied to every created asset
            created_by: Requesting user, if known

        Returns:
            BulkIngestResult with the batch id, counts and skipped URLs
        """
        unique = dedupe_urls(urls)
        existing = self.assets.find_existing_urls(contract_id, unique)
        skipped = [u for u in unique if u.lower() in existing]
        new_urls = [u for u in unique if u.lower() not in existing]

        if not new_urls:
            batch = self.batches.create_batch(
                contract_id, 0, options=options, created_by=created_by
            )
            logger.info(
                "Batch %s for contract %s has no new URLs (%d skipped)",
                batch.batch_id,
                contract_id,
                len(skipped),
            )
            return BulkIngestResult(
                batch_id=batch.batch_id, total=0, submitted=0, skipped_duplicates=skipped
            )

        batch = self.batches.create_batch(
            contract_id, len(new_urls), options=options, created_by=created_by, commit=False
        )
        items = self.items.create_items(batch.batch_id, contract_id, new_urls, commit=False)
        self.session.commit()

        batch_id = batch.batch_id
        logger.info(
            "Batch %s created for contract %s: %d URLs, %d skipped",
            batch_id,
            contract_id,
            len(new_urls),
            len(skipped),
        )

        submitted = self._submit_items(batch, items)
        return BulkIngestResult(
            batch_id=batch_id,
            total=len(new_urls),
            submitted=submitted,
            skipped_duplicates=skipped,
        )

    def _submit_items(self, batch: IngestionBatch, items: list[IngestionItem]) -> int:
        batch_id, contract_id = batch.batch_id, batch.contract_id
        jobs = [(item.item_id, item.url) for item in items]
        submitted = 0

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(jobs))) as pool:
            futures: dict[Future[SubmitJobResponse], str] = {
                pool.submit(
                    self.worker_client.submit_blog_scrape,
                    url,
                    {"item_id": item_id, "batch_id": batch_id, "contract_id": contract_id},
                ): item_id
                for item_id, url in jobs
            }
            for future in as_completed(futures):
                item_id = futures[future]
                try:
                    ack = future.result()
                except WorkerClientError as e:
                    self._record_submission_failure(item_id, batch_id, str(e))
                    continue
                except Exception as e:
                    logger.exception("Unexpected error submitting item %s", item_id)
                    self._record_submission_failure(item_id, batch_id, str(e))
                    continue

                self.items.record_submission(item_id, ack.job_id, ack.run_id)
                submitted += 1

        logger.info("Batch %s: %d of %d submitted", batch_id, submitted, len(jobs))
        return submitted

    def _record_submission_failure(self, item_id: str, batch_id: str, error: str) -> None:
        logger.warning("Submission failed for item %s: %s", item_id, error)
        fail_item(self.session, item_id, batch_id, f"Submission failed: {error}")
