"""
Unit tests for the ingestion callback handler.
"""

from datetime import date
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from job_relay.core.exceptions import MalformedCallbackError
from job_relay.dtos.webhook_dto import WorkerCallbackPayload
from job_relay.entities.content_asset import ContentAsset
from job_relay.repositories.ingestion_batch_repo import IngestionBatchRepository
from job_relay.repositories.ingestion_item_repo import IngestionItemRepository
from job_relay.services.categorization import CategorizationResult
from job_relay.services.enrichment import Enricher
from job_relay.services.ingestion_callback import IngestionCallbackHandler


def _payload(item, status="completed", output="default", error=None, job_id="job-1"):
    if output == "default":
        output = {
            "url": item.url,
            "title": "A post",
            "content_markdown": "# Heading\n\nBody text.",
            "published_date": "2024-05-01T10:00:00Z",
            "author": "Sam",
            "word_count": 3,
        }
    return WorkerCallbackPayload(
        job_id=job_id,
        status=status,
        metadata={"item_id": item.item_id, "batch_id": item.batch_id},
        output=output,
        error=error,
    )


@pytest.fixture
def make_handler(db_session, session_factory, dispatcher):
    def _make(enricher=None):
        return IngestionCallbackHandler(
            db_session,
            session_factory=session_factory,
            enricher=enricher or Enricher(),
            dispatch=dispatcher,
        )

    return _make


@pytest.fixture
def handler(make_handler):
    return make_handler()


def _item(db_session, item_id):
    return IngestionItemRepository(db_session).get_item(item_id)


def _batch(db_session, batch_id):
    return IngestionBatchRepository(db_session).get_by_id(batch_id, fresh=True)


def _asset_count(db_session):
    return db_session.execute(select(func.count()).select_from(ContentAsset)).scalar_one()


class TestSuccessBranch:
    def test_success_creates_asset_and_defers_enrichment(self, db_session, handler, seed_batch, dispatcher):
        batch, items = seed_batch(["https://a.com/post"], options={"asset_status": "draft"})

        ack = handler.handle(_payload(items[0]))

        assert ack.status == "applied"
        assert ack.entity_status == "asset_created"
        item = _item(db_session, items[0].item_id)
        assert item.status == "asset_created"
        asset = db_session.get(ContentAsset, item.asset_id)
        assert asset.external_url == "https://a.com/post"
        assert asset.title == "A post"
        assert asset.status == "draft"
        assert asset.published_date == date(2024, 5, 1)
        assert asset.metadata_["batch_id"] == batch.batch_id
        assert asset.metadata_["author"] == "Sam"
        assert asset.metadata_["word_count"] == 3
        # Counted only once enrichment settles the item.
        assert _batch(db_session, batch.batch_id).completed == 0
        assert len(dispatcher.tasks) == 1

    def test_enrichment_settles_item_and_completes_batch(self, db_session, handler, seed_batch, dispatcher):
        batch, items = seed_batch(["https://a.com"])

        handler.handle(_payload(items[0]))
        dispatcher.run_all()

        assert _item(db_session, items[0].item_id).status == "categorized"
        fresh = _batch(db_session, batch.batch_id)
        assert fresh.completed == 1
        assert fresh.status == "completed"

    def test_default_asset_status_and_title_fallback(self, db_session, handler, seed_batch):
        _, items = seed_batch(["https://a.com"])
        payload = _payload(items[0], output={"content_markdown": "body", "published_date": "soon"})

        handler.handle(payload)

        asset = db_session.get(ContentAsset, _item(db_session, items[0].item_id).asset_id)
        assert asset.status == "published"
        assert asset.title == "https://a.com"
        assert asset.published_date is None
        assert asset.metadata_ == {
            "source": "bulk_ingest",
            "batch_id": items[0].batch_id,
            "item_id": items[0].item_id,
        }


class TestFailureBranch:
    def test_failure_marks_item_and_counts(self, db_session, handler, seed_batch):
        batch, items = seed_batch(["https://a.com", "https://b.com"])

        ack = handler.handle(_payload(items[0], status="failed", output=None, error="404 Not Found"))

        assert ack.status == "applied"
        item = _item(db_session, items[0].item_id)
        assert item.status == "failed"
        assert item.error == "404 Not Found"
        fresh = _batch(db_session, batch.batch_id)
        assert fresh.failed == 1
        assert fresh.status == "in_progress"

    def test_failure_without_error_text(self, db_session, handler, seed_batch):
        _, items = seed_batch(["https://a.com"])

        handler.handle(_payload(items[0], status="fail", output=None))

        assert _item(db_session, items[0].item_id).error == "Scrape failed (unknown error)"


class TestMalformedPayloads:
    def test_completed_without_output_fails_item(self, db_session, handler, seed_batch):
        batch, items = seed_batch(["https://a.com"])

        handler.handle(_payload(items[0], output=None))

        item = _item(db_session, items[0].item_id)
        assert item.status == "failed"
        assert item.error == "Unexpected callback: status=completed, has_output=False"
        fresh = _batch(db_session, batch.batch_id)
        assert fresh.failed == 1
        assert fresh.status == "completed_with_errors"

    def test_unrecognized_status_fails_item(self, db_session, handler, seed_batch):
        _, items = seed_batch(["https://a.com"])

        handler.handle(_payload(items[0], status="exploded"))

        item = _item(db_session, items[0].item_id)
        assert item.status == "failed"
        assert item.error == "Unexpected callback: status=exploded, has_output=True"

    def test_invalid_output_fails_item(self, db_session, handler, seed_batch, dispatcher):
        _, items = seed_batch(["https://a.com"])

        handler.handle(_payload(items[0], output={"title": "no body"}))

        item = _item(db_session, items[0].item_id)
        assert item.status == "failed"
        assert item.error.startswith("Invalid output: content_markdown")
        assert _asset_count(db_session) == 0
        assert dispatcher.tasks == []

    def test_missing_item_id_is_rejected(self, handler):
        payload = WorkerCallbackPayload(job_id="job-1", status="completed", metadata={})

        with pytest.raises(MalformedCallbackError):
            handler.handle(payload)

    def test_missing_status_is_rejected(self, handler, seed_batch):
        _, items = seed_batch(["https://a.com"])
        payload = WorkerCallbackPayload(job_id="job-1", metadata={"item_id": items[0].item_id})

        with pytest.raises(MalformedCallbackError):
            handler.handle(payload)

    def test_unknown_item_is_acknowledged(self, handler):
        payload = WorkerCallbackPayload(
            job_id="job-1", status="completed", metadata={"item_id": "nope"}
        )

        ack = handler.handle(payload)

        assert ack.status == "skipped"
        assert ack.detail == "item not found"


class TestIdempotency:
    def test_duplicate_failure_is_counted_once(self, db_session, handler, seed_batch):
        batch, items = seed_batch(["https://a.com", "https://b.com"])
        payload = _payload(items[0], status="failed", output=None, error="boom")

        first = handler.handle(payload)
        second = handler.handle(payload)

        assert first.status == "applied"
        assert second.status == "skipped"
        assert _batch(db_session, batch.batch_id).failed == 1

    def test_duplicate_success_creates_one_asset(self, db_session, handler, seed_batch, dispatcher):
        batch, items = seed_batch(["https://a.com"])
        payload = _payload(items[0])

        handler.handle(payload)
        second = handler.handle(payload)

        assert second.status == "skipped"
        assert _asset_count(db_session) == 1
        # Enrichment is re-dispatched but can only settle the item once.
        assert dispatcher.run_all() == 2
        fresh = _batch(db_session, batch.batch_id)
        assert fresh.completed == 1
        assert fresh.status == "completed"

    def test_success_after_categorized_is_a_no_op(self, db_session, handler, seed_batch, dispatcher):
        _, items = seed_batch(["https://a.com"])
        handler.handle(_payload(items[0]))
        dispatcher.run_all()

        ack = handler.handle(_payload(items[0]))

        assert ack.status == "skipped"
        assert ack.entity_status == "categorized"
        assert dispatcher.tasks == []

    def test_failure_after_failure_keeps_first_error(self, db_session, handler, seed_batch):
        _, items = seed_batch(["https://a.com"])
        handler.handle(_payload(items[0], status="failed", output=None, error="first"))

        handler.handle(_payload(items[0], status="failed", output=None, error="second"))

        assert _item(db_session, items[0].item_id).error == "first"

    def test_success_never_resurrects_failed_item(self, db_session, handler, seed_batch):
        _, items = seed_batch(["https://a.com"])
        handler.handle(_payload(items[0], status="failed", output=None, error="boom"))

        ack = handler.handle(_payload(items[0]))

        assert ack.status == "skipped"
        assert _item(db_session, items[0].item_id).status == "failed"
        assert _asset_count(db_session) == 0


class TestOutOfOrderDelivery:
    def test_three_items_mixed_outcomes(self, db_session, handler, seed_batch, dispatcher):
        batch, items = seed_batch(["https://a.com", "https://b.com", "https://c.com"])
        a, b, c = items

        handler.handle(_payload(c))
        handler.handle(_payload(a, status="failed", output=None, error="timeout"))
        handler.handle(_payload(b))
        dispatcher.run_all()

        fresh = _batch(db_session, batch.batch_id)
        assert fresh.completed == 2
        assert fresh.failed == 1
        assert fresh.status == "completed_with_errors"
        assert fresh.completed + fresh.failed == fresh.total


class TestEnrichment:
    def test_enrichment_errors_do_not_block_categorized(
        self, db_session, make_handler, seed_batch, dispatcher
    ):
        categorizer = Mock()
        categorizer.categorize.side_effect = RuntimeError("model overloaded")
        ingestor = Mock()
        ingestor.ingest.side_effect = RuntimeError("embedding quota")
        handler = make_handler(Enricher(categorizer=categorizer, ingestor=ingestor))
        batch, items = seed_batch(["https://a.com"])

        handler.handle(_payload(items[0]))
        dispatcher.run_all()

        item = _item(db_session, items[0].item_id)
        assert item.status == "categorized"
        assert db_session.get(ContentAsset, item.asset_id).content_body == "# Heading\n\nBody text."
        assert _batch(db_session, batch.batch_id).status == "completed"

    def test_categorization_is_applied(self, db_session, make_handler, seed_batch, dispatcher):
        categorizer = Mock()
        categorizer.categorize.return_value = CategorizationResult(
            content_type_slug="blog_post",
            metadata={"ai_tags": ["seo"]},
            custom_attributes={"funnel_stage": "top"},
        )
        handler = make_handler(Enricher(categorizer=categorizer))
        _, items = seed_batch(["https://a.com"], options={"content_type_slug": "blog_post"})

        handler.handle(_payload(items[0]))
        dispatcher.run_all()

        item = _item(db_session, items[0].item_id)
        db_session.expire_all()
        asset = db_session.get(ContentAsset, item.asset_id)
        assert asset.metadata_["ai_tags"] == ["seo"]
        assert asset.metadata_["item_id"] == item.item_id
        assert asset.custom_attributes == {"funnel_stage": "top"}
        assert categorizer.categorize.call_args.kwargs["content_type_slug"] == "blog_post"


class TestPersistenceErrors:
    def test_store_error_leaves_item_untouched(self, db_session, handler, seed_batch, dispatcher):
        batch, items = seed_batch(["https://a.com"])

        with patch.object(
            handler.assets, "create", side_effect=OperationalError("INSERT", {}, Exception("db down"))
        ):
            with pytest.raises(OperationalError):
                handler.handle(_payload(items[0]))

        assert _item(db_session, items[0].item_id).status == "submitted"
        assert dispatcher.tasks == []

        # The retried delivery applies cleanly.
        ack = handler.handle(_payload(items[0]))
        assert ack.status == "applied"
        assert _batch(db_session, batch.batch_id).failed == 0
