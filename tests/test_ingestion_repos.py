"""
Unit tests for ingestion batch and item repositories.
"""

from datetime import timedelta

import pytest

from job_relay.core.exceptions import InvalidTransitionError
from job_relay.core.state_machine import BatchStatus, ItemStatus
from job_relay.entities.base import utcnow
from job_relay.entities.content_asset import ContentAsset
from job_relay.repositories.content_asset_repo import ContentAssetRepository
from job_relay.repositories.ingestion_batch_repo import IngestionBatchRepository
from job_relay.repositories.ingestion_item_repo import IngestionItemRepository


@pytest.fixture
def batch_repo(db_session):
    return IngestionBatchRepository(db_session)


@pytest.fixture
def item_repo(db_session):
    return IngestionItemRepository(db_session)


class TestIngestionBatchRepository:
    """Test ingestion batch repository functionality."""

    def test_create_batch(self, batch_repo):
        batch = batch_repo.create_batch("contract-1", 3, options={"asset_status": "draft"})

        assert batch.batch_id is not None
        assert batch.status == "in_progress"
        assert batch.total == 3
        assert batch.completed == 0
        assert batch.failed == 0
        assert batch.options == {"asset_status": "draft"}
        assert batch.completed_at is None

    def test_create_empty_batch_is_already_completed(self, batch_repo):
        batch = batch_repo.create_batch("contract-1", 0)

        assert batch.status == "completed"
        assert batch.completed_at is not None

    def test_increment_counter(self, batch_repo):
        batch = batch_repo.create_batch("contract-1", 3)

        assert batch_repo.increment_counter(batch.batch_id, "completed")
        assert batch_repo.increment_counter(batch.batch_id, "failed")
        assert batch_repo.increment_counter(batch.batch_id, "completed")

        fresh = batch_repo.get_by_id(batch.batch_id, fresh=True)
        assert fresh.completed == 2
        assert fresh.failed == 1

    def test_increment_never_overshoots_total(self, batch_repo):
        batch = batch_repo.create_batch("contract-1", 1)

        assert batch_repo.increment_counter(batch.batch_id, "completed")
        assert not batch_repo.increment_counter(batch.batch_id, "failed")

        fresh = batch_repo.get_by_id(batch.batch_id, fresh=True)
        assert fresh.completed + fresh.failed == fresh.total

    def test_increment_missing_batch(self, batch_repo):
        assert not batch_repo.increment_counter("missing", "completed")

    def test_complete_if_finished_waits_for_all_items(self, batch_repo):
        batch = batch_repo.create_batch("contract-1", 2)
        batch_repo.increment_counter(batch.batch_id, "completed")

        assert batch_repo.complete_if_finished(batch.batch_id) is None
        assert batch_repo.get_by_id(batch.batch_id, fresh=True).status == "in_progress"

    def test_complete_if_finished_with_errors(self, batch_repo):
        batch = batch_repo.create_batch("contract-1", 2)
        batch_repo.increment_counter(batch.batch_id, "completed")
        batch_repo.increment_counter(batch.batch_id, "failed")

        assert batch_repo.complete_if_finished(batch.batch_id) == BatchStatus.completed_with_errors
        fresh = batch_repo.get_by_id(batch.batch_id, fresh=True)
        assert fresh.status == "completed_with_errors"
        assert fresh.completed_at is not None

    def test_complete_if_finished_is_idempotent(self, batch_repo):
        batch = batch_repo.create_batch("contract-1", 1)
        batch_repo.increment_counter(batch.batch_id, "completed")

        assert batch_repo.complete_if_finished(batch.batch_id) == BatchStatus.completed
        assert batch_repo.complete_if_finished(batch.batch_id) is None

    def test_list_batches_filters(self, batch_repo):
        batch_repo.create_batch("contract-1", 0)
        batch_repo.create_batch("contract-1", 2)
        batch_repo.create_batch("contract-2", 2)

        assert len(batch_repo.list_batches(contract_id="contract-1")) == 2
        running = batch_repo.list_batches(status="in_progress")
        assert {b.contract_id for b in running} == {"contract-1", "contract-2"}
        assert len(batch_repo.list_batches(contract_id="contract-1", status="completed")) == 1


class TestIngestionItemRepository:
    """Compare-and-set transitions."""

    def test_create_items(self, seed_batch):
        batch, items = seed_batch(["https://a.com", "https://b.com"], with_runs=False)

        assert len(items) == 2
        assert all(item.status == "submitted" for item in items)
        assert {item.batch_id for item in items} == {batch.batch_id}

    def test_transition_wins_once(self, seed_batch, item_repo):
        _, items = seed_batch(["https://a.com"])
        item_id = items[0].item_id

        assert item_repo.transition(item_id, ItemStatus.failed, error="boom")
        assert not item_repo.transition(item_id, ItemStatus.failed, error="again")

        item = item_repo.get_item(item_id)
        assert item.status == "failed"
        assert item.error == "boom"

    def test_transition_respects_expected(self, seed_batch, item_repo):
        _, items = seed_batch(["https://a.com"])
        item_id = items[0].item_id

        assert not item_repo.transition(
            item_id, ItemStatus.categorized, expected=[ItemStatus.asset_created]
        )
        assert item_repo.get_item(item_id).status == "submitted"

    def test_transition_rejects_illegal_expected(self, seed_batch, item_repo):
        _, items = seed_batch(["https://a.com"])

        with pytest.raises(InvalidTransitionError):
            item_repo.transition(
                items[0].item_id, ItemStatus.categorized, expected=[ItemStatus.submitted]
            )

    def test_failed_item_cannot_be_resurrected(self, seed_batch, item_repo):
        _, items = seed_batch(["https://a.com"])
        item_id = items[0].item_id
        item_repo.transition(item_id, ItemStatus.failed, error="boom")

        assert not item_repo.transition(item_id, ItemStatus.scraped)
        assert item_repo.get_item(item_id).status == "failed"

    def test_record_submission(self, seed_batch, item_repo):
        _, items = seed_batch(["https://a.com"], with_runs=False)
        item_id = items[0].item_id

        item_repo.record_submission(item_id, "job-9", "run-9")

        item = item_repo.get_item(item_id)
        assert item.job_id == "job-9"
        assert item.run_id == "run-9"
        assert item.status == "submitted"

    def test_list_stalled(self, seed_batch, item_repo):
        _, items = seed_batch(["https://a.com", "https://b.com"])
        item_repo.transition(items[1].item_id, ItemStatus.failed, error="boom")

        later = utcnow() + timedelta(minutes=1)
        stalled = item_repo.list_stalled(older_than=later)

        assert [item.url for item in stalled] == ["https://a.com"]
        assert item_repo.list_stalled(older_than=utcnow() - timedelta(hours=1)) == []


class TestContentAssetRepository:
    def test_find_existing_urls_is_case_insensitive(self, db_session):
        db_session.add(
            ContentAsset(
                contract_id="contract-1",
                title="B",
                external_url="https://B.com/post",
            )
        )
        db_session.add(
            ContentAsset(
                contract_id="contract-2",
                title="A",
                external_url="https://a.com",
            )
        )
        db_session.commit()

        found = ContentAssetRepository(db_session).find_existing_urls(
            "contract-1", ["https://b.com/POST", "https://a.com"]
        )

        assert found == {"https://b.com/post"}
