"""
Tests for settling items when several handlers write to one batch at once.

These run against a file-backed SQLite database so that each thread holds
its own connection and transaction.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import job_relay.entities  # noqa: F401
from job_relay.core.state_machine import ItemStatus
from job_relay.entities.base import Base
from job_relay.repositories.ingestion_batch_repo import IngestionBatchRepository
from job_relay.repositories.ingestion_item_repo import IngestionItemRepository
from job_relay.services.item_outcomes import fail_item, settle_item


@pytest.fixture
def file_sessions(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'relay.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


def _seed(factory, count):
    """Create a batch whose items all have their asset and await enrichment."""
    session = factory()
    batch = IngestionBatchRepository(session).create_batch("contract-1", count, commit=False)
    items_repo = IngestionItemRepository(session)
    items = items_repo.create_items(
        batch.batch_id, "contract-1", [f"https://a.com/{n}" for n in range(count)], commit=False
    )
    session.commit()
    item_ids = [item.item_id for item in items]
    for item_id in item_ids:
        items_repo.transition(item_id, ItemStatus.scraped)
        items_repo.transition(item_id, ItemStatus.asset_created)
    batch_id = batch.batch_id
    session.close()
    return batch_id, item_ids


def _settle_together(factory, batch_id, jobs):
    """Run every (item_id, target) settle on its own thread and session."""
    barrier = threading.Barrier(len(jobs))

    def _run(job):
        item_id, target = job
        session = factory()
        try:
            barrier.wait()
            if target == ItemStatus.failed:
                return fail_item(session, item_id, batch_id, "enrichment failed")
            return settle_item(session, item_id, batch_id, target)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(jobs)) as pool:
        return list(pool.map(_run, jobs))


def _batch(factory, batch_id):
    session = factory()
    try:
        return IngestionBatchRepository(session).get_by_id(batch_id, fresh=True)
    finally:
        session.close()


class TestConcurrentSettle:
    def test_two_items_settled_at_once_are_both_counted(self, file_sessions):
        batch_id, item_ids = _seed(file_sessions, 2)

        results = _settle_together(
            file_sessions, batch_id, [(item_id, ItemStatus.categorized) for item_id in item_ids]
        )

        assert results == [True, True]
        batch = _batch(file_sessions, batch_id)
        assert batch.completed == 2
        assert batch.completed + batch.failed == batch.total
        assert batch.status == "completed"
        assert batch.completed_at is not None

    def test_mixed_outcomes_complete_with_errors(self, file_sessions):
        batch_id, item_ids = _seed(file_sessions, 4)
        targets = [ItemStatus.categorized, ItemStatus.failed] * 2

        _settle_together(file_sessions, batch_id, list(zip(item_ids, targets)))

        batch = _batch(file_sessions, batch_id)
        assert (batch.completed, batch.failed) == (2, 2)
        assert batch.status == "completed_with_errors"

    def test_same_item_settled_twice_is_counted_once(self, file_sessions):
        batch_id, item_ids = _seed(file_sessions, 2)

        results = _settle_together(
            file_sessions,
            batch_id,
            [(item_ids[0], ItemStatus.categorized), (item_ids[0], ItemStatus.categorized)],
        )

        assert sorted(results) == [False, True]
        batch = _batch(file_sessions, batch_id)
        assert batch.completed == 1
        assert batch.status == "in_progress"
