"""
Shared test fixtures for job-relay.

Provides:
- engine / session_factory / db_session: In-memory SQLite with all tables
- worker_client: Mock WorkerClient (no network)
- dispatcher: Records background tasks so tests can run them explicitly
- seed_batch / seed_deliverable: Row factories
- client: FastAPI TestClient with DB, worker and enrichment overrides
"""

import itertools
import os

# Force sqlite and known secrets for tests; must be set before any job_relay imports.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["WORKER_API_KEY"] = "test-worker-key"
os.environ["API_KEY"] = ""

from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import job_relay.entities  # noqa: F401  registers every table on Base.metadata
from job_relay.core.worker_client import WorkerClient
from job_relay.dtos.webhook_dto import SubmitJobResponse
from job_relay.entities.base import Base
from job_relay.entities.deliverable import Deliverable
from job_relay.repositories.ingestion_batch_repo import IngestionBatchRepository
from job_relay.repositories.ingestion_item_repo import IngestionItemRepository
from job_relay.services.enrichment import Enricher


class RecordingDispatcher:
    """Stand-in for BackgroundTasks.add_task that runs tasks on demand."""

    def __init__(self):
        self.tasks = []

    def __call__(self, func, *args, **kwargs):
        self.tasks.append((func, args, kwargs))

    def run_all(self):
        tasks, self.tasks = self.tasks, []
        for func, args, kwargs in tasks:
            func(*args, **kwargs)
        return len(tasks)


@pytest.fixture
def engine():
    """In-memory SQLite for unit tests. Never hits production DB."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def worker_client():
    client = Mock(spec=WorkerClient)
    counter = itertools.count(1)

    def _ack(*args, **kwargs):
        n = next(counter)
        return SubmitJobResponse(job_id=f"job-{n}", run_id=f"run-{n}")

    client.submit_blog_scrape.side_effect = _ack
    client.submit_deliverable.side_effect = _ack
    return client


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def enricher():
    return Enricher()


@pytest.fixture
def seed_batch(db_session):
    """Create a batch with one submitted item per URL; returns (batch, items)."""

    def _seed(urls, contract_id="contract-1", options=None, with_runs=True):
        batch = IngestionBatchRepository(db_session).create_batch(
            contract_id, len(urls), options=options, commit=False
        )
        items_repo = IngestionItemRepository(db_session)
        items = items_repo.create_items(batch.batch_id, contract_id, urls, commit=False)
        db_session.commit()
        if with_runs:
            for n, item in enumerate(items, start=1):
                items_repo.record_submission(item.item_id, f"job-{n}", f"run-{n}")
        return batch, items

    return _seed


@pytest.fixture
def seed_deliverable(db_session):
    def _seed(
        deliverable_type="research",
        contract_id="contract-1",
        generation=None,
        content_structured=None,
        title="Q3 research",
    ):
        deliverable = Deliverable(
            contract_id=contract_id,
            title=title,
            deliverable_type=deliverable_type,
            content_structured=content_structured,
            metadata_={"generation": generation} if generation else None,
        )
        db_session.add(deliverable)
        db_session.commit()
        return deliverable

    return _seed


@pytest.fixture
def client(db_session: Session, session_factory, worker_client, enricher):
    """FastAPI TestClient with DB, worker and enrichment dependencies overridden."""
    from fastapi.testclient import TestClient

    from job_relay.core.database import get_db, get_session_factory
    from job_relay.core.dependencies import get_enricher, get_worker_client
    from job_relay.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_worker_client] = lambda: worker_client
    app.dependency_overrides[get_enricher] = lambda: enricher
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
    app.dependency_overrides.clear()
