"""
Pytest configuration and fixtures for testing.

This file provides reusable test fixtures for:
- Database setup/teardown (in-memory SQLite)
- Blob storage rooted in a temporary directory
- FastAPI test client
- A recording stand-in for the Celery run dispatcher
- A scripted Extraction Service and workflow engine factory
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db, utcnow
from app.core.exceptions import TransientProcessingError
from app.core.storage import LocalStorage, get_storage
from app.models.candidate import Candidate
from app.models.workflow_run import WorkflowRun
from app.services.intake import submit_candidate
from app.workflow.engine import WorkflowEngine
from main import app


# Use in-memory SQLite for testing (fast, isolated)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

SAMPLE_CV = b"""Ada Lovelace
Senior Backend Engineer

Experience
- 7 years building Python services
- Designed and implemented a payments API
- Led a team of four developers

Education
- BSc Computer Science

Skills
Python, FastAPI, PostgreSQL, Docker
"""


class FakeExtractionService:
    """
    Scripted Extraction Service.

    summarize_failures: number of transient failures before the first success,
    or -1 to fail on every call.
    """

    def __init__(self):
        self.summarize_calls = 0
        self.grade_calls = 0
        self.summarize_failures = 0
        self.summary = "Senior backend engineer with 7 years of Python experience."
        self.evals = [
            {"name": "readability", "reason": "Text is clear and well-structured", "value": "yes"},
            {"name": "experience", "reason": "Relevant work experience", "value": "maybe"},
        ]

    def summarize(self, text):
        self.summarize_calls += 1
        if self.summarize_failures < 0 or self.summarize_calls <= self.summarize_failures:
            raise TransientProcessingError("Request timed out.")
        return self.summary

    def grade(self, text):
        self.grade_calls += 1
        return [dict(item) for item in self.evals]


@pytest.fixture
def db_session():
    """
    Create a fresh database session for each test.
    Tables are dropped after the test completes.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "blobs"))


@pytest.fixture
def dispatched(monkeypatch):
    """
    Replace the Celery dispatcher; collects the run ids that would be queued.
    """
    run_ids = []
    monkeypatch.setattr("app.core.celery_utils.dispatch_workflow_run", run_ids.append)
    return run_ids


@pytest.fixture
def client(db_session, storage, dispatched):
    """
    FastAPI test client with overridden database and storage dependencies.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def extractor():
    return FakeExtractionService()


@pytest.fixture
def session_factory(db_session):
    """Opens extra sessions on the test database, as a second process would."""
    return TestingSessionLocal


@pytest.fixture
def sleeps():
    """Backoff delays requested by the engine, recorded instead of slept."""
    return []


@pytest.fixture
def make_engine(db_session, storage, extractor, sleeps):
    def _make(**kwargs):
        kwargs.setdefault("max_attempts", 3)
        kwargs.setdefault("backoff_base", 0.5)
        kwargs.setdefault("backoff_max", 30.0)
        kwargs.setdefault("sleep", sleeps.append)
        return WorkflowEngine(TestingSessionLocal, storage, extractor, **kwargs)
    return _make


@pytest.fixture
def make_candidate(db_session, storage, dispatched):
    """
    Submit a candidate through the intake service.
    Returns (candidate_id, run_id).
    """
    counter = {"n": 0}

    def _make(name=None, surname="Lovelace", email=None, file_name="cv.txt", content=SAMPLE_CV):
        counter["n"] += 1
        candidate, run = submit_candidate(
            db_session,
            storage,
            name=name or f"Ada{counter['n']}",
            surname=surname,
            email=email or f"ada{counter['n']}@example.com",
            file_name=file_name,
            content=content,
        )
        return candidate.id, run.id
    return _make


@pytest.fixture
def sample_cv():
    return SAMPLE_CV


@pytest.fixture
def reload_candidate(db_session):
    """Fetch a candidate as committed by other sessions."""
    def _reload(candidate_id) -> Candidate:
        db_session.expire_all()
        return db_session.query(Candidate).filter(Candidate.id == candidate_id).one()
    return _reload


@pytest.fixture
def backdate_heartbeat(db_session):
    """Age a run's heartbeat so it looks abandoned by its worker."""
    def _backdate(run_id, seconds=3600):
        db_session.query(WorkflowRun).filter(WorkflowRun.id == run_id).update(
            {WorkflowRun.heartbeat_at: utcnow() - timedelta(seconds=seconds)},
            synchronize_session=False,
        )
        db_session.commit()
    return _backdate


@pytest.fixture
def sample_submission():
    """Multipart form fields for a valid submission"""
    return {
        "name": "Grace",
        "surname": "Hopper",
        "email": "grace.hopper@example.com",
        "phone": "+1 555 0100",
    }
