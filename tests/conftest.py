"""Pytest configuration and shared fixtures.

Database fixtures run against a file-backed SQLite database per test, so
that several sessions can see each other's commits (needed by the
concurrency tests).
"""

import uuid
from datetime import datetime

import pytest
from sqlalchemy.orm import sessionmaker

from opsflow.core.approval.service import ApprovalService
from opsflow.core.config import Settings
from opsflow.db.base import Base
from opsflow.db.session import build_engine
from opsflow.services.catalog import TemplateCatalogService
from opsflow.services.delegations import DelegationService
from opsflow.services.directory import StaticRoleDirectory
from opsflow.services.notifications import EventPublisher

import opsflow.db.models  # noqa: F401  (registers the tables)


ROLE_HOLDERS = {
    "manager": "U1",
    "director": "D1",
    "finance": "F1",
    "cfo": "C1",
    "legal": "L1",
    "hr": "H1",
    "security": "S1",
}

SUBMITTED_AT = datetime(2024, 3, 5, 9, 30)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'opsflow-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def org_id():
    return uuid.uuid4()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", decision_max_attempts=3)


@pytest.fixture
def directory():
    return StaticRoleDirectory(ROLE_HOLDERS)


@pytest.fixture
def events():
    """Events delivered to a recording sink."""
    return []


@pytest.fixture
def publisher(events):
    return EventPublisher([events.append])


@pytest.fixture
def approval_service(db_session, org_id, directory, publisher, settings):
    return ApprovalService(
        db_session, org_id, directory=directory, publisher=publisher, settings=settings,
    )


@pytest.fixture
def catalog(db_session, org_id):
    return TemplateCatalogService(db_session, org_id)


@pytest.fixture
def delegations(db_session, org_id):
    return DelegationService(db_session, org_id)


@pytest.fixture
def client(session_factory, directory, publisher):
    """API client bound to the test database and directory."""
    from fastapi.testclient import TestClient

    from opsflow.api.deps import get_db, get_directory, get_publisher
    from opsflow.api.main import app

    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_directory] = lambda: directory
    app.dependency_overrides[get_publisher] = lambda: publisher
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def org_headers(org_id):
    return {"X-Org-ID": str(org_id)}
