"""Shared test fixtures and configuration for the AgriTrace test suite."""

import os

# Must be set before api.database creates its engine
os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL", "sqlite://")
os.environ["RUN_MIGRATIONS"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from api.database import Base, SessionLocal, engine, get_db  # noqa: E402
from ledger.models import ActorProfile  # noqa: E402
from ledger.store import InMemoryLedgerStore  # noqa: E402

FARMER_DID = "did:agritrace:farmer-ramesh"
TRANSPORTER_DID = "did:agritrace:transporter-fastlog"
RETAILER_DID = "did:agritrace:retailer-freshmart"


@pytest.fixture()
def profiles():
    return [
        ActorProfile(
            did=FARMER_DID, role="FARMER", name="Ramesh Patil",
            display_name="Green Valley Farms", address="Nashik, Maharashtra", trust_score=4.6,
        ),
        ActorProfile(
            did=TRANSPORTER_DID, role="TRANSPORTER", name="Suresh Kumar",
            display_name="FastLog Cold Chain", address="Pune, Maharashtra",
        ),
        ActorProfile(
            did=RETAILER_DID, role="RETAILER", name="Anita Shah",
            display_name="FreshMart", address="Connaught Place, Delhi",
        ),
    ]


@pytest.fixture()
def memory_store(profiles):
    """In-process ledger store seeded with one actor per role."""
    return InMemoryLedgerStore(profiles=profiles)


@pytest.fixture()
def db_session():
    """Fresh schema per test on the in-memory SQLite engine."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db_session):
    """TestClient bound to the test session. Lifespan (migrations) is not run."""
    from api.main import app

    app.dependency_overrides[get_db] = lambda: db_session
    yield TestClient(app)
    app.dependency_overrides.clear()
