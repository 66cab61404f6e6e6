import pytest
from fastapi.testclient import TestClient

from tripdesk.db import prisma_client

from conftest import FakePrisma


@pytest.fixture
def shared_db():
    db = FakePrisma()
    prisma_client.set_client(db)
    yield db
    prisma_client.set_client(None)


def test_lifespan_connects_and_serves_health(shared_db):
    from main import app

    with TestClient(app) as client:
        assert shared_db.connected
        assert client.get("/").json() == {"message": "TripDesk fleet and trip management API"}
        health = client.get("/health").json()
        assert health["status"] == "ok"
        assert health["timestamp"]

    assert not shared_db.connected


def test_protected_routes_reject_anonymous_requests(shared_db):
    from main import app

    with TestClient(app) as client:
        response = client.get("/trip-requests")

    assert response.status_code == 401
