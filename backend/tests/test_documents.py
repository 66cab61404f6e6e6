from datetime import timedelta

import pytest

from tripdesk.common.utils import utcnow
from tripdesk.documents import services
from tripdesk.documents.routes import driver_router, vehicle_router

from conftest import FakePrisma, make_client, make_user


@pytest.fixture
def db():
    db = FakePrisma()
    db.vehicle.add(id="v1", registration_number="CAB-1234", make="Toyota", model="HiAce")
    db.driver.add(id="d1", first_name="Sunil", last_name="Perera", license_number="B1")
    return db


@pytest.fixture
def client(db):
    return make_client([vehicle_router, driver_router], db, make_user())


def test_is_expired_compares_against_today():
    assert services.is_expired({"expiry_date": utcnow() - timedelta(days=2)})
    assert not services.is_expired({"expiry_date": utcnow() + timedelta(days=2)})
    assert not services.is_expired({})


def test_vehicle_upload_stores_file(client, db, tmp_path, monkeypatch):
    monkeypatch.setattr(services.settings, "upload_dir", str(tmp_path))

    response = client.post(
        "/vehicle-documents",
        data={"vehicle_id": "v1", "document_type": "Insurance", "document_number": "POL-1"},
        files={"file": ("policy.pdf", b"%PDF-1.4 test", "application/pdf")},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["entity_type"] == "VEHICLE"
    assert body["file_name"] == "policy.pdf"
    assert body["file_size"] == len(b"%PDF-1.4 test")
    assert body["status"] == "Valid"
    stored = list((tmp_path / "vehicles").iterdir())
    assert len(stored) == 1
    assert stored[0].name.endswith("_policy.pdf")
    assert stored[0].read_bytes() == b"%PDF-1.4 test"


def test_vehicle_upload_requires_existing_vehicle(client, tmp_path, monkeypatch):
    monkeypatch.setattr(services.settings, "upload_dir", str(tmp_path))

    response = client.post(
        "/vehicle-documents",
        data={"vehicle_id": "ghost", "document_type": "Insurance"},
        files={"file": ("policy.pdf", b"x", "application/pdf")},
    )

    assert response.status_code == 404
    assert not (tmp_path / "vehicles").exists()


def test_vehicle_listing_merges_vehicle_details(client, db):
    db.document.add(id="doc-1", entity_type="VEHICLE", entity_id="v1", document_type="Revenue License",
                    expiry_date=utcnow() - timedelta(days=1))
    db.document.add(id="doc-2", entity_type="DRIVER", entity_id="d1", document_type="License")

    body = client.get("/vehicle-documents").json()

    assert [d["id"] for d in body] == ["doc-1"]
    assert body[0]["vehicleRegistration"] == "CAB-1234"
    assert body[0]["vehicleMake"] == "Toyota"
    assert body[0]["isExpired"] is True
    assert [d["id"] for d in client.get("/vehicle-documents/vehicle/v1").json()] == ["doc-1"]


def test_driver_documents_crud(client, db):
    created = client.post(
        "/driver-documents",
        json={"driver_id": "d1", "document_type": "License", "file_name": "lic.png", "file_path": "/files/lic.png"},
    )
    assert created.status_code == 201
    doc_id = created.json()["id"]

    listing = client.get("/driver-documents").json()
    assert listing[0]["driverName"] == "Sunil Perera"

    missing_driver = client.post(
        "/driver-documents",
        json={"driver_id": "ghost", "document_type": "License", "file_name": "a", "file_path": "b"},
    )
    assert missing_driver.status_code == 404

    assert client.delete(f"/vehicle-documents/{doc_id}").status_code == 404
    assert client.delete(f"/driver-documents/{doc_id}").json() == {"message": "Document deleted successfully"}
    assert client.get("/driver-documents/driver/d1").json() == []


@pytest.mark.asyncio
async def test_expire_documents_flags_only_valid_past_due(db):
    now = utcnow()
    db.document.add(id="old", entity_type="VEHICLE", entity_id="v1", document_type="A", expiry_date=now - timedelta(days=1))
    db.document.add(id="new", entity_type="VEHICLE", entity_id="v1", document_type="B", expiry_date=now + timedelta(days=30))
    db.document.add(id="gone", entity_type="VEHICLE", entity_id="v1", document_type="C",
                    expiry_date=now - timedelta(days=5), deleted_at=now)

    assert await services.expire_documents(db) == 1
    assert db.document.get("old")["status"] == "Expired"
    assert db.document.get("new")["status"] == "Valid"
    assert db.document.get("gone")["status"] == "Valid"
    assert await services.expire_documents(db) == 0
