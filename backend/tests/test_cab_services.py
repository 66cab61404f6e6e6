import pytest

from tripdesk.cab_agreements.routes import router as agreement_router
from tripdesk.cab_services.routes import router as cab_service_router

from conftest import FakePrisma, make_client, make_user


@pytest.fixture
def db():
    db = FakePrisma()
    db.cabservice.add(id="cab-1", name="City Cabs", code="CITY", primary_contact_name="Nuwan")
    db.vehicle.add(id="v1", registration_number="CAB-1", cab_service_id="cab-1")
    db.vehicle.add(id="v2", registration_number="CAB-2", cab_service_id="cab-1", deleted_at="2026-01-01")
    return db


@pytest.fixture
def client(db):
    return make_client([cab_service_router, agreement_router], db, make_user())


def _agreement(**overrides):
    payload = {
        "cab_service_id": "cab-1",
        "agreement_number": "AGR-2026-001",
        "title": "Airport transfers",
        "start_date": "2026-01-01T00:00:00Z",
        "end_date": "2026-12-31T00:00:00Z",
        "contract_value": 1200000,
    }
    payload.update(overrides)
    return payload


def test_create_cab_service_normalises_code(client):
    response = client.post(
        "/cab-services",
        json={
            "name": "Island Rides",
            "code": " island rides ",
            "primary_contact_phone": "+94771234567",
            "service_areas": ["Colombo", "Gampaha"],
            "address_city": "Colombo",
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["code"] == "ISLAND_RIDES"
    assert body["status"] == "Active"
    assert body["primaryContact"]["phone"] == "+94771234567"
    assert body["address"]["city"] == "Colombo"
    assert body["serviceAreas"] == ["Colombo", "Gampaha"]


def test_cab_service_phone_must_be_sri_lankan(client):
    response = client.post("/cab-services", json={"name": "Bad", "code": "BAD", "primary_contact_phone": "0771234567"})
    assert response.status_code == 422

    blank = client.post("/cab-services", json={"name": "Blank", "code": "BLANK", "primary_contact_phone": ""})
    assert blank.status_code == 201


def test_cab_service_duplicate_code(client):
    assert client.post("/cab-services", json={"name": "Again", "code": "city"}).status_code == 409


def test_list_counts_live_vehicles_and_hides_deleted(client, db):
    db.cabservice.add(id="cab-old", name="Old Cabs", code="OLD", deleted_at="2025-01-01")

    body = client.get("/cab-services", params={"search": "nuwan"}).json()
    assert [s["id"] for s in body["cabServices"]] == ["cab-1"]
    assert body["cabServices"][0]["vehicleCount"] == 1

    assert client.get("/cab-services").json()["total"] == 1
    assert client.get("/cab-services/cab-old").status_code == 404


def test_soft_delete_cab_service(client, db):
    assert client.delete("/cab-services/cab-1").status_code == 204
    record = db.cabservice.get("cab-1")
    assert record["deleted_at"] is not None
    assert record["status"] == "Inactive"
    assert client.get("/cab-services/cab-1").status_code == 404


def test_non_admin_cannot_write(db):
    client = make_client(cab_service_router, db, make_user("EMPLOYEE", "emp-1"))
    assert client.post("/cab-services", json={"name": "X", "code": "X"}).status_code == 403
    assert client.get("/cab-services").status_code == 200


def test_create_agreement(client):
    response = client.post("/cab-agreements", json=_agreement())

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "Draft"
    assert body["cabService"]["name"] == "City Cabs"
    assert body["contractValue"] == 1200000

    assert client.post("/cab-agreements", json=_agreement()).status_code == 409


def test_agreement_period_validation(client):
    backwards = _agreement(start_date="2026-06-01T00:00:00Z", end_date="2026-05-01T00:00:00Z")
    assert client.post("/cab-agreements", json=backwards).status_code == 422

    agreement_id = client.post("/cab-agreements", json=_agreement()).json()["id"]
    response = client.put(f"/cab-agreements/{agreement_id}", json={"end_date": "2025-12-01T00:00:00Z"})
    assert response.status_code == 400
    assert response.json()["detail"] == "End date must be on or after the start date"


def test_agreement_requires_live_cab_service(client, db):
    db.cabservice.get("cab-1")["deleted_at"] = "2026-02-01"
    response = client.post("/cab-agreements", json=_agreement())
    assert response.status_code == 404
    assert response.json()["detail"] == "Cab service not found"


def test_agreement_update_list_and_soft_delete(client):
    agreement_id = client.post("/cab-agreements", json=_agreement()).json()["id"]
    client.post("/cab-agreements", json=_agreement(agreement_number="AGR-2026-002", title="Staff shuttle"))

    updated = client.put(f"/cab-agreements/{agreement_id}", json={"status": "Active", "sla_availability_percentage": 99.5})
    assert updated.json()["status"] == "Active"
    assert updated.json()["sla"]["availabilityPercentage"] == 99.5

    active = client.get("/cab-agreements", params={"status": "Active"}).json()
    assert [a["id"] for a in active["agreements"]] == [agreement_id]
    searched = client.get("/cab-agreements", params={"search": "shuttle"}).json()
    assert [a["agreementNumber"] for a in searched["agreements"]] == ["AGR-2026-002"]

    assert client.delete(f"/cab-agreements/{agreement_id}").status_code == 204
    assert client.get(f"/cab-agreements/{agreement_id}").status_code == 404
    assert client.get("/cab-agreements").json()["total"] == 1
