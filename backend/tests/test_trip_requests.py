from datetime import date, timedelta

import pytest

from tripdesk.core.config import settings
from tripdesk.trip_approvals.routes import router as approval_router
from tripdesk.trip_requests.routes import router
from tripdesk.trip_requests.services import generate_request_number

from conftest import FakePrisma, make_client, make_user


def _payload(**overrides):
    departure = date.today() + timedelta(days=3)
    payload = {
        "tripDetails": {
            "fromLocation": {"address": "Head Office, Colombo", "coordinates": {"lat": 6.9, "lng": 79.8}},
            "toLocation": {"address": "Kandy Branch"},
            "departureDate": departure.isoformat(),
            "departureTime": "08:30",
            "estimatedDistance": 115,
        },
        "purpose": {"category": "Client Meeting", "description": "Quarterly review"},
        "requirements": {
            "passengerCount": 2,
            "passengers": [{"name": "Nimal Silva", "email": "nimal@example.com"}],
        },
        "priority": "High",
        "estimatedCost": 12000,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def db():
    db = FakePrisma()
    db.department.add(id="dept-1", name="Finance", code="FIN")
    db.user.add(id="emp-1", email="emp@example.com", first_name="Kamal", last_name="Fernando", department_id="dept-1")
    db.user.add(id="emp-2", email="other@example.com", first_name="Ruwan", last_name="Jay", department_id="dept-1")
    return db


def test_request_number_format():
    number = generate_request_number()
    prefix, millis, suffix = number.split("-")
    assert prefix == "REQ"
    assert len(millis) == 6 and millis.isdigit()
    assert len(suffix) == 3 and suffix.isdigit()


def test_create_seeds_approval_steps(db):
    employee = make_user("EMPLOYEE", "emp-1", department_id="dept-1")
    client = make_client(router, db, employee)

    response = client.post("/trip-requests", json=_payload())

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "Pending"
    assert body["requestedBy"]["name"] == "Kamal Fernando"
    assert body["requestedBy"]["department"] == "Finance"
    assert body["tripDetails"]["fromLocation"]["coordinates"] == {"lat": 6.9, "lng": 79.8}
    assert body["requirements"]["passengers"][0]["name"] == "Nimal Silva"

    steps = sorted(db.tripapproval.records, key=lambda s: s["approval_level"])
    assert [s["approver_role"] for s in steps] == ["Manager", "Head of Department"]
    assert all(s["status"] == "Pending" for s in steps)
    assert db.transactions == 1


def test_create_above_threshold_adds_finance(db):
    client = make_client(router, db, make_user("EMPLOYEE", "emp-1"))

    response = client.post("/trip-requests", json=_payload(estimatedCost=90000))

    assert response.status_code == 201
    roles = [s["approver_role"] for s in db.tripapproval.records]
    assert roles[-1] == "Finance"


def test_create_without_approval_is_approved(db):
    client = make_client(router, db, make_user("EMPLOYEE", "emp-1"))

    response = client.post("/trip-requests", json=_payload(approvalRequired=False))

    assert response.json()["status"] == "Approved"
    assert db.tripapproval.records == []


def test_create_rejects_return_before_departure(db):
    client = make_client(router, db, make_user("EMPLOYEE", "emp-1"))
    payload = _payload()
    payload["tripDetails"]["isRoundTrip"] = True
    payload["tripDetails"]["returnDate"] = (date.today() - timedelta(days=1)).isoformat()

    assert client.post("/trip-requests", json=payload).status_code == 422


def test_employee_cannot_raise_for_someone_else(db):
    client = make_client(router, db, make_user("EMPLOYEE", "emp-1"))

    response = client.post("/trip-requests", json=_payload(requestedById="emp-2"))

    assert response.status_code == 403


def test_list_scopes_employees_to_their_own_requests(db):
    db.triprequest.add(id="r1", request_number="REQ-1", requested_by_user_id="emp-1", purpose_description="Audit")
    db.triprequest.add(id="r2", request_number="REQ-2", requested_by_user_id="emp-2", purpose_description="Audit")

    own = make_client(router, db, make_user("EMPLOYEE", "emp-1")).get("/trip-requests")
    assert [r["id"] for r in own.json()["data"]] == ["r1"]

    everyone = make_client(router, db, make_user("VEHICLE_ADMIN", "admin-1")).get("/trip-requests")
    assert everyone.json()["meta"]["total"] == 2


def test_list_search_matches_requester_name(db):
    db.triprequest.add(id="r1", request_number="REQ-1", requested_by_user_id="emp-1", purpose_description="Audit")
    db.triprequest.add(id="r2", request_number="REQ-2", requested_by_user_id="emp-2", purpose_description="Audit")
    client = make_client(router, db, make_user())

    response = client.get("/trip-requests", params={"searchTerm": "ruwan", "status": "all-status"})

    assert [r["id"] for r in response.json()["data"]] == ["r2"]


def test_get_hides_other_users_requests(db):
    db.triprequest.add(id="r2", request_number="REQ-2", requested_by_user_id="emp-2")
    client = make_client(router, db, make_user("EMPLOYEE", "emp-1"))

    assert client.get("/trip-requests/r2").status_code == 403
    assert client.get("/trip-requests/missing").status_code == 404


def test_update_blocked_after_approval(db):
    db.triprequest.add(id="r1", request_number="REQ-1", requested_by_user_id="emp-1", status="Approved")
    client = make_client(router, db, make_user("EMPLOYEE", "emp-1"))

    response = client.put("/trip-requests/r1", json={"priority": "Low"})

    assert response.status_code == 403
    assert response.json()["detail"] == "FORBIDDEN: Cannot edit trip request after approval"


def test_cost_change_reseeds_untouched_steps(db):
    db.triprequest.add(id="r1", request_number="REQ-1", requested_by_user_id="emp-1", estimated_cost=1000)
    db.tripapproval.add(trip_request_id="r1", approval_level=1, approver_role="Manager")
    db.tripapproval.add(trip_request_id="r1", approval_level=2, approver_role="Head of Department")
    client = make_client(router, db, make_user("EMPLOYEE", "emp-1"))

    response = client.put("/trip-requests/r1", json={"estimatedCost": 75000})

    assert response.status_code == 200
    assert response.json()["estimatedCost"] == 75000
    roles = [s["approver_role"] for s in sorted(db.tripapproval.records, key=lambda s: s["approval_level"])]
    assert roles == ["Manager", "Head of Department", "Finance"]


def test_cost_raise_after_partial_approval_adds_finance(db):
    db.triprequest.add(id="r1", request_number="REQ-1", requested_by_user_id="emp-1", estimated_cost=1000)
    db.tripapproval.add(id="s1", trip_request_id="r1", approval_level=1, approver_role="Manager",
                        status="Approved", approver_user_id="mgr-1")
    db.tripapproval.add(id="s2", trip_request_id="r1", approval_level=2, approver_role="Head of Department")
    owner = make_client(router, db, make_user("EMPLOYEE", "emp-1"))

    assert owner.put("/trip-requests/r1", json={"estimatedCost": 75000}).status_code == 200

    steps = sorted(db.tripapproval.records, key=lambda s: s["approval_level"])
    assert [(s["approver_role"], s["status"]) for s in steps] == [
        ("Manager", "Approved"),
        ("Head of Department", "Pending"),
        ("Finance", "Pending"),
    ]

    hod = make_client(approval_router, db, make_user("HOD", "hod-1"))
    decided = hod.patch("/trip-approvals/steps/s2", json={"status": "Approved"})

    assert decided.status_code == 200
    assert decided.json()["finalStatus"] == "Pending"
    assert decided.json()["currentApprovalLevel"] == 3
    assert db.triprequest.get("r1")["status"] == "Pending"


def test_cost_drop_closes_request_when_remaining_steps_are_approved(db):
    db.triprequest.add(id="r1", request_number="REQ-1", requested_by_user_id="emp-1", estimated_cost=75000)
    db.tripapproval.add(trip_request_id="r1", approval_level=1, approver_role="Manager", status="Approved")
    db.tripapproval.add(trip_request_id="r1", approval_level=2, approver_role="Head of Department", status="Approved")
    db.tripapproval.add(trip_request_id="r1", approval_level=3, approver_role="Finance")
    client = make_client(router, db, make_user("EMPLOYEE", "emp-1"))

    response = client.put("/trip-requests/r1", json={"estimatedCost": 2000})

    assert response.status_code == 200
    assert response.json()["status"] == "Approved"
    assert [s["approver_role"] for s in db.tripapproval.records] == ["Manager", "Head of Department"]


def test_cost_change_without_required_levels_approves_request(db, monkeypatch):
    monkeypatch.setattr(settings.approvals, "manager_required", False)
    monkeypatch.setattr(settings.approvals, "department_required", False)
    monkeypatch.setattr(settings.approvals, "finance_required", False)
    db.triprequest.add(id="r1", request_number="REQ-1", requested_by_user_id="emp-1", estimated_cost=75000)
    db.tripapproval.add(trip_request_id="r1", approval_level=1, approver_role="Finance")
    client = make_client(router, db, make_user("EMPLOYEE", "emp-1"))

    response = client.put("/trip-requests/r1", json={"estimatedCost": 500})

    assert response.status_code == 200
    assert response.json()["status"] == "Approved"
    assert response.json()["approvalRequired"] is False
    assert db.tripapproval.records == []



def test_cancel_and_delete(db):
    db.triprequest.add(id="r1", request_number="REQ-1", requested_by_user_id="emp-1", status="Approved")
    db.triprequest.add(id="r2", request_number="REQ-2", requested_by_user_id="emp-1", status="Completed")
    client = make_client(router, db, make_user("EMPLOYEE", "emp-1"))

    cancelled = client.post("/trip-requests/r1/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "Cancelled"

    assert client.post("/trip-requests/r2/cancel").status_code == 403
    assert client.delete("/trip-requests/r2").status_code == 403

    assert client.delete("/trip-requests/r1").status_code == 204
    assert db.triprequest.get("r1") is None
