import asyncio
from datetime import timedelta

import pytest

from tripdesk.common.utils import utcnow
from tripdesk.trip_approvals.routes import router
from tripdesk.trip_approvals.services import escalate_stale_approvals

from conftest import FakePrisma, make_client, make_user


@pytest.fixture
def db():
    db = FakePrisma()
    db.user.add(id="emp-1", email="emp@example.com", first_name="Kamal", last_name="Fernando")
    db.user.add(id="mgr-1", email="mgr@example.com", first_name="Mala", last_name="Perera", role="MANAGER")
    db.triprequest.add(
        id="r1",
        request_number="REQ-100001-001",
        requested_by_user_id="emp-1",
        purpose_description="Site visit",
        priority="High",
    )
    db.tripapproval.add(id="s1", trip_request_id="r1", approval_level=1, approver_role="Manager")
    db.tripapproval.add(id="s2", trip_request_id="r1", approval_level=2, approver_role="Head of Department")
    return db


def test_get_approval_exposes_workflow(db):
    client = make_client(router, db, make_user())

    body = client.get("/trip-approvals/r1").json()

    assert [step["level"] for step in body["approvalWorkflow"]] == [1, 2]
    assert body["currentApprovalLevel"] == 1
    assert body["finalStatus"] == "Pending"
    assert body["approvalHistory"] == []
    assert "costThreshold" in body["approvalRules"]


def test_steps_must_be_completed_in_order(db):
    client = make_client(router, db, make_user("HOD", "hod-1"))

    response = client.patch("/trip-approvals/steps/s2", json={"status": "Approved"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Approval level 1 must be completed first"


def test_wrong_role_cannot_act(db):
    client = make_client(router, db, make_user("ACCOUNTANT", "acc-1"))

    response = client.patch("/trip-approvals/steps/s1", json={"status": "Approved"})

    assert response.status_code == 403


def test_requester_cannot_approve_own_request(db):
    client = make_client(router, db, make_user("VEHICLE_ADMIN", "emp-1"))

    response = client.patch("/trip-approvals/steps/s1", json={"status": "Approved"})

    assert response.status_code == 403
    assert "own trip request" in response.json()["detail"]


def test_full_approval_marks_request_approved(db):
    manager = make_client(router, db, make_user("MANAGER", "mgr-1"))
    first = manager.patch("/trip-approvals/steps/s1", json={"status": "Approved", "comments": "ok"})
    assert first.status_code == 200
    assert first.json()["finalStatus"] == "Pending"
    assert first.json()["currentApprovalLevel"] == 2
    assert db.triprequest.get("r1")["status"] == "Pending"

    hod = make_client(router, db, make_user("HOD", "hod-1"))
    second = hod.patch("/trip-approvals/steps/s2", json={"status": "Approved"})
    assert second.json()["finalStatus"] == "Approved"
    assert db.triprequest.get("r1")["status"] == "Approved"
    assert db.tripapproval.get("s2")["approver_user_id"] == "hod-1"

    again = hod.patch("/trip-approvals/steps/s2", json={"status": "Rejected"})
    assert again.status_code == 400
    assert again.json()["detail"] == "Request already processed"


def test_rejection_closes_request(db):
    client = make_client(router, db, make_user("MANAGER", "mgr-1"))

    response = client.patch("/trip-approvals/steps/s1", json={"status": "Rejected", "comments": "No budget"})

    assert response.json()["finalStatus"] == "Rejected"
    assert db.triprequest.get("r1")["status"] == "Rejected"


def test_invalid_action_status_is_rejected(db):
    client = make_client(router, db, make_user("MANAGER", "mgr-1"))
    assert client.patch("/trip-approvals/steps/s1", json={"status": "Maybe"}).status_code == 422


def test_list_filters_by_final_status(db):
    db.triprequest.add(id="r2", request_number="REQ-2", requested_by_user_id="emp-1", status="Rejected")
    db.tripapproval.add(trip_request_id="r2", approval_level=1, approver_role="Manager", status="Rejected")
    client = make_client(router, db, make_user())

    pending = client.get("/trip-approvals", params={"status": "Pending"}).json()
    rejected = client.get("/trip-approvals", params={"status": "Rejected"}).json()

    assert [r["id"] for r in pending["data"]] == ["r1"]
    assert [r["id"] for r in rejected["data"]] == ["r2"]
    assert rejected["data"][0]["approvalHistory"][0]["status"] == "Rejected"


def test_manual_escalation_requires_admin(db):
    assert make_client(router, db, make_user("EMPLOYEE", "emp-1")).post("/trip-approvals/r1/escalate").status_code == 403

    response = make_client(router, db, make_user()).post("/trip-approvals/r1/escalate")
    assert response.status_code == 200
    assert db.triprequest.get("r1")["escalated"] is True


def test_stale_requests_are_escalated_once(db):
    db.triprequest.get("r1")["created_at"] = utcnow() - timedelta(hours=72)
    db.triprequest.add(id="fresh", request_number="REQ-3", requested_by_user_id="emp-1")

    assert asyncio.run(escalate_stale_approvals(db)) == 1
    assert db.triprequest.get("r1")["escalated"] is True
    assert db.triprequest.get("fresh")["escalated"] is False
    assert asyncio.run(escalate_stale_approvals(db)) == 0
