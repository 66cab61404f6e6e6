"""Trip request lifecycle: creation with approval seeding, edits, cancellation."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List

from tripdesk.common.enums import (
    ADMIN_ROLES,
    REQUESTER_ONLY_ROLES,
    ApprovalStatus,
    TripRequestStatus,
)
from tripdesk.common.utils import (
    as_datetime,
    extract,
    full_name,
    insensitive,
    iso,
    iso_date,
    optional_number,
    page_window,
    to_number,
    total_pages,
    utcnow,
)
from tripdesk.core.config import settings
from tripdesk.core.errors import NotFoundError, PermissionDeniedError
from tripdesk.trip_approvals.workflow import build_approval_levels, calculate_final_status, sort_steps
from tripdesk.trip_requests.models import (
    Requirements,
    TripDetails,
    TripRequestCreate,
    TripRequestUpdate,
)

logger = logging.getLogger(__name__)

REQUEST_INCLUDE: Dict[str, Any] = {
    "requested_by": {"include": {"department": True}},
    "department": True,
    "passengers": True,
}

EDITABLE_STATUSES = {TripRequestStatus.PENDING.value}
CANCELLABLE_STATUSES = {TripRequestStatus.PENDING.value, TripRequestStatus.APPROVED.value}
DELETABLE_STATUSES = {TripRequestStatus.PENDING.value, TripRequestStatus.CANCELLED.value}


def generate_request_number(now: datetime | None = None) -> str:
    millis = int((now or utcnow()).timestamp() * 1000)
    return f"REQ-{str(millis)[-6:]}-{secrets.randbelow(1000):03d}"


def _coordinates(lat: Any, lng: Any) -> Dict[str, float] | None:
    if lat is None and lng is None:
        return None
    return {"lat": optional_number(lat), "lng": optional_number(lng)}


def serialize_requester(record: Any) -> Dict[str, Any]:
    requester = extract(record, "requested_by")
    department = extract(record, "department") or extract(requester, "department")
    return {
        "id": extract(requester, "id") or extract(record, "requested_by_user_id"),
        "name": full_name(requester),
        "email": extract(requester, "email"),
        "department": extract(department, "name"),
        "employeeId": extract(requester, "employee_id"),
    }


def serialize_trip_request(record: Any) -> Dict[str, Any]:
    passengers = extract(record, "passengers", []) or []
    return {
        "id": extract(record, "id"),
        "requestNumber": extract(record, "request_number"),
        "requestedBy": serialize_requester(record),
        "departmentId": extract(record, "department_id"),
        "tripDetails": {
            "fromLocation": {
                "address": extract(record, "from_location_address"),
                "coordinates": _coordinates(
                    extract(record, "from_location_latitude"),
                    extract(record, "from_location_longitude"),
                ),
            },
            "toLocation": {
                "address": extract(record, "to_location_address"),
                "coordinates": _coordinates(
                    extract(record, "to_location_latitude"),
                    extract(record, "to_location_longitude"),
                ),
            },
            "departureDate": iso_date(extract(record, "departure_date")),
            "departureTime": extract(record, "departure_time"),
            "returnDate": iso_date(extract(record, "return_date")),
            "returnTime": extract(record, "return_time"),
            "isRoundTrip": bool(extract(record, "is_round_trip", False)),
            "estimatedDistance": optional_number(extract(record, "estimated_distance")),
            "estimatedDuration": extract(record, "estimated_duration"),
        },
        "purpose": {
            "category": extract(record, "purpose_category"),
            "description": extract(record, "purpose_description"),
            "projectCode": extract(record, "project_code"),
            "costCenter": extract(record, "cost_center"),
            "businessJustification": extract(record, "business_justification"),
        },
        "requirements": {
            "vehicleType": extract(record, "vehicle_type_required"),
            "passengerCount": extract(record, "passenger_count", 1),
            "passengers": [
                {
                    "id": extract(passenger, "id"),
                    "name": extract(passenger, "name"),
                    "email": extract(passenger, "email"),
                    "phone": extract(passenger, "phone"),
                    "department": extract(passenger, "department"),
                }
                for passenger in passengers
            ],
            "specialRequirements": extract(record, "special_instructions"),
            "luggage": extract(record, "luggage_type"),
            "acRequired": bool(extract(record, "ac_required", True)),
        },
        "priority": extract(record, "priority"),
        "status": extract(record, "status"),
        "approvalRequired": bool(extract(record, "approval_required", True)),
        "estimatedCost": to_number(extract(record, "estimated_cost")),
        "currency": extract(record, "currency", settings.billing.default_currency),
        "escalated": bool(extract(record, "escalated", False)),
        "createdAt": iso(extract(record, "created_at")),
        "updatedAt": iso(extract(record, "updated_at")),
    }


def _trip_details_data(details: TripDetails) -> Dict[str, Any]:
    origin = details.fromLocation.coordinates
    destination = details.toLocation.coordinates
    return {
        "from_location_address": details.fromLocation.address,
        "from_location_latitude": origin.lat if origin else None,
        "from_location_longitude": origin.lng if origin else None,
        "to_location_address": details.toLocation.address,
        "to_location_latitude": destination.lat if destination else None,
        "to_location_longitude": destination.lng if destination else None,
        "departure_date": as_datetime(details.departureDate),
        "departure_time": details.departureTime,
        "return_date": as_datetime(details.returnDate),
        "return_time": details.returnTime,
        "is_round_trip": details.isRoundTrip,
        "estimated_distance": details.estimatedDistance,
        "estimated_duration": details.estimatedDuration,
    }


def _requirements_data(requirements: Requirements) -> Dict[str, Any]:
    return {
        "vehicle_type_required": requirements.vehicleType,
        "passenger_count": requirements.passengerCount,
        "luggage_type": requirements.luggage,
        "ac_required": requirements.acRequired,
        "special_instructions": requirements.specialRequirements,
    }


def build_list_filters(
    user: Any,
    search_term: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    department: str | None = None,
) -> Dict[str, Any]:
    conditions: List[Dict[str, Any]] = []

    if status and status != "all-status":
        conditions.append({"status": status})
    if priority and priority != "all-priorities":
        conditions.append({"priority": priority})
    if department and department != "all-departments":
        conditions.append(
            {"OR": [{"department_id": department}, {"department": {"is": {"name": department}}}]}
        )
    if search_term:
        term = insensitive(search_term)
        conditions.append(
            {
                "OR": [
                    {"request_number": term},
                    {"from_location_address": term},
                    {"to_location_address": term},
                    {"purpose_description": term},
                    {"requested_by": {"is": {"first_name": term}}},
                    {"requested_by": {"is": {"last_name": term}}},
                ]
            }
        )
    if extract(user, "role") in REQUESTER_ONLY_ROLES:
        conditions.append({"requested_by_user_id": extract(user, "id")})

    return {"AND": conditions} if conditions else {}


def _is_owner_or_admin(user: Any, record: Any) -> bool:
    return (
        extract(user, "role") in ADMIN_ROLES
        or extract(record, "requested_by_user_id") == extract(user, "id")
    )


async def load_trip_request(db, request_id: str, include: Dict[str, Any] | None = None) -> Any:
    record = await db.triprequest.find_unique(where={"id": request_id}, include=include)
    if not record:
        raise NotFoundError("Trip request not found")
    return record


async def list_trip_requests(
    db,
    user: Any,
    *,
    search_term: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    department: str | None = None,
    page: int = 1,
    page_size: int = 10,
) -> Dict[str, Any]:
    where = build_list_filters(user, search_term, status, priority, department)
    skip, take = page_window(page, page_size)
    total = await db.triprequest.count(where=where)
    records = await db.triprequest.find_many(
        where=where,
        skip=skip,
        take=take,
        order={"created_at": "desc"},
        include=REQUEST_INCLUDE,
    )
    return {
        "data": [serialize_trip_request(record) for record in records],
        "meta": {
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": total_pages(total, page_size),
        },
    }


async def get_trip_request(db, user: Any, request_id: str) -> Dict[str, Any]:
    record = await load_trip_request(db, request_id, include=REQUEST_INCLUDE)
    if extract(user, "role") in REQUESTER_ONLY_ROLES and not _is_owner_or_admin(user, record):
        raise PermissionDeniedError("FORBIDDEN: You can only view your own trip requests")
    return serialize_trip_request(record)


async def _seed_approvals(db, request_id: str, levels: List[str]) -> None:
    for level, role in enumerate(levels, start=1):
        await db.tripapproval.create(
            data={
                "trip_request_id": request_id,
                "approval_level": level,
                "approver_role": role,
                "status": ApprovalStatus.PENDING.value,
            }
        )


async def create_trip_request(db, user: Any, payload: TripRequestCreate) -> Dict[str, Any]:
    requester_id = extract(user, "id")
    department_id = payload.departmentId or extract(user, "department_id")

    if payload.requestedById and payload.requestedById != requester_id:
        if extract(user, "role") not in ADMIN_ROLES:
            raise PermissionDeniedError("FORBIDDEN: Only admins can raise requests for other users")
        requester = await db.user.find_unique(where={"id": payload.requestedById})
        if not requester:
            raise NotFoundError("Requester not found")
        requester_id = payload.requestedById
        department_id = payload.departmentId or extract(requester, "department_id")

    levels = build_approval_levels(payload.estimatedCost) if payload.approvalRequired else []
    status = TripRequestStatus.PENDING if levels else TripRequestStatus.APPROVED

    data: Dict[str, Any] = {
        "request_number": generate_request_number(),
        "requested_by_user_id": requester_id,
        "department_id": department_id,
        **_trip_details_data(payload.tripDetails),
        "purpose_category": payload.purpose.category,
        "purpose_description": payload.purpose.description,
        "project_code": payload.purpose.projectCode,
        "cost_center": payload.purpose.costCenter,
        "business_justification": payload.purpose.businessJustification,
        **_requirements_data(payload.requirements),
        "priority": payload.priority.value,
        "status": status.value,
        "estimated_cost": payload.estimatedCost,
        "currency": payload.currency or settings.billing.default_currency,
        "approval_required": bool(levels),
    }

    async with db.tx() as tx:
        created = await tx.triprequest.create(data=data)
        request_id = extract(created, "id")
        for passenger in payload.requirements.passengers:
            await tx.trippassenger.create(
                data={"trip_request_id": request_id, **passenger.model_dump()}
            )
        await _seed_approvals(tx, request_id, levels)

    logger.info(
        "Trip request %s created by %s with %d approval level(s)",
        extract(created, "request_number"),
        extract(user, "id"),
        len(levels),
    )
    record = await load_trip_request(db, request_id, include=REQUEST_INCLUDE)
    return serialize_trip_request(record)


async def update_trip_request(
    db, user: Any, request_id: str, payload: TripRequestUpdate
) -> Dict[str, Any]:
    record = await load_trip_request(db, request_id)
    if not _is_owner_or_admin(user, record):
        raise PermissionDeniedError("FORBIDDEN: You can only edit your own trip requests")
    if extract(record, "status") not in EDITABLE_STATUSES:
        raise PermissionDeniedError("FORBIDDEN: Cannot edit trip request after approval")

    data: Dict[str, Any] = {}
    if payload.tripDetails is not None:
        data.update(_trip_details_data(payload.tripDetails))
    if payload.purpose is not None:
        data.update(
            {
                "purpose_category": payload.purpose.category,
                "purpose_description": payload.purpose.description,
                "project_code": payload.purpose.projectCode,
                "cost_center": payload.purpose.costCenter,
                "business_justification": payload.purpose.businessJustification,
            }
        )
    if payload.requirements is not None:
        data.update(_requirements_data(payload.requirements))
    if payload.priority is not None:
        data["priority"] = payload.priority.value
    if payload.currency is not None:
        data["currency"] = payload.currency
    if payload.departmentId is not None:
        data["department_id"] = payload.departmentId

    cost_changed = payload.estimatedCost is not None and payload.estimatedCost != to_number(
        extract(record, "estimated_cost")
    )
    if payload.estimatedCost is not None:
        data["estimated_cost"] = payload.estimatedCost

    async with db.tx() as tx:
        if data:
            await tx.triprequest.update(where={"id": request_id}, data=data)
        if payload.requirements is not None:
            await tx.trippassenger.delete_many(where={"trip_request_id": request_id})
            for passenger in payload.requirements.passengers:
                await tx.trippassenger.create(
                    data={"trip_request_id": request_id, **passenger.model_dump()}
                )
        if cost_changed and extract(record, "approval_required", True):
            await _reconcile_approvals(tx, request_id, payload.estimatedCost)

    updated = await load_trip_request(db, request_id, include=REQUEST_INCLUDE)
    return serialize_trip_request(updated)


async def _reconcile_approvals(db, request_id: str, estimated_cost: float) -> None:
    """Align the approval steps with the levels the new cost requires.

    Sign-offs for roles that are still required are kept. Newly required
    levels start Pending.
    """
    levels = build_approval_levels(estimated_cost)
    steps = sort_steps(await db.tripapproval.find_many(where={"trip_request_id": request_id}))
    if [extract(step, "approver_role") for step in steps] == levels:
        return

    by_role = {extract(step, "approver_role"): step for step in steps}
    for step in steps:
        if extract(step, "approver_role") not in levels:
            await db.tripapproval.delete(where={"id": extract(step, "id")})
    for level, role in enumerate(levels, start=1):
        step = by_role.get(role)
        if step is None:
            await db.tripapproval.create(
                data={
                    "trip_request_id": request_id,
                    "approval_level": level,
                    "approver_role": role,
                    "status": ApprovalStatus.PENDING.value,
                }
            )
        elif extract(step, "approval_level") != level:
            await db.tripapproval.update(
                where={"id": extract(step, "id")}, data={"approval_level": level}
            )

    if not levels:
        await db.triprequest.update(
            where={"id": request_id},
            data={"status": TripRequestStatus.APPROVED.value, "approval_required": False, "escalated": False},
        )
        return

    remaining = await db.tripapproval.find_many(where={"trip_request_id": request_id})
    if calculate_final_status(remaining) == ApprovalStatus.APPROVED.value:
        await db.triprequest.update(
            where={"id": request_id},
            data={"status": TripRequestStatus.APPROVED.value, "escalated": False},
        )
    logger.info("Approval levels for trip request %s are now %s", request_id, ", ".join(levels))


async def cancel_trip_request(db, user: Any, request_id: str) -> Dict[str, Any]:
    record = await load_trip_request(db, request_id)
    if not _is_owner_or_admin(user, record):
        raise PermissionDeniedError("FORBIDDEN: You can only cancel your own trip requests")
    if extract(record, "status") not in CANCELLABLE_STATUSES:
        raise PermissionDeniedError(
            f"FORBIDDEN: Cannot cancel a trip request that is {extract(record, 'status')}"
        )

    await db.triprequest.update(
        where={"id": request_id},
        data={"status": TripRequestStatus.CANCELLED.value, "escalated": False},
    )
    updated = await load_trip_request(db, request_id, include=REQUEST_INCLUDE)
    return serialize_trip_request(updated)


async def delete_trip_request(db, user: Any, request_id: str) -> None:
    record = await load_trip_request(db, request_id)
    if not _is_owner_or_admin(user, record):
        raise PermissionDeniedError("FORBIDDEN: You can only delete your own trip requests")
    if extract(record, "status") not in DELETABLE_STATUSES:
        raise PermissionDeniedError("FORBIDDEN: Only pending or cancelled trip requests can be deleted")

    await db.triprequest.delete(where={"id": request_id})
    logger.info("Trip request %s deleted by %s", request_id, extract(user, "id"))
