"""Vehicle and driver assignment for approved trip requests.

Assignment status changes drive the parent trip request status and are
mirrored into the trip log, which is what the operations dashboard reads.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from tripdesk.common.enums import AssignmentStatus, Role, TripLogStatus, TripRequestStatus
from tripdesk.common.utils import (
    as_datetime,
    ensure_aware,
    extract,
    full_name,
    insensitive,
    iso,
    iso_date,
    page_window,
    to_number,
    total_pages,
    utcnow,
)
from tripdesk.core.errors import InvalidStateError, NotFoundError, PermissionDeniedError
from tripdesk.core.notifier import notify_user
from tripdesk.trip_assignments.models import AssignmentCreate, AssignmentUpdate

logger = logging.getLogger(__name__)

ASSIGNMENT_INCLUDE: Dict[str, Any] = {
    "trip_request": {"include": {"requested_by": {"include": {"department": True}}}},
    "vehicle": True,
    "driver": True,
}

ALLOWED_TRANSITIONS: Dict[str, set] = {
    AssignmentStatus.ASSIGNED.value: {
        AssignmentStatus.ACCEPTED.value,
        AssignmentStatus.REJECTED.value,
        AssignmentStatus.STARTED.value,
        AssignmentStatus.CANCELLED.value,
    },
    AssignmentStatus.ACCEPTED.value: {
        AssignmentStatus.STARTED.value,
        AssignmentStatus.CANCELLED.value,
    },
    AssignmentStatus.STARTED.value: {
        AssignmentStatus.COMPLETED.value,
        AssignmentStatus.CANCELLED.value,
    },
    AssignmentStatus.REJECTED.value: set(),
    AssignmentStatus.COMPLETED.value: set(),
    AssignmentStatus.CANCELLED.value: set(),
}

# Trip request status implied by each assignment status.
REQUEST_STATUS_FOR = {
    AssignmentStatus.ASSIGNED.value: TripRequestStatus.ASSIGNED.value,
    AssignmentStatus.ACCEPTED.value: TripRequestStatus.ASSIGNED.value,
    AssignmentStatus.STARTED.value: TripRequestStatus.IN_PROGRESS.value,
    AssignmentStatus.COMPLETED.value: TripRequestStatus.COMPLETED.value,
    AssignmentStatus.REJECTED.value: TripRequestStatus.APPROVED.value,
    AssignmentStatus.CANCELLED.value: TripRequestStatus.APPROVED.value,
}

TRIP_LOG_STATUS_FOR = {
    AssignmentStatus.ASSIGNED.value: TripLogStatus.NOT_STARTED.value,
    AssignmentStatus.ACCEPTED.value: TripLogStatus.NOT_STARTED.value,
    AssignmentStatus.STARTED.value: TripLogStatus.STARTED.value,
    AssignmentStatus.COMPLETED.value: TripLogStatus.COMPLETED.value,
    AssignmentStatus.REJECTED.value: TripLogStatus.CANCELLED.value,
    AssignmentStatus.CANCELLED.value: TripLogStatus.CANCELLED.value,
}


def can_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, set())


def serialize_assignment(assignment: Any) -> Dict[str, Any]:
    trip_request = extract(assignment, "trip_request")
    vehicle = extract(assignment, "vehicle")
    driver = extract(assignment, "driver")
    requester = extract(trip_request, "requested_by")
    return {
        "id": extract(assignment, "id"),
        "tripRequestId": extract(assignment, "trip_request_id"),
        "requestNumber": extract(trip_request, "request_number"),
        "assignmentStatus": extract(assignment, "assignment_status"),
        "assignmentNotes": extract(assignment, "assignment_notes"),
        "scheduledDeparture": iso(extract(assignment, "scheduled_departure")),
        "scheduledReturn": iso(extract(assignment, "scheduled_return")),
        "actualDeparture": iso(extract(assignment, "actual_departure_time")),
        "actualArrival": iso(extract(assignment, "actual_arrival_time")),
        "createdAt": iso(extract(assignment, "created_at")),
        "updatedAt": iso(extract(assignment, "updated_at")),
        "assignedVehicle": {
            "id": extract(vehicle, "id"),
            "registrationNo": extract(vehicle, "registration_number"),
            "make": extract(vehicle, "make"),
            "model": extract(vehicle, "model"),
            "type": extract(vehicle, "vehicle_type"),
            "fuelType": extract(vehicle, "fuel_type"),
            "mileage": to_number(extract(vehicle, "total_kilometers")),
            "seatingCapacity": extract(vehicle, "seating_capacity"),
            "status": extract(vehicle, "operational_status", "Active"),
            "availabilityStatus": extract(vehicle, "availability_status"),
            "currentDriver": full_name(driver, fallback="Unassigned") if driver else "Unassigned",
        },
        "assignedDriver": {
            "id": extract(driver, "id"),
            "name": full_name(driver),
            "phoneNumber": extract(driver, "phone"),
            "licenseNumber": extract(driver, "license_number"),
            "licenseExpiryDate": iso_date(extract(driver, "license_expiry_date")),
            "isAvailable": extract(driver, "is_available"),
        },
        "requestedBy": {
            "id": extract(requester, "id"),
            "name": full_name(requester),
            "email": extract(requester, "email"),
        },
        "tripDetails": {
            "from": extract(trip_request, "from_location_address"),
            "to": extract(trip_request, "to_location_address"),
            "departureDate": iso_date(extract(trip_request, "departure_date")),
            "departureTime": extract(trip_request, "departure_time"),
        },
    }


async def _load_assignment(db, assignment_id: str) -> Any:
    assignment = await db.tripassignment.find_unique(
        where={"id": assignment_id}, include=ASSIGNMENT_INCLUDE
    )
    if not assignment:
        raise NotFoundError("Assignment not found")
    return assignment


async def list_assignments(
    db,
    *,
    search: str | None = None,
    status: str | None = None,
    page: int = 1,
    page_size: int = 10,
) -> Dict[str, Any]:
    conditions: List[Dict[str, Any]] = []
    if status and status != "all":
        conditions.append({"assignment_status": status})
    if search:
        term = insensitive(search)
        conditions.append(
            {
                "OR": [
                    {"trip_request": {"is": {"request_number": term}}},
                    {"vehicle": {"is": {"registration_number": term}}},
                    {"driver": {"is": {"first_name": term}}},
                    {"driver": {"is": {"last_name": term}}},
                ]
            }
        )
    where = {"AND": conditions} if conditions else {}

    skip, take = page_window(page, page_size)
    total = await db.tripassignment.count(where=where)
    assignments = await db.tripassignment.find_many(
        where=where,
        skip=skip,
        take=take,
        order={"created_at": "desc"},
        include=ASSIGNMENT_INCLUDE,
    )
    return {
        "data": [serialize_assignment(assignment) for assignment in assignments],
        "meta": {
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": total_pages(total, page_size),
        },
    }


async def get_assignment(db, assignment_id: str) -> Dict[str, Any]:
    return serialize_assignment(await _load_assignment(db, assignment_id))


async def _require_vehicle(db, vehicle_id: str) -> Any:
    vehicle = await db.vehicle.find_unique(where={"id": vehicle_id})
    if not vehicle or extract(vehicle, "deleted_at"):
        raise NotFoundError("Vehicle not found")
    return vehicle


async def _require_driver(db, driver_id: str) -> Any:
    driver = await db.driver.find_unique(where={"id": driver_id})
    if not driver or extract(driver, "deleted_at"):
        raise NotFoundError("Driver not found")
    return driver


async def create_assignment(db, user: Any, payload: AssignmentCreate) -> Dict[str, Any]:
    trip_request = await db.triprequest.find_unique(
        where={"id": payload.tripRequestId}, include={"requested_by": True}
    )
    if not trip_request:
        raise NotFoundError("Trip request not found")
    if extract(trip_request, "status") != TripRequestStatus.APPROVED.value:
        raise InvalidStateError("Trip request must be approved before assignment")

    await _require_vehicle(db, payload.vehicleId)
    await _require_driver(db, payload.driverId)

    async with db.tx() as tx:
        created = await tx.tripassignment.create(
            data={
                "trip_request_id": payload.tripRequestId,
                "vehicle_id": payload.vehicleId,
                "driver_id": payload.driverId,
                "assignment_status": AssignmentStatus.ASSIGNED.value,
                "assignment_notes": payload.assignmentNotes,
                "scheduled_departure": ensure_aware(payload.scheduledDeparture),
                "scheduled_return": ensure_aware(payload.scheduledReturn) if payload.scheduledReturn else None,
                "assigned_by": extract(user, "id"),
            }
        )
        await tx.triprequest.update(
            where={"id": payload.tripRequestId},
            data={"status": TripRequestStatus.ASSIGNED.value},
        )

    assignment_id = extract(created, "id")
    logger.info(
        "Assignment %s created for trip request %s", assignment_id, payload.tripRequestId
    )
    await sync_trip_log(db, assignment_id)

    assignment = await _load_assignment(db, assignment_id)
    request_number = extract(trip_request, "request_number")
    vehicle = extract(assignment, "vehicle")
    await notify_user(
        extract(trip_request, "requested_by"),
        f"Vehicle assigned for trip {request_number}",
        f"{extract(vehicle, 'registration_number')} with driver "
        f"{full_name(extract(assignment, 'driver'))} has been assigned to your trip {request_number}.",
    )
    return serialize_assignment(assignment)


async def update_assignment(db, user: Any, assignment_id: str, payload: AssignmentUpdate) -> Dict[str, Any]:
    assignment = await _load_assignment(db, assignment_id)
    if extract(user, "role") == Role.DRIVER.value and (
        extract(extract(assignment, "driver"), "user_id") != extract(user, "id")
    ):
        raise PermissionDeniedError("FORBIDDEN: Drivers can only update their own assignments")
    current_status = extract(assignment, "assignment_status")
    now = utcnow()

    data: Dict[str, Any] = {}
    new_status = payload.assignmentStatus.value if payload.assignmentStatus else None
    if new_status and new_status != current_status:
        if not can_transition(current_status, new_status):
            raise InvalidStateError(
                f"Cannot change assignment status from {current_status} to {new_status}"
            )
        data["assignment_status"] = new_status
        if new_status == AssignmentStatus.STARTED.value:
            data["actual_departure_time"] = now
        elif new_status == AssignmentStatus.COMPLETED.value:
            data["actual_arrival_time"] = now

    if not ALLOWED_TRANSITIONS.get(current_status) and (payload.vehicleId or payload.driverId):
        raise InvalidStateError(f"Assignment is already {current_status}")

    if payload.vehicleId:
        await _require_vehicle(db, payload.vehicleId)
        data["vehicle_id"] = payload.vehicleId
    if payload.driverId:
        await _require_driver(db, payload.driverId)
        data["driver_id"] = payload.driverId
    if payload.scheduledDeparture:
        data["scheduled_departure"] = ensure_aware(payload.scheduledDeparture)
    if payload.scheduledReturn:
        data["scheduled_return"] = ensure_aware(payload.scheduledReturn)
    if payload.assignmentNotes is not None:
        data["assignment_notes"] = payload.assignmentNotes

    vehicle_id = data.get("vehicle_id") or extract(assignment, "vehicle_id")
    driver_id = data.get("driver_id") or extract(assignment, "driver_id")

    async with db.tx() as tx:
        if data:
            await tx.tripassignment.update(where={"id": assignment_id}, data=data)

        if payload.vehicleDetails:
            vehicle_data: Dict[str, Any] = {}
            if payload.vehicleDetails.mileage is not None:
                vehicle_data["total_kilometers"] = payload.vehicleDetails.mileage
            if payload.vehicleDetails.seatingCapacity is not None:
                vehicle_data["seating_capacity"] = payload.vehicleDetails.seatingCapacity
            if vehicle_data:
                await tx.vehicle.update(where={"id": vehicle_id}, data=vehicle_data)

        if payload.driverDetails and payload.driverDetails.licenseExpiryDate:
            await tx.driver.update(
                where={"id": driver_id},
                data={"license_expiry_date": as_datetime(payload.driverDetails.licenseExpiryDate)},
            )

        if "assignment_status" in data:
            await tx.triprequest.update(
                where={"id": extract(assignment, "trip_request_id")},
                data={"status": REQUEST_STATUS_FOR[data["assignment_status"]]},
            )

    if "assignment_status" in data:
        logger.info(
            "Assignment %s moved from %s to %s", assignment_id, current_status, data["assignment_status"]
        )

    await sync_trip_log(db, assignment_id)
    return await get_assignment(db, assignment_id)


def _trip_log_payload(assignment: Any) -> Dict[str, Any]:
    trip_request = extract(assignment, "trip_request")
    vehicle = extract(assignment, "vehicle")
    driver = extract(assignment, "driver")
    requester = extract(trip_request, "requested_by")
    department = extract(requester, "department")
    status = extract(assignment, "assignment_status")
    trip_date = extract(assignment, "scheduled_departure") or extract(trip_request, "departure_date")
    return {
        "trip_request_id": extract(assignment, "trip_request_id"),
        "trip_date": trip_date,
        "trip_status": TRIP_LOG_STATUS_FOR.get(status, TripLogStatus.NOT_STARTED.value),
        "from_location": extract(trip_request, "from_location_address", ""),
        "to_location": extract(trip_request, "to_location_address", ""),
        "passenger_name": full_name(requester),
        "passenger_department": extract(department, "name"),
        "driver_name": full_name(driver),
        "vehicle_registration": extract(vehicle, "registration_number"),
        "planned_distance": extract(trip_request, "estimated_distance"),
        "planned_departure": extract(assignment, "scheduled_departure"),
        "planned_arrival": extract(assignment, "scheduled_return"),
        "actual_departure": extract(assignment, "actual_departure_time"),
        "actual_arrival": extract(assignment, "actual_arrival_time"),
    }


async def sync_trip_log(db, assignment_id: str) -> bool:
    """Mirror an assignment onto its trip log. Failures are logged and swallowed."""
    try:
        assignment = await _load_assignment(db, assignment_id)
        payload = _trip_log_payload(assignment)
        request_number = extract(extract(assignment, "trip_request"), "request_number", "TRIP")
        await db.triplog.upsert(
            where={"trip_assignment_id": assignment_id},
            data={
                "create": {
                    **payload,
                    "trip_assignment_id": assignment_id,
                    "trip_number": f"{request_number}-{assignment_id[:8]}",
                },
                "update": payload,
            },
        )
    except Exception:
        logger.exception("Failed to sync trip log for assignment %s", assignment_id)
        return False
    return True
