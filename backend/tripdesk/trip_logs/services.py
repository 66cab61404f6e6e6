from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List

from tripdesk.common.enums import TripLogStatus
from tripdesk.common.utils import (
    ensure_aware,
    extract,
    insensitive,
    iso,
    optional_number,
    page_window,
    total_pages,
)
from tripdesk.core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationFailedError

logger = logging.getLogger(__name__)

FINAL_STATUSES = {TripLogStatus.COMPLETED.value, TripLogStatus.CANCELLED.value}

EXPORT_COLUMNS = [
    "Trip Number",
    "Date",
    "Status",
    "Passenger",
    "Driver",
    "Vehicle",
    "From",
    "To",
    "Actual Distance",
    "Cost",
]


def calculate_duration(start: datetime | None, end: datetime | None) -> int | None:
    """Whole minutes between two instants, or ``None`` if either is missing."""
    if not start or not end:
        return None
    delta = ensure_aware(end) - ensure_aware(start)
    if delta.total_seconds() < 0:
        raise ValidationFailedError("Actual arrival cannot be before actual departure")
    return int(delta.total_seconds() // 60)


def serialize_trip_log(log: Any) -> Dict[str, Any]:
    return {
        "id": extract(log, "id"),
        "tripNumber": extract(log, "trip_number"),
        "tripDate": iso(extract(log, "trip_date")),
        "tripStatus": extract(log, "trip_status"),
        "tripRequestId": extract(log, "trip_request_id"),
        "tripAssignmentId": extract(log, "trip_assignment_id"),
        "fromLocation": extract(log, "from_location"),
        "toLocation": extract(log, "to_location"),
        "passengerName": extract(log, "passenger_name"),
        "passengerDepartment": extract(log, "passenger_department"),
        "driverName": extract(log, "driver_name"),
        "vehicleRegistration": extract(log, "vehicle_registration"),
        "plannedDistance": optional_number(extract(log, "planned_distance")),
        "actualDistance": optional_number(extract(log, "actual_distance")),
        "plannedDeparture": iso(extract(log, "planned_departure")),
        "plannedArrival": iso(extract(log, "planned_arrival")),
        "actualDeparture": iso(extract(log, "actual_departure")),
        "actualArrival": iso(extract(log, "actual_arrival")),
        "totalDuration": extract(log, "total_duration"),
        "totalCost": optional_number(extract(log, "total_cost")),
        "fuelCost": optional_number(extract(log, "fuel_cost")),
        "tollCharges": optional_number(extract(log, "toll_charges")),
        "onTime": extract(log, "on_time"),
        "overallRating": optional_number(extract(log, "overall_rating")),
        "comments": extract(log, "comments"),
        "createdAt": iso(extract(log, "created_at")),
        "updatedAt": iso(extract(log, "updated_at")),
    }


def build_filters(
    search: str | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> Dict[str, Any]:
    where: Dict[str, Any] = {}
    if status and status != "all":
        where["trip_status"] = status
    if date_from or date_to:
        where["trip_date"] = {}
        if date_from:
            where["trip_date"]["gte"] = ensure_aware(date_from)
        if date_to:
            where["trip_date"]["lte"] = ensure_aware(date_to)
    if search:
        term = insensitive(search)
        where["OR"] = [
            {"trip_number": term},
            {"passenger_name": term},
            {"driver_name": term},
            {"vehicle_registration": term},
            {"from_location": term},
            {"to_location": term},
        ]
    return where


async def list_trip_logs(
    db,
    *,
    search: str | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    page_size: int = 10,
) -> Dict[str, Any]:
    where = build_filters(search, status, date_from, date_to)
    skip, take = page_window(page, page_size)
    total = await db.triplog.count(where=where)
    logs = await db.triplog.find_many(
        where=where, skip=skip, take=take, order={"trip_date": "desc"}
    )
    return {
        "data": [serialize_trip_log(log) for log in logs],
        "meta": {
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": total_pages(total, page_size),
        },
    }


async def _load(db, log_id: str) -> Any:
    log = await db.triplog.find_unique(where={"id": log_id})
    if not log:
        raise NotFoundError("Trip log not found")
    return log


async def get_trip_log(db, log_id: str) -> Dict[str, Any]:
    return serialize_trip_log(await _load(db, log_id))


async def create_trip_log(db, data: Dict[str, Any]) -> Dict[str, Any]:
    existing = await db.triplog.find_unique(where={"trip_number": data["trip_number"]})
    if existing:
        raise ConflictError("Trip number already exists")
    data.setdefault("trip_status", TripLogStatus.NOT_STARTED.value)
    created = await db.triplog.create(data=data)
    return serialize_trip_log(created)


async def update_trip_log(db, log_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    log = await _load(db, log_id)
    if extract(log, "trip_status") in FINAL_STATUSES:
        raise InvalidStateError(f"Trip log is already {extract(log, 'trip_status')}")

    departure = data.get("actual_departure") or extract(log, "actual_departure")
    arrival = data.get("actual_arrival") or extract(log, "actual_arrival")
    if departure and arrival and ("actual_departure" in data or "actual_arrival" in data):
        data["total_duration"] = calculate_duration(departure, arrival)
        data.setdefault("trip_status", TripLogStatus.COMPLETED.value)

    updated = await db.triplog.update(where={"id": log_id}, data=data)
    if data.get("trip_status") in FINAL_STATUSES:
        logger.info("Trip log %s closed as %s", log_id, data["trip_status"])
    return serialize_trip_log(updated)


async def delete_trip_log(db, log_id: str) -> None:
    await _load(db, log_id)
    await db.triplog.delete(where={"id": log_id})


async def export_rows(db, **filters: Any) -> List[Dict[str, Any]]:
    logs = await db.triplog.find_many(where=build_filters(**filters), order={"trip_date": "desc"})
    return [
        {
            "Trip Number": extract(log, "trip_number"),
            "Date": iso(extract(log, "trip_date")),
            "Status": extract(log, "trip_status"),
            "Passenger": extract(log, "passenger_name", ""),
            "Driver": extract(log, "driver_name", ""),
            "Vehicle": extract(log, "vehicle_registration", ""),
            "From": extract(log, "from_location", ""),
            "To": extract(log, "to_location", ""),
            "Actual Distance": optional_number(extract(log, "actual_distance")),
            "Cost": optional_number(extract(log, "total_cost")),
        }
        for log in logs
    ]
