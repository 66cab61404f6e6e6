from typing import Any, Dict

from fastapi import APIRouter, Depends

from tripdesk.auth.dependencies import get_current_user
from tripdesk.common.enums import TripRequestStatus
from tripdesk.common.utils import extract, full_name, iso, iso_date, start_of_today
from tripdesk.db.prisma_client import get_db

router = APIRouter(prefix="/employee", tags=["employee dashboard"])

WIDGET_SIZE = 5


def _trip_summary(trip: Any) -> Dict[str, Any]:
    summary = {
        "id": extract(trip, "id"),
        "requestNumber": extract(trip, "request_number"),
        "from": extract(trip, "from_location_address"),
        "to": extract(trip, "to_location_address"),
        "departureDate": iso_date(extract(trip, "departure_date")),
        "departureTime": extract(trip, "departure_time"),
        "purpose": extract(trip, "purpose_category"),
        "status": extract(trip, "status"),
        "priority": extract(trip, "priority"),
        "createdAt": iso(extract(trip, "created_at")),
        "vehicle": None,
        "driver": None,
    }
    assignments = extract(trip, "assignments", [])
    if assignments:
        assignment = assignments[0]
        vehicle = extract(assignment, "vehicle")
        driver = extract(assignment, "driver")
        if vehicle:
            summary["vehicle"] = {
                "registrationNumber": extract(vehicle, "registration_number"),
                "make": extract(vehicle, "make"),
                "model": extract(vehicle, "model"),
            }
        if driver:
            summary["driver"] = {"name": full_name(driver), "phone": extract(driver, "phone")}
    return summary


@router.get("/dashboard")
async def employee_dashboard(db=Depends(get_db), user=Depends(get_current_user)):
    owner = {"requested_by_user_id": extract(user, "id")}
    today = start_of_today()

    async def count(status: TripRequestStatus | None = None) -> int:
        where = dict(owner)
        if status:
            where["status"] = status.value
        return await db.triprequest.count(where=where)

    recent = await db.triprequest.find_many(
        where={**owner, "departure_date": {"lt": today}},
        order={"departure_date": "desc"},
        take=WIDGET_SIZE,
    )
    upcoming = await db.triprequest.find_many(
        where={**owner, "departure_date": {"gte": today}},
        order={"departure_date": "asc"},
        take=WIDGET_SIZE,
        include={
            "assignments": {
                "include": {"vehicle": True, "driver": True},
                "order_by": {"created_at": "desc"},
            }
        },
    )

    return {
        "user": {
            "id": extract(user, "id"),
            "name": full_name(user, fallback=""),
            "email": extract(user, "email"),
            "departmentId": extract(user, "department_id"),
        },
        "stats": {
            "totalTrips": await count(),
            "pendingRequests": await count(TripRequestStatus.PENDING),
            "approvedTrips": await count(TripRequestStatus.APPROVED),
            "completedTrips": await count(TripRequestStatus.COMPLETED),
        },
        "recentTrips": [_trip_summary(t) for t in recent],
        "upcomingTrips": [_trip_summary(t) for t in upcoming],
    }
