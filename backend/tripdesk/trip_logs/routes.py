from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import ADMIN_ROLES, Role, TripLogStatus
from tripdesk.common.exports import csv_response
from tripdesk.db.prisma_client import get_db
from tripdesk.trip_logs import services

router = APIRouter(prefix="/trip-logs", tags=["Trip Logs"])

_WRITE_ROLES = [*ADMIN_ROLES, Role.DRIVER.value]


class TripLogCreate(BaseModel):
    tripNumber: str = Field(min_length=1, max_length=64)
    tripDate: datetime
    fromLocation: str = Field(min_length=1)
    toLocation: str = Field(min_length=1)
    tripRequestId: Optional[str] = None
    tripAssignmentId: Optional[str] = None
    tripStatus: Optional[TripLogStatus] = None
    passengerName: Optional[str] = None
    passengerDepartment: Optional[str] = None
    driverName: Optional[str] = None
    vehicleRegistration: Optional[str] = None
    plannedDistance: Optional[float] = Field(default=None, ge=0)
    plannedDeparture: Optional[datetime] = None
    plannedArrival: Optional[datetime] = None

    def to_db(self) -> Dict[str, Any]:
        data = {
            "trip_number": self.tripNumber,
            "trip_date": self.tripDate,
            "from_location": self.fromLocation,
            "to_location": self.toLocation,
            "trip_request_id": self.tripRequestId,
            "trip_assignment_id": self.tripAssignmentId,
            "passenger_name": self.passengerName,
            "passenger_department": self.passengerDepartment,
            "driver_name": self.driverName,
            "vehicle_registration": self.vehicleRegistration,
            "planned_distance": self.plannedDistance,
            "planned_departure": self.plannedDeparture,
            "planned_arrival": self.plannedArrival,
        }
        if self.tripStatus:
            data["trip_status"] = self.tripStatus.value
        return data


class TripLogUpdate(BaseModel):
    tripStatus: Optional[TripLogStatus] = None
    actualDistance: Optional[float] = Field(default=None, ge=0)
    actualDeparture: Optional[datetime] = None
    actualArrival: Optional[datetime] = None
    totalCost: Optional[float] = Field(default=None, ge=0)
    fuelCost: Optional[float] = Field(default=None, ge=0)
    tollCharges: Optional[float] = Field(default=None, ge=0)
    onTime: Optional[bool] = None
    overallRating: Optional[float] = Field(default=None, ge=0, le=5)
    comments: Optional[str] = Field(default=None, max_length=1000)

    def to_db(self) -> Dict[str, Any]:
        columns = {
            "actualDistance": "actual_distance",
            "actualDeparture": "actual_departure",
            "actualArrival": "actual_arrival",
            "totalCost": "total_cost",
            "fuelCost": "fuel_cost",
            "tollCharges": "toll_charges",
            "onTime": "on_time",
            "overallRating": "overall_rating",
            "comments": "comments",
        }
        values = self.model_dump(exclude_unset=True)
        data = {column: values[field] for field, column in columns.items() if field in values}
        if self.tripStatus:
            data["trip_status"] = self.tripStatus.value
        return data


@router.get("")
async def list_trip_logs(
    search: str | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await services.list_trip_logs(
        db,
        search=search,
        status=status,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=limit,
    )


@router.get("/export", summary="Export trip logs as CSV")
async def export_trip_logs(
    search: str | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    rows = await services.export_rows(
        db, search=search, status=status, date_from=date_from, date_to=date_to
    )
    return csv_response(rows, services.EXPORT_COLUMNS, "trip_logs.csv")


@router.get("/{log_id}")
async def get_trip_log(log_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await services.get_trip_log(db, log_id)


@router.post("", status_code=201)
async def create_trip_log(payload: TripLogCreate, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    return await services.create_trip_log(db, payload.to_db())


@router.put("/{log_id}")
async def update_trip_log(
    log_id: str,
    payload: TripLogUpdate,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(_WRITE_ROLES)(user)
    return await services.update_trip_log(db, log_id, payload.to_db())


@router.delete("/{log_id}", status_code=204)
async def delete_trip_log(log_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    await services.delete_trip_log(db, log_id)
    return Response(status_code=204)
