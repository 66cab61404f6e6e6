from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import ADMIN_ROLES, Role
from tripdesk.common.exports import csv_response
from tripdesk.db.prisma_client import get_db
from tripdesk.gps_logs import services

router = APIRouter(prefix="/gps-logs", tags=["GPS Logs"])

_INGEST_ROLES = [*ADMIN_ROLES, Role.DRIVER.value]


class GpsLogFilter(BaseModel):
    vehicleId: Optional[str] = None
    driverId: Optional[str] = None
    tripAssignmentId: Optional[str] = None
    status: Optional[str] = None
    dateFrom: Optional[datetime] = None
    dateTo: Optional[datetime] = None
    searchTerm: Optional[str] = None

    def to_filters(self) -> Dict[str, Any]:
        return {
            "vehicle_id": self.vehicleId,
            "driver_id": self.driverId,
            "trip_assignment_id": self.tripAssignmentId,
            "status": self.status,
            "date_from": self.dateFrom,
            "date_to": self.dateTo,
            "search": self.searchTerm,
        }


class GpsPing(BaseModel):
    vehicleId: str
    driverId: Optional[str] = None
    tripAssignmentId: Optional[str] = None
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: Optional[str] = None
    speed: Optional[float] = Field(default=None, ge=0)
    heading: Optional[float] = Field(default=None, ge=0, lt=360)
    altitude: Optional[float] = None
    accuracy: Optional[float] = Field(default=None, ge=0)
    ignitionStatus: Optional[str] = Field(default=None, pattern="^(On|Off)$")
    mileage: Optional[float] = Field(default=None, ge=0)
    batteryLevel: Optional[int] = Field(default=None, ge=0, le=100)
    signalStrength: Optional[int] = Field(default=None, ge=0, le=100)
    networkProvider: Optional[str] = None
    panicButton: bool = False
    geofenceStatus: Optional[str] = None
    speedLimit: Optional[float] = Field(default=None, gt=0)
    deviceTimestamp: Optional[datetime] = None

    def to_db(self) -> Dict[str, Any]:
        columns = {
            "vehicleId": "vehicle_id",
            "driverId": "driver_id",
            "tripAssignmentId": "trip_assignment_id",
            "latitude": "latitude",
            "longitude": "longitude",
            "address": "address",
            "speed": "speed",
            "heading": "heading",
            "altitude": "altitude",
            "accuracy": "accuracy",
            "ignitionStatus": "ignition_status",
            "mileage": "mileage",
            "batteryLevel": "battery_level",
            "signalStrength": "signal_strength",
            "networkProvider": "network_provider",
            "panicButton": "panic_button",
            "geofenceStatus": "geofence_status",
            "speedLimit": "speed_limit",
            "deviceTimestamp": "device_timestamp",
        }
        values = self.model_dump()
        return {column: values[field] for field, column in columns.items() if values[field] is not None}


@router.get("")
async def list_gps_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    searchTerm: str | None = None,
    status: str = "all",
    vehicleId: str | None = None,
    driverId: str | None = None,
    tripAssignmentId: str | None = None,
    dateFrom: datetime | None = None,
    dateTo: datetime | None = None,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await services.list_gps_logs(
        db,
        page=page,
        limit=limit,
        search=searchTerm,
        status=status,
        vehicle_id=vehicleId,
        driver_id=driverId,
        trip_assignment_id=tripAssignmentId,
        date_from=dateFrom,
        date_to=dateTo,
    )


@router.get("/replay/{trip_assignment_id}", summary="Route history for one trip")
async def trip_replay(trip_assignment_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await services.get_trip_replay(db, trip_assignment_id)


@router.post("/export", summary="Export GPS logs as CSV")
async def export_gps_logs(
    payload: GpsLogFilter, db=Depends(get_db), user=Depends(get_current_user)
):
    rows = await services.export_rows(db, **payload.to_filters())
    return csv_response(rows, services.EXPORT_COLUMNS, "gps_logs.csv")


@router.post("", status_code=201)
async def ingest_ping(payload: GpsPing, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(_INGEST_ROLES)(user)
    return await services.record_ping(db, payload.to_db())


@router.get("/{log_id}")
async def get_gps_log(log_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await services.get_gps_log(db, log_id)
