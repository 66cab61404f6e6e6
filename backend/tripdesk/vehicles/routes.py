from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import ADMIN_ROLES
from tripdesk.db.prisma_client import get_db
from tripdesk.vehicles import services

router = APIRouter(prefix="/vehicles", tags=["vehicles"])

OperationalStatus = Literal["Active", "Maintenance", "Inactive", "Retired"]
AvailabilityStatus = Literal["Available", "In Use", "Unavailable"]


class VehicleBase(BaseModel):
    registration_number: Optional[str] = Field(default=None, min_length=1, max_length=20)
    make: Optional[str] = Field(default=None, min_length=1, max_length=60)
    model: Optional[str] = Field(default=None, min_length=1, max_length=60)
    year: Optional[int] = Field(default=None, ge=1950, le=2100)
    color: Optional[str] = None
    chassis_number: Optional[str] = None
    engine_number: Optional[str] = None
    vehicle_type: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    seating_capacity: Optional[int] = Field(default=None, ge=1, le=100)
    ownership_type: Optional[str] = None
    purchase_date: Optional[datetime] = None
    purchase_price: Optional[float] = Field(default=None, ge=0)
    total_kilometers: Optional[float] = Field(default=None, ge=0)
    operational_status: Optional[OperationalStatus] = None
    cab_service_id: Optional[str] = None
    assigned_department_id: Optional[str] = None
    current_driver_id: Optional[str] = None


class VehicleCreate(VehicleBase):
    registration_number: str = Field(min_length=1, max_length=20)
    make: str = Field(min_length=1, max_length=60)
    model: str = Field(min_length=1, max_length=60)


class VehicleUpdate(VehicleBase):
    availability_status: Optional[AvailabilityStatus] = None


class MaintenanceCreate(BaseModel):
    maintenance_type: str = Field(min_length=1, max_length=60)
    description: Optional[str] = None
    status: Literal["Scheduled", "In Progress", "Completed", "Cancelled"] = "Scheduled"
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    odometer_reading: Optional[float] = Field(default=None, ge=0)
    cost: Optional[float] = Field(default=None, ge=0)
    vendor_name: Optional[str] = None


@router.get("")
async def list_vehicles(
    vehicle_type: str | None = None,
    availability_status: str | None = None,
    cab_service_id: str | None = None,
    ownership_type: str | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await services.list_vehicles(
        db,
        vehicle_type=vehicle_type,
        availability_status=availability_status,
        cab_service_id=cab_service_id,
        ownership_type=ownership_type,
        search=search,
        page=page,
        limit=limit,
    )


@router.get("/{vehicle_id}")
async def get_vehicle(vehicle_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return services.serialize_vehicle(await services.load_vehicle(db, vehicle_id))


@router.post("", status_code=201)
async def create_vehicle(payload: VehicleCreate, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    return await services.create_vehicle(db, user, payload.model_dump(exclude_none=True))


@router.put("/{vehicle_id}")
async def update_vehicle(
    vehicle_id: str,
    payload: VehicleUpdate,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(ADMIN_ROLES)(user)
    return await services.update_vehicle(db, user, vehicle_id, payload.model_dump(exclude_unset=True))


@router.delete("/{vehicle_id}")
async def delete_vehicle(vehicle_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    return await services.delete_vehicle(db, user, vehicle_id)


@router.get("/{vehicle_id}/maintenance")
async def list_maintenance(vehicle_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await services.list_maintenance(db, vehicle_id)


@router.post("/{vehicle_id}/maintenance", status_code=201)
async def add_maintenance(
    vehicle_id: str,
    payload: MaintenanceCreate,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(ADMIN_ROLES)(user)
    return await services.add_maintenance(db, user, vehicle_id, payload.model_dump(exclude_none=True))
