from datetime import datetime
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, EmailStr, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import ADMIN_ROLES
from tripdesk.common.utils import (
    ensure_aware,
    extract,
    full_name,
    insensitive,
    iso,
    page_window,
    start_of_today,
    total_pages,
    utcnow,
)
from tripdesk.core.errors import ConflictError, NotFoundError
from tripdesk.db.prisma_client import get_db

router = APIRouter(prefix="/drivers", tags=["drivers"])

DriverStatus = Literal["Active", "Inactive", "Suspended"]


class DriverPayload(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    employee_id: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    license_number: Optional[str] = Field(default=None, min_length=1, max_length=32)
    license_type: Optional[str] = None
    license_expiry_date: Optional[datetime] = None
    is_available: Optional[bool] = None
    status: Optional[DriverStatus] = None
    cab_service_id: Optional[str] = None
    user_id: Optional[str] = None


class DriverCreate(DriverPayload):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    license_number: str = Field(min_length=1, max_length=32)


def serialize_driver(driver: Any) -> Dict[str, Any]:
    service = extract(driver, "cab_service")
    expiry = extract(driver, "license_expiry_date")
    return {
        "id": extract(driver, "id"),
        "name": full_name(driver),
        "firstName": extract(driver, "first_name"),
        "lastName": extract(driver, "last_name"),
        "employeeId": extract(driver, "employee_id"),
        "phone": extract(driver, "phone"),
        "email": extract(driver, "email"),
        "licenseNumber": extract(driver, "license_number"),
        "licenseType": extract(driver, "license_type"),
        "licenseExpiryDate": iso(expiry),
        "licenseExpired": bool(expiry) and ensure_aware(expiry) < start_of_today(),
        "isAvailable": extract(driver, "is_available", False),
        "status": extract(driver, "status"),
        "userId": extract(driver, "user_id"),
        "cabService": {"id": extract(service, "id"), "name": extract(service, "name")} if service else None,
        "createdAt": iso(extract(driver, "created_at")),
    }


async def load_driver(db, driver_id: str) -> Any:
    driver = await db.driver.find_first(
        where={"id": driver_id, "deleted_at": None}, include={"cab_service": True}
    )
    if not driver:
        raise NotFoundError("Driver not found")
    return driver


@router.get("")
async def list_drivers(
    search: str | None = None,
    status: str | None = None,
    is_available: bool | None = None,
    cab_service_id: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    where: Dict[str, Any] = {"deleted_at": None}
    if status and status != "all":
        where["status"] = status
    if is_available is not None:
        where["is_available"] = is_available
    if cab_service_id:
        where["cab_service_id"] = cab_service_id
    if search:
        term = insensitive(search)
        where["OR"] = [
            {"first_name": term},
            {"last_name": term},
            {"license_number": term},
            {"phone": term},
        ]

    skip, take = page_window(page, limit)
    total = await db.driver.count(where=where)
    drivers = await db.driver.find_many(
        where=where,
        skip=skip,
        take=take,
        include={"cab_service": True},
        order={"created_at": "desc"},
    )
    return {
        "drivers": [serialize_driver(d) for d in drivers],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages(total, limit),
    }


@router.get("/{driver_id}")
async def get_driver(driver_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return serialize_driver(await load_driver(db, driver_id))


@router.post("", status_code=201)
async def create_driver(payload: DriverCreate, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    if await db.driver.find_unique(where={"license_number": payload.license_number}):
        raise ConflictError("License number already registered")
    data = payload.model_dump(exclude_none=True)
    created = await db.driver.create(data=data, include={"cab_service": True})
    return serialize_driver(created)


@router.put("/{driver_id}")
async def update_driver(
    driver_id: str,
    payload: DriverPayload,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(ADMIN_ROLES)(user)
    await load_driver(db, driver_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("license_number"):
        clash = await db.driver.find_first(
            where={"license_number": data["license_number"], "id": {"not": driver_id}}
        )
        if clash:
            raise ConflictError("License number already registered")
    updated = await db.driver.update(where={"id": driver_id}, data=data, include={"cab_service": True})
    return serialize_driver(updated)


@router.delete("/{driver_id}", status_code=204)
async def delete_driver(driver_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    await load_driver(db, driver_id)
    await db.driver.update(
        where={"id": driver_id},
        data={"deleted_at": utcnow(), "is_available": False, "status": "Inactive"},
    )
    return Response(status_code=204)
