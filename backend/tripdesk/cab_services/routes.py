from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, EmailStr, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import ADMIN_ROLES, RecordStatus
from tripdesk.common.utils import (
    extract,
    insensitive,
    iso,
    normalise_code,
    page_window,
    total_pages,
    utcnow,
)
from tripdesk.core.errors import ConflictError, NotFoundError
from tripdesk.db.prisma_client import get_db

router = APIRouter(prefix="/cab-services", tags=["cab services"])

# Sri Lankan mobile numbers in E.164 form; blank clears the field.
PHONE_PATTERN = r"^(\+94\d{9})?$"


class CabServicePayload(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=50)
    type: Optional[str] = Field(default=None, max_length=50)
    status: Optional[RecordStatus] = None
    registration_number: Optional[str] = None
    tax_id: Optional[str] = None
    website: Optional[str] = None
    primary_contact_name: Optional[str] = None
    primary_contact_email: Optional[EmailStr] = None
    primary_contact_phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    address_street: Optional[str] = None
    address_city: Optional[str] = None
    address_province: Optional[str] = None
    address_postal_code: Optional[str] = None
    service_areas: Optional[List[str]] = None
    is_24x7: Optional[bool] = None


class CabServiceCreate(CabServicePayload):
    name: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=50)
    service_areas: List[str] = Field(default_factory=list)


def serialize_cab_service(service: Any, vehicle_count: int = 0) -> Dict[str, Any]:
    return {
        "id": extract(service, "id"),
        "name": extract(service, "name"),
        "code": extract(service, "code"),
        "type": extract(service, "type"),
        "status": extract(service, "status"),
        "registrationNumber": extract(service, "registration_number"),
        "taxId": extract(service, "tax_id"),
        "website": extract(service, "website"),
        "primaryContact": {
            "name": extract(service, "primary_contact_name"),
            "email": extract(service, "primary_contact_email"),
            "phone": extract(service, "primary_contact_phone"),
        },
        "address": {
            "street": extract(service, "address_street"),
            "city": extract(service, "address_city"),
            "province": extract(service, "address_province"),
            "postalCode": extract(service, "address_postal_code"),
        },
        "serviceAreas": extract(service, "service_areas", []),
        "is24x7": extract(service, "is_24x7", False),
        "vehicleCount": vehicle_count,
        "createdAt": iso(extract(service, "created_at")),
        "updatedAt": iso(extract(service, "updated_at")),
    }


async def _vehicle_count(db, service_id: str) -> int:
    return await db.vehicle.count(where={"cab_service_id": service_id, "deleted_at": None})


async def load_cab_service(db, service_id: str) -> Any:
    service = await db.cabservice.find_first(where={"id": service_id, "deleted_at": None})
    if not service:
        raise NotFoundError("Cab service not found")
    return service


@router.get("")
async def list_cab_services(
    search: str | None = None,
    status: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    where: Dict[str, Any] = {"deleted_at": None}
    if status and status != "all":
        where["status"] = status
    if search:
        term = insensitive(search)
        where["OR"] = [{"name": term}, {"code": term}, {"primary_contact_name": term}]

    skip, take = page_window(page, limit)
    total = await db.cabservice.count(where=where)
    services = await db.cabservice.find_many(
        where=where, skip=skip, take=take, order={"created_at": "desc"}
    )
    return {
        "cabServices": [
            serialize_cab_service(s, await _vehicle_count(db, extract(s, "id"))) for s in services
        ],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages(total, limit),
    }


@router.get("/{service_id}")
async def get_cab_service(service_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    service = await load_cab_service(db, service_id)
    return serialize_cab_service(service, await _vehicle_count(db, service_id))


@router.post("", status_code=201)
async def create_cab_service(payload: CabServiceCreate, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    code = normalise_code(payload.code)
    if await db.cabservice.find_unique(where={"code": code}):
        raise ConflictError("Cab service code already exists")

    data = payload.model_dump(exclude_none=True, exclude={"code", "status"})
    data.update(
        {
            "code": code,
            "status": (payload.status or RecordStatus.ACTIVE).value,
            "created_by": extract(user, "id"),
            "updated_by": extract(user, "id"),
        }
    )
    created = await db.cabservice.create(data=data)
    return serialize_cab_service(created)


@router.put("/{service_id}")
async def update_cab_service(
    service_id: str,
    payload: CabServicePayload,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(ADMIN_ROLES)(user)
    await load_cab_service(db, service_id)

    data = payload.model_dump(exclude_unset=True, exclude={"status"})
    if payload.code:
        data["code"] = normalise_code(payload.code)
        clash = await db.cabservice.find_first(where={"code": data["code"], "id": {"not": service_id}})
        if clash:
            raise ConflictError("Cab service code already exists")
    if payload.status:
        data["status"] = payload.status.value
    data["updated_by"] = extract(user, "id")

    updated = await db.cabservice.update(where={"id": service_id}, data=data)
    return serialize_cab_service(updated, await _vehicle_count(db, service_id))


@router.delete("/{service_id}", status_code=204)
async def delete_cab_service(service_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    await load_cab_service(db, service_id)
    await db.cabservice.update(
        where={"id": service_id},
        data={"deleted_at": utcnow(), "status": RecordStatus.INACTIVE.value},
    )
    return Response(status_code=204)
