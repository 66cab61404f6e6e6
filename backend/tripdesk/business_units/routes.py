from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import ADMIN_ROLES, RecordStatus
from tripdesk.common.utils import (
    extract,
    full_name,
    insensitive,
    iso,
    normalise_code,
    optional_number,
    page_window,
    total_pages,
)
from tripdesk.core.errors import ConflictError, NotFoundError, PermissionDeniedError
from tripdesk.db.prisma_client import get_db

router = APIRouter(prefix="/business-units", tags=["business units"])


class BusinessUnitPayload(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    code: Optional[str] = Field(default=None, max_length=32)
    description: Optional[str] = None
    status: Optional[RecordStatus] = None
    manager_id: Optional[str] = None
    budget: Optional[float] = Field(default=None, ge=0)
    established: Optional[datetime] = None


class BusinessUnitCreate(BusinessUnitPayload):
    name: str = Field(min_length=1, max_length=120)


def serialize_unit(unit: Any, department_count: int = 0, user_count: int = 0) -> Dict[str, Any]:
    manager = extract(unit, "manager")
    return {
        "id": extract(unit, "id"),
        "name": extract(unit, "name"),
        "code": extract(unit, "code"),
        "description": extract(unit, "description"),
        "status": extract(unit, "status"),
        "manager": {"id": extract(manager, "id"), "name": full_name(manager)} if manager else None,
        "budget": optional_number(extract(unit, "budget")),
        "established": iso(extract(unit, "established")),
        "departmentCount": department_count,
        "userCount": user_count,
        "createdAt": iso(extract(unit, "created_at")),
    }


async def _counts(db, unit_id: str) -> Dict[str, int]:
    return {
        "departments": await db.department.count(where={"business_unit_id": unit_id}),
        "users": await db.user.count(where={"business_unit_id": unit_id}),
    }


async def _load(db, unit_id: str) -> Any:
    unit = await db.businessunit.find_unique(where={"id": unit_id}, include={"manager": True})
    if not unit:
        raise NotFoundError("Business Unit not found")
    return unit


@router.get("")
async def list_business_units(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = None,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    where: Dict[str, Any] = {}
    if search:
        term = insensitive(search)
        where["OR"] = [{"name": term}, {"code": term}, {"description": term}]

    skip, take = page_window(page, limit)
    total = await db.businessunit.count(where=where)
    units = await db.businessunit.find_many(
        where=where, skip=skip, take=take, include={"manager": True}, order={"name": "asc"}
    )
    results = []
    for unit in units:
        counts = await _counts(db, extract(unit, "id"))
        results.append(serialize_unit(unit, counts["departments"], counts["users"]))
    return {
        "businessUnits": results,
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages(total, limit),
    }


@router.get("/{unit_id}")
async def get_business_unit(unit_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    unit = await _load(db, unit_id)
    counts = await _counts(db, unit_id)
    return serialize_unit(unit, counts["departments"], counts["users"])


@router.post("", status_code=201)
async def create_business_unit(
    payload: BusinessUnitCreate, db=Depends(get_db), user=Depends(get_current_user)
):
    require_role(ADMIN_ROLES)(user)
    name = payload.name.strip()
    code = normalise_code(payload.code or name)
    if await db.businessunit.find_first(where={"OR": [{"name": name}, {"code": code}]}):
        raise ConflictError("Business Unit already exists")

    data = payload.model_dump(exclude_none=True, exclude={"name", "code", "status"})
    data.update(
        {
            "name": name,
            "code": code,
            "status": (payload.status or RecordStatus.ACTIVE).value,
            "created_by": extract(user, "id"),
            "updated_by": extract(user, "id"),
        }
    )
    created = await db.businessunit.create(data=data, include={"manager": True})
    return serialize_unit(created)


@router.put("/{unit_id}")
async def update_business_unit(
    unit_id: str,
    payload: BusinessUnitPayload,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(ADMIN_ROLES)(user)
    await _load(db, unit_id)

    data = payload.model_dump(exclude_unset=True, exclude={"status"})
    if payload.name:
        data["name"] = payload.name.strip()
    if payload.code:
        data["code"] = normalise_code(payload.code)
    clashes = [{key: data[key]} for key in ("name", "code") if data.get(key)]
    if clashes and await db.businessunit.find_first(where={"OR": clashes, "id": {"not": unit_id}}):
        raise ConflictError("Another Business Unit exists with the same name or code")
    if payload.status:
        data["status"] = payload.status.value
    data["updated_by"] = extract(user, "id")

    updated = await db.businessunit.update(where={"id": unit_id}, data=data, include={"manager": True})
    counts = await _counts(db, unit_id)
    return serialize_unit(updated, counts["departments"], counts["users"])


@router.delete("/{unit_id}", status_code=204)
async def delete_business_unit(unit_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    await _load(db, unit_id)
    counts = await _counts(db, unit_id)
    if counts["users"]:
        raise PermissionDeniedError("Cannot delete Business Unit that has employees assigned")
    if counts["departments"]:
        raise PermissionDeniedError("Cannot delete Business Unit that has departments")
    await db.businessunit.delete(where={"id": unit_id})
    return Response(status_code=204)
