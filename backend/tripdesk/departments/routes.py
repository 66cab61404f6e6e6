from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import ADMIN_ROLES, RecordStatus, Role, UserStatus
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
from tripdesk.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from tripdesk.db.prisma_client import get_db

router = APIRouter(prefix="/departments", tags=["departments"])

DEPARTMENT_INCLUDE = {"business_unit": True, "head": True}


class DepartmentPayload(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    code: Optional[str] = Field(default=None, max_length=32)
    description: Optional[str] = None
    type: Optional[str] = None
    status: Optional[RecordStatus] = None
    business_unit_id: Optional[str] = None
    head_id: Optional[str] = None
    budget_allocated: Optional[float] = Field(default=None, ge=0)
    budget_utilized: Optional[float] = Field(default=None, ge=0)
    budget_currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    fiscal_year: Optional[str] = None


class DepartmentCreate(DepartmentPayload):
    name: str = Field(min_length=1, max_length=120)


def serialize_department(dept: Any, user_count: int = 0, vehicle_count: int = 0) -> Dict[str, Any]:
    unit = extract(dept, "business_unit")
    head = extract(dept, "head")
    return {
        "id": extract(dept, "id"),
        "name": extract(dept, "name"),
        "code": extract(dept, "code"),
        "description": extract(dept, "description"),
        "type": extract(dept, "type"),
        "status": extract(dept, "status"),
        "businessUnit": {"id": extract(unit, "id"), "name": extract(unit, "name")} if unit else None,
        "head": {"id": extract(head, "id"), "name": full_name(head), "email": extract(head, "email")}
        if head
        else None,
        "budgetAllocated": optional_number(extract(dept, "budget_allocated")),
        "budgetUtilized": optional_number(extract(dept, "budget_utilized")),
        "budgetCurrency": extract(dept, "budget_currency"),
        "fiscalYear": extract(dept, "fiscal_year"),
        "userCount": user_count,
        "vehicleCount": vehicle_count,
        "createdAt": iso(extract(dept, "created_at")),
        "updatedAt": iso(extract(dept, "updated_at")),
    }


async def _counts(db, dept_id: str) -> Dict[str, int]:
    return {
        "users": await db.user.count(where={"department_id": dept_id}),
        "vehicles": await db.vehicle.count(where={"assigned_department_id": dept_id}),
        "trip_requests": await db.triprequest.count(where={"department_id": dept_id}),
    }


async def _load(db, dept_id: str) -> Any:
    dept = await db.department.find_unique(where={"id": dept_id}, include=DEPARTMENT_INCLUDE)
    if not dept:
        raise NotFoundError("Department not found")
    return dept


async def _check_head(db, head_id: str | None) -> None:
    if head_id and not await db.user.find_unique(where={"id": head_id}):
        raise ValidationFailedError("Department head not found")


@router.get("")
async def list_departments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = None,
    status: str | None = None,
    business_unit_id: str | None = None,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    where: Dict[str, Any] = {}
    if search:
        term = insensitive(search)
        where["OR"] = [{"name": term}, {"code": term}, {"description": term}]
    if status and status != "all-status":
        where["status"] = status
    if business_unit_id and business_unit_id != "all-business-units":
        where["business_unit_id"] = business_unit_id

    skip, take = page_window(page, limit)
    total = await db.department.count(where=where)
    departments = await db.department.find_many(
        where=where, skip=skip, take=take, include=DEPARTMENT_INCLUDE, order={"created_at": "desc"}
    )
    results = []
    for dept in departments:
        counts = await _counts(db, extract(dept, "id"))
        results.append(serialize_department(dept, counts["users"], counts["vehicles"]))
    return {
        "departments": results,
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages(total, limit),
    }


@router.get("/potential-heads")
async def potential_heads(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    where = {"status": UserStatus.ACTIVE.value, "role": Role.HOD.value}
    skip, take = page_window(page, limit)
    total = await db.user.count(where=where)
    users = await db.user.find_many(where=where, skip=skip, take=take, order={"first_name": "asc"})
    return {
        "users": [
            {
                "id": extract(u, "id"),
                "first_name": extract(u, "first_name"),
                "last_name": extract(u, "last_name"),
                "email": extract(u, "email"),
                "role": extract(u, "role"),
            }
            for u in users
        ],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages(total, limit),
        },
    }


@router.get("/{dept_id}")
async def get_department(dept_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    dept = await _load(db, dept_id)
    counts = await _counts(db, dept_id)
    return serialize_department(dept, counts["users"], counts["vehicles"])


@router.post("", status_code=201)
async def create_department(payload: DepartmentCreate, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    name = payload.name.strip()
    code = normalise_code(payload.code or name)
    if await db.department.find_first(where={"OR": [{"name": name}, {"code": code}]}):
        raise ConflictError("Department with this name or code already exists")
    await _check_head(db, payload.head_id)

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
    created = await db.department.create(data=data, include=DEPARTMENT_INCLUDE)
    return serialize_department(created)


@router.put("/{dept_id}")
async def update_department(
    dept_id: str,
    payload: DepartmentPayload,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(ADMIN_ROLES)(user)
    await _load(db, dept_id)

    data = payload.model_dump(exclude_unset=True, exclude={"status"})
    if payload.name:
        data["name"] = payload.name.strip()
        data["code"] = normalise_code(payload.code or data["name"])
    elif payload.code:
        data["code"] = normalise_code(payload.code)
    clashes = [{key: data[key]} for key in ("name", "code") if key in data]
    if clashes and await db.department.find_first(where={"OR": clashes, "id": {"not": dept_id}}):
        raise ConflictError("Another department with this name or code already exists")
    if "head_id" in data:
        await _check_head(db, data["head_id"])
    if payload.status:
        data["status"] = payload.status.value
    data["updated_by"] = extract(user, "id")

    updated = await db.department.update(where={"id": dept_id}, data=data, include=DEPARTMENT_INCLUDE)
    counts = await _counts(db, dept_id)
    return serialize_department(updated, counts["users"], counts["vehicles"])


@router.delete("/{dept_id}", status_code=204)
async def delete_department(dept_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    await _load(db, dept_id)
    counts = await _counts(db, dept_id)
    if any(counts.values()):
        raise PermissionDeniedError(
            "Cannot delete department with associated records "
            f"({counts['users']} users, {counts['vehicles']} vehicles, "
            f"{counts['trip_requests']} trip requests)"
        )
    await db.department.delete(where={"id": dept_id})
    return Response(status_code=204)
