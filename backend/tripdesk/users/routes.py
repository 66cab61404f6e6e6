from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends, Query, Response

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.auth.routes import serialize_profile
from tripdesk.common.enums import ADMIN_ROLES, Role, UserStatus
from tripdesk.common.utils import extract, insensitive, iso, page_window, total_pages
from tripdesk.core.errors import ConflictError, NotFoundError
from tripdesk.core.security import hash_password
from tripdesk.db.prisma_client import get_db
from tripdesk.users.models import UserCreate, UserUpdate

router = APIRouter(prefix="/users", tags=["users"])

_COLUMNS = {
    "email": "email",
    "firstName": "first_name",
    "lastName": "last_name",
    "phone": "phone",
    "employeeId": "employee_id",
    "departmentId": "department_id",
    "businessUnitId": "business_unit_id",
    "managerId": "manager_id",
}


def serialize_user(user: Any) -> Dict[str, Any]:
    payload = serialize_profile(user)
    payload.update(
        {
            "phone": extract(user, "phone"),
            "businessUnitId": extract(user, "business_unit_id"),
            "managerId": extract(user, "manager_id"),
            "lastLoginAt": iso(extract(user, "last_login_at")),
            "createdAt": iso(extract(user, "created_at")),
        }
    )
    return payload


async def _load(db, user_id: str) -> Any:
    user = await db.user.find_unique(where={"id": user_id}, include={"department": True})
    if not user:
        raise NotFoundError("User not found")
    return user


@router.get("")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = None,
    role: str | None = None,
    status: UserStatus | None = None,
    sortBy: Literal["created_at", "first_name", "last_name", "email"] = "created_at",
    sortOrder: Literal["asc", "desc"] = "desc",
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(ADMIN_ROLES)(user)
    where: Dict[str, Any] = {}
    if role:
        where["role"] = role.upper()
    if status:
        where["status"] = status.value
    if search:
        term = insensitive(search)
        where["OR"] = [
            {"first_name": term},
            {"last_name": term},
            {"email": term},
            {"employee_id": term},
        ]

    skip, take = page_window(page, limit)
    total = await db.user.count(where=where)
    users = await db.user.find_many(
        where=where,
        skip=skip,
        take=take,
        order={sortBy: sortOrder},
        include={"department": True},
    )
    return {
        "users": [serialize_user(u) for u in users],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages(total, limit),
    }


@router.get("/{user_id}")
async def get_user(user_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    return serialize_user(await _load(db, user_id))


@router.post("", status_code=201)
async def create_user(payload: UserCreate, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    existing = await db.user.find_unique(where={"email": payload.email})
    if existing:
        raise ConflictError("User already exists")

    values = payload.model_dump(exclude={"password", "role"})
    data = {column: values[field] for field, column in _COLUMNS.items() if values.get(field) is not None}
    data["password_hash"] = hash_password(payload.password)
    data["role"] = payload.role.value
    data["status"] = UserStatus.ACTIVE.value

    created = await db.user.create(data=data, include={"department": True})
    return serialize_user(created)


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    payload: UserUpdate,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(ADMIN_ROLES)(user)
    await _load(db, user_id)

    values = payload.model_dump(exclude_unset=True)
    data = {column: values[field] for field, column in _COLUMNS.items() if field in values}
    if "email" in data:
        clash = await db.user.find_first(where={"email": data["email"], "id": {"not": user_id}})
        if clash:
            raise ConflictError("User already exists")
    if payload.password:
        data["password_hash"] = hash_password(payload.password)
    if payload.role:
        data["role"] = payload.role.value
    if payload.status:
        data["status"] = payload.status.value

    updated = await db.user.update(where={"id": user_id}, data=data, include={"department": True})
    return serialize_user(updated)


@router.delete("/{user_id}", status_code=204)
async def deactivate_user(user_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role([Role.SUPERADMIN.value])(user)
    await _load(db, user_id)
    await db.user.update(where={"id": user_id}, data={"status": UserStatus.INACTIVE.value})
    return Response(status_code=204)
