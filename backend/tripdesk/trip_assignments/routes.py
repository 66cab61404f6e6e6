from fastapi import APIRouter, Depends, Query

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import ADMIN_ROLES, Role
from tripdesk.db.prisma_client import get_db
from tripdesk.trip_assignments import services
from tripdesk.trip_assignments.models import AssignmentCreate, AssignmentUpdate

router = APIRouter(prefix="/trip-assignments", tags=["Trip Assignments"])

_UPDATE_ROLES = [*ADMIN_ROLES, Role.DRIVER.value]


@router.get("")
async def list_assignments(
    search: str | None = None,
    searchTerm: str | None = None,
    status: str | None = None,
    page: int = Query(1, ge=1),
    pageSize: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await services.list_assignments(
        db, search=search or searchTerm, status=status, page=page, page_size=pageSize
    )


@router.get("/{assignment_id}")
async def get_assignment(assignment_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await services.get_assignment(db, assignment_id)


@router.post("", status_code=201, summary="Assign a vehicle and driver to an approved trip")
async def create_assignment(
    payload: AssignmentCreate, db=Depends(get_db), user=Depends(get_current_user)
):
    require_role(ADMIN_ROLES)(user)
    return await services.create_assignment(db, user, payload)


@router.put("/{assignment_id}")
async def update_assignment(
    assignment_id: str,
    payload: AssignmentUpdate,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(_UPDATE_ROLES)(user)
    return await services.update_assignment(db, user, assignment_id, payload)
