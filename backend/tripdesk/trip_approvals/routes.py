from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import ADMIN_ROLES
from tripdesk.db.prisma_client import get_db
from tripdesk.trip_approvals import services

router = APIRouter(prefix="/trip-approvals", tags=["Trip Approvals"])


class ApprovalAction(BaseModel):
    status: Literal["Approved", "Rejected"]
    comments: Optional[str] = Field(default=None, max_length=500)


@router.get("", summary="List trip requests with their approval workflow")
async def list_approvals(
    search: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    page: int = Query(1, ge=1),
    pageSize: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await services.list_approvals(
        db,
        user,
        search=search,
        status=status,
        priority=priority,
        page=page,
        page_size=pageSize,
    )


@router.get("/{trip_request_id}")
async def get_approval(trip_request_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await services.get_approval(db, trip_request_id)


@router.patch("/steps/{approval_id}", summary="Approve or reject the active approval step")
async def act_on_approval(
    approval_id: str,
    payload: ApprovalAction,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await services.process_approval_action(
        db, user, approval_id, payload.status, payload.comments
    )


@router.post("/{trip_request_id}/escalate")
async def escalate_trip_request(
    trip_request_id: str, db=Depends(get_db), user=Depends(get_current_user)
):
    require_role(ADMIN_ROLES)(user)
    return await services.escalate_trip_request(db, trip_request_id)
