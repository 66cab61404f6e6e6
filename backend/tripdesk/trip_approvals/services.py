from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List

from tripdesk.common.enums import (
    ADMIN_ROLES,
    APPROVER_ROLE_USERS,
    REQUESTER_ONLY_ROLES,
    ApprovalStatus,
    Role,
    TripRequestStatus,
)
from tripdesk.common.utils import extract, full_name, insensitive, iso, page_window, total_pages, utcnow
from tripdesk.core.config import settings
from tripdesk.core.errors import InvalidStateError, NotFoundError, PermissionDeniedError
from tripdesk.core.notifier import notify_user
from tripdesk.trip_approvals.workflow import (
    approval_rules_payload,
    calculate_current_level,
    calculate_final_status,
    sort_steps,
)
from tripdesk.trip_requests.services import (
    REQUEST_INCLUDE,
    load_trip_request,
    serialize_trip_request,
)

logger = logging.getLogger(__name__)

APPROVAL_INCLUDE: Dict[str, Any] = {
    **REQUEST_INCLUDE,
    "approvals": {"include": {"approver": True}, "order_by": {"approval_level": "asc"}},
}


def serialize_step(step: Any) -> Dict[str, Any]:
    return {
        "id": extract(step, "id"),
        "level": extract(step, "approval_level"),
        "approverRole": extract(step, "approver_role"),
        "approverId": extract(step, "approver_user_id"),
        "approverName": full_name(extract(step, "approver"), fallback=None),
        "status": extract(step, "status"),
        "comments": extract(step, "comments"),
        "timestamp": iso(extract(step, "approved_at")),
    }


def serialize_approval_request(record: Any) -> Dict[str, Any]:
    steps = sort_steps(extract(record, "approvals", []))
    workflow = [serialize_step(step) for step in steps]
    payload = serialize_trip_request(record)
    payload.update(
        {
            "approvalWorkflow": workflow,
            "approvalHistory": [
                step for step in workflow if step["status"] != ApprovalStatus.PENDING.value
            ],
            "currentApprovalLevel": calculate_current_level(steps),
            "finalStatus": calculate_final_status(steps),
            "escalatedAt": iso(extract(record, "escalated_at")),
            "approvalRules": approval_rules_payload(),
        }
    )
    return payload


def final_status_filter(status: str) -> Dict[str, Any] | None:
    """Translate a final approval status into a relation filter on the steps."""
    if status == ApprovalStatus.PENDING.value:
        return {
            "approvals": {
                "some": {"status": ApprovalStatus.PENDING.value},
                "none": {"status": ApprovalStatus.REJECTED.value},
            }
        }
    if status == ApprovalStatus.APPROVED.value:
        return {"approvals": {"some": {}, "every": {"status": ApprovalStatus.APPROVED.value}}}
    if status == ApprovalStatus.REJECTED.value:
        return {"approvals": {"some": {"status": ApprovalStatus.REJECTED.value}}}
    return None


async def list_approvals(
    db,
    user: Any,
    *,
    search: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    page: int = 1,
    page_size: int = 10,
) -> Dict[str, Any]:
    conditions: List[Dict[str, Any]] = [{"approval_required": True}]
    if status and status != "all":
        status_filter = final_status_filter(status)
        if status_filter:
            conditions.append(status_filter)
    if priority and priority != "all":
        conditions.append({"priority": priority})
    if search:
        term = insensitive(search)
        conditions.append(
            {
                "OR": [
                    {"request_number": term},
                    {"purpose_description": term},
                    {"requested_by": {"is": {"first_name": term}}},
                    {"requested_by": {"is": {"last_name": term}}},
                ]
            }
        )
    if extract(user, "role") in REQUESTER_ONLY_ROLES:
        conditions.append({"requested_by_user_id": extract(user, "id")})

    where = {"AND": conditions}
    skip, take = page_window(page, page_size)
    total = await db.triprequest.count(where=where)
    records = await db.triprequest.find_many(
        where=where,
        skip=skip,
        take=take,
        order={"created_at": "desc"},
        include=APPROVAL_INCLUDE,
    )
    return {
        "data": [serialize_approval_request(record) for record in records],
        "meta": {
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": total_pages(total, page_size),
        },
    }


async def get_approval(db, request_id: str) -> Dict[str, Any]:
    record = await load_trip_request(db, request_id, include=APPROVAL_INCLUDE)
    return serialize_approval_request(record)


def _ensure_can_act(user: Any, step: Any, record: Any) -> None:
    role = extract(user, "role")
    if role == Role.SUPERADMIN.value:
        return
    if extract(record, "requested_by_user_id") == extract(user, "id"):
        raise PermissionDeniedError("FORBIDDEN: You cannot approve your own trip request")
    if role in ADMIN_ROLES:
        return
    required = APPROVER_ROLE_USERS.get(extract(step, "approver_role"))
    if role != required:
        raise PermissionDeniedError(
            f"FORBIDDEN: Only a {extract(step, 'approver_role')} approver can act on this step"
        )


async def process_approval_action(
    db, user: Any, approval_id: str, status: str, comments: str | None = None
) -> Dict[str, Any]:
    step = await db.tripapproval.find_unique(where={"id": approval_id})
    if not step:
        raise NotFoundError("Approval step not found")
    if extract(step, "status") != ApprovalStatus.PENDING.value:
        raise InvalidStateError("Request already processed")

    request_id = extract(step, "trip_request_id")
    record = await load_trip_request(
        db, request_id, include={"approvals": True, "requested_by": True}
    )
    if extract(record, "status") != TripRequestStatus.PENDING.value:
        raise InvalidStateError("Request already processed")

    steps = sort_steps(extract(record, "approvals", []))
    current_level = calculate_current_level(steps)
    if extract(step, "approval_level") != current_level:
        raise InvalidStateError(f"Approval level {current_level} must be completed first")

    _ensure_can_act(user, step, record)

    now = utcnow()
    step_data = {
        "status": status,
        "comments": comments,
        "approver_user_id": extract(user, "id"),
        "approved_at": now,
    }
    updated_steps = [
        {
            "approval_level": extract(item, "approval_level"),
            "status": status if extract(item, "id") == approval_id else extract(item, "status"),
        }
        for item in steps
    ]
    final_status = calculate_final_status(updated_steps)

    async with db.tx() as tx:
        await tx.tripapproval.update(where={"id": approval_id}, data=step_data)
        if final_status != ApprovalStatus.PENDING.value:
            await tx.triprequest.update(
                where={"id": request_id},
                data={"status": final_status, "escalated": False},
            )

    logger.info(
        "Approval step %s (level %s) %s by %s; request %s is %s",
        approval_id,
        extract(step, "approval_level"),
        status,
        extract(user, "id"),
        request_id,
        final_status,
    )

    request_number = extract(record, "request_number")
    if final_status != ApprovalStatus.PENDING.value:
        await notify_user(
            extract(record, "requested_by"),
            f"Trip request {request_number} {final_status.lower()}",
            f"Your trip request {request_number} has been {final_status.lower()}."
            + (f" Comments: {comments}" if comments else ""),
        )

    return {
        "id": approval_id,
        "tripRequestId": request_id,
        "status": status,
        "finalStatus": final_status,
        "currentApprovalLevel": calculate_current_level(updated_steps),
        "message": f"Approval step {status.lower()}",
    }


async def escalate_trip_request(db, request_id: str) -> Dict[str, Any]:
    record = await load_trip_request(db, request_id)
    if extract(record, "status") != TripRequestStatus.PENDING.value:
        raise InvalidStateError("Only pending trip requests can be escalated")

    now = utcnow()
    await db.triprequest.update(
        where={"id": request_id}, data={"escalated": True, "escalated_at": now}
    )
    logger.info("Trip request %s escalated manually", request_id)
    return {"id": request_id, "escalated": True, "escalatedAt": iso(now)}


async def escalate_stale_approvals(db, now: datetime | None = None) -> int:
    """Flag pending requests that have waited longer than the escalation window."""
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.approvals.escalation_hours)
    count = await db.triprequest.update_many(
        where={
            "status": TripRequestStatus.PENDING.value,
            "approval_required": True,
            "escalated": False,
            "created_at": {"lt": cutoff},
        },
        data={"escalated": True, "escalated_at": now},
    )
    if count:
        logger.info("Escalated %d stale trip request(s)", count)
    return count
