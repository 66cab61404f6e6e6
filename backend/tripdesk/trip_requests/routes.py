from fastapi import APIRouter, Depends, Query, Response

from tripdesk.auth.dependencies import get_current_user
from tripdesk.db.prisma_client import get_db
from tripdesk.trip_requests import services
from tripdesk.trip_requests.models import TripRequestCreate, TripRequestUpdate

router = APIRouter(prefix="/trip-requests", tags=["Trip Requests"])


@router.get("", summary="List trip requests")
async def list_trip_requests(
    searchTerm: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    department: str | None = None,
    page: int = Query(1, ge=1),
    pageSize: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await services.list_trip_requests(
        db,
        user,
        search_term=searchTerm,
        status=status,
        priority=priority,
        department=department,
        page=page,
        page_size=pageSize,
    )


@router.get("/{request_id}")
async def get_trip_request(request_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await services.get_trip_request(db, user, request_id)


@router.post("", status_code=201, summary="Submit a trip request")
async def create_trip_request(
    payload: TripRequestCreate, db=Depends(get_db), user=Depends(get_current_user)
):
    return await services.create_trip_request(db, user, payload)


@router.put("/{request_id}")
async def update_trip_request(
    request_id: str,
    payload: TripRequestUpdate,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await services.update_trip_request(db, user, request_id, payload)


@router.post("/{request_id}/cancel")
async def cancel_trip_request(request_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await services.cancel_trip_request(db, user, request_id)


@router.delete("/{request_id}", status_code=204)
async def delete_trip_request(request_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    await services.delete_trip_request(db, user, request_id)
    return Response(status_code=204)
