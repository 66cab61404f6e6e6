from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import BILLING_ROLES, PaymentMethod
from tripdesk.db.prisma_client import get_db
from tripdesk.trip_costs import services

router = APIRouter(prefix="/trip-costs", tags=["Trip Costs"])


class CostFields(BaseModel):
    base_fare: Optional[float] = Field(default=None, ge=0)
    distance_charges: Optional[float] = Field(default=None, ge=0)
    time_charges: Optional[float] = Field(default=None, ge=0)
    fuel_cost: Optional[float] = Field(default=None, ge=0)
    toll_charges: Optional[float] = Field(default=None, ge=0)
    parking_charges: Optional[float] = Field(default=None, ge=0)
    waiting_charges: Optional[float] = Field(default=None, ge=0)
    night_surcharge: Optional[float] = Field(default=None, ge=0)
    holiday_surcharge: Optional[float] = Field(default=None, ge=0)
    driver_allowance: Optional[float] = Field(default=None, ge=0)
    other_charges: Optional[float] = Field(default=None, ge=0)
    discount: Optional[float] = Field(default=None, ge=0)
    tax_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class TripCostCreate(CostFields):
    trip_assignment_id: str


class InvoiceRequest(BaseModel):
    invoiceNumber: Optional[str] = Field(default=None, max_length=64)
    dueDate: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class PaymentRequest(BaseModel):
    paymentMethod: PaymentMethod
    paidAt: Optional[datetime] = None
    transactionId: Optional[str] = Field(default=None, max_length=128)
    notes: Optional[str] = Field(default=None, max_length=1000)


@router.get("")
async def list_trip_costs(
    status: str | None = None,
    vendor_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = Query(1, ge=1),
    pageSize: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await services.list_costs(
        db,
        user,
        status=status,
        vendor_id=vendor_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=pageSize,
    )


@router.get("/{cost_id}")
async def get_trip_cost(cost_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await services.get_cost(db, user, cost_id)


@router.post("", status_code=201)
async def create_trip_cost(payload: TripCostCreate, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(BILLING_ROLES)(user)
    values = payload.model_dump(exclude_unset=True, exclude={"trip_assignment_id"})
    return await services.create_cost(db, user, payload.trip_assignment_id, values)


@router.put("/{cost_id}")
async def update_trip_cost(
    cost_id: str,
    payload: CostFields,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(BILLING_ROLES)(user)
    return await services.update_cost(db, user, cost_id, payload.model_dump(exclude_unset=True))


@router.delete("/{cost_id}", status_code=204)
async def delete_trip_cost(cost_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(BILLING_ROLES)(user)
    await services.delete_cost(db, cost_id)
    return Response(status_code=204)


@router.post("/{cost_id}/generate-invoice", summary="Invoice a single trip cost")
async def generate_invoice(
    cost_id: str,
    payload: InvoiceRequest,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(BILLING_ROLES)(user)
    return await services.generate_invoice(
        db,
        user,
        cost_id,
        invoice_number=payload.invoiceNumber,
        due_date=payload.dueDate,
        notes=payload.notes,
    )


@router.post("/{cost_id}/record-payment")
async def record_payment(
    cost_id: str,
    payload: PaymentRequest,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(BILLING_ROLES)(user)
    return await services.record_payment(
        db,
        user,
        cost_id,
        payment_method=payload.paymentMethod.value,
        paid_at=payload.paidAt,
        transaction_id=payload.transactionId,
        notes=payload.notes,
    )
