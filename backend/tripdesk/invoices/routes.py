from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import BILLING_ROLES, PaymentMethod
from tripdesk.db.prisma_client import get_db
from tripdesk.invoices import services

router = APIRouter(prefix="/invoices", tags=["Invoices"])

_MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class GenerateInvoiceRequest(BaseModel):
    cabServiceId: str
    month: str = Field(pattern=_MONTH_PATTERN)
    dueDate: datetime
    notes: Optional[str] = Field(default=None, max_length=1000)


class InvoicePaymentRequest(BaseModel):
    paymentMethod: PaymentMethod
    paidAt: Optional[datetime] = None
    transactionId: Optional[str] = Field(default=None, max_length=128)
    notes: Optional[str] = Field(default=None, max_length=1000)


@router.get("", summary="List vendor invoices and unbilled months")
async def list_invoices(
    status: str | None = None,
    cab_service_id: str | None = None,
    month: str | None = Query(None, pattern=_MONTH_PATTERN),
    search: str | None = None,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(BILLING_ROLES)(user)
    return await services.list_invoices(
        db, status=status, cab_service_id=cab_service_id, month=month, search=search
    )


@router.get("/preview")
async def preview_invoice(
    cab_service_id: str,
    month: str = Query(..., pattern=_MONTH_PATTERN),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(BILLING_ROLES)(user)
    return await services.get_service_month_details(db, cab_service_id, month)


@router.get("/service/{cab_service_id}")
async def get_service_invoice(
    cab_service_id: str,
    month: str = Query(..., pattern=_MONTH_PATTERN),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(BILLING_ROLES)(user)
    return await services.get_service_month_details(db, cab_service_id, month)


@router.post("/generate", status_code=201)
async def generate_invoice(
    payload: GenerateInvoiceRequest, db=Depends(get_db), user=Depends(get_current_user)
):
    require_role(BILLING_ROLES)(user)
    return await services.generate_invoice(
        db, user, payload.cabServiceId, payload.month, payload.dueDate, payload.notes
    )


@router.post("/{invoice_id}/pay")
async def pay_invoice(
    invoice_id: str,
    payload: InvoicePaymentRequest,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(BILLING_ROLES)(user)
    return await services.pay_invoice(
        db,
        invoice_id,
        payment_method=payload.paymentMethod.value,
        paid_at=payload.paidAt,
        transaction_id=payload.transactionId,
        notes=payload.notes,
    )


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(BILLING_ROLES)(user)
    return await services.get_invoice(db, invoice_id)
