from datetime import datetime
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, EmailStr, Field, model_validator

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.cab_services.routes import load_cab_service
from tripdesk.common.enums import ADMIN_ROLES, AgreementStatus
from tripdesk.common.utils import (
    ensure_aware,
    extract,
    insensitive,
    iso,
    optional_number,
    page_window,
    total_pages,
    utcnow,
)
from tripdesk.core.errors import ConflictError, NotFoundError, ValidationFailedError
from tripdesk.db.prisma_client import get_db

router = APIRouter(prefix="/cab-agreements", tags=["cab agreements"])

PERIOD_ERROR = "End date must be on or after the start date"


class AgreementPayload(BaseModel):
    cab_service_id: Optional[str] = None
    agreement_number: Optional[str] = Field(default=None, max_length=100)
    title: Optional[str] = Field(default=None, max_length=255)
    type: Optional[str] = Field(default=None, max_length=100)
    status: Optional[AgreementStatus] = None
    priority: Optional[Literal["Low", "Medium", "High"]] = None
    document_url: Optional[str] = Field(default=None, max_length=500)
    client_company_name: Optional[str] = None
    client_contact_person: Optional[str] = None
    client_email: Optional[EmailStr] = None
    client_phone: Optional[str] = Field(default=None, max_length=20)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    auto_renewal: Optional[bool] = None
    renewal_period: Optional[str] = None
    notice_period_days: Optional[int] = Field(default=None, ge=0)
    contract_value: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, max_length=10)
    payment_terms: Optional[str] = None
    payment_schedule: Optional[str] = None
    security_deposit: Optional[float] = Field(default=None, ge=0)
    insurance_required: Optional[bool] = None
    insurance_amount: Optional[float] = Field(default=None, ge=0)
    insurance_provider: Optional[str] = None
    insurance_policy_number: Optional[str] = None
    insurance_expiry_date: Optional[datetime] = None
    sla_response_time_minutes: Optional[int] = Field(default=None, ge=0)
    sla_availability_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    termination_clause: Optional[str] = None
    penalty_clause: Optional[str] = None


class AgreementCreate(AgreementPayload):
    cab_service_id: str
    agreement_number: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=255)
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_dates(self):
        if ensure_aware(self.end_date) < ensure_aware(self.start_date):
            raise ValueError(PERIOD_ERROR)
        return self


def check_period(start: datetime | None, end: datetime | None) -> None:
    if start and end and ensure_aware(end) < ensure_aware(start):
        raise ValidationFailedError(PERIOD_ERROR)


def serialize_agreement(agreement: Any) -> Dict[str, Any]:
    service = extract(agreement, "cab_service")
    return {
        "id": extract(agreement, "id"),
        "agreementNumber": extract(agreement, "agreement_number"),
        "title": extract(agreement, "title"),
        "type": extract(agreement, "type"),
        "status": extract(agreement, "status"),
        "priority": extract(agreement, "priority"),
        "cabService": {
            "id": extract(agreement, "cab_service_id"),
            "name": extract(service, "name"),
            "code": extract(service, "code"),
        },
        "client": {
            "companyName": extract(agreement, "client_company_name"),
            "contactPerson": extract(agreement, "client_contact_person"),
            "email": extract(agreement, "client_email"),
            "phone": extract(agreement, "client_phone"),
        },
        "startDate": iso(extract(agreement, "start_date")),
        "endDate": iso(extract(agreement, "end_date")),
        "autoRenewal": extract(agreement, "auto_renewal", False),
        "renewalPeriod": extract(agreement, "renewal_period"),
        "noticePeriodDays": extract(agreement, "notice_period_days"),
        "contractValue": optional_number(extract(agreement, "contract_value")),
        "currency": extract(agreement, "currency"),
        "paymentTerms": extract(agreement, "payment_terms"),
        "paymentSchedule": extract(agreement, "payment_schedule"),
        "securityDeposit": optional_number(extract(agreement, "security_deposit")),
        "insurance": {
            "required": extract(agreement, "insurance_required", False),
            "amount": optional_number(extract(agreement, "insurance_amount")),
            "provider": extract(agreement, "insurance_provider"),
            "policyNumber": extract(agreement, "insurance_policy_number"),
            "expiryDate": iso(extract(agreement, "insurance_expiry_date")),
        },
        "sla": {
            "responseTimeMinutes": extract(agreement, "sla_response_time_minutes"),
            "availabilityPercentage": optional_number(extract(agreement, "sla_availability_percentage")),
        },
        "terminationClause": extract(agreement, "termination_clause"),
        "penaltyClause": extract(agreement, "penalty_clause"),
        "documentUrl": extract(agreement, "document_url"),
        "createdAt": iso(extract(agreement, "created_at")),
        "updatedAt": iso(extract(agreement, "updated_at")),
    }


async def _load(db, agreement_id: str) -> Any:
    agreement = await db.cabagreement.find_first(
        where={"id": agreement_id, "deleted_at": None}, include={"cab_service": True}
    )
    if not agreement:
        raise NotFoundError("Agreement not found")
    return agreement


@router.get("")
async def list_agreements(
    cab_service_id: str | None = None,
    status: str | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    where: Dict[str, Any] = {"deleted_at": None}
    if cab_service_id:
        where["cab_service_id"] = cab_service_id
    if status and status != "all":
        where["status"] = status
    if search:
        term = insensitive(search)
        where["OR"] = [
            {"agreement_number": term},
            {"title": term},
            {"client_company_name": term},
        ]

    skip, take = page_window(page, limit)
    total = await db.cabagreement.count(where=where)
    agreements = await db.cabagreement.find_many(
        where=where,
        skip=skip,
        take=take,
        include={"cab_service": True},
        order={"created_at": "desc"},
    )
    return {
        "agreements": [serialize_agreement(a) for a in agreements],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages(total, limit),
    }


@router.get("/{agreement_id}")
async def get_agreement(agreement_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return serialize_agreement(await _load(db, agreement_id))


@router.post("", status_code=201)
async def create_agreement(payload: AgreementCreate, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    await load_cab_service(db, payload.cab_service_id)
    if await db.cabagreement.find_unique(where={"agreement_number": payload.agreement_number}):
        raise ConflictError("Agreement number already exists")

    data = payload.model_dump(exclude_none=True, exclude={"status"})
    data["status"] = (payload.status or AgreementStatus.DRAFT).value
    data["created_by"] = extract(user, "id")
    data["updated_by"] = extract(user, "id")
    created = await db.cabagreement.create(data=data, include={"cab_service": True})
    return serialize_agreement(created)


@router.put("/{agreement_id}")
async def update_agreement(
    agreement_id: str,
    payload: AgreementPayload,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(ADMIN_ROLES)(user)
    current = await _load(db, agreement_id)
    data = payload.model_dump(exclude_unset=True, exclude={"status"})

    check_period(
        data.get("start_date") or extract(current, "start_date"),
        data.get("end_date") or extract(current, "end_date"),
    )
    if data.get("cab_service_id"):
        await load_cab_service(db, data["cab_service_id"])
    if data.get("agreement_number"):
        clash = await db.cabagreement.find_first(
            where={"agreement_number": data["agreement_number"], "id": {"not": agreement_id}}
        )
        if clash:
            raise ConflictError("Agreement number already exists")
    if payload.status:
        data["status"] = payload.status.value
    data["updated_by"] = extract(user, "id")

    updated = await db.cabagreement.update(
        where={"id": agreement_id}, data=data, include={"cab_service": True}
    )
    return serialize_agreement(updated)


@router.delete("/{agreement_id}", status_code=204)
async def delete_agreement(agreement_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    await _load(db, agreement_id)
    await db.cabagreement.update(where={"id": agreement_id}, data={"deleted_at": utcnow()})
    return Response(status_code=204)
