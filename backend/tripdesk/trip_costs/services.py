"""Trip cost computation, status derivation and per-trip billing."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping

from tripdesk.common.enums import BILLING_ROLES, CostStatus, InvoiceStatus
from tripdesk.common.utils import (
    ensure_aware,
    extract,
    full_name,
    iso,
    page_window,
    to_number,
    total_pages,
    utcnow,
)
from tripdesk.core.config import settings
from tripdesk.core.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

FARE_FIELDS = (
    "base_fare",
    "distance_charges",
    "time_charges",
    "fuel_cost",
    "toll_charges",
    "parking_charges",
    "waiting_charges",
    "night_surcharge",
    "holiday_surcharge",
    "driver_allowance",
    "other_charges",
)
COST_FIELDS = FARE_FIELDS + ("discount", "tax_percentage")

COST_INCLUDE: Dict[str, Any] = {
    "assignment": {
        "include": {
            "trip_request": {
                "include": {"requested_by": {"include": {"department": True}}}
            },
            "vehicle": {"include": {"cab_service": True}},
            "driver": True,
        }
    },
}


def calculate_totals(values: Mapping[str, Any]) -> Dict[str, float]:
    sub_total = sum(to_number(values.get(field)) for field in FARE_FIELDS)
    sub_total -= to_number(values.get("discount"))
    tax_amount = sub_total * to_number(values.get("tax_percentage")) / 100
    return {
        "sub_total": round(sub_total, 2),
        "tax_amount": round(tax_amount, 2),
        "total_cost": round(sub_total + tax_amount, 2),
    }


def derive_status(cost: Any, now: datetime | None = None) -> str:
    now = now or utcnow()
    if extract(cost, "payment_status") == CostStatus.PAID.value:
        return CostStatus.PAID.value
    if extract(cost, "invoice_number"):
        due = extract(cost, "invoice_due_date")
        if due and ensure_aware(due) < now:
            return CostStatus.OVERDUE.value
        return CostStatus.PENDING.value
    created = extract(cost, "created_at")
    cutoff = now - timedelta(days=settings.billing.cost_overdue_days)
    if created and ensure_aware(created) < cutoff:
        return CostStatus.OVERDUE.value
    return CostStatus.DRAFT.value


def status_filter(status: str, now: datetime | None = None) -> Dict[str, Any] | None:
    """Query equivalent of :func:`derive_status` for one status value."""
    now = now or utcnow()
    cutoff = now - timedelta(days=settings.billing.cost_overdue_days)
    unpaid = {"payment_status": {"not": CostStatus.PAID.value}}
    if status == CostStatus.PAID.value:
        return {"payment_status": CostStatus.PAID.value}
    if status == CostStatus.PENDING.value:
        return {
            "AND": [
                unpaid,
                {"invoice_number": {"not": None}},
                {"OR": [{"invoice_due_date": None}, {"invoice_due_date": {"gte": now}}]},
            ]
        }
    if status == CostStatus.OVERDUE.value:
        return {
            "AND": [
                unpaid,
                {
                    "OR": [
                        {"invoice_number": {"not": None}, "invoice_due_date": {"lt": now}},
                        {"invoice_number": None, "created_at": {"lt": cutoff}},
                    ]
                },
            ]
        }
    if status == CostStatus.DRAFT.value:
        return {"AND": [unpaid, {"invoice_number": None}, {"created_at": {"gte": cutoff}}]}
    return None


def cost_breakdown(cost: Any) -> Dict[str, Any]:
    def value(field: str) -> float:
        return to_number(extract(cost, field))

    driver = {"baseFare": value("base_fare"), "driverAllowance": value("driver_allowance")}
    vehicle = {
        "distanceCharges": value("distance_charges"),
        "timeCharges": value("time_charges"),
        "fuelCost": value("fuel_cost"),
    }
    additional = {
        "toll": value("toll_charges"),
        "parking": value("parking_charges"),
        "waiting": value("waiting_charges"),
        "nightSurcharge": value("night_surcharge"),
        "holidaySurcharge": value("holiday_surcharge"),
        "others": value("other_charges"),
    }
    return {
        "driverCharges": {**driver, "total": round(sum(driver.values()), 2)},
        "vehicleCosts": {**vehicle, "total": round(sum(vehicle.values()), 2)},
        "additionalCosts": {**additional, "total": round(sum(additional.values()), 2)},
        "totalAdditionalCosts": round(
            additional["toll"] + additional["parking"] + additional["waiting"], 2
        ),
        "discount": value("discount"),
        "subTotal": value("sub_total"),
        "taxPercentage": value("tax_percentage"),
        "taxAmount": value("tax_amount"),
    }


def serialize_cost(cost: Any, now: datetime | None = None) -> Dict[str, Any]:
    assignment = extract(cost, "assignment")
    request = extract(assignment, "trip_request")
    requester = extract(request, "requested_by")
    department = extract(requester, "department")
    vehicle = extract(assignment, "vehicle")
    vendor = extract(vehicle, "cab_service")
    return {
        "id": extract(cost, "id"),
        "tripAssignmentId": extract(cost, "trip_assignment_id"),
        "tripRequestId": extract(request, "id", "N/A"),
        "requestNumber": extract(request, "request_number", "N/A"),
        "cabServiceId": extract(vendor, "id", ""),
        "cabServiceName": extract(vendor, "name", "Unassigned"),
        "vehicle": {
            "id": extract(vehicle, "id"),
            "registrationNumber": extract(vehicle, "registration_number"),
        },
        "driverName": full_name(extract(assignment, "driver")),
        "status": derive_status(cost, now),
        "createdAt": iso(extract(cost, "created_at")),
        "totalCost": to_number(extract(cost, "total_cost")),
        "currency": extract(cost, "currency", settings.billing.default_currency),
        "costBreakdown": cost_breakdown(cost),
        "billing": {
            "billToDepartment": extract(department, "name")
            or extract(request, "cost_center")
            or "General",
            "taxAmount": to_number(extract(cost, "tax_amount")),
        },
        "payment": {
            "status": extract(cost, "payment_status"),
            "method": extract(cost, "payment_method"),
            "paidDate": iso(extract(cost, "paid_at")),
            "transactionId": extract(cost, "transaction_id"),
            "invoiceNumber": extract(cost, "invoice_number"),
            "invoiceDate": iso(extract(cost, "invoice_date")),
            "dueDate": iso(extract(cost, "invoice_due_date")),
        },
        "invoiceId": extract(cost, "invoice_id"),
        "tripCount": 1,
        "requestedBy": {
            "id": extract(requester, "id"),
            "name": full_name(requester),
            "email": extract(requester, "email"),
        }
        if requester
        else None,
    }


def build_filters(
    user: Any,
    *,
    status: str | None = None,
    vendor_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    now: datetime | None = None,
) -> Dict[str, Any]:
    conditions: List[Dict[str, Any]] = []
    if extract(user, "role") not in BILLING_ROLES:
        conditions.append(
            {
                "assignment": {
                    "is": {"trip_request": {"is": {"requested_by_user_id": extract(user, "id")}}}
                }
            }
        )
    if status and status != "all-status":
        status_condition = status_filter(status, now)
        if status_condition:
            conditions.append(status_condition)
    if vendor_id and vendor_id != "all-vendors":
        conditions.append({"assignment": {"is": {"vehicle": {"is": {"cab_service_id": vendor_id}}}}})
    if start_date:
        conditions.append({"created_at": {"gte": ensure_aware(start_date)}})
    if end_date:
        conditions.append({"created_at": {"lte": ensure_aware(end_date)}})
    return {"AND": conditions} if conditions else {}


async def list_costs(
    db,
    user: Any,
    *,
    status: str | None = None,
    vendor_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    page_size: int = 10,
) -> Dict[str, Any]:
    now = utcnow()
    where = build_filters(
        user, status=status, vendor_id=vendor_id, start_date=start_date, end_date=end_date, now=now
    )
    skip, take = page_window(page, page_size)
    total = await db.tripcost.count(where=where)
    costs = await db.tripcost.find_many(
        where=where, skip=skip, take=take, order={"created_at": "desc"}, include=COST_INCLUDE
    )
    return {
        "data": [serialize_cost(cost, now) for cost in costs],
        "meta": {
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": total_pages(total, page_size),
        },
    }


async def _load(db, cost_id: str) -> Any:
    cost = await db.tripcost.find_unique(where={"id": cost_id}, include=COST_INCLUDE)
    if not cost:
        raise NotFoundError("Trip cost not found")
    return cost


async def get_cost(db, user: Any, cost_id: str) -> Dict[str, Any]:
    cost = await _load(db, cost_id)
    if extract(user, "role") not in BILLING_ROLES:
        request = extract(extract(cost, "assignment"), "trip_request")
        if extract(request, "requested_by_user_id") != extract(user, "id"):
            raise PermissionDeniedError("FORBIDDEN: You can only view costs for your own trips")
    return serialize_cost(cost)


async def create_cost(db, user: Any, assignment_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
    assignment = await db.tripassignment.find_unique(where={"id": assignment_id})
    if not assignment:
        raise NotFoundError("Assignment not found")

    data = {field: to_number(values.get(field)) for field in COST_FIELDS}
    created = await db.tripcost.create(
        data={
            **data,
            **calculate_totals(data),
            "trip_assignment_id": assignment_id,
            "currency": values.get("currency") or settings.billing.default_currency,
            "payment_status": CostStatus.DRAFT.value,
            "created_by": extract(user, "id"),
        }
    )
    logger.info("Trip cost %s recorded for assignment %s", extract(created, "id"), assignment_id)
    return serialize_cost(await _load(db, extract(created, "id")))


def is_locked(cost: Any) -> bool:
    status = extract(cost, "payment_status")
    if status == CostStatus.PAID.value:
        return True
    return bool(extract(cost, "invoice_number")) and status != CostStatus.DRAFT.value


async def update_cost(db, user: Any, cost_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
    cost = await _load(db, cost_id)
    if is_locked(cost):
        raise PermissionDeniedError("FORBIDDEN: Cannot modify a paid or invoiced trip cost")

    merged = {field: to_number(extract(cost, field)) for field in COST_FIELDS}
    merged.update({field: to_number(values[field]) for field in COST_FIELDS if field in values})

    data: Dict[str, Any] = {**merged, **calculate_totals(merged), "updated_by": extract(user, "id")}
    if values.get("currency"):
        data["currency"] = values["currency"]
    await db.tripcost.update(where={"id": cost_id}, data=data)
    return serialize_cost(await _load(db, cost_id))


async def delete_cost(db, cost_id: str) -> None:
    cost = await _load(db, cost_id)
    if extract(cost, "invoice_id") or extract(cost, "invoice_number") or (
        extract(cost, "payment_status") == CostStatus.PAID.value
    ):
        raise InvalidStateError("Only un-invoiced trip costs can be deleted")
    await db.tripcost.delete(where={"id": cost_id})


async def generate_invoice(
    db,
    user: Any,
    cost_id: str,
    *,
    invoice_number: str | None = None,
    due_date: datetime | None = None,
    notes: str | None = None,
) -> Dict[str, Any]:
    cost = await _load(db, cost_id)
    if extract(cost, "payment_status") == CostStatus.PAID.value:
        raise InvalidStateError("Trip cost is already paid")
    if extract(cost, "invoice_number") or extract(cost, "invoice_id"):
        raise InvalidStateError("Invoice already generated for this trip cost")

    now = utcnow()
    if due_date is not None and ensure_aware(due_date) <= now:
        raise ValidationFailedError("Due date must be in the future")

    number = invoice_number or f"INV-{int(now.timestamp() * 1000)}"
    await db.tripcost.update(
        where={"id": cost_id},
        data={
            "invoice_number": number,
            "invoice_date": now,
            "invoice_due_date": ensure_aware(due_date)
            if due_date
            else now + timedelta(days=settings.billing.cost_overdue_days),
            "invoice_notes": notes,
            "payment_status": CostStatus.PENDING.value,
            "updated_by": extract(user, "id"),
        },
    )
    logger.info("Invoice %s generated for trip cost %s", number, cost_id)
    return serialize_cost(await _load(db, cost_id))


async def record_payment(
    db,
    user: Any,
    cost_id: str,
    *,
    payment_method: str,
    paid_at: datetime | None = None,
    transaction_id: str | None = None,
    notes: str | None = None,
) -> Dict[str, Any]:
    cost = await _load(db, cost_id)
    if extract(cost, "payment_status") == CostStatus.PAID.value:
        raise InvalidStateError("Trip cost is already paid")

    now = utcnow()
    paid_at = ensure_aware(paid_at) if paid_at else now
    if paid_at > now:
        raise ValidationFailedError("Payment date cannot be in the future")

    await db.tripcost.update(
        where={"id": cost_id},
        data={
            "payment_status": CostStatus.PAID.value,
            "payment_method": payment_method,
            "paid_at": paid_at,
            "transaction_id": transaction_id,
            "payment_notes": notes,
            "updated_by": extract(user, "id"),
        },
    )

    invoice_id = extract(cost, "invoice_id")
    if invoice_id:
        outstanding = await db.tripcost.count(
            where={"invoice_id": invoice_id, "payment_status": {"not": CostStatus.PAID.value}}
        )
        if outstanding == 0:
            await db.invoice.update(
                where={"id": invoice_id},
                data={
                    "status": InvoiceStatus.PAID.value,
                    "paid_date": paid_at,
                    "payment_method": payment_method,
                },
            )
            logger.info("Invoice %s settled by trip cost payments", invoice_id)

    return serialize_cost(await _load(db, cost_id))
