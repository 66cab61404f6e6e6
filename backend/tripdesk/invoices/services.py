"""Monthly vendor invoicing.

Trip costs are billed to the cab service that owns the assigned vehicle,
one invoice per service per ``YYYY-MM`` month. Months that still have
uninvoiced costs show up as Draft entries until an invoice is generated.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Tuple

from tripdesk.common.enums import CostStatus, InvoiceStatus
from tripdesk.common.utils import (
    display_month,
    ensure_aware,
    extract,
    full_name,
    iso,
    month_key,
    parse_month,
    to_number,
    utcnow,
)
from tripdesk.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

TRIP_INCLUDE: Dict[str, Any] = {
    "assignment": {
        "include": {
            "vehicle": {"include": {"cab_service": True}},
            "driver": True,
            "trip_request": True,
        }
    }
}


def uninvoiced_where(cab_service_id: str | None = None, month: str | None = None) -> Dict[str, Any]:
    where: Dict[str, Any] = {
        "invoice_id": None,
        "invoice_number": None,
        "payment_status": {"not": CostStatus.PAID.value},
    }
    if month:
        start, end = parse_month(month)
        where["created_at"] = {"gte": start, "lt": end}
    vehicle_filter: Dict[str, Any] = {"cab_service_id": cab_service_id} if cab_service_id else {
        "cab_service_id": {"not": None}
    }
    where["assignment"] = {"is": {"vehicle": {"is": vehicle_filter}}}
    return where


def serialize_trip(cost: Any) -> Dict[str, Any]:
    assignment = extract(cost, "assignment")
    request = extract(assignment, "trip_request")
    return {
        "id": extract(cost, "id"),
        "requestNumber": extract(request, "request_number"),
        "tripDate": iso(extract(assignment, "scheduled_departure") or extract(cost, "created_at")),
        "from": extract(request, "from_location_address"),
        "to": extract(request, "to_location_address"),
        "driverName": full_name(extract(assignment, "driver")),
        "totalCost": to_number(extract(cost, "total_cost")),
        "paymentStatus": extract(cost, "payment_status"),
    }


def group_by_vehicle(costs: Iterable[Any]) -> List[Dict[str, Any]]:
    groups: Dict[str, Dict[str, Any]] = {}
    for cost in costs:
        vehicle = extract(extract(cost, "assignment"), "vehicle")
        vehicle_id = extract(vehicle, "id", "unknown")
        group = groups.setdefault(
            vehicle_id,
            {
                "vehicleId": vehicle_id,
                "registrationNumber": extract(vehicle, "registration_number", "Unknown"),
                "make": extract(vehicle, "make"),
                "model": extract(vehicle, "model"),
                "trips": [],
                "totalCost": 0.0,
                "tripCount": 0,
            },
        )
        group["trips"].append(serialize_trip(cost))
        group["totalCost"] = round(group["totalCost"] + to_number(extract(cost, "total_cost")), 2)
        group["tripCount"] += 1
    return sorted(groups.values(), key=lambda group: group["registrationNumber"])


def sum_costs(costs: Iterable[Any]) -> float:
    return round(sum(to_number(extract(cost, "total_cost")) for cost in costs), 2)


def derive_invoice_status(invoice: Any, now: datetime | None = None) -> str:
    status = extract(invoice, "status", InvoiceStatus.DRAFT.value)
    due = extract(invoice, "due_date")
    if status == InvoiceStatus.PENDING.value and due and ensure_aware(due) < (now or utcnow()):
        return InvoiceStatus.OVERDUE.value
    return status


def _entry(
    *,
    invoice: Any,
    cab_service: Any,
    cab_service_id: str,
    month: str,
    costs: List[Any],
    status: str,
) -> Dict[str, Any]:
    return {
        "id": extract(invoice, "id"),
        "invoiceNumber": extract(invoice, "invoice_number")
        or f"DRAFT-{cab_service_id[:4].upper()}-{month}",
        "cabServiceId": cab_service_id,
        "cabServiceName": extract(cab_service, "name", "Unknown"),
        "month": month,
        "displayMonth": display_month(month),
        "tripCount": len(costs),
        "totalAmount": sum_costs(costs) if costs else to_number(extract(invoice, "total_amount")),
        "status": status,
        "dueDate": iso(extract(invoice, "due_date")),
        "paidDate": iso(extract(invoice, "paid_date")),
        "paymentMethod": extract(invoice, "payment_method"),
        "notes": extract(invoice, "notes"),
        "breakdownByVehicle": group_by_vehicle(costs),
    }


def summarize_uninvoiced(costs: Iterable[Any]) -> "OrderedDict[Tuple[str, str], Dict[str, Any]]":
    """Group uninvoiced trip costs by ``(cab_service_id, month)``."""
    groups: "OrderedDict[Tuple[str, str], Dict[str, Any]]" = OrderedDict()
    for cost in costs:
        vehicle = extract(extract(cost, "assignment"), "vehicle")
        service_id = extract(vehicle, "cab_service_id")
        created = extract(cost, "created_at")
        if not service_id or not created:
            continue
        key = (service_id, month_key(created))
        group = groups.setdefault(key, {"cab_service": extract(vehicle, "cab_service"), "costs": []})
        group["costs"].append(cost)
    return groups


def _matches(entry: Dict[str, Any], status, cab_service_id, month, search) -> bool:
    if status and status != "all" and entry["status"] != status:
        return False
    if cab_service_id and entry["cabServiceId"] != cab_service_id:
        return False
    if month and entry["month"] != month:
        return False
    if search:
        needle = search.lower()
        haystack = f"{entry['invoiceNumber']} {entry['cabServiceName']}".lower()
        if needle not in haystack:
            return False
    return True


async def list_invoices(
    db,
    *,
    status: str | None = None,
    cab_service_id: str | None = None,
    month: str | None = None,
    search: str | None = None,
) -> Dict[str, Any]:
    if month:
        parse_month(month)
    now = utcnow()

    invoices = await db.invoice.find_many(
        include={"cab_service": True, "trip_costs": {"include": TRIP_INCLUDE}},
        order={"billing_month": "desc"},
    )
    pending_costs = await db.tripcost.find_many(where=uninvoiced_where(), include=TRIP_INCLUDE)
    groups = summarize_uninvoiced(pending_costs)

    entries: List[Dict[str, Any]] = []
    for invoice in invoices:
        service_id = extract(invoice, "cab_service_id")
        invoice_month = extract(invoice, "billing_month")
        status_value = derive_invoice_status(invoice, now)
        costs = list(extract(invoice, "trip_costs", []) or [])
        if status_value == InvoiceStatus.DRAFT.value:
            group = groups.pop((service_id, invoice_month), None)
            costs = group["costs"] if group else []
            if not costs:
                status_value = InvoiceStatus.NO_CHARGES.value
        entries.append(
            _entry(
                invoice=invoice,
                cab_service=extract(invoice, "cab_service"),
                cab_service_id=service_id,
                month=invoice_month,
                costs=costs,
                status=status_value,
            )
        )

    for (service_id, group_month), group in groups.items():
        entries.append(
            _entry(
                invoice=None,
                cab_service=group["cab_service"],
                cab_service_id=service_id,
                month=group_month,
                costs=group["costs"],
                status=InvoiceStatus.DRAFT.value,
            )
        )

    entries = [e for e in entries if _matches(e, status, cab_service_id, month, search)]
    entries.sort(key=lambda e: e["cabServiceName"])
    entries.sort(key=lambda e: e["month"], reverse=True)

    def _total(*statuses: str) -> float:
        return round(sum(e["totalAmount"] for e in entries if e["status"] in statuses), 2)

    return {
        "data": entries,
        "summary": {
            "totalInvoices": len(entries),
            "totalAmount": round(sum(e["totalAmount"] for e in entries), 2),
            "draftAmount": _total(InvoiceStatus.DRAFT.value),
            "pendingAmount": _total(InvoiceStatus.PENDING.value),
            "overdueAmount": _total(InvoiceStatus.OVERDUE.value),
            "paidAmount": _total(InvoiceStatus.PAID.value),
        },
    }


async def _require_service(db, cab_service_id: str) -> Any:
    service = await db.cabservice.find_unique(where={"id": cab_service_id})
    if not service or extract(service, "deleted_at"):
        raise NotFoundError("Cab service not found")
    return service


async def get_service_month_details(db, cab_service_id: str, month: str) -> Dict[str, Any]:
    parse_month(month)
    service = await _require_service(db, cab_service_id)
    invoice = await db.invoice.find_first(
        where={"cab_service_id": cab_service_id, "billing_month": month}
    )

    if invoice and extract(invoice, "status") != InvoiceStatus.DRAFT.value:
        costs = await db.tripcost.find_many(
            where={"invoice_id": extract(invoice, "id")}, include=TRIP_INCLUDE
        )
        status = derive_invoice_status(invoice)
    else:
        costs = await db.tripcost.find_many(
            where=uninvoiced_where(cab_service_id, month), include=TRIP_INCLUDE
        )
        status = InvoiceStatus.DRAFT.value

    if not invoice and not costs:
        raise NotFoundError("No trips found for this service and month")

    entry = _entry(
        invoice=invoice,
        cab_service=service,
        cab_service_id=cab_service_id,
        month=month,
        costs=list(costs),
        status=status,
    )
    entry["trips"] = [serialize_trip(cost) for cost in costs]
    return entry


async def get_invoice(db, invoice_id: str) -> Dict[str, Any]:
    invoice = await db.invoice.find_unique(
        where={"id": invoice_id},
        include={"cab_service": True, "trip_costs": {"include": TRIP_INCLUDE}},
    )
    if not invoice:
        raise NotFoundError("Invoice not found")
    costs = list(extract(invoice, "trip_costs", []) or [])
    entry = _entry(
        invoice=invoice,
        cab_service=extract(invoice, "cab_service"),
        cab_service_id=extract(invoice, "cab_service_id"),
        month=extract(invoice, "billing_month"),
        costs=costs,
        status=derive_invoice_status(invoice),
    )
    entry["trips"] = [serialize_trip(cost) for cost in costs]
    return entry


async def generate_invoice(
    db,
    user: Any,
    cab_service_id: str,
    month: str,
    due_date: datetime,
    notes: str | None = None,
) -> Dict[str, Any]:
    parse_month(month)
    now = utcnow()
    due_date = ensure_aware(due_date)
    if due_date <= now:
        raise ValidationFailedError("Due date must be in the future")

    service = await _require_service(db, cab_service_id)
    invoice = await db.invoice.find_first(
        where={"cab_service_id": cab_service_id, "billing_month": month}
    )
    if invoice and extract(invoice, "status") != InvoiceStatus.DRAFT.value:
        raise ConflictError("Invoice already generated")

    costs = await db.tripcost.find_many(where=uninvoiced_where(cab_service_id, month))
    if not costs:
        raise InvalidStateError("No uninvoiced trips for this period")

    total = sum_costs(costs)
    number = f"INV-{extract(service, 'code', cab_service_id[:6]).upper()}-{month.replace('-', '')}"
    invoice_data = {
        "invoice_number": number,
        "total_amount": total,
        "due_date": due_date,
        "notes": notes,
        "status": InvoiceStatus.PENDING.value,
    }

    async with db.tx() as tx:
        if invoice:
            invoice_id = extract(invoice, "id")
            await tx.invoice.update(where={"id": invoice_id}, data=invoice_data)
        else:
            created = await tx.invoice.create(
                data={
                    **invoice_data,
                    "cab_service_id": cab_service_id,
                    "billing_month": month,
                    "created_by": extract(user, "id"),
                }
            )
            invoice_id = extract(created, "id")
        await tx.tripcost.update_many(
            where={"id": {"in": [extract(cost, "id") for cost in costs]}},
            data={
                "invoice_id": invoice_id,
                "invoice_number": number,
                "invoice_date": now,
                "invoice_due_date": due_date,
                "payment_status": CostStatus.PENDING.value,
            },
        )

    logger.info(
        "Invoice %s generated for %s %s: %d trip(s), total %.2f",
        number,
        cab_service_id,
        month,
        len(costs),
        total,
    )
    return await get_invoice(db, invoice_id)


async def pay_invoice(
    db,
    invoice_id: str,
    *,
    payment_method: str,
    paid_at: datetime | None = None,
    transaction_id: str | None = None,
    notes: str | None = None,
) -> Dict[str, Any]:
    invoice = await db.invoice.find_unique(where={"id": invoice_id})
    if not invoice:
        raise NotFoundError("Invoice not found")
    if extract(invoice, "status") != InvoiceStatus.PENDING.value:
        raise InvalidStateError("Invoice cannot be paid")

    now = utcnow()
    paid_at = ensure_aware(paid_at) if paid_at else now
    if paid_at > now:
        raise ValidationFailedError("Payment date cannot be in the future")

    async with db.tx() as tx:
        await tx.invoice.update(
            where={"id": invoice_id},
            data={
                "status": InvoiceStatus.PAID.value,
                "paid_date": paid_at,
                "payment_method": payment_method,
                "transaction_id": transaction_id,
                "notes": notes if notes is not None else extract(invoice, "notes"),
            },
        )
        await tx.tripcost.update_many(
            where={"invoice_id": invoice_id},
            data={
                "payment_status": CostStatus.PAID.value,
                "payment_method": payment_method,
                "paid_at": paid_at,
                "transaction_id": transaction_id,
            },
        )

    logger.info("Invoice %s paid via %s", invoice_id, payment_method)
    return await get_invoice(db, invoice_id)
