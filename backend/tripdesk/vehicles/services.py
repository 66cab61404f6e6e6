from __future__ import annotations

import logging
from typing import Any, Dict

from tripdesk.common.utils import (
    extract,
    full_name,
    insensitive,
    iso,
    optional_number,
    page_window,
    to_number,
    total_pages,
    utcnow,
)
from tripdesk.core.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

VEHICLE_INCLUDE = {"cab_service": True, "current_driver": True, "department": True}


def serialize_vehicle(vehicle: Any) -> Dict[str, Any]:
    service = extract(vehicle, "cab_service")
    driver = extract(vehicle, "current_driver")
    department = extract(vehicle, "department")
    return {
        "id": extract(vehicle, "id"),
        "registration_number": extract(vehicle, "registration_number"),
        "make": extract(vehicle, "make"),
        "model": extract(vehicle, "model"),
        "year": extract(vehicle, "year"),
        "color": extract(vehicle, "color"),
        "chassis_number": extract(vehicle, "chassis_number"),
        "engine_number": extract(vehicle, "engine_number"),
        "vehicle_type": extract(vehicle, "vehicle_type") or "UNKNOWN",
        "fuel_type": extract(vehicle, "fuel_type"),
        "transmission": extract(vehicle, "transmission"),
        "seating_capacity": extract(vehicle, "seating_capacity"),
        "ownership_type": extract(vehicle, "ownership_type"),
        "purchase_date": iso(extract(vehicle, "purchase_date")),
        "purchase_price": optional_number(extract(vehicle, "purchase_price")),
        "total_kilometers": to_number(extract(vehicle, "total_kilometers")),
        "operational_status": extract(vehicle, "operational_status"),
        "availability_status": extract(vehicle, "availability_status"),
        "cab_service": {"id": extract(service, "id"), "name": extract(service, "name")} if service else None,
        "current_driver": {"id": extract(driver, "id"), "name": full_name(driver)} if driver else None,
        "department": {"id": extract(department, "id"), "name": extract(department, "name")}
        if department
        else None,
        "created_at": iso(extract(vehicle, "created_at")),
        "updated_at": iso(extract(vehicle, "updated_at")),
    }


def serialize_maintenance(log: Any) -> Dict[str, Any]:
    return {
        "id": extract(log, "id"),
        "vehicle_id": extract(log, "vehicle_id"),
        "maintenance_type": extract(log, "maintenance_type"),
        "description": extract(log, "description"),
        "status": extract(log, "status"),
        "scheduled_date": iso(extract(log, "scheduled_date")),
        "completed_date": iso(extract(log, "completed_date")),
        "odometer_reading": optional_number(extract(log, "odometer_reading")),
        "cost": optional_number(extract(log, "cost")),
        "vendor_name": extract(log, "vendor_name"),
        "created_at": iso(extract(log, "created_at")),
    }


async def load_vehicle(db, vehicle_id: str) -> Any:
    vehicle = await db.vehicle.find_first(
        where={"id": vehicle_id, "deleted_at": None}, include=VEHICLE_INCLUDE
    )
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    return vehicle


async def list_vehicles(
    db,
    *,
    vehicle_type: str | None = None,
    availability_status: str | None = None,
    cab_service_id: str | None = None,
    ownership_type: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    where: Dict[str, Any] = {"deleted_at": None}
    if vehicle_type:
        where["vehicle_type"] = vehicle_type
    if availability_status:
        where["availability_status"] = availability_status
    if cab_service_id:
        where["cab_service_id"] = cab_service_id
    if ownership_type:
        where["ownership_type"] = {"equals": ownership_type, "mode": "insensitive"}
    if search:
        term = insensitive(search)
        where["OR"] = [{"registration_number": term}, {"make": term}, {"model": term}]

    skip, take = page_window(page, limit)
    total = await db.vehicle.count(where=where)
    vehicles = await db.vehicle.find_many(
        where=where, skip=skip, take=take, include=VEHICLE_INCLUDE, order={"created_at": "desc"}
    )
    return {
        "vehicles": [serialize_vehicle(v) for v in vehicles],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages(total, limit),
    }


async def create_vehicle(db, user: Any, data: Dict[str, Any]) -> Dict[str, Any]:
    exists = await db.vehicle.find_unique(where={"registration_number": data["registration_number"]})
    if exists:
        raise ConflictError("Vehicle already exists")
    data.update(
        {
            "operational_status": data.get("operational_status") or "Active",
            "availability_status": "Available",
            "created_by": extract(user, "id"),
        }
    )
    created = await db.vehicle.create(data=data, include=VEHICLE_INCLUDE)
    logger.info("Vehicle %s registered", data["registration_number"])
    return serialize_vehicle(created)


async def update_vehicle(db, user: Any, vehicle_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    await load_vehicle(db, vehicle_id)
    if data.get("registration_number"):
        clash = await db.vehicle.find_first(
            where={
                "registration_number": data["registration_number"],
                "id": {"not": vehicle_id},
                "deleted_at": None,
            }
        )
        if clash:
            raise ConflictError("Registration number already in use")
    data["updated_by"] = extract(user, "id")
    updated = await db.vehicle.update(where={"id": vehicle_id}, data=data, include=VEHICLE_INCLUDE)
    return serialize_vehicle(updated)


async def delete_vehicle(db, user: Any, vehicle_id: str) -> Dict[str, str]:
    await load_vehicle(db, vehicle_id)
    await db.vehicle.update(
        where={"id": vehicle_id},
        data={"deleted_at": utcnow(), "updated_by": extract(user, "id")},
    )
    return {"message": "Vehicle deleted successfully"}


async def list_maintenance(db, vehicle_id: str) -> list:
    await load_vehicle(db, vehicle_id)
    logs = await db.maintenancelog.find_many(
        where={"vehicle_id": vehicle_id}, order={"created_at": "desc"}
    )
    return [serialize_maintenance(log) for log in logs]


async def add_maintenance(db, user: Any, vehicle_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Record a maintenance entry and advance the odometer when it moved forward."""
    vehicle = await load_vehicle(db, vehicle_id)
    data["vehicle_id"] = vehicle_id
    data["created_by"] = extract(user, "id")
    log = await db.maintenancelog.create(data=data)

    reading = data.get("odometer_reading")
    if reading is not None and reading > to_number(extract(vehicle, "total_kilometers")):
        await db.vehicle.update(where={"id": vehicle_id}, data={"total_kilometers": reading})
    return serialize_maintenance(log)
