from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, List

from tripdesk.common.enums import GpsStatus
from tripdesk.common.utils import (
    ensure_aware,
    extract,
    full_name,
    insensitive,
    iso,
    page_window,
    to_number,
    total_pages,
    utcnow,
)
from tripdesk.core.config import settings
from tripdesk.core.errors import NotFoundError

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371

LOG_INCLUDE = {
    "vehicle": True,
    "driver": True,
    "assignment": {"include": {"trip_request": True}},
}

EXPORT_COLUMNS = [
    "Vehicle",
    "Driver",
    "Request Number",
    "Status",
    "Latitude",
    "Longitude",
    "Address",
    "Speed",
    "Ignition",
    "Battery",
    "Signal",
    "Speed Violation",
    "Device Time",
    "Server Time",
]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def classify(log: Any, idle_speed: float | None = None) -> str:
    """Map a ping onto the dashboard status buckets.

    Panic beats maintenance, which beats the ignition-based states.
    """
    threshold = settings.tracking.idle_speed_kmh if idle_speed is None else idle_speed
    if extract(log, "panic_button", False):
        return GpsStatus.EMERGENCY.value
    if extract(extract(log, "vehicle"), "operational_status") == "Maintenance":
        return GpsStatus.MAINTENANCE.value
    if extract(log, "ignition_status", "Off") == "On":
        if to_number(extract(log, "speed")) > threshold:
            return GpsStatus.ACTIVE.value
        return GpsStatus.IDLE.value
    return GpsStatus.OFFLINE.value


def status_filter(status: str) -> Dict[str, Any]:
    """Query conditions selecting exactly the rows ``classify`` puts in ``status``."""
    threshold = settings.tracking.idle_speed_kmh
    if status == GpsStatus.EMERGENCY.value:
        return {"panic_button": True}

    no_panic = {"panic_button": False}
    in_maintenance = {"vehicle": {"is": {"operational_status": "Maintenance"}}}
    if status == GpsStatus.MAINTENANCE.value:
        return {"AND": [no_panic, in_maintenance]}

    ignition_based = [no_panic, {"NOT": [in_maintenance]}]
    if status == GpsStatus.OFFLINE.value:
        ignition_based.append({"OR": [{"ignition_status": {"not": "On"}}, {"ignition_status": None}]})
    elif status == GpsStatus.ACTIVE.value:
        ignition_based += [{"ignition_status": "On"}, {"speed": {"gt": threshold}}]
    elif status == GpsStatus.IDLE.value:
        ignition_based += [
            {"ignition_status": "On"},
            {"OR": [{"speed": {"lte": threshold}}, {"speed": None}]},
        ]
    else:
        return {}
    return {"AND": ignition_based}


def build_filters(
    *,
    vehicle_id: str | None = None,
    driver_id: str | None = None,
    trip_assignment_id: str | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
) -> Dict[str, Any]:
    where: Dict[str, Any] = {}
    if vehicle_id:
        where["vehicle_id"] = vehicle_id
    if driver_id:
        where["driver_id"] = driver_id
    if trip_assignment_id:
        where["trip_assignment_id"] = trip_assignment_id
    if status and status != "all":
        where.update(status_filter(status))
    if date_from or date_to:
        where["device_timestamp"] = {}
        if date_from:
            where["device_timestamp"]["gte"] = ensure_aware(date_from)
        if date_to:
            where["device_timestamp"]["lte"] = ensure_aware(date_to)
    if search:
        term = insensitive(search)
        where["OR"] = [
            {"vehicle": {"is": {"registration_number": term}}},
            {"driver": {"is": {"OR": [{"first_name": term}, {"last_name": term}]}}},
            {"assignment": {"is": {"trip_request": {"is": {"request_number": term}}}}},
            {"address": term},
        ]
    return where


def _driver_name(log: Any) -> str:
    return full_name(extract(log, "driver"), fallback="Unassigned")


def _request_number(log: Any) -> str | None:
    return extract(extract(extract(log, "assignment"), "trip_request"), "request_number")


def serialize_gps_log(log: Any) -> Dict[str, Any]:
    speed = to_number(extract(log, "speed"))
    return {
        "id": extract(log, "id"),
        "vehicleId": extract(log, "vehicle_id"),
        "vehicleNumber": extract(extract(log, "vehicle"), "registration_number", "N/A"),
        "driverId": extract(log, "driver_id"),
        "driverName": _driver_name(log),
        "requestNumber": _request_number(log),
        "location": {
            "latitude": to_number(extract(log, "latitude")),
            "longitude": to_number(extract(log, "longitude")),
            "address": extract(log, "address"),
            "speed": speed,
            "heading": to_number(extract(log, "heading")),
            "accuracy": to_number(extract(log, "accuracy")),
            "altitude": to_number(extract(log, "altitude")),
            "timestamp": iso(extract(log, "device_timestamp")),
        },
        "status": classify(log),
        "ignitionStatus": extract(log, "ignition_status", "Off"),
        "mileage": to_number(extract(log, "mileage")),
        "batteryLevel": to_number(extract(log, "battery_level")),
        "signalStrength": to_number(extract(log, "signal_strength")),
        "panicButton": bool(extract(log, "panic_button", False)),
        "geofenceStatus": extract(log, "geofence_status"),
        "speedAlerts": {
            "currentSpeed": speed,
            "speedLimit": to_number(extract(log, "speed_limit")),
            "isViolation": bool(extract(log, "is_speed_violation", False)),
            "violationCount": extract(log, "violation_count", 0),
        },
        "lastPing": iso(extract(log, "server_timestamp")),
        "createdAt": iso(extract(log, "server_timestamp")),
    }


async def list_gps_logs(db, *, page: int = 1, limit: int = 10, **filters: Any) -> Dict[str, Any]:
    where = build_filters(**filters)
    skip, take = page_window(page, limit)
    total = await db.gpslog.count(where=where)
    logs = await db.gpslog.find_many(
        where=where,
        include=LOG_INCLUDE,
        order={"server_timestamp": "desc"},
        skip=skip,
        take=take,
    )
    return {
        "logs": [serialize_gps_log(log) for log in logs],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages(total, limit),
        },
    }


async def get_gps_log(db, log_id: str) -> Dict[str, Any]:
    include = dict(LOG_INCLUDE)
    include["vehicle"] = {"include": {"gps_devices": True}}
    log = await db.gpslog.find_unique(where={"id": log_id}, include=include)
    if not log:
        raise NotFoundError("GPS Log not found")

    payload = serialize_gps_log(log)
    devices = extract(extract(log, "vehicle"), "gps_devices", [])
    device = devices[0] if devices else None
    payload["deviceInfo"] = (
        {
            "deviceId": extract(device, "device_id"),
            "imei": extract(device, "imei"),
            "firmwareVersion": extract(device, "firmware_version"),
            "manufacturer": extract(device, "manufacturer"),
            "networkProvider": extract(log, "network_provider"),
        }
        if device
        else None
    )
    return payload


async def get_trip_replay(db, trip_assignment_id: str) -> Dict[str, Any]:
    logs = await db.gpslog.find_many(
        where={"trip_assignment_id": trip_assignment_id},
        include={"assignment": {"include": {"trip_request": True, "vehicle": True}}},
        order={"device_timestamp": "asc"},
    )
    if not logs:
        raise NotFoundError("No route data found for this trip")

    points = [
        (to_number(extract(log, "latitude")), to_number(extract(log, "longitude"))) for log in logs
    ]
    distance = sum(
        haversine_km(lat1, lon1, lat2, lon2)
        for (lat1, lon1), (lat2, lon2) in zip(points, points[1:])
    )

    start = ensure_aware(extract(logs[0], "device_timestamp"))
    end = ensure_aware(extract(logs[-1], "device_timestamp"))
    speeds = [s for s in (to_number(extract(log, "speed")) for log in logs) if s > 0]
    assignment = extract(logs[0], "assignment")

    return {
        "tripId": trip_assignment_id,
        "requestNumber": extract(extract(assignment, "trip_request"), "request_number"),
        "vehicleNumber": extract(extract(assignment, "vehicle"), "registration_number"),
        "startTime": iso(start),
        "endTime": iso(end),
        "distance": round(distance, 2),
        "durationMinutes": round((end - start).total_seconds() / 60),
        "avgSpeed": round(sum(speeds) / len(speeds)) if speeds else 0,
        "maxSpeed": round(max(speeds)) if speeds else 0,
        "pointCount": len(logs),
        "routePoints": [
            {
                "timestamp": iso(extract(log, "device_timestamp")),
                "latitude": lat,
                "longitude": lon,
                "speed": to_number(extract(log, "speed")),
                "heading": to_number(extract(log, "heading")),
            }
            for log, (lat, lon) in zip(logs, points)
        ],
    }


async def record_ping(db, data: Dict[str, Any]) -> Dict[str, Any]:
    """Store a device ping, flagging speed violations against the posted limit."""
    vehicle = await db.vehicle.find_unique(where={"id": data["vehicle_id"]})
    if not vehicle or extract(vehicle, "deleted_at"):
        raise NotFoundError("Vehicle not found")

    previous = await db.gpslog.find_first(
        where={"vehicle_id": data["vehicle_id"]},
        order={"device_timestamp": "desc"},
    )
    violations = extract(previous, "violation_count", 0)

    limit = data.get("speed_limit")
    speed = data.get("speed")
    is_violation = limit is not None and speed is not None and speed > limit
    if is_violation:
        violations += 1
        logger.info(
            "Speed violation on vehicle %s: %.1f km/h over %.1f limit",
            data["vehicle_id"],
            speed,
            limit,
        )
    if data.get("panic_button"):
        logger.warning("Panic button pressed on vehicle %s", data["vehicle_id"])

    data["is_speed_violation"] = is_violation
    data["violation_count"] = violations
    data.setdefault("device_timestamp", utcnow())

    created = await db.gpslog.create(data=data, include=LOG_INCLUDE)
    return serialize_gps_log(created)


async def export_rows(db, **filters: Any) -> List[Dict[str, Any]]:
    logs = await db.gpslog.find_many(
        where=build_filters(**filters),
        include=LOG_INCLUDE,
        order={"server_timestamp": "desc"},
    )
    return [
        {
            "Vehicle": extract(extract(log, "vehicle"), "registration_number", "N/A"),
            "Driver": _driver_name(log),
            "Request Number": _request_number(log) or "",
            "Status": classify(log),
            "Latitude": to_number(extract(log, "latitude")),
            "Longitude": to_number(extract(log, "longitude")),
            "Address": extract(log, "address", ""),
            "Speed": to_number(extract(log, "speed")),
            "Ignition": extract(log, "ignition_status", "Off"),
            "Battery": extract(log, "battery_level"),
            "Signal": extract(log, "signal_strength"),
            "Speed Violation": bool(extract(log, "is_speed_violation", False)),
            "Device Time": iso(extract(log, "device_timestamp")),
            "Server Time": iso(extract(log, "server_timestamp")),
        }
        for log in logs
    ]
