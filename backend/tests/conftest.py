"""Shared fixtures: an in-memory stand-in for the Prisma client and app helpers.

``FakePrisma`` understands the subset of the Prisma query language the
services use (nested ``include``, relation filters, ``AND``/``OR``/``NOT``,
scalar operators and ``order``) so route tests can exercise real queries.
"""

from __future__ import annotations

import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional

os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("REFRESH_SECRET_KEY", "test-refresh-secret")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tripdesk.auth.dependencies import get_current_user
from tripdesk.core.errors import register_exception_handlers
from tripdesk.db.prisma_client import get_db

# (table, relation) -> (target table, local key, target key, to-many)
RELATIONS: Dict[str, Dict[str, tuple]] = {
    "user": {
        "department": ("department", "department_id", "id", False),
        "business_unit": ("businessunit", "business_unit_id", "id", False),
        "driver_profile": ("driver", "id", "user_id", False),
    },
    "businessunit": {
        "manager": ("user", "manager_id", "id", False),
        "departments": ("department", "id", "business_unit_id", True),
    },
    "department": {
        "business_unit": ("businessunit", "business_unit_id", "id", False),
        "head": ("user", "head_id", "id", False),
    },
    "cabservice": {
        "vehicles": ("vehicle", "id", "cab_service_id", True),
    },
    "cabagreement": {
        "cab_service": ("cabservice", "cab_service_id", "id", False),
    },
    "vehicle": {
        "cab_service": ("cabservice", "cab_service_id", "id", False),
        "department": ("department", "assigned_department_id", "id", False),
        "current_driver": ("driver", "current_driver_id", "id", False),
        "gps_devices": ("gpsdevice", "id", "vehicle_id", True),
        "maintenance_logs": ("maintenancelog", "id", "vehicle_id", True),
    },
    "driver": {
        "user": ("user", "user_id", "id", False),
        "cab_service": ("cabservice", "cab_service_id", "id", False),
    },
    "triprequest": {
        "requested_by": ("user", "requested_by_user_id", "id", False),
        "department": ("department", "department_id", "id", False),
        "passengers": ("trippassenger", "id", "trip_request_id", True),
        "approvals": ("tripapproval", "id", "trip_request_id", True),
        "assignments": ("tripassignment", "id", "trip_request_id", True),
        "trip_logs": ("triplog", "id", "trip_request_id", True),
    },
    "tripapproval": {
        "trip_request": ("triprequest", "trip_request_id", "id", False),
        "approver": ("user", "approver_user_id", "id", False),
    },
    "tripassignment": {
        "trip_request": ("triprequest", "trip_request_id", "id", False),
        "vehicle": ("vehicle", "vehicle_id", "id", False),
        "driver": ("driver", "driver_id", "id", False),
        "costs": ("tripcost", "id", "trip_assignment_id", True),
        "trip_log": ("triplog", "id", "trip_assignment_id", False),
        "gps_logs": ("gpslog", "id", "trip_assignment_id", True),
    },
    "triplog": {
        "trip_request": ("triprequest", "trip_request_id", "id", False),
        "assignment": ("tripassignment", "trip_assignment_id", "id", False),
    },
    "tripcost": {
        "assignment": ("tripassignment", "trip_assignment_id", "id", False),
        "invoice": ("invoice", "invoice_id", "id", False),
    },
    "invoice": {
        "cab_service": ("cabservice", "cab_service_id", "id", False),
        "trip_costs": ("tripcost", "id", "invoice_id", True),
    },
    "gpslog": {
        "vehicle": ("vehicle", "vehicle_id", "id", False),
        "driver": ("driver", "driver_id", "id", False),
        "assignment": ("tripassignment", "trip_assignment_id", "id", False),
    },
    "gpsdevice": {
        "vehicle": ("vehicle", "vehicle_id", "id", False),
    },
}

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "user": {"role": "EMPLOYEE", "status": "Active"},
    "businessunit": {"status": "Active"},
    "department": {"status": "Active"},
    "cabservice": {"status": "Active", "service_areas": [], "is_24x7": False, "deleted_at": None},
    "cabagreement": {"status": "Draft", "deleted_at": None},
    "vehicle": {
        "operational_status": "Active",
        "availability_status": "Available",
        "total_kilometers": 0,
        "deleted_at": None,
    },
    "driver": {"is_available": True, "status": "Active", "deleted_at": None},
    "maintenancelog": {"status": "Scheduled"},
    "document": {"status": "Valid", "deleted_at": None},
    "triprequest": {
        "status": "Pending",
        "priority": "Medium",
        "currency": "LKR",
        "approval_required": True,
        "escalated": False,
        "escalated_at": None,
    },
    "tripapproval": {"status": "Pending", "comments": None, "approved_at": None},
    "tripassignment": {"assignment_status": "Assigned"},
    "triplog": {"trip_status": "Not Started"},
    "tripcost": {
        "payment_status": "Draft",
        "discount": 0,
        "tax_percentage": 0,
        "invoice_id": None,
        "invoice_number": None,
        "invoice_due_date": None,
    },
    "invoice": {"status": "Draft"},
    "gpslog": {"panic_button": False, "is_speed_violation": False, "violation_count": 0},
}

_OPERATORS = {
    "equals", "in", "not_in", "notIn", "not", "contains", "startsWith", "endsWith",
    "mode", "gt", "gte", "lt", "lte", "has",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    if isinstance(value, Decimal):
        return float(value)
    return value


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else [value]


def _scalar_matches(value: Any, cond: Any) -> bool:
    if not (isinstance(cond, dict) and cond and set(cond) <= _OPERATORS):
        return _comparable(value) == _comparable(cond)

    insensitive = cond.get("mode") == "insensitive"

    def norm(v: Any) -> Any:
        return v.lower() if insensitive and isinstance(v, str) else _comparable(v)

    for op, arg in cond.items():
        if op == "mode":
            continue
        if op == "equals" and norm(value) != norm(arg):
            return False
        if op == "in" and norm(value) not in [norm(a) for a in arg]:
            return False
        if op in ("not_in", "notIn") and norm(value) in [norm(a) for a in arg]:
            return False
        if op == "not":
            if isinstance(arg, dict):
                if _scalar_matches(value, arg):
                    return False
            elif norm(value) == norm(arg):
                return False
        if op in ("contains", "startsWith", "endsWith"):
            if not isinstance(value, str):
                return False
            haystack, needle = norm(value), norm(arg)
            if op == "contains" and needle not in haystack:
                return False
            if op == "startsWith" and not haystack.startswith(needle):
                return False
            if op == "endsWith" and not haystack.endswith(needle):
                return False
        if op == "has" and arg not in (value or []):
            return False
        if op in ("gt", "gte", "lt", "lte"):
            if value is None:
                return False
            left, right = _comparable(value), _comparable(arg)
            if op == "gt" and not left > right:
                return False
            if op == "gte" and not left >= right:
                return False
            if op == "lt" and not left < right:
                return False
            if op == "lte" and not left <= right:
                return False
    return True


class FakeTable:
    def __init__(self, db: "FakePrisma", name: str) -> None:
        self._db = db
        self.name = name
        self.records: List[Dict[str, Any]] = []

    # -- helpers -----------------------------------------------------------
    def add(self, **values: Any) -> Dict[str, Any]:
        """Seed a record synchronously and return a copy of it."""
        record = {**DEFAULTS.get(self.name, {}), **values}
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", _now())
        record.setdefault("updated_at", record["created_at"])
        if self.name == "gpslog":
            record.setdefault("server_timestamp", record["created_at"])
        self.records.append(record)
        return dict(record)

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        for record in self.records:
            if record.get("id") == record_id:
                return record
        return None

    def _matches(self, record: Dict[str, Any], where: Optional[Dict[str, Any]]) -> bool:
        return self._db.matches(self.name, record, where)

    def _select(self, where: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [r for r in self.records if self._matches(r, where)]

    def _render(self, record: Optional[Dict[str, Any]], include: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if record is None:
            return None
        return self._db.render(self.name, record, include)

    # -- Prisma surface ----------------------------------------------------
    async def find_many(
        self,
        where: Optional[Dict[str, Any]] = None,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        order: Any = None,
        include: Optional[Dict[str, Any]] = None,
        **_: Any,
    ) -> List[Dict[str, Any]]:
        rows = self._db.sort(self._select(where), order)
        start = skip or 0
        rows = rows[start : start + take] if take is not None else rows[start:]
        return [self._render(r, include) for r in rows]

    async def find_first(self, where=None, order=None, include=None, **_: Any):
        rows = await self.find_many(where=where, order=order, include=include, take=1)
        return rows[0] if rows else None

    async def find_unique(self, where: Dict[str, Any], include=None, **_: Any):
        return await self.find_first(where=where, include=include)

    async def count(self, where: Optional[Dict[str, Any]] = None, **_: Any) -> int:
        return len(self._select(where))

    async def create(self, data: Dict[str, Any], include=None, **_: Any):
        record = self.add(**data)
        return self._render(self.get(record["id"]), include)

    async def create_many(self, data: Iterable[Dict[str, Any]], **_: Any) -> int:
        count = 0
        for row in data:
            self.add(**row)
            count += 1
        return count

    async def update(self, where: Dict[str, Any], data: Dict[str, Any], include=None, **_: Any):
        rows = self._select(where)
        if not rows:
            return None
        record = rows[0]
        record.update(data)
        record["updated_at"] = _now()
        return self._render(record, include)

    async def update_many(self, where: Dict[str, Any], data: Dict[str, Any], **_: Any) -> int:
        rows = self._select(where)
        for record in rows:
            record.update(data)
            record["updated_at"] = _now()
        return len(rows)

    async def upsert(self, where: Dict[str, Any], data: Dict[str, Any], include=None, **_: Any):
        rows = self._select(where)
        if rows:
            return await self.update(where=where, data=data["update"], include=include)
        return await self.create(data=data["create"], include=include)

    async def delete(self, where: Dict[str, Any], **_: Any):
        rows = self._select(where)
        if not rows:
            return None
        self.records.remove(rows[0])
        return dict(rows[0])

    async def delete_many(self, where: Optional[Dict[str, Any]] = None, **_: Any) -> int:
        rows = self._select(where)
        for record in rows:
            self.records.remove(record)
        return len(rows)


class FakePrisma:
    TABLES = (
        "user", "businessunit", "department", "cabservice", "cabagreement", "vehicle",
        "driver", "maintenancelog", "document", "triprequest", "trippassenger",
        "tripapproval", "tripassignment", "triplog", "tripcost", "invoice",
        "gpsdevice", "gpslog", "auditlog",
    )

    def __init__(self) -> None:
        for name in self.TABLES:
            setattr(self, name, FakeTable(self, name))
        self.connected = False
        self.transactions = 0

    def table(self, name: str) -> FakeTable:
        return getattr(self, name)

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    @asynccontextmanager
    async def _tx(self):
        self.transactions += 1
        yield self

    def tx(self):
        return self._tx()

    # -- relation plumbing -------------------------------------------------
    def related(self, table: str, record: Dict[str, Any], relation: str):
        target, local_key, target_key, many = RELATIONS[table][relation]
        local_value = record.get(local_key)
        rows = [
            r
            for r in self.table(target).records
            if local_value is not None and r.get(target_key) == local_value
        ]
        if many:
            return target, rows
        return target, rows[0] if rows else None

    def matches(self, table: str, record: Dict[str, Any], where: Optional[Dict[str, Any]]) -> bool:
        for key, cond in (where or {}).items():
            if key == "AND":
                if not all(self.matches(table, record, c) for c in _as_list(cond)):
                    return False
            elif key == "OR":
                if not any(self.matches(table, record, c) for c in _as_list(cond)):
                    return False
            elif key == "NOT":
                if any(self.matches(table, record, c) for c in _as_list(cond)):
                    return False
            elif key in RELATIONS.get(table, {}):
                if not self._relation_matches(table, record, key, cond):
                    return False
            elif not _scalar_matches(record.get(key), cond):
                return False
        return True

    def _relation_matches(self, table: str, record: Dict[str, Any], relation: str, cond: Any) -> bool:
        target, related = self.related(table, record, relation)
        if isinstance(related, list):
            if "some" in cond and not any(self.matches(target, r, cond["some"]) for r in related):
                return False
            if "every" in cond and not all(self.matches(target, r, cond["every"]) for r in related):
                return False
            if "none" in cond and any(self.matches(target, r, cond["none"]) for r in related):
                return False
            return True
        if cond is None:
            return related is None
        if "is" in cond or "isNot" in cond:
            if "is" in cond:
                sub = cond["is"]
                if sub is None:
                    return related is None
                if related is None or not self.matches(target, related, sub):
                    return False
            if "isNot" in cond:
                sub = cond["isNot"]
                if sub is None:
                    return related is not None
                if related is not None and self.matches(target, related, sub):
                    return False
            return True
        return related is not None and self.matches(target, related, cond)

    def sort(self, rows: List[Dict[str, Any]], order: Any) -> List[Dict[str, Any]]:
        rows = list(rows)
        if not order:
            return rows
        for clause in reversed(_as_list(order)):
            for key, direction in reversed(list(clause.items())):
                present = [r for r in rows if r.get(key) is not None]
                missing = [r for r in rows if r.get(key) is None]
                present.sort(key=lambda r: _comparable(r.get(key)), reverse=direction == "desc")
                rows = present + missing
        return rows

    def render(self, table: str, record: Dict[str, Any], include: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        result = dict(record)
        for relation, options in (include or {}).items():
            if not options:
                continue
            target, related = self.related(table, record, relation)
            nested = options.get("include") if isinstance(options, dict) else None
            if isinstance(related, list):
                if isinstance(options, dict):
                    related = [r for r in related if self.matches(target, r, options.get("where"))]
                    related = self.sort(related, options.get("order_by"))
                    if options.get("take") is not None:
                        related = related[: options["take"]]
                result[relation] = [self.render(target, r, nested) for r in related]
            else:
                result[relation] = self.render(target, related, nested) if related else None
        return result


def make_user(role: str = "SUPERADMIN", user_id: str = "admin-1", **extra: Any) -> SimpleNamespace:
    values = {
        "id": user_id,
        "role": role,
        "email": f"{user_id}@example.com",
        "first_name": extra.pop("first_name", "Test"),
        "last_name": extra.pop("last_name", "User"),
        "department_id": extra.pop("department_id", None),
        "status": "Active",
    }
    values.update(extra)
    return SimpleNamespace(**values)


def make_client(routers, db: FakePrisma, user: Any) -> TestClient:
    app = FastAPI()
    register_exception_handlers(app)
    for router in _as_list(routers):
        app.include_router(router)

    async def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_current_user] = lambda: user
    return TestClient(app)


@pytest.fixture
def fake_db() -> FakePrisma:
    return FakePrisma()


@pytest.fixture
def admin() -> SimpleNamespace:
    return make_user("SUPERADMIN", "admin-1")
