from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, List

from tripdesk.common.enums import DocumentEntity, DocumentStatus
from tripdesk.common.utils import ensure_aware, extract, full_name, iso, start_of_today, utcnow
from tripdesk.core.config import settings
from tripdesk.core.errors import NotFoundError

logger = logging.getLogger(__name__)


def is_expired(document: Any) -> bool:
    expiry = extract(document, "expiry_date")
    return bool(expiry) and ensure_aware(expiry) < start_of_today()


def serialize_document(document: Any) -> Dict[str, Any]:
    return {
        "id": extract(document, "id"),
        "entity_type": extract(document, "entity_type"),
        "entity_id": extract(document, "entity_id"),
        "document_type": extract(document, "document_type"),
        "document_number": extract(document, "document_number"),
        "issue_date": iso(extract(document, "issue_date")),
        "expiry_date": iso(extract(document, "expiry_date")),
        "issuing_authority": extract(document, "issuing_authority"),
        "file_name": extract(document, "file_name"),
        "file_path": extract(document, "file_path"),
        "file_size": extract(document, "file_size"),
        "mime_type": extract(document, "mime_type"),
        "status": extract(document, "status"),
        "notes": extract(document, "notes"),
        "isExpired": is_expired(document),
        "created_at": iso(extract(document, "created_at")),
    }


def store_upload(filename: str, content: bytes, folder: str = "vehicles") -> str:
    """Write an uploaded file under ``UPLOAD_DIR/<folder>`` and return its path."""
    upload_dir = os.path.join(settings.upload_dir, folder)
    os.makedirs(upload_dir, exist_ok=True)
    path = os.path.join(upload_dir, f"{uuid.uuid4()}_{os.path.basename(filename)}")
    with open(path, "wb") as f:
        f.write(content)
    return path


async def create_document(db, user: Any, entity: DocumentEntity, data: Dict[str, Any]) -> Dict[str, Any]:
    data["entity_type"] = entity.value
    data.setdefault("status", DocumentStatus.VALID.value)
    data["created_by"] = extract(user, "id")
    created = await db.document.create(data=data)
    logger.info("Stored %s document %s for %s", entity.value, data["document_type"], data["entity_id"])
    return serialize_document(created)


async def list_documents(db, entity: DocumentEntity, entity_id: str | None = None) -> List[Any]:
    where: Dict[str, Any] = {"entity_type": entity.value, "deleted_at": None}
    if entity_id:
        where["entity_id"] = entity_id
    return await db.document.find_many(where=where, order={"created_at": "desc"})


async def list_vehicle_documents(db) -> List[Dict[str, Any]]:
    docs = await list_documents(db, DocumentEntity.VEHICLE)
    ids = list({extract(d, "entity_id") for d in docs})
    vehicles = await db.vehicle.find_many(where={"id": {"in": ids}}) if ids else []
    by_id = {extract(v, "id"): v for v in vehicles}

    results = []
    for doc in docs:
        vehicle = by_id.get(extract(doc, "entity_id"))
        payload = serialize_document(doc)
        payload["vehicleRegistration"] = extract(vehicle, "registration_number")
        payload["vehicleMake"] = extract(vehicle, "make")
        payload["vehicleModel"] = extract(vehicle, "model")
        results.append(payload)
    return results


async def list_driver_documents(db) -> List[Dict[str, Any]]:
    docs = await list_documents(db, DocumentEntity.DRIVER)
    ids = list({extract(d, "entity_id") for d in docs})
    drivers = await db.driver.find_many(where={"id": {"in": ids}}) if ids else []
    by_id = {extract(d, "id"): d for d in drivers}

    results = []
    for doc in docs:
        driver = by_id.get(extract(doc, "entity_id"))
        payload = serialize_document(doc)
        payload["driverName"] = full_name(driver) if driver else None
        results.append(payload)
    return results


async def delete_document(db, document_id: str, entity: DocumentEntity) -> Dict[str, str]:
    document = await db.document.find_first(
        where={"id": document_id, "entity_type": entity.value, "deleted_at": None}
    )
    if not document:
        raise NotFoundError("Document not found")
    await db.document.update(where={"id": document_id}, data={"deleted_at": utcnow()})
    return {"message": "Document deleted successfully"}


async def expire_documents(db) -> int:
    """Flag documents whose expiry date has passed."""
    count = await db.document.update_many(
        where={
            "expiry_date": {"lt": utcnow()},
            "status": DocumentStatus.VALID.value,
            "deleted_at": None,
        },
        data={"status": DocumentStatus.EXPIRED.value},
    )
    if count:
        logger.info("Marked %s documents as expired", count)
    return count
