from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field

from tripdesk.auth.dependencies import get_current_user, require_role
from tripdesk.common.enums import ADMIN_ROLES, DocumentEntity
from tripdesk.db.prisma_client import get_db
from tripdesk.documents import services
from tripdesk.drivers.routes import load_driver
from tripdesk.vehicles.services import load_vehicle

vehicle_router = APIRouter(prefix="/vehicle-documents", tags=["vehicle documents"])
driver_router = APIRouter(prefix="/driver-documents", tags=["driver documents"])


class DriverDocumentCreate(BaseModel):
    driver_id: str
    document_type: str = Field(min_length=1)
    document_number: Optional[str] = None
    issue_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    issuing_authority: Optional[str] = None
    file_name: str = Field(min_length=1)
    file_path: str = Field(min_length=1)
    file_size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = None
    notes: Optional[str] = None


@vehicle_router.post("", status_code=201)
async def upload_vehicle_document(
    vehicle_id: str = Form(...),
    document_type: str = Form(...),
    document_number: Optional[str] = Form(None),
    issue_date: Optional[datetime] = Form(None),
    expiry_date: Optional[datetime] = Form(None),
    issuing_authority: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    file: UploadFile = File(...),
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(ADMIN_ROLES)(user)
    await load_vehicle(db, vehicle_id)
    content = await file.read()
    path = services.store_upload(file.filename or "document", content, folder="vehicles")
    data = {
        "entity_id": vehicle_id,
        "document_type": document_type,
        "document_number": document_number,
        "issue_date": issue_date,
        "expiry_date": expiry_date,
        "issuing_authority": issuing_authority,
        "notes": notes,
        "file_name": file.filename,
        "file_path": path,
        "file_size": len(content),
        "mime_type": file.content_type,
    }
    return await services.create_document(
        db, user, DocumentEntity.VEHICLE, {k: v for k, v in data.items() if v is not None}
    )


@vehicle_router.get("")
async def list_vehicle_documents(db=Depends(get_db), user=Depends(get_current_user)):
    return await services.list_vehicle_documents(db)


@vehicle_router.get("/vehicle/{vehicle_id}")
async def documents_for_vehicle(vehicle_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    docs = await services.list_documents(db, DocumentEntity.VEHICLE, vehicle_id)
    return [services.serialize_document(d) for d in docs]


@vehicle_router.delete("/{document_id}")
async def delete_vehicle_document(document_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    return await services.delete_document(db, document_id, DocumentEntity.VEHICLE)


@driver_router.post("", status_code=201)
async def create_driver_document(
    payload: DriverDocumentCreate, db=Depends(get_db), user=Depends(get_current_user)
):
    require_role(ADMIN_ROLES)(user)
    await load_driver(db, payload.driver_id)
    data = payload.model_dump(exclude_none=True, exclude={"driver_id"})
    data["entity_id"] = payload.driver_id
    return await services.create_document(db, user, DocumentEntity.DRIVER, data)


@driver_router.get("")
async def list_driver_documents(db=Depends(get_db), user=Depends(get_current_user)):
    return await services.list_driver_documents(db)


@driver_router.get("/driver/{driver_id}")
async def documents_for_driver(driver_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    docs = await services.list_documents(db, DocumentEntity.DRIVER, driver_id)
    return [services.serialize_document(d) for d in docs]


@driver_router.delete("/{document_id}")
async def delete_driver_document(document_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    require_role(ADMIN_ROLES)(user)
    return await services.delete_document(db, document_id, DocumentEntity.DRIVER)
