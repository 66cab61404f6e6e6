from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from tripdesk.common.enums import AssignmentStatus


class AssignmentCreate(BaseModel):
    tripRequestId: str
    vehicleId: str
    driverId: str
    scheduledDeparture: datetime
    scheduledReturn: Optional[datetime] = None
    assignmentNotes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _check_schedule(self) -> "AssignmentCreate":
        if self.scheduledReturn and self.scheduledReturn < self.scheduledDeparture:
            raise ValueError("scheduledReturn cannot be before scheduledDeparture")
        return self


class VehicleDetailsUpdate(BaseModel):
    mileage: Optional[float] = Field(default=None, ge=0)
    seatingCapacity: Optional[int] = Field(default=None, ge=1)


class DriverDetailsUpdate(BaseModel):
    licenseExpiryDate: Optional[date] = None


class AssignmentUpdate(BaseModel):
    assignmentStatus: Optional[AssignmentStatus] = None
    vehicleId: Optional[str] = None
    driverId: Optional[str] = None
    scheduledDeparture: Optional[datetime] = None
    scheduledReturn: Optional[datetime] = None
    assignmentNotes: Optional[str] = Field(default=None, max_length=1000)
    vehicleDetails: Optional[VehicleDetailsUpdate] = None
    driverDetails: Optional[DriverDetailsUpdate] = None
