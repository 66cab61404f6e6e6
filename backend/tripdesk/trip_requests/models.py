from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from tripdesk.common.enums import Priority

_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class Coordinates(BaseModel):
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class Location(BaseModel):
    address: str = Field(min_length=1, max_length=500)
    coordinates: Optional[Coordinates] = None


class TripDetails(BaseModel):
    fromLocation: Location
    toLocation: Location
    departureDate: date
    departureTime: str = Field(pattern=_TIME_PATTERN)
    returnDate: Optional[date] = None
    returnTime: Optional[str] = Field(default=None, pattern=_TIME_PATTERN)
    isRoundTrip: bool = False
    estimatedDistance: Optional[float] = Field(default=None, ge=0)
    estimatedDuration: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_return(self) -> "TripDetails":
        if self.isRoundTrip and self.returnDate is None:
            raise ValueError("returnDate is required for round trips")
        if self.returnDate is not None and self.returnDate < self.departureDate:
            raise ValueError("returnDate cannot be before departureDate")
        return self


class Purpose(BaseModel):
    category: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=1000)
    projectCode: Optional[str] = None
    costCenter: Optional[str] = None
    businessJustification: Optional[str] = None


class Passenger(BaseModel):
    name: str = Field(min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    department: Optional[str] = None


class Requirements(BaseModel):
    vehicleType: Optional[str] = None
    passengerCount: int = Field(default=1, ge=1, le=60)
    passengers: List[Passenger] = Field(default_factory=list)
    specialRequirements: Optional[str] = None
    luggage: Optional[str] = None
    acRequired: bool = True


class TripRequestCreate(BaseModel):
    tripDetails: TripDetails
    purpose: Purpose
    requirements: Requirements = Field(default_factory=Requirements)
    priority: Priority = Priority.MEDIUM
    estimatedCost: float = Field(default=0, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    approvalRequired: bool = True
    departmentId: Optional[str] = None
    requestedById: Optional[str] = None


class TripRequestUpdate(BaseModel):
    tripDetails: Optional[TripDetails] = None
    purpose: Optional[Purpose] = None
    requirements: Optional[Requirements] = None
    priority: Optional[Priority] = None
    estimatedCost: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    departmentId: Optional[str] = None
