from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from tripdesk.common.enums import Role, UserStatus


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    firstName: str = Field(min_length=2, max_length=50)
    lastName: str = Field(min_length=2, max_length=50)
    phone: Optional[str] = None
    role: Role = Role.EMPLOYEE
    employeeId: Optional[str] = None
    departmentId: Optional[str] = None
    businessUnitId: Optional[str] = None
    managerId: Optional[str] = None


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=8)
    firstName: Optional[str] = Field(default=None, min_length=2, max_length=50)
    lastName: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = None
    role: Optional[Role] = None
    status: Optional[UserStatus] = None
    employeeId: Optional[str] = None
    departmentId: Optional[str] = None
    businessUnitId: Optional[str] = None
    managerId: Optional[str] = None
