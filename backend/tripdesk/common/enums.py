from enum import Enum


class Role(str, Enum):
    SUPERADMIN = "SUPERADMIN"
    VEHICLE_ADMIN = "VEHICLE_ADMIN"
    MANAGER = "MANAGER"
    HOD = "HOD"
    ACCOUNTANT = "ACCOUNTANT"
    EMPLOYEE = "EMPLOYEE"
    DRIVER = "DRIVER"


ADMIN_ROLES = [Role.SUPERADMIN.value, Role.VEHICLE_ADMIN.value]
BILLING_ROLES = [Role.SUPERADMIN.value, Role.VEHICLE_ADMIN.value, Role.ACCOUNTANT.value]
REQUESTER_ONLY_ROLES = [Role.EMPLOYEE.value, Role.DRIVER.value]


class UserStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    SUSPENDED = "Suspended"


class RecordStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class TripRequestStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class ApprovalStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ApproverRole(str, Enum):
    MANAGER = "Manager"
    HEAD_OF_DEPARTMENT = "Head of Department"
    FINANCE = "Finance"


# Which user role may sign off each approval level.
APPROVER_ROLE_USERS = {
    ApproverRole.MANAGER.value: Role.MANAGER.value,
    ApproverRole.HEAD_OF_DEPARTMENT.value: Role.HOD.value,
    ApproverRole.FINANCE.value: Role.ACCOUNTANT.value,
}


class AssignmentStatus(str, Enum):
    ASSIGNED = "Assigned"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    STARTED = "Started"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class TripLogStatus(str, Enum):
    NOT_STARTED = "Not Started"
    STARTED = "Started"
    IN_TRANSIT = "In Transit"
    ARRIVED = "Arrived"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class CostStatus(str, Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    PAID = "Paid"
    OVERDUE = "Overdue"


class InvoiceStatus(str, Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    PAID = "Paid"
    OVERDUE = "Overdue"
    NO_CHARGES = "NoCharges"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    NEFT = "neft"
    RTGS = "rtgs"
    UPI = "upi"
    CASH = "cash"


class AgreementStatus(str, Enum):
    DRAFT = "Draft"
    ACTIVE = "Active"
    EXPIRED = "Expired"
    PENDING = "Pending"
    TERMINATED = "Terminated"


class DocumentEntity(str, Enum):
    VEHICLE = "VEHICLE"
    DRIVER = "DRIVER"


class DocumentStatus(str, Enum):
    VALID = "Valid"
    EXPIRED = "Expired"


class GpsStatus(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"
    EMERGENCY = "emergency"
