"""Common module — shared utilities for Timekeeper."""

from timekeeper.common.audit import AuditTrail, create_audit_entry
from timekeeper.common.constants import (
    ATTENDANCE_ADMIN_ROLES,
    COMPANY_LEVEL_ROLES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    AttendanceLogMethod,
    AttendanceLogType,
    AttendanceSource,
    AttendanceStatus,
    CompanyStatus,
    LeaveStatus,
    RegularizationStatus,
    RegularizationType,
    UserRole,
)
from timekeeper.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    NotFoundException,
    NotReadyException,
    ValidationException,
    register_exception_handlers,
)
from timekeeper.common.filters import apply_filters
from timekeeper.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "AttendanceLogMethod",
    "AttendanceLogType",
    "AttendanceSource",
    "AttendanceStatus",
    "CompanyStatus",
    "LeaveStatus",
    "RegularizationStatus",
    "RegularizationType",
    "UserRole",
    "ATTENDANCE_ADMIN_ROLES",
    "COMPANY_LEVEL_ROLES",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "NotFoundException",
    "NotReadyException",
    "ValidationException",
    "register_exception_handlers",
    # Filters
    "apply_filters",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
