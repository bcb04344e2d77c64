"""Enums and constants for Timekeeper — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    super_admin = "super_admin"
    company_admin = "company_admin"
    hr_manager = "hr_manager"
    manager = "manager"
    employee = "employee"


# Roles that may act on other employees of their own company
COMPANY_LEVEL_ROLES: frozenset[UserRole] = frozenset({
    UserRole.company_admin,
    UserRole.hr_manager,
    UserRole.manager,
})

# Roles that may rewrite attendance directly (manual edits, import, backfill)
ATTENDANCE_ADMIN_ROLES: frozenset[UserRole] = frozenset({
    UserRole.company_admin,
    UserRole.hr_manager,
})


# ── Company ─────────────────────────────────────────────────────────

class CompanyStatus(str, enum.Enum):
    active = "active"
    suspended = "suspended"


# ── Attendance ──────────────────────────────────────────────────────

class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    LATE = "LATE"
    HALF_DAY = "HALF_DAY"
    ABSENT = "ABSENT"
    ON_LEAVE = "ON_LEAVE"
    WEEKEND = "WEEKEND"
    HOLIDAY = "HOLIDAY"


class AttendanceSource(str, enum.Enum):
    SELF = "SELF"
    ADMIN = "ADMIN"
    IMPORT = "IMPORT"


class AttendanceLogType(str, enum.Enum):
    CHECK_IN = "CHECK_IN"
    CHECK_OUT = "CHECK_OUT"


class AttendanceLogMethod(str, enum.Enum):
    WEB = "WEB"
    ADMIN = "ADMIN"
    IMPORT = "IMPORT"


# ── Regularization ──────────────────────────────────────────────────

class RegularizationType(str, enum.Enum):
    MISSED_CHECKIN = "MISSED_CHECKIN"
    MISSED_CHECKOUT = "MISSED_CHECKOUT"
    WRONG_TIME = "WRONG_TIME"
    FULL_DAY_EDIT = "FULL_DAY_EDIT"


class RegularizationStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


# ── Misc ────────────────────────────────────────────────────────────

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

# HH:MM or HH:MM:SS, 24-hour clock
TIME_OF_DAY_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$"
