"""Attendance Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Request  → request bodies (write)
  - *Response → response bodies (read)
  - *Brief    → compact embedded representations

Every ``date`` at the boundary is the organisation's civil day. Requests
accept ``YYYY-MM-DD`` or the start-of-day instant; responses render the
start-of-day instant in the organisation offset.
"""


import uuid
from datetime import date, datetime, time
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field

from timekeeper.common.clock import ORG_TZ, day_start, parse_org_date
from timekeeper.common.constants import AttendanceSource, AttendanceStatus


def coerce_org_date(value: Any) -> Any:
    """Accept a civil date or a start-of-day instant string."""
    if isinstance(value, str):
        return parse_org_date(value)
    return value


def coerce_instant(value: Optional[datetime]) -> Optional[datetime]:
    """Naive instants are read as organisation-local time."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=ORG_TZ)
    return value


def render_day_start(value: Any) -> Any:
    """Civil dates leave the API as their start-of-day instant."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return day_start(value)
    return value


OrgDate = Annotated[date, BeforeValidator(coerce_org_date)]
OrgInstant = Annotated[datetime, AfterValidator(coerce_instant)]
OrgDayStart = Annotated[datetime, BeforeValidator(render_day_start)]


# ═════════════════════════════════════════════════════════════════════
# Check in / out
# ═════════════════════════════════════════════════════════════════════


class CheckInRequest(BaseModel):
    """Payload for checking in. Company-level roles may name an employee."""

    employee_id: Optional[uuid.UUID] = None


class CheckOutRequest(BaseModel):
    """Payload for checking out. Company-level roles may name an employee."""

    employee_id: Optional[uuid.UUID] = None


# ═════════════════════════════════════════════════════════════════════
# Attendance day
# ═════════════════════════════════════════════════════════════════════


class ShiftBrief(BaseModel):
    """Minimal shift info embedded in attendance responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    start_time: time
    end_time: time


class EmployeeBrief(BaseModel):
    """Minimal employee info in attendance views."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_code: str
    first_name: str
    last_name: str
    department_id: Optional[uuid.UUID] = None


class AttendanceDayResponse(BaseModel):
    """Single attendance day."""

    id: uuid.UUID
    employee_id: uuid.UUID
    date: OrgDayStart
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    total_work_minutes: int = 0
    late_minutes: int = 0
    overtime_minutes: int = 0
    status: AttendanceStatus
    source: AttendanceSource
    notes: Optional[str] = None
    shift: Optional[ShiftBrief] = None
    employee: Optional[EmployeeBrief] = None


# ═════════════════════════════════════════════════════════════════════
# Administrative edits
# ═════════════════════════════════════════════════════════════════════


class ManualAttendanceRequest(BaseModel):
    """Create or overwrite an employee's day."""

    employee_id: uuid.UUID
    date: OrgDate
    check_in_time: Optional[OrgInstant] = None
    check_out_time: Optional[OrgInstant] = None
    shift_id: Optional[uuid.UUID] = None
    status: Optional[AttendanceStatus] = Field(
        None, description="Overrides the computed status when given",
    )
    notes: Optional[str] = Field(None, max_length=2000)


class AttendanceUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    check_in_time: Optional[OrgInstant] = None
    check_out_time: Optional[OrgInstant] = None
    status: Optional[AttendanceStatus] = None
    notes: Optional[str] = Field(None, max_length=2000)


class MarkAbsentRequest(BaseModel):
    """Manual backfill trigger; defaults to today's civil date."""

    date: Optional[OrgDate] = None


class BackfillResponse(BaseModel):
    date: date
    skipped_weekly_off: bool = False
    companies_processed: int = 0
    created: int = 0


# ═════════════════════════════════════════════════════════════════════
# CSV import
# ═════════════════════════════════════════════════════════════════════


class ImportRowError(BaseModel):
    row: int
    message: str


class ImportSummaryResponse(BaseModel):
    total: int
    success_count: int
    fail_count: int
    errors: list[ImportRowError] = []
