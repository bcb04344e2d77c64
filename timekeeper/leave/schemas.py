"""Leave Pydantic v2 schemas — request / response validation."""


import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from timekeeper.attendance.schemas import EmployeeBrief, OrgDate, OrgDayStart
from timekeeper.common.constants import LeaveStatus


# ═════════════════════════════════════════════════════════════════════
# Leave type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=20)
    description: Optional[str] = None


class LeaveTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class LeaveTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    code: str
    description: Optional[str] = None
    is_active: bool = True


# ═════════════════════════════════════════════════════════════════════
# Leave request
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Apply for leave over an inclusive civil-date range."""

    employee_id: Optional[uuid.UUID] = None
    leave_type_id: uuid.UUID
    start_date: OrgDate
    end_date: OrgDate
    reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def _check_range(self) -> "LeaveRequestCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class LeaveReview(BaseModel):
    review_note: Optional[str] = Field(None, max_length=1000)


class LeaveRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_date: OrgDayStart
    end_date: OrgDayStart
    total_days: int
    reason: Optional[str] = None
    status: LeaveStatus
    reviewed_by_id: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    review_note: Optional[str] = None
    created_at: Optional[datetime] = None
    leave_type: Optional[LeaveTypeResponse] = None
    employee: Optional[EmployeeBrief] = None


class LeaveApprovalResponse(LeaveRequestResponse):
    """Approved request plus the number of attendance days written."""

    attendance_days_written: int = 0
