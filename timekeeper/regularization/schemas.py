"""Regularization Pydantic v2 schemas."""


import uuid
from datetime import datetime, time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from timekeeper.attendance.schemas import EmployeeBrief, OrgDate, OrgDayStart
from timekeeper.common.constants import (
    TIME_OF_DAY_PATTERN,
    RegularizationStatus,
    RegularizationType,
)


class RegularizationCreate(BaseModel):
    """Employee correction request. Times are wall-clock ``HH:MM[:SS]``."""

    employee_id: Optional[uuid.UUID] = None
    date: OrgDate
    request_type: RegularizationType
    requested_check_in_time: Optional[str] = Field(None, pattern=TIME_OF_DAY_PATTERN)
    requested_check_out_time: Optional[str] = Field(None, pattern=TIME_OF_DAY_PATTERN)
    reason: str = Field(..., min_length=1, max_length=1000)


class RegularizationReview(BaseModel):
    """Approve / reject payload."""

    review_note: Optional[str] = Field(None, max_length=1000)


class RegularizationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    date: OrgDayStart
    request_type: RegularizationType
    requested_check_in_time: Optional[time] = None
    requested_check_out_time: Optional[time] = None
    reason: str
    status: RegularizationStatus
    attendance_day_id: Optional[uuid.UUID] = None
    before_snapshot: Optional[dict[str, Any]] = None
    after_snapshot: Optional[dict[str, Any]] = None
    reviewed_by_id: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    review_note: Optional[str] = None
    created_at: Optional[datetime] = None
    employee: Optional[EmployeeBrief] = None
