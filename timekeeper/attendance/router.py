"""Attendance router — check in/out, day listings, admin edits, CSV exchange, backfill.

All endpoints require authentication. Company-wide endpoints enforce role checks.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.attendance.schemas import (
    AttendanceDayResponse,
    AttendanceUpdateRequest,
    BackfillResponse,
    CheckInRequest,
    CheckOutRequest,
    ImportSummaryResponse,
    ManualAttendanceRequest,
    MarkAbsentRequest,
    OrgDate,
)
from timekeeper.attendance.service import AttendanceService
from timekeeper.auth.dependencies import get_current_user, require_role
from timekeeper.auth.models import User
from timekeeper.common.constants import (
    ATTENDANCE_ADMIN_ROLES,
    COMPANY_LEVEL_ROLES,
    AttendanceStatus,
)
from timekeeper.common.exceptions import ValidationException
from timekeeper.common.pagination import PaginatedResponse, PaginationParams
from timekeeper.common.rate_limit import CLOCK_RATE_LIMIT, limiter
from timekeeper.database import get_db

router = APIRouter(prefix="", tags=["attendance"])


def _client_meta(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


# ── POST /check-in ──────────────────────────────────────────────────

@router.post("/check-in", response_model=AttendanceDayResponse, status_code=201)
@limiter.limit(CLOCK_RATE_LIMIT)
async def check_in(
    request: Request,
    body: CheckInRequest = CheckInRequest(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Check in the current user (or, for company roles, a named employee)."""
    return await AttendanceService.check_in(
        db, user, body.employee_id, **_client_meta(request),
    )


# ── POST /check-out ─────────────────────────────────────────────────

@router.post("/check-out", response_model=AttendanceDayResponse)
@limiter.limit(CLOCK_RATE_LIMIT)
async def check_out(
    request: Request,
    body: CheckOutRequest = CheckOutRequest(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Check out and compute the day's worked / late / overtime minutes."""
    return await AttendanceService.check_out(
        db, user, body.employee_id, **_client_meta(request),
    )


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=PaginatedResponse[AttendanceDayResponse])
async def my_attendance(
    date_from: Optional[OrgDate] = Query(None, alias="from"),
    date_to: Optional[OrgDate] = Query(None, alias="to"),
    pagination: PaginationParams = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.get_my_attendance(
        db, user, pagination, date_from=date_from, date_to=date_to,
    )


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse[AttendanceDayResponse])
async def company_attendance(
    employee_id: Optional[uuid.UUID] = Query(None),
    department_id: Optional[uuid.UUID] = Query(None),
    status: Optional[AttendanceStatus] = Query(None),
    date_from: Optional[OrgDate] = Query(None, alias="from"),
    date_to: Optional[OrgDate] = Query(None, alias="to"),
    pagination: PaginationParams = Depends(),
    user: User = Depends(require_role(*COMPANY_LEVEL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Company attendance with employee and shift details."""
    return await AttendanceService.get_company_attendance(
        db,
        user,
        pagination,
        employee_id=employee_id,
        department_id=department_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
    )


# ── GET /export ─────────────────────────────────────────────────────

@router.get("/export")
async def export_attendance(
    employee_id: Optional[uuid.UUID] = Query(None),
    department_id: Optional[uuid.UUID] = Query(None),
    status: Optional[AttendanceStatus] = Query(None),
    date_from: Optional[OrgDate] = Query(None, alias="from"),
    date_to: Optional[OrgDate] = Query(None, alias="to"),
    user: User = Depends(require_role(*COMPANY_LEVEL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    content = await AttendanceService.export_csv(
        db,
        user,
        employee_id=employee_id,
        department_id=department_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
    )
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="attendance.csv"'},
    )


# ── POST /import ────────────────────────────────────────────────────

@router.post("/import", response_model=ImportSummaryResponse)
async def import_attendance(
    file: UploadFile = File(...),
    user: User = Depends(require_role(*ATTENDANCE_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Bulk upsert days from CSV; returns a per-row summary."""
    raw = await file.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationException({"file": ["CSV must be UTF-8 encoded."]})
    return await AttendanceService.import_csv(db, user, content)


# ── POST /manual ────────────────────────────────────────────────────

@router.post("/manual", response_model=AttendanceDayResponse)
async def manual_attendance(
    body: ManualAttendanceRequest,
    user: User = Depends(require_role(*ATTENDANCE_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.manual_upsert(db, user, body)


# ── POST /mark-absent ───────────────────────────────────────────────

@router.post("/mark-absent", response_model=BackfillResponse)
async def mark_absent(
    body: MarkAbsentRequest = MarkAbsentRequest(),
    user: User = Depends(require_role(*ATTENDANCE_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Manually run the absence backfill for the caller's company."""
    return await AttendanceService.mark_absent(db, user, body.date)


# ── GET /{day_id} ───────────────────────────────────────────────────

@router.get("/{day_id}", response_model=AttendanceDayResponse)
async def get_day(
    day_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.get_day(db, user, day_id)


# ── PATCH /{day_id} ─────────────────────────────────────────────────

@router.patch("/{day_id}", response_model=AttendanceDayResponse)
async def update_day(
    day_id: uuid.UUID,
    body: AttendanceUpdateRequest,
    user: User = Depends(require_role(*ATTENDANCE_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.update_day(db, user, day_id, body)
