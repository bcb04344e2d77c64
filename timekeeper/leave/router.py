"""Leave router — leave types and the request / approval workflow."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.auth.dependencies import get_current_user, require_role
from timekeeper.auth.models import User
from timekeeper.common.constants import (
    ATTENDANCE_ADMIN_ROLES,
    COMPANY_LEVEL_ROLES,
    LeaveStatus,
)
from timekeeper.common.pagination import PaginatedResponse, PaginationParams
from timekeeper.database import get_db
from timekeeper.leave.schemas import (
    LeaveApprovalResponse,
    LeaveRequestCreate,
    LeaveRequestResponse,
    LeaveReview,
    LeaveTypeCreate,
    LeaveTypeResponse,
    LeaveTypeUpdate,
)
from timekeeper.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── GET /types ──────────────────────────────────────────────────────

@router.get("/types", response_model=list[LeaveTypeResponse])
async def list_leave_types(
    include_inactive: bool = Query(False),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_leave_types(db, user, include_inactive=include_inactive)


# ── POST /types ─────────────────────────────────────────────────────

@router.post("/types", response_model=LeaveTypeResponse, status_code=201)
async def create_leave_type(
    body: LeaveTypeCreate,
    user: User = Depends(require_role(*ATTENDANCE_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.create_leave_type(db, user, body)


# ── GET /types/{leave_type_id} ──────────────────────────────────────

@router.get("/types/{leave_type_id}", response_model=LeaveTypeResponse)
async def get_leave_type(
    leave_type_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_leave_type(db, user, leave_type_id)


# ── PATCH /types/{leave_type_id} ────────────────────────────────────

@router.patch("/types/{leave_type_id}", response_model=LeaveTypeResponse)
async def update_leave_type(
    leave_type_id: uuid.UUID,
    body: LeaveTypeUpdate,
    user: User = Depends(require_role(*ATTENDANCE_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.update_leave_type(db, user, leave_type_id, body)


# ── DELETE /types/{leave_type_id} ───────────────────────────────────

@router.delete("/types/{leave_type_id}", response_model=LeaveTypeResponse)
async def deactivate_leave_type(
    leave_type_id: uuid.UUID,
    user: User = Depends(require_role(*ATTENDANCE_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.deactivate_leave_type(db, user, leave_type_id)


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestResponse, status_code=201)
async def apply_leave(
    body: LeaveRequestCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.create_request(db, user, body)


# ── GET /requests/me ────────────────────────────────────────────────

@router.get("/requests/me", response_model=PaginatedResponse[LeaveRequestResponse])
async def my_leave_requests(
    status: Optional[LeaveStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_mine(db, user, pagination, status=status)


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=PaginatedResponse[LeaveRequestResponse])
async def company_leave_requests(
    status: Optional[LeaveStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    user: User = Depends(require_role(*COMPANY_LEVEL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_company(
        db, user, pagination, status=status, employee_id=employee_id,
    )


# ── GET /requests/{request_id} ──────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestResponse)
async def get_leave_request(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get(db, user, request_id)


# ── POST /requests/{request_id}/approve ─────────────────────────────

@router.post("/requests/{request_id}/approve", response_model=LeaveApprovalResponse)
async def approve_leave(
    request_id: uuid.UUID,
    body: LeaveReview = LeaveReview(),
    user: User = Depends(require_role(*COMPANY_LEVEL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Approve and mark every working day in range ON_LEAVE."""
    return await LeaveService.approve(db, user, request_id, body.review_note)


# ── POST /requests/{request_id}/reject ──────────────────────────────

@router.post("/requests/{request_id}/reject", response_model=LeaveRequestResponse)
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveReview = LeaveReview(),
    user: User = Depends(require_role(*COMPANY_LEVEL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.reject(db, user, request_id, body.review_note)


# ── POST /requests/{request_id}/cancel ──────────────────────────────

@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestResponse)
async def cancel_leave(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.cancel(db, user, request_id)
