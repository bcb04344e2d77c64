"""Regularization router — submit, review and withdraw attendance corrections."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.auth.dependencies import get_current_user, require_role
from timekeeper.auth.models import User
from timekeeper.common.constants import COMPANY_LEVEL_ROLES, RegularizationStatus
from timekeeper.common.pagination import PaginatedResponse, PaginationParams
from timekeeper.database import get_db
from timekeeper.regularization.schemas import (
    RegularizationCreate,
    RegularizationResponse,
    RegularizationReview,
)
from timekeeper.regularization.service import RegularizationService

router = APIRouter(prefix="", tags=["regularizations"])


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=RegularizationResponse, status_code=201)
async def create_regularization(
    body: RegularizationCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await RegularizationService.create(db, user, body)


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=PaginatedResponse[RegularizationResponse])
async def my_regularizations(
    status: Optional[RegularizationStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await RegularizationService.list_mine(db, user, pagination, status=status)


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse[RegularizationResponse])
async def company_regularizations(
    status: Optional[RegularizationStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    user: User = Depends(require_role(*COMPANY_LEVEL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await RegularizationService.list_company(
        db, user, pagination, status=status, employee_id=employee_id,
    )


# ── GET /{regularization_id} ────────────────────────────────────────

@router.get("/{regularization_id}", response_model=RegularizationResponse)
async def get_regularization(
    regularization_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await RegularizationService.get(db, user, regularization_id)


# ── POST /{regularization_id}/approve ───────────────────────────────

@router.post("/{regularization_id}/approve", response_model=RegularizationResponse)
async def approve_regularization(
    regularization_id: uuid.UUID,
    body: RegularizationReview = RegularizationReview(),
    user: User = Depends(require_role(*COMPANY_LEVEL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Approve and rewrite the attendance day from the requested times."""
    return await RegularizationService.approve(db, user, regularization_id, body.review_note)


# ── POST /{regularization_id}/reject ────────────────────────────────

@router.post("/{regularization_id}/reject", response_model=RegularizationResponse)
async def reject_regularization(
    regularization_id: uuid.UUID,
    body: RegularizationReview = RegularizationReview(),
    user: User = Depends(require_role(*COMPANY_LEVEL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await RegularizationService.reject(db, user, regularization_id, body.review_note)


# ── POST /{regularization_id}/cancel ────────────────────────────────

@router.post("/{regularization_id}/cancel", response_model=RegularizationResponse)
async def cancel_regularization(
    regularization_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw the caller's own pending request."""
    return await RegularizationService.cancel(db, user, regularization_id)
