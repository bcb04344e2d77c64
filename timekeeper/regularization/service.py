"""Regularization service — employee correction requests and their review.

PENDING → APPROVED | REJECTED | CANCELLED. Approval is the only transition
that touches ``attendance_days``; it goes through the Day Store's
correction path so the metrics are recomputed the same way as a live
check-out.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.attendance.service import AttendanceService, day_snapshot
from timekeeper.auth.models import User
from timekeeper.common.audit import create_audit_entry
from timekeeper.common.clock import as_utc, org_today, utcnow
from timekeeper.common.constants import RegularizationStatus, RegularizationType
from timekeeper.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from timekeeper.common.filters import apply_filters
from timekeeper.common.pagination import PaginatedResponse, PaginationParams, paginate
from timekeeper.config import settings
from timekeeper.core_hr.service import EmployeeService
from timekeeper.regularization.models import AttendanceRegularization
from timekeeper.regularization.schemas import (
    RegularizationCreate,
    RegularizationResponse,
)

logger = logging.getLogger(__name__)

_NEEDS_CHECK_IN = {
    RegularizationType.MISSED_CHECKIN,
    RegularizationType.WRONG_TIME,
    RegularizationType.FULL_DAY_EDIT,
}
_NEEDS_CHECK_OUT = {
    RegularizationType.MISSED_CHECKOUT,
    RegularizationType.WRONG_TIME,
    RegularizationType.FULL_DAY_EDIT,
}


def parse_time_of_day(raw: Optional[str]) -> Optional[time]:
    return time.fromisoformat(raw) if raw else None


class RegularizationService:

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _to_response(reg: AttendanceRegularization) -> RegularizationResponse:
        return RegularizationResponse.model_validate(reg)

    @staticmethod
    def _validate_request(
        data: RegularizationCreate,
        check_in: Optional[time],
        check_out: Optional[time],
        *,
        now: datetime,
    ) -> None:
        errors: dict[str, list[str]] = {}
        today = org_today(now)

        if data.date > today:
            errors.setdefault("date", []).append("Cannot regularize a future date.")
        elif data.date < today - timedelta(days=settings.REGULARIZATION_MAX_PAST_DAYS):
            errors.setdefault("date", []).append(
                f"Cannot regularize dates more than {settings.REGULARIZATION_MAX_PAST_DAYS} days in the past.",
            )

        if data.request_type in _NEEDS_CHECK_IN and check_in is None:
            errors.setdefault("requested_check_in_time", []).append(
                f"Required for {data.request_type.value}.",
            )
        if data.request_type in _NEEDS_CHECK_OUT and check_out is None:
            errors.setdefault("requested_check_out_time", []).append(
                f"Required for {data.request_type.value}.",
            )
        if check_in is not None and check_out is not None and check_out <= check_in:
            errors.setdefault("requested_check_out_time", []).append(
                "Check-out time must be after check-in time.",
            )

        if errors:
            raise ValidationException(errors)

    @staticmethod
    async def _load(db: AsyncSession, regularization_id: uuid.UUID) -> AttendanceRegularization:
        reg = await db.get(AttendanceRegularization, regularization_id)
        if reg is None:
            raise NotFoundException("Regularization", str(regularization_id))
        return reg

    @staticmethod
    async def _load_for_review(
        db: AsyncSession,
        user: User,
        regularization_id: uuid.UUID,
    ) -> AttendanceRegularization:
        if not EmployeeService.is_company_level(user):
            raise ForbiddenException(detail="Only company-level roles can review regularizations.")
        reg = await RegularizationService._load(db, regularization_id)
        if reg.company_id != user.company_id:
            raise ForbiddenException(detail="Regularization belongs to another company.")
        if reg.status != RegularizationStatus.PENDING:
            raise InvalidStateException("regularizations", reg.status.value, "reviewed")
        return reg

    @staticmethod
    async def _find_pending(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
    ) -> Optional[AttendanceRegularization]:
        result = await db.execute(
            select(AttendanceRegularization).where(
                AttendanceRegularization.employee_id == employee_id,
                AttendanceRegularization.date == day,
                AttendanceRegularization.status == RegularizationStatus.PENDING,
            )
        )
        return result.scalars().first()

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create(
        db: AsyncSession,
        user: User,
        data: RegularizationCreate,
        *,
        now: Optional[datetime] = None,
    ) -> RegularizationResponse:
        """Submit a correction request for one civil day."""
        now = as_utc(now) or utcnow()
        employee = await EmployeeService.resolve_target_employee(
            db, user, data.employee_id, strict=True,
        )
        EmployeeService.ensure_company_active(employee)

        check_in = parse_time_of_day(data.requested_check_in_time)
        check_out = parse_time_of_day(data.requested_check_out_time)
        RegularizationService._validate_request(data, check_in, check_out, now=now)

        pending = await RegularizationService._find_pending(db, employee.id, data.date)
        if pending is not None:
            raise ConflictError(
                f"A pending regularization already exists for {data.date.isoformat()}.",
                field="regularization_id",
                existing_id=pending.id,
            )

        existing_day = await AttendanceService.find_day(db, employee.id, data.date)
        reg = AttendanceRegularization(
            company_id=employee.company_id,
            employee_id=employee.id,
            employee=employee,
            date=data.date,
            request_type=data.request_type,
            requested_check_in_time=check_in,
            requested_check_out_time=check_out,
            reason=data.reason,
            status=RegularizationStatus.PENDING,
            attendance_day_id=existing_day.id if existing_day else None,
            before_snapshot=day_snapshot(existing_day),
            created_by_id=user.id,
        )
        try:
            async with db.begin_nested():
                db.add(reg)
                await db.flush()
        except IntegrityError:
            # Lost a race with a concurrent submission for the same day
            raise ConflictError(
                f"A pending regularization already exists for {data.date.isoformat()}.",
                field="date",
            )

        logger.info(
            "Regularization %s submitted: employee=%s date=%s type=%s",
            reg.id, employee.employee_code, data.date, data.request_type.value,
        )
        return RegularizationService._to_response(reg)

    # ── Review ──────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        user: User,
        regularization_id: uuid.UUID,
        review_note: Optional[str] = None,
    ) -> RegularizationResponse:
        """Apply the requested times to the day and close the request."""
        reg = await RegularizationService._load_for_review(db, user, regularization_id)
        employee = reg.employee
        EmployeeService.ensure_company_active(employee)

        day = await AttendanceService.apply_correction(
            db,
            user,
            employee=employee,
            day=reg.date,
            check_in_time=reg.requested_check_in_time,
            check_out_time=reg.requested_check_out_time,
        )

        reg.status = RegularizationStatus.APPROVED
        reg.attendance_day_id = day.id
        reg.after_snapshot = day_snapshot(day)
        reg.reviewed_by_id = user.id
        reg.reviewed_at = utcnow()
        reg.review_note = review_note
        await db.flush()

        await create_audit_entry(
            db,
            action="approve",
            entity_type="attendance_regularization",
            entity_id=reg.id,
            actor_id=user.id,
            old_values=reg.before_snapshot,
            new_values=reg.after_snapshot,
        )
        logger.info("Regularization %s approved by %s", reg.id, user.id)
        return RegularizationService._to_response(reg)

    @staticmethod
    async def reject(
        db: AsyncSession,
        user: User,
        regularization_id: uuid.UUID,
        review_note: Optional[str] = None,
    ) -> RegularizationResponse:
        reg = await RegularizationService._load_for_review(db, user, regularization_id)
        reg.status = RegularizationStatus.REJECTED
        reg.reviewed_by_id = user.id
        reg.reviewed_at = utcnow()
        reg.review_note = review_note
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type="attendance_regularization",
            entity_id=reg.id,
            actor_id=user.id,
            new_values={"status": reg.status.value, "review_note": review_note},
        )
        logger.info("Regularization %s rejected by %s", reg.id, user.id)
        return RegularizationService._to_response(reg)

    @staticmethod
    async def cancel(
        db: AsyncSession,
        user: User,
        regularization_id: uuid.UUID,
    ) -> RegularizationResponse:
        """Withdraw the caller's own pending request."""
        reg = await RegularizationService._load(db, regularization_id)
        employee = await EmployeeService.get_own_employee(db, user)
        if reg.employee_id != employee.id:
            raise ForbiddenException(detail="You can only cancel your own requests.")
        if reg.status != RegularizationStatus.PENDING:
            raise InvalidStateException("regularizations", reg.status.value, "cancelled")
        reg.status = RegularizationStatus.CANCELLED
        await db.flush()
        logger.info("Regularization %s cancelled", reg.id)
        return RegularizationService._to_response(reg)

    # ── Read ────────────────────────────────────────────────────────

    @staticmethod
    async def get(
        db: AsyncSession,
        user: User,
        regularization_id: uuid.UUID,
    ) -> RegularizationResponse:
        reg = await RegularizationService._load(db, regularization_id)
        if EmployeeService.is_company_level(user):
            if reg.company_id != user.company_id:
                raise ForbiddenException(detail="Regularization belongs to another company.")
        elif reg.employee.user_id != user.id:
            raise ForbiddenException(detail="You can only view your own requests.")
        return RegularizationService._to_response(reg)

    @staticmethod
    async def list_mine(
        db: AsyncSession,
        user: User,
        pagination: PaginationParams,
        *,
        status: Optional[RegularizationStatus] = None,
    ) -> PaginatedResponse:
        employee = await EmployeeService.get_own_employee(db, user)
        query = select(AttendanceRegularization).where(
            AttendanceRegularization.employee_id == employee.id,
        )
        query = apply_filters(query, AttendanceRegularization, {"status": status})
        return await paginate(
            db,
            query,
            pagination,
            model=AttendanceRegularization,
            default_order=(AttendanceRegularization.created_at.desc(),),
            transform=RegularizationService._to_response,
        )

    @staticmethod
    async def list_company(
        db: AsyncSession,
        user: User,
        pagination: PaginationParams,
        *,
        status: Optional[RegularizationStatus] = None,
        employee_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        company_id = EmployeeService.require_company(user)
        query = select(AttendanceRegularization).where(
            AttendanceRegularization.company_id == company_id,
        )
        query = apply_filters(
            query,
            AttendanceRegularization,
            {"status": status, "employee_id": employee_id},
        )
        return await paginate(
            db,
            query,
            pagination,
            model=AttendanceRegularization,
            default_order=(AttendanceRegularization.created_at.desc(),),
            transform=RegularizationService._to_response,
        )
