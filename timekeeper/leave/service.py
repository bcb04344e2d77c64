"""Leave service — leave types, requests and the attendance write on approval.

Uses:
  - ``AttendanceService.write_leave_days`` for the ON_LEAVE bulk upsert
  - ``create_audit_entry`` from timekeeper.common.audit
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.attendance.service import AttendanceService
from timekeeper.auth.models import User
from timekeeper.common.audit import create_audit_entry
from timekeeper.common.clock import is_weekly_off, iter_dates, utcnow
from timekeeper.common.constants import LeaveStatus
from timekeeper.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from timekeeper.common.filters import apply_filters
from timekeeper.common.pagination import PaginatedResponse, PaginationParams, paginate
from timekeeper.core_hr.service import EmployeeService
from timekeeper.leave.models import LeaveRequest, LeaveType
from timekeeper.leave.schemas import (
    LeaveApprovalResponse,
    LeaveRequestCreate,
    LeaveRequestResponse,
    LeaveTypeCreate,
    LeaveTypeResponse,
    LeaveTypeUpdate,
)

logger = logging.getLogger(__name__)


def working_dates(start: date, end: date) -> list[date]:
    """Civil dates in [start, end] minus the weekly off day."""
    return [d for d in iter_dates(start, end) if not is_weekly_off(d)]


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _to_response(leave_req: LeaveRequest) -> LeaveRequestResponse:
        return LeaveRequestResponse.model_validate(leave_req)

    @staticmethod
    async def _find_overlap(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[LeaveRequest]:
        query = select(LeaveRequest).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status.in_([LeaveStatus.PENDING, LeaveStatus.APPROVED]),
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        if exclude_id is not None:
            query = query.where(LeaveRequest.id != exclude_id)
        return (await db.execute(query)).scalars().first()

    @staticmethod
    async def _load(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
        leave_req = await db.get(LeaveRequest, request_id)
        if leave_req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return leave_req

    @staticmethod
    async def _load_pending_for_review(
        db: AsyncSession,
        user: User,
        request_id: uuid.UUID,
    ) -> LeaveRequest:
        if not EmployeeService.is_company_level(user):
            raise ForbiddenException(detail="Only company-level roles can review leave requests.")
        leave_req = await LeaveService._load(db, request_id)
        if leave_req.company_id != user.company_id:
            raise ForbiddenException(detail="Leave request belongs to another company.")
        if leave_req.status != LeaveStatus.PENDING:
            raise InvalidStateException("leave requests", leave_req.status.value, "reviewed")
        return leave_req

    # ── Leave types ─────────────────────────────────────────────────

    @staticmethod
    async def _load_leave_type(
        db: AsyncSession,
        user: User,
        leave_type_id: uuid.UUID,
    ) -> LeaveType:
        company_id = EmployeeService.require_company(user)
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))
        if leave_type.company_id != company_id:
            raise ForbiddenException(detail="Leave type belongs to another company.")
        return leave_type

    @staticmethod
    async def _ensure_unique_type(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        name: Optional[str],
        code: Optional[str],
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        clauses = []
        if name:
            clauses.append(func.lower(LeaveType.name) == name.lower())
        if code:
            clauses.append(func.lower(LeaveType.code) == code.lower())
        if not clauses:
            return
        query = select(LeaveType).where(LeaveType.company_id == company_id, or_(*clauses))
        if exclude_id is not None:
            query = query.where(LeaveType.id != exclude_id)
        existing = (await db.execute(query)).scalars().first()
        if existing is None:
            return
        field = "name" if name and existing.name.lower() == name.lower() else "code"
        value = name if field == "name" else code
        raise ConflictError(
            f"A leave type with {field} '{value}' already exists.",
            field=field,
            existing_id=existing.id,
        )

    @staticmethod
    async def get_leave_types(
        db: AsyncSession,
        user: User,
        *,
        include_inactive: bool = False,
    ) -> list[LeaveTypeResponse]:
        company_id = EmployeeService.require_company(user)
        query = select(LeaveType).where(LeaveType.company_id == company_id)
        if not include_inactive:
            query = query.where(LeaveType.is_active.is_(True))
        result = await db.execute(query.order_by(LeaveType.name))
        return [LeaveTypeResponse.model_validate(lt) for lt in result.scalars().all()]

    @staticmethod
    async def get_leave_type(
        db: AsyncSession,
        user: User,
        leave_type_id: uuid.UUID,
    ) -> LeaveTypeResponse:
        leave_type = await LeaveService._load_leave_type(db, user, leave_type_id)
        return LeaveTypeResponse.model_validate(leave_type)

    @staticmethod
    async def create_leave_type(
        db: AsyncSession,
        user: User,
        data: LeaveTypeCreate,
    ) -> LeaveTypeResponse:
        company_id = EmployeeService.require_company(user)
        await LeaveService._ensure_unique_type(db, company_id, name=data.name, code=data.code)

        leave_type = LeaveType(
            company_id=company_id,
            name=data.name,
            code=data.code,
            description=data.description,
            is_active=True,
        )
        db.add(leave_type)
        await db.flush()
        return LeaveTypeResponse.model_validate(leave_type)

    @staticmethod
    async def update_leave_type(
        db: AsyncSession,
        user: User,
        leave_type_id: uuid.UUID,
        data: LeaveTypeUpdate,
    ) -> LeaveTypeResponse:
        """Partial update; only the fields present in the body change."""
        leave_type = await LeaveService._load_leave_type(db, user, leave_type_id)
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key == "description"
        }
        await LeaveService._ensure_unique_type(
            db,
            leave_type.company_id,
            name=changes.get("name"),
            code=changes.get("code"),
            exclude_id=leave_type.id,
        )

        old_values = {key: getattr(leave_type, key) for key in changes}
        for key, value in changes.items():
            setattr(leave_type, key, value)
        await db.flush()

        if changes:
            await create_audit_entry(
                db,
                action="update",
                entity_type="leave_type",
                entity_id=leave_type.id,
                actor_id=user.id,
                old_values=old_values,
                new_values=changes,
            )
        return LeaveTypeResponse.model_validate(leave_type)

    @staticmethod
    async def deactivate_leave_type(
        db: AsyncSession,
        user: User,
        leave_type_id: uuid.UUID,
    ) -> LeaveTypeResponse:
        """Soft delete: existing requests keep their type, new ones cannot use it."""
        leave_type = await LeaveService._load_leave_type(db, user, leave_type_id)
        if leave_type.is_active:
            leave_type.is_active = False
            await db.flush()
            await create_audit_entry(
                db,
                action="deactivate",
                entity_type="leave_type",
                entity_id=leave_type.id,
                actor_id=user.id,
                old_values={"is_active": True},
                new_values={"is_active": False},
            )
            logger.info("Leave type %s (%s) deactivated", leave_type.id, leave_type.code)
        return LeaveTypeResponse.model_validate(leave_type)

    # ── Apply ───────────────────────────────────────────────────────

    @staticmethod
    async def create_request(
        db: AsyncSession,
        user: User,
        data: LeaveRequestCreate,
    ) -> LeaveRequestResponse:
        """Apply for leave; weekly off days do not count toward total_days."""
        employee = await EmployeeService.resolve_target_employee(
            db, user, data.employee_id, strict=True,
        )
        EmployeeService.ensure_company_active(employee)

        leave_type = await db.get(LeaveType, data.leave_type_id)
        if (
            leave_type is None
            or leave_type.company_id != employee.company_id
            or not leave_type.is_active
        ):
            raise NotFoundException("LeaveType", str(data.leave_type_id))

        dates = working_dates(data.start_date, data.end_date)
        if not dates:
            raise ValidationException(
                {"dates": ["The selected range contains only weekly off days."]}
            )

        overlap = await LeaveService._find_overlap(db, employee.id, data.start_date, data.end_date)
        if overlap is not None:
            raise ConflictError(
                "A pending or approved leave request already overlaps these dates.",
                field="leave_request_id",
                existing_id=overlap.id,
            )

        leave_req = LeaveRequest(
            company_id=employee.company_id,
            employee_id=employee.id,
            employee=employee,
            leave_type_id=leave_type.id,
            leave_type=leave_type,
            start_date=data.start_date,
            end_date=data.end_date,
            total_days=len(dates),
            reason=data.reason,
            status=LeaveStatus.PENDING,
            created_by_id=user.id,
        )
        db.add(leave_req)
        await db.flush()

        logger.info(
            "Leave request %s: employee=%s %s..%s (%d days)",
            leave_req.id, employee.employee_code, data.start_date, data.end_date, len(dates),
        )
        return LeaveService._to_response(leave_req)

    # ── Approve ─────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        user: User,
        request_id: uuid.UUID,
        review_note: Optional[str] = None,
    ) -> LeaveApprovalResponse:
        """Approve and write ON_LEAVE days for every working date in range."""
        leave_req = await LeaveService._load_pending_for_review(db, user, request_id)
        employee = leave_req.employee
        EmployeeService.ensure_company_active(employee)

        dates = working_dates(leave_req.start_date, leave_req.end_date)
        if not dates:
            raise ValidationException(
                {"dates": ["The selected range contains only weekly off days."]}
            )

        overlap = await LeaveService._find_overlap(
            db, employee.id, leave_req.start_date, leave_req.end_date, exclude_id=leave_req.id,
        )
        if overlap is not None:
            raise ConflictError(
                "Another pending or approved leave request overlaps these dates.",
                field="leave_request_id",
                existing_id=overlap.id,
            )

        worked = await AttendanceService.find_conflicting_days(db, employee.id, dates)
        if worked:
            listed = ", ".join(d.date.isoformat() for d in worked)
            raise ConflictError(
                f"Attendance already recorded on {listed}; leave cannot be applied.",
                field="dates",
            )

        written = await AttendanceService.write_leave_days(
            db,
            user,
            employee=employee,
            dates=dates,
            note=f"Leave: {leave_req.leave_type.name}",
        )

        leave_req.status = LeaveStatus.APPROVED
        leave_req.reviewed_by_id = user.id
        leave_req.reviewed_at = utcnow()
        leave_req.review_note = review_note
        await db.flush()

        await create_audit_entry(
            db,
            action="approve",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=user.id,
            old_values={"status": LeaveStatus.PENDING.value},
            new_values={"status": LeaveStatus.APPROVED.value, "days_written": written},
        )
        logger.info("Leave request %s approved; %d attendance days written", leave_req.id, written)

        response = LeaveApprovalResponse.model_validate(leave_req)
        response.attendance_days_written = written
        return response

    # ── Reject / cancel ─────────────────────────────────────────────

    @staticmethod
    async def reject(
        db: AsyncSession,
        user: User,
        request_id: uuid.UUID,
        review_note: Optional[str] = None,
    ) -> LeaveRequestResponse:
        leave_req = await LeaveService._load_pending_for_review(db, user, request_id)
        leave_req.status = LeaveStatus.REJECTED
        leave_req.reviewed_by_id = user.id
        leave_req.reviewed_at = utcnow()
        leave_req.review_note = review_note
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=user.id,
            old_values={"status": LeaveStatus.PENDING.value},
            new_values={"status": LeaveStatus.REJECTED.value, "review_note": review_note},
        )
        return LeaveService._to_response(leave_req)

    @staticmethod
    async def cancel(
        db: AsyncSession,
        user: User,
        request_id: uuid.UUID,
    ) -> LeaveRequestResponse:
        leave_req = await LeaveService._load(db, request_id)
        employee = await EmployeeService.get_own_employee(db, user)
        if leave_req.employee_id != employee.id:
            raise ForbiddenException(detail="You can only cancel your own leave requests.")
        if leave_req.status != LeaveStatus.PENDING:
            raise InvalidStateException("leave requests", leave_req.status.value, "cancelled")
        leave_req.status = LeaveStatus.CANCELLED
        await db.flush()
        return LeaveService._to_response(leave_req)

    # ── Read ────────────────────────────────────────────────────────

    @staticmethod
    async def get(
        db: AsyncSession,
        user: User,
        request_id: uuid.UUID,
    ) -> LeaveRequestResponse:
        leave_req = await LeaveService._load(db, request_id)
        if EmployeeService.is_company_level(user):
            if leave_req.company_id != user.company_id:
                raise ForbiddenException(detail="Leave request belongs to another company.")
        elif leave_req.employee.user_id != user.id:
            raise ForbiddenException(detail="You can only view your own leave requests.")
        return LeaveService._to_response(leave_req)

    @staticmethod
    async def list_mine(
        db: AsyncSession,
        user: User,
        pagination: PaginationParams,
        *,
        status: Optional[LeaveStatus] = None,
    ) -> PaginatedResponse:
        employee = await EmployeeService.get_own_employee(db, user)
        query = select(LeaveRequest).where(LeaveRequest.employee_id == employee.id)
        query = apply_filters(query, LeaveRequest, {"status": status})
        return await paginate(
            db,
            query,
            pagination,
            model=LeaveRequest,
            default_order=(LeaveRequest.start_date.desc(),),
            transform=LeaveService._to_response,
        )

    @staticmethod
    async def list_company(
        db: AsyncSession,
        user: User,
        pagination: PaginationParams,
        *,
        status: Optional[LeaveStatus] = None,
        employee_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        company_id = EmployeeService.require_company(user)
        query = select(LeaveRequest).where(LeaveRequest.company_id == company_id)
        query = apply_filters(
            query, LeaveRequest, {"status": status, "employee_id": employee_id},
        )
        return await paginate(
            db,
            query,
            pagination,
            model=LeaveRequest,
            default_order=(LeaveRequest.start_date.desc(),),
            transform=LeaveService._to_response,
        )
