"""Core HR lookups shared by the attendance, regularization and leave flows.

Uses:
  - ``NotFoundException / ForbiddenException / ValidationException`` from
    timekeeper.common.exceptions
"""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.auth.models import User
from timekeeper.common.constants import COMPANY_LEVEL_ROLES
from timekeeper.common.exceptions import (
    CompanySuspendedException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from timekeeper.core_hr.models import Employee, WorkShift


# ═════════════════════════════════════════════════════════════════════
# EmployeeService
# ═════════════════════════════════════════════════════════════════════


class EmployeeService:
    """Employee / company-context resolution for the acting user."""

    @staticmethod
    def is_company_level(user: User) -> bool:
        return user.role in COMPANY_LEVEL_ROLES

    @staticmethod
    def require_company(user: User) -> uuid.UUID:
        """Company context of the caller; platform users without one are refused."""
        if user.company_id is None:
            raise ForbiddenException(detail="A company context is required for this action.")
        return user.company_id

    # ── Lookups ─────────────────────────────────────────────────────

    @staticmethod
    async def get_own_employee(db: AsyncSession, user: User) -> Employee:
        result = await db.execute(select(Employee).where(Employee.user_id == user.id))
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee profile", str(user.id))
        if user.company_id is not None and employee.company_id != user.company_id:
            raise ForbiddenException(detail="Employee does not belong to your company.")
        return employee

    @staticmethod
    async def get_company_employee(
        db: AsyncSession,
        user: User,
        employee_id: uuid.UUID,
    ) -> Employee:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        if employee.company_id != user.company_id:
            raise ForbiddenException(detail="Employee does not belong to your company.")
        return employee

    @staticmethod
    async def resolve_target_employee(
        db: AsyncSession,
        user: User,
        employee_id: Optional[uuid.UUID] = None,
        *,
        strict: bool = False,
    ) -> Employee:
        """Pick the employee an action applies to.

        Company-level roles may name any employee of their company. Other
        callers act on their own record: with ``strict=False`` a foreign
        ``employee_id`` is ignored (self-attendance fallback), with
        ``strict=True`` it is refused.
        """
        if employee_id is not None and EmployeeService.is_company_level(user):
            return await EmployeeService.get_company_employee(db, user, employee_id)

        employee = await EmployeeService.get_own_employee(db, user)
        if strict and employee_id is not None and employee_id != employee.id:
            raise ForbiddenException(
                detail="Only company administrators may act on behalf of another employee.",
            )
        return employee

    # ── Guards ──────────────────────────────────────────────────────

    @staticmethod
    def ensure_company_active(employee: Employee) -> None:
        if not employee.company.is_active:
            raise CompanySuspendedException(employee.company_id)

    @staticmethod
    def require_shift(employee: Employee) -> WorkShift:
        if employee.work_shift is None:
            raise ValidationException(
                {"work_shift": [f"No work shift is assigned to employee {employee.employee_code}."]},
            )
        return employee.work_shift
