"""Attendance service layer — the Day Store and its clock-event log.

Every write to ``attendance_days`` goes through a single dialect-native
``INSERT … ON CONFLICT (employee_id, date)`` so the unique constraint is
the only concurrency guard. Instants are stored in UTC; civil dates are
computed in the organisation offset.
"""

from __future__ import annotations

import csv
import io
import logging
import uuid
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from sqlalchemy import and_, exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.attendance.calculator import (
    AttendanceMetrics,
    compute_metrics,
    resolve_shift_window,
)
from timekeeper.attendance.models import AttendanceDay, AttendanceLog
from timekeeper.attendance.schemas import (
    AttendanceDayResponse,
    AttendanceUpdateRequest,
    BackfillResponse,
    EmployeeBrief,
    ImportRowError,
    ImportSummaryResponse,
    ManualAttendanceRequest,
    ShiftBrief,
)
from timekeeper.auth.models import User
from timekeeper.common.audit import create_audit_entry
from timekeeper.common.clock import (
    as_utc,
    at_org_time,
    day_start,
    is_weekly_off,
    org_date,
    org_today,
    parse_instant,
    parse_org_date,
    to_org,
    utcnow,
)
from timekeeper.common.constants import (
    AttendanceLogMethod,
    AttendanceLogType,
    AttendanceSource,
    AttendanceStatus,
    CompanyStatus,
)
from timekeeper.common.exceptions import (
    AppException,
    CompanySuspendedException,
    ConflictError,
    ForbiddenException,
    NotFoundException,
    NotReadyException,
    ValidationException,
)
from timekeeper.common.filters import apply_filters
from timekeeper.common.pagination import PaginatedResponse, PaginationParams, paginate
from timekeeper.config import settings
from timekeeper.core_hr.models import Company, Employee, WorkShift
from timekeeper.core_hr.service import EmployeeService
from timekeeper.database import upsert_statement

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "employeeCode",
    "employeeId",
    "date",
    "status",
    "checkInTime",
    "checkOutTime",
    "totalWorkMinutes",
    "lateMinutes",
    "overtimeMinutes",
    "shiftName",
    "notes",
]

# DictReader key for values past the last header column
_EXTRA_FIELDS = "__extra__"


def day_snapshot(day: Optional[AttendanceDay]) -> dict[str, Any]:
    """JSON-serialisable view of the fields a correction can change."""
    if day is None:
        return {
            "exists": False,
            "attendance_day_id": None,
            "check_in_time": None,
            "check_out_time": None,
            "status": None,
            "total_work_minutes": 0,
            "late_minutes": 0,
            "overtime_minutes": 0,
        }
    check_in = as_utc(day.check_in_time)
    check_out = as_utc(day.check_out_time)
    return {
        "exists": True,
        "attendance_day_id": str(day.id),
        "check_in_time": check_in.isoformat() if check_in else None,
        "check_out_time": check_out.isoformat() if check_out else None,
        "status": day.status.value,
        "total_work_minutes": day.total_work_minutes,
        "late_minutes": day.late_minutes,
        "overtime_minutes": day.overtime_minutes,
    }


def _iso(value: Optional[datetime]) -> str:
    return to_org(value).isoformat() if value else ""


# ═════════════════════════════════════════════════════════════════════
# AttendanceService
# ═════════════════════════════════════════════════════════════════════


class AttendanceService:
    """Check-in/out, administrative edits, CSV exchange and absence backfill."""

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _build_day_response(day: AttendanceDay) -> AttendanceDayResponse:
        check_in = as_utc(day.check_in_time)
        check_out = as_utc(day.check_out_time)
        return AttendanceDayResponse(
            id=day.id,
            employee_id=day.employee_id,
            date=day.date,
            check_in_time=to_org(check_in) if check_in else None,
            check_out_time=to_org(check_out) if check_out else None,
            total_work_minutes=day.total_work_minutes,
            late_minutes=day.late_minutes,
            overtime_minutes=day.overtime_minutes,
            status=day.status,
            source=day.source,
            notes=day.notes,
            shift=ShiftBrief.model_validate(day.work_shift) if day.work_shift else None,
            employee=EmployeeBrief.model_validate(day.employee) if day.employee else None,
        )

    @staticmethod
    async def find_day(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
    ) -> Optional[AttendanceDay]:
        result = await db.execute(
            select(AttendanceDay).where(
                AttendanceDay.employee_id == employee_id,
                AttendanceDay.date == day,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def _upsert_day(
        db: AsyncSession,
        *,
        employee: Employee,
        day: date,
        values: dict[str, Any],
        actor_id: Optional[uuid.UUID],
        only_if_not_checked_in: bool = False,
    ) -> Optional[AttendanceDay]:
        """Insert or overwrite the (employee, day) row in one statement.

        With ``only_if_not_checked_in`` an existing row is only updated while
        it has no check-in; ``None`` is returned when that guard blocks.
        """
        now = utcnow()
        stmt = (await upsert_statement(db, AttendanceDay)).values(
            id=uuid.uuid4(),
            company_id=employee.company_id,
            employee_id=employee.id,
            date=day,
            created_by_id=actor_id,
            updated_by_id=actor_id,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["employee_id", "date"],
            set_={**values, "updated_by_id": actor_id, "updated_at": now},
            where=AttendanceDay.check_in_time.is_(None) if only_if_not_checked_in else None,
        ).returning(AttendanceDay.id)

        row = (await db.execute(stmt)).first()
        if row is None:
            return None
        return await db.get(AttendanceDay, row[0], populate_existing=True)

    @staticmethod
    def _metric_values(metrics: AttendanceMetrics) -> dict[str, Any]:
        return {
            "status": metrics.status,
            "total_work_minutes": metrics.total_work_minutes,
            "late_minutes": metrics.late_minutes,
            "overtime_minutes": metrics.overtime_minutes,
        }

    @staticmethod
    def _validate_order(check_in: Optional[datetime], check_out: Optional[datetime]) -> None:
        if check_in and check_out and check_out < check_in:
            raise ValidationException(
                {"check_out_time": ["Check-out time cannot be before check-in time."]},
            )

    @staticmethod
    async def _log_event(
        db: AsyncSession,
        day: AttendanceDay,
        *,
        event: AttendanceLogType,
        method: AttendanceLogMethod,
        timestamp: datetime,
        actor_id: Optional[uuid.UUID],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AttendanceLog:
        log = AttendanceLog(
            company_id=day.company_id,
            employee_id=day.employee_id,
            attendance_day_id=day.id,
            type=event,
            method=method,
            timestamp=timestamp,
            ip_address=ip_address,
            user_agent=user_agent,
            created_by_id=actor_id,
        )
        db.add(log)
        await db.flush()
        return log

    # ── POST /check-in ──────────────────────────────────────────────

    @staticmethod
    async def check_in(
        db: AsyncSession,
        user: User,
        employee_id: Optional[uuid.UUID] = None,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AttendanceDayResponse:
        """Open the day for the resolved shift occurrence."""
        now = as_utc(now) or utcnow()
        employee = await EmployeeService.resolve_target_employee(db, user, employee_id)
        EmployeeService.ensure_company_active(employee)
        shift = EmployeeService.require_shift(employee)

        window = resolve_shift_window(now, shift.start_time, shift.end_time)
        opens_at = window.start - timedelta(minutes=settings.EARLY_CHECK_IN_MINUTES)
        if now < opens_at:
            raise ValidationException(
                {"check_in_time": [f"Too early to check in; check-in opens at {opens_at.isoformat()}."]},
            )

        # A night-shift check-in after midnight belongs to the day the shift started
        attendance_date = window.start.date()
        is_self = employee.user_id == user.id
        metrics = compute_metrics(now, None, shift.start_time, shift.end_time)

        day = await AttendanceService._upsert_day(
            db,
            employee=employee,
            day=attendance_date,
            actor_id=user.id,
            only_if_not_checked_in=True,
            values={
                "check_in_time": now,
                "work_shift_id": shift.id,
                "source": AttendanceSource.SELF if is_self else AttendanceSource.ADMIN,
                **AttendanceService._metric_values(metrics),
            },
        )
        if day is None:
            existing = await AttendanceService.find_day(db, employee.id, attendance_date)
            raise ConflictError(
                f"Already checked in for {attendance_date.isoformat()}.",
                existing_id=existing.id if existing else None,
            )

        await AttendanceService._log_event(
            db,
            day,
            event=AttendanceLogType.CHECK_IN,
            method=AttendanceLogMethod.WEB if is_self else AttendanceLogMethod.ADMIN,
            timestamp=now,
            actor_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        logger.info(
            "Check-in: employee=%s date=%s status=%s late=%d",
            employee.employee_code, attendance_date, metrics.status.value, metrics.late_minutes,
        )
        return AttendanceService._build_day_response(day)

    # ── POST /check-out ─────────────────────────────────────────────

    @staticmethod
    async def _find_open_day(
        db: AsyncSession,
        employee_id: uuid.UUID,
        today: date,
    ) -> Optional[AttendanceDay]:
        """Today's day, or yesterday's while a night shift is still open."""
        result = await db.execute(
            select(AttendanceDay).where(
                AttendanceDay.employee_id == employee_id,
                AttendanceDay.date.in_([today, today - timedelta(days=1)]),
            )
        )
        days = {d.date: d for d in result.scalars().all()}
        current = days.get(today)
        previous = days.get(today - timedelta(days=1))

        if (current is None or current.check_in_time is None) and previous is not None:
            still_open = previous.check_in_time is not None and previous.check_out_time is None
            if still_open and previous.work_shift is not None and previous.work_shift.is_overnight:
                return previous
        return current

    @staticmethod
    async def check_out(
        db: AsyncSession,
        user: User,
        employee_id: Optional[uuid.UUID] = None,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AttendanceDayResponse:
        """Close the open day and compute full metrics."""
        now = as_utc(now) or utcnow()
        employee = await EmployeeService.resolve_target_employee(db, user, employee_id)
        EmployeeService.ensure_company_active(employee)

        day = await AttendanceService._find_open_day(db, employee.id, org_date(now))
        if day is None or day.check_in_time is None:
            raise NotReadyException("You have not checked in yet.")
        if day.check_out_time is not None:
            raise ConflictError("Already checked out for this day.", existing_id=day.id)

        shift = day.work_shift or EmployeeService.require_shift(employee)
        check_in = as_utc(day.check_in_time)
        metrics = compute_metrics(check_in, now, shift.start_time, shift.end_time)

        result = await db.execute(
            update(AttendanceDay)
            .where(AttendanceDay.id == day.id, AttendanceDay.check_out_time.is_(None))
            .values(
                check_out_time=now,
                work_shift_id=shift.id,
                updated_by_id=user.id,
                updated_at=utcnow(),
                **AttendanceService._metric_values(metrics),
            )
            .returning(AttendanceDay.id)
            .execution_options(synchronize_session=False)
        )
        if result.first() is None:
            raise ConflictError("Already checked out for this day.", existing_id=day.id)
        day = await db.get(AttendanceDay, day.id, populate_existing=True)

        is_self = employee.user_id == user.id
        await AttendanceService._log_event(
            db,
            day,
            event=AttendanceLogType.CHECK_OUT,
            method=AttendanceLogMethod.WEB if is_self else AttendanceLogMethod.ADMIN,
            timestamp=now,
            actor_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        logger.info(
            "Check-out: employee=%s date=%s status=%s worked=%d overtime=%d",
            employee.employee_code, day.date, metrics.status.value,
            metrics.total_work_minutes, metrics.overtime_minutes,
        )
        return AttendanceService._build_day_response(day)

    # ── GET /me ─────────────────────────────────────────────────────

    @staticmethod
    async def get_my_attendance(
        db: AsyncSession,
        user: User,
        pagination: PaginationParams,
        *,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> PaginatedResponse:
        employee = await EmployeeService.get_own_employee(db, user)
        query = select(AttendanceDay).where(AttendanceDay.employee_id == employee.id)
        query = apply_filters(query, AttendanceDay, {"date__from": date_from, "date__to": date_to})
        return await paginate(
            db,
            query,
            pagination,
            model=AttendanceDay,
            default_order=(AttendanceDay.date.desc(),),
            transform=AttendanceService._build_day_response,
        )

    # ── GET / (company) ─────────────────────────────────────────────

    @staticmethod
    def _company_query(
        company_id: uuid.UUID,
        *,
        employee_id: Optional[uuid.UUID] = None,
        department_id: Optional[uuid.UUID] = None,
        status: Optional[AttendanceStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ):
        query = select(AttendanceDay).where(AttendanceDay.company_id == company_id)
        if department_id is not None:
            query = query.join(Employee, Employee.id == AttendanceDay.employee_id).where(
                Employee.department_id == department_id,
            )
        return apply_filters(
            query,
            AttendanceDay,
            {
                "employee_id": employee_id,
                "status": status,
                "date__from": date_from,
                "date__to": date_to,
            },
        )

    @staticmethod
    async def get_company_attendance(
        db: AsyncSession,
        user: User,
        pagination: PaginationParams,
        **filters: Any,
    ) -> PaginatedResponse:
        company_id = EmployeeService.require_company(user)
        query = AttendanceService._company_query(company_id, **filters)
        return await paginate(
            db,
            query,
            pagination,
            model=AttendanceDay,
            default_order=(AttendanceDay.date.desc(), AttendanceDay.employee_id),
            transform=AttendanceService._build_day_response,
        )

    # ── GET /{day_id} ───────────────────────────────────────────────

    @staticmethod
    async def _load_day(db: AsyncSession, day_id: uuid.UUID) -> AttendanceDay:
        day = await db.get(AttendanceDay, day_id)
        if day is None:
            raise NotFoundException("AttendanceDay", str(day_id))
        return day

    @staticmethod
    async def get_day(
        db: AsyncSession,
        user: User,
        day_id: uuid.UUID,
    ) -> AttendanceDayResponse:
        day = await AttendanceService._load_day(db, day_id)
        if EmployeeService.is_company_level(user):
            if day.company_id != user.company_id:
                raise ForbiddenException(detail="Attendance record belongs to another company.")
        elif day.employee.user_id != user.id:
            raise ForbiddenException(detail="You can only view your own attendance.")
        return AttendanceService._build_day_response(day)

    # ── POST /manual ────────────────────────────────────────────────

    @staticmethod
    async def manual_upsert(
        db: AsyncSession,
        user: User,
        data: ManualAttendanceRequest,
    ) -> AttendanceDayResponse:
        """Create or overwrite a day; an explicit status beats the computed one."""
        EmployeeService.require_company(user)
        employee = await EmployeeService.get_company_employee(db, user, data.employee_id)
        EmployeeService.ensure_company_active(employee)

        if data.shift_id is not None:
            shift = await db.get(WorkShift, data.shift_id)
            if shift is None or shift.company_id != employee.company_id:
                raise NotFoundException("WorkShift", str(data.shift_id))
        else:
            shift = employee.work_shift

        check_in = as_utc(data.check_in_time)
        check_out = as_utc(data.check_out_time)
        AttendanceService._validate_order(check_in, check_out)
        if check_in is not None and shift is None:
            shift = EmployeeService.require_shift(employee)

        metrics = compute_metrics(
            check_in,
            check_out,
            shift.start_time if shift else None,
            shift.end_time if shift else None,
        )
        values = AttendanceService._metric_values(metrics)
        if data.status is not None:
            values["status"] = data.status

        existing = await AttendanceService.find_day(db, employee.id, data.date)
        before = day_snapshot(existing)

        day = await AttendanceService._upsert_day(
            db,
            employee=employee,
            day=data.date,
            actor_id=user.id,
            values={
                **values,
                "check_in_time": check_in,
                "check_out_time": check_out,
                "work_shift_id": shift.id if shift else None,
                "source": AttendanceSource.ADMIN,
                "notes": data.notes,
            },
        )
        await create_audit_entry(
            db,
            action="manual_upsert",
            entity_type="attendance_day",
            entity_id=day.id,
            actor_id=user.id,
            old_values=before,
            new_values=day_snapshot(day),
        )
        logger.info(
            "Manual attendance: employee=%s date=%s status=%s by=%s",
            employee.employee_code, data.date, day.status.value, user.id,
        )
        return AttendanceService._build_day_response(day)

    # ── PATCH /{day_id} ─────────────────────────────────────────────

    @staticmethod
    async def update_day(
        db: AsyncSession,
        user: User,
        day_id: uuid.UUID,
        data: AttendanceUpdateRequest,
    ) -> AttendanceDayResponse:
        """Merge supplied fields over the stored day and recompute."""
        day = await AttendanceService._load_day(db, day_id)
        if day.company_id != user.company_id:
            raise ForbiddenException(detail="Attendance record belongs to another company.")
        employee = day.employee
        EmployeeService.ensure_company_active(employee)

        supplied = data.model_fields_set
        check_in = as_utc(data.check_in_time) if "check_in_time" in supplied else as_utc(day.check_in_time)
        check_out = (
            as_utc(data.check_out_time) if "check_out_time" in supplied else as_utc(day.check_out_time)
        )
        AttendanceService._validate_order(check_in, check_out)

        shift = day.work_shift or employee.work_shift
        if check_in is not None and shift is None:
            shift = EmployeeService.require_shift(employee)

        metrics = compute_metrics(
            check_in,
            check_out,
            shift.start_time if shift else None,
            shift.end_time if shift else None,
        )
        before = day_snapshot(day)

        day.check_in_time = check_in
        day.check_out_time = check_out
        day.total_work_minutes = metrics.total_work_minutes
        day.late_minutes = metrics.late_minutes
        day.overtime_minutes = metrics.overtime_minutes
        day.status = data.status or metrics.status
        day.work_shift_id = shift.id if shift else None
        day.source = AttendanceSource.ADMIN
        if "notes" in supplied:
            day.notes = data.notes
        day.updated_by_id = user.id
        await db.flush()
        day = await db.get(AttendanceDay, day.id, populate_existing=True)

        await create_audit_entry(
            db,
            action="update",
            entity_type="attendance_day",
            entity_id=day.id,
            actor_id=user.id,
            old_values=before,
            new_values=day_snapshot(day),
        )
        return AttendanceService._build_day_response(day)

    # ── GET /export ─────────────────────────────────────────────────

    @staticmethod
    async def export_csv(
        db: AsyncSession,
        user: User,
        **filters: Any,
    ) -> str:
        """Render the filtered company attendance as CSV text."""
        company_id = EmployeeService.require_company(user)
        query = AttendanceService._company_query(company_id, **filters).order_by(
            AttendanceDay.date, AttendanceDay.employee_id,
        )
        days = (await db.execute(query)).scalars().all()

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(EXPORT_COLUMNS)
        for day in days:
            writer.writerow([
                day.employee.employee_code,
                str(day.employee_id),
                day_start(day.date).isoformat(),
                day.status.value,
                _iso(day.check_in_time),
                _iso(day.check_out_time),
                day.total_work_minutes,
                day.late_minutes,
                day.overtime_minutes,
                day.work_shift.name if day.work_shift else "",
                day.notes or "",
            ])
        return buffer.getvalue()

    # ── POST /import ────────────────────────────────────────────────

    @staticmethod
    async def import_csv(
        db: AsyncSession,
        user: User,
        content: str,
    ) -> ImportSummaryResponse:
        """Upsert one day per CSV row; each row succeeds or fails on its own."""
        company_id = EmployeeService.require_company(user)
        reader = csv.DictReader(io.StringIO(content), restkey=_EXTRA_FIELDS)
        headers = {(h or "").strip().lower() for h in reader.fieldnames or []}
        if "date" not in headers or not headers & {"employeecode", "employeeemail"}:
            raise ValidationException(
                {"file": ["CSV must have a 'date' column and an 'employeeCode' or 'employeeEmail' column."]},
            )

        shifts = {
            s.name.lower(): s
            for s in (
                await db.execute(select(WorkShift).where(WorkShift.company_id == company_id))
            ).scalars().all()
        }

        total = 0
        errors: list[ImportRowError] = []
        for index, raw in enumerate(reader, start=1):
            total += 1
            try:
                row = AttendanceService._normalise_row(raw)
                async with db.begin_nested():
                    await AttendanceService._import_row(db, user, company_id, row, shifts)
            except (AppException, ValueError) as exc:
                message = exc.detail if isinstance(exc, AppException) else str(exc)
                errors.append(ImportRowError(row=index, message=message))
                logger.warning("Attendance import row %d rejected: %s", index, message)

        logger.info(
            "Attendance import: company=%s total=%d failed=%d", company_id, total, len(errors),
        )
        await create_audit_entry(
            db,
            action="import",
            entity_type="attendance_import",
            entity_id=company_id,
            actor_id=user.id,
            new_values={"total": total, "success_count": total - len(errors), "fail_count": len(errors)},
        )
        return ImportSummaryResponse(
            total=total,
            success_count=total - len(errors),
            fail_count=len(errors),
            errors=errors,
        )

    @staticmethod
    def _normalise_row(raw: dict[str, Any]) -> dict[str, str]:
        extra = raw.pop(_EXTRA_FIELDS, None)
        if extra:
            raise ValueError(f"Row has {len(extra)} more field(s) than the header.")
        # Short rows leave trailing columns as None
        return {(k or "").strip().lower(): (v or "").strip() for k, v in raw.items()}

    @staticmethod
    async def _import_row(
        db: AsyncSession,
        user: User,
        company_id: uuid.UUID,
        row: dict[str, str],
        shifts: dict[str, WorkShift],
    ) -> AttendanceDay:
        code = row.get("employeecode", "")
        email = row.get("employeeemail", "")
        if not code and not email:
            raise ValueError("employeeCode or employeeEmail is required.")

        if code:
            query = select(Employee).where(
                Employee.company_id == company_id, Employee.employee_code == code,
            )
        else:
            query = (
                select(Employee)
                .join(User, User.id == Employee.user_id)
                .where(Employee.company_id == company_id, User.email == email.lower())
            )
        employee = (await db.execute(query)).scalars().first()
        if employee is None:
            raise NotFoundException("Employee", code or email)
        EmployeeService.ensure_company_active(employee)

        if not row.get("date"):
            raise ValueError("date is required.")
        day = parse_org_date(row["date"])
        check_in = parse_instant(row["checkintime"]) if row.get("checkintime") else None
        check_out = parse_instant(row["checkouttime"]) if row.get("checkouttime") else None
        if check_in and check_out and check_out < check_in:
            raise ValueError("checkOutTime cannot be before checkInTime.")

        shift_name = row.get("shiftname", "")
        if shift_name:
            shift = shifts.get(shift_name.lower())
            if shift is None:
                raise NotFoundException("WorkShift", shift_name)
        else:
            shift = employee.work_shift
        if check_in is not None and shift is None:
            raise ValueError(f"No work shift is assigned to employee {employee.employee_code}.")

        metrics = compute_metrics(
            check_in,
            check_out,
            shift.start_time if shift else None,
            shift.end_time if shift else None,
        )
        attendance_day = await AttendanceService._upsert_day(
            db,
            employee=employee,
            day=day,
            actor_id=user.id,
            values={
                **AttendanceService._metric_values(metrics),
                "check_in_time": check_in,
                "check_out_time": check_out,
                "work_shift_id": shift.id if shift else None,
                "source": AttendanceSource.IMPORT,
                "notes": row.get("notes") or None,
            },
        )
        for event, stamp in (
            (AttendanceLogType.CHECK_IN, check_in),
            (AttendanceLogType.CHECK_OUT, check_out),
        ):
            if stamp is not None:
                await AttendanceService._log_event(
                    db,
                    attendance_day,
                    event=event,
                    method=AttendanceLogMethod.IMPORT,
                    timestamp=stamp,
                    actor_id=user.id,
                )
        return attendance_day

    # ── Regularization apply path ───────────────────────────────────

    @staticmethod
    async def apply_correction(
        db: AsyncSession,
        user: User,
        *,
        employee: Employee,
        day: date,
        check_in_time: Optional[time],
        check_out_time: Optional[time],
    ) -> AttendanceDay:
        """Rewrite a day from corrected wall-clock times on its civil date.

        A side that is not corrected keeps the stored instant.
        """
        existing = await AttendanceService.find_day(db, employee.id, day)
        shift = (existing.work_shift if existing else None) or employee.work_shift

        check_in = (
            as_utc(at_org_time(day, check_in_time))
            if check_in_time is not None
            else as_utc(existing.check_in_time) if existing else None
        )
        check_out = (
            as_utc(at_org_time(day, check_out_time))
            if check_out_time is not None
            else as_utc(existing.check_out_time) if existing else None
        )
        if (
            check_in and check_out and check_out < check_in
            and shift is not None and shift.is_overnight
        ):
            check_out += timedelta(days=1)
        AttendanceService._validate_order(check_in, check_out)
        if check_in is not None and shift is None:
            shift = EmployeeService.require_shift(employee)

        metrics = compute_metrics(
            check_in,
            check_out,
            shift.start_time if shift else None,
            shift.end_time if shift else None,
        )
        return await AttendanceService._upsert_day(
            db,
            employee=employee,
            day=day,
            actor_id=user.id,
            values={
                **AttendanceService._metric_values(metrics),
                "check_in_time": check_in,
                "check_out_time": check_out,
                "work_shift_id": shift.id if shift else None,
                "source": AttendanceSource.ADMIN,
            },
        )

    # ── Absence backfill ────────────────────────────────────────────

    @staticmethod
    async def _insert_absences(
        db: AsyncSession,
        company_id: uuid.UUID,
        target_date: date,
        actor_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Insert ABSENT rows for active employees without a day; returns the count."""
        has_day = exists().where(
            and_(
                AttendanceDay.employee_id == Employee.id,
                AttendanceDay.date == target_date,
            )
        )
        employee_ids = (
            await db.execute(
                select(Employee.id).where(
                    Employee.company_id == company_id,
                    Employee.is_active.is_(True),
                    ~has_day,
                )
            )
        ).scalars().all()
        if not employee_ids:
            return 0

        now = utcnow()
        rows = [
            {
                "id": uuid.uuid4(),
                "company_id": company_id,
                "employee_id": employee_id,
                "date": target_date,
                "status": AttendanceStatus.ABSENT,
                "source": AttendanceSource.ADMIN,
                "total_work_minutes": 0,
                "late_minutes": 0,
                "overtime_minutes": 0,
                "created_by_id": actor_id,
                "updated_by_id": actor_id,
                "created_at": now,
                "updated_at": now,
            }
            for employee_id in employee_ids
        ]
        stmt = (
            (await upsert_statement(db, AttendanceDay))
            .values(rows)
            .on_conflict_do_nothing(index_elements=["employee_id", "date"])
            .returning(AttendanceDay.id)
        )
        return len((await db.execute(stmt)).all())

    @staticmethod
    async def mark_absent(
        db: AsyncSession,
        user: User,
        target_date: Optional[date] = None,
    ) -> BackfillResponse:
        """Manual backfill for the caller's company."""
        company_id = EmployeeService.require_company(user)
        target_date = target_date or org_today()
        if is_weekly_off(target_date):
            return BackfillResponse(date=target_date, skipped_weekly_off=True)

        company = await db.get(Company, company_id)
        if company is None or not company.is_active:
            raise CompanySuspendedException(company_id)

        async with db.begin_nested():
            created = await AttendanceService._insert_absences(db, company_id, target_date, user.id)
        await create_audit_entry(
            db,
            action="mark_absent",
            entity_type="attendance_backfill",
            entity_id=company_id,
            actor_id=user.id,
            new_values={"date": target_date.isoformat(), "created": created},
        )
        logger.info("Manual absence backfill: company=%s date=%s created=%d", company_id, target_date, created)
        return BackfillResponse(date=target_date, companies_processed=1, created=created)

    @staticmethod
    async def mark_absent_all_companies(
        db: AsyncSession,
        target_date: date,
    ) -> BackfillResponse:
        """Scheduled backfill; each company is written all-or-nothing."""
        if is_weekly_off(target_date):
            logger.info("Absence backfill skipped for weekly off day %s", target_date)
            return BackfillResponse(date=target_date, skipped_weekly_off=True)

        company_ids = (
            await db.execute(select(Company.id).where(Company.status == CompanyStatus.active))
        ).scalars().all()

        created = 0
        for company_id in company_ids:
            async with db.begin_nested():
                count = await AttendanceService._insert_absences(db, company_id, target_date)
                await create_audit_entry(
                    db,
                    action="mark_absent",
                    entity_type="attendance_backfill",
                    entity_id=company_id,
                    new_values={"date": target_date.isoformat(), "created": count},
                )
            created += count
            logger.info("Absence backfill: company=%s date=%s created=%d", company_id, target_date, count)

        return BackfillResponse(
            date=target_date,
            companies_processed=len(company_ids),
            created=created,
        )

    # ── Leave apply path ────────────────────────────────────────────

    @staticmethod
    async def find_conflicting_days(
        db: AsyncSession,
        employee_id: uuid.UUID,
        dates: list[date],
    ) -> list[AttendanceDay]:
        """Days in *dates* that already carry a check-in or check-out."""
        result = await db.execute(
            select(AttendanceDay)
            .where(
                AttendanceDay.employee_id == employee_id,
                AttendanceDay.date.in_(dates),
                (AttendanceDay.check_in_time.is_not(None)) | (AttendanceDay.check_out_time.is_not(None)),
            )
            .order_by(AttendanceDay.date)
        )
        return list(result.scalars().all())

    @staticmethod
    async def write_leave_days(
        db: AsyncSession,
        user: User,
        *,
        employee: Employee,
        dates: list[date],
        note: str,
    ) -> int:
        """Mark every date ON_LEAVE in one multi-row upsert; all or nothing.

        The conflict branch only rewrites days without clock times, so a
        check-in that lands after the caller's pre-check still aborts the
        whole write instead of being overwritten.
        """
        now = utcnow()
        leave_values = {
            "status": AttendanceStatus.ON_LEAVE,
            "source": AttendanceSource.ADMIN,
            "total_work_minutes": 0,
            "late_minutes": 0,
            "overtime_minutes": 0,
            "notes": note,
        }
        rows = [
            {
                "id": uuid.uuid4(),
                "company_id": employee.company_id,
                "employee_id": employee.id,
                "date": day,
                "created_by_id": user.id,
                "updated_by_id": user.id,
                "created_at": now,
                "updated_at": now,
                **leave_values,
            }
            for day in dates
        ]
        stmt = (await upsert_statement(db, AttendanceDay)).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["employee_id", "date"],
            set_={**leave_values, "updated_by_id": user.id, "updated_at": now},
            where=(
                AttendanceDay.check_in_time.is_(None)
                & AttendanceDay.check_out_time.is_(None)
            ),
        ).returning(AttendanceDay.date)

        async with db.begin_nested():
            written = {row.date for row in (await db.execute(stmt)).all()}
            if len(written) != len(dates):
                listed = ", ".join(d.isoformat() for d in sorted(set(dates) - written))
                raise ConflictError(
                    f"Attendance already recorded on {listed}; leave cannot be applied.",
                    field="dates",
                )
        return len(written)
