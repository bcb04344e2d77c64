"""Attendance ORM models: AttendanceDay, AttendanceLog."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timekeeper.common.constants import (
    AttendanceLogMethod,
    AttendanceLogType,
    AttendanceSource,
    AttendanceStatus,
)
from timekeeper.core_hr.models import Employee, WorkShift
from timekeeper.database import Base


class AttendanceDay(Base):
    """One row per employee per organisational civil date."""

    __tablename__ = "attendance_days"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    check_in_time: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    check_out_time: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    total_work_minutes: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    late_minutes: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    overtime_minutes: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(
        sa.Enum(AttendanceStatus, name="attendance_status"), nullable=False,
    )
    source: Mapped[AttendanceSource] = mapped_column(
        sa.Enum(AttendanceSource, name="attendance_source"), nullable=False,
    )
    work_shift_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("work_shifts.id"),
    )
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"),
    )
    updated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        sa.UniqueConstraint("employee_id", "date", name="uq_attendance_day_emp_date"),
        sa.CheckConstraint(
            "check_out_time IS NULL OR check_in_time IS NULL OR check_out_time >= check_in_time",
            name="ck_attendance_day_checkout_after_checkin",
        ),
        sa.Index("ix_attendance_days_company_date", "company_id", "date"),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(lazy="selectin")
    work_shift: Mapped[Optional[WorkShift]] = relationship(lazy="selectin")


class AttendanceLog(Base):
    """Append-only clock event; never updated or deleted."""

    __tablename__ = "attendance_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False,
    )
    attendance_day_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("attendance_days.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[AttendanceLogType] = mapped_column(
        sa.Enum(AttendanceLogType, name="attendance_log_type"), nullable=False,
    )
    method: Mapped[AttendanceLogMethod] = mapped_column(
        sa.Enum(AttendanceLogMethod, name="attendance_log_method"), nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(sa.String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        sa.Index("ix_attendance_logs_day", "attendance_day_id"),
    )
