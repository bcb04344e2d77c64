"""Regularization ORM model: AttendanceRegularization."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timekeeper.common.constants import RegularizationStatus, RegularizationType
from timekeeper.core_hr.models import Employee
from timekeeper.database import Base


class AttendanceRegularization(Base):
    __tablename__ = "attendance_regularizations"

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
    request_type: Mapped[RegularizationType] = mapped_column(
        sa.Enum(RegularizationType, name="regularization_type"), nullable=False,
    )
    requested_check_in_time: Mapped[Optional[time]] = mapped_column(sa.Time)
    requested_check_out_time: Mapped[Optional[time]] = mapped_column(sa.Time)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[RegularizationStatus] = mapped_column(
        sa.Enum(RegularizationStatus, name="regularization_status"),
        nullable=False,
        default=RegularizationStatus.PENDING,
    )
    attendance_day_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("attendance_days.id"),
    )
    before_snapshot: Mapped[Optional[dict]] = mapped_column(JSONB)
    after_snapshot: Mapped[Optional[dict]] = mapped_column(JSONB)
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"),
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    review_note: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
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
        # One open request per employee per day
        sa.Index(
            "uq_regularization_pending_emp_date",
            "employee_id",
            "date",
            unique=True,
            postgresql_where=sa.text("status = 'PENDING'"),
            sqlite_where=sa.text("status = 'PENDING'"),
        ),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(lazy="selectin")
