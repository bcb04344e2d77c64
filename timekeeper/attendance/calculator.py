"""Shift window resolution and attendance metric derivation.

Both functions are pure: they take instants and wall-clock times and never
touch the database. All wall-clock alignment happens in the organisation
offset (see ``timekeeper.common.clock``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional

from timekeeper.common.clock import at_org_time, to_org
from timekeeper.common.constants import AttendanceStatus
from timekeeper.config import settings

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class ShiftWindow:
    start: datetime
    end: datetime
    overnight: bool

    @property
    def planned_minutes(self) -> int:
        return diff_minutes(self.end, self.start)


@dataclass(frozen=True)
class AttendanceMetrics:
    status: AttendanceStatus
    total_work_minutes: int = 0
    late_minutes: int = 0
    overtime_minutes: int = 0


def diff_minutes(later: datetime, earlier: datetime) -> int:
    """Whole minutes from *earlier* to *later*, rounded half-up, never negative."""
    minutes = (later - earlier).total_seconds() / 60
    return max(0, int(math.floor(minutes + 0.5)))


# ── Shift window ────────────────────────────────────────────────────

def resolve_shift_window(
    reference: datetime,
    start_time: time,
    end_time: time,
) -> ShiftWindow:
    """Return the shift occurrence that contains (or most recently preceded)
    *reference*.

    The shift is laid onto the reference's civil date. When ``end <= start``
    the shift spans midnight and its end moves to the next day; an instant
    before today's start may then still belong to yesterday's occurrence.
    """
    local = to_org(reference)
    start = at_org_time(local.date(), start_time)
    end = at_org_time(local.date(), end_time)

    overnight = end <= start
    if overnight:
        end += ONE_DAY

    if overnight and local < start:
        prev_start, prev_end = start - ONE_DAY, end - ONE_DAY
        if prev_start <= local <= prev_end:
            return ShiftWindow(start=prev_start, end=prev_end, overnight=True)

    return ShiftWindow(start=start, end=end, overnight=overnight)


# ── Metrics ─────────────────────────────────────────────────────────

def compute_metrics(
    check_in: Optional[datetime],
    check_out: Optional[datetime],
    start_time: Optional[time],
    end_time: Optional[time],
    *,
    grace_minutes: Optional[int] = None,
    break_minutes: Optional[int] = None,
    half_day_minutes: Optional[int] = None,
) -> AttendanceMetrics:
    """Derive worked, late and overtime minutes plus the day's status.

    The shift occurrence is resolved around the check-in instant.
    """
    grace = settings.DEFAULT_GRACE_MINUTES if grace_minutes is None else grace_minutes
    unpaid_break = settings.DEFAULT_BREAK_MINUTES if break_minutes is None else break_minutes
    half_day = (
        settings.HALF_DAY_THRESHOLD_MINUTES if half_day_minutes is None else half_day_minutes
    )

    if check_in is None or start_time is None or end_time is None:
        return AttendanceMetrics(status=AttendanceStatus.ABSENT)

    window = resolve_shift_window(check_in, start_time, end_time)

    late = 0
    if check_in > window.start + timedelta(minutes=grace):
        late = diff_minutes(check_in, window.start)

    if check_out is None:
        return AttendanceMetrics(
            status=AttendanceStatus.LATE if late > 0 else AttendanceStatus.PRESENT,
            late_minutes=late,
        )

    total = max(0, diff_minutes(check_out, check_in) - unpaid_break)
    planned = window.planned_minutes - unpaid_break
    overtime = total - planned if planned > 0 and total > planned else 0

    if total < half_day:
        status = AttendanceStatus.HALF_DAY
    elif late > 0:
        status = AttendanceStatus.LATE
    else:
        status = AttendanceStatus.PRESENT

    return AttendanceMetrics(
        status=status,
        total_work_minutes=total,
        late_minutes=late,
        overtime_minutes=overtime,
    )
