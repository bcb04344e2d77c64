"""Shift window + metrics calculator — pure function tests (no DB)."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone

from timekeeper.attendance.calculator import (
    compute_metrics,
    diff_minutes,
    resolve_shift_window,
)
from timekeeper.common.clock import to_org
from timekeeper.common.constants import AttendanceStatus
from tests.conftest import MONDAY, org_instant

DAY_START, DAY_END = time(9, 0), time(18, 0)
NIGHT_START, NIGHT_END = time(22, 0), time(6, 0)
TUESDAY = MONDAY + timedelta(days=1)


class TestDiffMinutes:
    """Half-up minute rounding."""

    def test_diff_minutes_rounds_half_up(self):
        base = datetime(2030, 1, 7, 3, 0, tzinfo=timezone.utc)
        assert diff_minutes(base + timedelta(minutes=29, seconds=30), base) == 30
        assert diff_minutes(base + timedelta(minutes=29, seconds=29), base) == 29

    def test_diff_minutes_never_negative(self):
        base = datetime(2030, 1, 7, 3, 0, tzinfo=timezone.utc)
        assert diff_minutes(base - timedelta(minutes=10), base) == 0


class TestResolveShiftWindow:
    """Shift occurrence lookup around an instant."""

    def test_day_shift_window_on_reference_date(self):
        window = resolve_shift_window(org_instant(MONDAY, 8, 45), DAY_START, DAY_END)
        assert window.start == org_instant(MONDAY, 9)
        assert window.end == org_instant(MONDAY, 18)
        assert window.overnight is False
        assert window.planned_minutes == 540

    def test_night_shift_window_spans_midnight(self):
        window = resolve_shift_window(org_instant(MONDAY, 22, 5), NIGHT_START, NIGHT_END)
        assert window.overnight is True
        assert window.start == org_instant(MONDAY, 22)
        assert window.end == org_instant(TUESDAY, 6)
        assert window.planned_minutes == 480

    def test_after_midnight_belongs_to_previous_occurrence(self):
        window = resolve_shift_window(org_instant(TUESDAY, 2), NIGHT_START, NIGHT_END)
        assert window.start == org_instant(MONDAY, 22)
        assert to_org(window.start).date() == MONDAY

    def test_after_previous_end_rolls_to_todays_occurrence(self):
        window = resolve_shift_window(org_instant(TUESDAY, 7), NIGHT_START, NIGHT_END)
        assert window.start == org_instant(TUESDAY, 22)
        assert window.end == org_instant(TUESDAY + timedelta(days=1), 6)

    def test_window_is_computed_in_org_offset_not_utc(self):
        # 00:30 org time on Tuesday is still Monday in UTC
        reference = org_instant(TUESDAY, 0, 30)
        assert reference.date() == MONDAY
        window = resolve_shift_window(reference, DAY_START, DAY_END)
        assert to_org(window.start).date() == TUESDAY


class TestComputeMetrics:
    """Worked, late and overtime minutes plus status."""

    def test_no_check_in_is_absent(self):
        metrics = compute_metrics(None, None, DAY_START, DAY_END)
        assert metrics.status == AttendanceStatus.ABSENT
        assert metrics.total_work_minutes == 0

    def test_no_shift_is_absent(self):
        metrics = compute_metrics(org_instant(MONDAY, 9), None, None, None)
        assert metrics.status == AttendanceStatus.ABSENT

    def test_within_grace_is_present_without_late_minutes(self):
        metrics = compute_metrics(org_instant(MONDAY, 9, 20), None, DAY_START, DAY_END)
        assert metrics.status == AttendanceStatus.PRESENT
        assert metrics.late_minutes == 0

    def test_grace_boundary_is_not_late(self):
        metrics = compute_metrics(org_instant(MONDAY, 9, 30), None, DAY_START, DAY_END)
        assert metrics.late_minutes == 0

    def test_late_minutes_measured_from_shift_start(self):
        metrics = compute_metrics(org_instant(MONDAY, 9, 35), None, DAY_START, DAY_END)
        assert metrics.status == AttendanceStatus.LATE
        assert metrics.late_minutes == 35

    def test_full_day_metrics(self):
        metrics = compute_metrics(
            org_instant(MONDAY, 9), org_instant(MONDAY, 18), DAY_START, DAY_END,
        )
        assert metrics.status == AttendanceStatus.PRESENT
        assert metrics.total_work_minutes == 540
        assert metrics.overtime_minutes == 0

    def test_overtime_beyond_planned_minutes(self):
        metrics = compute_metrics(
            org_instant(MONDAY, 9), org_instant(MONDAY, 19, 30), DAY_START, DAY_END,
        )
        assert metrics.total_work_minutes == 630
        assert metrics.overtime_minutes == 90
        assert metrics.status == AttendanceStatus.PRESENT

    def test_short_day_is_half_day_even_when_late(self):
        metrics = compute_metrics(
            org_instant(MONDAY, 10), org_instant(MONDAY, 12), DAY_START, DAY_END,
        )
        assert metrics.total_work_minutes == 120
        assert metrics.late_minutes == 60
        assert metrics.status == AttendanceStatus.HALF_DAY

    def test_late_full_day_stays_late(self):
        metrics = compute_metrics(
            org_instant(MONDAY, 9, 35), org_instant(MONDAY, 18), DAY_START, DAY_END,
        )
        assert metrics.status == AttendanceStatus.LATE
        assert metrics.total_work_minutes == 505
        assert metrics.overtime_minutes == 0

    def test_unpaid_break_reduces_worked_and_planned_minutes(self):
        metrics = compute_metrics(
            org_instant(MONDAY, 9),
            org_instant(MONDAY, 18),
            DAY_START,
            DAY_END,
            break_minutes=60,
        )
        assert metrics.total_work_minutes == 480
        assert metrics.overtime_minutes == 0

    def test_custom_grace_and_half_day_threshold(self):
        metrics = compute_metrics(
            org_instant(MONDAY, 9, 10),
            org_instant(MONDAY, 14),
            DAY_START,
            DAY_END,
            grace_minutes=5,
            half_day_minutes=300,
        )
        assert metrics.late_minutes == 10
        assert metrics.total_work_minutes == 290
        assert metrics.status == AttendanceStatus.HALF_DAY

    def test_night_shift_crossing_midnight(self):
        metrics = compute_metrics(
            org_instant(MONDAY, 22, 10),
            org_instant(TUESDAY, 6, 30),
            NIGHT_START,
            NIGHT_END,
        )
        assert metrics.total_work_minutes == 500
        assert metrics.overtime_minutes == 20
        assert metrics.late_minutes == 0
        assert metrics.status == AttendanceStatus.PRESENT

    def test_overtime_never_exceeds_total(self):
        for hours in (1, 4, 9, 12):
            metrics = compute_metrics(
                org_instant(MONDAY, 9),
                org_instant(MONDAY, 9) + timedelta(hours=hours),
                DAY_START,
                DAY_END,
            )
            assert 0 <= metrics.overtime_minutes <= metrics.total_work_minutes
