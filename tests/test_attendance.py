"""Attendance module test suite — clock in/out, overnight shifts, manual edits,
listings and access rules.

Tests exercise both the service layer (direct DB) and the HTTP API (via router).
The wall clock is pinned by patching ``utcnow`` in the service module.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from timekeeper.attendance.models import AttendanceDay, AttendanceLog
from timekeeper.attendance.schemas import AttendanceUpdateRequest, ManualAttendanceRequest
from timekeeper.attendance.service import AttendanceService
from timekeeper.common.constants import (
    AttendanceLogMethod,
    AttendanceLogType,
    AttendanceSource,
    AttendanceStatus,
    UserRole,
)
from timekeeper.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotReadyException,
    ValidationException,
)
from tests.conftest import (
    WEDNESDAY,
    TestSessionFactory,
    bearer_headers,
    make_company,
    make_employee,
    make_shift,
    make_user,
    org_instant,
)

SERVICE_CLOCK = "timekeeper.attendance.service.utcnow"


def _frozen(instant):
    return patch(SERVICE_CLOCK, return_value=instant)


async def _logs_for(employee_id):
    async with TestSessionFactory() as session:
        result = await session.execute(
            select(AttendanceLog)
            .where(AttendanceLog.employee_id == employee_id)
            .order_by(AttendanceLog.timestamp)
        )
        return result.scalars().all()


# ── Check-in ────────────────────────────────────────────────────────


async def test_check_in_creates_day_and_log(client, employee, employee_headers):
    with _frozen(org_instant(WEDNESDAY, 9, 35)):
        resp = await client.post("/api/v1/attendance/check-in", headers=employee_headers)

    assert resp.status_code == 201
    body = resp.json()
    assert body["employee_id"] == str(employee.id)
    assert body["date"] == "2030-01-09T00:00:00+05:45"
    assert body["status"] == "LATE"
    assert body["late_minutes"] == 35
    assert body["source"] == "SELF"
    assert body["check_out_time"] is None
    assert body["shift"]["name"] == "General"

    logs = await _logs_for(employee.id)
    assert len(logs) == 1
    assert logs[0].type == AttendanceLogType.CHECK_IN
    assert logs[0].method == AttendanceLogMethod.WEB
    assert logs[0].attendance_day_id is not None


async def test_check_in_within_grace_is_present(client, employee, employee_headers):
    with _frozen(org_instant(WEDNESDAY, 8, 50)):
        resp = await client.post("/api/v1/attendance/check-in", headers=employee_headers)
    assert resp.status_code == 201
    assert resp.json()["status"] == "PRESENT"
    assert resp.json()["late_minutes"] == 0


async def test_double_check_in_conflicts(client, employee, employee_headers):
    with _frozen(org_instant(WEDNESDAY, 9, 0)):
        first = await client.post("/api/v1/attendance/check-in", headers=employee_headers)
    with _frozen(org_instant(WEDNESDAY, 9, 5)):
        second = await client.post("/api/v1/attendance/check-in", headers=employee_headers)

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["type"].endswith("/conflict")
    assert second.json()["existing_id"] == first.json()["id"]
    assert len(await _logs_for(employee.id)) == 1


async def test_check_in_too_early_is_rejected(client, employee, employee_headers):
    with _frozen(org_instant(WEDNESDAY, 8, 0)):
        resp = await client.post("/api/v1/attendance/check-in", headers=employee_headers)
    assert resp.status_code == 422
    assert "check_in_time" in resp.json()["errors"]


async def test_check_in_without_shift_is_rejected(client, db, company):
    user = await make_user(db, company)
    await make_employee(db, company, user=user, shift=None)
    headers = await bearer_headers(db, user)
    await db.commit()

    with _frozen(org_instant(WEDNESDAY, 9, 0)):
        resp = await client.post("/api/v1/attendance/check-in", headers=headers)
    assert resp.status_code == 422
    assert "work_shift" in resp.json()["errors"]


async def test_check_in_blocked_for_suspended_company(client, db):
    company = await make_company(db, name="Dormant Ltd", suspended=True)
    shift = await make_shift(db, company)
    user = await make_user(db, company)
    await make_employee(db, company, user=user, shift=shift)
    headers = await bearer_headers(db, user)
    await db.commit()

    with _frozen(org_instant(WEDNESDAY, 9, 0)):
        resp = await client.post("/api/v1/attendance/check-in", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["type"].endswith("/company-suspended")
    assert resp.json()["company_id"] == str(company.id)


async def test_employee_naming_another_employee_checks_in_self(
    client, db, company, day_shift, employee, employee_headers,
):
    colleague = await make_employee(db, company, shift=day_shift, first_name="Ram")
    await db.commit()

    with _frozen(org_instant(WEDNESDAY, 9, 0)):
        resp = await client.post(
            "/api/v1/attendance/check-in",
            json={"employee_id": str(colleague.id)},
            headers=employee_headers,
        )
    assert resp.status_code == 201
    assert resp.json()["employee_id"] == str(employee.id)


async def test_admin_checks_in_on_behalf_of_employee(client, employee, admin_headers):
    with _frozen(org_instant(WEDNESDAY, 9, 0)):
        resp = await client.post(
            "/api/v1/attendance/check-in",
            json={"employee_id": str(employee.id)},
            headers=admin_headers,
        )
    assert resp.status_code == 201
    assert resp.json()["source"] == "ADMIN"

    logs = await _logs_for(employee.id)
    assert logs[0].method == AttendanceLogMethod.ADMIN


async def test_check_in_requires_auth(client):
    resp = await client.post("/api/v1/attendance/check-in")
    assert resp.status_code == 401


# ── Check-out ───────────────────────────────────────────────────────


async def test_check_out_before_check_in_is_not_ready(client, employee, employee_headers):
    with _frozen(org_instant(WEDNESDAY, 18, 0)):
        resp = await client.post("/api/v1/attendance/check-out", headers=employee_headers)
    assert resp.status_code == 409
    assert resp.json()["type"].endswith("/not-ready")


async def test_check_out_computes_metrics(client, employee, employee_headers):
    with _frozen(org_instant(WEDNESDAY, 9, 35)):
        await client.post("/api/v1/attendance/check-in", headers=employee_headers)
    with _frozen(org_instant(WEDNESDAY, 18, 0)):
        resp = await client.post("/api/v1/attendance/check-out", headers=employee_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["total_work_minutes"] == 505
    assert body["late_minutes"] == 35
    assert body["overtime_minutes"] == 0
    assert body["status"] == "LATE"

    logs = await _logs_for(employee.id)
    assert [log.type for log in logs] == [AttendanceLogType.CHECK_IN, AttendanceLogType.CHECK_OUT]


async def test_double_check_out_conflicts(client, employee, employee_headers):
    with _frozen(org_instant(WEDNESDAY, 9, 0)):
        await client.post("/api/v1/attendance/check-in", headers=employee_headers)
    with _frozen(org_instant(WEDNESDAY, 18, 0)):
        await client.post("/api/v1/attendance/check-out", headers=employee_headers)
    with _frozen(org_instant(WEDNESDAY, 18, 5)):
        resp = await client.post("/api/v1/attendance/check-out", headers=employee_headers)
    assert resp.status_code == 409
    assert resp.json()["type"].endswith("/conflict")


async def test_early_leave_is_half_day(client, employee, employee_headers):
    with _frozen(org_instant(WEDNESDAY, 9, 0)):
        await client.post("/api/v1/attendance/check-in", headers=employee_headers)
    with _frozen(org_instant(WEDNESDAY, 11, 0)):
        resp = await client.post("/api/v1/attendance/check-out", headers=employee_headers)
    assert resp.json()["status"] == "HALF_DAY"
    assert resp.json()["total_work_minutes"] == 120


# ── Overnight shift (service layer) ─────────────────────────────────


async def test_night_shift_day_belongs_to_shift_start(db, company, night_shift):
    user = await make_user(db, company)
    emp = await make_employee(db, company, user=user, shift=night_shift)

    day = await AttendanceService.check_in(db, user, now=org_instant(WEDNESDAY, 22, 5))
    assert day.date.date() == WEDNESDAY

    thursday = WEDNESDAY + timedelta(days=1)
    closed = await AttendanceService.check_out(db, user, now=org_instant(thursday, 6, 10))
    assert closed.id == day.id
    assert closed.total_work_minutes == 485
    assert closed.overtime_minutes == 5
    assert closed.status == AttendanceStatus.PRESENT

    rows = (await db.execute(
        select(AttendanceDay).where(AttendanceDay.employee_id == emp.id)
    )).scalars().all()
    assert len(rows) == 1


async def test_night_shift_check_in_after_midnight_uses_previous_date(db, company, night_shift):
    user = await make_user(db, company)
    await make_employee(db, company, user=user, shift=night_shift)

    thursday = WEDNESDAY + timedelta(days=1)
    day = await AttendanceService.check_in(db, user, now=org_instant(thursday, 0, 30))
    assert day.date.date() == WEDNESDAY
    assert day.late_minutes == 150


async def test_service_check_out_without_day_raises(db, company, day_shift):
    user = await make_user(db, company)
    await make_employee(db, company, user=user, shift=day_shift)
    with pytest.raises(NotReadyException):
        await AttendanceService.check_out(db, user, now=org_instant(WEDNESDAY, 18))


async def test_service_double_check_in_raises(db, company, day_shift):
    user = await make_user(db, company)
    await make_employee(db, company, user=user, shift=day_shift)
    await AttendanceService.check_in(db, user, now=org_instant(WEDNESDAY, 9))
    with pytest.raises(ConflictError):
        await AttendanceService.check_in(db, user, now=org_instant(WEDNESDAY, 9, 1))


# ── Manual upsert / update ──────────────────────────────────────────


async def test_manual_upsert_creates_then_overwrites(db, company, day_shift, employee, admin_user):
    data = ManualAttendanceRequest(
        employee_id=employee.id,
        date=WEDNESDAY,
        check_in_time=org_instant(WEDNESDAY, 9),
        check_out_time=org_instant(WEDNESDAY, 19, 30),
        notes="Client visit",
    )
    created = await AttendanceService.manual_upsert(db, admin_user, data)
    assert created.total_work_minutes == 630
    assert created.overtime_minutes == 90
    assert created.source == AttendanceSource.ADMIN

    override = ManualAttendanceRequest(
        employee_id=employee.id, date=WEDNESDAY, status=AttendanceStatus.HOLIDAY,
    )
    updated = await AttendanceService.manual_upsert(db, admin_user, override)
    assert updated.id == created.id
    assert updated.status == AttendanceStatus.HOLIDAY
    assert updated.check_in_time is None
    assert updated.total_work_minutes == 0


async def test_manual_upsert_rejects_inverted_times(db, employee, admin_user):
    data = ManualAttendanceRequest(
        employee_id=employee.id,
        date=WEDNESDAY,
        check_in_time=org_instant(WEDNESDAY, 18),
        check_out_time=org_instant(WEDNESDAY, 9),
    )
    with pytest.raises(ValidationException):
        await AttendanceService.manual_upsert(db, admin_user, data)


async def test_manual_upsert_other_company_forbidden(db, employee):
    other = await make_company(db, name="Rival Co")
    outsider = await make_user(db, other, role=UserRole.company_admin)
    data = ManualAttendanceRequest(employee_id=employee.id, date=WEDNESDAY)
    with pytest.raises(ForbiddenException):
        await AttendanceService.manual_upsert(db, outsider, data)


async def test_manual_endpoint_requires_admin_role(client, employee, employee_headers):
    resp = await client.post(
        "/api/v1/attendance/manual",
        json={"employee_id": str(employee.id), "date": "2030-01-09"},
        headers=employee_headers,
    )
    assert resp.status_code == 403


async def test_manual_endpoint_accepts_day_start_instant(client, employee, admin_headers):
    resp = await client.post(
        "/api/v1/attendance/manual",
        json={
            "employee_id": str(employee.id),
            "date": "2030-01-09T00:00:00+05:45",
            "check_in_time": "2030-01-09T09:00:00",
            "check_out_time": "2030-01-09T18:00:00",
        },
        headers=admin_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["date"] == "2030-01-09T00:00:00+05:45"
    assert body["total_work_minutes"] == 540
    assert body["status"] == "PRESENT"


async def test_update_day_merges_supplied_fields(db, employee, admin_user):
    created = await AttendanceService.manual_upsert(
        db,
        admin_user,
        ManualAttendanceRequest(
            employee_id=employee.id,
            date=WEDNESDAY,
            check_in_time=org_instant(WEDNESDAY, 9),
        ),
    )
    assert created.check_out_time is None

    updated = await AttendanceService.update_day(
        db,
        admin_user,
        created.id,
        AttendanceUpdateRequest(check_out_time=org_instant(WEDNESDAY, 19)),
    )
    assert updated.check_in_time == org_instant(WEDNESDAY, 9)
    assert updated.total_work_minutes == 600
    assert updated.overtime_minutes == 60


async def test_update_day_can_clear_check_out(db, employee, admin_user):
    created = await AttendanceService.manual_upsert(
        db,
        admin_user,
        ManualAttendanceRequest(
            employee_id=employee.id,
            date=WEDNESDAY,
            check_in_time=org_instant(WEDNESDAY, 9),
            check_out_time=org_instant(WEDNESDAY, 18),
        ),
    )
    updated = await AttendanceService.update_day(
        db, admin_user, created.id, AttendanceUpdateRequest(check_out_time=None),
    )
    assert updated.check_out_time is None
    assert updated.total_work_minutes == 0
    assert updated.status == AttendanceStatus.PRESENT


# ── Listings / access ───────────────────────────────────────────────


async def test_my_attendance_lists_own_days(client, employee, employee_headers):
    with _frozen(org_instant(WEDNESDAY, 9)):
        await client.post("/api/v1/attendance/check-in", headers=employee_headers)

    resp = await client.get(
        "/api/v1/attendance/me",
        params={"from": "2030-01-01", "to": "2030-01-31"},
        headers=employee_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["meta"]["total"] == 1
    assert body["data"][0]["employee"]["employee_code"] == "EMP-001"


async def test_company_list_forbidden_for_employee(client, employee_headers):
    resp = await client.get("/api/v1/attendance", headers=employee_headers)
    assert resp.status_code == 403


async def test_company_list_filters_by_status(client, employee, employee_headers, manager_headers):
    with _frozen(org_instant(WEDNESDAY, 9, 45)):
        await client.post("/api/v1/attendance/check-in", headers=employee_headers)

    late = await client.get(
        "/api/v1/attendance", params={"status": "LATE"}, headers=manager_headers,
    )
    present = await client.get(
        "/api/v1/attendance", params={"status": "PRESENT"}, headers=manager_headers,
    )
    assert late.json()["meta"]["total"] == 1
    assert present.json()["meta"]["total"] == 0


async def test_employee_cannot_read_colleague_day(
    client, db, company, day_shift, employee_headers, admin_user,
):
    colleague = await make_employee(db, company, shift=day_shift, first_name="Hari")
    day = await AttendanceService.manual_upsert(
        db,
        admin_user,
        ManualAttendanceRequest(employee_id=colleague.id, date=WEDNESDAY),
    )
    await db.commit()

    resp = await client.get(f"/api/v1/attendance/{day.id}", headers=employee_headers)
    assert resp.status_code == 403


async def test_get_unknown_day_is_not_found(client, employee_headers):
    resp = await client.get(
        "/api/v1/attendance/00000000-0000-0000-0000-000000000000",
        headers=employee_headers,
    )
    assert resp.status_code == 404
