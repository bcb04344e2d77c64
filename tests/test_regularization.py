"""Regularization workflow — submit, duplicate guard, review and the day rewrite."""

from __future__ import annotations

from datetime import timedelta

import pytest

from timekeeper.attendance.service import AttendanceService
from timekeeper.common.clock import is_weekly_off, org_today
from timekeeper.common.constants import RegularizationStatus, RegularizationType
from timekeeper.common.exceptions import ForbiddenException
from timekeeper.regularization.schemas import RegularizationCreate
from timekeeper.regularization.service import RegularizationService
from tests.conftest import bearer_headers, make_employee, make_user, org_instant

URL = "/api/v1/regularizations"


def _recent_working_day():
    day = org_today() - timedelta(days=2)
    return day - timedelta(days=1) if is_weekly_off(day) else day


REG_DAY = _recent_working_day()


def _payload(**overrides) -> dict:
    payload = {
        "date": REG_DAY.isoformat(),
        "request_type": "FULL_DAY_EDIT",
        "requested_check_in_time": "09:00",
        "requested_check_out_time": "19:30",
        "reason": "Badge reader was offline",
    }
    payload.update(overrides)
    return payload


# ── Submit ──────────────────────────────────────────────────────────


async def test_submit_without_existing_day(client, employee, employee_headers):
    resp = await client.post(URL, json=_payload(), headers=employee_headers)
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "PENDING"
    assert body["employee_id"] == str(employee.id)
    assert body["attendance_day_id"] is None
    assert body["before_snapshot"]["exists"] is False
    assert body["after_snapshot"] is None


async def test_duplicate_pending_conflicts_until_cancelled(client, employee, employee_headers):
    first = await client.post(URL, json=_payload(), headers=employee_headers)
    duplicate = await client.post(URL, json=_payload(reason="again"), headers=employee_headers)
    assert duplicate.status_code == 409
    assert duplicate.json()["errors"]["regularization_id"]
    assert duplicate.json()["existing_id"] == first.json()["id"]

    cancelled = await client.post(f"{URL}/{first.json()['id']}/cancel", headers=employee_headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    again = await client.post(URL, json=_payload(reason="again"), headers=employee_headers)
    assert again.status_code == 201


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"date": (org_today() + timedelta(days=1)).isoformat()}, "date"),
        ({"date": (org_today() - timedelta(days=31)).isoformat()}, "date"),
        ({"request_type": "MISSED_CHECKIN", "requested_check_in_time": None}, "requested_check_in_time"),
        ({"request_type": "MISSED_CHECKOUT", "requested_check_out_time": None}, "requested_check_out_time"),
        ({"requested_check_out_time": "08:00"}, "requested_check_out_time"),
    ],
)
async def test_submit_validation(client, employee, employee_headers, overrides, field):
    resp = await client.post(URL, json=_payload(**overrides), headers=employee_headers)
    assert resp.status_code == 422
    assert field in resp.json()["errors"]


async def test_submit_malformed_time_is_rejected(client, employee, employee_headers):
    resp = await client.post(
        URL, json=_payload(requested_check_in_time="9am"), headers=employee_headers,
    )
    assert resp.status_code == 422


async def test_employee_cannot_submit_for_colleague(db, company, day_shift, employee, employee_user):
    colleague = await make_employee(db, company, shift=day_shift, first_name="Ram")
    data = RegularizationCreate(
        employee_id=colleague.id,
        date=REG_DAY,
        request_type=RegularizationType.MISSED_CHECKIN,
        requested_check_in_time="09:00",
        reason="forgot",
    )
    with pytest.raises(ForbiddenException):
        await RegularizationService.create(db, employee_user, data)


# ── Review ──────────────────────────────────────────────────────────


async def test_approve_rewrites_day_with_overtime(
    client, employee, employee_headers, admin_headers, manager_headers,
):
    await client.post(
        "/api/v1/attendance/mark-absent", json={"date": REG_DAY.isoformat()}, headers=admin_headers,
    )
    created = await client.post(URL, json=_payload(), headers=employee_headers)
    before = created.json()["before_snapshot"]
    assert before["exists"] is True
    assert before["status"] == "ABSENT"

    resp = await client.post(
        f"{URL}/{created.json()['id']}/approve",
        json={"review_note": "verified with CCTV"},
        headers=manager_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "APPROVED"
    assert body["review_note"] == "verified with CCTV"
    assert body["reviewed_by_id"] is not None
    after = body["after_snapshot"]
    assert after != before
    assert after["total_work_minutes"] == 630
    assert after["overtime_minutes"] == 90
    assert after["late_minutes"] == 0
    assert after["status"] == "PRESENT"
    assert after["attendance_day_id"] == before["attendance_day_id"]

    day = await client.get(
        f"/api/v1/attendance/{body['attendance_day_id']}", headers=employee_headers,
    )
    assert day.json()["overtime_minutes"] == 90
    assert day.json()["source"] == "ADMIN"


async def test_missed_checkout_keeps_recorded_check_in(db, company, day_shift, admin_user):
    user = await make_user(db, company)
    emp = await make_employee(db, company, user=user, shift=day_shift)
    await AttendanceService.check_in(db, user, now=org_instant(REG_DAY, 9, 10))

    reg = await RegularizationService.create(
        db,
        user,
        RegularizationCreate(
            date=REG_DAY,
            request_type=RegularizationType.MISSED_CHECKOUT,
            requested_check_out_time="18:00",
            reason="forgot to check out",
        ),
    )
    approved = await RegularizationService.approve(db, admin_user, reg.id)

    assert approved.employee_id == emp.id
    assert approved.after_snapshot["check_in_time"] == org_instant(REG_DAY, 9, 10).isoformat()
    assert approved.after_snapshot["total_work_minutes"] == 530
    assert approved.after_snapshot["status"] == "PRESENT"


async def test_reject_then_approve_is_invalid(client, employee, employee_headers, manager_headers):
    created = await client.post(URL, json=_payload(), headers=employee_headers)
    reg_id = created.json()["id"]

    rejected = await client.post(
        f"{URL}/{reg_id}/reject", json={"review_note": "no evidence"}, headers=manager_headers,
    )
    assert rejected.json()["status"] == "REJECTED"

    approve = await client.post(f"{URL}/{reg_id}/approve", headers=manager_headers)
    assert approve.status_code == 422


async def test_employee_cannot_approve(client, employee, employee_headers):
    created = await client.post(URL, json=_payload(), headers=employee_headers)
    resp = await client.post(f"{URL}/{created.json()['id']}/approve", headers=employee_headers)
    assert resp.status_code == 403


async def test_only_owner_can_cancel(client, db, company, day_shift, employee, employee_headers):
    other_user = await make_user(db, company)
    await make_employee(db, company, user=other_user, shift=day_shift)
    other_headers = await bearer_headers(db, other_user)
    await db.commit()

    created = await client.post(URL, json=_payload(), headers=employee_headers)
    resp = await client.post(f"{URL}/{created.json()['id']}/cancel", headers=other_headers)
    assert resp.status_code == 403


# ── Listing ─────────────────────────────────────────────────────────


async def test_listings_filter_by_status(client, employee, employee_headers, manager_headers):
    await client.post(URL, json=_payload(), headers=employee_headers)

    mine = await client.get(URL + "/me", headers=employee_headers)
    assert mine.json()["meta"]["total"] == 1

    pending = await client.get(URL, params={"status": "PENDING"}, headers=manager_headers)
    approved = await client.get(URL, params={"status": "APPROVED"}, headers=manager_headers)
    assert pending.json()["meta"]["total"] == 1
    assert approved.json()["meta"]["total"] == 0
    assert pending.json()["data"][0]["status"] == RegularizationStatus.PENDING.value
