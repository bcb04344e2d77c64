"""Daily absence backfill.

Started from the application lifespan. Once per organisational day, at
``ABSENCE_BACKFILL_TIME``, every active employee without an attendance day
gets an ABSENT row. On startup a catch-up run covers today when that time
has already passed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timekeeper.attendance.schemas import BackfillResponse
from timekeeper.attendance.service import AttendanceService
from timekeeper.common.clock import at_org_time, org_date, utcnow

logger = logging.getLogger(__name__)


class AbsenceBackfillScheduler:
    """Fires the absence backfill at a fixed organisation-local time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        run_at: time,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._run_at = run_at
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self.last_run_date: Optional[date] = None

    # ── Timing ──────────────────────────────────────────────────────

    def scheduled_at(self, day: date) -> datetime:
        return at_org_time(day, self._run_at)

    def next_run_after(self, now: datetime) -> datetime:
        """First scheduled instant strictly after *now*."""
        candidate = self.scheduled_at(org_date(now))
        if candidate <= now:
            candidate = self.scheduled_at(org_date(now) + timedelta(days=1))
        return candidate

    # ── Runs ────────────────────────────────────────────────────────

    async def run_for(self, target_date: date) -> Optional[BackfillResponse]:
        """Backfill one date. Failures are logged; the next tick retries."""
        if self.last_run_date == target_date:
            logger.info("Absence backfill for %s already ran; skipping", target_date)
            return None
        try:
            async with self._session_factory() as session:
                result = await AttendanceService.mark_absent_all_companies(session, target_date)
                await session.commit()
        except Exception:
            logger.exception("Absence backfill failed for %s", target_date)
            return None

        self.last_run_date = target_date
        logger.info(
            "Absence backfill for %s: companies=%d created=%d skipped_weekly_off=%s",
            target_date, result.companies_processed, result.created, result.skipped_weekly_off,
        )
        return result

    async def catch_up(self) -> Optional[BackfillResponse]:
        """Run for today only if today's scheduled time has already elapsed."""
        now = self._clock()
        today = org_date(now)
        if now < self.scheduled_at(today):
            return None
        return await self.run_for(today)

    async def _loop(self) -> None:
        await self.catch_up()
        while True:
            now = self._clock()
            fire_at = self.next_run_after(now)
            await asyncio.sleep((fire_at - now).total_seconds())
            await self.run_for(org_date(fire_at))

    # ── Lifecycle ───────────────────────────────────────────────────

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="absence-backfill")
            logger.info("Absence backfill scheduled daily at %s", self._run_at.isoformat("minutes"))

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
