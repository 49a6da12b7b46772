from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.classes import ClassSession
from app.models.common import utcnow
from app.services.class_sessions import ACTIVE_STATUSES, ClassSessionService
from app.services.platform_settings import PlatformSettingsService, SchedulingPolicy
from app.services.trial_conversion import TrialConversionService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StatusSweepResult:
    scanned: int = 0
    in_progress: int = 0
    completed: int = 0
    no_show: int = 0
    trial_conversions: int = 0
    failed: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "in_progress": self.in_progress,
            "completed": self.completed,
            "no_show": self.no_show,
            "trial_conversions": self.trial_conversions,
            "failed": self.failed,
        }


class BatchStatusUpdater:
    """Advances class statuses from wall-clock time; safe to run concurrently with itself."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        sessions: ClassSessionService,
        trial_conversion: TrialConversionService,
        platform_settings: PlatformSettingsService,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._sessions = sessions
        self._trial_conversion = trial_conversion
        self._platform_settings = platform_settings
        self._clock = clock

    async def update_class_statuses(self) -> StatusSweepResult:
        result = StatusSweepResult()
        now = self._clock()
        today = now.astimezone(self._sessions.timezone).date()

        async with self._session_factory() as db:
            policy = await self._platform_settings.load_policy(db)
            rows = (
                await db.execute(
                    select(
                        ClassSession.id,
                        ClassSession.status,
                        ClassSession.class_date,
                        ClassSession.class_time,
                        ClassSession.duration_minutes,
                        ClassSession.is_trial,
                    )
                    .where(ClassSession.status.in_(ACTIVE_STATUSES), ClassSession.class_date <= today)
                    .order_by(ClassSession.class_date.asc(), ClassSession.class_time.asc())
                )
            ).all()
        result.scanned = len(rows)

        for row in rows:
            async with self._session_factory() as db:
                try:
                    applied = await self._advance(db, row, now=now, policy=policy)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    logger.exception("status update failed for class session id=%s", row.id)
                    result.failed += 1
                    continue

            for status in applied:
                setattr(result, status, getattr(result, status) + 1)
                logger.info("class %s moved to %s", row.id, status)

            if "completed" in applied and row.is_trial:
                async with self._session_factory() as db:
                    try:
                        if await self._trial_conversion.check_and_convert_trial_student(db, row.id):
                            result.trial_conversions += 1
                    except Exception:
                        await db.rollback()
                        logger.exception("trial conversion after completion failed for session id=%s", row.id)
                        result.failed += 1

        logger.info(
            "class status update scanned=%s in_progress=%s completed=%s no_show=%s failed=%s",
            result.scanned,
            result.in_progress,
            result.completed,
            result.no_show,
            result.failed,
        )
        return result

    async def _advance(self, db: AsyncSession, row: Row, *, now: datetime, policy: SchedulingPolicy) -> list[str]:
        starts_at = self._sessions.local_start(row.class_date, row.class_time)
        if now < starts_at:
            return []
        ends_at = starts_at + timedelta(minutes=max(int(row.duration_minutes or 0), 1))

        applied: list[str] = []
        status = row.status
        if status == "scheduled":
            attended = not policy.attendance_tracking_enabled or await self._sessions.has_attendance(db, row.id)
            if attended:
                if not await self._sessions.apply_transition(db, row.id, expected="scheduled", target="in_progress"):
                    return applied
                applied.append("in_progress")
                status = "in_progress"
            elif now >= starts_at + timedelta(minutes=policy.no_show_grace_minutes):
                # Credits were consumed at booking; a no-show is never refunded.
                if await self._sessions.apply_transition(db, row.id, expected="scheduled", target="no_show"):
                    applied.append("no_show")
                return applied
            else:
                return applied

        if status == "in_progress" and now >= ends_at:
            if await self._sessions.apply_transition(db, row.id, expected="in_progress", target="completed"):
                applied.append("completed")
        return applied
