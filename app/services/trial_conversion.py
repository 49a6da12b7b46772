from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import AlreadyConvertedError, NotAuthorizedError, NotFoundError
from app.models.classes import ClassSession
from app.models.common import as_utc, utcnow
from app.models.user import StudentProfile, User

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConversionSweepResult:
    candidates: int = 0
    converted: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "candidates": self.candidates,
            "converted": self.converted,
            "failed": self.failed,
            "errors": list(self.errors),
        }


class TrialConversionService:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def _convert(self, db: AsyncSession, user_id: int, *, performed_by: str) -> bool:
        # Only the writer that still sees is_trial=true wins; converted_at is set once.
        now = self._clock()
        result = await db.execute(
            update(StudentProfile)
            .where(StudentProfile.id == user_id, StudentProfile.is_trial.is_(True))
            .values(is_trial=False, trial_completed=True, converted_at=now)
            .execution_options(synchronize_session=False)
        )
        converted = result.rowcount == 1
        if converted:
            logger.info(
                "trial_conversion user_id=%s performed_by=%s old=%s new=%s",
                user_id,
                performed_by,
                {"is_trial": True, "trial_completed": False},
                {"is_trial": False, "trial_completed": True, "converted_at": now.isoformat()},
            )
        return converted

    async def manual_conversion(self, db: AsyncSession, user_id: int, *, performed_by: int) -> StudentProfile:
        actor = await db.get(User, performed_by)
        if actor is None or not actor.is_admin:
            raise NotAuthorizedError("Only admins can convert trial students")

        profile = await self._get_profile(db, user_id)
        if not profile.is_trial:
            raise AlreadyConvertedError(
                "Student is already a regular student",
                details={"converted_at": profile.converted_at.isoformat() if profile.converted_at else None},
            )

        try:
            converted = await self._convert(db, user_id, performed_by=f"admin:{performed_by}")
            if not converted:
                raise AlreadyConvertedError("Student was converted by another request")
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await db.refresh(profile)
        return profile

    async def check_and_convert_trial_student(self, db: AsyncSession, session_id: int) -> bool:
        row = (
            await db.execute(
                select(ClassSession.student_id, ClassSession.is_trial, ClassSession.status).where(
                    ClassSession.id == session_id
                )
            )
        ).one_or_none()
        if row is None:
            logger.warning("trial check skipped, class session %s not found", session_id)
            return False
        if not row.is_trial or row.status != "completed":
            return False

        converted = await self._convert(db, row.student_id, performed_by="system")
        await db.commit()
        return converted

    async def process_completed_trial_lessons(self) -> ConversionSweepResult:
        result = ConversionSweepResult()
        async with self._session_factory() as db:
            student_ids = (
                await db.execute(
                    select(ClassSession.student_id)
                    .join(StudentProfile, StudentProfile.id == ClassSession.student_id)
                    .where(
                        ClassSession.is_trial.is_(True),
                        ClassSession.status == "completed",
                        StudentProfile.is_trial.is_(True),
                    )
                    .distinct()
                )
            ).scalars().all()
        result.candidates = len(student_ids)

        for student_id in student_ids:
            async with self._session_factory() as db:
                try:
                    if await self._convert(db, student_id, performed_by="system"):
                        result.converted += 1
                    await db.commit()
                except Exception as exc:
                    await db.rollback()
                    logger.exception("trial conversion failed for student_id=%s", student_id)
                    result.failed += 1
                    result.errors.append({"student_id": student_id, "error": str(exc)})

        logger.info(
            "trial sweep processed=%s converted=%s failed=%s",
            result.candidates,
            result.converted,
            result.failed,
        )
        return result

    async def check_status(self, db: AsyncSession, user_id: int) -> dict[str, Any]:
        profile = await self._get_profile(db, user_id)
        return {
            "is_trial": profile.is_trial,
            "trial_completed": profile.trial_completed,
            "converted_at": as_utc(profile.converted_at),
            "should_redirect": (not profile.is_trial) and profile.trial_completed,
        }

    async def _get_profile(self, db: AsyncSession, user_id: int) -> StudentProfile:
        profile = (
            await db.execute(
                select(StudentProfile)
                .where(StudentProfile.id == user_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if profile is None:
            raise NotFoundError(f"Student profile {user_id} not found")
        return profile
