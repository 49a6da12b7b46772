"""
Class session lifecycle.

    scheduled -> in_progress -> completed
    scheduled -> cancelled | no_show | rescheduled

Every status write is an UPDATE guarded by the expected prior status, so a
racing writer matches zero rows and loses instead of applying a transition
(and its credit effect) twice.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    InvalidStateTransitionError,
    JoinWindowClosedError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from app.models.classes import ClassSession, SessionAttendance
from app.models.common import utcnow
from app.models.credits import CreditTransaction
from app.models.user import StudentProfile, User
from app.services.cancellation_policy import CancellationDecision, decide
from app.services.credit_ledger import CreditLedger
from app.services.credit_units import to_half_credits
from app.services.join_window import can_join, join_window_bounds
from app.services.platform_settings import PlatformSettingsService, SchedulingPolicy

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "scheduled": frozenset({"in_progress", "cancelled", "no_show", "rescheduled"}),
    "in_progress": frozenset({"completed"}),
}
TERMINAL_STATUSES = frozenset({"completed", "cancelled", "no_show", "rescheduled"})
ACTIVE_STATUSES = ("scheduled", "in_progress")
UPCOMING_LIMIT = 50
HISTORY_MAX_LIMIT = 100


@dataclass(slots=True)
class CancellationOutcome:
    session: ClassSession
    decision: CancellationDecision
    refund: CreditTransaction | None


@dataclass(slots=True)
class JoinStatus:
    session: ClassSession
    can_join: bool
    opens_at: datetime
    closes_at: datetime
    meeting_link: str | None


def _default_meeting_link(is_trial: bool) -> str:
    # Avoid predictable room names that can be re-used by outsiders.
    prefix = "trial-class" if is_trial else "class"
    return f"https://meet.jit.si/{prefix}-{uuid.uuid4().hex[:14]}"


def _clean_text(value: str | None, limit: int = 2000) -> str | None:
    clean = (value or "").strip()
    return clean[:limit] or None


class ClassSessionService:
    def __init__(
        self,
        *,
        ledger: CreditLedger,
        platform_settings: PlatformSettingsService,
        timezone: ZoneInfo,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.platform_settings = platform_settings
        self.timezone = timezone
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def local_start(self, class_date: date, class_time: time) -> datetime:
        return datetime.combine(class_date, class_time, tzinfo=self.timezone)

    def starts_at(self, row: ClassSession) -> datetime:
        return self.local_start(row.class_date, row.class_time)

    def ends_at(self, row: ClassSession) -> datetime:
        return self.starts_at(row) + timedelta(minutes=max(int(row.duration_minutes or 0), 1))

    def display_status(self, row: ClassSession, now: datetime | None = None) -> str:
        current = now or self.now()
        if current >= self.ends_at(row):
            return "completed"
        if current >= self.starts_at(row):
            return "in_progress"
        return "upcoming"

    async def get_session(self, db: AsyncSession, session_id: int, *, for_update: bool = False) -> ClassSession:
        stmt = select(ClassSession).where(ClassSession.id == session_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = (await db.execute(stmt.execution_options(populate_existing=True))).scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"Class session {session_id} not found")
        return row

    async def apply_transition(
        self,
        db: AsyncSession,
        session_id: int,
        *,
        expected: str,
        target: str,
        values: dict[str, Any] | None = None,
    ) -> bool:
        """Conditionally move one session; returns False when another writer got there first."""
        if target not in ALLOWED_TRANSITIONS.get(expected, frozenset()):
            raise InvalidStateTransitionError(
                f"Cannot move a class from {expected} to {target}",
                current=expected,
                target=target,
            )
        result = await db.execute(
            update(ClassSession)
            .where(ClassSession.id == session_id, ClassSession.status == expected)
            .values(status=target, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def book(
        self,
        db: AsyncSession,
        *,
        student_id: int,
        teacher_id: int,
        class_date: date,
        class_time: time,
        actor: User,
        duration_minutes: int | None = None,
        is_trial: bool = False,
        price: Decimal | None = None,
        meeting_link: str | None = None,
    ) -> ClassSession:
        if actor.id != student_id and not actor.is_admin:
            raise NotAuthorizedError("Students can only book classes for themselves")
        if student_id == teacher_id:
            raise ValidationError("A student cannot book a class with themselves")

        try:
            policy = await self.platform_settings.load_policy(db)
            await self._require_user(db, student_id, "Student")
            await self._require_user(db, teacher_id, "Teacher")

            duration = int(policy.class_duration_default if duration_minutes is None else duration_minutes)
            if duration <= 0:
                raise ValidationError("Class duration must be positive")
            starts_at = self.local_start(class_date, class_time)
            if starts_at <= self.now():
                raise ValidationError("Cannot book a class in the past", details={"starts_at": starts_at.isoformat()})

            price_half_credits = to_half_credits(self._default_price(policy, is_trial) if price is None else price)
            if price_half_credits < 0:
                raise ValidationError("Class price must not be negative")
            if not is_trial and price_half_credits == 0:
                raise ValidationError("Regular classes must cost credits")

            profile = await self._ensure_profile(db, student_id)
            if is_trial and not profile.is_trial:
                raise ValidationError("Student has already finished the trial period")

            row = ClassSession(
                student_id=student_id,
                teacher_id=teacher_id,
                class_date=class_date,
                class_time=class_time,
                duration_minutes=duration,
                meeting_link=_clean_text(meeting_link, 1200) or _default_meeting_link(is_trial),
                is_trial=is_trial,
                price_half_credits=price_half_credits,
                status="scheduled",
            )
            db.add(row)
            await db.flush()

            if price_half_credits > 0:
                await self.ledger.deduct(
                    db,
                    user_id=student_id,
                    amount=row.price,
                    reason=f"Booking for {'trial ' if is_trial else ''}class #{row.id}",
                    performed_by=str(actor.id),
                    class_session_id=row.id,
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await db.refresh(row)
        logger.info(
            "class booked session_id=%s student_id=%s teacher_id=%s trial=%s price=%s starts_at=%s",
            row.id,
            student_id,
            teacher_id,
            is_trial,
            row.price,
            starts_at.isoformat(),
        )
        return row

    async def cancel(
        self,
        db: AsyncSession,
        session_id: int,
        *,
        actor: User,
        reason: str | None = None,
    ) -> CancellationOutcome:
        try:
            row = await self.get_session(db, session_id, for_update=True)
            self._ensure_participant_or_admin(actor, row)
            if row.status != "scheduled":
                raise InvalidStateTransitionError(
                    f"Class is already {row.status}",
                    current=row.status,
                    target="cancelled",
                )

            now = self.now()
            starts_at = self.starts_at(row)
            if now >= starts_at:
                raise InvalidStateTransitionError(
                    "Class has already started and can no longer be cancelled",
                    current=row.status,
                    target="cancelled",
                )

            policy = await self.platform_settings.load_policy(db)
            decision = decide(starts_at, now, penalty_hours=policy.cancellation_penalty_hours)
            refund_due = decision.refund_due and row.price_half_credits > 0 and not row.refund_issued

            moved = await self.apply_transition(
                db,
                row.id,
                expected="scheduled",
                target="cancelled",
                values={
                    "cancellation_reason": _clean_text(reason),
                    "refund_issued": refund_due,
                    "cancelled_at": now,
                    "cancelled_by": str(actor.id),
                },
            )
            if not moved:
                raise InvalidStateTransitionError(
                    "Class was changed by another request",
                    current=(await self._current_status(db, row.id)),
                    target="cancelled",
                )

            refund: CreditTransaction | None = None
            if refund_due:
                refund = await self.ledger.refund(
                    db,
                    user_id=row.student_id,
                    amount=row.price,
                    reason=f"Refund for cancelled class #{row.id}",
                    performed_by=str(actor.id),
                    class_session_id=row.id,
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await db.refresh(row)
        logger.info(
            "class cancelled session_id=%s by=%s penalized=%s refund=%s hours_before=%.2f",
            row.id,
            actor.id,
            decision.penalized,
            refund.amount if refund is not None else "0",
            decision.hours_until_start,
        )
        return CancellationOutcome(session=row, decision=decision, refund=refund)

    async def reschedule(
        self,
        db: AsyncSession,
        session_id: int,
        *,
        actor: User,
        new_date: date,
        new_time: time,
    ) -> ClassSession:
        try:
            old = await self.get_session(db, session_id, for_update=True)
            self._ensure_participant_or_admin(actor, old)
            if old.status != "scheduled":
                raise InvalidStateTransitionError(
                    f"Class is already {old.status}",
                    current=old.status,
                    target="rescheduled",
                )

            now = self.now()
            starts_at = self.starts_at(old)
            if now >= starts_at:
                raise InvalidStateTransitionError(
                    "Class has already started and can no longer be rescheduled",
                    current=old.status,
                    target="rescheduled",
                )
            policy = await self.platform_settings.load_policy(db)
            decision = decide(starts_at, now, penalty_hours=policy.cancellation_penalty_hours)
            if decision.penalized:
                # Moving a class inside the penalty window would dodge the late-cancellation charge.
                raise InvalidStateTransitionError(
                    f"Classes can only be rescheduled more than {policy.cancellation_penalty_hours} hours ahead",
                    current=old.status,
                    target="rescheduled",
                )

            new_start = self.local_start(new_date, new_time)
            if new_start <= now:
                raise ValidationError("Cannot reschedule a class into the past")

            replacement = ClassSession(
                student_id=old.student_id,
                teacher_id=old.teacher_id,
                class_date=new_date,
                class_time=new_time,
                duration_minutes=old.duration_minutes,
                meeting_link=old.meeting_link,
                is_trial=old.is_trial,
                price_half_credits=old.price_half_credits,
                status="scheduled",
            )
            db.add(replacement)
            await db.flush()

            moved = await self.apply_transition(
                db,
                old.id,
                expected="scheduled",
                target="rescheduled",
                values={"rescheduled_to_id": replacement.id},
            )
            if not moved:
                raise InvalidStateTransitionError(
                    "Class was changed by another request",
                    current=(await self._current_status(db, old.id)),
                    target="rescheduled",
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await db.refresh(replacement)
        logger.info(
            "class rescheduled old_session_id=%s new_session_id=%s by=%s new_start=%s",
            session_id,
            replacement.id,
            actor.id,
            new_start.isoformat(),
        )
        return replacement

    async def join_status(self, db: AsyncSession, row: ClassSession, *, policy: SchedulingPolicy | None = None) -> JoinStatus:
        policy = policy or await self.platform_settings.load_policy(db)
        starts_at = self.starts_at(row)
        opens_at, closes_at = join_window_bounds(
            starts_at,
            window_minutes_before=policy.join_window_minutes,
            grace_minutes_after=policy.join_grace_minutes,
        )
        allowed = row.status in ACTIVE_STATUSES and can_join(
            starts_at,
            self.now(),
            policy.join_window_minutes,
            policy.join_grace_minutes,
        )
        return JoinStatus(
            session=row,
            can_join=allowed,
            opens_at=opens_at,
            closes_at=closes_at,
            meeting_link=row.meeting_link if allowed else None,
        )

    async def record_join(self, db: AsyncSession, session_id: int, *, actor: User) -> JoinStatus:
        row = await self.get_session(db, session_id)
        self._ensure_participant_or_admin(actor, row)
        actor_id = actor.id
        if row.status not in ACTIVE_STATUSES:
            raise InvalidStateTransitionError(f"Class is {row.status}", current=row.status)

        status = await self.join_status(db, row)
        if not status.can_join:
            raise JoinWindowClosedError(
                "Class cannot be joined right now",
                details={"opens_at": status.opens_at.isoformat(), "closes_at": status.closes_at.isoformat()},
            )

        if not row.meeting_link:
            row.meeting_link = _default_meeting_link(row.is_trial)
            status.meeting_link = row.meeting_link

        existing = (
            await db.execute(
                select(SessionAttendance.id).where(
                    SessionAttendance.class_session_id == row.id,
                    SessionAttendance.user_id == actor_id,
                )
            )
        ).scalar_one_or_none()
        if existing is None:
            db.add(SessionAttendance(class_session_id=row.id, user_id=actor_id, joined_at=self.now()))
        try:
            await db.commit()
        except IntegrityError:
            # The same participant joined from a second tab; the first row stands.
            await db.rollback()
            await db.refresh(row)
            status.meeting_link = row.meeting_link or status.meeting_link
            logger.info("duplicate join ignored session_id=%s user_id=%s", session_id, actor_id)
        else:
            logger.info("class joined session_id=%s user_id=%s", row.id, actor_id)
        return status

    async def has_attendance(self, db: AsyncSession, session_id: int) -> bool:
        found = (
            await db.execute(
                select(SessionAttendance.id).where(SessionAttendance.class_session_id == session_id).limit(1)
            )
        ).scalar_one_or_none()
        return found is not None

    async def list_upcoming(self, db: AsyncSession, *, user_id: int, role: str | None = None) -> list[ClassSession]:
        today = self.now().astimezone(self.timezone).date()
        stmt = select(ClassSession).where(
            and_(
                ClassSession.status.in_(ACTIVE_STATUSES),
                ClassSession.class_date >= today,
                self._role_filter(user_id, role),
            )
        )
        stmt = stmt.order_by(ClassSession.class_date.asc(), ClassSession.class_time.asc()).limit(UPCOMING_LIMIT)
        return list((await db.execute(stmt)).scalars().all())

    async def list_history(
        self,
        db: AsyncSession,
        *,
        user_id: int,
        role: str | None = None,
        limit: int = 50,
    ) -> list[ClassSession]:
        stmt = select(ClassSession).where(
            and_(ClassSession.status == "completed", self._role_filter(user_id, role))
        )
        stmt = stmt.order_by(ClassSession.class_date.desc(), ClassSession.class_time.desc()).limit(
            min(max(int(limit), 1), HISTORY_MAX_LIMIT)
        )
        return list((await db.execute(stmt)).scalars().all())

    @staticmethod
    def _role_filter(user_id: int, role: str | None):
        if role == "student":
            return ClassSession.student_id == user_id
        if role == "teacher":
            return ClassSession.teacher_id == user_id
        return or_(ClassSession.student_id == user_id, ClassSession.teacher_id == user_id)

    @staticmethod
    def _default_price(policy: SchedulingPolicy, is_trial: bool) -> Decimal:
        return policy.trial_credits if is_trial else policy.regular_class_credits

    @staticmethod
    def _ensure_participant_or_admin(actor: User, row: ClassSession) -> None:
        if actor.is_admin or actor.id in (row.student_id, row.teacher_id):
            return
        raise NotAuthorizedError("Only the class participants or an admin can do this")

    async def _require_user(self, db: AsyncSession, user_id: int, label: str) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"{label} {user_id} not found")
        return user

    async def _ensure_profile(self, db: AsyncSession, student_id: int) -> StudentProfile:
        profile = await db.get(StudentProfile, student_id)
        if profile is None:
            profile = StudentProfile(id=student_id, is_trial=True, trial_completed=False)
            db.add(profile)
            await db.flush()
        return profile

    async def _current_status(self, db: AsyncSession, session_id: int) -> str | None:
        return (
            await db.execute(select(ClassSession.status).where(ClassSession.id == session_id))
        ).scalar_one_or_none()
