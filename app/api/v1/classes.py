from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_core, session_out
from app.core.context import CoreContext
from app.db.session import get_db
from app.models.user import User
from app.schemas.classes import (
    CancellationDecisionOut,
    ClassBookIn,
    ClassCancelIn,
    ClassCancelOut,
    ClassJoinOut,
    ClassRescheduleIn,
    ClassRescheduleOut,
    ClassSessionOut,
)
from app.services.auth import ensure_self_or_admin, get_current_user
from app.services.credit_units import from_half_credits

router = APIRouter(tags=["classes"])


@router.post("/classes", response_model=ClassSessionOut, status_code=201)
async def book_class(
    payload: ClassBookIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> ClassSessionOut:
    row = await core.sessions.book(
        db,
        student_id=payload.student_id,
        teacher_id=payload.teacher_id,
        class_date=payload.date,
        class_time=payload.time,
        actor=current_user,
        duration_minutes=payload.duration_minutes,
        is_trial=payload.is_trial,
        price=payload.price,
        meeting_link=payload.meeting_link,
    )
    return session_out(core.sessions, row)


@router.get("/classes/{session_id}", response_model=ClassSessionOut)
async def get_class(
    session_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> ClassSessionOut:
    row = await core.sessions.get_session(db, session_id)
    if current_user.id not in (row.student_id, row.teacher_id):
        ensure_self_or_admin(current_user, row.student_id)
    return session_out(core.sessions, row)


@router.get("/users/{user_id}/classes/upcoming", response_model=list[ClassSessionOut])
async def upcoming_classes(
    user_id: int,
    role: Literal["student", "teacher"] | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> list[ClassSessionOut]:
    ensure_self_or_admin(current_user, user_id)
    rows = await core.sessions.list_upcoming(db, user_id=user_id, role=role)
    return [session_out(core.sessions, row) for row in rows]


@router.get("/users/{user_id}/classes/history", response_model=list[ClassSessionOut])
async def class_history(
    user_id: int,
    role: Literal["student", "teacher"] | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> list[ClassSessionOut]:
    ensure_self_or_admin(current_user, user_id)
    rows = await core.sessions.list_history(db, user_id=user_id, role=role, limit=limit)
    return [session_out(core.sessions, row) for row in rows]


@router.post("/classes/{session_id}/cancel", response_model=ClassCancelOut)
async def cancel_class(
    session_id: int,
    payload: ClassCancelIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> ClassCancelOut:
    outcome = await core.sessions.cancel(db, session_id, actor=current_user, reason=payload.reason)
    return ClassCancelOut(
        session=session_out(core.sessions, outcome.session),
        decision=CancellationDecisionOut(**outcome.decision.to_payload()),
        refunded=outcome.refund.amount if outcome.refund is not None else from_half_credits(0),
    )


@router.post("/classes/{session_id}/reschedule", response_model=ClassRescheduleOut)
async def reschedule_class(
    session_id: int,
    payload: ClassRescheduleIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> ClassRescheduleOut:
    row = await core.sessions.reschedule(
        db,
        session_id,
        actor=current_user,
        new_date=payload.date,
        new_time=payload.time,
    )
    return ClassRescheduleOut(previous_session_id=session_id, session=session_out(core.sessions, row))


@router.post("/classes/{session_id}/join", response_model=ClassJoinOut)
async def join_class(
    session_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> ClassJoinOut:
    status = await core.sessions.record_join(db, session_id, actor=current_user)
    return ClassJoinOut(
        session_id=session_id,
        can_join=status.can_join,
        meeting_link=status.meeting_link,
        opens_at=status.opens_at,
        closes_at=status.closes_at,
    )
