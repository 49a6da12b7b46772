from __future__ import annotations

from fastapi import Request

from app.core.context import CoreContext
from app.models.classes import ClassSession
from app.models.common import as_utc
from app.models.credits import CreditTransaction
from app.schemas.classes import ClassSessionOut
from app.schemas.credits import CreditTransactionOut
from app.services.class_sessions import ClassSessionService


def get_core(request: Request) -> CoreContext:
    return request.app.state.core


def session_out(sessions: ClassSessionService, row: ClassSession) -> ClassSessionOut:
    return ClassSessionOut(
        id=row.id,
        student_id=row.student_id,
        teacher_id=row.teacher_id,
        date=row.class_date,
        time=row.class_time,
        starts_at=sessions.starts_at(row),
        duration_minutes=row.duration_minutes,
        meeting_link=row.meeting_link,
        is_trial=row.is_trial,
        price=row.price,
        status=row.status,
        display_status=sessions.display_status(row),
        cancellation_reason=row.cancellation_reason,
        refund_issued=row.refund_issued,
        cancelled_at=as_utc(row.cancelled_at),
        cancelled_by=row.cancelled_by,
        rescheduled_to_id=row.rescheduled_to_id,
        created_at=as_utc(row.created_at),
    )


def transaction_out(row: CreditTransaction) -> CreditTransactionOut:
    return CreditTransactionOut(
        id=row.id,
        user_id=row.user_id,
        amount=row.amount,
        type=row.type,
        reason=row.reason,
        performed_by=row.performed_by,
        balance_after=row.balance_after,
        class_session_id=row.class_session_id,
        created_at=as_utc(row.created_at),
    )
