from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field


class ClassBookIn(BaseModel):
    student_id: int
    teacher_id: int
    date: dt.date
    time: dt.time
    duration_minutes: int | None = Field(default=None, ge=15, le=600)
    is_trial: bool = False
    price: Decimal | None = Field(default=None, ge=0)
    meeting_link: str | None = Field(default=None, max_length=1200)


class ClassSessionOut(BaseModel):
    id: int
    student_id: int
    teacher_id: int
    date: dt.date
    time: dt.time
    starts_at: dt.datetime
    duration_minutes: int
    meeting_link: str | None = None
    is_trial: bool
    price: Decimal
    status: str
    display_status: str
    cancellation_reason: str | None = None
    refund_issued: bool
    cancelled_at: dt.datetime | None = None
    cancelled_by: str | None = None
    rescheduled_to_id: int | None = None
    created_at: dt.datetime


class ClassCancelIn(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class CancellationDecisionOut(BaseModel):
    penalized: bool
    refund_due: bool
    hours_until_start: float
    message: str


class ClassCancelOut(BaseModel):
    session: ClassSessionOut
    decision: CancellationDecisionOut
    refunded: Decimal


class ClassRescheduleIn(BaseModel):
    date: dt.date
    time: dt.time


class ClassRescheduleOut(BaseModel):
    previous_session_id: int
    session: ClassSessionOut


class ClassJoinOut(BaseModel):
    session_id: int
    can_join: bool
    meeting_link: str | None = None
    opens_at: dt.datetime
    closes_at: dt.datetime


class StatusSweepOut(BaseModel):
    scanned: int
    in_progress: int
    completed: int
    no_show: int
    trial_conversions: int
    failed: int
