from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import TimestampMixin, utcnow
from app.services.credit_units import from_half_credits

SESSION_STATUSES = ("scheduled", "in_progress", "completed", "cancelled", "no_show", "rescheduled")


class ClassSession(TimestampMixin, Base):
    __tablename__ = "class_sessions"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_class_session_duration_positive"),
        CheckConstraint("price_half_credits >= 0", name="ck_class_session_price_non_negative"),
        CheckConstraint("student_id <> teacher_id", name="ck_class_session_student_teacher_diff"),
        CheckConstraint(
            "status in ('scheduled','in_progress','completed','cancelled','no_show','rescheduled')",
            name="ck_class_session_status",
        ),
        Index("ix_class_sessions_status_date", "status", "date"),
        Index("ix_class_sessions_student_date", "student_id", "date"),
        Index("ix_class_sessions_teacher_date", "teacher_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    class_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    class_time: Mapped[time] = mapped_column("time", Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    meeting_link: Mapped[str | None] = mapped_column(String(1200), nullable=True)
    is_trial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    price_half_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="scheduled", nullable=False)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_issued: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rescheduled_to_id: Mapped[int | None] = mapped_column(
        ForeignKey("class_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )

    @property
    def price(self) -> Decimal:
        return from_half_credits(self.price_half_credits)


class SessionAttendance(Base):
    __tablename__ = "class_session_attendance"
    __table_args__ = (
        UniqueConstraint("class_session_id", "user_id", name="uq_class_session_attendance_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    class_session_id: Mapped[int] = mapped_column(ForeignKey("class_sessions.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
