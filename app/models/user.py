from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import TimestampMixin

ADMIN_ROLES = frozenset({"admin", "administrator"})


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    roles: Mapped[list[str]] = mapped_column(JSON().with_variant(JSONB(), "postgresql"), default=list, nullable=False)

    @property
    def is_admin(self) -> bool:
        return bool(ADMIN_ROLES.intersection(str(x).strip().lower() for x in (self.roles or [])))


class StudentProfile(TimestampMixin, Base):
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    is_trial: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    trial_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
