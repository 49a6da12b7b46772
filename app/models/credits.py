from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import TimestampMixin, utcnow
from app.services.credit_units import from_half_credits

TRANSACTION_TYPES = ("add", "deduct", "refund")


class CreditBalance(TimestampMixin, Base):
    __tablename__ = "credit_balances"
    __table_args__ = (
        CheckConstraint("balance_half_credits >= 0", name="ck_credit_balance_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True)
    balance_half_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @property
    def balance(self) -> Decimal:
        return from_half_credits(self.balance_half_credits)


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint("type in ('add','deduct','refund')", name="ck_credit_transaction_type"),
        CheckConstraint(
            "(type = 'deduct' AND amount_half_credits < 0) OR (type <> 'deduct' AND amount_half_credits > 0)",
            name="ck_credit_transaction_amount_sign",
        ),
        Index("ix_credit_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    amount_half_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(12), nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    balance_after_half_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    class_session_id: Mapped[int | None] = mapped_column(
        ForeignKey("class_sessions.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def amount(self) -> Decimal:
        return from_half_credits(self.amount_half_credits)

    @property
    def balance_after(self) -> Decimal:
        return from_half_credits(self.balance_after_half_credits)
