"""
Credit ledger of record.

Every balance change appends one immutable ``CreditTransaction`` row and
moves ``CreditBalance`` through a single conditional UPDATE, so concurrent
writers on the same user serialize on the balance row. Operations flush but
never commit: the caller owns the transaction, which lets a booking or a
cancellation commit its credit effect together with its status change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConcurrencyConflictError, InsufficientCreditsError, NotFoundError, ValidationError
from app.models.common import utcnow
from app.models.credits import TRANSACTION_TYPES, CreditBalance, CreditTransaction
from app.models.user import User
from app.services.credit_units import format_credits, from_half_credits, to_half_credits

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
HISTORY_MAX_LIMIT = 500


@dataclass(slots=True)
class HistoryFilters:
    type: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    class_session_id: int | None = None
    limit: int | None = None
    offset: int = 0


def _clean_reason(reason: str | None) -> str:
    clean = (reason or "").strip()
    if not clean:
        raise ValidationError("A reason is required for every credit adjustment")
    return clean[:500]


def _positive_half_credits(amount: Decimal | int | str) -> int:
    halves = to_half_credits(amount)
    if halves <= 0:
        raise ValidationError("Amount must be greater than zero", details={"amount": str(amount)})
    return halves


class CreditLedger:
    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_add_amount: Decimal = Decimal("100"),
    ) -> None:
        self._clock = clock
        self._max_add_half_credits = to_half_credits(max_add_amount)

    async def add(
        self,
        db: AsyncSession,
        *,
        user_id: int,
        amount: Decimal | int | str,
        reason: str,
        performed_by: str,
        class_session_id: int | None = None,
    ) -> CreditTransaction:
        halves = _positive_half_credits(amount)
        if halves > self._max_add_half_credits:
            raise ValidationError(
                f"Cannot add more than {format_credits(self._max_add_half_credits)} credits at once",
                details={"amount": str(amount)},
            )
        return await self._credit(
            db,
            user_id=user_id,
            half_credits=halves,
            tx_type="add",
            reason=_clean_reason(reason),
            performed_by=performed_by,
            class_session_id=class_session_id,
        )

    async def refund(
        self,
        db: AsyncSession,
        *,
        user_id: int,
        amount: Decimal | int | str,
        reason: str,
        performed_by: str,
        class_session_id: int | None = None,
    ) -> CreditTransaction:
        return await self._credit(
            db,
            user_id=user_id,
            half_credits=_positive_half_credits(amount),
            tx_type="refund",
            reason=_clean_reason(reason),
            performed_by=performed_by,
            class_session_id=class_session_id,
        )

    async def deduct(
        self,
        db: AsyncSession,
        *,
        user_id: int,
        amount: Decimal | int | str,
        reason: str,
        performed_by: str,
        class_session_id: int | None = None,
    ) -> CreditTransaction:
        halves = _positive_half_credits(amount)
        clean_reason = _clean_reason(reason)

        result = await db.execute(
            update(CreditBalance)
            .where(
                CreditBalance.user_id == user_id,
                CreditBalance.balance_half_credits >= halves,
            )
            .values(balance_half_credits=CreditBalance.balance_half_credits - halves)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = await self._current_half_credits(db, user_id)
            logger.info(
                "credit deduct rejected user_id=%s required=%s available=%s",
                user_id,
                format_credits(halves),
                format_credits(available),
            )
            raise InsufficientCreditsError(required=format_credits(halves), available=format_credits(available))

        return await self._append(
            db,
            user_id=user_id,
            signed_half_credits=-halves,
            tx_type="deduct",
            reason=clean_reason,
            performed_by=performed_by,
            class_session_id=class_session_id,
        )

    async def get_balance(self, db: AsyncSession, user_id: int) -> Decimal:
        return from_half_credits(await self._current_half_credits(db, user_id))

    async def get_history(
        self,
        db: AsyncSession,
        user_id: int,
        filters: HistoryFilters | None = None,
    ) -> list[CreditTransaction]:
        filters = filters or HistoryFilters()
        stmt = select(CreditTransaction).where(CreditTransaction.user_id == user_id)
        if filters.type:
            if filters.type not in TRANSACTION_TYPES:
                raise ValidationError(f"Unknown transaction type: {filters.type}")
            stmt = stmt.where(CreditTransaction.type == filters.type)
        if filters.from_date is not None:
            stmt = stmt.where(CreditTransaction.created_at >= filters.from_date)
        if filters.to_date is not None:
            stmt = stmt.where(CreditTransaction.created_at <= filters.to_date)
        if filters.class_session_id is not None:
            stmt = stmt.where(CreditTransaction.class_session_id == filters.class_session_id)
        stmt = stmt.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        if filters.limit is not None:
            stmt = stmt.limit(min(max(int(filters.limit), 1), HISTORY_MAX_LIMIT))
        if filters.offset:
            stmt = stmt.offset(max(int(filters.offset), 0))
        return list((await db.execute(stmt)).scalars().all())

    async def verify_consistency(self, db: AsyncSession, user_id: int) -> bool:
        ledger_sum = (
            await db.execute(
                select(func.coalesce(func.sum(CreditTransaction.amount_half_credits), 0)).where(
                    CreditTransaction.user_id == user_id
                )
            )
        ).scalar_one()
        stored = await self._current_half_credits(db, user_id)
        if int(ledger_sum or 0) != stored:
            logger.error(
                "credit ledger mismatch user_id=%s stored=%s ledger=%s",
                user_id,
                format_credits(stored),
                format_credits(int(ledger_sum or 0)),
            )
            return False
        return True

    async def _credit(
        self,
        db: AsyncSession,
        *,
        user_id: int,
        half_credits: int,
        tx_type: str,
        reason: str,
        performed_by: str,
        class_session_id: int | None,
    ) -> CreditTransaction:
        result = await db.execute(
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .values(balance_half_credits=CreditBalance.balance_half_credits + half_credits)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._create_balance(db, user_id=user_id, initial_half_credits=half_credits)

        return await self._append(
            db,
            user_id=user_id,
            signed_half_credits=half_credits,
            tx_type=tx_type,
            reason=reason,
            performed_by=performed_by,
            class_session_id=class_session_id,
        )

    async def _create_balance(self, db: AsyncSession, *, user_id: int, initial_half_credits: int) -> None:
        if await db.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")
        db.add(CreditBalance(user_id=user_id, balance_half_credits=initial_half_credits))
        try:
            await db.flush()
        except IntegrityError as exc:
            # Another request created the row first; our transaction is now unusable.
            raise ConcurrencyConflictError(
                "Credit balance was created concurrently, retry the operation",
                details={"user_id": user_id},
            ) from exc

    async def _append(
        self,
        db: AsyncSession,
        *,
        user_id: int,
        signed_half_credits: int,
        tx_type: str,
        reason: str,
        performed_by: str,
        class_session_id: int | None,
    ) -> CreditTransaction:
        balance_after = await self._current_half_credits(db, user_id)
        row = CreditTransaction(
            user_id=user_id,
            amount_half_credits=signed_half_credits,
            type=tx_type,
            reason=reason,
            performed_by=str(performed_by or SYSTEM_ACTOR)[:64],
            balance_after_half_credits=balance_after,
            class_session_id=class_session_id,
            created_at=self._clock(),
        )
        db.add(row)
        await db.flush()
        logger.info(
            "credit %s user_id=%s amount=%s balance_after=%s performed_by=%s session_id=%s",
            tx_type,
            user_id,
            format_credits(signed_half_credits),
            format_credits(balance_after),
            row.performed_by,
            class_session_id,
        )
        return row

    async def _current_half_credits(self, db: AsyncSession, user_id: int) -> int:
        value = (
            await db.execute(select(CreditBalance.balance_half_credits).where(CreditBalance.user_id == user_id))
        ).scalar_one_or_none()
        return int(value or 0)
