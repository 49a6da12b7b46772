from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_core, transaction_out
from app.core.context import CoreContext
from app.db.session import get_db
from app.models.user import User
from app.schemas.credits import CreditBalanceOut, CreditTransactionOut
from app.services.auth import ensure_self_or_admin, get_current_user
from app.services.credit_ledger import HistoryFilters

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/{user_id}/balance", response_model=CreditBalanceOut)
async def credit_balance(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> CreditBalanceOut:
    ensure_self_or_admin(current_user, user_id)
    balance = await core.ledger.get_balance(db, user_id)
    policy = await core.platform_settings.load_policy(db)
    return CreditBalanceOut(
        user_id=user_id,
        balance=balance,
        low_balance=balance <= policy.low_credit_threshold,
    )


@router.get("/{user_id}/history", response_model=list[CreditTransactionOut])
async def credit_history(
    user_id: int,
    type: str | None = Query(default=None),
    from_date: datetime | None = Query(default=None),
    to_date: datetime | None = Query(default=None),
    class_session_id: int | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> list[CreditTransactionOut]:
    ensure_self_or_admin(current_user, user_id)
    rows = await core.ledger.get_history(
        db,
        user_id,
        HistoryFilters(
            type=type,
            from_date=from_date,
            to_date=to_date,
            class_session_id=class_session_id,
            limit=limit,
            offset=offset,
        ),
    )
    return [transaction_out(row) for row in rows]
