from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_core, transaction_out
from app.core.context import CoreContext
from app.db.session import get_db
from app.middleware.rate_limit import conversion_rate_limit
from app.models.user import User
from app.schemas.classes import StatusSweepOut
from app.schemas.conversion import ConversionStatusOut, TrialSweepOut
from app.schemas.credits import CreditAdjustIn, CreditAdjustOut
from app.schemas.platform import PlatformSettingOut, PlatformSettingUpdateIn
from app.services.auth import get_current_user, require_admin

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/credits/{user_id}/adjust", response_model=CreditAdjustOut)
async def adjust_credits(
    user_id: int,
    payload: CreditAdjustIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> CreditAdjustOut:
    require_admin(current_user)
    operation = core.ledger.add if payload.direction == "add" else core.ledger.deduct
    try:
        tx = await operation(
            db,
            user_id=user_id,
            amount=payload.amount,
            reason=payload.reason,
            performed_by=str(current_user.id),
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "manual credit adjustment user_id=%s direction=%s amount=%s by=%s",
        user_id,
        payload.direction,
        payload.amount,
        current_user.id,
    )
    return CreditAdjustOut(transaction=transaction_out(tx), balance=tx.balance_after)


@router.post("/classes/update-statuses", response_model=StatusSweepOut)
async def run_status_update(
    current_user: User = Depends(get_current_user),
    core: CoreContext = Depends(get_core),
) -> StatusSweepOut:
    require_admin(current_user)
    result = await core.status_updater.update_class_statuses()
    return StatusSweepOut(**result.to_payload())


# Registered before the per-user route so the literal segment wins.
@router.post("/conversion/process-trials", response_model=TrialSweepOut)
async def run_trial_sweep(
    current_user: User = Depends(get_current_user),
    core: CoreContext = Depends(get_core),
) -> TrialSweepOut:
    require_admin(current_user)
    result = await core.trial_conversion.process_completed_trial_lessons()
    return TrialSweepOut(**result.to_payload())


@router.post(
    "/conversion/{user_id}",
    response_model=ConversionStatusOut,
    dependencies=[Depends(conversion_rate_limit)],
)
async def convert_student(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> ConversionStatusOut:
    profile = await core.trial_conversion.manual_conversion(db, user_id, performed_by=current_user.id)
    return ConversionStatusOut(
        user_id=user_id,
        is_trial=profile.is_trial,
        trial_completed=profile.trial_completed,
        converted_at=profile.converted_at,
        should_redirect=(not profile.is_trial) and profile.trial_completed,
    )


@router.get("/settings", response_model=list[PlatformSettingOut])
async def list_platform_settings(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> list[PlatformSettingOut]:
    require_admin(current_user)
    return [PlatformSettingOut(**row) for row in await core.platform_settings.list_settings(db)]


@router.put("/settings/{key}", response_model=PlatformSettingOut)
async def update_platform_setting(
    key: str,
    payload: PlatformSettingUpdateIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> PlatformSettingOut:
    require_admin(current_user)
    try:
        row = await core.platform_settings.update_setting(db, key=key, value=payload.value, updated_by=current_user.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return PlatformSettingOut(key=row.key, value=row.value, description=row.description or "")
