from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_core
from app.core.context import CoreContext
from app.db.session import get_db
from app.models.user import User
from app.schemas.conversion import ConversionStatusOut
from app.services.auth import ensure_self_or_admin, get_current_user

router = APIRouter(prefix="/conversion", tags=["conversion"])


@router.get("/{user_id}/status", response_model=ConversionStatusOut)
async def conversion_status(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    core: CoreContext = Depends(get_core),
) -> ConversionStatusOut:
    ensure_self_or_admin(current_user, user_id)
    status = await core.trial_conversion.check_status(db, user_id)
    return ConversionStatusOut(user_id=user_id, **status)
