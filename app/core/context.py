from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.db.session import build_engine, build_session_factory
from app.models.common import utcnow
from app.services.class_sessions import ClassSessionService
from app.services.class_status import BatchStatusUpdater
from app.services.credit_ledger import CreditLedger
from app.services.platform_settings import PlatformSettingsService
from app.services.trial_conversion import TrialConversionService


@dataclass(slots=True)
class CoreContext:
    """Process-scoped wiring of the class lifecycle and credit services."""

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    clock: Callable[[], datetime]
    redis: Redis | None
    platform_settings: PlatformSettingsService
    ledger: CreditLedger
    sessions: ClassSessionService
    trial_conversion: TrialConversionService
    status_updater: BatchStatusUpdater

    async def aclose(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
        await self.engine.dispose()


def build_core_context(
    settings: Settings,
    *,
    engine: AsyncEngine | None = None,
    clock: Callable[[], datetime] = utcnow,
    redis: Redis | None = None,
    connect_redis: bool = True,
) -> CoreContext:
    engine = engine or build_engine(settings.database_url)
    session_factory = build_session_factory(engine)
    if redis is None and connect_redis:
        redis = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)

    platform_settings = PlatformSettingsService(settings)
    ledger = CreditLedger(clock=clock, max_add_amount=settings.max_manual_credit_add)
    sessions = ClassSessionService(
        ledger=ledger,
        platform_settings=platform_settings,
        timezone=ZoneInfo(settings.class_timezone),
        clock=clock,
    )
    trial_conversion = TrialConversionService(session_factory=session_factory, clock=clock)
    status_updater = BatchStatusUpdater(
        session_factory=session_factory,
        sessions=sessions,
        trial_conversion=trial_conversion,
        platform_settings=platform_settings,
        clock=clock,
    )
    return CoreContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        clock=clock,
        redis=redis,
        platform_settings=platform_settings,
        ledger=ledger,
        sessions=sessions,
        trial_conversion=trial_conversion,
        status_updater=status_updater,
    )
