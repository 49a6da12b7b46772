from __future__ import annotations

import logging

from arq.connections import RedisSettings
from arq.cron import cron

from app.core.config import settings
from app.core.context import build_core_context
from app.core.logging import configure_logging

logger = logging.getLogger(__name__)


async def startup(ctx) -> None:
    configure_logging()
    # The arq pool already talks to Redis; the core does not need its own client here.
    ctx["core"] = build_core_context(settings, connect_redis=False)
    logger.info("class worker started")


async def shutdown(ctx) -> None:
    core = ctx.pop("core", None)
    if core is not None:
        await core.aclose()


async def update_class_statuses_job(ctx) -> dict:
    result = await ctx["core"].status_updater.update_class_statuses()
    return result.to_payload()


async def process_trial_lessons_job(ctx) -> dict:
    result = await ctx["core"].trial_conversion.process_completed_trial_lessons()
    return result.to_payload()


def _every(minutes: int) -> set[int]:
    return set(range(0, 60, max(int(minutes), 1)))


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    on_startup = startup
    on_shutdown = shutdown
    functions = [update_class_statuses_job, process_trial_lessons_job]
    cron_jobs = [
        cron(update_class_statuses_job, minute=_every(settings.status_sweep_every_minutes), unique=True),
        cron(process_trial_lessons_job, minute=_every(settings.trial_sweep_every_minutes), unique=True),
    ]
