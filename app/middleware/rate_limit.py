from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable

from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.models.user import User
from app.services.auth import get_current_user

logger = logging.getLogger(__name__)


class RedisRateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit_per_minute: int | None = None):
        super().__init__(app)
        self.limit_per_minute = limit_per_minute or settings.rate_limit_per_minute

    @staticmethod
    def _resolve_subject(request: Request) -> str:
        """
        Prefer stable user identity when available.
        This avoids grouping all proxied traffic under one server IP.
        """
        auth = (request.headers.get("authorization") or "").strip()
        if auth.lower().startswith("bearer "):
            token = auth[7:].strip()
            if token:
                # Do not parse claims here; just isolate per presented token.
                return f"jwt:{token}"

        forwarded = (request.headers.get("x-forwarded-for") or "").strip()
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"

        real_ip = (request.headers.get("x-real-ip") or "").strip()
        if real_ip:
            return f"ip:{real_ip}"

        ip = request.client.host if request.client else "unknown"
        return f"ip:{ip}"

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable]):
        if request.url.path.startswith("/health") or request.url.path.startswith("/metrics"):
            return await call_next(request)

        core = getattr(request.app.state, "core", None)
        redis = core.redis if core is not None else None
        if redis is None:
            return await call_next(request)

        subject = self._resolve_subject(request)
        minute_bucket = int(time.time() // 60)
        key = f"rl:{subject}:{minute_bucket}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 65)
            if count > self.limit_per_minute:
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Rate limit exceeded"},
                    headers={"Retry-After": "60"},
                )
        except Exception:
            # Fail-open when Redis is unavailable.
            logger.warning("rate limit check skipped, redis unavailable", exc_info=True)

        return await call_next(request)


async def conversion_rate_limit(request: Request, current_user: User = Depends(get_current_user)) -> None:
    """Hourly per-admin budget for manual trial conversions."""
    core = request.app.state.core
    # Non-admins are refused by the conversion itself and are not counted.
    if core.redis is None or not current_user.is_admin:
        return

    limit = core.settings.conversion_rate_limit_per_hour
    hour_bucket = int(core.clock().timestamp() // 3600)
    key = f"rl:conversion:{current_user.id}:{hour_bucket}"
    try:
        count = await core.redis.incr(key)
        if count == 1:
            await core.redis.expire(key, 3605)
    except Exception:
        logger.warning("conversion rate limit skipped, redis unavailable", exc_info=True)
        return

    if count > limit:
        raise HTTPException(
            status_code=429,
            detail="Too many conversion requests, try again later",
            headers={"Retry-After": "3600"},
        )
