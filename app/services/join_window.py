from __future__ import annotations

from datetime import datetime, timedelta

DEFAULT_WINDOW_MINUTES_BEFORE = 10
DEFAULT_GRACE_MINUTES_AFTER = 30


def join_window_bounds(
    session_start: datetime,
    *,
    window_minutes_before: int = DEFAULT_WINDOW_MINUTES_BEFORE,
    grace_minutes_after: int = DEFAULT_GRACE_MINUTES_AFTER,
) -> tuple[datetime, datetime]:
    opens_at = session_start - timedelta(minutes=max(int(window_minutes_before), 0))
    closes_at = session_start + timedelta(minutes=max(int(grace_minutes_after), 0))
    return opens_at, closes_at


def can_join(
    session_start: datetime,
    now: datetime,
    window_minutes_before: int = DEFAULT_WINDOW_MINUTES_BEFORE,
    grace_minutes_after: int = DEFAULT_GRACE_MINUTES_AFTER,
) -> bool:
    # Both edges are inclusive.
    opens_at, closes_at = join_window_bounds(
        session_start,
        window_minutes_before=window_minutes_before,
        grace_minutes_after=grace_minutes_after,
    )
    return opens_at <= now <= closes_at
