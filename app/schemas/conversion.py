from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ConversionStatusOut(BaseModel):
    user_id: int
    is_trial: bool
    trial_completed: bool
    converted_at: datetime | None = None
    should_redirect: bool


class TrialSweepOut(BaseModel):
    candidates: int
    converted: int
    failed: int
    errors: list[dict[str, Any]] = []
