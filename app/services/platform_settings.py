"""
Admin-configurable platform settings.

Defaults come from ``Settings`` (environment); rows in ``platform_settings``
override them at runtime so admins can change the join window or class
prices without a deploy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.errors import NotFoundError, ValidationError
from app.models.platform import PlatformSetting
from app.services.credit_units import to_half_credits

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SettingSpec:
    key: str
    kind: str
    description: str


SETTING_SPECS: dict[str, SettingSpec] = {
    spec.key: spec
    for spec in (
        SettingSpec("join_window_minutes", "int", "Minutes before class start when joining opens"),
        SettingSpec("join_grace_minutes", "int", "Minutes after class start when joining is still allowed"),
        SettingSpec("no_show_grace_minutes", "int", "Minutes after start before an unattended class is a no-show"),
        SettingSpec("cancellation_penalty_hours", "int", "Cancelling this close to the start forfeits the credits"),
        SettingSpec("trial_credits", "decimal", "Credits charged for a trial assessment lesson"),
        SettingSpec("regular_class_credits", "decimal", "Credits charged for a regular class"),
        SettingSpec("class_duration_default", "int", "Default class duration in minutes"),
        SettingSpec("low_credit_threshold", "decimal", "Balance at or below which a student is flagged as low"),
        SettingSpec("attendance_tracking_enabled", "bool", "Require a recorded join before a class goes in progress"),
    )
}


@dataclass(frozen=True, slots=True)
class SchedulingPolicy:
    join_window_minutes: int
    join_grace_minutes: int
    no_show_grace_minutes: int
    cancellation_penalty_hours: int
    trial_credits: Decimal
    regular_class_credits: Decimal
    class_duration_default: int
    low_credit_threshold: Decimal
    attendance_tracking_enabled: bool

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulingPolicy":
        return cls(**{key: getattr(settings, key) for key in SETTING_SPECS})


def _coerce(spec: SettingSpec, raw: Any) -> Any:
    if spec.kind == "bool":
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str) and raw.strip().lower() in {"true", "false"}:
            return raw.strip().lower() == "true"
        raise ValidationError(f"{spec.key} must be a boolean")

    if spec.kind == "int":
        if isinstance(raw, bool):
            raise ValidationError(f"{spec.key} must be an integer")
        try:
            value = int(str(raw).strip())
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{spec.key} must be an integer") from exc
        if value < 0:
            raise ValidationError(f"{spec.key} must not be negative")
        if spec.key == "class_duration_default" and value == 0:
            raise ValidationError("class_duration_default must be positive")
        return value

    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"{spec.key} must be a number") from exc
    to_half_credits(value)
    if value < 0:
        raise ValidationError(f"{spec.key} must not be negative")
    if spec.key == "regular_class_credits" and value == 0:
        raise ValidationError("regular_class_credits must be positive")
    return value


def _to_json(spec: SettingSpec, value: Any) -> Any:
    # JSON has no decimal type; keep credit amounts exact as strings.
    if spec.kind == "decimal":
        return format(value, "f")
    return value


class PlatformSettingsService:
    def __init__(self, settings: Settings) -> None:
        self._defaults = SchedulingPolicy.from_settings(settings)

    @property
    def defaults(self) -> SchedulingPolicy:
        return self._defaults

    async def load_policy(self, db: AsyncSession) -> SchedulingPolicy:
        rows = (
            await db.execute(select(PlatformSetting).where(PlatformSetting.key.in_(list(SETTING_SPECS))))
        ).scalars().all()
        overrides: dict[str, Any] = {}
        for row in rows:
            spec = SETTING_SPECS[row.key]
            try:
                overrides[row.key] = _coerce(spec, row.value)
            except ValidationError:
                logger.warning("ignoring invalid platform setting key=%s value=%r", row.key, row.value)
        return replace(self._defaults, **overrides)

    async def list_settings(self, db: AsyncSession) -> list[dict[str, Any]]:
        policy = await self.load_policy(db)
        return [
            {
                "key": key,
                "value": _to_json(spec, getattr(policy, key)),
                "description": spec.description,
            }
            for key, spec in SETTING_SPECS.items()
        ]

    async def update_setting(self, db: AsyncSession, *, key: str, value: Any, updated_by: int) -> PlatformSetting:
        spec = SETTING_SPECS.get(key)
        if spec is None:
            raise NotFoundError(f"Unknown setting: {key}")
        clean = _coerce(spec, value)

        row = (await db.execute(select(PlatformSetting).where(PlatformSetting.key == key))).scalar_one_or_none()
        if row is None:
            row = PlatformSetting(key=key, value=_to_json(spec, clean), description=spec.description)
            db.add(row)
        else:
            row.value = _to_json(spec, clean)
        row.updated_by = updated_by
        await db.flush()
        logger.info("platform setting updated key=%s value=%r by=%s", key, row.value, updated_by)
        return row
