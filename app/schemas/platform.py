from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class PlatformSettingOut(BaseModel):
    key: str
    value: Any
    description: str


class PlatformSettingUpdateIn(BaseModel):
    value: Any
