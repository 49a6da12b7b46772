from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class CreditBalanceOut(BaseModel):
    user_id: int
    balance: Decimal
    low_balance: bool


class CreditTransactionOut(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    type: str
    reason: str
    performed_by: str
    balance_after: Decimal
    class_session_id: int | None = None
    created_at: datetime


class CreditAdjustIn(BaseModel):
    direction: Literal["add", "deduct"]
    amount: Decimal = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)


class CreditAdjustOut(BaseModel):
    transaction: CreditTransactionOut
    balance: Decimal
