# paylink/schemas/savings.py
"""
Savings plan schemas
"""
from datetime import datetime
from typing import Optional
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from paylink.core.constants import SavingsInterval, SavingsPlanStatus


class SavingsPlanCreate(BaseModel):
    plan_name: str = Field(..., max_length=120)
    target_amount: Decimal
    initial_amount: Decimal
    interest_rate: Decimal = Decimal("5")
    interval: SavingsInterval = SavingsInterval.MONTHLY
    lock_days: int = Field(default=0, ge=0, le=3650)

    @field_validator("plan_name")
    def strip_name(cls, value: str) -> str:
        return value.strip()


class SavingsPlanState(BaseModel):
    id: str
    user_id: str
    plan_name: str
    target_amount: Decimal
    current_amount: Decimal
    initial_amount: Decimal
    interest_rate: Decimal
    interval: SavingsInterval
    lock_days: int
    withdrawal_count: int
    max_withdrawals: int
    status: SavingsPlanStatus
    created_at: datetime
    updated_at: datetime
    maturity_date: datetime

    class Config:
        from_attributes = True


class WithdrawalRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)


class WithdrawalResult(BaseModel):
    plan: SavingsPlanState
    amount: Decimal
    interest_applied: Decimal
    transaction_id: str
    remaining_withdrawals: int


class PlanDeletionResult(BaseModel):
    plan_id: str
    refunded_amount: Decimal
    interest_applied: Decimal
    transaction_id: Optional[str] = None
