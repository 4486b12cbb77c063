# paylink/schemas/rewards.py
"""
Reward points and referral schemas
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel

from paylink.core.constants import RedemptionType, RewardTransactionType


class RedemptionOption(BaseModel):
    id: str
    points: int
    value: Decimal
    type: RedemptionType
    plan: Optional[str] = None


class RedemptionResult(BaseModel):
    redemption: RedemptionOption
    points_spent: int
    remaining_points: int
    discount_expires: Optional[datetime] = None
    transaction_id: Optional[str] = None
    provider_reference: Optional[str] = None


class RedeemRequest(BaseModel):
    redemption_id: str
    provider: Optional[str] = None


class TierInfo(BaseModel):
    name: str
    minimum: int
    next_tier: Optional[str] = None
    remaining_to_next: Optional[int] = None


class PointsSummary(BaseModel):
    current_points: int
    total_earned: int
    total_redeemed: int
    tier: TierInfo
    discount_amount: Decimal
    discount_expires: Optional[datetime] = None


class RewardHistoryEntry(BaseModel):
    type: RewardTransactionType
    points: int
    reason: str
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    redemption_id: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class ReferralEntry(BaseModel):
    referee_id: str
    status: str
    earnings: Decimal
    created_at: datetime


class ReferralStats(BaseModel):
    referral_code: str
    total_referrals: int
    total_earnings: Decimal
    tier: TierInfo
    referrals: List[ReferralEntry]


class ApplyReferralRequest(BaseModel):
    referral_code: str
