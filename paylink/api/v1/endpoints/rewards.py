"""Reward points and referral endpoints"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from paylink.api.dependencies import get_current_user_id
from paylink.core.dependencies import get_referral_service, get_reward_service
from paylink.schemas.rewards import (
    ApplyReferralRequest,
    PointsSummary,
    RedeemRequest,
    RedemptionOption,
    RedemptionResult,
    ReferralEntry,
    ReferralStats,
    RewardHistoryEntry,
)
from paylink.services.referrals.service import ReferralService
from paylink.services.rewards.service import RewardService

router = APIRouter()


@router.get("/summary", response_model=PointsSummary)
async def points_summary(
    user_id: str = Depends(get_current_user_id),
    rewards: RewardService = Depends(get_reward_service),
):
    return await rewards.points_summary(user_id)


@router.get("/catalog", response_model=List[RedemptionOption])
async def catalog(rewards: RewardService = Depends(get_reward_service)):
    return rewards.catalog()


@router.post("/redeem", response_model=RedemptionResult)
async def redeem(
    request: RedeemRequest,
    user_id: str = Depends(get_current_user_id),
    rewards: RewardService = Depends(get_reward_service),
):
    return await rewards.redeem(user_id, request.redemption_id, provider=request.provider)


@router.get("/history", response_model=List[RewardHistoryEntry])
async def history(
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    rewards: RewardService = Depends(get_reward_service),
):
    return await rewards.history(user_id, limit=limit)


# ==================== REFERRALS ====================


@router.get("/referrals", response_model=ReferralStats)
async def referral_stats(
    user_id: str = Depends(get_current_user_id),
    referrals: ReferralService = Depends(get_referral_service),
):
    return await referrals.referral_stats(user_id)


@router.post("/referrals/apply", response_model=ReferralEntry)
async def apply_referral(
    request: ApplyReferralRequest,
    user_id: str = Depends(get_current_user_id),
    referrals: ReferralService = Depends(get_referral_service),
):
    return await referrals.apply_referral(user_id, request.referral_code)


@router.get("/referrals/leaderboard")
async def leaderboard(
    limit: int = Query(10, ge=1, le=100),
    referrals: ReferralService = Depends(get_referral_service),
) -> List[Dict[str, Any]]:
    return await referrals.leaderboard(limit)
