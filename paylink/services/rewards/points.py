# paylink/services/rewards/points.py
"""
Point accrual rules

Pure functions over the static rate table, plus the in-session award
used by the ledger so points land in the same database transaction as
the debit that earned them.
"""
import math
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.constants import (
    LOYALTY_TIERS,
    POINTS_RATES,
    REDEMPTION_CATALOG,
    RewardTransactionType,
)
from paylink.core.logging import logger
from paylink.db.models import RewardTransaction, User
from paylink.schemas.rewards import RedemptionOption, TierInfo


def calculate_points(category: str, amount: Decimal) -> int:
    """
    floor(amount / per_amount * rate) for the category, 0 when the
    category does not earn points.
    """
    key = category.value if hasattr(category, "value") else category
    rule = POINTS_RATES.get(key)
    if rule is None or amount <= 0:
        return 0

    rate, per_amount = rule
    return max(math.floor(Decimal(amount) / per_amount * rate), 0)


def tier_for(points: int, tiers=LOYALTY_TIERS) -> TierInfo:
    """Look up the tier for a points (or referral) count in a highest-first table"""
    for index, (name, minimum) in enumerate(tiers):
        if points >= minimum:
            if index == 0:
                return TierInfo(name=name, minimum=minimum)
            next_name, next_minimum = tiers[index - 1]
            return TierInfo(
                name=name,
                minimum=minimum,
                next_tier=next_name,
                remaining_to_next=next_minimum - points,
            )
    name, minimum = tiers[-1]
    return TierInfo(name=name, minimum=minimum)


def redemption_option(redemption_id: str) -> Optional[RedemptionOption]:
    entry = REDEMPTION_CATALOG.get(redemption_id)
    if entry is None:
        return None
    return RedemptionOption(id=redemption_id, **entry)


def available_redemptions() -> list[RedemptionOption]:
    return [RedemptionOption(id=key, **entry) for key, entry in REDEMPTION_CATALOG.items()]


async def award_in_session(
    session: AsyncSession,
    user: User,
    category: str,
    amount: Decimal,
    transaction_id: Optional[str] = None,
) -> int:
    """Credit points to a user already loaded in `session`"""
    points = calculate_points(category, amount)
    if points == 0:
        return 0

    user.reward_points += points
    user.lifetime_points += points

    key = category.value if hasattr(category, "value") else category
    session.add(
        RewardTransaction(
            user_id=user.uid,
            type=RewardTransactionType.EARNED,
            points=points,
            reason=f"{key} purchase",
            transaction_id=transaction_id,
            amount=amount,
        )
    )

    logger.info("🎁 {} points awarded to {} for {} ₦{}", points, user.uid, key, amount)
    return points
