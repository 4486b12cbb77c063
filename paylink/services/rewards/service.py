# paylink/services/rewards/service.py
"""
Reward points: awarding, redemption and discounts
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.config import settings
from paylink.core.constants import (
    MONEY_PLACES,
    Category,
    RedemptionType,
    RewardTransactionType,
)
from paylink.core.exception import (
    InsufficientPointsError,
    InvalidRedemptionError,
    PaymentProviderError,
    ResourceNotFoundError,
)
from paylink.core.logging import logger
from paylink.core.utils import generate_reference, utcnow
from paylink.db.models import RewardTransaction, User
from paylink.schemas.rewards import (
    PointsSummary,
    RedemptionOption,
    RedemptionResult,
    RewardHistoryEntry,
    TierInfo,
)
from paylink.services.rewards.points import (
    available_redemptions,
    award_in_session,
    redemption_option,
    tier_for,
)
from paylink.services.wallet.ledger import WalletLedger


def consume_discount(user: User, amount: Decimal, now: datetime) -> Decimal:
    """
    Apply the user's unexpired redemption discount to a purchase of
    `amount`, reducing the stored discount. Returns the discount applied.

    At least one kobo of every purchase is still charged.
    """
    if user.discount_amount <= 0:
        return Decimal("0.00")

    if user.discount_expires is not None and user.discount_expires < now:
        user.discount_amount = Decimal("0.00")
        user.discount_expires = None
        return Decimal("0.00")

    applied = min(user.discount_amount, amount - MONEY_PLACES)
    if applied <= 0:
        return Decimal("0.00")

    # expiry stays set; a refund may restore the amount
    user.discount_amount = user.discount_amount - applied
    return applied


class RewardService:
    """Points ledger on top of the wallet ledger"""

    def __init__(
        self,
        ledger: WalletLedger,
        payflex=None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.payflex = payflex
        self.clock = clock

    async def award(
        self,
        user_id: str,
        category: Category,
        amount: Decimal,
        transaction_id: Optional[str] = None,
    ) -> int:
        """Award points for a purchase made outside the ledger's debit path"""

        async def _award(session: AsyncSession) -> int:
            user = await self.ledger.load_user(session, user_id, require_active=False)
            return await award_in_session(session, user, category, amount, transaction_id)

        return await self.ledger.atomic(user_id, _award)

    def catalog(self) -> List[RedemptionOption]:
        return available_redemptions()

    async def _spend_points(self, user_id: str, option: RedemptionOption) -> tuple[User, Optional[str]]:
        """Deduct the option's cost and apply wallet-side effects atomically"""

        async def _spend(session: AsyncSession) -> tuple[User, Optional[str]]:
            user = await self.ledger.load_user(session, user_id)

            if user.reward_points < option.points:
                raise InsufficientPointsError(
                    f"Insufficient points. Required: {option.points}, Available: {user.reward_points}",
                    {"required": option.points, "available": user.reward_points},
                )

            if option.type in (RedemptionType.AIRTIME, RedemptionType.DATA) and not user.phone_number:
                raise InvalidRedemptionError(
                    "A phone number is required for airtime and data rewards",
                    {"redemption_id": option.id},
                )

            user.reward_points -= option.points
            cashback_id = None
            session.add(
                RewardTransaction(
                    user_id=user_id,
                    type=RewardTransactionType.REDEEMED,
                    points=-option.points,
                    reason=f"Redeemed: {option.id}",
                    redemption_id=option.id,
                    amount=option.value,
                    timestamp=self.clock(),
                )
            )

            if option.type == RedemptionType.DISCOUNT:
                now = self.clock()
                # Unused unexpired discount carries over into the new one
                carried = user.discount_amount
                if user.discount_expires is not None and user.discount_expires < now:
                    carried = Decimal("0.00")
                user.discount_amount = carried + option.value
                user.discount_expires = now + timedelta(days=settings.DISCOUNT_VALIDITY_DAYS)
            elif option.type == RedemptionType.CASHBACK:
                txn = await self.ledger.post_credit(
                    session,
                    user,
                    option.value,
                    Category.REWARD,
                    reference=generate_reference("reward"),
                    description="Reward cashback",
                    metadata={"redemption_id": option.id},
                )
                cashback_id = txn.id

            return user, cashback_id

        return await self.ledger.atomic(user_id, _spend)

    async def _restore_points(self, user_id: str, option: RedemptionOption, reason: str) -> None:
        async def _restore(session: AsyncSession) -> None:
            user = await self.ledger.load_user(session, user_id, require_active=False)
            user.reward_points += option.points
            session.add(
                RewardTransaction(
                    user_id=user_id,
                    type=RewardTransactionType.EARNED,
                    points=option.points,
                    reason=f"Restored: {option.id} ({reason})"[:120],
                    redemption_id=option.id,
                    timestamp=self.clock(),
                )
            )

        await self.ledger.atomic(user_id, _restore)
        logger.warning("🎁 Restored {} points to {} after failed {}", option.points, user_id, option.id)

    async def redeem(
        self,
        user_id: str,
        redemption_id: str,
        provider: str | None = None,
    ) -> RedemptionResult:
        """
        Spend points on a catalog item.

        Airtime and data rewards are bought through PayFlex after the
        points are taken; a failed purchase gives the points back.

        Raises:
            InvalidRedemptionError: unknown option, or missing provider/phone
            InsufficientPointsError: not enough points
        """
        option = redemption_option(redemption_id)
        if option is None:
            raise InvalidRedemptionError("Invalid redemption option", {"redemption_id": redemption_id})

        needs_purchase = option.type in (RedemptionType.AIRTIME, RedemptionType.DATA)
        if needs_purchase and (not provider or self.payflex is None):
            raise InvalidRedemptionError(
                "A network provider is required for airtime and data rewards",
                {"redemption_id": redemption_id},
            )

        user, cashback_id = await self._spend_points(user_id, option)

        result = RedemptionResult(
            redemption=option,
            points_spent=option.points,
            remaining_points=user.reward_points,
            discount_expires=user.discount_expires if option.type == RedemptionType.DISCOUNT else None,
            transaction_id=cashback_id,
        )

        if needs_purchase:
            reference = generate_reference(f"reward_{option.type.value}")
            try:
                if option.type == RedemptionType.AIRTIME:
                    response = await self.payflex.buy_airtime(
                        provider=provider,
                        phone_number=user.phone_number,
                        amount=option.value,
                        reference=reference,
                    )
                else:
                    response = await self.payflex.buy_data(
                        provider=provider,
                        phone_number=user.phone_number,
                        plan_id=option.plan,
                        reference=reference,
                    )
            except PaymentProviderError as exc:
                await self._restore_points(user_id, option, exc.message)
                raise

            result.provider_reference = response.get("reference") or reference

        logger.info("🎁 {} redeemed {} for {} points", user_id, redemption_id, option.points)
        return result

    async def points_summary(self, user_id: str) -> PointsSummary:
        async with self.ledger.session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise ResourceNotFoundError(f"User {user_id} not found", {"user_id": user_id})

            redeemed = await session.scalar(
                select(func.coalesce(func.sum(RewardTransaction.points), 0)).where(
                    RewardTransaction.user_id == user_id,
                    RewardTransaction.type == RewardTransactionType.REDEEMED,
                )
            )

        discount = user.discount_amount
        if user.discount_expires is not None and user.discount_expires < self.clock():
            discount = Decimal("0.00")

        return PointsSummary(
            current_points=user.reward_points,
            total_earned=user.lifetime_points,
            total_redeemed=abs(int(redeemed or 0)),
            tier=self.tier(user.lifetime_points),
            discount_amount=discount,
            discount_expires=user.discount_expires if discount > 0 else None,
        )

    @staticmethod
    def tier(lifetime_points: int) -> TierInfo:
        return tier_for(lifetime_points)

    async def history(self, user_id: str, limit: int = 50) -> List[RewardHistoryEntry]:
        query = (
            select(RewardTransaction)
            .where(RewardTransaction.user_id == user_id)
            .order_by(RewardTransaction.timestamp.desc(), RewardTransaction.id.desc())
            .limit(limit)
        )
        async with self.ledger.session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
        return [RewardHistoryEntry.model_validate(row) for row in rows]
