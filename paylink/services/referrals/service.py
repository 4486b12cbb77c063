# paylink/services/referrals/service.py
"""
Referral codes and bonuses
"""
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.config import settings
from paylink.core.constants import (
    REFERRAL_CODE_ALPHABET,
    REFERRAL_CODE_LENGTH,
    REFERRAL_CODE_PREFIX,
    REFERRAL_TIERS,
    Category,
)
from paylink.core.exception import ReferralError
from paylink.core.logging import logger
from paylink.core.utils import generate_reference, utcnow
from paylink.db.models import Referral, User
from paylink.schemas.rewards import ReferralEntry, ReferralStats
from paylink.services.fraud.security import add_notification
from paylink.services.rewards.points import tier_for
from paylink.services.wallet.ledger import WalletLedger


def generate_referral_code() -> str:
    suffix = "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))
    return f"{REFERRAL_CODE_PREFIX}{suffix}"


class ReferralService:

    MAX_CODE_ATTEMPTS = 10

    def __init__(
        self,
        ledger: WalletLedger,
        clock: Callable[[], datetime] = utcnow,
        code_factory: Callable[[], str] = generate_referral_code,
    ) -> None:
        self.ledger = ledger
        self.clock = clock
        self.code_factory = code_factory

    async def ensure_referral_code(self, user_id: str) -> str:
        """Return the user's code, creating a unique one on first use"""

        async def _ensure(session: AsyncSession) -> str:
            user = await self.ledger.load_user(session, user_id, require_active=False)
            if user.referral_code:
                return user.referral_code

            for _ in range(self.MAX_CODE_ATTEMPTS):
                code = self.code_factory()
                taken = await session.scalar(select(func.count(User.uid)).where(User.referral_code == code))
                if not taken:
                    user.referral_code = code
                    return code

            raise ReferralError("Could not generate unique referral code", {"user_id": user_id})

        code = await self.ledger.atomic(user_id, _ensure)
        logger.info("🔗 Referral code for {}: {}", user_id, code)
        return code

    async def validate_referral_code(self, code: str) -> bool:
        async with self.ledger.session_factory() as session:
            owner = await session.scalar(select(User.uid).where(User.referral_code == code.upper()))
        return owner is not None

    async def apply_referral(self, referee_id: str, referral_code: str) -> ReferralEntry:
        """
        Link a new user to the owner of `referral_code` and pay both bonuses.

        Raises:
            ReferralError: unknown code, self-referral, or already referred
        """
        code = referral_code.strip().upper()

        async with self.ledger.session_factory() as session:
            referrer_id = await session.scalar(select(User.uid).where(User.referral_code == code))
        if referrer_id is None:
            raise ReferralError("Invalid referral code", {"referral_code": code})
        if referrer_id == referee_id:
            raise ReferralError("You cannot use your own referral code")

        referrer_bonus = settings.REFERRER_BONUS
        referee_bonus = settings.REFEREE_BONUS

        async def _apply(session: AsyncSession) -> Referral:
            referee = await self.ledger.load_user(session, referee_id)
            referrer = await self.ledger.load_user(session, referrer_id, require_active=False)

            already = await session.scalar(
                select(func.count(Referral.id)).where(Referral.referee_id == referee_id)
            )
            if already or referee.referred_by:
                raise ReferralError("User has already been referred", {"user_id": referee_id})

            now = self.clock()
            referral = Referral(
                referrer_id=referrer_id,
                referee_id=referee_id,
                referral_code=code,
                status="completed",
                referrer_bonus=referrer_bonus,
                referee_bonus=referee_bonus,
                created_at=now,
            )
            session.add(referral)
            referee.referred_by = referrer_id

            await self.ledger.post_credit(
                session,
                referrer,
                referrer_bonus,
                Category.REFERRAL_BONUS,
                reference=generate_reference("referral"),
                description="Referral bonus (referrer)",
                metadata={"referee_id": referee_id},
            )
            await self.ledger.post_credit(
                session,
                referee,
                referee_bonus,
                Category.REFERRAL_BONUS,
                reference=generate_reference("referral"),
                description="Referral bonus (referee)",
                metadata={"referrer_id": referrer_id},
            )

            add_notification(
                session,
                referrer_id,
                "Referral Bonus",
                f"You earned ₦{referrer_bonus} for referring a new user",
                type="referral",
                timestamp=now,
            )
            add_notification(
                session,
                referee_id,
                "Welcome Bonus",
                f"You received a ₦{referee_bonus} welcome bonus",
                type="referral",
                timestamp=now,
            )
            return referral

        referral = await self.ledger.atomic([referee_id, referrer_id], _apply)
        logger.info("🤝 Referral {} -> {} completed", referrer_id, referee_id)

        return ReferralEntry(
            referee_id=referral.referee_id,
            status=referral.status,
            earnings=referral.referrer_bonus,
            created_at=referral.created_at,
        )

    async def referral_stats(self, user_id: str) -> ReferralStats:
        code = await self.ensure_referral_code(user_id)

        async with self.ledger.session_factory() as session:
            rows = (
                await session.execute(
                    select(Referral)
                    .where(Referral.referrer_id == user_id)
                    .order_by(Referral.created_at.desc())
                )
            ).scalars().all()

        completed = [row for row in rows if row.status == "completed"]
        return ReferralStats(
            referral_code=code,
            total_referrals=len(completed),
            total_earnings=sum((row.referrer_bonus for row in completed), Decimal("0.00")),
            tier=tier_for(len(completed), REFERRAL_TIERS),
            referrals=[
                ReferralEntry(
                    referee_id=row.referee_id,
                    status=row.status,
                    earnings=row.referrer_bonus if row.status == "completed" else Decimal("0.00"),
                    created_at=row.created_at,
                )
                for row in rows
            ],
        )

    async def leaderboard(self, limit: int = 10) -> List[Dict[str, object]]:
        """Top referrers by completed referrals"""
        async with self.ledger.session_factory() as session:
            rows = (
                await session.execute(
                    select(
                        Referral.referrer_id,
                        func.count(Referral.id).label("referrals"),
                        func.sum(Referral.referrer_bonus).label("earnings"),
                    )
                    .where(Referral.status == "completed")
                    .group_by(Referral.referrer_id)
                    .order_by(func.count(Referral.id).desc())
                    .limit(limit)
                )
            ).all()

        return [
            {"user_id": row.referrer_id, "referrals": row.referrals, "earnings": Decimal(str(row.earnings))}
            for row in rows
        ]

