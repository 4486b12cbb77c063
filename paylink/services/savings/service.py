# paylink/services/savings/service.py
"""
Savings plans: create, withdraw, delete
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.config import settings
from paylink.core.constants import (
    ERROR_MAX_WITHDRAWALS,
    ERROR_PLAN_LOCKED,
    Category,
    SavingsPlanStatus,
)
from paylink.core.exception import (
    InsufficientPlanBalanceError,
    MaxWithdrawalsExceededError,
    ResourceNotFoundError,
    SavingsLockedError,
    ValidationError,
)
from paylink.core.logging import logger
from paylink.core.utils import generate_reference, new_id, to_money, utcnow
from paylink.db.models import SavingsPlan
from paylink.schemas.savings import (
    PlanDeletionResult,
    SavingsPlanCreate,
    SavingsPlanState,
    WithdrawalResult,
)
from paylink.services.savings.accrual import accrue
from paylink.services.wallet.ledger import WalletLedger


class SavingsService:
    """Savings plans funded from, and paid back to, the main wallet"""

    def __init__(
        self,
        ledger: WalletLedger,
        clock: Callable[[], datetime] = utcnow,
        max_withdrawals: int | None = None,
    ) -> None:
        self.ledger = ledger
        self.clock = clock
        self.max_withdrawals = max_withdrawals or settings.SAVINGS_MAX_WITHDRAWALS

    async def _load_plan(self, session: AsyncSession, user_id: str, plan_id: str) -> SavingsPlan:
        plan = await session.get(SavingsPlan, plan_id)
        if plan is None or plan.user_id != user_id:
            raise ResourceNotFoundError("Savings plan not found", {"plan_id": plan_id})
        return plan

    @staticmethod
    def _validate(data: SavingsPlanCreate) -> None:
        if not data.plan_name:
            raise ValidationError("Plan name is required")
        if data.target_amount <= 0:
            raise ValidationError("Target amount must be greater than 0")
        if data.initial_amount <= 0:
            raise ValidationError("Initial amount must be greater than 0")
        if data.interest_rate < 0 or data.interest_rate > 100:
            raise ValidationError("Interest rate must be between 0 and 100%")

    async def create_plan(self, user_id: str, data: SavingsPlanCreate) -> SavingsPlanState:
        """Debit the initial amount and open the plan in one transaction"""
        self._validate(data)
        initial = to_money(data.initial_amount)

        async def _create(session: AsyncSession) -> SavingsPlan:
            user = await self.ledger.load_user(session, user_id)
            now = self.clock()

            plan = SavingsPlan(
                id=new_id(),
                user_id=user_id,
                plan_name=data.plan_name,
                target_amount=to_money(data.target_amount),
                current_amount=initial,
                initial_amount=initial,
                interest_rate=data.interest_rate,
                interval=data.interval,
                lock_days=data.lock_days,
                withdrawal_count=0,
                max_withdrawals=self.max_withdrawals,
                status=SavingsPlanStatus.ACTIVE,
                created_at=now,
                updated_at=now,
                maturity_date=now + timedelta(days=data.lock_days),
            )

            await self.ledger.post_debit(
                session,
                user,
                initial,
                Category.SAVINGS,
                reference=generate_reference("savings"),
                description=f"Savings plan: {data.plan_name}",
                metadata={"plan_id": plan.id},
            )
            session.add(plan)
            return plan

        plan = await self.ledger.atomic(user_id, _create)
        logger.info("🐷 Savings plan {} created for {} with ₦{}", plan.id, user_id, initial)
        return SavingsPlanState.model_validate(plan)

    async def withdraw(self, user_id: str, plan_id: str, amount: Decimal) -> WithdrawalResult:
        """
        Withdraw to the main wallet.

        Checked in order: withdrawal cap, lock period, amount, plan balance
        (current amount plus interest accrued so far).
        """

        async def _withdraw(session: AsyncSession) -> WithdrawalResult:
            plan = await self._load_plan(session, user_id, plan_id)
            now = self.clock()

            if plan.withdrawal_count >= plan.max_withdrawals:
                raise MaxWithdrawalsExceededError(
                    ERROR_MAX_WITHDRAWALS.format(limit=plan.max_withdrawals),
                    {"plan_id": plan_id, "withdrawal_count": plan.withdrawal_count},
                )

            unlocks_at = plan.created_at + timedelta(days=plan.lock_days)
            if now < unlocks_at:
                raise SavingsLockedError(
                    ERROR_PLAN_LOCKED.format(until=unlocks_at.date().isoformat()),
                    {"plan_id": plan_id, "unlocks_at": unlocks_at.isoformat()},
                )

            value = to_money(amount)
            if value <= 0:
                raise ValidationError("Withdrawal amount must be greater than 0")

            interest = accrue(plan, now)
            available = plan.current_amount + interest
            if value > available:
                raise InsufficientPlanBalanceError(
                    f"Insufficient balance. Available: ₦{available}",
                    {"plan_id": plan_id, "available": str(available)},
                )

            user = await self.ledger.load_user(session, user_id)

            plan.current_amount = available - value
            plan.withdrawal_count += 1
            plan.updated_at = now
            if plan.current_amount == 0:
                plan.status = SavingsPlanStatus.CLOSED

            user.interest_earned = user.interest_earned + interest
            txn = await self.ledger.post_credit(
                session,
                user,
                value,
                Category.SAVINGS_WITHDRAWAL,
                reference=generate_reference("withdrawal"),
                description=f"Withdrawal from: {plan.plan_name}",
                metadata={"plan_id": plan.id, "interest_applied": str(interest)},
            )

            return WithdrawalResult(
                plan=SavingsPlanState.model_validate(plan),
                amount=value,
                interest_applied=interest,
                transaction_id=txn.id,
                remaining_withdrawals=plan.max_withdrawals - plan.withdrawal_count,
            )

        result = await self.ledger.atomic(user_id, _withdraw)
        logger.info(
            "🐷 Withdrawal ₦{} from plan {} (interest ₦{})",
            result.amount,
            plan_id,
            result.interest_applied,
        )
        return result

    async def delete_plan(self, user_id: str, plan_id: str) -> PlanDeletionResult:
        """Refund the plan balance plus accrued interest and remove it"""

        async def _delete(session: AsyncSession) -> PlanDeletionResult:
            plan = await self._load_plan(session, user_id, plan_id)
            user = await self.ledger.load_user(session, user_id)

            interest = accrue(plan, self.clock())
            refund = plan.current_amount + interest

            txn_id = None
            if refund > 0:
                user.interest_earned = user.interest_earned + interest
                txn = await self.ledger.post_credit(
                    session,
                    user,
                    refund,
                    Category.SAVINGS_REFUND,
                    reference=generate_reference("savings_refund"),
                    description=f"Refund from deleted plan: {plan.plan_name}",
                    metadata={"plan_id": plan.id, "interest_applied": str(interest)},
                )
                txn_id = txn.id

            await session.delete(plan)
            return PlanDeletionResult(
                plan_id=plan_id,
                refunded_amount=refund,
                interest_applied=interest,
                transaction_id=txn_id,
            )

        result = await self.ledger.atomic(user_id, _delete)
        logger.info("🗑️ Plan {} deleted, ₦{} refunded to {}", plan_id, result.refunded_amount, user_id)
        return result

    async def list_plans(self, user_id: str) -> List[SavingsPlanState]:
        query = (
            select(SavingsPlan)
            .where(SavingsPlan.user_id == user_id)
            .order_by(SavingsPlan.created_at.desc())
        )
        async with self.ledger.session_factory() as session:
            plans = (await session.execute(query)).scalars().all()
        return [SavingsPlanState.model_validate(plan) for plan in plans]

    async def get_plan(self, user_id: str, plan_id: str) -> SavingsPlanState:
        async with self.ledger.session_factory() as session:
            plan = await self._load_plan(session, user_id, plan_id)
        return SavingsPlanState.model_validate(plan)

    async def accrued_interest(self, user_id: str, plan_id: str) -> Decimal:
        """Interest the plan would pay out right now"""
        async with self.ledger.session_factory() as session:
            plan = await self._load_plan(session, user_id, plan_id)
        return accrue(plan, self.clock())
