"""
test_savings.py - Savings accrual and plans

Tests:
- compound interest formula and rounding
- plan creation debits the main wallet atomically
- withdrawal rule order: cap, lock period, amount, balance
- plan deletion refunds principal plus accrued interest
"""
from decimal import Decimal, ROUND_HALF_UP

import pytest
from hypothesis import given, strategies as st

from paylink.core.constants import Category, SavingsInterval, SavingsPlanStatus
from paylink.core.exception import (
    InsufficientFundsError,
    InsufficientPlanBalanceError,
    MaxWithdrawalsExceededError,
    ResourceNotFoundError,
    SavingsLockedError,
    ValidationError,
)
from paylink.schemas.savings import SavingsPlanCreate
from paylink.services.savings.accrual import calculate_interest, compounding_frequency


def plan_request(**overrides) -> SavingsPlanCreate:
    data = {
        "plan_name": "  Rent  ",
        "target_amount": Decimal("50000"),
        "initial_amount": Decimal("5000"),
        "interest_rate": Decimal("5"),
        "interval": SavingsInterval.MONTHLY,
        "lock_days": 30,
    }
    data.update(overrides)
    return SavingsPlanCreate(**data)


# =============================================================================
# ACCRUAL
# =============================================================================

def test_monthly_interest_matches_formula():
    expected = (Decimal(10000) * ((1 + Decimal(5) / 100 / 12) ** 30 - 1)).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
    assert calculate_interest(Decimal("10000"), Decimal("5"), 30, SavingsInterval.MONTHLY) == expected
    assert Decimal("1320") < expected < Decimal("1340")


def test_compounding_frequencies():
    assert compounding_frequency(SavingsInterval.DAILY) == 365
    assert compounding_frequency(SavingsInterval.WEEKLY) == 52
    assert compounding_frequency(SavingsInterval.MONTHLY) == 12


@pytest.mark.parametrize("days,principal", [(0, "1000"), (-3, "1000"), (10, "0")])
def test_no_interest_without_time_or_principal(days, principal):
    assert calculate_interest(Decimal(principal), Decimal("5"), days, SavingsInterval.DAILY) == Decimal("0.00")


@given(
    principal=st.decimals(min_value=1, max_value=1_000_000, places=2),
    days=st.integers(min_value=1, max_value=365),
)
def test_interest_grows_with_time(principal, days):
    earlier = calculate_interest(principal, Decimal("10"), days, SavingsInterval.DAILY)
    later = calculate_interest(principal, Decimal("10"), days + 1, SavingsInterval.DAILY)
    assert Decimal("0") <= earlier <= later


# =============================================================================
# PLANS
# =============================================================================

async def test_create_plan_debits_wallet(savings, ledger, user, clock):
    plan = await savings.create_plan("user-1", plan_request())

    assert plan.plan_name == "Rent"
    assert plan.current_amount == Decimal("5000")
    assert plan.max_withdrawals == 3
    assert (plan.maturity_date - plan.created_at).days == 30
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("5000")

    debits = await ledger.history("user-1", category=Category.SAVINGS)
    assert len(debits) == 1 and debits[0].metadata["plan_id"] == plan.id


@pytest.mark.parametrize(
    "overrides",
    [
        {"plan_name": "   "},
        {"target_amount": Decimal("0")},
        {"initial_amount": Decimal("0")},
        {"interest_rate": Decimal("101")},
    ],
)
async def test_create_plan_validation(savings, user, overrides):
    with pytest.raises(ValidationError):
        await savings.create_plan("user-1", plan_request(**overrides))


async def test_create_plan_without_funds_leaves_no_plan(savings, ledger, user):
    with pytest.raises(InsufficientFundsError):
        await savings.create_plan("user-1", plan_request(initial_amount=Decimal("20000")))

    assert await savings.list_plans("user-1") == []
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("10000")


async def test_withdraw_inside_lock_period_is_refused(savings, user, clock):
    plan = await savings.create_plan("user-1", plan_request())
    clock.advance(days=29)

    with pytest.raises(SavingsLockedError):
        await savings.withdraw("user-1", plan.id, Decimal("100"))


async def test_withdraw_applies_interest(savings, ledger, user, clock):
    plan = await savings.create_plan("user-1", plan_request())
    clock.advance(days=31)
    interest = calculate_interest(Decimal("5000"), Decimal("5"), 31, SavingsInterval.MONTHLY)

    result = await savings.withdraw("user-1", plan.id, Decimal("1000"))

    assert result.interest_applied == interest
    assert result.plan.current_amount == Decimal("4000") + interest
    assert result.plan.withdrawal_count == 1
    assert result.remaining_withdrawals == 2

    balances = await ledger.get_balances("user-1")
    assert balances.wallet_balance == Decimal("6000")
    assert balances.interest_earned == interest


async def test_withdrawal_cap_wins_over_amount(savings, user, clock):
    plan = await savings.create_plan("user-1", plan_request(lock_days=0))
    for _ in range(3):
        await savings.withdraw("user-1", plan.id, Decimal("10"))

    with pytest.raises(MaxWithdrawalsExceededError):
        await savings.withdraw("user-1", plan.id, Decimal("999999"))


async def test_withdraw_more_than_plan_holds(savings, user):
    plan = await savings.create_plan("user-1", plan_request(lock_days=0))

    with pytest.raises(InsufficientPlanBalanceError):
        await savings.withdraw("user-1", plan.id, Decimal("5000.01"))
    with pytest.raises(ValidationError):
        await savings.withdraw("user-1", plan.id, Decimal("0"))


async def test_full_withdrawal_closes_plan(savings, user):
    plan = await savings.create_plan("user-1", plan_request(lock_days=0))

    result = await savings.withdraw("user-1", plan.id, Decimal("5000"))

    assert result.plan.current_amount == Decimal("0")
    assert result.plan.status == SavingsPlanStatus.CLOSED


async def test_delete_plan_refunds_with_interest(savings, ledger, user, clock):
    plan = await savings.create_plan("user-1", plan_request())
    clock.advance(days=10)
    interest = calculate_interest(Decimal("5000"), Decimal("5"), 10, SavingsInterval.MONTHLY)

    result = await savings.delete_plan("user-1", plan.id)

    assert result.refunded_amount == Decimal("5000") + interest
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("10000") + interest
    assert len(await ledger.history("user-1", category=Category.SAVINGS_REFUND)) == 1

    with pytest.raises(ResourceNotFoundError):
        await savings.get_plan("user-1", plan.id)


async def test_plans_are_private_to_their_owner(savings, ledger, user):
    await ledger.create_user("user-2", wallet_balance=Decimal("100"))
    plan = await savings.create_plan("user-1", plan_request())

    with pytest.raises(ResourceNotFoundError):
        await savings.withdraw("user-2", plan.id, Decimal("1"))
    assert await savings.list_plans("user-2") == []
