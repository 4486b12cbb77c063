"""
test_rewards.py - Points, tiers, redemption and discounts
"""
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from paylink.core.constants import Category, RewardTransactionType
from paylink.core.exception import InsufficientPointsError, InvalidRedemptionError, PaymentProviderError
from paylink.db.models import User
from paylink.services.rewards.points import calculate_points, tier_for
from paylink.services.rewards.service import consume_discount
from tests.conftest import START


@pytest.mark.parametrize(
    "category,amount,points",
    [
        ("airtime", "250", 2),
        ("airtime", "99.99", 0),
        (Category.DATA, "1000", 5),
        ("electricity", "1000", 4),
        ("cabletv", "5000", 7),
        ("savings", "5000", 0),
        ("airtime", "0", 0),
    ],
)
def test_calculate_points(category, amount, points):
    assert calculate_points(category, Decimal(amount)) == points


def test_tiers():
    assert tier_for(0).name == "bronze"
    assert tier_for(0).remaining_to_next == 500

    gold = tier_for(2500)
    assert (gold.name, gold.next_tier, gold.remaining_to_next) == ("gold", "platinum", 2500)

    top = tier_for(9000)
    assert top.name == "platinum" and top.next_tier is None


# =============================================================================
# DISCOUNTS
# =============================================================================

def discounted_user(amount: str, expires_in_days: int = 30) -> User:
    return User(
        uid="u",
        discount_amount=Decimal(amount),
        discount_expires=START + timedelta(days=expires_in_days),
    )


def test_discount_is_used_up():
    user = discounted_user("50")

    assert consume_discount(user, Decimal("100"), START) == Decimal("50")
    assert user.discount_amount == Decimal("0")
    assert user.discount_expires == START + timedelta(days=30)


def test_discount_leaves_one_kobo_to_pay():
    user = discounted_user("50")

    assert consume_discount(user, Decimal("30"), START) == Decimal("29.99")
    assert user.discount_amount == Decimal("20.01")


def test_expired_discount_is_dropped():
    user = discounted_user("50", expires_in_days=-1)

    assert consume_discount(user, Decimal("100"), START) == Decimal("0.00")
    assert user.discount_amount == Decimal("0.00")


# =============================================================================
# SERVICE
# =============================================================================

async def test_award_and_summary(rewards, user):
    assert await rewards.award("user-1", Category.ELECTRICITY, Decimal("50000")) == 200

    summary = await rewards.points_summary("user-1")
    assert summary.current_points == 200
    assert summary.total_earned == 200
    assert summary.total_redeemed == 0
    assert summary.tier.name == "bronze"


async def test_redeem_discount(rewards, user, clock):
    await rewards.award("user-1", Category.ELECTRICITY, Decimal("50000"))

    result = await rewards.redeem("user-1", "discount_50")

    assert result.points_spent == 100
    assert result.remaining_points == 100
    assert result.discount_expires == clock() + timedelta(days=30)

    summary = await rewards.points_summary("user-1")
    assert summary.discount_amount == Decimal("50")
    assert summary.total_redeemed == 100
    assert summary.total_earned == 200


async def test_discounts_stack_until_they_expire(rewards, user, clock):
    await rewards.award("user-1", Category.ELECTRICITY, Decimal("75000"))

    await rewards.redeem("user-1", "discount_50")
    clock.advance(days=10)
    second = await rewards.redeem("user-1", "discount_50")

    assert (await rewards.points_summary("user-1")).discount_amount == Decimal("100")
    assert second.discount_expires == clock() + timedelta(days=30)

    clock.advance(days=31)
    await rewards.redeem("user-1", "discount_50")
    assert (await rewards.points_summary("user-1")).discount_amount == Decimal("50")


async def test_redeem_cashback_credits_wallet(rewards, ledger, user):
    await rewards.award("user-1", Category.ELECTRICITY, Decimal("50000"))

    result = await rewards.redeem("user-1", "cashback_50")

    assert result.transaction_id is not None
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("10050")
    assert len(await ledger.history("user-1", category=Category.REWARD)) == 1


async def test_redeem_airtime_through_payflex(rewards, payflex_stub, user):
    payflex_stub.json("POST", "/buy-airtime", {"status": "successful", "transactionId": "PF-77"})
    await rewards.award("user-1", Category.ELECTRICITY, Decimal("50000"))

    result = await rewards.redeem("user-1", "airtime_100", provider="mtn")

    assert result.provider_reference == "PF-77"
    sent = payflex_stub.last_json()
    assert sent["phone"] == "08031234567"
    assert sent["amount"] == 100.0
    assert payflex_stub.requests[-1].headers["Authorization"] == "Bearer pf-key"


async def test_failed_airtime_gives_points_back(rewards, payflex_stub, user):
    payflex_stub.json("POST", "/buy-airtime", {"message": "network down"}, status_code=503)
    await rewards.award("user-1", Category.ELECTRICITY, Decimal("50000"))

    with pytest.raises(PaymentProviderError):
        await rewards.redeem("user-1", "airtime_100", provider="mtn")

    assert (await rewards.points_summary("user-1")).current_points == 200
    history = await rewards.history("user-1")
    assert [entry.type for entry in history].count(RewardTransactionType.REDEEMED) == 1
    assert any(entry.reason.startswith("Restored: airtime_100") for entry in history)


async def test_timeout_also_gives_points_back(rewards, payflex_stub, user):
    payflex_stub.fail("POST", "/buy-data", httpx.ReadTimeout("slow"))
    await rewards.award("user-1", Category.ELECTRICITY, Decimal("75000"))

    with pytest.raises(PaymentProviderError) as excinfo:
        await rewards.redeem("user-1", "data_200mb", provider="glo")

    assert excinfo.value.definitive is False
    assert (await rewards.points_summary("user-1")).current_points == 300


async def test_redeem_errors(rewards, user):
    with pytest.raises(InvalidRedemptionError):
        await rewards.redeem("user-1", "yacht")
    with pytest.raises(InvalidRedemptionError):
        await rewards.redeem("user-1", "airtime_100")
    with pytest.raises(InsufficientPointsError):
        await rewards.redeem("user-1", "discount_50")


async def test_airtime_reward_needs_phone_number(rewards, ledger):
    await ledger.create_user("user-9", wallet_balance=Decimal("0"))
    await rewards.award("user-9", Category.ELECTRICITY, Decimal("50000"))

    with pytest.raises(InvalidRedemptionError):
        await rewards.redeem("user-9", "airtime_100", provider="mtn")
    assert (await rewards.points_summary("user-9")).current_points == 200
