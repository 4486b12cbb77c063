"""
test_referrals.py - Referral codes and bonuses
"""
from decimal import Decimal

import pytest

from paylink.core.constants import Category, REFERRAL_CODE_PREFIX
from paylink.core.exception import ReferralError
from paylink.services.referrals.service import ReferralService, generate_referral_code


@pytest.fixture
async def referee(ledger):
    return await ledger.create_user("user-2", display_name="Bola", wallet_balance=Decimal("0"))


def test_generated_code_shape():
    code = generate_referral_code()
    assert code.startswith(REFERRAL_CODE_PREFIX)
    assert len(code) == len(REFERRAL_CODE_PREFIX) + 6
    assert code.isalnum() and code.upper() == code


async def test_code_is_stable(referrals, user):
    first = await referrals.ensure_referral_code("user-1")
    assert await referrals.ensure_referral_code("user-1") == first
    assert await referrals.validate_referral_code(first.lower())


async def test_code_collision_retries(ledger, clock, user, referee):
    codes = iter(["PAYAAAAAA", "PAYAAAAAA", "PAYBBBBBB"])
    service = ReferralService(ledger, clock=clock, code_factory=lambda: next(codes))

    assert await service.ensure_referral_code("user-1") == "PAYAAAAAA"
    assert await service.ensure_referral_code("user-2") == "PAYBBBBBB"


async def test_code_space_exhausted(ledger, clock, user, referee):
    service = ReferralService(ledger, clock=clock, code_factory=lambda: "PAYAAAAAA")
    await service.ensure_referral_code("user-1")

    with pytest.raises(ReferralError):
        await service.ensure_referral_code("user-2")


async def test_apply_pays_both_sides(referrals, ledger, security, user, referee):
    code = await referrals.ensure_referral_code("user-1")

    entry = await referrals.apply_referral("user-2", f"  {code.lower()} ")

    assert entry.referee_id == "user-2"
    assert entry.earnings == Decimal("500")
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("10500")
    assert (await ledger.get_balances("user-2")).wallet_balance == Decimal("200")
    assert (await ledger.get_user("user-2")).referred_by == "user-1"
    assert len(await ledger.history("user-2", category=Category.REFERRAL_BONUS)) == 1

    titles = [n.title for n in await security.notifications("user-2")]
    assert titles == ["Welcome Bonus"]


async def test_apply_rejections(referrals, ledger, user, referee):
    code = await referrals.ensure_referral_code("user-1")

    with pytest.raises(ReferralError):
        await referrals.apply_referral("user-2", "PAYNOPE00")
    with pytest.raises(ReferralError):
        await referrals.apply_referral("user-1", code)

    await referrals.apply_referral("user-2", code)
    with pytest.raises(ReferralError):
        await referrals.apply_referral("user-2", code)

    # the second attempt paid nothing
    assert (await ledger.get_balances("user-2")).wallet_balance == Decimal("200")


async def test_stats_and_leaderboard(referrals, ledger, user, referee):
    await ledger.create_user("user-3")
    code = await referrals.ensure_referral_code("user-1")
    await referrals.apply_referral("user-2", code)
    await referrals.apply_referral("user-3", code)

    stats = await referrals.referral_stats("user-1")
    assert stats.referral_code == code
    assert stats.total_referrals == 2
    assert stats.total_earnings == Decimal("1000")
    assert stats.tier.name == "starter"
    assert stats.tier.remaining_to_next == 3

    board = await referrals.leaderboard()
    assert board == [{"user_id": "user-1", "referrals": 2, "earnings": Decimal("1000")}]
