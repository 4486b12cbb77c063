# paylink/services/savings/accrual.py
"""
Compound interest on savings plans.

Interest is never booked on a schedule. It is computed from the plan's
`updated_at` whenever money leaves the plan.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from paylink.core.constants import COMPOUNDING_FREQUENCY, MONEY_PLACES, SavingsInterval
from paylink.db.models import SavingsPlan


def compounding_frequency(interval: SavingsInterval) -> int:
    return COMPOUNDING_FREQUENCY[SavingsInterval(interval)]


def calculate_interest(
    principal: Decimal,
    rate: Decimal,
    days: int,
    interval: SavingsInterval,
) -> Decimal:
    """
    A = P * ((1 + r/100/f) ** days - 1), rounded half-up to kobo.

    Args:
        principal: plan balance the interest is earned on
        rate: annual rate in percent
        days: whole days elapsed
        interval: compounding interval, picks f (365 / 52 / 12)
    """
    principal = Decimal(principal)
    if days <= 0 or principal <= 0:
        return Decimal("0.00")

    periodic = Decimal(rate) / Decimal(100) / Decimal(compounding_frequency(interval))
    interest = principal * ((Decimal(1) + periodic) ** days - Decimal(1))
    return interest.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def days_elapsed(since: datetime, as_of: datetime) -> int:
    return max((as_of - since).days, 0)


def accrue(plan: SavingsPlan, as_of: datetime) -> Decimal:
    """Interest owed on `plan` since it was last touched"""
    return calculate_interest(
        plan.current_amount,
        plan.interest_rate,
        days_elapsed(plan.updated_at, as_of),
        plan.interval,
    )
