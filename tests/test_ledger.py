"""
test_ledger.py - Wallet ledger

Tests:
- debit / credit bookkeeping and validation
- reference idempotency
- concurrent debits (no lost updates, no overdraft)
- atomic retry on optimistic-lock conflicts
- main <-> savings transfers and the savings reserve
- settlement: complete, fail + refund, pending credits
- admin remediation of failed transactions
"""
import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from paylink.core.constants import Category, TransactionStatus, TransactionType, WalletKind
from paylink.core.exception import (
    AccountSuspendedError,
    BelowMinimumReserveError,
    ConcurrentModificationError,
    DuplicateReferenceError,
    InsufficientFundsError,
    InvalidTransactionStateError,
    ResourceNotFoundError,
    ValidationError,
)
from paylink.db.models import Transaction, User


async def count_transactions(ledger, user_id: str) -> int:
    async with ledger.session_factory() as session:
        return await session.scalar(select(func.count(Transaction.id)).where(Transaction.user_id == user_id))


# =============================================================================
# DEBIT / CREDIT
# =============================================================================

async def test_debit_records_balances_and_awards_points(ledger, user):
    record = await ledger.debit("user-1", Decimal("250"), Category.AIRTIME, description="MTN airtime")

    assert record.type == TransactionType.DEBIT
    assert record.status == TransactionStatus.SUCCESS
    assert record.wallet_before == Decimal("10000")
    assert record.wallet_after == Decimal("9750")
    assert record.wallet_before - record.amount == record.wallet_after

    balances = await ledger.get_balances("user-1")
    assert balances.wallet_balance == Decimal("9750")
    # airtime earns 1 point per 100
    assert balances.reward_points == 2


async def test_debit_on_empty_wallet_changes_nothing(ledger):
    await ledger.create_user("broke", wallet_balance=Decimal("0"))

    with pytest.raises(InsufficientFundsError):
        await ledger.debit("broke", Decimal("500"), Category.AIRTIME)

    assert (await ledger.get_balances("broke")).wallet_balance == Decimal("0")
    assert await count_transactions(ledger, "broke") == 0


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), Decimal("0.001")])
async def test_debit_rejects_non_positive_amounts(ledger, user, amount):
    with pytest.raises(ValidationError):
        await ledger.debit("user-1", amount, Category.AIRTIME)


async def test_unknown_user_raises_not_found(ledger):
    with pytest.raises(ResourceNotFoundError):
        await ledger.debit("ghost", Decimal("10"), Category.AIRTIME)


async def test_suspended_user_cannot_move_money(ledger, user, security):
    await security.suspend_user("user-1", "chargeback investigation", admin_id="admin-1")

    with pytest.raises(AccountSuspendedError):
        await ledger.debit("user-1", Decimal("10"), Category.AIRTIME)
    with pytest.raises(AccountSuspendedError):
        await ledger.credit("user-1", Decimal("10"), Category.ADJUSTMENT)


async def test_credit_increases_main_wallet(ledger, user):
    record = await ledger.credit("user-1", Decimal("1500.50"), Category.ADJUSTMENT)

    assert record.type == TransactionType.CREDIT
    assert record.wallet_after == Decimal("11500.50")
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("11500.50")


async def test_history_is_newest_first_and_filterable(ledger, user, clock):
    await ledger.debit("user-1", Decimal("100"), Category.AIRTIME)
    clock.advance(minutes=1)
    await ledger.debit("user-1", Decimal("200"), Category.DATA)
    clock.advance(minutes=1)
    await ledger.credit("user-1", Decimal("50"), Category.ADJUSTMENT)

    history = await ledger.history("user-1")
    assert [record.category for record in history] == [Category.ADJUSTMENT, Category.DATA, Category.AIRTIME]

    data_only = await ledger.history("user-1", category=Category.DATA)
    assert len(data_only) == 1 and data_only[0].amount == Decimal("200")


# =============================================================================
# IDEMPOTENCY
# =============================================================================

async def test_repeated_reference_does_not_debit_twice(ledger, user):
    first = await ledger.debit("user-1", Decimal("300"), Category.AIRTIME, reference="REF-1")
    second = await ledger.debit("user-1", Decimal("300"), Category.AIRTIME, reference="REF-1")

    assert first.id == second.id
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("9700")
    assert await count_transactions(ledger, "user-1") == 1


async def test_reference_reused_by_another_user_is_rejected(ledger, user):
    await ledger.create_user("user-2", wallet_balance=Decimal("1000"))
    await ledger.debit("user-1", Decimal("10"), Category.AIRTIME, reference="SHARED")

    with pytest.raises(DuplicateReferenceError):
        await ledger.debit("user-2", Decimal("10"), Category.AIRTIME, reference="SHARED")


# =============================================================================
# CONCURRENCY
# =============================================================================

async def test_concurrent_debits_conserve_money(ledger):
    await ledger.create_user("racer", wallet_balance=Decimal("10000"))

    results = await asyncio.gather(
        *(ledger.debit("racer", Decimal("700"), Category.ADJUSTMENT) for _ in range(20)),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert all(isinstance(exc, InsufficientFundsError) for exc in rejected)
    assert len(succeeded) == 14

    final = (await ledger.get_balances("racer")).wallet_balance
    assert final == Decimal("200")
    assert sum(r.amount for r in succeeded) == Decimal("10000") - final


async def test_user_locks_are_released_after_use(ledger):
    for index in range(50):
        await ledger.create_user(f"visitor-{index}", wallet_balance=Decimal("100"))
    await ledger.debit("visitor-0", Decimal("10"), Category.ADJUSTMENT)

    assert len(ledger._locks) == 0


async def test_atomic_retries_stale_data_then_succeeds(ledger, user):
    calls = 0

    async def flaky(session):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise StaleDataError("version mismatch")
        return "done"

    assert await ledger.atomic("user-1", flaky) == "done"
    assert calls == 2


async def test_atomic_gives_up_after_max_attempts(ledger, user):
    calls = 0

    async def always_stale(session):
        nonlocal calls
        calls += 1
        raise StaleDataError("version mismatch")

    with pytest.raises(ConcurrentModificationError):
        await ledger.atomic("user-1", always_stale)
    assert calls == ledger.max_attempts


async def test_atomic_rolls_back_on_error(ledger, user):
    async def half_done(session):
        row = await ledger.load_user(session, "user-1")
        row.wallet_balance = Decimal("1")
        raise ValidationError("abort")

    with pytest.raises(ValidationError):
        await ledger.atomic("user-1", half_done)

    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("10000")


# =============================================================================
# TRANSFERS
# =============================================================================

async def test_transfer_main_to_savings(ledger, user):
    record = await ledger.transfer("user-1", WalletKind.MAIN, WalletKind.SAVINGS, Decimal("3000"))

    assert record.main_after == Decimal("7000")
    assert record.savings_after == Decimal("5000")
    balances = await ledger.get_balances("user-1")
    assert (balances.wallet_balance, balances.savings_wallet) == (Decimal("7000"), Decimal("5000"))


async def test_transfer_savings_to_main_keeps_reserve(ledger, user):
    with pytest.raises(BelowMinimumReserveError):
        await ledger.transfer("user-1", WalletKind.SAVINGS, WalletKind.MAIN, Decimal("1600"))

    record = await ledger.transfer("user-1", WalletKind.SAVINGS, WalletKind.MAIN, Decimal("1500"))
    assert record.savings_after == Decimal("500")


async def test_transfer_rules(ledger, user):
    with pytest.raises(ValidationError):
        await ledger.transfer("user-1", WalletKind.MAIN, WalletKind.MAIN, Decimal("10"))
    with pytest.raises(ValidationError):
        await ledger.transfer("user-1", WalletKind.MAIN, WalletKind.SAVINGS, Decimal("100000.01"))
    with pytest.raises(InsufficientFundsError):
        await ledger.transfer("user-1", WalletKind.MAIN, WalletKind.SAVINGS, Decimal("10000.01"))

    assert await ledger.transfers("user-1") == []


# =============================================================================
# SETTLEMENT
# =============================================================================

async def test_complete_pending_debit_awards_points(ledger, user):
    pending = await ledger.debit(
        "user-1", Decimal("1000"), Category.ELECTRICITY, status=TransactionStatus.PENDING
    )
    assert (await ledger.get_balances("user-1")).reward_points == 0

    done = await ledger.complete(pending.id, provider_reference="PF-9")

    assert done.status == TransactionStatus.SUCCESS
    assert done.provider_reference == "PF-9"
    # electricity: 2 points per 500
    assert (await ledger.get_balances("user-1")).reward_points == 4

    # completing twice is a no-op
    again = await ledger.complete(pending.id)
    assert again.status == TransactionStatus.SUCCESS
    assert (await ledger.get_balances("user-1")).reward_points == 4


async def test_fail_refunds_pending_debit_once(ledger, user):
    pending = await ledger.debit("user-1", Decimal("2000"), Category.DATA, status=TransactionStatus.PENDING)
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("8000")

    failed = await ledger.fail(pending.id, "provider rejected")
    await ledger.fail(pending.id, "provider rejected")

    assert failed.status == TransactionStatus.FAILED
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("10000")

    refunds = await ledger.history("user-1", category=Category.REFUND)
    assert len(refunds) == 1
    assert refunds[0].related_transaction_id == pending.id
    assert refunds[0].reference == f"{pending.reference}_REFUND"


async def test_cannot_fail_a_successful_transaction(ledger, user):
    record = await ledger.debit("user-1", Decimal("100"), Category.AIRTIME)

    with pytest.raises(InvalidTransactionStateError):
        await ledger.fail(record.id, "too late")


async def test_pending_credit_settles_exactly_once(ledger, user):
    opened = await ledger.open_pending_credit(
        "user-1", Decimal("5000"), Category.WALLET_FUNDING, reference="FUND-1", provider="monnify"
    )
    assert opened.status == TransactionStatus.PENDING
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("10000")

    settled = await ledger.settle_credit("FUND-1", amount=Decimal("5000"))
    await ledger.settle_credit("FUND-1", amount=Decimal("5000"))

    assert settled.status == TransactionStatus.SUCCESS
    assert settled.wallet_after == Decimal("15000")
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("15000")


async def test_settle_credit_rejects_amount_mismatch(ledger, user):
    await ledger.open_pending_credit("user-1", Decimal("5000"), Category.WALLET_FUNDING, reference="FUND-2")

    with pytest.raises(ValidationError):
        await ledger.settle_credit("FUND-2", amount=Decimal("4000"))
    with pytest.raises(ResourceNotFoundError):
        await ledger.settle_credit("NOPE")


# =============================================================================
# REMEDIATION
# =============================================================================

async def test_resolve_failed_refunds_when_missing(ledger, user):
    pending = await ledger.debit("user-1", Decimal("1200"), Category.CABLE_TV, status=TransactionStatus.PENDING)
    await ledger.fail(pending.id, "timeout", refund=False)
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("8800")

    assert [r.id for r in await ledger.list_failed("user-1")] == [pending.id]

    resolved = await ledger.resolve_failed(pending.id, "admin-7", "customer called support")

    assert resolved.resolved_by == "admin-7"
    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("10000")
    assert await ledger.list_failed("user-1") == []
    assert len(await ledger.list_failed("user-1", include_resolved=True)) == 1

    with pytest.raises(InvalidTransactionStateError):
        await ledger.resolve_failed(pending.id, "admin-7", "again")


async def test_resolve_failed_does_not_double_refund(ledger, user):
    pending = await ledger.debit("user-1", Decimal("1200"), Category.CABLE_TV, status=TransactionStatus.PENDING)
    await ledger.fail(pending.id, "rejected", refund=True)

    await ledger.resolve_failed(pending.id, "admin-7", "checked")

    assert (await ledger.get_balances("user-1")).wallet_balance == Decimal("10000")
    assert len(await ledger.history("user-1", category=Category.REFUND)) == 1


async def test_user_version_increments_on_every_write(ledger, user):
    await ledger.debit("user-1", Decimal("1"), Category.ADJUSTMENT)
    await ledger.credit("user-1", Decimal("1"), Category.ADJUSTMENT)

    async with ledger.session_factory() as session:
        row = await session.get(User, "user-1")
    assert row.version == 3
