# paylink/services/wallet/ledger.py
"""
Wallet ledger

Every balance change goes through `WalletLedger.atomic`: one database
transaction per operation, a per-user asyncio lock inside this process
and the optimistic `version` column across processes.
"""
import asyncio
import weakref
from contextlib import AsyncExitStack
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar, Union
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from paylink.core.config import settings
from paylink.core.constants import (
    ERROR_INSUFFICIENT_FUNDS,
    ERROR_MIN_RESERVE,
    Category,
    TransactionStatus,
    TransactionType,
    WalletKind,
)
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
from paylink.core.logging import logger
from paylink.core.utils import generate_reference, new_id, to_money, utcnow
from paylink.db.models import Transaction, User, WalletTransfer
from paylink.schemas.fraud import TransactionContext
from paylink.schemas.wallet import TransactionRecord, TransferRecord, WalletBalances
from paylink.services.rewards.points import award_in_session
from paylink.services.wallet.validators import WalletValidator

T = TypeVar("T")

Operation = Callable[[AsyncSession], Awaitable[T]]


class WalletLedger:
    """
    Main and savings balances plus the immutable transaction log
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        validator: WalletValidator | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.validator = validator or WalletValidator()
        self.clock = clock
        self.max_attempts = max_attempts or settings.LEDGER_MAX_ATTEMPTS
        # An entry lives only while some operation holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    # ==================== ATOMIC UNIT ====================

    async def atomic(self, user_id: Union[str, Iterable[str]], operation: Operation) -> T:
        """
        Run `operation(session)` in one database transaction while holding
        the lock of every user it touches.

        A concurrent writer in another process shows up as StaleDataError
        on flush; the whole operation is retried on a fresh session.
        """
        user_ids = [user_id] if isinstance(user_id, str) else sorted(set(user_id))
        locks = [self._lock_for(uid) for uid in user_ids]

        async with AsyncExitStack() as stack:
            # Sorted acquisition so two multi-user operations cannot deadlock
            for lock in locks:
                await stack.enter_async_context(lock)

            for attempt in range(1, self.max_attempts + 1):
                try:
                    async with self._session_factory.begin() as session:
                        return await operation(session)
                except StaleDataError:
                    logger.warning(
                        "🔁 Concurrent update on {} (attempt {}/{})",
                        ",".join(user_ids),
                        attempt,
                        self.max_attempts,
                    )

        raise ConcurrentModificationError(
            "Balance changed concurrently, please retry",
            {"user_ids": user_ids, "attempts": self.max_attempts},
        )

    # ==================== SESSION HELPERS ====================

    async def load_user(
        self,
        session: AsyncSession,
        user_id: str,
        require_active: bool = True,
    ) -> User:
        """Fetch a user row inside `session` (row-locked where the backend supports it)"""
        result = await session.execute(
            select(User).where(User.uid == user_id).with_for_update()
        )
        user = result.scalar_one_or_none()

        if user is None:
            raise ResourceNotFoundError(f"User {user_id} not found", {"user_id": user_id})

        if require_active and user.suspended:
            raise AccountSuspendedError(
                "Account is suspended",
                {"user_id": user_id, "reason": user.suspension_reason},
            )

        return user

    async def find_by_reference(self, session: AsyncSession, reference: str) -> Optional[Transaction]:
        result = await session.execute(select(Transaction).where(Transaction.reference == reference))
        return result.scalar_one_or_none()

    async def _check_reference(
        self,
        session: AsyncSession,
        user: User,
        reference: str,
        txn_type: TransactionType,
    ) -> Optional[Transaction]:
        existing = await self.find_by_reference(session, reference)
        if existing is None:
            return None

        if existing.user_id != user.uid or existing.type != txn_type:
            raise DuplicateReferenceError(
                f"Reference {reference} already used",
                {"reference": reference},
            )

        logger.info("♻️ Replayed reference {} -> {}", reference, existing.id)
        return existing

    def _validated(self, amount: Any) -> Decimal:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero", {"amount": str(amount)})
        if not self.validator.validate_amount(amount):
            raise ValidationError(f"Invalid amount: ₦{amount}", {"amount": str(amount)})
        return amount

    async def post_debit(
        self,
        session: AsyncSession,
        user: User,
        amount: Decimal,
        category: Category,
        reference: str | None = None,
        description: str | None = None,
        metadata: Dict[str, Any] | None = None,
        status: TransactionStatus = TransactionStatus.SUCCESS,
        context: TransactionContext | None = None,
        provider: str | None = None,
    ) -> Transaction:
        """Take `amount` from the main wallet of an already loaded user"""
        amount = self._validated(amount)
        reference = reference or generate_reference(category.value)

        existing = await self._check_reference(session, user, reference, TransactionType.DEBIT)
        if existing is not None:
            return existing

        before = user.wallet_balance
        if before < amount:
            raise InsufficientFundsError(
                ERROR_INSUFFICIENT_FUNDS.format(available=before, required=amount),
                {"available": str(before), "required": str(amount)},
            )

        user.wallet_balance = before - amount

        txn = Transaction(
            id=new_id(),
            user_id=user.uid,
            type=TransactionType.DEBIT,
            category=category,
            amount=amount,
            reference=reference,
            status=status,
            description=description,
            provider=provider,
            meta=metadata or {},
            wallet_before=before,
            wallet_after=user.wallet_balance,
            timestamp=self.clock(),
            completed_at=self.clock() if status == TransactionStatus.SUCCESS else None,
        )
        if context is not None:
            if context.location is not None:
                txn.latitude = context.location.lat
                txn.longitude = context.location.lng
            if context.device is not None:
                txn.device_fingerprint = context.device.fingerprint
        session.add(txn)

        if status == TransactionStatus.SUCCESS:
            await award_in_session(session, user, category, amount, txn.id)

        logger.info(
            "💸 Debit {} ₦{} {} ({}) -> balance ₦{}",
            user.uid,
            amount,
            category.value,
            status.value,
            user.wallet_balance,
        )
        return txn

    async def post_credit(
        self,
        session: AsyncSession,
        user: User,
        amount: Decimal,
        category: Category,
        reference: str | None = None,
        description: str | None = None,
        metadata: Dict[str, Any] | None = None,
        provider: str | None = None,
        provider_reference: str | None = None,
        related_transaction_id: str | None = None,
    ) -> Transaction:
        """Add `amount` to the main wallet of an already loaded user"""
        amount = self._validated(amount)
        reference = reference or generate_reference(category.value)

        existing = await self._check_reference(session, user, reference, TransactionType.CREDIT)
        if existing is not None:
            return existing

        before = user.wallet_balance
        user.wallet_balance = before + amount

        txn = Transaction(
            id=new_id(),
            user_id=user.uid,
            type=TransactionType.CREDIT,
            category=category,
            amount=amount,
            reference=reference,
            status=TransactionStatus.SUCCESS,
            description=description,
            provider=provider,
            provider_reference=provider_reference,
            meta=metadata or {},
            wallet_before=before,
            wallet_after=user.wallet_balance,
            timestamp=self.clock(),
            completed_at=self.clock(),
            related_transaction_id=related_transaction_id,
        )
        session.add(txn)

        logger.info(
            "💰 Credit {} ₦{} {} -> balance ₦{}",
            user.uid,
            amount,
            category.value,
            user.wallet_balance,
        )
        return txn

    # ==================== PUBLIC OPERATIONS ====================

    async def create_user(
        self,
        user_id: str,
        email: str | None = None,
        phone_number: str | None = None,
        display_name: str | None = None,
        wallet_balance: Decimal | int | str = Decimal("0"),
        savings_wallet: Decimal | int | str = Decimal("0"),
    ) -> User:
        """Create a user row (no-op if it already exists)"""

        async def _create(session: AsyncSession) -> User:
            user = await session.get(User, user_id)
            if user is not None:
                return user

            user = User(
                uid=user_id,
                email=email,
                phone_number=phone_number,
                display_name=display_name,
                wallet_balance=to_money(wallet_balance),
                savings_wallet=to_money(savings_wallet),
                interest_earned=Decimal("0.00"),
                interest_rate=settings.SAVINGS_DEFAULT_RATE,
                reward_points=0,
                lifetime_points=0,
                discount_amount=Decimal("0.00"),
                created_at=self.clock(),
                updated_at=self.clock(),
            )
            session.add(user)
            logger.info("👤 User created: {}", user_id)
            return user

        return await self.atomic(user_id, _create)

    async def debit(
        self,
        user_id: str,
        amount: Decimal,
        category: Category,
        *,
        reference: str | None = None,
        description: str | None = None,
        metadata: Dict[str, Any] | None = None,
        status: TransactionStatus = TransactionStatus.SUCCESS,
        context: TransactionContext | None = None,
        provider: str | None = None,
    ) -> TransactionRecord:
        """
        Debit the main wallet.

        Raises:
            ValidationError: amount <= 0
            ResourceNotFoundError: unknown user
            AccountSuspendedError: suspended user
            InsufficientFundsError: balance lower than amount
        """

        async def _debit(session: AsyncSession) -> Transaction:
            user = await self.load_user(session, user_id)
            return await self.post_debit(
                session,
                user,
                amount,
                category,
                reference=reference,
                description=description,
                metadata=metadata,
                status=status,
                context=context,
                provider=provider,
            )

        txn = await self.atomic(user_id, _debit)
        return TransactionRecord.model_validate(txn)

    async def credit(
        self,
        user_id: str,
        amount: Decimal,
        category: Category,
        *,
        reference: str | None = None,
        description: str | None = None,
        metadata: Dict[str, Any] | None = None,
        provider: str | None = None,
        provider_reference: str | None = None,
        related_transaction_id: str | None = None,
    ) -> TransactionRecord:
        """Credit the main wallet"""

        async def _credit(session: AsyncSession) -> Transaction:
            user = await self.load_user(session, user_id)
            return await self.post_credit(
                session,
                user,
                amount,
                category,
                reference=reference,
                description=description,
                metadata=metadata,
                provider=provider,
                provider_reference=provider_reference,
                related_transaction_id=related_transaction_id,
            )

        txn = await self.atomic(user_id, _credit)
        return TransactionRecord.model_validate(txn)

    async def transfer(
        self,
        user_id: str,
        source: WalletKind,
        target: WalletKind,
        amount: Decimal,
    ) -> TransferRecord:
        """
        Move money between the main and savings wallets.

        Savings -> main must leave MIN_SAVINGS_RESERVE behind.
        """
        amount = self._validated(amount)

        if source == target:
            raise ValidationError("Source and target wallets must differ")

        if not self.validator.validate_transfer_amount(amount):
            raise ValidationError(
                f"Maximum transfer amount is ₦{self.validator.max_transfer}",
                {"amount": str(amount), "limit": str(self.validator.max_transfer)},
            )

        async def _transfer(session: AsyncSession) -> WalletTransfer:
            user = await self.load_user(session, user_id)
            main_before = user.wallet_balance
            savings_before = user.savings_wallet

            if source == WalletKind.MAIN:
                if main_before < amount:
                    raise InsufficientFundsError(
                        ERROR_INSUFFICIENT_FUNDS.format(available=main_before, required=amount),
                        {"wallet": source.value, "available": str(main_before)},
                    )
                user.wallet_balance = main_before - amount
                user.savings_wallet = savings_before + amount
            else:
                if savings_before < amount:
                    raise InsufficientFundsError(
                        ERROR_INSUFFICIENT_FUNDS.format(available=savings_before, required=amount),
                        {"wallet": source.value, "available": str(savings_before)},
                    )
                if not self.validator.keeps_savings_reserve(savings_before, amount):
                    raise BelowMinimumReserveError(
                        ERROR_MIN_RESERVE.format(reserve=self.validator.min_savings_reserve),
                        {"available": str(savings_before - self.validator.min_savings_reserve)},
                    )
                user.savings_wallet = savings_before - amount
                user.wallet_balance = main_before + amount

            record = WalletTransfer(
                id=new_id(),
                user_id=user_id,
                source=source,
                target=target,
                amount=amount,
                main_before=main_before,
                main_after=user.wallet_balance,
                savings_before=savings_before,
                savings_after=user.savings_wallet,
                timestamp=self.clock(),
            )
            session.add(record)
            return record

        record = await self.atomic(user_id, _transfer)
        logger.info("🔄 Transfer {} ₦{} {} -> {}", user_id, amount, source.value, target.value)
        return TransferRecord.model_validate(record)

    # ==================== SETTLEMENT ====================

    async def _owner_of(self, transaction_id: str) -> str:
        async with self._session_factory() as session:
            txn = await session.get(Transaction, transaction_id)
        if txn is None:
            raise ResourceNotFoundError(
                f"Transaction {transaction_id} not found",
                {"transaction_id": transaction_id},
            )
        return txn.user_id

    async def _load_transaction(self, session: AsyncSession, transaction_id: str) -> Transaction:
        txn = await session.get(Transaction, transaction_id, with_for_update=True)
        if txn is None:
            raise ResourceNotFoundError(
                f"Transaction {transaction_id} not found",
                {"transaction_id": transaction_id},
            )
        return txn

    async def complete(
        self,
        transaction_id: str,
        provider_reference: str | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> TransactionRecord:
        """pending debit -> success, awarding points"""
        user_id = await self._owner_of(transaction_id)

        async def _complete(session: AsyncSession) -> Transaction:
            txn = await self._load_transaction(session, transaction_id)

            if txn.status == TransactionStatus.SUCCESS:
                return txn
            if txn.status != TransactionStatus.PENDING or txn.type != TransactionType.DEBIT:
                raise InvalidTransactionStateError(
                    f"Cannot complete a {txn.status.value} {txn.type.value}",
                    {"transaction_id": transaction_id},
                )

            txn.status = TransactionStatus.SUCCESS
            txn.completed_at = self.clock()
            if provider_reference:
                txn.provider_reference = provider_reference
            if metadata:
                txn.meta = {**(txn.meta or {}), **metadata}

            user = await self.load_user(session, txn.user_id, require_active=False)
            await award_in_session(session, user, txn.category, txn.amount, txn.id)
            return txn

        txn = await self.atomic(user_id, _complete)
        logger.info("✅ Transaction {} completed", transaction_id)
        return TransactionRecord.model_validate(txn)

    async def _refund_in_session(
        self,
        session: AsyncSession,
        txn: Transaction,
        description: str,
    ) -> Transaction:
        user = await self.load_user(session, txn.user_id, require_active=False)
        return await self.post_credit(
            session,
            user,
            txn.amount,
            Category.REFUND,
            reference=f"{txn.reference}_REFUND",
            description=description,
            metadata={"refunded_category": txn.category.value},
            related_transaction_id=txn.id,
        )

    async def fail(
        self,
        transaction_id: str,
        reason: str,
        refund: bool = True,
    ) -> TransactionRecord:
        """
        pending -> failed. For debits, `refund` appends a compensating
        credit linked through related_transaction_id.
        """
        user_id = await self._owner_of(transaction_id)

        async def _fail(session: AsyncSession) -> Transaction:
            txn = await self._load_transaction(session, transaction_id)

            if txn.status == TransactionStatus.FAILED:
                return txn
            if txn.status != TransactionStatus.PENDING:
                raise InvalidTransactionStateError(
                    f"Cannot fail a {txn.status.value} transaction",
                    {"transaction_id": transaction_id},
                )

            txn.status = TransactionStatus.FAILED
            txn.failure_reason = reason[:255]
            txn.completed_at = self.clock()

            if refund and txn.type == TransactionType.DEBIT:
                await self._refund_in_session(session, txn, f"Refund: {txn.description or txn.category.value}")
            return txn

        txn = await self.atomic(user_id, _fail)
        logger.warning("❌ Transaction {} failed: {} (refund={})", transaction_id, reason, refund)
        return TransactionRecord.model_validate(txn)

    async def open_pending_credit(
        self,
        user_id: str,
        amount: Decimal,
        category: Category,
        reference: str,
        provider: str | None = None,
        description: str | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> TransactionRecord:
        """Record an expected credit (wallet funding) without touching the balance"""
        amount = self._validated(amount)

        async def _open(session: AsyncSession) -> Transaction:
            user = await self.load_user(session, user_id)
            existing = await self._check_reference(session, user, reference, TransactionType.CREDIT)
            if existing is not None:
                return existing

            txn = Transaction(
                id=new_id(),
                user_id=user.uid,
                type=TransactionType.CREDIT,
                category=category,
                amount=amount,
                reference=reference,
                status=TransactionStatus.PENDING,
                description=description,
                provider=provider,
                meta=metadata or {},
                timestamp=self.clock(),
            )
            session.add(txn)
            return txn

        txn = await self.atomic(user_id, _open)
        logger.info("⏳ Pending credit {} ₦{} ({})", user_id, amount, reference)
        return TransactionRecord.model_validate(txn)

    async def settle_credit(
        self,
        reference: str,
        amount: Decimal | None = None,
        provider_reference: str | None = None,
    ) -> TransactionRecord:
        """
        Apply a pending credit exactly once. Settling an already
        successful credit returns it unchanged.
        """
        async with self._session_factory() as session:
            found = await self.find_by_reference(session, reference)
        if found is None:
            raise ResourceNotFoundError(f"Transaction {reference} not found", {"reference": reference})

        async def _settle(session: AsyncSession) -> Transaction:
            txn = await self.find_by_reference(session, reference)

            if txn.status == TransactionStatus.SUCCESS:
                logger.info("♻️ Credit {} already settled", reference)
                return txn
            if txn.status != TransactionStatus.PENDING or txn.type != TransactionType.CREDIT:
                raise InvalidTransactionStateError(
                    f"Cannot settle a {txn.status.value} {txn.type.value}",
                    {"reference": reference},
                )
            if amount is not None and to_money(amount) != txn.amount:
                raise ValidationError(
                    f"Paid amount ₦{to_money(amount)} does not match expected ₦{txn.amount}",
                    {"reference": reference, "expected": str(txn.amount), "paid": str(amount)},
                )

            user = await self.load_user(session, txn.user_id, require_active=False)
            txn.wallet_before = user.wallet_balance
            user.wallet_balance = user.wallet_balance + txn.amount
            txn.wallet_after = user.wallet_balance
            txn.status = TransactionStatus.SUCCESS
            txn.completed_at = self.clock()
            if provider_reference:
                txn.provider_reference = provider_reference
            return txn

        txn = await self.atomic(found.user_id, _settle)
        logger.info("💰 Credit {} settled for {}", reference, txn.user_id)
        return TransactionRecord.model_validate(txn)

    # ==================== REMEDIATION ====================

    async def list_failed(
        self,
        user_id: str | None = None,
        include_resolved: bool = False,
        limit: int = 100,
    ) -> List[TransactionRecord]:
        query = select(Transaction).where(Transaction.status == TransactionStatus.FAILED)
        if user_id is not None:
            query = query.where(Transaction.user_id == user_id)
        if not include_resolved:
            query = query.where(Transaction.resolved_at.is_(None))
        query = query.order_by(Transaction.timestamp.desc()).limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
        return [TransactionRecord.model_validate(row) for row in rows]

    async def resolve_failed(
        self,
        transaction_id: str,
        admin_id: str,
        note: str,
        refund: bool = True,
    ) -> TransactionRecord:
        """
        Mark a failed transaction as handled by an administrator,
        refunding it first if no refund exists yet.
        """
        user_id = await self._owner_of(transaction_id)

        async def _resolve(session: AsyncSession) -> Transaction:
            txn = await self._load_transaction(session, transaction_id)

            if txn.status != TransactionStatus.FAILED:
                raise InvalidTransactionStateError(
                    "Only failed transactions can be resolved",
                    {"transaction_id": transaction_id, "status": txn.status.value},
                )
            if txn.resolved_at is not None:
                raise InvalidTransactionStateError(
                    "Transaction already resolved",
                    {"transaction_id": transaction_id, "resolved_by": txn.resolved_by},
                )

            if refund and txn.type == TransactionType.DEBIT:
                refunded = await session.execute(
                    select(Transaction.id).where(
                        Transaction.related_transaction_id == txn.id,
                        Transaction.category == Category.REFUND,
                    )
                )
                if refunded.first() is None:
                    await self._refund_in_session(session, txn, f"Admin refund: {note[:200]}")

            txn.resolved_at = self.clock()
            txn.resolved_by = admin_id
            txn.resolution_note = note
            return txn

        txn = await self.atomic(user_id, _resolve)
        logger.info("🛠️ Transaction {} resolved by {}", transaction_id, admin_id)
        return TransactionRecord.model_validate(txn)

    # ==================== QUERIES ====================

    async def get_user(self, user_id: str) -> User:
        """Detached snapshot of a user row"""
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise ResourceNotFoundError(f"User {user_id} not found", {"user_id": user_id})
        return user

    async def get_balances(self, user_id: str) -> WalletBalances:
        user = await self.get_user(user_id)
        return WalletBalances(
            user_id=user.uid,
            wallet_balance=user.wallet_balance,
            savings_wallet=user.savings_wallet,
            interest_earned=user.interest_earned,
            reward_points=user.reward_points,
            currency=settings.CURRENCY,
        )

    async def history(
        self,
        user_id: str,
        limit: int = 50,
        category: Category | None = None,
    ) -> List[TransactionRecord]:
        """Most recent transactions first"""
        query = select(Transaction).where(Transaction.user_id == user_id)
        if category is not None:
            query = query.where(Transaction.category == category)
        query = query.order_by(Transaction.timestamp.desc()).limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
        return [TransactionRecord.model_validate(row) for row in rows]

    async def transfers(self, user_id: str, limit: int = 50) -> List[TransferRecord]:
        query = (
            select(WalletTransfer)
            .where(WalletTransfer.user_id == user_id)
            .order_by(WalletTransfer.timestamp.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
        return [TransferRecord.model_validate(row) for row in rows]
