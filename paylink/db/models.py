# paylink/db/models.py
"""
ORM models for the wallet core.

One table per entity the app used to keep in Firestore collections
(users, transactions, savings, fraudChecks, pinAttempts, loginHistory,
devices, notifications, rewardTransactions, referrals, walletTransfers).
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from paylink.core.constants import (
    Category,
    RewardTransactionType,
    RiskAction,
    SavingsInterval,
    SavingsPlanStatus,
    TransactionStatus,
    TransactionType,
    WalletKind,
)
from paylink.core.utils import new_id, utcnow


def _enum(enum_cls: type[Enum]) -> SQLEnum:
    """Store enums by value in a plain VARCHAR"""
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


Money = Numeric(14, 2, asdecimal=True)


class Base(AsyncAttrs, DeclarativeBase):
    """Declarative base for all wallet-core tables"""


class User(Base):
    __tablename__ = "users"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20))
    display_name: Mapped[Optional[str]] = mapped_column(String(120))

    wallet_balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    savings_wallet: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    interest_earned: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("5.00"), nullable=False)

    reward_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lifetime_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    discount_expires: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transaction_pin: Mapped[Optional[str]] = mapped_column(String(64))
    account_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    lock_until: Mapped[Optional[datetime]] = mapped_column(DateTime)
    lock_reason: Mapped[Optional[str]] = mapped_column(String(120))
    suspended: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    suspension_reason: Mapped[Optional[str]] = mapped_column(String(255))

    referral_code: Mapped[Optional[str]] = mapped_column(String(16), unique=True)
    referred_by: Mapped[Optional[str]] = mapped_column(String(128))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Optimistic concurrency token: every UPDATE checks and bumps it
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<User(uid={self.uid}, wallet={self.wallet_balance}, savings={self.savings_wallet})>"


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.uid"), nullable=False, index=True)
    type: Mapped[TransactionType] = mapped_column(_enum(TransactionType), nullable=False)
    category: Mapped[Category] = mapped_column(_enum(Category), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(_enum(TransactionStatus), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))

    provider: Mapped[Optional[str]] = mapped_column(String(40))
    provider_reference: Mapped[Optional[str]] = mapped_column(String(120))
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)

    latitude: Mapped[Optional[float]] = mapped_column()
    longitude: Mapped[Optional[float]] = mapped_column()
    device_fingerprint: Mapped[Optional[str]] = mapped_column(String(128))

    wallet_before: Mapped[Optional[Decimal]] = mapped_column(Money)
    wallet_after: Mapped[Optional[Decimal]] = mapped_column(Money)

    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(255))
    related_transaction_id: Mapped[Optional[str]] = mapped_column(String(32))

    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(128))
    resolution_note: Mapped[Optional[str]] = mapped_column(Text)

    reconcile_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reconciled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_transactions_user_timestamp", "user_id", "timestamp"),
        Index("ix_transactions_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, {self.type.value} {self.amount} "
            f"{self.category.value}, status={self.status.value})>"
        )


class WalletTransfer(Base):
    __tablename__ = "wallet_transfers"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.uid"), nullable=False, index=True)
    source: Mapped[WalletKind] = mapped_column(_enum(WalletKind), nullable=False)
    target: Mapped[WalletKind] = mapped_column(_enum(WalletKind), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    main_before: Mapped[Decimal] = mapped_column(Money, nullable=False)
    main_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    savings_before: Mapped[Decimal] = mapped_column(Money, nullable=False)
    savings_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class SavingsPlan(Base):
    __tablename__ = "savings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.uid"), nullable=False, index=True)
    plan_name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    initial_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    interval: Mapped[SavingsInterval] = mapped_column(_enum(SavingsInterval), nullable=False)
    lock_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    withdrawal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_withdrawals: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    status: Mapped[SavingsPlanStatus] = mapped_column(
        _enum(SavingsPlanStatus), default=SavingsPlanStatus.ACTIVE, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    maturity_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class FraudCheck(Base):
    __tablename__ = "fraud_checks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(64))
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False)
    checks: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    action: Mapped[RiskAction] = mapped_column(_enum(RiskAction), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class PinAttempt(Base):
    __tablename__ = "pin_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(String(255))
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_pin_attempts_user_timestamp", "user_id", "timestamp"),)


class LoginHistory(Base):
    __tablename__ = "login_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    latitude: Mapped[Optional[float]] = mapped_column()
    longitude: Mapped[Optional[float]] = mapped_column()
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    device_fingerprint: Mapped[Optional[str]] = mapped_column(String(128))
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_login_history_user_timestamp", "user_id", "timestamp"),)


class Device(Base):
    __tablename__ = "devices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    fingerprint: Mapped[str] = mapped_column(String(128), nullable=False)
    device_name: Mapped[Optional[str]] = mapped_column(String(120))
    user_agent: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    first_seen: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class RewardTransaction(Base):
    __tablename__ = "reward_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    type: Mapped[RewardTransactionType] = mapped_column(_enum(RewardTransactionType), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(120), nullable=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(64))
    amount: Mapped[Optional[Decimal]] = mapped_column(Money)
    redemption_id: Mapped[Optional[str]] = mapped_column(String(40))
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Referral(Base):
    __tablename__ = "referrals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referrer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    referee_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    referral_code: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="completed", nullable=False)
    referrer_bonus: Mapped[Decimal] = mapped_column(Money, nullable=False)
    referee_bonus: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
