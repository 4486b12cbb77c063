# paylink/schemas/wallet.py
"""
Pydantic schemas for wallet ledger operations
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field

from paylink.core.constants import (
    Category,
    TransactionStatus,
    TransactionType,
    WalletKind,
)


class TransactionRecord(BaseModel):
    """Immutable money-movement record"""

    id: str
    user_id: str
    type: TransactionType
    category: Category
    amount: Decimal
    reference: str
    status: TransactionStatus
    description: Optional[str] = None
    provider: Optional[str] = None
    provider_reference: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    wallet_before: Optional[Decimal] = None
    wallet_after: Optional[Decimal] = None
    timestamp: datetime
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    related_transaction_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    class Config:
        from_attributes = True


class TransferRecord(BaseModel):
    """Main <-> savings wallet transfer"""

    id: str
    user_id: str
    source: WalletKind
    target: WalletKind
    amount: Decimal
    main_before: Decimal
    main_after: Decimal
    savings_before: Decimal
    savings_after: Decimal
    timestamp: datetime

    class Config:
        from_attributes = True


class WalletBalances(BaseModel):
    """Balances snapshot for a user"""

    user_id: str
    wallet_balance: Decimal
    savings_wallet: Decimal
    interest_earned: Decimal
    reward_points: int
    currency: str = "NGN"


class TransferRequest(BaseModel):
    source: WalletKind
    target: WalletKind
    amount: Decimal = Field(..., gt=0)


class FundWalletRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)


class ResolveFailedRequest(BaseModel):
    note: str = Field(..., min_length=1, max_length=1000)
    refund: bool = True


class AccountCreate(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=20)
    display_name: Optional[str] = Field(default=None, max_length=120)
