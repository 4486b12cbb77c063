"""Wallet endpoints: account, balances, history, transfers, funding, remediation"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from paylink.api.dependencies import get_admin_id, get_current_user_id
from paylink.core.constants import Category
from paylink.core.dependencies import get_ledger, get_processor
from paylink.schemas.payments import FundingInitResult
from paylink.schemas.wallet import (
    AccountCreate,
    FundWalletRequest,
    ResolveFailedRequest,
    TransactionRecord,
    TransferRecord,
    TransferRequest,
    WalletBalances,
)
from paylink.services.payments.processor import TransactionProcessor
from paylink.services.wallet.ledger import WalletLedger

router = APIRouter()


@router.post("/account", response_model=WalletBalances, status_code=201)
async def create_account(
    request: AccountCreate,
    user_id: str = Depends(get_current_user_id),
    ledger: WalletLedger = Depends(get_ledger),
):
    """Open the wallet for an authenticated user (idempotent)"""
    await ledger.create_user(
        user_id,
        email=request.email,
        phone_number=request.phone_number,
        display_name=request.display_name,
    )
    return await ledger.get_balances(user_id)


@router.get("/balance", response_model=WalletBalances)
async def get_balance(
    user_id: str = Depends(get_current_user_id),
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.get_balances(user_id)


@router.get("/history", response_model=List[TransactionRecord])
async def get_history(
    limit: int = Query(50, ge=1, le=500),
    category: Optional[Category] = None,
    user_id: str = Depends(get_current_user_id),
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.history(user_id, limit=limit, category=category)


@router.get("/transfers", response_model=List[TransferRecord])
async def get_transfers(
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.transfers(user_id, limit=limit)


@router.post("/transfer", response_model=TransferRecord)
async def transfer(
    request: TransferRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: WalletLedger = Depends(get_ledger),
):
    """Move money between the main and savings wallets"""
    return await ledger.transfer(user_id, request.source, request.target, request.amount)


@router.post("/fund", response_model=FundingInitResult)
async def fund_wallet(
    request: FundWalletRequest,
    user_id: str = Depends(get_current_user_id),
    processor: TransactionProcessor = Depends(get_processor),
):
    return await processor.fund_wallet(user_id, request.amount)


# ==================== ADMIN ====================


@router.get("/failed", response_model=List[TransactionRecord])
async def list_failed(
    user_id: Optional[str] = None,
    include_resolved: bool = False,
    limit: int = Query(100, ge=1, le=500),
    admin_id: str = Depends(get_admin_id),
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.list_failed(user_id=user_id, include_resolved=include_resolved, limit=limit)


@router.post("/failed/{transaction_id}/resolve", response_model=TransactionRecord)
async def resolve_failed(
    transaction_id: str,
    request: ResolveFailedRequest,
    admin_id: str = Depends(get_admin_id),
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.resolve_failed(transaction_id, admin_id, request.note, refund=request.refund)
