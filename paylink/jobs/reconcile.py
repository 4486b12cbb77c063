# paylink/jobs/reconcile.py
"""
Reconciliation of transactions left pending by timeouts or async providers.

Funding credits are checked against Monnify, bill purchases against
PayFlex. Anything the provider still reports as pending stays pending
and is picked up by the next run.
"""
import asyncio
from datetime import datetime
from typing import Callable, Dict, List

from sqlalchemy import select

from paylink.core.config import settings
from paylink.core.constants import Category, TransactionStatus, TransactionType
from paylink.core.exception import BaseAppException, PaymentProviderError
from paylink.core.logging import logger, setup_logging
from paylink.core.utils import utcnow
from paylink.db.models import Transaction
from paylink.services.audit.audit import AuditLogger
from paylink.services.payments.monnify import MonnifyClient
from paylink.services.payments.payflex import PayFlexClient
from paylink.services.wallet.ledger import WalletLedger


class Reconciler:
    """One pass over pending transactions, oldest first"""

    def __init__(
        self,
        ledger: WalletLedger,
        payflex: PayFlexClient,
        monnify: MonnifyClient,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.payflex = payflex
        self.monnify = monnify
        self.audit_logger = audit_logger or AuditLogger()
        self.clock = clock

    async def pending(self, limit: int) -> List[Transaction]:
        query = (
            select(Transaction)
            .where(Transaction.status == TransactionStatus.PENDING)
            .order_by(Transaction.timestamp.asc())
            .limit(limit)
        )
        async with self.ledger.session_factory() as session:
            return list((await session.execute(query)).scalars().all())

    async def _touch(self, transaction_id: str) -> None:
        """Count an inconclusive lookup"""
        async with self.ledger.session_factory.begin() as session:
            txn = await session.get(Transaction, transaction_id)
            if txn is not None:
                txn.reconcile_attempts += 1
                txn.last_reconciled_at = self.clock()

    async def _reconcile_funding(self, txn: Transaction) -> str:
        lookup = await self.monnify.get_transaction(txn.reference)

        if lookup["status"] == "success":
            # An overpayment settles the amount the user asked to fund
            paid = None if lookup["payment_status"] == "OVERPAID" else lookup["amount"]
            await self.ledger.settle_credit(txn.reference, amount=paid)
            return "settled"
        if lookup["status"] == "failed":
            await self.ledger.fail(txn.id, "Payment not completed at Monnify", refund=False)
            return "failed"
        return "pending"

    async def _reconcile_purchase(self, txn: Transaction) -> str:
        try:
            lookup = await self.payflex.get_transaction(txn.reference)
        except PaymentProviderError as exc:
            # PayFlex answers 404 for purchases it never received
            if exc.definitive and exc.provider_status == 404:
                await self.ledger.fail(txn.id, "Purchase unknown to PayFlex", refund=True)
                return "failed"
            raise

        if lookup["status"] == "success":
            await self.ledger.complete(txn.id, provider_reference=lookup.get("reference"))
            return "completed"
        if lookup["status"] == "failed":
            await self.ledger.fail(txn.id, lookup.get("message") or "Purchase failed at PayFlex", refund=True)
            return "failed"
        return "pending"

    async def reconcile_one(self, txn: Transaction) -> str:
        if txn.type == TransactionType.CREDIT and txn.category == Category.WALLET_FUNDING:
            outcome = await self._reconcile_funding(txn)
        elif txn.type == TransactionType.DEBIT and txn.provider == self.payflex.provider:
            outcome = await self._reconcile_purchase(txn)
        else:
            outcome = "skipped"

        if outcome in ("pending", "skipped"):
            await self._touch(txn.id)
        else:
            await self.audit_logger.log_transaction(
                user_id=txn.user_id,
                transaction_id=txn.id,
                action="reconcile",
                amount=txn.amount,
                status=outcome,
                reference=txn.reference,
            )
        return outcome

    async def reconcile_pending(self, limit: int | None = None) -> Dict[str, int]:
        """
        Returns:
            counts per outcome (completed, settled, failed, pending, skipped, errors)
        """
        summary = {"completed": 0, "settled": 0, "failed": 0, "pending": 0, "skipped": 0, "errors": 0}

        for txn in await self.pending(limit or settings.RECONCILE_BATCH_LIMIT):
            try:
                outcome = await self.reconcile_one(txn)
            except BaseAppException as exc:
                # One bad transaction must not stop the batch; it stays pending
                logger.error("❌ Reconcile {} ({}) failed: {}", txn.reference, txn.id, exc.message)
                await self.audit_logger.log_error(
                    user_id=txn.user_id,
                    action="reconcile",
                    error=exc.message,
                    transaction_id=txn.id,
                )
                await self._touch(txn.id)
                summary["errors"] += 1
                continue
            summary[outcome] += 1

        logger.info("🧾 Reconciliation done: {}", summary)
        return summary


async def run(limit: int | None = None) -> Dict[str, int]:
    """Build the services, run one pass and release connections"""
    from paylink.core.dependencies import cleanup_services, get_reconciler, initialize_services

    await initialize_services()
    try:
        return await get_reconciler().reconcile_pending(limit)
    finally:
        await cleanup_services()


def main() -> None:
    setup_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
