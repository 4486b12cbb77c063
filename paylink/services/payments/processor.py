# paylink/services/payments/processor.py
"""
Transaction processor - risk check, wallet reservation, provider call, settlement
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.config import settings
from paylink.core.constants import Category, RiskAction, TransactionStatus
from paylink.core.exception import (
    DuplicateReferenceError,
    OTPVerificationError,
    PaymentProviderError,
    ResourceNotFoundError,
    TransactionBlockedError,
    ValidationError,
)
from paylink.core.logging import logger
from paylink.core.utils import generate_reference, to_money, utcnow
from paylink.db.models import Transaction
from paylink.schemas.fraud import RiskAssessment, TransactionContext
from paylink.schemas.payments import (
    AirtimePurchase,
    CablePayment,
    CustomerValidation,
    DataPurchase,
    ElectricityPayment,
    FundingInitResult,
    PurchaseBase,
    PurchaseResult,
)
from paylink.schemas.wallet import TransactionRecord
from paylink.services.audit.audit import AuditLogger
from paylink.services.fraud.risk_scorer import RiskScorer
from paylink.services.fraud.security import OTPService, SecurityService, add_notification
from paylink.services.payments.monnify import MonnifyClient
from paylink.services.payments.payflex import PayFlexClient
from paylink.services.rewards.points import calculate_points
from paylink.services.rewards.service import consume_discount
from paylink.services.wallet.ledger import WalletLedger

Fulfil = Callable[[str, Decimal], Awaitable[Dict[str, Any]]]


class TransactionProcessor:
    """
    Runs bill purchases end to end.

    Failure policy: a definitive provider rejection fails the transaction
    and refunds the wallet; an unknown outcome (timeout, transport error,
    provider-side pending) leaves it pending for reconciliation.
    """

    def __init__(
        self,
        ledger: WalletLedger,
        risk_scorer: RiskScorer,
        security: SecurityService,
        otp_service: OTPService,
        payflex: PayFlexClient,
        monnify: MonnifyClient,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.risk_scorer = risk_scorer
        self.security = security
        self.otp_service = otp_service
        self.payflex = payflex
        self.monnify = monnify
        self.audit_logger = audit_logger or AuditLogger()
        self.clock = clock

    # ==================== PURCHASES ====================

    async def purchase_airtime(
        self,
        user_id: str,
        request: AirtimePurchase,
        ip_address: str | None = None,
    ) -> PurchaseResult:
        async def fulfil(reference: str, amount: Decimal) -> Dict[str, Any]:
            return await self.payflex.buy_airtime(
                provider=request.provider,
                phone_number=request.phone_number,
                amount=amount,
                reference=reference,
            )

        return await self._purchase(
            user_id,
            Category.AIRTIME,
            request,
            fulfil,
            description=f"{request.provider.upper()} airtime for {request.phone_number}",
            metadata={"phone_number": request.phone_number},
            ip_address=ip_address,
        )

    async def purchase_data(
        self,
        user_id: str,
        request: DataPurchase,
        ip_address: str | None = None,
    ) -> PurchaseResult:
        async def fulfil(reference: str, amount: Decimal) -> Dict[str, Any]:
            return await self.payflex.buy_data(
                provider=request.provider,
                phone_number=request.phone_number,
                plan_id=request.plan_id,
                reference=reference,
            )

        return await self._purchase(
            user_id,
            Category.DATA,
            request,
            fulfil,
            description=f"{request.provider.upper()} data {request.plan_id} for {request.phone_number}",
            metadata={"phone_number": request.phone_number, "plan_id": request.plan_id},
            ip_address=ip_address,
        )

    async def pay_electricity(
        self,
        user_id: str,
        request: ElectricityPayment,
        ip_address: str | None = None,
    ) -> PurchaseResult:
        async def fulfil(reference: str, amount: Decimal) -> Dict[str, Any]:
            return await self.payflex.pay_electricity(
                disco=request.provider,
                meter_number=request.meter_number,
                amount=amount,
                meter_type=request.meter_type,
                reference=reference,
            )

        return await self._purchase(
            user_id,
            Category.ELECTRICITY,
            request,
            fulfil,
            description=f"{request.provider.upper()} {request.meter_type} meter {request.meter_number}",
            metadata={"meter_number": request.meter_number, "meter_type": request.meter_type},
            ip_address=ip_address,
        )

    async def pay_cable(
        self,
        user_id: str,
        request: CablePayment,
        ip_address: str | None = None,
    ) -> PurchaseResult:
        async def fulfil(reference: str, amount: Decimal) -> Dict[str, Any]:
            return await self.payflex.pay_cable(
                provider=request.provider,
                smartcard_number=request.smartcard_number,
                plan_id=request.plan_id,
                amount=amount,
                reference=reference,
            )

        return await self._purchase(
            user_id,
            Category.CABLE_TV,
            request,
            fulfil,
            description=f"{request.provider.upper()} {request.plan_id} for {request.smartcard_number}",
            metadata={"smartcard_number": request.smartcard_number, "plan_id": request.plan_id},
            ip_address=ip_address,
        )

    # ==================== PIPELINE ====================

    async def _step_up(
        self,
        user_id: str,
        category: Category,
        request: PurchaseBase,
        assessment: RiskAssessment,
    ) -> Optional[PurchaseResult]:
        """
        Gate the purchase on the risk decision.

        Returns a result to hand back to the caller when the purchase
        must stop here, None when it may proceed.
        """
        amount = to_money(request.amount)

        if assessment.action == RiskAction.BLOCK:
            await self.risk_scorer.report_suspicious_activity(
                user_id,
                "blocked_transaction",
                {"category": category.value, "amount": str(amount), "checks": [c.name for c in assessment.checks]},
            )
            raise TransactionBlockedError(
                "Transaction blocked for security reasons",
                {"risk_score": assessment.risk_score, "checks": [c.name for c in assessment.checks]},
            )

        if assessment.action == RiskAction.REQUIRE_2FA:
            if not request.otp_code:
                otp_code = await self.otp_service.generate_otp(
                    user_id, category.value, amount=amount, reference=request.reference or ""
                )
                async with self.ledger.session_factory.begin() as session:
                    add_notification(
                        session,
                        user_id,
                        "Verification Code",
                        f"Your PAYLINK verification code is {otp_code}. It expires in "
                        f"{settings.OTP_VALIDITY_MINUTES} minutes.",
                        type="otp",
                        data={"action": category.value},
                        timestamp=self.clock(),
                    )
                await self.audit_logger.log_security_event(
                    user_id=user_id,
                    event_type="otp_challenge",
                    details={"category": category.value, "risk_score": assessment.risk_score},
                    risk_level="medium",
                )
                return PurchaseResult(
                    status="requires_otp",
                    category=category,
                    amount=amount,
                    charged_amount=Decimal("0.00"),
                    risk_score=assessment.risk_score,
                    message="Additional verification required. Enter the code sent to you.",
                    details={"checks": [c.name for c in assessment.checks]},
                )

            verification = await self.otp_service.verify_otp(user_id, category.value, request.otp_code)
            if not verification["valid"]:
                await self.audit_logger.log_security_event(
                    user_id=user_id,
                    event_type="otp_failed",
                    details={"category": category.value},
                    risk_level="high",
                )
                raise OTPVerificationError(verification["error"])

            # The code only unlocks the purchase it was issued for
            issued_for = verification["metadata"]
            issued_reference = issued_for.get("reference", "")
            if to_money(issued_for.get("amount", "0")) != amount or (
                issued_reference and issued_reference != request.reference
            ):
                await self.audit_logger.log_security_event(
                    user_id=user_id,
                    event_type="otp_mismatch",
                    details={
                        "category": category.value,
                        "challenged_amount": issued_for.get("amount"),
                        "amount": str(amount),
                        "reference": request.reference,
                    },
                    risk_level="high",
                )
                raise OTPVerificationError(
                    "Verification code was issued for a different transaction",
                    {"amount": str(amount)},
                )

        if assessment.action == RiskAction.REVIEW:
            await self.audit_logger.log_security_event(
                user_id=user_id,
                event_type="transaction_review",
                details={"category": category.value, "amount": str(amount), "risk_score": assessment.risk_score},
                risk_level="medium",
            )

        return None

    @staticmethod
    def _check_owner(existing: Transaction, user_id: str, category: Category) -> None:
        if existing.user_id != user_id or existing.category != category:
            raise DuplicateReferenceError(
                f"Reference {existing.reference} already used",
                {"reference": existing.reference},
            )

    async def _find_replay(self, user_id: str, category: Category, reference: str) -> Optional[Transaction]:
        """Earlier purchase recorded under a client-supplied reference"""
        async with self.ledger.session_factory() as session:
            existing = await self.ledger.find_by_reference(session, reference)

        if existing is not None:
            self._check_owner(existing, user_id, category)
        return existing

    async def _reserve(
        self,
        user_id: str,
        category: Category,
        amount: Decimal,
        reference: str,
        context: TransactionContext,
        provider: str,
        description: str,
        metadata: Dict[str, Any],
    ) -> tuple[Transaction, Decimal, bool]:
        """Pending debit of the discounted amount; (txn, discount, replayed)"""

        async def _debit(session: AsyncSession) -> tuple[Transaction, Decimal, bool]:
            user = await self.ledger.load_user(session, user_id)

            existing = await self.ledger.find_by_reference(session, reference)
            if existing is not None:
                self._check_owner(existing, user_id, category)
                return existing, Decimal(existing.meta.get("discount_applied", "0")), True

            discount = consume_discount(user, amount, self.clock())
            txn = await self.ledger.post_debit(
                session,
                user,
                amount - discount,
                category,
                reference=reference,
                description=description,
                metadata={**metadata, "face_value": str(amount), "discount_applied": str(discount)},
                status=TransactionStatus.PENDING,
                context=context,
                provider=provider,
            )
            return txn, discount, False

        return await self.ledger.atomic(user_id, _debit)

    async def _restore_discount(self, user_id: str, discount: Decimal) -> None:
        if discount <= 0:
            return

        async def _restore(session: AsyncSession) -> None:
            user = await self.ledger.load_user(session, user_id, require_active=False)
            user.discount_amount = user.discount_amount + discount

        await self.ledger.atomic(user_id, _restore)

    def _result_for(
        self,
        txn: Transaction | TransactionRecord,
        category: Category,
        amount: Decimal,
        discount: Decimal,
        risk_score: int,
        message: str,
    ) -> PurchaseResult:
        status = txn.status.value if txn.status != TransactionStatus.PENDING else "pending"
        return PurchaseResult(
            status=status,
            category=category,
            amount=amount,
            charged_amount=txn.amount,
            discount_applied=discount,
            transaction_id=txn.id,
            reference=txn.reference,
            provider_reference=txn.provider_reference,
            points_earned=calculate_points(category, txn.amount) if status == "success" else 0,
            risk_score=risk_score,
            message=message,
        )

    async def _purchase(
        self,
        user_id: str,
        category: Category,
        request: PurchaseBase,
        fulfil: Fulfil,
        description: str,
        metadata: Dict[str, Any],
        ip_address: str | None = None,
    ) -> PurchaseResult:
        amount = to_money(request.amount)
        reference = request.reference or generate_reference(category.value)

        await self.security.ensure_can_transact(user_id)

        if request.reference:
            existing = await self._find_replay(user_id, category, reference)
            if existing is not None:
                logger.info("♻️ Purchase {} replayed, status {}", reference, existing.status.value)
                return self._result_for(
                    existing,
                    category,
                    to_money(existing.meta.get("face_value", existing.amount)),
                    Decimal(existing.meta.get("discount_applied", "0")),
                    existing.meta.get("risk_score", 0),
                    "Duplicate request",
                )

        context = TransactionContext(
            amount=amount,
            reference=reference,
            category=category.value,
            location=request.location,
            device=request.device,
            ip_address=ip_address,
        )
        assessment = await self.risk_scorer.score(user_id, context, transaction_id=reference)

        challenge = await self._step_up(user_id, category, request, assessment)
        if challenge is not None:
            return challenge

        txn, discount, replayed = await self._reserve(
            user_id,
            category,
            amount,
            reference,
            context,
            request.provider,
            description,
            {**metadata, "risk_score": assessment.risk_score},
        )
        if replayed:
            logger.info("♻️ Purchase {} replayed, status {}", reference, txn.status.value)
            return self._result_for(txn, category, amount, discount, assessment.risk_score, "Duplicate request")

        try:
            response = await fulfil(reference, amount)
        except PaymentProviderError as exc:
            if not exc.definitive:
                logger.warning("⏳ {} outcome unknown for {}: {}", category.value, reference, exc.message)
                await self.audit_logger.log_transaction(
                    user_id=user_id,
                    transaction_id=txn.id,
                    action=category.value,
                    amount=txn.amount,
                    status="pending",
                    reference=reference,
                    error=exc.message,
                )
                return self._result_for(
                    txn,
                    category,
                    amount,
                    discount,
                    assessment.risk_score,
                    "Payment is being confirmed with the provider",
                )

            await self.ledger.fail(txn.id, exc.message, refund=True)
            await self._restore_discount(user_id, discount)
            await self.audit_logger.log_transaction(
                user_id=user_id,
                transaction_id=txn.id,
                action=category.value,
                amount=txn.amount,
                status="failed",
                reference=reference,
                error=exc.message,
            )
            raise

        if response["status"] == "pending":
            await self.audit_logger.log_transaction(
                user_id=user_id,
                transaction_id=txn.id,
                action=category.value,
                amount=txn.amount,
                status="pending",
                reference=reference,
            )
            return self._result_for(
                txn,
                category,
                amount,
                discount,
                assessment.risk_score,
                "Payment is being confirmed with the provider",
            )

        record = await self.ledger.complete(
            txn.id,
            provider_reference=response.get("reference"),
            metadata={"provider_message": response.get("message", "")},
        )
        await self.audit_logger.log_transaction(
            user_id=user_id,
            transaction_id=record.id,
            action=category.value,
            amount=record.amount,
            status=record.status.value,
            reference=reference,
            provider_reference=record.provider_reference,
        )
        result = self._result_for(
            record,
            category,
            amount,
            discount,
            assessment.risk_score,
            f"{category.value.capitalize()} purchase successful",
        )
        logger.info("✅ {} ₦{} for {} ({} points)", category.value, record.amount, user_id, result.points_earned)
        return result

    # ==================== WALLET FUNDING ====================

    async def fund_wallet(self, user_id: str, amount: Decimal) -> FundingInitResult:
        """Open a pending funding credit and start a Monnify checkout"""
        amount = to_money(amount)
        if amount <= 0 or amount > settings.MAX_DEPOSIT_AMOUNT:
            raise ValidationError(
                f"Amount must be between ₦0.01 and ₦{settings.MAX_DEPOSIT_AMOUNT}",
                {"amount": str(amount)},
            )

        await self.security.ensure_can_transact(user_id)
        user = await self.ledger.get_user(user_id)

        reference = generate_reference("fund")
        txn = await self.ledger.open_pending_credit(
            user_id,
            amount,
            Category.WALLET_FUNDING,
            reference=reference,
            provider=self.monnify.provider,
            description="Wallet funding",
        )

        try:
            checkout = await self.monnify.init_transaction(
                amount=amount,
                reference=reference,
                customer_name=user.display_name or user_id,
                customer_email=user.email or f"{user_id}@paylink.local",
            )
        except PaymentProviderError as exc:
            if exc.definitive:
                await self.ledger.fail(txn.id, exc.message, refund=False)
            raise

        await self.audit_logger.log_transaction(
            user_id=user_id,
            transaction_id=txn.id,
            action="wallet_funding_init",
            amount=amount,
            status="pending",
            reference=reference,
        )
        return FundingInitResult(
            reference=reference,
            transaction_id=txn.id,
            payment_link=checkout.get("checkout_url"),
        )

    async def confirm_funding(
        self,
        reference: str,
        amount: Decimal | None = None,
        provider_reference: str | None = None,
    ) -> TransactionRecord:
        """Credit a confirmed payment; repeated confirmations are no-ops"""
        record = await self.ledger.settle_credit(reference, amount=amount, provider_reference=provider_reference)
        await self.audit_logger.log_transaction(
            user_id=record.user_id,
            transaction_id=record.id,
            action="wallet_funding",
            amount=record.amount,
            status=record.status.value,
            reference=reference,
        )
        return record

    async def cancel_funding(self, reference: str, reason: str) -> TransactionRecord:
        """Close a funding attempt the gateway reported as unpaid"""
        async with self.ledger.session_factory() as session:
            txn = await self.ledger.find_by_reference(session, reference)
        if txn is None:
            raise ResourceNotFoundError(f"Transaction {reference} not found", {"reference": reference})
        if txn.status != TransactionStatus.PENDING:
            return TransactionRecord.model_validate(txn)

        record = await self.ledger.fail(txn.id, reason, refund=False)
        await self.audit_logger.log_transaction(
            user_id=record.user_id,
            transaction_id=record.id,
            action="wallet_funding",
            amount=record.amount,
            status=record.status.value,
            reference=reference,
            reason=reason,
        )
        return record

    # ==================== VALIDATION ====================

    @staticmethod
    def _customer(response: Dict[str, Any]) -> CustomerValidation:
        data = response.get("data") if isinstance(response.get("data"), dict) else response
        name = data.get("customerName") or data.get("customer_name") or data.get("name")
        valid = response.get("success", True) is not False and bool(name)
        return CustomerValidation(valid=valid, customer_name=name, details=data)

    async def validate_meter(self, provider: str, meter_number: str, meter_type: str = "prepaid") -> CustomerValidation:
        try:
            response = await self.payflex.validate_meter(provider, meter_number, meter_type)
        except PaymentProviderError as exc:
            if not exc.definitive:
                raise
            return CustomerValidation(valid=False, details={"message": exc.message})
        return self._customer(response)

    async def validate_smartcard(self, provider: str, smartcard_number: str) -> CustomerValidation:
        try:
            response = await self.payflex.validate_smartcard(provider, smartcard_number)
        except PaymentProviderError as exc:
            if not exc.definitive:
                raise
            return CustomerValidation(valid=False, details={"message": exc.message})
        return self._customer(response)
