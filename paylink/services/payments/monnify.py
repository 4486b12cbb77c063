# paylink/services/payments/monnify.py
"""Monnify collections API client (wallet funding)"""

import hashlib
import hmac
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from paylink.core.config import settings
from paylink.core.logging import logger
from paylink.services.payments.client import ProviderClient


def webhook_signature(secret: str, body: bytes) -> str:
    """HMAC-SHA512 hex digest Monnify sends in X-Monnify-Signature"""
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def verify_webhook_signature(secret: str, body: bytes, signature: str | None) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(webhook_signature(secret, body), signature)


class MonnifyClient(ProviderClient):
    """Start card/transfer payments and look them up"""

    provider = "monnify"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        secret_key: str | None = None,
        contract_code: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            base_url=base_url or settings.MONNIFY_API_URL,
            timeout=timeout or settings.MONNIFY_TIMEOUT,
            transport=transport,
        )
        self.api_key = api_key if api_key is not None else settings.MONNIFY_API_KEY
        self.secret_key = secret_key if secret_key is not None else settings.MONNIFY_SECRET_KEY
        self.contract_code = contract_code if contract_code is not None else settings.MONNIFY_CONTRACT_CODE

    def _auth(self) -> Optional[httpx.Auth]:
        if self.api_key and self.secret_key:
            return httpx.BasicAuth(self.api_key, self.secret_key)
        return None

    async def init_transaction(
        self,
        amount: Decimal,
        reference: str,
        customer_name: str,
        customer_email: str,
        description: str = "PAYLINK Wallet Funding",
    ) -> Dict[str, Any]:
        """
        Returns:
            {"checkout_url": str | None, "transaction_reference": str | None}
        """
        body = await self.post(
            "/api/v1/merchant/transactions/init-transaction",
            data={
                "amount": float(amount),
                "customerName": customer_name,
                "customerEmail": customer_email,
                "paymentReference": reference,
                "paymentDescription": description,
                "currencyCode": settings.CURRENCY,
                "contractCode": self.contract_code,
                "redirectUrl": settings.MONNIFY_REDIRECT_URL,
            },
        )
        response_body = body.get("responseBody") or {}
        logger.info(f"💳 Monnify payment initialised for {reference}")
        return {
            "checkout_url": response_body.get("checkoutUrl"),
            "transaction_reference": response_body.get("transactionReference"),
        }

    async def get_transaction(self, reference: str) -> Dict[str, Any]:
        """
        Returns:
            {
                "status": "success" | "pending" | "failed",
                "payment_status": raw Monnify status (PAID, OVERPAID, ...),
                "amount": Decimal | None,
                "raw": dict
            }
        """
        body = await self.get(f"/api/v1/transactions/{reference}")
        response_body = body.get("responseBody") or body
        raw_status = str(response_body.get("paymentStatus") or response_body.get("status") or "").upper()

        if raw_status in {"PAID", "SUCCESS", "SUCCESSFUL", "OVERPAID"}:
            status = "success"
        elif raw_status in {"FAILED", "EXPIRED", "CANCELLED", "ABANDONED", "REVERSED"}:
            status = "failed"
        else:
            status = "pending"

        amount = response_body.get("amountPaid") or response_body.get("amount")
        return {
            "status": status,
            "payment_status": raw_status,
            "amount": Decimal(str(amount)) if amount is not None else None,
            "raw": response_body,
        }
