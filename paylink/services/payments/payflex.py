# paylink/services/payments/payflex.py
"""PayFlex bill payment API client"""

from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from paylink.core.config import settings
from paylink.core.exception import PaymentProviderError
from paylink.core.logging import logger
from paylink.services.payments.client import ProviderClient

SUCCESS_STATUSES = {"success", "successful", "completed", "delivered"}
PENDING_STATUSES = {"pending", "processing", "initiated", "queued"}


def normalize_response(data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten PayFlex's response variants into one shape"""
    raw_status = str(data.get("status") or "").lower()
    if raw_status in SUCCESS_STATUSES:
        status = "success"
    elif raw_status in PENDING_STATUSES:
        status = "pending"
    elif raw_status:
        status = "failed"
    else:
        status = "success" if data.get("success") else "failed"

    if data.get("success") is False:
        status = "failed"

    return {
        "success": status == "success",
        "status": status,
        "reference": data.get("transactionId") or data.get("reference"),
        "amount": data.get("amount"),
        "message": data.get("message") or "",
        "data": data.get("data") or data,
    }


class PayFlexClient(ProviderClient):
    """Airtime, data, electricity and cable TV purchases"""

    provider = "payflex"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            base_url=base_url or settings.PAYFLEX_API_URL,
            timeout=timeout or settings.PAYFLEX_TIMEOUT,
            transport=transport,
        )
        self.api_key = api_key if api_key is not None else settings.PAYFLEX_API_KEY

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _purchase(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = normalize_response(await self.post(endpoint, data=payload))

        if result["status"] == "failed":
            raise PaymentProviderError(
                result["message"] or "Purchase failed",
                provider=self.provider,
                definitive=True,
                details=result,
            )

        logger.info(f"⚡ PayFlex {endpoint} {payload.get('reference')} -> {result['status']}")
        return result

    async def buy_airtime(
        self,
        provider: str,
        phone_number: str,
        amount: Decimal,
        reference: str,
    ) -> Dict[str, Any]:
        return await self._purchase(
            "/buy-airtime",
            {"phone": phone_number, "amount": float(amount), "provider": provider, "reference": reference},
        )

    async def buy_data(
        self,
        provider: str,
        phone_number: str,
        plan_id: str,
        reference: str,
    ) -> Dict[str, Any]:
        return await self._purchase(
            "/buy-data",
            {"phone": phone_number, "planId": plan_id, "provider": provider, "reference": reference},
        )

    async def pay_electricity(
        self,
        disco: str,
        meter_number: str,
        amount: Decimal,
        meter_type: str,
        reference: str,
    ) -> Dict[str, Any]:
        return await self._purchase(
            "/pay-electricity",
            {
                "meterNumber": meter_number,
                "amount": float(amount),
                "disco": disco,
                "meterType": meter_type,
                "reference": reference,
            },
        )

    async def pay_cable(
        self,
        provider: str,
        smartcard_number: str,
        plan_id: str,
        amount: Decimal,
        reference: str,
    ) -> Dict[str, Any]:
        return await self._purchase(
            "/pay-cable",
            {
                "smartcardNumber": smartcard_number,
                "amount": float(amount),
                "provider": provider,
                "planId": plan_id,
                "reference": reference,
            },
        )

    async def validate_meter(self, disco: str, meter_number: str, meter_type: str) -> Dict[str, Any]:
        return await self.post(
            "/validate-meter",
            data={"disco": disco, "meterNumber": meter_number, "meterType": meter_type},
        )

    async def validate_smartcard(self, provider: str, smartcard_number: str) -> Dict[str, Any]:
        return await self.post(
            "/validate-smartcard",
            data={"provider": provider, "smartcardNumber": smartcard_number},
        )

    async def get_transaction(self, reference: str) -> Dict[str, Any]:
        """Look up a purchase by our reference"""
        return normalize_response(await self.get(f"/transactions/{reference}"))
