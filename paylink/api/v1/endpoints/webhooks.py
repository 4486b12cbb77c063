"""
Monnify webhook - payment confirmations for wallet funding
"""
import json

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError

from paylink.core.config import settings
from paylink.core.dependencies import get_processor
from paylink.core.logging import logger
from paylink.schemas.payments import MonnifyWebhook
from paylink.services.payments.monnify import verify_webhook_signature
from paylink.services.payments.processor import TransactionProcessor

router = APIRouter()

PAID_STATUSES = {"PAID", "OVERPAID"}
UNPAID_STATUSES = {"FAILED", "EXPIRED", "CANCELLED", "ABANDONED", "REVERSED"}


@router.post("/monnify")
async def monnify_webhook(
    request: Request,
    processor: TransactionProcessor = Depends(get_processor),
):
    """
    Settle a wallet funding once Monnify reports it.

    The body is signed with MONNIFY_WEBHOOK_SECRET; repeated deliveries
    are harmless because settlement is idempotent.
    """
    if not settings.MONNIFY_WEBHOOK_SECRET:
        raise HTTPException(status_code=501, detail="Monnify webhook is not configured")

    body = await request.body()
    signature = request.headers.get("monnify-signature") or request.headers.get("x-monnify-signature")
    if not verify_webhook_signature(settings.MONNIFY_WEBHOOK_SECRET, body, signature):
        logger.warning("🚨 Monnify webhook with invalid signature rejected")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
        event = MonnifyWebhook.model_validate(payload.get("eventData", payload))
    except (ValueError, AttributeError, PydanticValidationError) as exc:
        raise HTTPException(status_code=400, detail="Malformed webhook payload") from exc

    status = event.paymentStatus.upper()
    logger.info("📨 Monnify webhook {} -> {}", event.paymentReference, status)

    if status in PAID_STATUSES:
        record = await processor.confirm_funding(
            event.paymentReference,
            amount=event.amountPaid if status == "PAID" else None,
            provider_reference=event.transactionReference,
        )
    elif status in UNPAID_STATUSES:
        record = await processor.cancel_funding(event.paymentReference, f"Monnify reported {status}")
    else:
        return {"status": "ignored", "reference": event.paymentReference}

    return {"status": record.status.value, "reference": record.reference}
