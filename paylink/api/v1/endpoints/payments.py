"""Bill payment endpoints"""

from fastapi import APIRouter, Depends, Request

from paylink.api.dependencies import get_current_user_id
from paylink.core.dependencies import get_processor
from paylink.schemas.payments import (
    AirtimePurchase,
    CablePayment,
    CustomerValidation,
    DataPurchase,
    ElectricityPayment,
    MeterValidationRequest,
    PurchaseResult,
    SmartcardValidationRequest,
)
from paylink.services.payments.processor import TransactionProcessor

router = APIRouter()


def _client_ip(http_request: Request) -> str | None:
    return http_request.client.host if http_request.client else None


@router.post("/airtime", response_model=PurchaseResult)
async def buy_airtime(
    request: AirtimePurchase,
    http_request: Request,
    user_id: str = Depends(get_current_user_id),
    processor: TransactionProcessor = Depends(get_processor),
):
    return await processor.purchase_airtime(user_id, request, ip_address=_client_ip(http_request))


@router.post("/data", response_model=PurchaseResult)
async def buy_data(
    request: DataPurchase,
    http_request: Request,
    user_id: str = Depends(get_current_user_id),
    processor: TransactionProcessor = Depends(get_processor),
):
    return await processor.purchase_data(user_id, request, ip_address=_client_ip(http_request))


@router.post("/electricity", response_model=PurchaseResult)
async def pay_electricity(
    request: ElectricityPayment,
    http_request: Request,
    user_id: str = Depends(get_current_user_id),
    processor: TransactionProcessor = Depends(get_processor),
):
    return await processor.pay_electricity(user_id, request, ip_address=_client_ip(http_request))


@router.post("/cable", response_model=PurchaseResult)
async def pay_cable(
    request: CablePayment,
    http_request: Request,
    user_id: str = Depends(get_current_user_id),
    processor: TransactionProcessor = Depends(get_processor),
):
    return await processor.pay_cable(user_id, request, ip_address=_client_ip(http_request))


@router.post("/validate/meter", response_model=CustomerValidation)
async def validate_meter(
    request: MeterValidationRequest,
    user_id: str = Depends(get_current_user_id),
    processor: TransactionProcessor = Depends(get_processor),
):
    return await processor.validate_meter(request.provider, request.meter_number, request.meter_type)


@router.post("/validate/smartcard", response_model=CustomerValidation)
async def validate_smartcard(
    request: SmartcardValidationRequest,
    user_id: str = Depends(get_current_user_id),
    processor: TransactionProcessor = Depends(get_processor),
):
    return await processor.validate_smartcard(request.provider, request.smartcard_number)
