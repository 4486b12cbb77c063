# paylink/schemas/payments.py
"""
Bill payment request/response schemas
"""
from decimal import Decimal
from typing import Optional, Literal, Dict, Any

from pydantic import BaseModel, Field

from paylink.core.constants import Category
from paylink.schemas.fraud import GeoPoint, DeviceInfo

PHONE_PATTERN = r"^(?:\+?234|0)[789][01]\d{8}$"


class PurchaseBase(BaseModel):
    provider: str = Field(..., min_length=2, max_length=40)
    amount: Decimal = Field(..., gt=0)
    location: Optional[GeoPoint] = None
    device: Optional[DeviceInfo] = None
    otp_code: Optional[str] = Field(default=None, pattern=r"^\d{6}$")
    reference: Optional[str] = Field(default=None, max_length=64)


class AirtimePurchase(PurchaseBase):
    phone_number: str = Field(..., pattern=PHONE_PATTERN)
    amount: Decimal = Field(..., ge=50, le=50000)


class DataPurchase(PurchaseBase):
    phone_number: str = Field(..., pattern=PHONE_PATTERN)
    plan_id: str = Field(..., min_length=1)


class ElectricityPayment(PurchaseBase):
    meter_number: str = Field(..., pattern=r"^\d{11,13}$")
    meter_type: Literal["prepaid", "postpaid"] = "prepaid"
    amount: Decimal = Field(..., ge=500)


class CablePayment(PurchaseBase):
    smartcard_number: str = Field(..., pattern=r"^\d{10,11}$")
    plan_id: str = Field(..., min_length=1)


class PurchaseResult(BaseModel):
    status: Literal["success", "pending", "failed", "requires_otp"]
    category: Category
    amount: Decimal
    charged_amount: Decimal
    discount_applied: Decimal = Decimal("0")
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    provider_reference: Optional[str] = None
    points_earned: int = 0
    risk_score: int = 0
    message: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)


class FundingInitResult(BaseModel):
    reference: str
    transaction_id: str
    payment_link: Optional[str] = None
    message: str = "Redirecting to payment gateway"


class MonnifyWebhook(BaseModel):
    """Subset of the Monnify transaction-completion payload we rely on"""

    paymentReference: str
    amountPaid: Decimal
    paymentStatus: str
    transactionReference: Optional[str] = None


class MeterValidationRequest(BaseModel):
    provider: str
    meter_number: str = Field(..., pattern=r"^\d{11,13}$")
    meter_type: Literal["prepaid", "postpaid"] = "prepaid"


class SmartcardValidationRequest(BaseModel):
    provider: str
    smartcard_number: str = Field(..., pattern=r"^\d{10,11}$")


class CustomerValidation(BaseModel):
    valid: bool
    customer_name: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
