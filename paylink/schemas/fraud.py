# paylink/schemas/fraud.py
"""
Risk scoring schemas
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field

from paylink.core.constants import RiskAction


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class DeviceInfo(BaseModel):
    fingerprint: str = Field(..., min_length=1, max_length=128)
    device_name: Optional[str] = None
    user_agent: Optional[str] = None


class TransactionContext(BaseModel):
    """What the scorer knows about the transaction being attempted"""

    amount: Decimal = Field(..., gt=0)
    reference: Optional[str] = None
    category: Optional[str] = None
    location: Optional[GeoPoint] = None
    device: Optional[DeviceInfo] = None
    ip_address: Optional[str] = None


class RiskCheck(BaseModel):
    """One triggered rule and the points it contributes"""

    name: str
    weight: int = Field(..., ge=0)
    details: Dict[str, Any] = Field(default_factory=dict)


class RiskAssessment(BaseModel):
    risk_score: int = Field(..., ge=0, le=100)
    checks: List[RiskCheck] = Field(default_factory=list)
    action: RiskAction

    @property
    def approved(self) -> bool:
        return self.action == RiskAction.ALLOW


class FraudStats(BaseModel):
    total_checks: int
    blocked_transactions: int
    reviewed_transactions: int
    average_risk_score: int
    last_check: Optional[datetime] = None
