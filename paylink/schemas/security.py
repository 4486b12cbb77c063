# paylink/schemas/security.py
"""
PIN, lock, device and login schemas
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from paylink.schemas.fraud import GeoPoint, DeviceInfo


class PinRequest(BaseModel):
    pin: str = Field(..., pattern=r"^\d{4}$")


class LockStatus(BaseModel):
    locked: bool
    reason: Optional[str] = None
    lock_until: Optional[datetime] = None
    remaining_minutes: Optional[int] = None


class LoginEvent(BaseModel):
    location: Optional[GeoPoint] = None
    device: Optional[DeviceInfo] = None
    ip_address: Optional[str] = None


class DeviceRegistration(BaseModel):
    new_device: bool
    fingerprint: str


class SuspendRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)


class LockRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=120)
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=7 * 24 * 60)


class DeviceRecord(BaseModel):
    fingerprint: str
    device_name: Optional[str] = None
    user_agent: Optional[str] = None
    is_active: bool
    first_seen: datetime
    last_seen: datetime

    class Config:
        from_attributes = True


class NotificationRecord(BaseModel):
    id: int
    type: str
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool
    timestamp: datetime

    class Config:
        from_attributes = True
