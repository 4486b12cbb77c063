"""PIN, lock, login/device and admin account endpoints"""

from typing import List

from fastapi import APIRouter, Depends, Query, Request

from paylink.api.dependencies import get_admin_id, get_current_user_id
from paylink.core.dependencies import get_risk_scorer, get_security_service
from paylink.schemas.fraud import FraudStats
from paylink.schemas.security import (
    DeviceRecord,
    DeviceRegistration,
    LockRequest,
    LockStatus,
    LoginEvent,
    NotificationRecord,
    PinRequest,
    SuspendRequest,
)
from paylink.services.fraud.risk_scorer import RiskScorer
from paylink.services.fraud.security import SecurityService

router = APIRouter()


@router.post("/pin", status_code=204)
async def set_pin(
    request: PinRequest,
    user_id: str = Depends(get_current_user_id),
    security: SecurityService = Depends(get_security_service),
):
    await security.set_pin(user_id, request.pin)


@router.post("/pin/verify")
async def verify_pin(
    request: PinRequest,
    http_request: Request,
    user_id: str = Depends(get_current_user_id),
    security: SecurityService = Depends(get_security_service),
):
    valid = await security.verify_pin(
        user_id,
        request.pin,
        ip_address=http_request.client.host if http_request.client else None,
        user_agent=http_request.headers.get("user-agent"),
    )
    return {"valid": valid}


@router.get("/lock", response_model=LockStatus)
async def lock_status(
    user_id: str = Depends(get_current_user_id),
    security: SecurityService = Depends(get_security_service),
):
    return await security.is_account_locked(user_id)


@router.post("/login", response_model=DeviceRegistration | None)
async def record_login(
    event: LoginEvent,
    http_request: Request,
    user_id: str = Depends(get_current_user_id),
    security: SecurityService = Depends(get_security_service),
):
    if event.ip_address is None and http_request.client:
        event.ip_address = http_request.client.host
    return await security.record_login(user_id, event)


@router.get("/devices", response_model=List[DeviceRecord])
async def list_devices(
    user_id: str = Depends(get_current_user_id),
    security: SecurityService = Depends(get_security_service),
):
    return await security.list_devices(user_id)


@router.get("/notifications", response_model=List[NotificationRecord])
async def notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    security: SecurityService = Depends(get_security_service),
):
    return await security.notifications(user_id, unread_only=unread_only, limit=limit)


@router.get("/fraud-stats", response_model=FraudStats)
async def fraud_stats(
    days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(get_current_user_id),
    risk_scorer: RiskScorer = Depends(get_risk_scorer),
):
    return await risk_scorer.fraud_stats(user_id, days=days)


# ==================== ADMIN ====================


@router.post("/users/{user_id}/lock", response_model=LockStatus)
async def lock_account(
    user_id: str,
    request: LockRequest,
    admin_id: str = Depends(get_admin_id),
    security: SecurityService = Depends(get_security_service),
):
    return await security.lock_account(user_id, request.reason, request.duration_minutes)


@router.post("/users/{user_id}/unlock", response_model=LockStatus)
async def unlock_account(
    user_id: str,
    admin_id: str = Depends(get_admin_id),
    security: SecurityService = Depends(get_security_service),
):
    return await security.unlock_account(user_id, admin_id=admin_id)


@router.post("/users/{user_id}/suspend", status_code=204)
async def suspend_user(
    user_id: str,
    request: SuspendRequest,
    admin_id: str = Depends(get_admin_id),
    security: SecurityService = Depends(get_security_service),
):
    await security.suspend_user(user_id, request.reason, admin_id)


@router.post("/users/{user_id}/reinstate", status_code=204)
async def reinstate_user(
    user_id: str,
    admin_id: str = Depends(get_admin_id),
    security: SecurityService = Depends(get_security_service),
):
    await security.reinstate_user(user_id, admin_id)
