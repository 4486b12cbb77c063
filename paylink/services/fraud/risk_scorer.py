# paylink/services/fraud/risk_scorer.py
"""
Transaction risk scoring
"""
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylink.core.config import settings
from paylink.core.constants import (
    EARTH_RADIUS_KM,
    RISK_2FA_THRESHOLD,
    RISK_BLOCK_THRESHOLD,
    RISK_MAX_SCORE,
    RISK_REVIEW_THRESHOLD,
    RISK_WEIGHT_ACCOUNT_LOCKED,
    RISK_WEIGHT_LARGE_PURCHASE,
    RISK_WEIGHT_LOCATION,
    RISK_WEIGHT_NEW_DEVICE,
    RISK_WEIGHT_PIN_ATTEMPTS,
    RISK_WEIGHT_VELOCITY,
    RiskAction,
    TransactionStatus,
    TransactionType,
)
from paylink.core.logging import logger
from paylink.core.utils import utcnow
from paylink.db.models import Device, FraudCheck, LoginHistory, PinAttempt, Transaction, User
from paylink.schemas.fraud import FraudStats, GeoPoint, RiskAssessment, RiskCheck, TransactionContext


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km"""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def combine_checks(checks: Iterable[RiskCheck]) -> int:
    """Sum of triggered weights, capped at 100"""
    return min(sum(check.weight for check in checks), RISK_MAX_SCORE)


def action_for_score(score: int) -> RiskAction:
    """
    0-29 allow, 30-59 review, 60-84 require_2fa, 85+ block
    """
    if score >= RISK_BLOCK_THRESHOLD:
        return RiskAction.BLOCK
    if score >= RISK_2FA_THRESHOLD:
        return RiskAction.REQUIRE_2FA
    if score >= RISK_REVIEW_THRESHOLD:
        return RiskAction.REVIEW
    return RiskAction.ALLOW


class RiskScorer:
    """
    Rule-based risk assessment.

    Each check is independent and contributes its weight when triggered.
    Every evaluation is persisted as a FraudCheck row.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        audit_logger=None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.audit_logger = audit_logger
        self.clock = clock

    async def score(
        self,
        user_id: str,
        context: TransactionContext,
        transaction_id: Optional[str] = None,
    ) -> RiskAssessment:
        """Evaluate `context` for `user_id` and record the outcome"""
        now = self.clock()

        async with self._session_factory.begin() as session:
            checks: List[RiskCheck] = []

            for check in (
                await self._check_location(session, user_id, context.location, now),
                await self._check_large_purchase(session, user_id, context.amount, now),
                await self._check_pin_attempts(session, user_id, now),
                await self._check_new_device(session, user_id, context),
                await self._check_velocity(session, user_id, now),
                await self._check_account_lock(session, user_id, now),
            ):
                if check is not None:
                    checks.append(check)

            risk_score = combine_checks(checks)
            action = action_for_score(risk_score)

            session.add(
                FraudCheck(
                    user_id=user_id,
                    transaction_id=transaction_id or context.reference,
                    risk_score=risk_score,
                    checks=[check.model_dump(mode="json") for check in checks],
                    action=action,
                    timestamp=now,
                )
            )

        logger.info(
            "🔍 Risk assessment for {}: {}/100 -> {} ({})",
            user_id,
            risk_score,
            action.value,
            ", ".join(check.name for check in checks) if checks else "No factors",
        )

        return RiskAssessment(risk_score=risk_score, checks=checks, action=action)

    # ==================== CHECKS ====================

    async def _last_location(
        self,
        session: AsyncSession,
        user_id: str,
    ) -> Optional[tuple[float, float, datetime]]:
        """Most recent known position from transactions or logins"""
        txn = (
            await session.execute(
                select(Transaction.latitude, Transaction.longitude, Transaction.timestamp)
                .where(
                    Transaction.user_id == user_id,
                    Transaction.latitude.is_not(None),
                    Transaction.longitude.is_not(None),
                )
                .order_by(Transaction.timestamp.desc())
                .limit(1)
            )
        ).first()

        login = (
            await session.execute(
                select(LoginHistory.latitude, LoginHistory.longitude, LoginHistory.timestamp)
                .where(
                    LoginHistory.user_id == user_id,
                    LoginHistory.latitude.is_not(None),
                    LoginHistory.longitude.is_not(None),
                )
                .order_by(LoginHistory.timestamp.desc())
                .limit(1)
            )
        ).first()

        candidates = [row for row in (txn, login) if row is not None]
        if not candidates:
            return None
        lat, lng, seen_at = max(candidates, key=lambda row: row[2])
        return lat, lng, seen_at

    async def _check_location(
        self,
        session: AsyncSession,
        user_id: str,
        location: Optional[GeoPoint],
        now: datetime,
    ) -> Optional[RiskCheck]:
        if location is None:
            return None

        last = await self._last_location(session, user_id)
        if last is None:
            return None

        last_lat, last_lng, seen_at = last
        hours = (now - seen_at).total_seconds() / 3600
        if hours <= 0:
            return None

        distance = haversine_km(last_lat, last_lng, location.lat, location.lng)
        if distance > settings.RISK_MAX_TRAVEL_SPEED_KMH * hours:
            logger.warning("⚠️ Impossible travel for {}: {:.0f} km in {:.2f} h", user_id, distance, hours)
            return RiskCheck(
                name="impossible_location_change",
                weight=RISK_WEIGHT_LOCATION,
                details={"distance_km": round(distance), "hours": round(hours, 2)},
            )
        return None

    async def _check_large_purchase(
        self,
        session: AsyncSession,
        user_id: str,
        amount: Decimal,
        now: datetime,
    ) -> Optional[RiskCheck]:
        threshold = settings.RISK_LARGE_PURCHASE_THRESHOLD
        since = now - timedelta(days=settings.RISK_HISTORY_DAYS)

        count, average = (
            await session.execute(
                select(func.count(Transaction.id), func.avg(Transaction.amount)).where(
                    Transaction.user_id == user_id,
                    Transaction.type == TransactionType.DEBIT,
                    Transaction.status == TransactionStatus.SUCCESS,
                    Transaction.timestamp >= since,
                )
            )
        ).one()

        details: Dict[str, object] = {"amount": str(amount), "threshold": str(threshold)}
        suspicious = amount > threshold

        if count:
            average = Decimal(str(average))
            details["average"] = str(round(average, 2))
            if amount > average * settings.RISK_AVERAGE_MULTIPLIER:
                suspicious = True

        if suspicious:
            return RiskCheck(name="unusually_large_purchase", weight=RISK_WEIGHT_LARGE_PURCHASE, details=details)
        return None

    async def _check_pin_attempts(
        self,
        session: AsyncSession,
        user_id: str,
        now: datetime,
    ) -> Optional[RiskCheck]:
        since = now - timedelta(minutes=settings.PIN_ATTEMPT_WINDOW_MINUTES)
        failures = await session.scalar(
            select(func.count(PinAttempt.id)).where(
                PinAttempt.user_id == user_id,
                PinAttempt.success.is_(False),
                PinAttempt.timestamp >= since,
            )
        )

        if failures >= settings.MAX_PIN_ATTEMPTS:
            return RiskCheck(
                name="max_pin_attempts_exceeded",
                weight=RISK_WEIGHT_PIN_ATTEMPTS,
                details={"failed_attempts": failures},
            )
        return None

    async def _check_new_device(
        self,
        session: AsyncSession,
        user_id: str,
        context: TransactionContext,
    ) -> Optional[RiskCheck]:
        if context.device is None:
            return None

        known = await session.scalar(
            select(func.count(Device.id)).where(
                Device.user_id == user_id,
                Device.fingerprint == context.device.fingerprint,
            )
        )
        if known:
            return None

        return RiskCheck(
            name="new_device",
            weight=RISK_WEIGHT_NEW_DEVICE,
            details={"fingerprint": context.device.fingerprint, "device_name": context.device.device_name},
        )

    async def _check_velocity(
        self,
        session: AsyncSession,
        user_id: str,
        now: datetime,
    ) -> Optional[RiskCheck]:
        """Too many debits in a short window"""
        since = now - timedelta(minutes=settings.RISK_VELOCITY_WINDOW_MINUTES)
        count = await session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == user_id,
                Transaction.type == TransactionType.DEBIT,
                Transaction.timestamp >= since,
            )
        )

        if count >= settings.RISK_VELOCITY_LIMIT:
            logger.warning("⚠️ High velocity detected for {}: {} debits", user_id, count)
            return RiskCheck(
                name="high_velocity",
                weight=RISK_WEIGHT_VELOCITY,
                details={"debits": count, "window_minutes": settings.RISK_VELOCITY_WINDOW_MINUTES},
            )
        return None

    async def _check_account_lock(
        self,
        session: AsyncSession,
        user_id: str,
        now: datetime,
    ) -> Optional[RiskCheck]:
        user = await session.get(User, user_id)
        if user is None or not user.account_locked:
            return None
        if user.lock_until is not None and user.lock_until <= now:
            return None

        return RiskCheck(
            name="account_locked",
            weight=RISK_WEIGHT_ACCOUNT_LOCKED,
            details={
                "reason": user.lock_reason,
                "lock_until": user.lock_until.isoformat() if user.lock_until else None,
            },
        )

    # ==================== REPORTING ====================

    async def fraud_stats(self, user_id: str, days: int = 30) -> FraudStats:
        since = self.clock() - timedelta(days=days)

        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(FraudCheck.risk_score, FraudCheck.action, FraudCheck.timestamp)
                    .where(FraudCheck.user_id == user_id, FraudCheck.timestamp >= since)
                    .order_by(FraudCheck.timestamp.desc())
                )
            ).all()

        if not rows:
            return FraudStats(
                total_checks=0,
                blocked_transactions=0,
                reviewed_transactions=0,
                average_risk_score=0,
            )

        return FraudStats(
            total_checks=len(rows),
            blocked_transactions=sum(1 for row in rows if row.action == RiskAction.BLOCK),
            reviewed_transactions=sum(1 for row in rows if row.action == RiskAction.REVIEW),
            average_risk_score=round(sum(row.risk_score for row in rows) / len(rows)),
            last_check=rows[0].timestamp,
        )

    async def report_suspicious_activity(
        self,
        user_id: str,
        activity_type: str,
        details: Dict,
    ) -> None:
        """Report suspicious activity for review"""

        logger.warning(
            "🚨 SUSPICIOUS ACTIVITY REPORTED:\n  User: {}\n  Type: {}\n  Details: {}",
            user_id,
            activity_type,
            details,
        )

        if self.audit_logger is not None:
            await self.audit_logger.log_security_event(
                event_type=f"suspicious_{activity_type}",
                user_id=user_id,
                details=details,
                risk_level="high",
            )
