# paylink/services/fraud/security.py
"""
Account security: transaction PIN, temporary locks, suspension,
login/device history and OTP step-up verification
"""
import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from paylink.core.config import settings
from paylink.core.exception import AccountLockedError, AccountSuspendedError, ValidationError
from paylink.core.logging import logger
from paylink.core.utils import utcnow
from paylink.db.models import Device, LoginHistory, Notification, PinAttempt, User
from paylink.schemas.fraud import DeviceInfo
from paylink.schemas.security import DeviceRegistration, LockStatus, LoginEvent
from paylink.services.wallet.ledger import WalletLedger


def add_notification(
    session: AsyncSession,
    user_id: str,
    title: str,
    message: str,
    type: str = "security",
    data: Optional[Dict[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> Notification:
    """Queue an in-app notification in the current transaction"""
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data=data or {},
        read=False,
        timestamp=timestamp or utcnow(),
    )
    session.add(notification)
    return notification


def hash_pin(user_id: str, pin: str) -> str:
    return hashlib.sha256(f"{user_id}:{pin}".encode()).hexdigest()


class SecurityService:
    """
    PIN checks and account locks

    User rows are versioned, so every write here goes through
    `WalletLedger.atomic` like the balance updates do.
    """

    def __init__(
        self,
        ledger: WalletLedger,
        audit_logger=None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.audit_logger = audit_logger
        self.clock = clock

    async def _audit(self, user_id: str, event_type: str, details: Dict[str, Any], risk_level: str = "info") -> None:
        if self.audit_logger is not None:
            await self.audit_logger.log_security_event(
                user_id=user_id,
                event_type=event_type,
                details=details,
                risk_level=risk_level,
            )

    # ==================== PIN ====================

    async def set_pin(self, user_id: str, pin: str) -> None:
        if not self.ledger.validator.validate_pin_format(pin):
            raise ValidationError("PIN must be exactly 4 digits")

        async def _set(session: AsyncSession) -> None:
            user = await self.ledger.load_user(session, user_id)
            user.transaction_pin = hash_pin(user_id, pin)

        await self.ledger.atomic(user_id, _set)
        await self._audit(user_id, "pin_set", {})
        logger.info("🔑 Transaction PIN set for {}", user_id)

    async def verify_pin(
        self,
        user_id: str,
        pin: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> bool:
        """
        Check the transaction PIN and record the attempt.

        Too many failures inside the window lock the account.

        Raises:
            AccountLockedError: the account is (or just became) locked
            ValidationError: no PIN has been set
        """
        status = await self.is_account_locked(user_id)
        if status.locked:
            raise AccountLockedError(
                f"Account locked. Try again in {status.remaining_minutes} minutes",
                status.model_dump(mode="json"),
            )

        async def _verify(session: AsyncSession) -> tuple[bool, int]:
            user = await self.ledger.load_user(session, user_id, require_active=False)
            if not user.transaction_pin:
                raise ValidationError("Transaction PIN not set")

            now = self.clock()
            success = secrets.compare_digest(user.transaction_pin, hash_pin(user_id, pin))
            session.add(
                PinAttempt(
                    user_id=user_id,
                    success=success,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    timestamp=now,
                )
            )
            if success:
                return True, 0

            await session.flush()
            failures = await session.scalar(
                select(func.count(PinAttempt.id)).where(
                    PinAttempt.user_id == user_id,
                    PinAttempt.success.is_(False),
                    PinAttempt.timestamp >= now - timedelta(minutes=settings.PIN_ATTEMPT_WINDOW_MINUTES),
                )
            )
            if failures >= settings.MAX_PIN_ATTEMPTS:
                self._apply_lock(session, user, "max_pin_attempts_exceeded", settings.ACCOUNT_LOCK_MINUTES)
            return False, failures

        valid, failures = await self.ledger.atomic(user_id, _verify)

        if valid:
            return True

        logger.warning("🔑 Invalid PIN for {} ({} recent failures)", user_id, failures)
        if failures >= settings.MAX_PIN_ATTEMPTS:
            await self._audit(
                user_id,
                "account_locked",
                {"reason": "max_pin_attempts_exceeded", "failed_attempts": failures},
                risk_level="high",
            )
            raise AccountLockedError(
                f"Too many failed PIN attempts. Account locked for {settings.ACCOUNT_LOCK_MINUTES} minutes",
                {"failed_attempts": failures},
            )
        await self._audit(user_id, "pin_failed", {"failed_attempts": failures}, risk_level="medium")
        return False

    # ==================== LOCKS ====================

    def _apply_lock(self, session: AsyncSession, user: User, reason: str, minutes: int) -> datetime:
        lock_until = self.clock() + timedelta(minutes=minutes)
        user.account_locked = True
        user.lock_reason = reason
        user.lock_until = lock_until
        add_notification(
            session,
            user.uid,
            "Account Temporarily Locked",
            f"Your account has been locked for security reasons. It will unlock in {minutes} minutes.",
            data={"reason": reason, "lock_until": lock_until.isoformat()},
            timestamp=self.clock(),
        )
        return lock_until

    async def lock_account(
        self,
        user_id: str,
        reason: str,
        duration_minutes: int | None = None,
    ) -> LockStatus:
        minutes = duration_minutes or settings.ACCOUNT_LOCK_MINUTES

        async def _lock(session: AsyncSession) -> datetime:
            user = await self.ledger.load_user(session, user_id, require_active=False)
            return self._apply_lock(session, user, reason, minutes)

        lock_until = await self.ledger.atomic(user_id, _lock)
        await self._audit(user_id, "account_locked", {"reason": reason, "minutes": minutes}, risk_level="high")
        logger.warning("🔒 Account {} locked until {} ({})", user_id, lock_until, reason)
        return LockStatus(locked=True, reason=reason, lock_until=lock_until, remaining_minutes=minutes)

    async def unlock_account(self, user_id: str, admin_id: str | None = None) -> LockStatus:
        async def _unlock(session: AsyncSession) -> None:
            user = await self.ledger.load_user(session, user_id, require_active=False)
            user.account_locked = False
            user.lock_until = None
            user.lock_reason = None

        await self.ledger.atomic(user_id, _unlock)
        await self._audit(user_id, "account_unlocked", {"admin_id": admin_id})
        logger.info("🔓 Account {} unlocked", user_id)
        return LockStatus(locked=False)

    async def is_account_locked(self, user_id: str) -> LockStatus:
        """Current lock state; an expired lock is lifted on read"""
        async with self.ledger.session_factory() as session:
            user = await session.get(User, user_id)

        if user is None or not user.account_locked:
            return LockStatus(locked=False)

        now = self.clock()
        if user.lock_until is not None and user.lock_until <= now:
            await self.unlock_account(user_id)
            return LockStatus(locked=False)

        remaining = None
        if user.lock_until is not None:
            remaining = -(-int((user.lock_until - now).total_seconds()) // 60)
        return LockStatus(
            locked=True,
            reason=user.lock_reason,
            lock_until=user.lock_until,
            remaining_minutes=remaining,
        )

    async def ensure_can_transact(self, user_id: str) -> None:
        """Raise when the account may not move money right now"""
        async with self.ledger.session_factory() as session:
            user = await session.get(User, user_id)
        if user is not None and user.suspended:
            raise AccountSuspendedError("Account is suspended", {"reason": user.suspension_reason})

        status = await self.is_account_locked(user_id)
        if status.locked:
            raise AccountLockedError(
                f"Account locked. Try again in {status.remaining_minutes} minutes",
                status.model_dump(mode="json"),
            )

    # ==================== SUSPENSION (ADMIN) ====================

    async def suspend_user(self, user_id: str, reason: str, admin_id: str) -> None:
        async def _suspend(session: AsyncSession) -> None:
            user = await self.ledger.load_user(session, user_id, require_active=False)
            user.suspended = True
            user.suspension_reason = reason
            add_notification(
                session,
                user_id,
                "Account Suspended",
                "Your account has been suspended. Contact support for assistance.",
                data={"reason": reason},
                timestamp=self.clock(),
            )

        await self.ledger.atomic(user_id, _suspend)
        await self._audit(user_id, "account_suspended", {"reason": reason, "admin_id": admin_id}, risk_level="high")
        logger.warning("⛔ User {} suspended by {}: {}", user_id, admin_id, reason)

    async def reinstate_user(self, user_id: str, admin_id: str) -> None:
        async def _reinstate(session: AsyncSession) -> None:
            user = await self.ledger.load_user(session, user_id, require_active=False)
            user.suspended = False
            user.suspension_reason = None

        await self.ledger.atomic(user_id, _reinstate)
        await self._audit(user_id, "account_reinstated", {"admin_id": admin_id})
        logger.info("✅ User {} reinstated by {}", user_id, admin_id)

    # ==================== LOGINS & DEVICES ====================

    async def record_login(self, user_id: str, event: LoginEvent) -> Optional[DeviceRegistration]:
        async with self.ledger.session_factory.begin() as session:
            session.add(
                LoginHistory(
                    user_id=user_id,
                    latitude=event.location.lat if event.location else None,
                    longitude=event.location.lng if event.location else None,
                    ip_address=event.ip_address,
                    device_fingerprint=event.device.fingerprint if event.device else None,
                    timestamp=self.clock(),
                )
            )

        logger.info("👋 Login recorded for {}", user_id)
        if event.device is not None:
            return await self.register_device(user_id, event.device)
        return None

    async def register_device(self, user_id: str, device: DeviceInfo) -> DeviceRegistration:
        """Remember a device; the first sighting notifies the user"""
        now = self.clock()

        async with self.ledger.session_factory.begin() as session:
            conditions = [Device.fingerprint == device.fingerprint]
            if device.user_agent:
                conditions.append(Device.user_agent == device.user_agent)

            known = (
                await session.execute(
                    select(Device)
                    .where(Device.user_id == user_id, Device.is_active.is_(True), or_(*conditions))
                    .limit(1)
                )
            ).scalar_one_or_none()

            if known is not None:
                known.last_seen = now
                return DeviceRegistration(new_device=False, fingerprint=known.fingerprint)

            session.add(
                Device(
                    user_id=user_id,
                    fingerprint=device.fingerprint,
                    device_name=device.device_name,
                    user_agent=device.user_agent,
                    is_active=True,
                    first_seen=now,
                    last_seen=now,
                )
            )
            add_notification(
                session,
                user_id,
                "New Device Detected",
                f"A new device ({device.device_name or 'unknown'}) accessed your account",
                data={"device": device.model_dump()},
                timestamp=now,
            )

        await self._audit(user_id, "new_device", {"fingerprint": device.fingerprint}, risk_level="medium")
        logger.info("📱 New device for {}: {}", user_id, device.fingerprint)
        return DeviceRegistration(new_device=True, fingerprint=device.fingerprint)

    async def list_devices(self, user_id: str) -> List[Device]:
        async with self.ledger.session_factory() as session:
            rows = await session.execute(
                select(Device).where(Device.user_id == user_id).order_by(Device.last_seen.desc())
            )
            return list(rows.scalars().all())

    async def notifications(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.read.is_(False))
        query = query.order_by(Notification.timestamp.desc()).limit(limit)

        async with self.ledger.session_factory() as session:
            rows = await session.execute(query)
            return list(rows.scalars().all())


class OTPService:
    """
    One-Time Password service for step-up verification
    Uses Redis for temporary storage
    """

    def __init__(
        self,
        redis,
        length: int | None = None,
        validity_minutes: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self.redis = redis
        self.otp_length = length or settings.OTP_LENGTH
        self.validity_minutes = validity_minutes or settings.OTP_VALIDITY_MINUTES
        self.max_attempts = max_attempts or settings.OTP_MAX_ATTEMPTS

    def _generate_otp_code(self) -> str:
        """Generate numeric OTP with fixed length"""
        return "".join(str(secrets.randbelow(10)) for _ in range(self.otp_length))

    def _hash_otp(self, otp: str) -> str:
        """Hash OTP for secure storage"""
        return hashlib.sha256(otp.encode()).hexdigest()

    @staticmethod
    def _key(user_id: str, action: str) -> str:
        return f"otp:{user_id}:{action}"

    async def generate_otp(self, user_id: str, action: str, **metadata: Any) -> str:
        """
        Generate and store an OTP for `action`

        Args:
            user_id: User identifier
            action: what the code unlocks (e.g. "airtime")
            **metadata: Additional context (amount, recipient, ...)

        Returns:
            OTP code
        """
        otp_code = self._generate_otp_code()
        redis_key = self._key(user_id, action)

        otp_data: Dict[str, str] = {
            "otp_hash": self._hash_otp(otp_code),
            "action": action,
            "created_at": utcnow().isoformat(),
            "attempts": "0",
            **{k: str(v) for k, v in metadata.items()},
        }

        await self.redis.hset(redis_key, mapping=otp_data)
        await self.redis.expire(redis_key, self.validity_minutes * 60)

        logger.info("🔐 OTP generated for {} - Action: {}", user_id, action)
        return otp_code

    async def verify_otp(self, user_id: str, action: str, otp_code: str) -> Dict[str, Any]:
        """
        Verify OTP

        Returns:
            {
                "valid": bool,
                "metadata": dict (if valid),
                "error": str (if invalid)
            }
        """
        redis_key = self._key(user_id, action)
        otp_data = await self.redis.hgetall(redis_key)

        if not otp_data:
            logger.warning("🔐 OTP not found or expired for {}", user_id)
            return {"valid": False, "error": "OTP expired or invalid"}

        attempts = int(otp_data.get("attempts", "0"))

        if attempts >= self.max_attempts:
            logger.warning("🔐 Max OTP attempts exceeded for {}", user_id)
            await self.redis.delete(redis_key)
            return {"valid": False, "error": "Maximum number of attempts reached"}

        if not secrets.compare_digest(self._hash_otp(otp_code), otp_data.get("otp_hash", "")):
            await self.redis.hincrby(redis_key, "attempts", 1)
            remaining_attempts = self.max_attempts - attempts - 1
            logger.warning("🔐 Invalid OTP for {}. Attempts left: {}", user_id, remaining_attempts)
            if remaining_attempts <= 0:
                await self.redis.delete(redis_key)
            return {
                "valid": False,
                "error": f"Incorrect code. {remaining_attempts} attempts remaining",
            }

        logger.info("✅ OTP verified for {} - Action: {}", user_id, action)
        await self.redis.delete(redis_key)

        metadata = {
            key: value
            for key, value in otp_data.items()
            if key not in {"otp_hash", "attempts", "created_at", "action"}
        }
        return {"valid": True, "metadata": metadata}

    async def cancel_otp(self, user_id: str, action: str) -> None:
        """Cancel/invalidate OTP"""
        await self.redis.delete(self._key(user_id, action))
        logger.info("🔐 OTP cancelled for {}", user_id)
