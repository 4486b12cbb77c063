# paylink/core/dependencies.py
"""
Global dependencies for the entire application
"""
from __future__ import annotations

from typing import Optional, TYPE_CHECKING

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from paylink.core.config import settings
from paylink.core.logging import logger
from paylink.db.session import build_engine, build_session_factory, create_tables
from paylink.services.audit.audit import AuditLogger
from paylink.services.fraud.risk_scorer import RiskScorer
from paylink.services.fraud.security import OTPService, SecurityService
from paylink.services.payments.monnify import MonnifyClient
from paylink.services.payments.payflex import PayFlexClient
from paylink.services.payments.processor import TransactionProcessor
from paylink.services.referrals.service import ReferralService
from paylink.services.rewards.service import RewardService
from paylink.services.savings.service import SavingsService
from paylink.services.wallet.ledger import WalletLedger

if TYPE_CHECKING:
    from paylink.jobs.reconcile import Reconciler


# ==================== DATABASE ====================

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the configured database"""
    if _session_factory is None:
        raise RuntimeError("Database not initialized")
    return _session_factory


# ==================== REDIS ====================

_redis_pool: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Redis client (singleton)"""
    global _redis_pool

    if _redis_pool is None:
        _redis_pool = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
        logger.info("✅ Redis client ready")

    return _redis_pool


async def close_redis() -> None:
    """Close Redis on shutdown"""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None


# ==================== SERVICES ====================

_audit_logger: Optional[AuditLogger] = None
_ledger: Optional[WalletLedger] = None
_risk_scorer: Optional[RiskScorer] = None
_security: Optional[SecurityService] = None
_otp: Optional[OTPService] = None
_payflex: Optional[PayFlexClient] = None
_monnify: Optional[MonnifyClient] = None
_processor: Optional[TransactionProcessor] = None
_savings: Optional[SavingsService] = None
_rewards: Optional[RewardService] = None
_referrals: Optional[ReferralService] = None
_reconciler: "Reconciler | None" = None


def get_audit_logger() -> AuditLogger:
    if _audit_logger is None:
        raise RuntimeError("Audit logger not initialized")
    return _audit_logger


def get_ledger() -> WalletLedger:
    """Get wallet ledger"""
    if _ledger is None:
        raise RuntimeError("Wallet ledger not initialized")
    return _ledger


def get_risk_scorer() -> RiskScorer:
    if _risk_scorer is None:
        raise RuntimeError("Risk scorer not initialized")
    return _risk_scorer


def get_security_service() -> SecurityService:
    if _security is None:
        raise RuntimeError("Security service not initialized")
    return _security


def get_otp_service() -> OTPService:
    if _otp is None:
        raise RuntimeError("OTP service not initialized")
    return _otp


def get_payflex_client() -> PayFlexClient:
    if _payflex is None:
        raise RuntimeError("PayFlex client not initialized")
    return _payflex


def get_monnify_client() -> MonnifyClient:
    if _monnify is None:
        raise RuntimeError("Monnify client not initialized")
    return _monnify


def get_processor() -> TransactionProcessor:
    """Get transaction processor"""
    if _processor is None:
        raise RuntimeError("Transaction processor not initialized")
    return _processor


def get_savings_service() -> SavingsService:
    if _savings is None:
        raise RuntimeError("Savings service not initialized")
    return _savings


def get_reward_service() -> RewardService:
    if _rewards is None:
        raise RuntimeError("Reward service not initialized")
    return _rewards


def get_referral_service() -> ReferralService:
    if _referrals is None:
        raise RuntimeError("Referral service not initialized")
    return _referrals


def get_reconciler() -> "Reconciler":
    """
    Get Reconciler instance (singleton).

    Lazy import to avoid circular dependency:
    - dependencies.py -> reconcile.py -> dependencies.py
    """
    global _reconciler

    if _reconciler is None:
        from paylink.jobs.reconcile import Reconciler

        _reconciler = Reconciler(
            ledger=get_ledger(),
            payflex=get_payflex_client(),
            monnify=get_monnify_client(),
            audit_logger=get_audit_logger(),
        )

    return _reconciler


async def initialize_services() -> None:
    """
    Build the engine and all services.

    Called once from the FastAPI lifespan in `main.py` and by the
    reconciliation job.
    """
    global _engine, _session_factory
    global _audit_logger, _ledger, _risk_scorer, _security, _otp
    global _payflex, _monnify, _processor, _savings, _rewards, _referrals

    logger.info("🚀 Initializing services...")

    _engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
    _session_factory = build_session_factory(_engine)
    if settings.DB_CREATE_TABLES:
        await create_tables(_engine)

    _audit_logger = AuditLogger(settings.AUDIT_LOG_DIR)
    _ledger = WalletLedger(_session_factory)
    _risk_scorer = RiskScorer(_session_factory, audit_logger=_audit_logger)
    _security = SecurityService(_ledger, audit_logger=_audit_logger)
    _otp = OTPService(get_redis())

    _payflex = PayFlexClient()
    _monnify = MonnifyClient()

    _processor = TransactionProcessor(
        ledger=_ledger,
        risk_scorer=_risk_scorer,
        security=_security,
        otp_service=_otp,
        payflex=_payflex,
        monnify=_monnify,
        audit_logger=_audit_logger,
    )
    _savings = SavingsService(_ledger)
    _rewards = RewardService(_ledger, payflex=_payflex)
    _referrals = ReferralService(_ledger)

    logger.info("✅ All services ready")


async def cleanup_services() -> None:
    """Cleanup on shutdown"""
    global _engine, _session_factory
    global _audit_logger, _ledger, _risk_scorer, _security, _otp
    global _payflex, _monnify, _processor, _savings, _rewards, _referrals, _reconciler

    logger.info("🛑 Shutting down services...")

    if _payflex is not None:
        await _payflex.close()
    if _monnify is not None:
        await _monnify.close()

    await close_redis()

    if _engine is not None:
        await _engine.dispose()

    _engine = _session_factory = None
    _audit_logger = _ledger = _risk_scorer = _security = _otp = None
    _payflex = _monnify = _processor = _savings = _rewards = _referrals = _reconciler = None

    logger.info("✅ Cleanup complete")
