# paylink/core/config.py
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with validation"""

    # ==================== APPLICATION ====================
    APP_NAME: str = "PAYLINK Wallet Core"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = Field(default=False)

    # ==================== API ====================
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = Field(default=["*"])
    USER_ID_HEADER: str = Field(default="X-User-Id")
    ADMIN_ID_HEADER: str = Field(default="X-Admin-Id")

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./paylink.db")
    DB_ECHO: bool = Field(default=False)
    DB_CREATE_TABLES: bool = Field(default=True)

    # ==================== REDIS ====================
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # ==================== PAYFLEX ====================
    PAYFLEX_API_URL: str = Field(default="https://api.payflex.co")
    PAYFLEX_API_KEY: str | None = Field(default=None)
    PAYFLEX_TIMEOUT: int = Field(default=30)

    # ==================== MONNIFY ====================
    MONNIFY_API_URL: str = Field(default="https://api.monnify.com")
    MONNIFY_API_KEY: str | None = Field(default=None)
    MONNIFY_SECRET_KEY: str | None = Field(default=None)
    MONNIFY_CONTRACT_CODE: str | None = Field(default=None)
    MONNIFY_WEBHOOK_SECRET: str | None = Field(default=None)
    MONNIFY_REDIRECT_URL: str = Field(default="http://localhost:3000/wallet/success")
    MONNIFY_TIMEOUT: int = Field(default=30)

    # ==================== LEDGER ====================
    CURRENCY: str = "NGN"
    LEDGER_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    MIN_SAVINGS_RESERVE: Decimal = Field(default=Decimal("500"))
    MAX_WALLET_TRANSFER: Decimal = Field(default=Decimal("100000"))
    MAX_DEPOSIT_AMOUNT: Decimal = Field(default=Decimal("5000000"))

    # ==================== SAVINGS ====================
    SAVINGS_MAX_WITHDRAWALS: int = Field(default=3)
    SAVINGS_DEFAULT_RATE: Decimal = Field(default=Decimal("5"))

    # ==================== RISK ====================
    RISK_LARGE_PURCHASE_THRESHOLD: Decimal = Field(default=Decimal("100000"))
    RISK_AVERAGE_MULTIPLIER: Decimal = Field(default=Decimal("5"))
    RISK_HISTORY_DAYS: int = Field(default=30)
    RISK_MAX_TRAVEL_SPEED_KMH: float = Field(default=900.0)
    RISK_VELOCITY_LIMIT: int = Field(default=3)
    RISK_VELOCITY_WINDOW_MINUTES: int = Field(default=10)

    # ==================== SECURITY ====================
    MAX_PIN_ATTEMPTS: int = Field(default=3)
    PIN_ATTEMPT_WINDOW_MINUTES: int = Field(default=15)
    ACCOUNT_LOCK_MINUTES: int = Field(default=30)
    OTP_LENGTH: int = Field(default=6)
    OTP_VALIDITY_MINUTES: int = Field(default=5)
    OTP_MAX_ATTEMPTS: int = Field(default=3)

    # ==================== REWARDS ====================
    DISCOUNT_VALIDITY_DAYS: int = Field(default=30)
    REFERRER_BONUS: Decimal = Field(default=Decimal("500"))
    REFEREE_BONUS: Decimal = Field(default=Decimal("200"))

    # ==================== MONITORING ====================
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_TO_FILE: bool = Field(default=True)
    LOG_DIR: Path = Field(default=Path("./logs"))
    AUDIT_LOG_DIR: Path = Field(default=Path("./logs/audit"))

    # ==================== RECONCILIATION ====================
    RECONCILE_BATCH_LIMIT: int = Field(default=200)

    @field_validator("DATABASE_URL")
    def validate_async_driver(cls, value: str) -> str:
        """The ledger only talks to async engines"""
        if value.startswith("sqlite:///"):
            return value.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        if value.startswith("postgresql://"):
            return value.replace("postgresql://", "postgresql+asyncpg://", 1)
        return value

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()


settings = get_settings()
