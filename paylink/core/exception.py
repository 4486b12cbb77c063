"""
Custom exceptions for clear error handling
"""
from typing import Any


class BaseAppException(Exception):
    """Base exception for all application errors"""

    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(BaseAppException):
    """Raised when input validation fails"""
    status_code = 422


class ResourceNotFoundError(BaseAppException):
    """Raised when requested resource doesn't exist"""
    status_code = 404


# ==================== LEDGER ====================

class InsufficientFundsError(BaseAppException):
    """Raised when a wallet cannot cover a debit"""
    status_code = 402


class BelowMinimumReserveError(BaseAppException):
    """Raised when a transfer would leave the savings wallet under its floor"""


class ConcurrentModificationError(BaseAppException):
    """Raised when a balance kept changing under an atomic operation"""
    status_code = 409


class DuplicateReferenceError(BaseAppException):
    """Raised when a reference is reused for a different operation"""
    status_code = 409


class InvalidTransactionStateError(BaseAppException):
    """Raised when a transaction cannot make the requested status transition"""
    status_code = 409


# ==================== SAVINGS ====================

class SavingsLockedError(BaseAppException):
    """Raised when a plan is still inside its lock period"""
    status_code = 423


class MaxWithdrawalsExceededError(BaseAppException):
    """Raised when a plan has used up its withdrawals"""


class InsufficientPlanBalanceError(BaseAppException):
    """Raised when a withdrawal exceeds the plan balance"""


# ==================== REWARDS ====================

class InsufficientPointsError(BaseAppException):
    """Raised when a user does not hold enough reward points"""


class InvalidRedemptionError(BaseAppException):
    """Raised for unknown or unusable redemption options"""


class ReferralError(BaseAppException):
    """Raised when a referral cannot be applied"""


# ==================== SECURITY ====================

class AccountLockedError(BaseAppException):
    """Raised when the account is temporarily locked"""
    status_code = 423


class AccountSuspendedError(BaseAppException):
    """Raised when an administrator suspended the account"""
    status_code = 403


class InvalidPinError(BaseAppException):
    """Raised when the transaction PIN does not match"""
    status_code = 403


class OTPVerificationError(BaseAppException):
    """Raised when a step-up OTP is missing, wrong or expired"""
    status_code = 403


class TransactionBlockedError(BaseAppException):
    """Raised when the risk scorer blocks a transaction"""
    status_code = 403


# ==================== PROVIDERS ====================

class PaymentProviderError(BaseAppException):
    """
    Raised when PayFlex or Monnify fails.

    `definitive` is False when the outcome is unknown (timeouts, transport
    errors) and the transaction must wait for reconciliation.
    """
    status_code = 502

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
        definitive: bool = True,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.provider = provider
        self.provider_status = status_code
        self.definitive = definitive
