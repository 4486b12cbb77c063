# paylink/services/wallet/validators.py
"""
Wallet validation rules
"""
import re
from decimal import Decimal

from paylink.core.config import settings
from paylink.core.logging import logger


class WalletValidator:
    """Validate wallet operations and data"""

    # Limits
    MIN_AMOUNT = Decimal("0.01")
    MAX_AMOUNT = Decimal("10000000")

    PHONE_PATTERN = re.compile(r"^(?:\+?234|0)[789][01]\d{8}$")
    PIN_PATTERN = re.compile(r"^\d{4}$")

    def __init__(
        self,
        max_transfer: Decimal | None = None,
        min_savings_reserve: Decimal | None = None,
    ) -> None:
        self.max_transfer = max_transfer if max_transfer is not None else settings.MAX_WALLET_TRANSFER
        self.min_savings_reserve = (
            min_savings_reserve if min_savings_reserve is not None else settings.MIN_SAVINGS_RESERVE
        )

    def validate_amount(self, amount: Decimal | None) -> bool:
        """Validate a money amount"""
        if amount is None:
            logger.warning("Amount is None")
            return False

        if not amount.is_finite():
            logger.warning("Amount is not finite: {}", amount)
            return False

        if amount < self.MIN_AMOUNT:
            logger.warning("Amount too small: {}", amount)
            return False

        if amount > self.MAX_AMOUNT:
            logger.warning("Amount too large: {}", amount)
            return False

        return True

    def validate_transfer_amount(self, amount: Decimal) -> bool:
        """Wallet-to-wallet transfers have their own cap"""
        if amount > self.max_transfer:
            logger.warning("Transfer above cap: {} > {}", amount, self.max_transfer)
            return False
        return True

    def keeps_savings_reserve(self, savings_balance: Decimal, amount: Decimal) -> bool:
        """Savings-to-main must leave the reserve in place"""
        return savings_balance - amount >= self.min_savings_reserve

    def validate_phone(self, phone_number: str | None) -> bool:
        """Validate Nigerian mobile number"""
        if not phone_number:
            return False

        sanitized = phone_number.replace(" ", "")
        if not self.PHONE_PATTERN.match(sanitized):
            logger.warning("Invalid phone number: {}", sanitized)
            return False

        return True

    def validate_pin_format(self, pin: str | None) -> bool:
        return bool(pin) and bool(self.PIN_PATTERN.match(pin))
