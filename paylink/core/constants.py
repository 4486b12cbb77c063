"""
Application constants - centralized to avoid magic strings/numbers
"""
from decimal import Decimal
from enum import Enum


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Category(str, Enum):
    AIRTIME = "airtime"
    DATA = "data"
    ELECTRICITY = "electricity"
    CABLE_TV = "cabletv"
    INTERNET = "internet"
    EDUCATION = "education"
    INSURANCE = "insurance"
    GIFTCARD = "giftcard"
    TAX = "tax"
    WALLET_FUNDING = "wallet_funding"
    WITHDRAWAL = "withdrawal"
    SAVINGS = "savings"
    SAVINGS_WITHDRAWAL = "savings_withdrawal"
    SAVINGS_REFUND = "savings_refund"
    REFUND = "refund"
    REWARD = "reward"
    REFERRAL_BONUS = "referral_bonus"
    ADJUSTMENT = "adjustment"


# Categories that are fulfilled by PayFlex
PURCHASE_CATEGORIES = frozenset(
    {Category.AIRTIME, Category.DATA, Category.ELECTRICITY, Category.CABLE_TV}
)


class WalletKind(str, Enum):
    MAIN = "main"
    SAVINGS = "savings"


class RiskAction(str, Enum):
    ALLOW = "allow"
    REVIEW = "review"
    REQUIRE_2FA = "require_2fa"
    BLOCK = "block"


class SavingsInterval(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class SavingsPlanStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class RedemptionType(str, Enum):
    DISCOUNT = "discount"
    AIRTIME = "airtime"
    DATA = "data"
    CASHBACK = "cashback"


class RewardTransactionType(str, Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"


# Money
MONEY_PLACES = Decimal("0.01")
DEFAULT_CURRENCY = "NGN"

# Compounding periods per year
COMPOUNDING_FREQUENCY = {
    SavingsInterval.DAILY: 365,
    SavingsInterval.WEEKLY: 52,
    SavingsInterval.MONTHLY: 12,
}

# Reward points: (rate, per_amount) -> `rate` points per `per_amount` NGN
POINTS_RATES: dict[str, tuple[Decimal, Decimal]] = {
    Category.AIRTIME.value: (Decimal("1"), Decimal("100")),
    Category.DATA.value: (Decimal("1"), Decimal("200")),
    Category.ELECTRICITY.value: (Decimal("2"), Decimal("500")),
    Category.CABLE_TV.value: (Decimal("1.5"), Decimal("1000")),
    Category.INTERNET.value: (Decimal("1"), Decimal("500")),
    Category.EDUCATION.value: (Decimal("2"), Decimal("1000")),
    Category.INSURANCE.value: (Decimal("3"), Decimal("2000")),
    Category.GIFTCARD.value: (Decimal("2"), Decimal("1000")),
    Category.TAX.value: (Decimal("1"), Decimal("500")),
}

# Redemption catalog: id -> points cost, value in NGN, type, optional data plan
REDEMPTION_CATALOG: dict[str, dict] = {
    "discount_50": {"points": 100, "value": Decimal("50"), "type": RedemptionType.DISCOUNT},
    "discount_100": {"points": 180, "value": Decimal("100"), "type": RedemptionType.DISCOUNT},
    "discount_200": {"points": 320, "value": Decimal("200"), "type": RedemptionType.DISCOUNT},
    "airtime_100": {"points": 150, "value": Decimal("100"), "type": RedemptionType.AIRTIME},
    "airtime_200": {"points": 280, "value": Decimal("200"), "type": RedemptionType.AIRTIME},
    "data_200mb": {"points": 150, "value": Decimal("200"), "type": RedemptionType.DATA, "plan": "200MB"},
    "data_500mb": {"points": 300, "value": Decimal("500"), "type": RedemptionType.DATA, "plan": "500MB"},
    "cashback_50": {"points": 120, "value": Decimal("50"), "type": RedemptionType.CASHBACK},
    "cashback_100": {"points": 220, "value": Decimal("100"), "type": RedemptionType.CASHBACK},
}

# Loyalty tiers by lifetime earned points, highest first
LOYALTY_TIERS = (
    ("platinum", 5000),
    ("gold", 2000),
    ("silver", 500),
    ("bronze", 0),
)

# Referral tiers by number of completed referrals, highest first
REFERRAL_TIERS = (
    ("platinum", 50),
    ("gold", 30),
    ("silver", 15),
    ("bronze", 5),
    ("starter", 0),
)

REFERRAL_CODE_PREFIX = "PAY"
REFERRAL_CODE_LENGTH = 6
REFERRAL_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# Risk score thresholds (0-100)
RISK_REVIEW_THRESHOLD = 30
RISK_2FA_THRESHOLD = 60
RISK_BLOCK_THRESHOLD = 85
RISK_MAX_SCORE = 100

# Risk check weights
RISK_WEIGHT_LOCATION = 30
RISK_WEIGHT_LARGE_PURCHASE = 25
RISK_WEIGHT_PIN_ATTEMPTS = 30
RISK_WEIGHT_NEW_DEVICE = 15
RISK_WEIGHT_VELOCITY = 20
RISK_WEIGHT_ACCOUNT_LOCKED = 100

EARTH_RADIUS_KM = 6371.0

# Response templates
ERROR_INSUFFICIENT_FUNDS = "Insufficient wallet balance. Available: ₦{available}, Required: ₦{required}"
ERROR_MIN_RESERVE = "Minimum ₦{reserve} must remain in Savings Wallet"
ERROR_PLAN_LOCKED = "Plan is locked until {until}"
ERROR_MAX_WITHDRAWALS = "Maximum withdrawals ({limit}) reached for this plan"
