"""Small helpers shared across services"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from paylink.core.constants import MONEY_PLACES
from paylink.core.exception import ValidationError


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every table stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Convert to a 2-place Decimal (half-up)"""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        return amount.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid amount: {value!r}") from exc


def generate_reference(prefix: str) -> str:
    """Unique transaction reference, e.g. PAYLINK_AIRTIME_3F9A0C1D2B"""
    return f"PAYLINK_{prefix.upper()}_{uuid.uuid4().hex[:10].upper()}"


def new_id() -> str:
    return uuid.uuid4().hex
