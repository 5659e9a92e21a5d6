# Overview: Closed status/type enumerations for payments, transfers, sales and cash periods.

import enum

from .errors import ValidationError


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class PaymentCategory(str, enum.Enum):
    # manual tenders confirm on creation; gateway/external wait for a match
    MANUAL = "manual"
    GATEWAY = "gateway"
    EXTERNAL = "external"


class MatchResult(str, enum.Enum):
    NO_MATCH = "no_match"
    MATCHED_SUGGESTED = "matched_suggested"
    MATCHED_AUTO = "matched_auto"


class ConfirmationType(str, enum.Enum):
    AUTO = "auto"
    ASSISTED = "assisted"
    MANUAL = "manual"


class TransferSource(str, enum.Enum):
    API = "api"
    CSV = "csv"
    MANUAL = "manual"


class SaleStatus(str, enum.Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELLED = "cancelled"


class CashPeriodKind(str, enum.Enum):
    SESSION = "session"
    BOX = "box"
    REGISTER = "register"


class CashPeriodStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class CashMovementType(str, enum.Enum):
    SALE = "sale"
    REFUND = "refund"
    MANUAL_INCOME = "manual_income"
    MANUAL_EXPENSE = "manual_expense"


class CashMethod(str, enum.Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    NONE = "none"


class OwnerKind(str, enum.Enum):
    SALE = "sale"
    CASH_PERIOD = "cash_period"


def parse_enum(enum_cls, value, field: str):
    """Coerce a client string into enum_cls or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except (ValueError, AttributeError):
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}")
