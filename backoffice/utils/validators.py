"""
Input validation utilities
"""
from decimal import Decimal, InvalidOperation
from typing import Optional

from backoffice.models.user import AccountStatus, Role

ACCOUNT_STATUSES = {s.value for s in AccountStatus}
INVITABLE_ROLES = {Role.USER.value, Role.RESELLER.value, Role.CONSUMER.value}


def validate_percentage(value, field: str = "commission") -> Decimal:
    """Percent in [0, 100], returned as Decimal"""
    try:
        pct = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field} must be a number")
    if not pct.is_finite() or pct < 0 or pct > 100:
        raise ValueError(f"{field} must be between 0 and 100")
    return pct


def validate_account_status(status: str) -> str:
    if status not in ACCOUNT_STATUSES:
        raise ValueError(
            f"Invalid account_status. Must be one of: {', '.join(sorted(ACCOUNT_STATUSES))}"
        )
    return status


def validate_non_negative(value, field: str) -> Optional[Decimal]:
    """Blank means unset; otherwise a number >= 0"""
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field} must be a number")
    if not number.is_finite() or number < 0:
        raise ValueError(f"{field} must be zero or greater")
    return number
