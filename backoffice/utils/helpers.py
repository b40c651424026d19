"""
General helper utilities
"""
import secrets
import string
from typing import Optional

SYMBOLS = "!@#$%^&*()_+[]{}|;:,.<>?"
PASSWORD_CLASSES = (string.ascii_lowercase, string.ascii_uppercase, string.digits, SYMBOLS)
MIN_PASSWORD_LENGTH = 10


def generate_password(length: int = MIN_PASSWORD_LENGTH) -> str:
    """Random password with at least one lower, upper, digit and symbol"""
    length = max(length, MIN_PASSWORD_LENGTH)
    alphabet = "".join(PASSWORD_CLASSES)

    chars = [secrets.choice(cls) for cls in PASSWORD_CLASSES]
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]

    # Fisher-Yates with a CSPRNG
    for i in range(len(chars) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]
    return "".join(chars)


def format_currency(amount) -> str:
    return f"${float(amount):,.2f}"


def paginate(page: int, limit: int) -> tuple[int, int]:
    """(offset, limit) for 1-based page numbers"""
    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    return (page - 1) * limit, limit


def page_meta(total: int, page: int, limit: int) -> dict:
    offset, limit = paginate(page, limit)
    return {
        "page": max(page, 1),
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit if total else 0,
        "has_more": offset + limit < total,
    }


def display_name(full_name: Optional[str], email: Optional[str], fallback: str = "User") -> str:
    return full_name or (email.split("@")[0] if email else fallback)
