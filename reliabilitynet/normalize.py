import re
from typing import Optional

from .config import PHONE_MIN_DIGITS

_NON_DIGITS = re.compile(r"\D")


def normalize_text(s: str) -> str:
    return " ".join(s.strip().lower().split())


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Digits only; None when too short to identify anyone."""
    if not phone:
        return None
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) < PHONE_MIN_DIGITS:
        return None
    return digits


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    normalized = email.strip().lower()
    if "@" not in normalized:
        return None
    return normalized


def email_domain(normalized_email: str) -> str:
    return normalized_email.split("@", 1)[1]
