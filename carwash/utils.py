"""Shared utilities used across the booking core."""

import re
import secrets
import string

CONFIRMATION_CODE_LENGTH = 8
CONFIRMATION_CODE_ALPHABET = string.ascii_uppercase + string.digits

_CONFIRMATION_CODE_RE = re.compile(rf"^[A-Z0-9]{{{CONFIRMATION_CODE_LENGTH}}}$")


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("040 123 4567")
        '0401234567'
        >>> normalize_phone("+358 (40) 123-4567")
        '+358401234567'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def generate_confirmation_code() -> str:
    """Return a random 8-character uppercase alphanumeric code.

    Uniqueness is the caller's job; see ``BookingService``.
    """
    return "".join(
        secrets.choice(CONFIRMATION_CODE_ALPHABET) for _ in range(CONFIRMATION_CODE_LENGTH)
    )


def is_valid_confirmation_code(value: str) -> bool:
    return bool(_CONFIRMATION_CODE_RE.match(value))
