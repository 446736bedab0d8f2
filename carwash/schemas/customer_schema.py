"""Customer identity captured on every booking."""

import re

from pydantic import BaseModel, ConfigDict, field_validator

from carwash.utils import normalize_phone

# Validation thresholds
MIN_NAME_LENGTH = 2
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Customer(BaseModel):
    """Who the booking is for. Phone numbers are stored normalized."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    phone: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < MIN_NAME_LENGTH:
            raise ValueError(f"name must be at least {MIN_NAME_LENGTH} characters")
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not _EMAIL_RE.match(value):
            raise ValueError(f"invalid email address: {value!r}")
        return value

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        cleaned = normalize_phone(value)
        digits = cleaned.lstrip("+")
        if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
            raise ValueError(f"invalid phone number: {value!r}")
        return cleaned
