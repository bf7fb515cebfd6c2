"""Reusable Pydantic validators for input validation.

Provides validators for the patterns PrintERP checks before any network
call is made:
- Email validation
- Phone number normalization (mobile numbers, national or international form)
- Password policy
- Free-text cleanup for single-line and multi-line fields

All of them raise ValueError with a user-facing message, which Pydantic
turns into a 422 response with per-field details.
"""

import re

from printerp.config import settings

# Regex patterns
EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_SEPARATORS = re.compile(r"[\s\-.()]")
EXCESS_NEWLINES = re.compile(r"\n{3,}")


def _mobile_regex(country_code: str) -> re.Pattern:
    # (+cc | cc | 0 | nothing) + 9 + 9 more digits
    return re.compile(rf"^(?:\+?{re.escape(country_code)}|0)?(9\d{{9}})$")


def normalize_phone(value: str, country_code: str | None = None) -> str:
    """Validate a mobile number and return it as +<country><subscriber>.

    Accepted shapes (country code 63 shown):
        09171234567, 9171234567, 639171234567, +639171234567

    Args:
        value: Phone number as typed by the user
        country_code: Override for settings.phone_country_code

    Returns:
        Canonical phone number, e.g. "+639171234567"

    Raises:
        ValueError: If the number does not match any accepted shape
    """
    if not value:
        raise ValueError("Phone number is required")

    cc = country_code or settings.phone_country_code
    cleaned = PHONE_SEPARATORS.sub("", value)

    match = _mobile_regex(cc).match(cleaned)
    if not match:
        raise ValueError(
            f"Invalid phone number format (use 09XXXXXXXXX or +{cc}9XXXXXXXXX)"
        )

    return f"+{cc}{match.group(1)}"


def is_valid_phone(value: str, country_code: str | None = None) -> bool:
    try:
        normalize_phone(value, country_code)
    except ValueError:
        return False
    return True


def validate_email(value: str) -> str:
    """Validate email address.

    Args:
        value: Email address

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email is invalid
    """
    if not value:
        raise ValueError("Email is required")

    value = value.strip().lower()

    if len(value) > 254:  # RFC 5321
        raise ValueError("Email address too long")

    if not EMAIL_REGEX.match(value):
        raise ValueError("Invalid email address format")

    return value


def validate_password(value: str, min_length: int | None = None) -> str:
    """Enforce the password policy (minimum length only)."""
    min_length = min_length or settings.password_min_length
    if not value or len(value) < min_length:
        raise ValueError(f"Password must be at least {min_length} characters")
    return value


def single_line(value: str | None) -> str:
    """Strip a value and fold any line breaks into single spaces."""
    if value is None:
        return ""
    return " ".join(part.strip() for part in str(value).splitlines() if part.strip())


def collapse_newlines(value: str | None) -> str:
    """Strip a multi-line value and collapse 3+ consecutive newlines to 2."""
    if not value:
        return ""
    return EXCESS_NEWLINES.sub("\n\n", value.replace("\r\n", "\n")).strip()
