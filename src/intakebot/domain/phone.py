"""Phone normalization - the correlation key between chat sessions,
buffered files and candidate records.

normalize_phone() is pure and idempotent. It never raises: junk input
normalizes to an empty or degenerate string and callers treat "" as
"no phone known".
"""

import os
import re

WHATSAPP_PREFIX = "whatsapp:"

_SEPARATORS = re.compile(r"[\s\-().]")

# optional "+", a digit, then 8+ digits/separators
_PHONE_IN_TEXT = re.compile(r"\+?[0-9][0-9\s\-().]{8,}")

# National numbers are 10 digits after the trunk prefix
_NATIONAL_DIGITS = 10


def _trunk_prefix() -> str:
    return os.environ.get("PHONE_TRUNK_PREFIX", "8")


def _country_code() -> str:
    return os.environ.get("PHONE_COUNTRY_CODE", "7")


def normalize_phone(raw: str | None, *, transport_prefix: str | None = None) -> str:
    """Canonicalize a phone string for use as a lookup key.

    Steps:
    1. Strip a leading transport scheme (e.g. "whatsapp:"), repeated or not.
    2. Remove whitespace, hyphens, parentheses and periods.
    3. Rewrite a leading "00" to "+".
    4. Expand a national number: 8XXXXXXXXXX -> +7XXXXXXXXXX, and
       7XXXXXXXXXX -> +7XXXXXXXXXX (trunk/country from PHONE_TRUNK_PREFIX
       and PHONE_COUNTRY_CODE).

    Examples:
        >>> normalize_phone("+7 (999) 123-45-67")
        '+79991234567'
        >>> normalize_phone("0079991234567")
        '+79991234567'
        >>> normalize_phone("89991234567")
        '+79991234567'
        >>> normalize_phone("whatsapp:+14155238886", transport_prefix="whatsapp:")
        '+14155238886'
    """
    if not raw:
        return ""

    value = raw.strip()
    if transport_prefix:
        while value.startswith(transport_prefix):
            value = value[len(transport_prefix):]

    value = _SEPARATORS.sub("", value)

    if value.startswith("00"):
        value = "+" + value[2:]

    trunk = _trunk_prefix()
    country = _country_code()
    national_len = len(trunk) + _NATIONAL_DIGITS
    if value.isdigit() and len(value) == national_len:
        if trunk and value.startswith(trunk):
            value = f"+{country}{value[len(trunk):]}"
        elif value.startswith(country) and len(country) + _NATIONAL_DIGITS == len(value):
            value = f"+{value}"

    return value


def extract_phone(text: str | None) -> str | None:
    """Find a phone-like substring in free text.

    Permissive on purpose: "+7 999 123 4567", "89991234567",
    "00 7 999 ..." all match. Returns the trimmed match or None.
    """
    if not text or not text.strip():
        return None
    match = _PHONE_IN_TEXT.search(text)
    return match.group(0).strip() if match else None


# Shortest digit runs accepted as a phone: bare national form, "+" form
_MIN_NATIONAL_DIGITS = 10
_MIN_INTERNATIONAL_DIGITS = 8


def plausible_phone(raw: str | None, *, transport_prefix: str | None = None) -> str | None:
    """Normalized phone if `raw` can be a real phone number, else None.

    extract_phone() also matches dates ("12.05.1990") and other digit runs.
    Only an international "+..." form or at least 10 digits may become a
    correlation key.

    Examples:
        >>> plausible_phone("8 999 123 45 67")
        '+79991234567'
        >>> plausible_phone("12.05.1990") is None
        True
    """
    normalized = normalize_phone(raw, transport_prefix=transport_prefix)
    digits = re.sub(r"\D", "", normalized)
    if normalized.startswith("+"):
        return normalized if len(digits) >= _MIN_INTERNATIONAL_DIGITS else None
    return normalized if len(digits) >= _MIN_NATIONAL_DIGITS else None
