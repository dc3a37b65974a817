from __future__ import annotations

import re
from typing import Optional

# India: national mobile numbers are 10 digits starting with 6-9.
COUNTRY_CODE = "91"
NATIONAL_LENGTH = 10

_SEPARATORS = re.compile(r"[\s\-+]")
_NATIONAL_MOBILE = re.compile(r"^[6-9]\d{9}$")

MASK_VISIBLE = 4


class InvalidContactFormat(ValueError):
    """Raised when a contact cannot be canonicalized to a national mobile number."""


def clean_contact(raw: Optional[str]) -> str:
    """
    Strip whitespace, hyphens and plus signs, then drop a leading country code
    when exactly a national number remains.

    Does not validate; see normalize_contact.
    """
    s = _SEPARATORS.sub("", raw or "")
    if s.startswith(COUNTRY_CODE) and len(s) == len(COUNTRY_CODE) + NATIONAL_LENGTH:
        s = s[len(COUNTRY_CODE):]
    return s


def normalize_contact(raw: Optional[str]) -> str:
    """
    Canonical 10-digit national form, e.g.:
      "98-765 00001"    -> "9876500001"
      "+91 9876500002"  -> "9876500002"

    Raises InvalidContactFormat for anything that is not a mobile number.
    Idempotent: normalize_contact(normalize_contact(x)) == normalize_contact(x).
    """
    s = clean_contact(raw)
    if not _NATIONAL_MOBILE.match(s):
        raise InvalidContactFormat("Invalid contact number format")
    return s


def is_valid_contact(raw: Optional[str]) -> bool:
    try:
        normalize_contact(raw)
    except InvalidContactFormat:
        return False
    return True


def for_gateway(national: str) -> str:
    """Country-code-prefixed number for the messaging gateway ("91XXXXXXXXXX")."""
    return f"{COUNTRY_CODE}{national}"


def mask_contact(value: Optional[str]) -> str:
    """
    Keep a short prefix, star the rest. Every log line and audit snapshot
    that carries a phone number goes through here.
    """
    if not value:
        return ""
    s = str(value)
    if len(s) <= MASK_VISIBLE:
        return "*" * len(s)
    return f"{s[:MASK_VISIBLE]}{'*' * (len(s) - MASK_VISIBLE)}"
