# clinic_booking/utils/contact.py
"""
Normalization rules for booking-form contact fields.

Phones are stored as the 10-digit national number (no country code, no
trunk prefix) so that lookups by phone are exact-match.
"""
from __future__ import annotations

import re
from typing import Optional

import phonenumbers

from clinic_booking.core.config import settings

LOCAL_MOBILE_RE = re.compile(r"^[6-9]\d{9}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def collapse_whitespace(value: str) -> str:
    return " ".join(value.strip().split())


def format_name(value: str) -> str:
    """'  poorna   SHETTY ' -> 'Poorna Shetty'"""
    return " ".join(word[:1].upper() + word[1:].lower() for word in collapse_whitespace(value).split(" ") if word)


def normalize_phone(raw: str, region: Optional[str] = None) -> str:
    """
    Parse a submitted phone number and return its 10-digit local form.

    Accepts '+91 98765 43210', '098765-43210', '9876543210', ...
    Raises ValueError for anything that is not a local mobile number.
    """
    region = region or settings.PHONE_REGION
    if not raw or not raw.strip():
        raise ValueError("phone is required")
    try:
        parsed = phonenumbers.parse(raw, region)
    except phonenumbers.phonenumberutil.NumberParseException:
        raise ValueError("phone must be a 10-digit mobile number")

    if parsed.country_code != phonenumbers.country_code_for_region(region):
        raise ValueError("phone must be a local mobile number")

    national = str(parsed.national_number)
    if not LOCAL_MOBILE_RE.match(national):
        raise ValueError("phone must be a 10-digit mobile number")
    return national


def normalize_email(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    value = raw.strip().lower()
    if not value:
        return None
    if not EMAIL_RE.match(value):
        raise ValueError("email is not a valid address")
    return value
