from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlsplit

COMPANY_SUFFIXES = {
    "ltd",
    "limited",
    "inc",
    "incorporated",
    "llc",
    "group",
    "co",
    "company",
    "corp",
    "corporation",
    "plc",
    "gmbh",
}

MIN_PHONE_DIGITS = 7
PHONE_KEY_DIGITS = MIN_PHONE_DIGITS

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[a-z0-9-]{2,}$")
_PUNCTUATION_PATTERN = re.compile(r"[^\w\s]")


def _clean(value: Optional[str]) -> str:
    if not value or not isinstance(value, str):
        return ""
    return " ".join(value.strip().lower().split())


def normalize_email(value: Optional[str]) -> Optional[str]:
    email = _clean(value).replace(" ", "")
    if not email or not _EMAIL_PATTERN.match(email):
        return None
    return email


def email_domain(value: Optional[str]) -> Optional[str]:
    email = normalize_email(value)
    if not email:
        return None
    return email.rsplit("@", 1)[1]


def normalize_company(value: Optional[str]) -> Optional[str]:
    company = _PUNCTUATION_PATTERN.sub("", _clean(value))
    tokens = company_tokens(company)
    if tokens and tokens[0] == "the" and len(tokens) > 1:
        tokens = tokens[1:]
    while len(tokens) > 1 and tokens[-1] in COMPANY_SUFFIXES:
        tokens.pop()
    return " ".join(tokens) or None


def company_tokens(value: Optional[str]) -> list[str]:
    return _clean(value).split()


def normalize_phone(value: Optional[str]) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    raw = value.strip()
    digits = "".join(char for char in raw if char.isdigit())
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return f"+{digits}" if raw.startswith("+") else digits


def _phone_digits(value: Optional[str]) -> Optional[tuple[str, bool]]:
    phone = normalize_phone(value)
    if not phone:
        return None
    international = phone.startswith("+") or phone.startswith("00")
    digits = phone.lstrip("+")
    if digits.startswith("00"):
        digits = digits[2:]
    if not international:
        digits = digits.lstrip("0")
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return digits, international


def phone_match_key(value: Optional[str]) -> Optional[str]:
    """Index bucket for a phone: its trailing subscriber digits.

    Phones sharing a key are only candidates. Confirm them with ``phones_match``.
    """
    parts = _phone_digits(value)
    if not parts:
        return None
    return parts[0][-PHONE_KEY_DIGITS:]


def phones_match(left: Optional[str], right: Optional[str]) -> bool:
    """Equality of two phones written in international or national form.

    Two international numbers must agree on every digit, country code included.
    A national number matches an international one when its digits, trunk zero
    removed, end the international number: ``020 1234 5678`` matches
    ``+44 20 1234 5678``, while ``+1 555 123 4567`` and ``+44 555 123 4567``
    stay distinct.
    """
    left_parts = _phone_digits(left)
    right_parts = _phone_digits(right)
    if not left_parts or not right_parts:
        return False
    left_digits, left_international = left_parts
    right_digits, right_international = right_parts
    if left_international == right_international:
        return left_digits == right_digits
    if left_international:
        return left_digits.endswith(right_digits)
    return right_digits.endswith(left_digits)


def normalize_name(value: Optional[str]) -> Optional[str]:
    return _clean(value) or None


def normalize_url(value: Optional[str]) -> Optional[str]:
    raw = _clean(value).replace(" ", "")
    if not raw:
        return None
    if "://" not in raw:
        raw = f"//{raw}"
    try:
        parts = urlsplit(raw)
    except ValueError:
        return None
    host = (parts.hostname or "").lower()
    if host.startswith("www."):
        host = host[len("www.") :]
    path = parts.path.rstrip("/")
    if not host:
        return None
    return f"{host}{path}"


def token_jaccard(left: set[str], right: set[str]) -> float:
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)
