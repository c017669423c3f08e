"""Canonical phone form: exactly 11 digits with the leading country digit '7'."""

import re

from phoneindex.phone.exceptions import InvalidPhoneError

PREFIX_LENGTH = 3

_NON_DIGITS = re.compile(r"\D")


def try_normalize_phone(raw: str | None) -> str | None:
    """Return the canonical phone for ``raw`` or None when it is not indexable.

    Non-digits are stripped first. Ten digits get a leading '7', eleven digits
    starting with '8' have it replaced by '7', eleven digits starting with '7'
    pass through. Everything else is rejected.
    """
    if not raw:
        return None
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 10:
        return "7" + digits
    if len(digits) == 11:
        if digits[0] == "8":
            return "7" + digits[1:]
        if digits[0] == "7":
            return digits
    return None


def normalize_phone(raw: str | None) -> str:
    """Like try_normalize_phone but raises InvalidPhoneError on rejection."""
    phone = try_normalize_phone(raw)
    if phone is None:
        raise InvalidPhoneError(f"Invalid phone number: {raw!r}")
    return phone


def phone_prefix(phone: str) -> str:
    """Partition key of a canonical phone."""
    return phone[:PREFIX_LENGTH]


def format_phone(phone: str) -> str:
    """Human-readable form, e.g. ``+7 (999) 123-45-67``."""
    if len(phone) != 11:
        return phone
    return f"+{phone[0]} ({phone[1:4]}) {phone[4:7]}-{phone[7:9]}-{phone[9:11]}"
