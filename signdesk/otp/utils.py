# signdesk/otp/utils.py

"""
Phone number helpers for the verification gate.
"""

import re

from signdesk.core.exceptions import ValidationFailedException

NON_DIGITS = re.compile(r"\D")
MIN_DIGITS = 8
MAX_DIGITS = 15
NATIONAL_PREFIX = "33"


def format_phone(raw_phone: str) -> str:
    """
    Canonical E.164-style form of a user supplied number.

    A ten digit number with a leading zero is read as a French national
    number. Everything else is taken to already carry its country code.

    Raises:
        ValidationFailedException: if the number has too few or too many digits
    """
    digits = NON_DIGITS.sub("", raw_phone or "")
    if len(digits) == 10 and digits.startswith("0"):
        digits = NATIONAL_PREFIX + digits[1:]
    if not MIN_DIGITS <= len(digits) <= MAX_DIGITS:
        raise ValidationFailedException(
            "Invalid phone number", {"field": "phone"}
        )
    return f"+{digits}"


def mask_phone_for_display(phone: str) -> str:
    """All but the last four digits hidden, e.g. ***7166"""
    digits = NON_DIGITS.sub("", phone or "")
    if len(digits) < 4:
        return "***"
    return "***" + digits[-4:]


def mask_phone_for_audit(canonical_phone: str) -> str:
    """Country prefix and last four digits kept, e.g. +33***7166"""
    if len(canonical_phone) < 8:
        return "***"
    return canonical_phone[:3] + "***" + canonical_phone[-4:]
