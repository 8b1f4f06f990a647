"""
wa_relay/phone.py

Recipient normalisation.

Turns whatever the producer stored ("077 123 4567", "+94771234567",
"771234567") into a transport address: country-coded digits plus the
transport's address suffix.
"""

from __future__ import annotations

import re

from wa_relay.errors import ValidationError

_NON_DIGIT = re.compile(r"\D")


def normalise_msisdn(raw: str | None, *, country_code: str, local_length: int) -> str:
    """
    - strip everything that is not a digit (spaces, dashes, leading +)
    - "0XXXXXXXXX"                      -> country_code + "XXXXXXXXX"
    - local_length digits, no country   -> country_code + digits
    - already starts with country_code  -> unchanged
    """
    digits = _NON_DIGIT.sub("", raw or "")
    if not digits:
        raise ValidationError(f"Invalid phone number: {raw!r}")

    if digits.startswith("0"):
        return country_code + digits[1:]
    if len(digits) == local_length and not digits.startswith(country_code):
        return country_code + digits
    return digits


def normalize_recipient(
    raw: str | None,
    *,
    country_code: str,
    local_length: int,
    address_suffix: str = "",
) -> str:
    return normalise_msisdn(raw, country_code=country_code, local_length=local_length) + address_suffix
