"""M-Pesa phone number normalization.

Safaricom accepts STK pushes only for MSISDNs in the form 2547XXXXXXXX or
2541XXXXXXXX. Customers type numbers in several local shapes, so everything
is reduced to that canonical form before it reaches the provider.
"""

import re

from src.core.exceptions import InvalidPhoneNumberError

COUNTRY_CODE = "254"

# Mobile network prefixes (first two digits of the subscriber number)
VALID_NETWORK_PREFIXES = frozenset(
    {"70", "71", "72", "74", "75", "76", "77", "78", "79", "10", "11"}
)

_NON_DIGITS = re.compile(r"\D")


def normalize_msisdn(phone_number: str) -> str:
    """Normalize a Kenyan mobile number to 2547XXXXXXXX / 2541XXXXXXXX.

    Accepted shapes (after stripping spaces, dashes and '+'):
        254712345678, 0712345678, 712345678 (and the 01/1 equivalents)

    Raises:
        InvalidPhoneNumberError: If the number does not match a subscriber format
    """
    digits = _NON_DIGITS.sub("", phone_number or "")

    if digits.startswith(COUNTRY_CODE) and len(digits) == 12:
        subscriber = digits[3:]
    elif digits.startswith("0") and len(digits) == 10:
        subscriber = digits[1:]
    elif len(digits) == 9:
        subscriber = digits
    else:
        raise InvalidPhoneNumberError(phone_number)

    if subscriber[:2] not in VALID_NETWORK_PREFIXES:
        raise InvalidPhoneNumberError(phone_number)

    return f"{COUNTRY_CODE}{subscriber}"


def is_valid_msisdn(phone_number: str) -> bool:
    """Check whether a number can be normalized."""
    try:
        normalize_msisdn(phone_number)
    except InvalidPhoneNumberError:
        return False
    return True


def mask_msisdn(msisdn: str) -> str:
    """Mask the middle digits for logs (254712***678)."""
    if len(msisdn) < 9:
        return "***"
    return f"{msisdn[:6]}***{msisdn[-3:]}"
