import pytest

from src.core.exceptions import InvalidPhoneNumberError, ValidationError
from src.utils.phone import is_valid_msisdn, mask_msisdn, normalize_msisdn


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0712345678", "254712345678"),
        ("712345678", "254712345678"),
        ("254712345678", "254712345678"),
        ("+254 712 345 678", "254712345678"),
        ("0712-345-678", "254712345678"),
        ("0110123456", "254110123456"),
        ("110123456", "254110123456"),
        ("254101234567", "254101234567"),
    ],
)
def test_normalize_accepted_formats(raw, expected):
    assert normalize_msisdn(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "12345",
        "07123456789",  # too long
        "0731234567",  # 73 is not a mobile prefix
        "0612345678",
        "255712345678",  # wrong country
        "not a number",
    ],
)
def test_normalize_rejects_invalid(raw):
    with pytest.raises(InvalidPhoneNumberError) as exc_info:
        normalize_msisdn(raw)
    assert exc_info.value.message == "Please enter a valid Safaricom phone number"


def test_invalid_phone_is_validation_error():
    with pytest.raises(ValidationError):
        normalize_msisdn("0000")


def test_is_valid_msisdn():
    assert is_valid_msisdn("0722000000")
    assert not is_valid_msisdn("0800000000")


def test_mask_msisdn():
    assert mask_msisdn("254712345678") == "254712***678"
    assert mask_msisdn("123") == "***"
