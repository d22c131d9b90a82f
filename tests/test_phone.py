import pytest

from clinic_reminders.utils.phone import normalize, to_e164, mask_phone


@pytest.mark.parametrize("raw, expected", [
    ("+353 (87) 123-4567", "353871234567"),
    ("353871234567", "353871234567"),
    ("+3530871234567", "353871234567"),
    ("00353871234567", "353871234567"),
    ("+31 0612345678", "31612345678"),
    ("+44 07700 900123", "447700900123"),
])
def test_normalize_formats_share_one_key(raw, expected):
    assert normalize(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "call me", "+--()"])
def test_normalize_is_total(raw):
    assert normalize(raw) == ""


def test_single_zero_is_kept():
    assert normalize("0") == "0"
    assert normalize("000") == "0"


@pytest.mark.parametrize("raw", [
    "+353 87 123 4567", "+3530871234567", "0031061234567", "+310310612345",
    "0000", "+44 07700 900123", "3530000871234567", "0612345678",
])
def test_normalize_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(once) == once
    assert normalize(normalize(raw, "31"), "31") == normalize(raw, "31")


def test_national_format_joins_international_with_default_country():
    assert normalize("0612345678", "31") == normalize("+31612345678")
    assert normalize("0612345678", "+31") == "31612345678"
    assert normalize("087 123 4567", "353") == normalize("+353871234567")


def test_default_country_not_applied_to_international_numbers():
    assert normalize("+353871234567", "31") == "353871234567"
    assert normalize("00353871234567", "31") == "353871234567"
    assert normalize("353871234567", "31") == "353871234567"


def test_to_e164():
    assert to_e164("+353 087 123 4567") == "+353871234567"
    assert to_e164("0871234567", "353") == "+353871234567"
    assert to_e164("n/a") == ""


def test_mask_phone_keeps_last_four_digits():
    assert mask_phone("+353871234567") == "********4567"
    assert mask_phone("123") == "123"
    assert mask_phone(None) == ""
