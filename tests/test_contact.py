from __future__ import annotations

import pytest

from voter_portal.services.contact import (
    InvalidContactFormat,
    for_gateway,
    is_valid_contact,
    mask_contact,
    normalize_contact,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("9876500001", "9876500001"),
        ("98-765 00001", "9876500001"),
        ("+91 9876500002", "9876500002"),
        ("919876500003", "9876500003"),
        ("+91-98765-00004", "9876500004"),
        ("  6000000000 ", "6000000000"),
    ],
)
def test_normalize_contact_canonical_forms(raw: str, expected: str) -> None:
    assert normalize_contact(raw) == expected


@pytest.mark.parametrize("raw", ["98-765 00001", "+91 9876500002", "919876500003", "7000000001"])
def test_normalize_is_idempotent(raw: str) -> None:
    once = normalize_contact(raw)
    assert normalize_contact(once) == once


def test_country_code_stripped_only_when_ten_digits_remain() -> None:
    # 10 digits that happen to start with 91 are a national number, not a prefix
    assert normalize_contact("9123456789") == "9123456789"
    # 11 digits starting with 91: prefix is not stripped, so the number is invalid
    with pytest.raises(InvalidContactFormat):
        normalize_contact("91987650000")


@pytest.mark.parametrize("raw", ["", None, "12345", "5876500001", "98765000011", "98765abcde", "+1 202 555 0143"])
def test_normalize_rejects_invalid(raw) -> None:
    with pytest.raises(InvalidContactFormat):
        normalize_contact(raw)
    assert is_valid_contact(raw) is False


def test_for_gateway_prefixes_country_code() -> None:
    assert for_gateway("9876500001") == "919876500001"


def test_mask_contact_keeps_short_prefix_only() -> None:
    assert mask_contact("9876500001") == "9876******"
    assert mask_contact("919876500001") == "9198********"
    assert mask_contact("123") == "***"
    assert mask_contact("") == ""
    assert mask_contact(None) == ""
