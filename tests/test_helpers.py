import re

from ticketbooth.helpers import (
    ct_equal, is_valid_email, legacy_purchase_code, mask_secret,
    new_reference, new_ticket_number, to_iso,
)


def test_reference_format():
    ref = new_reference()
    assert re.fullmatch(r"TXN_\d{13}_[0-9A-F]{8}", ref)
    assert new_reference() != ref
    assert new_reference("ORD").startswith("ORD_")


def test_ticket_number_format():
    n = new_ticket_number("abcdef0123456789")
    assert re.fullmatch(r"TKT-ABCDEF01-\d{13}-[0-9A-F]{6}", n)


def test_email_check():
    assert is_valid_email("ada@example.com")
    assert not is_valid_email("ada@example")
    assert not is_valid_email("")
    assert not is_valid_email(None)


def test_mask_secret():
    assert mask_secret("sk_test_abcdefgh1234") == "sk_t" + "*" * 12 + "1234"
    assert mask_secret("short") == "*****"
    assert mask_secret("") == ""


def test_misc():
    assert legacy_purchase_code("TXN_1") == "TICKET_TXN_1"
    assert ct_equal("abc", "abc")
    assert not ct_equal("abc", "abd")
    assert to_iso(None) is None
    assert to_iso(0).startswith("1970-01-01T00:00:00")
