from __future__ import annotations

import pytest

from backend.app.services.normalize import (
    company_tokens,
    email_domain,
    normalize_company,
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_url,
    phone_match_key,
    phones_match,
    token_jaccard,
)


def test_normalize_email_lowercases_and_rejects_garbage() -> None:
    assert normalize_email("  Jane@ACME.com ") == "jane@acme.com"
    assert normalize_email("not-an-email") is None
    assert normalize_email("") is None
    assert normalize_email(None) is None
    assert email_domain("jane@Acme.com") == "acme.com"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Acme Ltd", "acme"),
        ("ACME, Inc.", "acme"),
        ("The Acme Group", "acme"),
        ("  Acme   Widgets  LLC ", "acme widgets"),
        ("Company", "company"),
    ],
)
def test_normalize_company_strips_suffixes(raw: str, expected: str) -> None:
    assert normalize_company(raw) == expected


def test_normalize_phone_keeps_leading_plus_and_rejects_short_numbers() -> None:
    assert normalize_phone("+44 (20) 1234-5678") == "+442012345678"
    assert normalize_phone("020 1234 5678") == "02012345678"
    assert normalize_phone("12345") is None
    assert normalize_phone(None) is None


def test_phones_match_across_international_and_national_forms() -> None:
    assert phones_match("+44 20 1234 5678", "02012345678")
    assert phones_match("0044 20 1234 5678", "020 1234 5678")
    assert phones_match("+44 20 1234 5678", "0044 (20) 1234-5678")
    assert not phones_match("+44 20 1234 5678", "+44 20 8765 4321")
    assert not phones_match("+44 20 1234 5678", None)


def test_phones_in_different_countries_do_not_match() -> None:
    assert not phones_match("+1 555 123 4567", "+44 555 123 4567")
    assert not phones_match("+1 555 123 4567", "+33 5 51 23 45 67")
    assert not phones_match("+44 555 123 4567", "+33 5 51 23 45 67")


def test_phone_match_key_buckets_both_forms_together() -> None:
    assert phone_match_key("+44 20 1234 5678") == phone_match_key("02012345678")
    assert phone_match_key("+44 20 1234 5678") == "2345678"
    assert phone_match_key("123456") is None


def test_normalize_name_preserves_hyphens() -> None:
    assert normalize_name("  Mary-Jane   O'Neil ") == "mary-jane o'neil"
    assert normalize_name("   ") is None


def test_normalize_url_drops_protocol_query_and_trailing_slash() -> None:
    expected = "linkedin.com/in/jane-doe"
    assert normalize_url("https://www.LinkedIn.com/in/jane-doe/?trk=abc") == expected
    assert normalize_url("linkedin.com/in/jane-doe") == expected
    assert normalize_url("") is None


def test_normalizers_never_raise_on_odd_input() -> None:
    for normalizer in (
        normalize_email,
        normalize_company,
        normalize_phone,
        normalize_name,
        normalize_url,
        phone_match_key,
    ):
        assert normalizer("   ") is None
        assert normalizer(None) is None


def test_token_jaccard() -> None:
    assert token_jaccard({"acme", "widgets"}, {"acme", "widgets"}) == 1.0
    assert token_jaccard({"acme"}, set()) == 0.0
    assert token_jaccard({"acme", "widgets"}, {"acme"}) == 0.5


def test_company_tokens() -> None:
    assert company_tokens("  Acme   Widgets ") == ["acme", "widgets"]
    assert company_tokens(None) == []
