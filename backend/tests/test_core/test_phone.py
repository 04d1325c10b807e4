"""Тесты нормализации телефонных номеров."""
import pytest

from notifier.core.phone import NumberingPlan, format_phone_display, is_valid_phone, normalize_phone


class TestNormalizePhone:

    def test_domestic_number_gets_indicator_and_country_code(self):
        assert normalize_phone("1123456789") == "+5491123456789"

    def test_strips_formatting_characters(self):
        assert normalize_phone("(11) 2345-6789") == "+5491123456789"

    def test_strips_trunk_zero(self):
        assert normalize_phone("011 2345 6789") == "+5491123456789"

    def test_bare_country_code_without_indicator(self):
        assert normalize_phone("541123456789") == "+5491123456789"

    def test_plus_country_code_without_indicator(self):
        assert normalize_phone("+54 11 2345 6789") == "+5491123456789"

    def test_canonical_number_unchanged(self):
        assert normalize_phone("+5491123456789") == "+5491123456789"

    def test_number_already_with_indicator(self):
        assert normalize_phone("91123456789") == "+5491123456789"

    def test_foreign_number_kept(self):
        assert normalize_phone("+1 (555) 123-4567") == "+15551234567"

    def test_empty_input_is_best_effort(self):
        assert isinstance(normalize_phone(""), str)
        assert normalize_phone("").startswith("+")

    @pytest.mark.parametrize(
        "raw",
        [
            "1123456789",
            "011 2345-6789",
            "+54 9 11 2345-6789",
            "5491123456789",
            "2644472542",
            "+1 555 123 4567",
            "",
            "abc",
            "12+34",
        ],
    )
    def test_idempotent(self, raw):
        once = normalize_phone(raw)
        assert normalize_phone(once) == once

    def test_indicator_inserted_exactly_once(self):
        for area in ("11", "264", "3514"):
            subscriber = (area + "4567890123")[:10]
            result = normalize_phone(subscriber)
            assert result == "+549" + subscriber
            assert result.count("+") == 1

    def test_custom_plan(self):
        plan = NumberingPlan(country_code="52", mobile_indicator="1", subscriber_length=10)
        assert normalize_phone("5512345678", plan) == "+5215512345678"


class TestIsValidPhone:

    @pytest.mark.parametrize("raw", ["1123456789", "+5491123456789", "0264 447-2542", "54 9 351 456 7890"])
    def test_valid(self, raw):
        assert is_valid_phone(raw) is True

    @pytest.mark.parametrize("raw", ["", "   ", "abc", "123", "+15551234567", "+54"])
    def test_invalid(self, raw):
        assert is_valid_phone(raw) is False


def test_display_format():
    assert format_phone_display("1123456789") == "+54 9 11 2345-6789"


def test_display_format_falls_back_to_canonical():
    assert format_phone_display("+15551234567") == "+15551234567"
