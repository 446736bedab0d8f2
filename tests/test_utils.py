"""Tests for shared utility functions."""

from carwash.utils import (
    CONFIRMATION_CODE_LENGTH,
    generate_confirmation_code,
    is_valid_confirmation_code,
    normalize_phone,
)


class TestNormalizePhone:
    def test_strips_spaces(self):
        assert normalize_phone("040 123 4567") == "0401234567"

    def test_strips_dashes(self):
        assert normalize_phone("040-123-4567") == "0401234567"

    def test_strips_parentheses(self):
        assert normalize_phone("(040) 123 4567") == "0401234567"

    def test_preserves_leading_plus(self):
        assert normalize_phone("+358 40 123 4567") == "+358401234567"

    def test_strips_whitespace(self):
        assert normalize_phone("  0401234567  ") == "0401234567"


class TestConfirmationCode:
    def test_shape(self):
        code = generate_confirmation_code()
        assert len(code) == CONFIRMATION_CODE_LENGTH
        assert is_valid_confirmation_code(code)

    def test_codes_vary(self):
        assert len({generate_confirmation_code() for _ in range(50)}) > 1

    def test_validation(self):
        assert is_valid_confirmation_code("AB12CD34")
        assert not is_valid_confirmation_code("ab12cd34")
        assert not is_valid_confirmation_code("AB12CD3")
        assert not is_valid_confirmation_code("AB12-D34")
