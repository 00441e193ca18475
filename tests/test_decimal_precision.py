"""
Monetary decimal helper tests
"""

from decimal import Decimal

import pytest

from utils.decimal_precision import MonetaryDecimal, normalize_currency
from utils.exception_handler import InvalidAmount, ValidationError


class TestMonetaryDecimal:

    @pytest.mark.parametrize("raw,expected", [
        (10, Decimal("10.00")),
        ("10.5", Decimal("10.50")),
        (0.1, Decimal("0.10")),
        (Decimal("2.675"), Decimal("2.68")),
        ("1.005", Decimal("1.01")),
        (" 7 ", Decimal("7.00")),
    ])
    def test_quantize(self, raw, expected):
        assert MonetaryDecimal.quantize(raw) == expected

    @pytest.mark.parametrize("raw", [None, True, False, "", "1,000", "nan", "-inf", object(), "1e13"])
    def test_to_decimal_rejects(self, raw):
        with pytest.raises(InvalidAmount):
            MonetaryDecimal.to_decimal(raw)

    def test_validate_positive_rejects_sub_cent(self):
        with pytest.raises(InvalidAmount):
            MonetaryDecimal.validate_positive("0.001")
        assert MonetaryDecimal.validate_positive("0.005") == Decimal("0.01")

    def test_repeated_arithmetic_is_exact(self):
        total = MonetaryDecimal.ZERO
        for _ in range(1000):
            total = MonetaryDecimal.add(total, "0.10")
        for _ in range(1000):
            total = MonetaryDecimal.subtract(total, "0.10")
        assert total == Decimal("0.00")

    def test_wire_format(self):
        assert MonetaryDecimal.to_wire(40) == "40.00"
        assert MonetaryDecimal.to_wire(Decimal("1E+2")) == "100.00"
        assert MonetaryDecimal.format_amount("1234.5", "USD") == "1,234.50 USD"


class TestNormalizeCurrency:

    def test_uppercases(self):
        assert normalize_currency(" usdt ") == "USDT"

    @pytest.mark.parametrize("raw", ["", "  ", None, 5, "US D", "TOOLONGCURRENCY"])
    def test_rejects(self, raw):
        with pytest.raises(ValidationError):
            normalize_currency(raw)
