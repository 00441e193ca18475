#!/usr/bin/env python3
"""
Decimal Precision Utilities for Financial Calculations
Enforces consistent Decimal usage across all ledger and escrow amounts
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Union

from utils.exception_handler import InvalidAmount, ValidationError

logger = logging.getLogger(__name__)

# Set global decimal precision for financial calculations
getcontext().prec = 28

Numeric = Union[str, int, float, Decimal]


class MonetaryDecimal:
    """Enforces Decimal-only monetary operations with minor-unit precision"""

    MINOR_UNIT = Decimal("0.01")  # 2 decimal places for every ledger currency
    ZERO = Decimal("0.00")
    MAX_AMOUNT = Decimal("999999999999")  # 999 billion limit

    @classmethod
    def to_decimal(cls, value: Numeric, context: str = "amount") -> Decimal:
        """Convert any numeric input to Decimal, raising InvalidAmount on garbage"""
        if value is None or isinstance(value, bool):
            raise InvalidAmount(f"Invalid {context}: {value!r}")

        if isinstance(value, Decimal):
            decimal_value = value
        else:
            try:
                # Convert to string first to avoid float precision issues
                decimal_value = Decimal(str(value).strip())
            except (InvalidOperation, ValueError, TypeError):
                raise InvalidAmount(f"Invalid {context}: {value!r}")

        if not decimal_value.is_finite():
            raise InvalidAmount(f"Invalid {context}: {value!r}")

        if abs(decimal_value) > cls.MAX_AMOUNT:
            raise InvalidAmount(f"{context} {decimal_value} exceeds the supported range")

        return decimal_value

    @classmethod
    def quantize(cls, amount: Numeric) -> Decimal:
        """Quantize amount to currency minor-unit precision (2 decimal places)"""
        decimal_amount = cls.to_decimal(amount)
        return decimal_amount.quantize(cls.MINOR_UNIT, rounding=ROUND_HALF_UP)

    @classmethod
    def validate_positive(cls, amount: Numeric, context: str = "amount") -> Decimal:
        """Validate that amount is positive after rounding and return it quantized"""
        decimal_amount = cls.quantize(cls.to_decimal(amount, context))

        if decimal_amount <= 0:
            raise InvalidAmount(f"Amount must be positive: {decimal_amount}")

        return decimal_amount

    @classmethod
    def add(cls, *amounts: Numeric) -> Decimal:
        total = Decimal("0")
        for amount in amounts:
            total += cls.to_decimal(amount, "addition")
        return cls.quantize(total)

    @classmethod
    def subtract(cls, minuend: Numeric, subtrahend: Numeric) -> Decimal:
        result = cls.to_decimal(minuend, "minuend") - cls.to_decimal(subtrahend, "subtrahend")
        return cls.quantize(result)

    @classmethod
    def to_wire(cls, amount: Numeric) -> str:
        """Serialize an amount as a fixed 2dp string (e.g. '40.00')"""
        return f"{cls.quantize(amount):f}"

    @classmethod
    def format_amount(cls, amount: Numeric, currency: str) -> str:
        return f"{cls.quantize(amount):,.2f} {currency}"


def normalize_currency(currency) -> str:
    """Currency codes are case-insensitive on input and stored upper-case"""
    if not isinstance(currency, str) or not currency.strip():
        raise ValidationError("Currency is required")
    code = currency.strip().upper()
    if len(code) > 10 or not code.replace("-", "").isalnum():
        raise ValidationError(f"Invalid currency code: {currency!r}")
    return code
