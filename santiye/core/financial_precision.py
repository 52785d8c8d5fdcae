"""
CORE: DECIMAL PRECISION & FINANCIAL UTILITIES

This module provides:
1. Decimal precision lock (2-decimal places)
2. Safe financial calculations
3. Value validation (no negative amounts)
4. Rounding at calculation boundary only

Monetary values are stored as 2-decimal strings ("1100.00").
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union, Optional
import logging

logger = logging.getLogger(__name__)

# Precision configuration
DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')
ZERO = Decimal('0')
HUNDRED = Decimal('100')

Number = Union[float, int, str, Decimal]


class FinancialPrecisionError(Exception):
    """Raised when a value cannot be interpreted as money"""
    pass


class NegativeValueError(Exception):
    """Raised when a negative financial value is detected"""
    pass


def to_decimal(value: Optional[Number]) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate calculations.
    None and empty strings count as zero (unset decimal columns).
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")
    if isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        return Decimal(str(value))
    if isinstance(value, str):
        if not value.strip():
            return ZERO
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise FinancialPrecisionError(f"Invalid decimal value: {value!r}")
    raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")


def round_financial(value: Optional[Number]) -> Decimal:
    """
    Round a value to 2 decimal places (half-up).
    This should be called ONLY at calculation boundaries.
    """
    return to_decimal(value).quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def to_money_str(value: Optional[Number]) -> str:
    """Round and render for storage, e.g. Decimal('1100') -> '1100.00'"""
    return str(round_financial(value))


def validate_non_negative(value: Number, field_name: str) -> None:
    """
    Validate that a financial value is not negative.
    Raises NegativeValueError if validation fails.
    """
    if to_decimal(value) < ZERO:
        raise NegativeValueError(
            f"'{field_name}' negatif olamaz: {value}"
        )


def safe_divide(numerator: Number, denominator: Number) -> Decimal:
    """Safe division with zero check"""
    denom = to_decimal(denominator)
    if denom == ZERO:
        return ZERO
    return to_decimal(numerator) / denom


def safe_add(*values: Number) -> Decimal:
    """Safe addition of multiple values"""
    result = ZERO
    for v in values:
        result += to_decimal(v)
    return result


def calculate_percentage(amount: Number, percentage: Number) -> Decimal:
    """
    Calculate percentage of an amount.
    Example: calculate_percentage(1000, 10) = 100
    """
    return to_decimal(amount) * safe_divide(percentage, HUNDRED)


def calculate_invoice_values(subtotal: Number, tax_rate: Number) -> dict:
    """
    Invoice totals from a tax-exclusive subtotal.

    LOCKED FORMULAS:
    - tax_amount = subtotal * (tax_rate / 100)
    - total = subtotal + tax_amount
    """
    validate_non_negative(subtotal, 'subtotal')
    validate_non_negative(tax_rate, 'tax_rate')

    subtotal_value = round_financial(subtotal)
    tax_amount = round_financial(calculate_percentage(subtotal_value, tax_rate))

    return {
        'subtotal': subtotal_value,
        'tax_rate': round_financial(tax_rate),
        'tax_amount': tax_amount,
        'total': subtotal_value + tax_amount,
    }


def split_tax_inclusive(amount: Number, tax_rate: Number) -> dict:
    """
    Split a tax-inclusive amount into subtotal and tax.

    LOCKED FORMULAS:
    - subtotal = amount / (1 + tax_rate / 100)
    - tax_amount = amount - subtotal
    """
    validate_non_negative(amount, 'amount')
    validate_non_negative(tax_rate, 'tax_rate')

    total = round_financial(amount)
    divisor = Decimal('1') + safe_divide(tax_rate, HUNDRED)
    subtotal = round_financial(total / divisor)

    return {
        'subtotal': subtotal,
        'tax_rate': round_financial(tax_rate),
        'tax_amount': total - subtotal,
        'total': total,
    }


def calculate_progress_payment_values(
    amount: Number,
    contractor_fee_rate: Number,
    advance_deduction_rate: Number
) -> dict:
    """
    Calculate progress payment (hakediş) derived values.

    LOCKED FORMULAS:
    - gross_amount = amount + amount * (contractor_fee_rate / 100)
    - advance_deduction = gross_amount * (advance_deduction_rate / 100)
    - net_payment = gross_amount - advance_deduction

    Each figure is rounded before it feeds the next, so the stored values
    satisfy net_payment == gross_amount - advance_deduction exactly.
    Pure function: same inputs always give the same result.
    """
    validate_non_negative(amount, 'amount')
    validate_non_negative(contractor_fee_rate, 'contractor_fee_rate')
    validate_non_negative(advance_deduction_rate, 'advance_deduction_rate')

    base = round_financial(amount)
    gross_amount = round_financial(base + calculate_percentage(base, contractor_fee_rate))
    advance_deduction = round_financial(calculate_percentage(gross_amount, advance_deduction_rate))
    net_payment = gross_amount - advance_deduction

    return {
        'amount': base,
        'contractor_fee_rate': round_financial(contractor_fee_rate),
        'gross_amount': gross_amount,
        'advance_deduction_rate': round_financial(advance_deduction_rate),
        'advance_deduction': advance_deduction,
        'net_payment': net_payment,
    }
