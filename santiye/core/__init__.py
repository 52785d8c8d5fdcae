"""
Financial core: precision, duplicate protection, linking, hakediş and advance balance
"""
from .financial_precision import (
    to_decimal,
    round_financial,
    to_money_str,
    validate_non_negative,
    safe_divide,
    safe_add,
    calculate_percentage,
    calculate_invoice_values,
    split_tax_inclusive,
    calculate_progress_payment_values,
    FinancialPrecisionError,
    NegativeValueError
)

from .duplicate_protection import (
    DuplicateInvoiceProtection,
    DuplicateInvoiceError
)

from .advance_balance import (
    AdvanceBalance,
    AdvanceBalanceCalculator,
    ADVANCE_EXHAUSTED_WARNING
)

from .progress_payment_engine import (
    ProgressPaymentEngine,
    ProgressPaymentValidationError
)

from .linking_coordinator import (
    LinkingCoordinator,
    LinkedRecordCreationError,
    LinkValidationError
)

__all__ = [
    # Financial Precision
    'to_decimal',
    'round_financial',
    'to_money_str',
    'validate_non_negative',
    'safe_divide',
    'safe_add',
    'calculate_percentage',
    'calculate_invoice_values',
    'split_tax_inclusive',
    'calculate_progress_payment_values',
    'FinancialPrecisionError',
    'NegativeValueError',
    # Duplicate Protection
    'DuplicateInvoiceProtection',
    'DuplicateInvoiceError',
    # Advance Balance
    'AdvanceBalance',
    'AdvanceBalanceCalculator',
    'ADVANCE_EXHAUSTED_WARNING',
    # Progress Payments
    'ProgressPaymentEngine',
    'ProgressPaymentValidationError',
    # Linking
    'LinkingCoordinator',
    'LinkedRecordCreationError',
    'LinkValidationError',
]
