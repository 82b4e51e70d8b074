"""Validation package."""

from digibook.validation.validator import (
    IMPORT_COLLECTIONS,
    generate_payment_suggestions,
    sanitize_string,
    validate_account,
    validate_category,
    validate_credit_card,
    validate_credit_card_payment_amount,
    validate_expense,
    validate_import,
    validate_paycheck_settings,
    validate_payment_source,
    validate_pending_transaction,
)

__all__ = [
    "IMPORT_COLLECTIONS",
    "generate_payment_suggestions",
    "sanitize_string",
    "validate_account",
    "validate_category",
    "validate_credit_card",
    "validate_credit_card_payment_amount",
    "validate_expense",
    "validate_import",
    "validate_paycheck_settings",
    "validate_payment_source",
    "validate_pending_transaction",
]
