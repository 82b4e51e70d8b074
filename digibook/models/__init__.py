"""
Data Models Package

This package contains all Pydantic models used in Digibook.
Every record the ledger stores, and every result it computes,
conforms to these schemas.
"""

from digibook.models.ledger import (
    CREDIT_CARD_PAYMENT_CATEGORY,
    DEFAULT_CATEGORIES,
    Account,
    AccountSource,
    AccountType,
    Category,
    CreditCard,
    CreditCardPaymentSource,
    CreditCardSource,
    ExpenseStatus,
    FixedExpense,
    LedgerSnapshot,
    Money,
    PaycheckFrequency,
    PaycheckSettings,
    PaymentSource,
    PendingTransaction,
    UserPreference,
    default_categories,
    quantize_money,
)
from digibook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from digibook.models.backup import BackupRecord
from digibook.models.reports import (
    AvailableCredit,
    BudgetSummary,
    CategoryDeletionImpact,
    CategoryOverpayment,
    CategoryUsage,
    DebtPayoffResult,
    ExpenseOverpayment,
    ExpenseUrgency,
    ImportSummary,
    InterestSavings,
    IssueSeverity,
    MinimumPaymentReport,
    MinimumPaymentStatus,
    MonthlyExpenseSummary,
    PaycheckSchedule,
    PaycheckSummary,
    PaymentInfo,
    PaymentSuggestion,
    PaymentValidationResult,
    PayoffFailure,
    RepairReport,
    SuggestionKind,
    UtilizationLevel,
    ValidationIssue,
    ValidationResult,
)

__all__ = [
    # Ledger models
    "CREDIT_CARD_PAYMENT_CATEGORY",
    "DEFAULT_CATEGORIES",
    "Account",
    "AccountSource",
    "AccountType",
    "Category",
    "CreditCard",
    "CreditCardPaymentSource",
    "CreditCardSource",
    "ExpenseStatus",
    "FixedExpense",
    "LedgerSnapshot",
    "Money",
    "PaycheckFrequency",
    "PaycheckSettings",
    "PaymentSource",
    "PendingTransaction",
    "UserPreference",
    "default_categories",
    "quantize_money",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Backup models
    "BackupRecord",
    # Result models
    "AvailableCredit",
    "BudgetSummary",
    "CategoryDeletionImpact",
    "CategoryOverpayment",
    "CategoryUsage",
    "DebtPayoffResult",
    "ExpenseOverpayment",
    "ExpenseUrgency",
    "ImportSummary",
    "InterestSavings",
    "IssueSeverity",
    "MinimumPaymentReport",
    "MinimumPaymentStatus",
    "MonthlyExpenseSummary",
    "PaycheckSchedule",
    "PaycheckSummary",
    "PaymentInfo",
    "PaymentSuggestion",
    "PaymentValidationResult",
    "PayoffFailure",
    "RepairReport",
    "SuggestionKind",
    "UtilizationLevel",
    "ValidationIssue",
    "ValidationResult",
]
