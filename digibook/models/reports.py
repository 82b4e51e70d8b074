"""
Result Models for Digibook

Everything the validation layer and the derivations hand back to callers.
None of these are stored; they are computed from ledger records.

DESIGN DECISION: Validators return these as data instead of raising.
A failed validation is an expected outcome, not an exception.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from digibook.errors import ErrorKind
from digibook.models.ledger import FixedExpense, Money, utc_now


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class IssueSeverity(str, Enum):
    """How much a validation issue matters."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    kind: ErrorKind = Field(
        ...,
        description="Kind of issue"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: IssueSeverity = Field(
        default=IssueSeverity.ERROR,
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )
    details: dict[str, Any] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    """
    Outcome of validating one input.

    sanitized holds the cleaned, typed value when there are no errors.
    Warnings never block.
    """

    sanitized: Optional[Any] = Field(
        default=None,
        description="Cleaned value, present only when ok"
    )
    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    @property
    def ok(self) -> bool:
        return not self.has_errors

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.WARNING]

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == IssueSeverity.ERROR for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == IssueSeverity.ERROR)

    def error_kinds(self) -> list[ErrorKind]:
        return [issue.kind for issue in self.errors]

    def warning_kinds(self) -> list[ErrorKind]:
        return [issue.kind for issue in self.warnings]


class SuggestionKind(str, Enum):
    """Payment suggestion kinds, in the order they are offered."""
    MINIMUM = "minimum"
    SUGGESTED = "suggested"
    FULL = "full"
    AFFORDABLE = "affordable"


class PaymentSuggestion(BaseModel):
    """A payment amount worth offering to the user."""

    kind: SuggestionKind
    label: str
    amount: Money
    description: str


class PaymentInfo(BaseModel):
    """Context shown next to a credit card payment amount."""

    current_debt: Money
    minimum_payment: Money
    available_funds: Money
    after_payment_debt: Money
    funding_account_name: str
    target_card_name: str


class PaymentValidationResult(ValidationResult):
    """Validation of a credit card payment amount."""

    suggestions: list[PaymentSuggestion] = Field(default_factory=list)
    info: Optional[PaymentInfo] = None


# =============================================================================
# PAYCHECK SCHEDULE
# =============================================================================

class ExpenseUrgency(str, Enum):
    """Where an expense falls relative to the paycheck series."""
    PAID = "Paid"
    OVERDUE = "Overdue"
    DUE_THIS_WEEK = "DueThisWeek"
    DUE_NEXT_CHECK = "DueNextCheck"
    FUTURE = "Future"
    UNSCHEDULED = "Unscheduled"


class PaycheckSchedule(BaseModel):
    """Upcoming paydays relative to today."""

    last_paycheck_date: date
    next_paycheck_date: date
    following_paycheck_date: date
    days_until_next: int
    days_until_following: int


class PaycheckSummary(BaseModel):
    """Remaining amounts per urgency bucket."""

    schedule: Optional[PaycheckSchedule] = None
    due_this_week_total: Money = Decimal("0")
    due_next_check_total: Money = Decimal("0")
    overdue_total: Money = Decimal("0")
    expenses_by_urgency: dict[ExpenseUrgency, list[FixedExpense]] = Field(default_factory=dict)


# =============================================================================
# INSIGHTS
# =============================================================================

class ExpenseOverpayment(BaseModel):
    """Budget-vs-actual breakdown of one expense."""

    expense_id: Optional[int]
    name: str
    category: str
    budget: Money
    actual: Money
    overpayment_amount: Money
    overpayment_percentage: Decimal
    is_significant: bool
    budget_satisfied: bool


class BudgetSummary(BaseModel):
    """Budget-vs-actual totals across expenses."""

    total_budget: Money
    total_actual: Money
    total_overpayment: Money
    budget_accuracy: Decimal
    significant_overpayments: int
    expense_count: int


class CategoryOverpayment(BaseModel):
    """Overpayment totals for one category."""

    category: str
    count: int
    significant_count: int
    total_budget: Money
    total_actual: Money
    total_overpayment: Money
    overpayment_percentage: Decimal


class MonthlyExpenseSummary(BaseModel):
    """Expense totals for one calendar month."""

    month: str = Field(..., description="YYYY-MM")
    total_budget: Money
    total_paid: Money
    expense_count: int


class CategoryUsage(BaseModel):
    """How many records use a category."""

    category: str
    expense_count: int
    pending_count: int
    total_budget: Money

    @property
    def in_use(self) -> bool:
        return self.expense_count > 0 or self.pending_count > 0


class CategoryDeletionImpact(BaseModel):
    """What deleting a category touched."""

    category: str
    affected_expense_ids: list[int] = Field(default_factory=list)
    affected_pending_ids: list[int] = Field(default_factory=list)
    reassigned_to: Optional[str] = None


# =============================================================================
# DEBT AND CREDIT
# =============================================================================

class PayoffFailure(str, Enum):
    """Why a payoff simulation could not finish."""
    PAYMENT_BELOW_INTEREST = "PaymentBelowInterest"
    NO_BALANCE = "NoBalance"
    EXCEEDS_MAX_MONTHS = "ExceedsMaxMonths"


class DebtPayoffResult(BaseModel):
    """Outcome of an amortization simulation."""

    success: bool
    reason: Optional[PayoffFailure] = None
    months: int = 0
    total_interest: Money = Decimal("0")
    total_cost: Money = Decimal("0")
    payoff_date: Optional[date] = None


class InterestSavings(BaseModel):
    """A chosen payment compared with paying only the minimum."""

    minimum_payment: Money
    minimum_plan: DebtPayoffResult
    chosen_plan: DebtPayoffResult
    interest_saved: Money
    months_saved: int


class UtilizationLevel(str, Enum):
    """Credit utilization bands."""
    NONE = "none"
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    HIGH = "high"
    CRITICAL = "critical"


class AvailableCredit(BaseModel):
    """Remaining credit on a card."""

    available: Money
    utilization_percentage: Decimal
    utilization_level: UtilizationLevel
    is_over_limit: bool


class MinimumPaymentStatus(str, Enum):
    """Whether the card's minimum payment has been covered."""
    NO_BALANCE = "no_balance"
    PAID = "paid"
    UNPAID = "unpaid"


class MinimumPaymentReport(BaseModel):
    """Minimum payment status with the amount still due."""

    status: MinimumPaymentStatus
    minimum_payment: Money
    paid_toward_card: Money
    amount_due: Money


# =============================================================================
# MAINTENANCE
# =============================================================================

class RepairReport(BaseModel):
    """Result of an integrity repair pass."""

    default_account_id: Optional[int] = None
    defaults_cleared: list[int] = Field(default_factory=list)
    placeholders_removed: list[int] = Field(default_factory=list)
    dangling_expense_ids: list[int] = Field(default_factory=list)
    dangling_pending_ids: list[int] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=utc_now)


class ImportSummary(BaseModel):
    """What an import or restore wrote."""

    counts: dict[str, int] = Field(default_factory=dict)
    backup_key: Optional[str] = None
    source: str = "json"
