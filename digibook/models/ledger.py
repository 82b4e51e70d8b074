"""
Core Ledger Models for Digibook

These models define the strict schemas for every record the ledger stores.
They are designed to:
1. Enforce type safety at runtime
2. Keep money exact (Decimal, quantized to cents)
3. Serialize to the camelCase records used by the store and exports
4. Make the payment source an explicit tagged union

DESIGN DECISION: Monetary values are quantized to 0.01 with banker's
rounding the moment they enter a model, so every stored amount is already
in its persisted form and arithmetic never drifts.
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

CREDIT_CARD_PAYMENT_CATEGORY = "Credit Card Payment"

# Version of the export / backup payload format
DATA_VERSION = 1


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def quantize_money(value: Any) -> Decimal:
    """
    Quantize a monetary value to cents, rounding half to even.

    Accepts Decimal, int, float or numeric strings. Floats go through
    str() so 0.1 stays 0.10 rather than its binary expansion.
    """
    if isinstance(value, bool):
        raise ValueError("Monetary values must be numbers, not booleans")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a monetary value: {value!r}") from e
    if not amount.is_finite():
        raise ValueError("Monetary values must be finite")
    return amount.quantize(CENTS, rounding=ROUND_HALF_EVEN)


# Decimal in Python, plain JSON number on the wire
Money = Annotated[
    Decimal,
    AfterValidator(quantize_money),
    PlainSerializer(float, return_type=float, when_used="json"),
]

Percent = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Bank account types."""
    CHECKING = "checking"
    SAVINGS = "savings"


class ExpenseStatus(str, Enum):
    """
    Stored payment status of a fixed expense.

    Always derived from the amounts: PAID iff paidAmount >= amount.
    """
    PENDING = "pending"
    PAID = "paid"


class PaycheckFrequency(str, Enum):
    """Supported paycheck frequencies."""
    BIWEEKLY = "biweekly"


# =============================================================================
# BASE MODEL
# =============================================================================

class LedgerModel(BaseModel):
    """
    Base for all stored records.

    Attribute names are snake_case in Python; records, exports and
    imports use camelCase.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_record(self) -> dict[str, Any]:
        """Convert to a JSON-safe camelCase record for storage."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_record(cls, record: dict[str, Any]):
        """Build a model from a stored record."""
        return cls.model_validate(record)


# =============================================================================
# ACCOUNTS AND CARDS
# =============================================================================

class Account(LedgerModel):
    """
    A checking or savings account.

    currentBalance may go negative (overdraft). Exactly one account is
    the default whenever at least one exists.
    """

    id: Optional[int] = Field(default=None, description="Store-assigned id")
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    type: AccountType = Field(
        default=AccountType.CHECKING,
        description="Account type"
    )
    current_balance: Money = Field(
        default=ZERO,
        description="Signed current balance"
    )
    is_default: bool = Field(
        default=False,
        description="Default funding account for new expenses"
    )
    created_at: datetime = Field(default_factory=utc_now)


class CreditCard(LedgerModel):
    """
    A credit card.

    balance is outstanding debt. It is expected to stay >= 0, but an
    overpayment leaves a negative (credit) balance which is preserved.
    """

    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=100)
    balance: Money = Field(
        default=ZERO,
        description="Outstanding debt; negative means a credit balance"
    )
    credit_limit: Money = Field(
        ...,
        gt=0,
        description="Credit limit"
    )
    interest_rate: Percent = Field(
        default=Decimal("0"),
        ge=0,
        le=100,
        description="Annual percentage rate"
    )
    due_date: date = Field(..., description="Next payment due date")
    statement_closing_date: Optional[date] = None
    minimum_payment: Money = Field(default=ZERO, ge=0)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_over_limit(self) -> bool:
        return self.balance > self.credit_limit


class Category(LedgerModel):
    """An expense category. Names are unique case-insensitively."""

    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(
        default="#6B7280",
        pattern=r"^#[0-9A-Fa-f]{6}$",
        description="Hex color #RRGGBB"
    )
    icon: str = Field(default="📦", max_length=16)
    is_default: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator('color')
    @classmethod
    def normalize_color(cls, v: str) -> str:
        return v.upper()


# =============================================================================
# PAYMENT SOURCE - tagged union
# =============================================================================

class AccountSource(LedgerModel):
    """Regular expense paid from a checking or savings account."""
    kind: Literal["account"] = "account"
    account_id: int


class CreditCardSource(LedgerModel):
    """Regular expense charged to a credit card."""
    kind: Literal["creditCard"] = "creditCard"
    credit_card_id: int


class CreditCardPaymentSource(LedgerModel):
    """Transfer from a funding account to pay down a credit card."""
    kind: Literal["creditCardPayment"] = "creditCardPayment"
    account_id: int
    target_credit_card_id: int


PaymentSource = Annotated[
    Union[AccountSource, CreditCardSource, CreditCardPaymentSource],
    Field(discriminator="kind"),
]


def funding_account_id(source: Any) -> Optional[int]:
    """Account debited by a payment source, if any."""
    if isinstance(source, (AccountSource, CreditCardPaymentSource)):
        return source.account_id
    return None


def referenced_card_id(source: Any) -> Optional[int]:
    """Card touched by a payment source, if any."""
    if isinstance(source, CreditCardSource):
        return source.credit_card_id
    if isinstance(source, CreditCardPaymentSource):
        return source.target_credit_card_id
    return None


# =============================================================================
# EXPENSES AND PENDING TRANSACTIONS
# =============================================================================

class FixedExpense(LedgerModel):
    """
    A recurring line item the user owes.

    CRITICAL: paymentSource.kind == creditCardPayment if and only if
    category == "Credit Card Payment". The model refuses to exist
    otherwise.
    """

    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=100)
    due_date: date = Field(..., description="Due date (local calendar date)")
    amount: Money = Field(..., gt=0, description="Budgeted amount")
    paid_amount: Money = Field(default=ZERO, ge=0, description="Amount paid so far")
    status: ExpenseStatus = ExpenseStatus.PENDING
    category: str = Field(default="Other", min_length=1, max_length=50)
    payment_source: PaymentSource
    is_auto_created: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def remaining(self) -> Decimal:
        return max(self.amount - self.paid_amount, ZERO)

    @property
    def is_credit_card_payment(self) -> bool:
        return self.payment_source.kind == "creditCardPayment"

    @model_validator(mode='after')
    def validate_payment_source_category(self) -> 'FixedExpense':
        """Credit card payments and their category go together."""
        is_payment_category = self.category == CREDIT_CARD_PAYMENT_CATEGORY
        if self.is_credit_card_payment and not is_payment_category:
            raise ValueError(
                f"Credit card payments must use the '{CREDIT_CARD_PAYMENT_CATEGORY}' category"
            )
        if is_payment_category and not self.is_credit_card_payment:
            raise ValueError(
                f"'{CREDIT_CARD_PAYMENT_CATEGORY}' expenses need a funding account and target card"
            )
        return self

    @model_validator(mode='after')
    def derive_status(self) -> 'FixedExpense':
        """Status always follows the amounts."""
        self.status = (
            ExpenseStatus.PAID
            if self.paid_amount >= self.amount
            else ExpenseStatus.PENDING
        )
        return self


class PendingTransaction(LedgerModel):
    """
    A transaction that has not cleared yet.

    Negative amounts are outflows. Settling applies the amount to the
    account and removes the row.
    """

    id: Optional[int] = None
    account_id: int
    amount: Money = Field(..., description="Signed amount; negative is an outflow")
    category: str = Field(default="Other", max_length=50)
    description: str = Field(default="", max_length=200)
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# SINGLETONS AND PREFERENCES
# =============================================================================

PAYCHECK_SETTINGS_ID = 1


class PaycheckSettings(LedgerModel):
    """Paycheck schedule singleton. Lazily created with empty defaults."""

    id: int = PAYCHECK_SETTINGS_ID
    last_paycheck_date: Optional[date] = None
    frequency: PaycheckFrequency = PaycheckFrequency.BIWEEKLY

    @field_validator('last_paycheck_date', mode='before')
    @classmethod
    def blank_is_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class UserPreference(LedgerModel):
    """Preferences for one UI component, keyed by component name."""

    id: Optional[int] = None
    component: str = Field(..., min_length=1, max_length=100)
    preferences: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# DEFAULT DATA
# =============================================================================

DEFAULT_CATEGORIES: tuple[tuple[str, str, str], ...] = (
    ("Housing", "#3B82F6", "🏠"),
    ("Utilities", "#10B981", "⚡"),
    ("Insurance", "#F59E0B", "🛡️"),
    ("Transportation", "#8B5CF6", "🚗"),
    ("Subscriptions", "#EC4899", "📱"),
    (CREDIT_CARD_PAYMENT_CATEGORY, "#F97316", "💳"),
    ("Debt", "#EF4444", "📊"),
    ("Healthcare", "#06B6D4", "🏥"),
    ("Education", "#84CC16", "🎓"),
    ("Other", "#6B7280", "📦"),
)


def default_categories() -> list[Category]:
    """Fresh default category models (without ids)."""
    return [
        Category(name=name, color=color, icon=icon, is_default=True)
        for name, color, icon in DEFAULT_CATEGORIES
    ]


# =============================================================================
# SNAPSHOT
# =============================================================================

class LedgerSnapshot(BaseModel):
    """
    Immutable view of the whole ledger at one point in time.

    Derivations take a snapshot (or its tuples) as input. Tuples are
    replaced, never mutated, so identity changes exactly when content
    does.
    """
    model_config = ConfigDict(frozen=True)

    accounts: tuple[Account, ...] = ()
    credit_cards: tuple[CreditCard, ...] = ()
    fixed_expenses: tuple[FixedExpense, ...] = ()
    pending_transactions: tuple[PendingTransaction, ...] = ()
    categories: tuple[Category, ...] = ()
    paycheck_settings: Optional[PaycheckSettings] = None
    user_preferences: tuple[UserPreference, ...] = ()

    def account(self, account_id: int) -> Optional[Account]:
        return next((a for a in self.accounts if a.id == account_id), None)

    def credit_card(self, card_id: int) -> Optional[CreditCard]:
        return next((c for c in self.credit_cards if c.id == card_id), None)

    def expense(self, expense_id: int) -> Optional[FixedExpense]:
        return next((e for e in self.fixed_expenses if e.id == expense_id), None)

    @property
    def default_account(self) -> Optional[Account]:
        return next((a for a in self.accounts if a.is_default), None)

    def with_expense(self, expense: FixedExpense) -> 'LedgerSnapshot':
        """Copy of this snapshot with one expense replaced."""
        expenses = tuple(
            expense if e.id == expense.id else e for e in self.fixed_expenses
        )
        return self.model_copy(update={"fixed_expenses": expenses})

    def with_account(self, account: Account) -> 'LedgerSnapshot':
        accounts = tuple(
            account if a.id == account.id else a for a in self.accounts
        )
        return self.model_copy(update={"accounts": accounts})

    def with_credit_card(self, card: CreditCard) -> 'LedgerSnapshot':
        cards = tuple(card if c.id == card.id else c for c in self.credit_cards)
        return self.model_copy(update={"credit_cards": cards})
