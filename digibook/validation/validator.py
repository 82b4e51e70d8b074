"""
Ledger Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Type and format checks (via the Pydantic models)
- Finite numbers, parseable dates

STAGE 2 - SEMANTIC VALIDATION:
- Payment source shape vs. category
- Referenced ids resolve
- Case-insensitive duplicate names
- Funds and debt checks for credit card payments

All functions here are pure: they take everything they need as arguments,
never touch storage, and never raise for expected problems. They return a
ValidationResult whose `sanitized` value is ready to persist when `ok`.

IMPORTANT: Validation NEVER silently fixes data beyond trimming and
normalizing case. Anything else is reported.
"""

import re
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError

from digibook.errors import ErrorKind
from digibook.models.audit import AuditEvent
from digibook.models.ledger import (
    CREDIT_CARD_PAYMENT_CATEGORY,
    DATA_VERSION,
    ZERO,
    Account,
    AccountSource,
    AccountType,
    Category,
    CreditCard,
    CreditCardPaymentSource,
    CreditCardSource,
    FixedExpense,
    LedgerModel,
    PaycheckFrequency,
    PaycheckSettings,
    PendingTransaction,
    UserPreference,
    funding_account_id,
    quantize_money,
    referenced_card_id,
)
from digibook.models.reports import (
    IssueSeverity,
    PaymentInfo,
    PaymentSuggestion,
    PaymentValidationResult,
    SuggestionKind,
    ValidationIssue,
    ValidationResult,
)


CATEGORY_NAME_MAX_LENGTH = 50
HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")

_UNSAFE_MARKUP = re.compile(r"[<>]")
_SCRIPT_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_INLINE_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)

# Store name -> model, in the order records are written on import
IMPORT_COLLECTIONS: dict[str, type[LedgerModel]] = {
    "accounts": Account,
    "creditCards": CreditCard,
    "categories": Category,
    "fixedExpenses": FixedExpense,
    "pendingTransactions": PendingTransaction,
    "userPreferences": UserPreference,
    "auditLogs": AuditEvent,
}
REQUIRED_IMPORT_COLLECTIONS = (
    "accounts",
    "creditCards",
    "pendingTransactions",
    "fixedExpenses",
    "categories",
)


# =============================================================================
# HELPERS
# =============================================================================

def sanitize_string(value: Any) -> str:
    """Strip markup and script injection from free text, then trim."""
    if value is None:
        return ""
    text = str(value)
    text = _UNSAFE_MARKUP.sub("", text)
    text = _SCRIPT_SCHEME.sub("", text)
    text = _INLINE_HANDLER.sub("", text)
    return text.strip()


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    """First present, non-blank value among camelCase / snake_case keys."""
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _issue(
    field: str,
    kind: ErrorKind,
    message: str,
    severity: IssueSeverity = IssueSeverity.ERROR,
    suggested_fix: Optional[str] = None,
    **details: Any,
) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        kind=kind,
        message=message,
        severity=severity,
        suggested_fix=suggested_fix,
        details=details,
    )


def _issues_from_error(
    error: ValidationError,
    prefix: str = "",
    kind: Optional[ErrorKind] = None,
) -> list[ValidationIssue]:
    """Convert Pydantic errors into issues, one per failing field."""
    issues = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"])
        field = f"{prefix}.{location}" if prefix and location else (prefix or location or "record")
        if kind is not None:
            issue_kind = kind
        elif err["type"] == "missing":
            issue_kind = ErrorKind.REQUIRED
        else:
            issue_kind = ErrorKind.INVALID_VALUE
        issues.append(_issue(field, issue_kind, err["msg"]))
    return issues


def _parse_money(
    data: Mapping[str, Any],
    field: str,
    *keys: str,
    issues: list[ValidationIssue],
    default: Optional[Decimal] = None,
) -> Optional[Decimal]:
    """Parse a money field, recording an issue if it is not a finite number."""
    raw = _pick(data, *keys)
    if raw is None:
        return default
    try:
        return quantize_money(raw)
    except ValueError:
        issues.append(_issue(
            field,
            ErrorKind.INVALID_VALUE,
            f"{field} must be a finite number",
            suggested_fix="Enter a number such as 125.50",
        ))
        return None


def _build(
    model: type[LedgerModel],
    values: dict[str, Any],
    issues: list[ValidationIssue],
) -> ValidationResult:
    """Stage 1 on top of the semantic checks: build the typed model."""
    if any(issue.severity == IssueSeverity.ERROR for issue in issues):
        return ValidationResult(issues=issues)
    try:
        sanitized = model.model_validate(values)
    except ValidationError as e:
        issues.extend(_issues_from_error(e))
        return ValidationResult(issues=issues)
    return ValidationResult(sanitized=sanitized, issues=issues)


# =============================================================================
# ENTITY VALIDATORS
# =============================================================================

def validate_account(
    data: Mapping[str, Any],
    existing: Iterable[Account] = (),
) -> ValidationResult:
    """
    Validate a new or edited account.

    Trims the name, normalizes the type, rejects non-finite balances.
    A negative savings balance is a warning.
    """
    issues: list[ValidationIssue] = []

    name = sanitize_string(data.get("name"))
    if not name:
        issues.append(_issue(
            "name", ErrorKind.REQUIRED, "Account name is required",
            suggested_fix="Give the account a name like 'Checking'",
        ))

    raw_type = str(data.get("type") or AccountType.CHECKING.value).strip().lower()
    if raw_type not in {t.value for t in AccountType}:
        issues.append(_issue(
            "type", ErrorKind.INVALID_VALUE,
            f"Account type must be checking or savings, got '{raw_type}'",
        ))

    balance = _parse_money(
        data, "currentBalance", "currentBalance", "current_balance",
        issues=issues, default=ZERO,
    )
    if balance is not None and balance < 0 and raw_type == AccountType.SAVINGS.value:
        issues.append(_issue(
            "currentBalance", ErrorKind.INVALID_VALUE,
            "Savings account balance is negative",
            severity=IssueSeverity.WARNING,
        ))

    own_id = data.get("id")
    if name and any(
        a.name.lower() == name.lower() and a.id != own_id for a in existing
    ):
        issues.append(_issue(
            "name", ErrorKind.DUPLICATE,
            f"An account named '{name}' already exists",
            severity=IssueSeverity.WARNING,
        ))

    values = {
        "name": name,
        "type": raw_type,
        "current_balance": balance,
        "is_default": bool(_pick(data, "isDefault", "is_default")),
    }
    if own_id is not None:
        values["id"] = own_id
    if _pick(data, "createdAt", "created_at") is not None:
        values["created_at"] = _pick(data, "createdAt", "created_at")
    return _build(Account, values, issues)


def validate_credit_card(data: Mapping[str, Any]) -> ValidationResult:
    """Validate a new or edited credit card. Over-limit is a warning."""
    issues: list[ValidationIssue] = []

    name = sanitize_string(data.get("name"))
    if not name:
        issues.append(_issue("name", ErrorKind.REQUIRED, "Card name is required"))

    balance = _parse_money(data, "balance", "balance", issues=issues, default=ZERO)
    if balance is not None and balance < 0:
        issues.append(_issue(
            "balance", ErrorKind.INVALID_VALUE, "Card balance cannot be negative",
        ))

    limit = _parse_money(data, "creditLimit", "creditLimit", "credit_limit", issues=issues)
    if limit is None and not any(i.field == "creditLimit" for i in issues):
        issues.append(_issue("creditLimit", ErrorKind.REQUIRED, "Credit limit is required"))
    elif limit is not None and limit <= 0:
        issues.append(_issue(
            "creditLimit", ErrorKind.INVALID_VALUE, "Credit limit must be greater than zero",
        ))

    rate = _parse_money(
        data, "interestRate", "interestRate", "interest_rate", issues=issues, default=ZERO,
    )
    if rate is not None and not (0 <= rate <= 100):
        issues.append(_issue(
            "interestRate", ErrorKind.INVALID_VALUE,
            "Interest rate must be between 0 and 100",
        ))

    minimum = _parse_money(
        data, "minimumPayment", "minimumPayment", "minimum_payment",
        issues=issues, default=ZERO,
    )
    if minimum is not None and minimum < 0:
        issues.append(_issue(
            "minimumPayment", ErrorKind.INVALID_VALUE, "Minimum payment cannot be negative",
        ))

    if _pick(data, "dueDate", "due_date") is None:
        issues.append(_issue("dueDate", ErrorKind.REQUIRED, "Due date is required"))

    if balance is not None and limit is not None and limit > 0 and balance > limit:
        issues.append(_issue(
            "balance", ErrorKind.OVER_LIMIT,
            f"Balance {balance} is over the credit limit {limit}",
            severity=IssueSeverity.WARNING,
        ))

    values = {
        "name": name,
        "balance": balance,
        "credit_limit": limit,
        "interest_rate": rate,
        "due_date": _pick(data, "dueDate", "due_date"),
        "statement_closing_date": _pick(data, "statementClosingDate", "statement_closing_date"),
        "minimum_payment": minimum,
    }
    for key in ("id", "createdAt"):
        if data.get(key) is not None:
            values[key] = data[key]
    return _build(CreditCard, values, issues)


def validate_category(
    data: Mapping[str, Any],
    existing: Iterable[Category] = (),
) -> ValidationResult:
    """
    Validate a new or renamed category.

    Names are compared trimmed and lowercased; a match against any
    other category is a duplicate.
    """
    issues: list[ValidationIssue] = []

    name = sanitize_string(data.get("name"))
    if not name:
        issues.append(_issue("name", ErrorKind.REQUIRED, "Category name is required"))
    elif len(name) > CATEGORY_NAME_MAX_LENGTH:
        issues.append(_issue(
            "name", ErrorKind.INVALID_VALUE,
            f"Category name must be {CATEGORY_NAME_MAX_LENGTH} characters or fewer",
        ))

    own_id = data.get("id")
    if name and any(
        c.name.strip().lower() == name.lower() and c.id != own_id for c in existing
    ):
        issues.append(_issue(
            "name", ErrorKind.DUPLICATE,
            f"A category named '{name}' already exists",
            suggested_fix="Pick a different name",
        ))

    color = str(data.get("color") or "#6B7280").strip()
    if not HEX_COLOR.match(color):
        issues.append(_issue(
            "color", ErrorKind.INVALID_VALUE,
            "Color must be a hex value like #3B82F6",
        ))

    values = {
        "name": name,
        "color": color,
        "icon": sanitize_string(data.get("icon")) or "📦",
        "is_default": bool(_pick(data, "isDefault", "is_default")),
    }
    for key in ("id", "createdAt"):
        if data.get(key) is not None:
            values[key] = data[key]
    return _build(Category, values, issues)


def _build_source(model: type[LedgerModel], values: dict[str, Any]) -> ValidationResult:
    """Build a typed payment source; malformed ids become issues."""
    try:
        return ValidationResult(sanitized=model.model_validate(values))
    except ValidationError as e:
        return ValidationResult(issues=_issues_from_error(
            e, "paymentSource", ErrorKind.INVALID_PAYMENT_SOURCE,
        ))


def validate_payment_source(expense: Mapping[str, Any]) -> ValidationResult:
    """
    Check that an expense carries exactly one valid payment source shape.

    Accepts flat fields (accountId / creditCardId / targetCreditCardId)
    or a nested paymentSource mapping. On success `sanitized` is the
    typed payment source.
    """
    fields = dict(expense)
    nested = fields.get("paymentSource") or fields.get("payment_source")
    if isinstance(nested, Mapping):
        fields.update(nested)
    elif isinstance(nested, LedgerModel):
        fields.update(nested.to_record())

    category = str(fields.get("category") or "").strip()
    account_id = _pick(fields, "accountId", "account_id")
    card_id = _pick(fields, "creditCardId", "credit_card_id")
    target_id = _pick(fields, "targetCreditCardId", "target_credit_card_id")

    def invalid(message: str) -> ValidationResult:
        return ValidationResult(issues=[_issue(
            "paymentSource", ErrorKind.INVALID_PAYMENT_SOURCE, message,
        )])

    if category == CREDIT_CARD_PAYMENT_CATEGORY:
        if target_id is None:
            return invalid("Credit card payments need a target credit card")
        if account_id is None:
            return invalid("Credit card payments need a funding account")
        if card_id is not None:
            return invalid("Credit card payments cannot be charged to a credit card")
        return _build_source(
            CreditCardPaymentSource,
            {"account_id": account_id, "target_credit_card_id": target_id},
        )

    if target_id is not None:
        return invalid(
            f"Only '{CREDIT_CARD_PAYMENT_CATEGORY}' expenses can target a credit card"
        )
    if account_id is None and card_id is None:
        return invalid("Choose an account or a credit card to pay this expense")
    if account_id is not None and card_id is not None:
        return invalid("An expense is paid from an account or a credit card, not both")
    if account_id is not None:
        return _build_source(AccountSource, {"account_id": account_id})
    return _build_source(CreditCardSource, {"credit_card_id": card_id})


def validate_expense(
    data: Mapping[str, Any],
    accounts: Iterable[Account],
    credit_cards: Iterable[CreditCard],
    categories: Optional[Iterable[Category]] = None,
) -> ValidationResult:
    """
    Validate a new or edited fixed expense, including its payment source
    and the entities it references.
    """
    issues: list[ValidationIssue] = []

    name = sanitize_string(data.get("name"))
    if not name:
        issues.append(_issue("name", ErrorKind.REQUIRED, "Expense name is required"))

    amount = _parse_money(data, "amount", "amount", issues=issues)
    if amount is None and not any(i.field == "amount" for i in issues):
        issues.append(_issue("amount", ErrorKind.REQUIRED, "Amount is required"))
    elif amount is not None and amount <= 0:
        issues.append(_issue(
            "amount", ErrorKind.AMOUNT_NOT_POSITIVE, "Amount must be greater than zero",
        ))

    paid = _parse_money(data, "paidAmount", "paidAmount", "paid_amount", issues=issues, default=ZERO)
    if paid is not None and paid < 0:
        issues.append(_issue(
            "paidAmount", ErrorKind.INVALID_AMOUNT, "Paid amount cannot be negative",
        ))

    if _pick(data, "dueDate", "due_date") is None:
        issues.append(_issue("dueDate", ErrorKind.REQUIRED, "Due date is required"))

    category = sanitize_string(data.get("category")) or "Other"
    if categories is not None:
        known = {c.name.lower() for c in categories}
        if category.lower() not in known:
            issues.append(_issue(
                "category", ErrorKind.NOT_FOUND,
                f"Category '{category}' does not exist",
                suggested_fix="Create the category first or pick an existing one",
            ))

    source_result = validate_payment_source({**data, "category": category})
    issues.extend(source_result.issues)
    source = source_result.sanitized

    if source is not None:
        account_ids = {a.id for a in accounts}
        card_ids = {c.id for c in credit_cards}
        account_ref = funding_account_id(source)
        card_ref = referenced_card_id(source)
        if account_ref is not None and account_ref not in account_ids:
            issues.append(_issue(
                "paymentSource.accountId", ErrorKind.NOT_FOUND,
                f"Account {account_ref} does not exist",
            ))
        if card_ref is not None and card_ref not in card_ids:
            issues.append(_issue(
                "paymentSource.creditCardId", ErrorKind.NOT_FOUND,
                f"Credit card {card_ref} does not exist",
            ))

    values = {
        "name": name,
        "amount": amount,
        "paid_amount": paid,
        "due_date": _pick(data, "dueDate", "due_date"),
        "category": category,
        "payment_source": source,
        "is_auto_created": bool(_pick(data, "isAutoCreated", "is_auto_created")),
    }
    for key in ("id", "createdAt"):
        if data.get(key) is not None:
            values[key] = data[key]
    return _build(FixedExpense, values, issues)


def validate_pending_transaction(
    data: Mapping[str, Any],
    accounts: Iterable[Account],
) -> ValidationResult:
    """Validate a pending transaction against the known accounts."""
    issues: list[ValidationIssue] = []

    account_id = _pick(data, "accountId", "account_id")
    if account_id is None:
        issues.append(_issue("accountId", ErrorKind.REQUIRED, "Account is required"))
    elif account_id not in {a.id for a in accounts}:
        issues.append(_issue(
            "accountId", ErrorKind.NOT_FOUND, f"Account {account_id} does not exist",
        ))

    amount = _parse_money(data, "amount", "amount", issues=issues)
    if amount is None and not any(i.field == "amount" for i in issues):
        issues.append(_issue("amount", ErrorKind.REQUIRED, "Amount is required"))
    elif amount == 0:
        issues.append(_issue(
            "amount", ErrorKind.INVALID_VALUE, "Amount cannot be zero",
        ))

    values = {
        "account_id": account_id,
        "amount": amount,
        "category": sanitize_string(data.get("category")) or "Other",
        "description": sanitize_string(data.get("description")),
    }
    return _build(PendingTransaction, values, issues)


def validate_paycheck_settings(data: Mapping[str, Any]) -> ValidationResult:
    """Validate paycheck settings. Only the biweekly frequency exists."""
    issues: list[ValidationIssue] = []

    frequency = str(data.get("frequency") or PaycheckFrequency.BIWEEKLY.value).strip().lower()
    if frequency != PaycheckFrequency.BIWEEKLY.value:
        issues.append(_issue(
            "frequency", ErrorKind.INVALID_VALUE,
            f"Unsupported paycheck frequency '{frequency}'",
            suggested_fix="Use biweekly",
        ))

    values = {
        "last_paycheck_date": _pick(data, "lastPaycheckDate", "last_paycheck_date"),
        "frequency": frequency,
    }
    return _build(PaycheckSettings, values, issues)


# =============================================================================
# CREDIT CARD PAYMENTS
# =============================================================================

def generate_payment_suggestions(
    debt: Decimal,
    minimum: Decimal,
    available: Decimal,
) -> list[PaymentSuggestion]:
    """
    Payment amounts worth offering, smallest first.

    Suggestions that are not strictly useful are left out: the minimum
    when it exceeds available funds, full when it equals the minimum,
    the doubled minimum when it does not sit strictly between minimum
    and debt. Affordable is offered only when nothing else fits.
    """
    debt = quantize_money(debt)
    minimum = quantize_money(minimum)
    available = quantize_money(available)

    if debt <= 0:
        return []

    suggestions: list[PaymentSuggestion] = []
    minimum_amount = min(minimum, debt)

    if 0 < minimum_amount <= available:
        suggestions.append(PaymentSuggestion(
            kind=SuggestionKind.MINIMUM,
            label="Minimum Payment",
            amount=minimum_amount,
            description="Keeps the card in good standing",
        ))

    if minimum > 0 and debt > minimum:
        suggested = min(minimum * 2, debt, available)
        if minimum < suggested < debt:
            suggestions.append(PaymentSuggestion(
                kind=SuggestionKind.SUGGESTED,
                label="Suggested Payment",
                amount=suggested,
                description="Double the minimum to cut interest faster",
            ))

    if debt <= available and debt != minimum_amount:
        suggestions.append(PaymentSuggestion(
            kind=SuggestionKind.FULL,
            label="Pay in Full",
            amount=debt,
            description="Clears the balance and avoids interest",
        ))

    if not suggestions and available > 0:
        suggestions.append(PaymentSuggestion(
            kind=SuggestionKind.AFFORDABLE,
            label="Maximum Affordable",
            amount=min(available, debt),
            description="Everything the funding account can cover",
        ))

    return suggestions


def validate_credit_card_payment_amount(
    expense: FixedExpense,
    amount: Any,
    funding_account: Optional[Account],
    target_card: Optional[CreditCard],
) -> PaymentValidationResult:
    """
    Check a credit card payment before it is applied.

    Errors block the payment (not a card payment, missing entities,
    amount <= 0, amount above the funding balance). Warnings do not
    (overpaying the debt, card already at zero).
    """
    issues: list[ValidationIssue] = []

    if not expense.is_credit_card_payment:
        issues.append(_issue(
            "paymentSource", ErrorKind.INVALID_PAYMENT_SOURCE,
            "This expense is not a credit card payment",
        ))
        return PaymentValidationResult(issues=issues)

    if funding_account is None:
        issues.append(_issue(
            "paymentSource.accountId", ErrorKind.DANGLING_REFERENCE,
            "Funding account no longer exists",
        ))
    if target_card is None:
        issues.append(_issue(
            "paymentSource.targetCreditCardId", ErrorKind.DANGLING_REFERENCE,
            "Target credit card no longer exists",
        ))
    if funding_account is None or target_card is None:
        return PaymentValidationResult(issues=issues)

    try:
        payment = quantize_money(amount)
    except ValueError:
        issues.append(_issue(
            "amount", ErrorKind.INVALID_AMOUNT, "Payment amount must be a finite number",
        ))
        return PaymentValidationResult(issues=issues)

    debt = target_card.balance
    available = funding_account.current_balance

    if payment <= 0:
        issues.append(_issue(
            "amount", ErrorKind.AMOUNT_NOT_POSITIVE,
            "Payment amount must be greater than zero",
        ))
    elif payment > available:
        issues.append(_issue(
            "amount", ErrorKind.INSUFFICIENT_FUNDS,
            f"Payment of {payment} exceeds the {available} available in {funding_account.name}",
            suggested_fix="Pay a smaller amount or move money into the funding account",
            available=str(available),
            shortfall=str(payment - available),
        ))

    if debt <= 0:
        issues.append(_issue(
            "amount", ErrorKind.ALREADY_ZERO,
            f"{target_card.name} has no balance to pay",
            severity=IssueSeverity.WARNING,
        ))
    elif payment > debt:
        surplus = payment - debt
        issues.append(_issue(
            "amount", ErrorKind.OVERPAYMENT,
            f"Payment exceeds the {debt} owed by {surplus}",
            severity=IssueSeverity.WARNING,
            suggested_fix="The surplus becomes a credit balance on the card",
            surplus=str(surplus),
        ))

    info = PaymentInfo(
        current_debt=debt,
        minimum_payment=target_card.minimum_payment,
        available_funds=available,
        after_payment_debt=debt - max(payment, ZERO),
        funding_account_name=funding_account.name,
        target_card_name=target_card.name,
    )
    return PaymentValidationResult(
        sanitized=payment if not any(i.severity == IssueSeverity.ERROR for i in issues) else None,
        issues=issues,
        suggestions=generate_payment_suggestions(debt, target_card.minimum_payment, available),
        info=info,
    )


# =============================================================================
# IMPORT
# =============================================================================

def validate_import(
    payload: Any,
    current_version: int = DATA_VERSION,
) -> ValidationResult:
    """
    Validate an exported ledger before it replaces the current one.

    On success `sanitized` maps store name to a list of typed records,
    ids preserved. paycheckSettings maps to a list of zero or one.
    """
    if not isinstance(payload, Mapping):
        return ValidationResult(issues=[_issue(
            "payload", ErrorKind.MALFORMED, "Import must be a JSON object",
        )])

    issues: list[ValidationIssue] = []

    version = payload.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        issues.append(_issue("version", ErrorKind.MALFORMED, "Version must be a positive integer"))
    elif version > current_version:
        issues.append(_issue(
            "version", ErrorKind.SCHEMA_TOO_NEW,
            f"Data version {version} is newer than supported version {current_version}",
            suggested_fix="Update Digibook before importing this file",
            version=version,
        ))
        return ValidationResult(issues=issues)

    for name in REQUIRED_IMPORT_COLLECTIONS:
        if not isinstance(payload.get(name), list):
            issues.append(_issue(name, ErrorKind.MALFORMED, f"{name} must be an array"))
    for name in IMPORT_COLLECTIONS:
        if name not in REQUIRED_IMPORT_COLLECTIONS and name in payload:
            if not isinstance(payload[name], list):
                issues.append(_issue(name, ErrorKind.MALFORMED, f"{name} must be an array"))
    if issues:
        return ValidationResult(issues=issues)

    records: dict[str, list[LedgerModel]] = {}
    for name, model in IMPORT_COLLECTIONS.items():
        parsed = []
        seen_ids: set[int] = set()
        for index, raw in enumerate(payload.get(name) or []):
            prefix = f"{name}[{index}]"
            if not isinstance(raw, Mapping):
                issues.append(_issue(prefix, ErrorKind.MALFORMED, "Record must be an object"))
                continue
            try:
                record = model.model_validate(raw)
            except ValidationError as e:
                issues.extend(_issues_from_error(e, prefix, ErrorKind.MALFORMED))
                continue
            if record.id is None:
                issues.append(_issue(f"{prefix}.id", ErrorKind.MALFORMED, "Record id is required"))
                continue
            if record.id in seen_ids:
                issues.append(_issue(
                    f"{prefix}.id", ErrorKind.MALFORMED, f"Duplicate id {record.id} in {name}",
                ))
                continue
            seen_ids.add(record.id)
            parsed.append(record)
        records[name] = parsed

    raw_settings = payload.get("paycheckSettings")
    records["paycheckSettings"] = []
    if raw_settings is not None:
        try:
            records["paycheckSettings"].append(PaycheckSettings.model_validate(raw_settings))
        except ValidationError as e:
            issues.extend(_issues_from_error(e, "paycheckSettings", ErrorKind.MALFORMED))

    issues.extend(_check_references(records))

    defaults = [a for a in records["accounts"] if a.is_default]
    if records["accounts"] and len(defaults) != 1:
        issues.append(_issue(
            "accounts", ErrorKind.INVALID_VALUE,
            f"Expected exactly one default account, found {len(defaults)}; it will be repaired",
            severity=IssueSeverity.WARNING,
        ))

    if any(issue.severity == IssueSeverity.ERROR for issue in issues):
        return ValidationResult(issues=issues)
    return ValidationResult(sanitized=records, issues=issues)


def _check_references(records: dict[str, list[LedgerModel]]) -> list[ValidationIssue]:
    """Every id an imported record points at must be imported too."""
    issues = []
    account_ids = {a.id for a in records["accounts"]}
    card_ids = {c.id for c in records["creditCards"]}

    for expense in records["fixedExpenses"]:
        account_ref = funding_account_id(expense.payment_source)
        card_ref = referenced_card_id(expense.payment_source)
        if account_ref is not None and account_ref not in account_ids:
            issues.append(_issue(
                f"fixedExpenses[id={expense.id}]", ErrorKind.DANGLING_REFERENCE,
                f"Expense '{expense.name}' references missing account {account_ref}",
            ))
        if card_ref is not None and card_ref not in card_ids:
            issues.append(_issue(
                f"fixedExpenses[id={expense.id}]", ErrorKind.DANGLING_REFERENCE,
                f"Expense '{expense.name}' references missing credit card {card_ref}",
            ))

    for pending in records["pendingTransactions"]:
        if pending.account_id not in account_ids:
            issues.append(_issue(
                f"pendingTransactions[id={pending.id}]", ErrorKind.DANGLING_REFERENCE,
                f"Pending transaction references missing account {pending.account_id}",
            ))
    return issues
