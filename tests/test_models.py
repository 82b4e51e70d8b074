"""
Tests for Digibook models

Test strategy:
1. Unit tests for the record schemas and their invariants
2. Serialization to and from camelCase store records
3. No store or I/O involved
"""

import pytest
from datetime import date
from decimal import Decimal

from pydantic import ValidationError

from digibook.models.ledger import (
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
    PaycheckSettings,
    default_categories,
    quantize_money,
)
from digibook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

from factories import account, account_expense, card, card_payment_expense


class TestMoney:
    """Tests for monetary quantization."""

    def test_rounds_half_to_even(self):
        """Test that halves round to the even cent."""
        assert quantize_money("0.125") == Decimal("0.12")
        assert quantize_money("0.135") == Decimal("0.14")

    def test_float_goes_through_str(self):
        """Test that 0.1 stays 0.10 instead of its binary expansion."""
        assert quantize_money(0.1) == Decimal("0.10")

    def test_rejects_non_finite(self):
        """Test that NaN and infinity are refused."""
        with pytest.raises(ValueError):
            quantize_money("NaN")
        with pytest.raises(ValueError):
            quantize_money(float("inf"))

    def test_rejects_booleans(self):
        """Test that True is not treated as 1."""
        with pytest.raises(ValueError):
            quantize_money(True)

    def test_model_fields_are_quantized(self):
        """Test that amounts entering a model are stored in cents."""
        acct = Account(name="Checking", current_balance="10.005")
        assert acct.current_balance == Decimal("10.00")


class TestAccountModels:
    """Tests for account and card records."""

    def test_account_defaults(self):
        """Test Account defaults."""
        acct = Account(name="  Checking  ")
        assert acct.name == "Checking"
        assert acct.type == AccountType.CHECKING
        assert acct.current_balance == Decimal("0.00")
        assert acct.is_default is False

    def test_account_allows_overdraft(self):
        """Test that a negative balance is accepted."""
        assert Account(name="Checking", current_balance="-25").current_balance == Decimal("-25.00")

    def test_card_requires_positive_limit(self):
        """Test that a zero credit limit is rejected."""
        with pytest.raises(ValidationError):
            CreditCard(name="Visa", credit_limit=Decimal("0"), due_date=date(2024, 3, 1))

    def test_card_keeps_credit_balance(self):
        """Test that a negative card balance is preserved."""
        visa = card(balance="-50")
        assert visa.balance == Decimal("-50.00")
        assert not visa.is_over_limit

    def test_card_over_limit(self):
        """Test the over-limit flag."""
        assert card(balance="5100", limit="5000").is_over_limit

    def test_category_color_is_normalized(self):
        """Test that hex colors are upper-cased."""
        assert Category(name="Food", color="#a1b2c3").color == "#A1B2C3"

    def test_category_rejects_bad_color(self):
        """Test that a non-hex color is rejected."""
        with pytest.raises(ValidationError):
            Category(name="Food", color="red")

    def test_default_categories_include_card_payment(self):
        """Test that the seeded categories contain Credit Card Payment."""
        names = [c.name for c in default_categories()]
        assert "Credit Card Payment" in names
        assert all(c.is_default for c in default_categories())


class TestPaymentSource:
    """Tests for the payment source tagged union."""

    def test_account_source_round_trip(self):
        """Test that an account source survives a store record."""
        expense = account_expense()
        record = expense.to_record()
        assert record["paymentSource"] == {"kind": "account", "accountId": 1}
        assert isinstance(FixedExpense.from_record(record).payment_source, AccountSource)

    def test_discriminator_selects_card_source(self):
        """Test that kind=creditCard parses into CreditCardSource."""
        expense = FixedExpense.model_validate({
            "name": "Streaming",
            "dueDate": "2024-03-18",
            "amount": 15,
            "category": "Subscriptions",
            "paymentSource": {"kind": "creditCard", "creditCardId": 2},
        })
        assert isinstance(expense.payment_source, CreditCardSource)
        assert expense.payment_source.credit_card_id == 2

    def test_card_payment_requires_category(self):
        """Test that a creditCardPayment source needs the Credit Card Payment category."""
        with pytest.raises(ValidationError):
            FixedExpense(
                name="Visa",
                due_date=date(2024, 3, 25),
                amount=Decimal("100"),
                category="Debt",
                payment_source=CreditCardPaymentSource(account_id=1, target_credit_card_id=2),
            )

    def test_card_payment_category_requires_source(self):
        """Test that the Credit Card Payment category needs a creditCardPayment source."""
        with pytest.raises(ValidationError):
            account_expense(category="Credit Card Payment")

    def test_unknown_kind_rejected(self):
        """Test that an unknown kind is rejected."""
        with pytest.raises(ValidationError):
            FixedExpense.model_validate({
                "name": "X",
                "dueDate": "2024-03-18",
                "amount": 15,
                "paymentSource": {"kind": "cash"},
            })


class TestFixedExpense:
    """Tests for fixed expense status and amounts."""

    def test_status_derived_from_amounts(self):
        """Test that status is paid iff paidAmount >= amount."""
        assert account_expense(paid_amount=Decimal("119.99")).status == ExpenseStatus.PENDING
        assert account_expense(paid_amount=Decimal("120")).status == ExpenseStatus.PAID
        assert account_expense(paid_amount=Decimal("150")).status == ExpenseStatus.PAID

    def test_stored_status_is_ignored(self):
        """Test that a stale stored status is corrected on load."""
        record = account_expense(paid_amount=Decimal("120")).to_record()
        record["status"] = "pending"
        assert FixedExpense.from_record(record).status == ExpenseStatus.PAID

    def test_remaining_never_negative(self):
        """Test remaining for an overpaid expense."""
        assert account_expense(paid_amount=Decimal("150")).remaining == Decimal("0.00")
        assert account_expense(paid_amount=Decimal("20")).remaining == Decimal("100.00")

    def test_negative_paid_amount_rejected(self):
        """Test that paidAmount cannot be negative."""
        with pytest.raises(ValidationError):
            account_expense(paid_amount=Decimal("-1"))

    def test_record_uses_camel_case(self):
        """Test that store records use camelCase keys."""
        record = card_payment_expense().to_record()
        assert record["dueDate"] == "2024-03-25"
        assert record["paidAmount"] == 0.0
        assert record["paymentSource"]["targetCreditCardId"] == 2
        assert "due_date" not in record


class TestSnapshot:
    """Tests for the immutable ledger snapshot."""

    def test_lookup_helpers(self):
        """Test id lookups and the default account."""
        snapshot = LedgerSnapshot(
            accounts=(account(), account(id=3, name="Savings", is_default=False)),
            credit_cards=(card(),),
            fixed_expenses=(account_expense(),),
        )
        assert snapshot.account(3).name == "Savings"
        assert snapshot.credit_card(2).name == "Visa"
        assert snapshot.expense(10).name == "Rent"
        assert snapshot.expense(99) is None
        assert snapshot.default_account.id == 1

    def test_with_expense_replaces_one(self):
        """Test that with_expense returns a new snapshot and leaves the original alone."""
        original = LedgerSnapshot(fixed_expenses=(account_expense(), account_expense(id=20, name="Gym")))
        changed = original.with_expense(account_expense(paid_amount=Decimal("120")))
        assert changed is not original
        assert changed.expense(10).status == ExpenseStatus.PAID
        assert original.expense(10).status == ExpenseStatus.PENDING
        assert changed.expense(20) is original.expense(20)

    def test_snapshot_is_frozen(self):
        """Test that snapshots cannot be mutated."""
        snapshot = LedgerSnapshot()
        with pytest.raises(ValidationError):
            snapshot.accounts = (account(),)

    def test_paycheck_settings_blank_date(self):
        """Test that an empty lastPaycheckDate means unset."""
        assert PaycheckSettings.model_validate({"lastPaycheckDate": ""}).last_paycheck_date is None


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=1,
            description="account created: Checking",
        )
        assert event.event_type == AuditEventType.ACCOUNT_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            description="Test",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "system_error"
        assert "timestamp" in log_dict

    def test_expense_payment_builder(self):
        """Test the payment event builder records before, after and delta."""
        expense = card_payment_expense(paid_amount=Decimal("300"))
        event = AuditEventBuilder.expense_payment(
            expense, Decimal("0"), Decimal("300"), participants=[],
        )
        assert event.kind == "credit_card_payment"
        assert event.details["before"] == "0.00"
        assert event.details["after"] == "300.00"
        assert event.details["delta"] == "300.00"
        assert event.details["status"] == "paid"

    def test_reversal_is_described(self):
        """Test that a negative delta is described as a reversal."""
        event = AuditEventBuilder.expense_payment(
            account_expense(), Decimal("120"), Decimal("-120"), participants=[],
        )
        assert event.kind == "expense_payment"
        assert event.description.startswith("Payment reversal")

    def test_error_event_severity(self):
        """Test that system errors are logged at error severity."""
        event = AuditEventBuilder.system_error("open_failed", "boom")
        assert event.severity == AuditSeverity.ERROR
        assert event.is_user_action is False

    def test_audit_record_round_trip(self):
        """Test that an audit event survives a store record."""
        event = AuditEventBuilder.account_created(account())
        restored = AuditEvent.from_record(event.to_record())
        assert restored.event_id == event.event_id
        assert restored.details == event.details


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
