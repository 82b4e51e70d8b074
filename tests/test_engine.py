"""
Tests for the payment engine

Test strategy:
1. Routing per payment source kind against a real in-memory store
2. Atomicity: nothing commits when a participant is missing
3. Concurrency guard and idempotence
"""

import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from digibook.audit import AuditLogger
from digibook.engine.payments import PaymentEngine, project_payment
from digibook.errors import (
    BusyError,
    DanglingReferenceError,
    InvalidAmountError,
    NotFoundError,
)
from digibook.events import PAYMENT_APPLIED, EventBus
from digibook.models.ledger import ExpenseStatus, LedgerSnapshot, PendingTransaction
from digibook.services.records import load_snapshot
from digibook.services.storage import (
    ACCOUNTS,
    AUDIT_LOGS,
    CREDIT_CARDS,
    FIXED_EXPENSES,
    PENDING_TRANSACTIONS,
    READWRITE,
    InMemoryObjectStore,
)

from factories import account, account_expense, card, card_expense, card_payment_expense, put_records


class GatedStore(InMemoryObjectStore):
    """In-memory store whose read-write transactions wait for a gate."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.gate.set()

    async def transaction(self, stores, mode, body):
        if mode == READWRITE:
            await self.gate.wait()
        return await super().transaction(stores, mode, body)


@pytest_asyncio.fixture
async def gated_store():
    store = GatedStore()
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def engine(store, bus):
    return PaymentEngine(store, AuditLogger(store), bus)


async def _balances(store):
    snapshot = await load_snapshot(store)
    return (
        {a.id: a.current_balance for a in snapshot.accounts},
        {c.id: c.balance for c in snapshot.credit_cards},
    )


class TestPaymentRouting:
    """Tests for balance routing by payment source."""

    @pytest.mark.asyncio
    async def test_account_funded_expense(self, store, engine):
        """Test paying an account expense in full."""
        await put_records(store, (ACCOUNTS, account(balance="500")), (FIXED_EXPENSES, account_expense()))

        event = await engine.apply_payment(10, Decimal("120"))

        accounts, _ = await _balances(store)
        expense = (await load_snapshot(store)).expense(10)
        assert accounts[1] == Decimal("380.00")
        assert expense.paid_amount == Decimal("120.00")
        assert expense.status == ExpenseStatus.PAID
        assert event.kind == "expense_payment"
        assert event.details["delta"] == "120.00"
        assert len(await store.scan(AUDIT_LOGS)) == 1

    @pytest.mark.asyncio
    async def test_card_charged_expense(self, store, engine):
        """Test that charging a card adds to its balance."""
        await put_records(store, (CREDIT_CARDS, card(balance="0")), (FIXED_EXPENSES, card_expense()))

        await engine.apply_payment(11, 80)

        _, cards = await _balances(store)
        assert cards[2] == Decimal("80.00")
        assert (await load_snapshot(store)).expense(11).status == ExpenseStatus.PAID

    @pytest.mark.asyncio
    async def test_card_payment_moves_both_balances(self, store, engine):
        """Test that a card payment debits the account and reduces the card."""
        await put_records(
            store,
            (ACCOUNTS, account(balance="1000")),
            (CREDIT_CARDS, card(balance="600")),
            (FIXED_EXPENSES, card_payment_expense(amount="300")),
        )

        event = await engine.apply_payment(12, 300)

        accounts, cards = await _balances(store)
        assert accounts[1] == Decimal("700.00")
        assert cards[2] == Decimal("300.00")
        assert event.kind == "credit_card_payment"
        assert [p["entity"] for p in event.details["participants"]] == ["account", "creditCard"]

    @pytest.mark.asyncio
    async def test_overpayment_leaves_credit_balance(self, store, engine):
        """Test that paying more than the debt drives the card negative."""
        await put_records(
            store,
            (ACCOUNTS, account(balance="500")),
            (CREDIT_CARDS, card(balance="100")),
            (FIXED_EXPENSES, card_payment_expense(amount="150")),
        )

        await engine.apply_payment(12, 150)

        accounts, cards = await _balances(store)
        assert accounts[1] == Decimal("350.00")
        assert cards[2] == Decimal("-50.00")

    @pytest.mark.asyncio
    async def test_reversal(self, store, engine):
        """Test that lowering the paid amount moves money back."""
        await put_records(store, (ACCOUNTS, account(balance="500")), (FIXED_EXPENSES, account_expense()))

        await engine.apply_payment(10, 120)
        event = await engine.apply_payment(10, 20)

        accounts, _ = await _balances(store)
        assert accounts[1] == Decimal("480.00")
        assert event.details["delta"] == "-100.00"
        assert (await load_snapshot(store)).expense(10).status == ExpenseStatus.PENDING

    @pytest.mark.asyncio
    async def test_conservation(self, store, engine):
        """Test that a card payment moves the same amount out of the account and off the card."""
        await put_records(
            store,
            (ACCOUNTS, account(balance="1000")),
            (CREDIT_CARDS, card(balance="600")),
            (FIXED_EXPENSES, card_payment_expense(amount="300")),
        )
        before_accounts, before_cards = await _balances(store)

        await engine.apply_payment(12, Decimal("123.45"))

        after_accounts, after_cards = await _balances(store)
        assert before_accounts[1] - after_accounts[1] == Decimal("123.45")
        assert before_cards[2] - after_cards[2] == Decimal("123.45")

    @pytest.mark.asyncio
    async def test_account_funded_conservation(self, store, engine):
        """Test that account balances plus paid amounts stay constant through payments and reversals."""
        await put_records(
            store,
            (ACCOUNTS, account(balance="1000")),
            (ACCOUNTS, account(id=3, name="Savings", balance="250", is_default=False)),
            (FIXED_EXPENSES, account_expense()),
            (FIXED_EXPENSES, account_expense(id=13, amount="75.50", account_id=3, name="Phone")),
        )

        async def total():
            snapshot = await load_snapshot(store)
            return (
                sum(a.current_balance for a in snapshot.accounts)
                + sum(e.paid_amount for e in snapshot.fixed_expenses)
            )

        expected = await total()
        assert expected == Decimal("1250.00")

        for expense_id, amount in [(10, "120"), (13, "40.25"), (10, "33.33"), (13, "75.50"), (10, "0")]:
            await engine.apply_payment(expense_id, Decimal(amount))
            assert await total() == expected

        accounts, _ = await _balances(store)
        assert accounts == {1: Decimal("1000.00"), 3: Decimal("174.50")}


class TestPaymentGuards:
    """Tests for rejected and no-op payments."""

    @pytest.mark.asyncio
    async def test_same_amount_is_noop(self, store, engine):
        """Test that repeating a payment writes nothing."""
        await put_records(store, (ACCOUNTS, account()), (FIXED_EXPENSES, account_expense()))

        await engine.apply_payment(10, 120)
        assert await engine.apply_payment(10, 120) is None

        accounts, _ = await _balances(store)
        assert accounts[1] == Decimal("380.00")
        assert len(await store.scan(AUDIT_LOGS)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["-1", "NaN", "Infinity"])
    async def test_invalid_amounts(self, store, engine, amount):
        """Test that negative and non-finite amounts are rejected."""
        with pytest.raises(InvalidAmountError):
            await engine.apply_payment(10, amount)

    @pytest.mark.asyncio
    async def test_missing_expense(self, store, engine):
        """Test NotFound for an unknown expense."""
        with pytest.raises(NotFoundError):
            await engine.apply_payment(99, 10)

    @pytest.mark.asyncio
    async def test_dangling_card_rolls_back(self, store, engine):
        """Test that a missing card leaves the account and expense untouched."""
        await put_records(
            store,
            (ACCOUNTS, account(balance="1000")),
            (FIXED_EXPENSES, card_payment_expense(amount="300")),
        )

        with pytest.raises(DanglingReferenceError):
            await engine.apply_payment(12, 300)

        accounts, _ = await _balances(store)
        assert accounts[1] == Decimal("1000.00")
        assert (await load_snapshot(store)).expense(12).paid_amount == Decimal("0.00")
        assert await store.scan(AUDIT_LOGS) == []

    @pytest.mark.asyncio
    async def test_concurrent_payment_is_busy(self, gated_store):
        """Test that a second payment on the same expense is rejected while one runs."""
        engine = PaymentEngine(gated_store)
        await put_records(gated_store, (ACCOUNTS, account()), (FIXED_EXPENSES, account_expense()))

        gated_store.gate.clear()
        first = asyncio.create_task(engine.apply_payment(10, 50))
        await asyncio.sleep(0)
        assert engine.is_busy(10)

        with pytest.raises(BusyError):
            await engine.apply_payment(10, 60)

        gated_store.gate.set()
        await first
        assert not engine.is_busy(10)
        accounts, _ = await _balances(gated_store)
        assert accounts[1] == Decimal("450.00")

    @pytest.mark.asyncio
    async def test_publishes_payment_applied(self, store, engine, bus):
        """Test that subscribers hear about committed payments."""
        seen = []
        bus.subscribe(PAYMENT_APPLIED, lambda event: seen.append(event.payload["expenseId"]))
        await put_records(store, (ACCOUNTS, account()), (FIXED_EXPENSES, account_expense()))

        await engine.mark_paid(10)

        assert seen == [10]


class TestSettle:
    """Tests for settling pending transactions."""

    @pytest.mark.asyncio
    async def test_settle_applies_and_removes(self, store, engine):
        """Test that settling moves the signed amount and deletes the row."""
        await put_records(
            store,
            (ACCOUNTS, account(balance="500")),
            (PENDING_TRANSACTIONS, PendingTransaction(id=1, account_id=1, amount=Decimal("-42.50"))),
        )

        event = await engine.settle(1)

        accounts, _ = await _balances(store)
        assert accounts[1] == Decimal("457.50")
        assert await store.scan(PENDING_TRANSACTIONS) == []
        assert event.details["amount"] == "-42.50"

    @pytest.mark.asyncio
    async def test_settle_missing(self, store, engine):
        """Test NotFound for an unknown pending transaction."""
        with pytest.raises(NotFoundError):
            await engine.settle(5)


class TestProjectPayment:
    """Tests for the in-memory payment projection."""

    def test_matches_engine_routing(self):
        """Test that a projected card payment moves both balances."""
        snapshot = LedgerSnapshot(
            accounts=(account(balance="1000"),),
            credit_cards=(card(balance="600"),),
            fixed_expenses=(card_payment_expense(amount="300"),),
        )
        projected = project_payment(snapshot, 12, Decimal("300"))
        assert projected.account(1).current_balance == Decimal("700.00")
        assert projected.credit_card(2).balance == Decimal("300.00")
        assert projected.expense(12).status == ExpenseStatus.PAID
        assert snapshot.account(1).current_balance == Decimal("1000.00")

    def test_missing_participant_is_unchanged(self):
        """Test that a dangling projection returns the same snapshot."""
        snapshot = LedgerSnapshot(fixed_expenses=(account_expense(),))
        assert project_payment(snapshot, 10, Decimal("120")) is snapshot

    def test_zero_delta_is_unchanged(self):
        """Test that projecting the current amount changes nothing."""
        snapshot = LedgerSnapshot(accounts=(account(),), fixed_expenses=(account_expense(),))
        assert project_payment(snapshot, 10, Decimal("0")) is snapshot


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
