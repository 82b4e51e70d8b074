"""
Audit Models for Digibook

Every ledger write produces an audit record. Payment records list the
balances they moved (before, after, delta) in the order they were touched,
so a balance can be traced back to the payments that produced it.

DESIGN DECISION: Audit logs are append-only and describe changes; they are
never replayed to reconstruct state.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import Field

from digibook.models.ledger import (
    Account,
    Category,
    CreditCard,
    FixedExpense,
    LedgerModel,
    PendingTransaction,
    utc_now,
)


class AuditEventType(str, Enum):
    """
    Audit event types.

    Payment events double as the audit record "kind".
    """
    # Payments
    EXPENSE_PAYMENT = "expense_payment"
    CREDIT_CARD_PAYMENT = "credit_card_payment"
    PENDING_SETTLED = "pending_settled"

    # Entity lifecycle
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    DEFAULT_ACCOUNT_CHANGED = "default_account_changed"
    CREDIT_CARD_CREATED = "credit_card_created"
    CREDIT_CARD_UPDATED = "credit_card_updated"
    CREDIT_CARD_DELETED = "credit_card_deleted"
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    PENDING_CREATED = "pending_created"
    PENDING_DELETED = "pending_deleted"
    PAYCHECK_SETTINGS_UPDATED = "paycheck_settings_updated"

    # Data management
    BACKUP_CREATED = "backup_created"
    BACKUP_RESTORED = "backup_restored"
    DATA_IMPORTED = "data_imported"
    DATA_CLEARED = "data_cleared"
    EMERGENCY_RESET = "emergency_reset"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(LedgerModel):
    """
    One row of the auditLogs store.

    `id` is assigned by the store; `event_id` is stable across export
    and import.
    """

    # Identity
    id: Optional[int] = Field(
        default=None,
        description="Store-assigned sequence number"
    )
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Subject
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'account', 'backup')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one import)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data (JSON-safe)"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=True,
        description="Was this triggered by a user command?"
    )

    @property
    def kind(self) -> str:
        return self.event_type.value

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "sequence": self.id,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def balance_change(
    entity: str,
    record: Any,
    before: Decimal,
    after: Decimal,
) -> dict[str, Any]:
    """Describe one participant of a payment for the audit trail."""
    return {
        "entity": entity,
        "id": record.id,
        "name": record.name,
        "balanceBefore": _money(before),
        "balanceAfter": _money(after),
    }


class AuditEventBuilder:
    """
    Static constructors for the events the flows and the engine write.

    Usage:
        event = AuditEventBuilder.account_created(account)
        event = AuditEventBuilder.expense_payment(expense, before, delta, participants)
    """

    @staticmethod
    def expense_payment(
        expense: FixedExpense,
        before: Decimal,
        delta: Decimal,
        participants: list[dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.CREDIT_CARD_PAYMENT
            if expense.is_credit_card_payment
            else AuditEventType.EXPENSE_PAYMENT
        )
        verb = "Payment" if delta > 0 else "Payment reversal"
        return AuditEvent(
            event_type=event_type,
            entity_type="expense",
            entity_id=expense.id,
            correlation_id=correlation_id,
            description=f"{verb} on {expense.name}: {_money(before)} -> {_money(expense.paid_amount)}",
            details={
                "kind": event_type.value,
                "expenseId": expense.id,
                "before": _money(before),
                "after": _money(expense.paid_amount),
                "delta": _money(delta),
                "status": expense.status.value,
                "participants": participants,
            },
        )

    @staticmethod
    def pending_settled(
        pending: PendingTransaction,
        account: Account,
        before: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENDING_SETTLED,
            entity_type="pendingTransaction",
            entity_id=pending.id,
            description=f"Settled pending transaction on {account.name}: {_money(pending.amount)}",
            details={
                "amount": _money(pending.amount),
                "description": pending.description,
                "participants": [
                    balance_change("account", account, before, account.current_balance),
                ],
            },
        )

    @staticmethod
    def entity_changed(
        event_type: AuditEventType,
        entity_type: str,
        record: Any,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        action = event_type.value.rsplit("_", 1)[-1]
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=record.id,
            description=f"{entity_type} {action}: {record.name}",
            details=details or {},
        )

    @staticmethod
    def account_created(account: Account) -> AuditEvent:
        return AuditEventBuilder.entity_changed(
            AuditEventType.ACCOUNT_CREATED,
            "account",
            account,
            {"balance": _money(account.current_balance), "isDefault": account.is_default},
        )

    @staticmethod
    def default_account_changed(account: Account, previous_id: Optional[int]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEFAULT_ACCOUNT_CHANGED,
            entity_type="account",
            entity_id=account.id,
            description=f"Default account set to {account.name}",
            details={"previousDefaultId": previous_id},
        )

    @staticmethod
    def credit_card_created(card: CreditCard) -> AuditEvent:
        return AuditEventBuilder.entity_changed(
            AuditEventType.CREDIT_CARD_CREATED,
            "creditCard",
            card,
            {"balance": _money(card.balance), "creditLimit": _money(card.credit_limit)},
        )

    @staticmethod
    def category_deleted(
        category: Category,
        reassigned_to: Optional[str],
        affected_expenses: int,
        affected_pending: int,
    ) -> AuditEvent:
        return AuditEventBuilder.entity_changed(
            AuditEventType.CATEGORY_DELETED,
            "category",
            category,
            {
                "reassignedTo": reassigned_to,
                "affectedExpenses": affected_expenses,
                "affectedPendingTransactions": affected_pending,
            },
        )

    @staticmethod
    def expense_created(expense: FixedExpense) -> AuditEvent:
        return AuditEventBuilder.entity_changed(
            AuditEventType.EXPENSE_CREATED,
            "expense",
            expense,
            {
                "amount": _money(expense.amount),
                "category": expense.category,
                "paymentSource": expense.payment_source.to_record(),
                "isAutoCreated": expense.is_auto_created,
            },
        )

    @staticmethod
    def backup_created(key: str, reason: str, size: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_CREATED,
            entity_type="backup",
            description=f"Backup created ({reason})",
            details={"key": key, "reason": reason, "size": size},
            is_user_action=reason == "manual",
        )

    @staticmethod
    def backup_restored(key: str, safety_key: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_RESTORED,
            severity=AuditSeverity.WARNING,
            entity_type="backup",
            description="Ledger restored from backup",
            details={"key": key, "safetyBackupKey": safety_key},
        )

    @staticmethod
    def data_imported(counts: dict[str, int], source: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_IMPORTED,
            severity=AuditSeverity.WARNING,
            description=f"Ledger replaced by {source} import",
            details={"counts": counts, "source": source},
        )

    @staticmethod
    def data_cleared(backup_key: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_CLEARED,
            severity=AuditSeverity.WARNING,
            description="All ledger data cleared",
            details={"backupKey": backup_key},
        )

    @staticmethod
    def emergency_reset(restored_key: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EMERGENCY_RESET,
            severity=AuditSeverity.CRITICAL,
            description="Database re-created by emergency reset",
            details={"restoredFrom": restored_key},
            is_user_action=False,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
            is_user_action=False,
        )
