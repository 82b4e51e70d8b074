"""
Audit Logger

Every ledger write leaves an AuditEvent behind, so any balance can be
explained from the auditLogs store.

AuditLogger:
- Appends payment records inside the caller's transaction, so the record
  commits or rolls back with the change it describes
- Gracefully handles failures of stand-alone events (doesn't break the
  command if the audit write fails)
- Mirrors every event to the structured local log
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from digibook.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from digibook.services.storage import (
    AUDIT_LOGS,
    ObjectStoreInterface,
    TransactionView,
)


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog (JSON lines on stderr) at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Default configuration; create_app_components reapplies the configured level
configure_logging()


class AuditLogger:
    """
    Writes AuditEvents to the auditLogs store and mirrors them to the
    structured log.
    """

    def __init__(
        self,
        store: Optional[ObjectStoreInterface] = None,
    ):
        """
        Args:
            store: Store holding auditLogs. Without one, events are
                   only mirrored to the structured log.
        """
        self._store = store
        self._logger = structlog.get_logger("digibook.audit")

    def emit(self, event: AuditEvent) -> None:
        """Write an event to the structured local log only."""
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

    async def append(self, view: TransactionView, event: AuditEvent) -> AuditEvent:
        """
        Append an event inside an open transaction.

        Failures propagate so the enclosing transaction rolls back.
        The caller emits the returned event after commit.
        """
        event_id = await view.put(AUDIT_LOGS, event.to_record())
        return event.model_copy(update={"id": event_id})

    async def log(self, event: AuditEvent) -> bool:
        """
        Record an event outside any command transaction.

        Returns False when the store write failed; the failure is logged,
        not raised.
        """
        self.emit(event)

        if self._store:
            try:
                await self._store.put(AUDIT_LOGS, event.to_record())
                return True
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def recent(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent persisted events, newest first."""
        if not self._store:
            return []
        records = await self._store.scan(AUDIT_LOGS)
        events = [AuditEvent.from_record(r) for r in records]
        events.sort(key=lambda e: (e.timestamp, e.id or 0), reverse=True)
        return events[:limit]

    async def events_for_entity(self, entity_type: str, entity_id: int) -> list[AuditEvent]:
        """Persisted events about one entity, oldest first."""
        if not self._store:
            return []
        records = await self._store.scan(
            AUDIT_LOGS,
            lambda r: r.get("entityType") == entity_type and r.get("entityId") == entity_id,
        )
        return [AuditEvent.from_record(r) for r in records]

    async def clear(self) -> int:
        """Delete the persisted audit trail. Returns records removed."""
        if not self._store:
            return 0
        removed = await self._store.transaction(
            [AUDIT_LOGS], "readwrite", lambda view: view.clear(AUDIT_LOGS)
        )
        self._logger.warning("audit_log_cleared", removed=removed)
        return removed

    async def log_backup_created(self, key: str, reason: str, size: int) -> None:
        """Log backup creation."""
        await self.log(AuditEventBuilder.backup_created(key=key, reason=reason, size=size))

    async def log_backup_restored(self, key: str, safety_key: Optional[str]) -> None:
        """Log a restore."""
        await self.log(AuditEventBuilder.backup_restored(key=key, safety_key=safety_key))

    async def log_data_imported(self, counts: dict[str, int], source: str) -> None:
        """Log an import that replaced the ledger."""
        await self.log(AuditEventBuilder.data_imported(counts=counts, source=source))

    async def log_data_cleared(self, backup_key: Optional[str]) -> None:
        """Log a full data wipe."""
        await self.log(AuditEventBuilder.data_cleared(backup_key=backup_key))

    async def log_emergency_reset(self, restored_key: Optional[str]) -> None:
        """Log an emergency reset."""
        await self.log(AuditEventBuilder.emergency_reset(restored_key=restored_key))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Record a system_error event."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    New correlation id shared by the events of one user action.

    Use this at the start of a user action that spans several
    commands (e.g., an import followed by a repair).
    """
    return uuid4()
