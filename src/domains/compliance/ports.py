"""Collaborator interfaces consumed by the compliance engine.

Storage, screening, notification, audit and document checks are external to
the engine. Implementations live elsewhere (``src/db/store.py``,
``store.InMemoryComplianceStore``) or are supplied by the host application.
"""

from datetime import datetime
from typing import Any, Protocol, Sequence

import structlog

from .models import (
    AlertMarker,
    Customer,
    DocumentCheckOutcome,
    OCDDExecution,
    OCDDSchedule,
    PendingReport,
    PepScreening,
    SanctionsScreening,
    ScheduleStatus,
    ScreeningResult,
    Tenant,
    Transaction,
)

logger = structlog.get_logger()


class ComplianceStore(Protocol):
    """Tenant-scoped reads and writes against the relational store.

    Every call is scoped by ``tenant_id``; implementations must never return
    rows belonging to another tenant.
    """

    async def list_active_tenants(self) -> list[Tenant]: ...

    async def get_tenant(self, tenant_id: str) -> Tenant | None: ...

    async def get_customer(self, tenant_id: str, customer_id: str) -> Customer | None: ...

    async def save_customer(self, customer: Customer) -> None: ...

    async def list_transactions(
        self,
        tenant_id: str,
        customer_id: str,
        since: datetime | None = None,
    ) -> list[Transaction]:
        """Customer transactions, newest first, optionally created at or after ``since``."""
        ...

    async def insert_transaction(self, transaction: Transaction) -> None: ...

    async def insert_transaction_with_report(
        self, transaction: Transaction, report: PendingReport | None
    ) -> None:
        """Persist a transaction and its pending report together, or neither."""
        ...

    async def list_pending_reports(self, tenant_id: str) -> list[PendingReport]:
        """Reports in ``pending`` status that carry a deadline."""
        ...

    async def insert_pending_report(self, report: PendingReport) -> None: ...

    async def get_latest_pep_screening(
        self, tenant_id: str, customer_id: str
    ) -> PepScreening | None: ...

    async def insert_pep_screening(self, screening: PepScreening) -> None: ...

    async def insert_sanctions_screening(self, screening: SanctionsScreening) -> None: ...

    async def list_sanctions_screenings(
        self, tenant_id: str, customer_id: str
    ) -> list[SanctionsScreening]:
        """Screenings for one customer, newest first."""
        ...

    async def list_schedules(
        self,
        tenant_id: str,
        status: ScheduleStatus | None = None,
    ) -> list[OCDDSchedule]: ...

    async def list_due_schedules(self, tenant_id: str, now: datetime) -> list[OCDDSchedule]:
        """Active schedules with ``next_scheduled_at <= now``, oldest due first."""
        ...

    async def save_schedule(self, schedule: OCDDSchedule) -> None: ...

    async def record_review(
        self,
        execution: OCDDExecution,
        schedule: OCDDSchedule,
        customer: Customer | None = None,
    ) -> None:
        """Append the execution and save the schedule (and customer) in one write.

        Either every row is written or none is.
        """
        ...

    async def list_executions(
        self, tenant_id: str, schedule_id: str | None = None
    ) -> list[OCDDExecution]: ...

    async def get_alert_marker(
        self, tenant_id: str, alert_type: str, day: str
    ) -> AlertMarker | None: ...

    async def insert_alert_marker(self, marker: AlertMarker) -> None: ...


class ScreeningProvider(Protocol):
    async def screen(
        self,
        name: str,
        date_of_birth: str | None,
        country: str | None,
        sources: Sequence[str],
    ) -> ScreeningResult: ...


class NotificationSink(Protocol):
    async def notify(self, tenant_id: str, event_type: str, payload: dict[str, Any]) -> None: ...


class AuditSink(Protocol):
    async def record(
        self,
        tenant_id: str | None,
        action_type: str,
        entity_type: str,
        entity_id: str | None,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


class DocumentChecker(Protocol):
    async def check(self, tenant_id: str, customer: Customer) -> DocumentCheckOutcome: ...


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class SafeNotifier:
    """Wraps a NotificationSink so delivery failures never reach the caller.

    ``notify`` returns True when the sink accepted the event and False when it
    raised; the failure is logged with its traceback.
    """

    def __init__(self, sink: NotificationSink | None) -> None:
        self._sink = sink

    async def notify(self, tenant_id: str, event_type: str, payload: dict[str, Any]) -> bool:
        if self._sink is None:
            return False
        try:
            await self._sink.notify(tenant_id, event_type, payload)
        except Exception:
            logger.warning(
                "notification_failed",
                tenant_id=tenant_id,
                event_type=event_type,
                exc_info=True,
            )
            return False
        return True


class NullDocumentChecker:
    """Document check used when no document store is wired in: nothing to check."""

    async def check(self, tenant_id: str, customer: Customer) -> DocumentCheckOutcome:
        return DocumentCheckOutcome()


class LoggingNotificationSink:
    """Notification sink that writes events to the structured log only."""

    async def notify(self, tenant_id: str, event_type: str, payload: dict[str, Any]) -> None:
        logger.info("notification", tenant_id=tenant_id, event_type=event_type, payload=payload)


class LoggingAuditSink:
    """Audit sink that writes entries to the structured log only."""

    async def record(
        self,
        tenant_id: str | None,
        action_type: str,
        entity_type: str,
        entity_id: str | None,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        logger.info(
            "audit_entry",
            tenant_id=tenant_id,
            action_type=action_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            metadata=metadata or {},
        )
