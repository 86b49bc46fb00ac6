"""SQLAlchemy-backed ComplianceStore and AuditSink.

Rows are translated to domain models here and nowhere else. Driver errors
surface as PersistenceError.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import (
    AlertMarkerDB,
    AuditLogDB,
    CustomerDB,
    OCDDExecutionDB,
    OCDDScheduleDB,
    PendingReportDB,
    PepScreeningDB,
    SanctionsScreeningDB,
    TenantDB,
    TransactionDB,
)
from src.domains.compliance.errors import PersistenceError
from src.domains.compliance.models import (
    AlertMarker,
    Customer,
    OCDDExecution,
    OCDDSchedule,
    PendingReport,
    PepScreening,
    ReportStatus,
    SanctionsScreening,
    ScheduleStatus,
    Tenant,
    Transaction,
)

logger = structlog.get_logger()


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; stored values are always UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _columns(row: Any, *names: str) -> dict[str, Any]:
    return {name: getattr(row, name) for name in names}


def _apply(row: Any, values: dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(row, key, value)


# ---------------------------------------------------------------------------
# Row <-> model translation
# ---------------------------------------------------------------------------


def _tenant(row: TenantDB) -> Tenant:
    return Tenant(**_columns(row, "tenant_id", "name", "region", "settings", "status"))


def _customer_values(customer: Customer) -> dict[str, Any]:
    return customer.model_dump(mode="python")


def _customer(row: CustomerDB) -> Customer:
    return Customer(
        **_columns(
            row,
            "customer_id",
            "tenant_id",
            "first_name",
            "last_name",
            "date_of_birth",
            "country",
            "risk_level",
            "is_pep",
            "is_sanctioned",
            "verification_status",
            "requires_edd",
        ),
        created_at=_utc(row.created_at),
        ocdd_last_review_at=_utc(row.ocdd_last_review_at),
        ocdd_next_review_at=_utc(row.ocdd_next_review_at),
    )


def _transaction(row: TransactionDB) -> Transaction:
    return Transaction(
        **_columns(
            row,
            "transaction_id",
            "tenant_id",
            "customer_id",
            "amount",
            "currency",
            "amount_local",
            "direction",
            "transaction_type",
            "description",
            "requires_ttr",
            "ttr_reference",
            "risk_score",
            "risk_level",
            "risk_factors",
            "flagged_for_review",
        ),
        metadata=row.metadata_ or {},
        created_at=_utc(row.created_at),
    )


def _pending_report(row: PendingReportDB) -> PendingReport:
    return PendingReport(
        **_columns(
            row,
            "report_id",
            "tenant_id",
            "report_type",
            "entity_id",
            "customer_id",
            "reference",
            "status",
            "amount",
            "currency",
        ),
        deadline=_utc(row.deadline),
        created_at=_utc(row.created_at),
    )


def _sanctions_screening(row: SanctionsScreeningDB) -> SanctionsScreening:
    return SanctionsScreening(
        **_columns(
            row,
            "screening_id",
            "tenant_id",
            "customer_id",
            "screened_first_name",
            "screened_last_name",
            "screened_dob",
            "screened_country",
            "is_match",
            "match_score",
            "matched_entities",
            "status",
            "screening_sources",
        ),
        screened_at=_utc(row.screened_at),
    )


def _schedule(row: OCDDScheduleDB) -> OCDDSchedule:
    return OCDDSchedule(
        **_columns(
            row,
            "schedule_id",
            "tenant_id",
            "customer_id",
            "schedule_type",
            "schedule_name",
            "auto_screen_sanctions",
            "auto_screen_pep",
            "auto_check_documents",
            "low_risk_frequency_days",
            "medium_risk_frequency_days",
            "high_risk_frequency_days",
            "last_result",
            "status",
            "execution_count",
            "consecutive_failures",
        ),
        next_scheduled_at=_utc(row.next_scheduled_at),
        last_executed_at=_utc(row.last_executed_at),
    )


def _execution(row: OCDDExecutionDB) -> OCDDExecution:
    return OCDDExecution(
        **_columns(
            row,
            "execution_id",
            "schedule_id",
            "tenant_id",
            "customer_id",
            "result",
            "checks_performed",
            "findings",
            "executed_by",
        ),
        executed_at=_utc(row.executed_at),
        completed_at=_utc(row.completed_at),
    )


# ---------------------------------------------------------------------------
# Session-level writes shared by single and combined operations
# ---------------------------------------------------------------------------


def _transaction_row(transaction: Transaction) -> TransactionDB:
    values = transaction.model_dump(mode="python")
    values["metadata_"] = values.pop("metadata")
    values["risk_level"] = str(transaction.risk_level)
    return TransactionDB(**values)


def _execution_row(execution: OCDDExecution) -> OCDDExecutionDB:
    values = execution.model_dump(mode="python")
    values["checks_performed"] = [c.model_dump(mode="json") for c in execution.checks_performed]
    values["findings"] = [f.model_dump(mode="json") for f in execution.findings]
    return OCDDExecutionDB(**values)


async def _upsert_customer(session: AsyncSession, customer: Customer) -> None:
    row = await session.scalar(
        select(CustomerDB).where(
            CustomerDB.tenant_id == customer.tenant_id,
            CustomerDB.customer_id == customer.customer_id,
        )
    )
    values = _customer_values(customer)
    if row is None:
        session.add(CustomerDB(**values))
    else:
        _apply(row, values)


async def _upsert_schedule(session: AsyncSession, schedule: OCDDSchedule) -> None:
    row = await session.scalar(
        select(OCDDScheduleDB).where(
            OCDDScheduleDB.schedule_id == schedule.schedule_id,
            OCDDScheduleDB.tenant_id == schedule.tenant_id,
        )
    )
    values = schedule.model_dump(mode="python")
    if row is None:
        session.add(OCDDScheduleDB(**values))
    else:
        _apply(row, values)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqlAlchemyComplianceStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    @asynccontextmanager
    async def _session(self, write: bool = False) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                yield session
                if write:
                    await session.commit()
        except SQLAlchemyError as e:
            logger.error("compliance_store_error", error=str(e))
            raise PersistenceError(str(e)) from e

    # -- tenants ------------------------------------------------------------

    async def list_active_tenants(self) -> list[Tenant]:
        async with self._session() as session:
            rows = await session.scalars(
                select(TenantDB).where(TenantDB.status == "active").order_by(TenantDB.id)
            )
            return [_tenant(r) for r in rows]

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        async with self._session() as session:
            row = await session.scalar(select(TenantDB).where(TenantDB.tenant_id == tenant_id))
            return _tenant(row) if row else None

    async def save_tenant(self, tenant: Tenant) -> None:
        async with self._session(write=True) as session:
            row = await session.scalar(
                select(TenantDB).where(TenantDB.tenant_id == tenant.tenant_id)
            )
            if row is None:
                session.add(TenantDB(**tenant.model_dump()))
            else:
                _apply(row, tenant.model_dump())

    # -- customers ----------------------------------------------------------

    async def get_customer(self, tenant_id: str, customer_id: str) -> Customer | None:
        async with self._session() as session:
            row = await session.scalar(
                select(CustomerDB).where(
                    CustomerDB.tenant_id == tenant_id,
                    CustomerDB.customer_id == customer_id,
                )
            )
            return _customer(row) if row else None

    async def save_customer(self, customer: Customer) -> None:
        async with self._session(write=True) as session:
            await _upsert_customer(session, customer)

    # -- transactions -------------------------------------------------------

    async def list_transactions(
        self,
        tenant_id: str,
        customer_id: str,
        since: datetime | None = None,
    ) -> list[Transaction]:
        stmt = select(TransactionDB).where(
            TransactionDB.tenant_id == tenant_id,
            TransactionDB.customer_id == customer_id,
        )
        if since is not None:
            stmt = stmt.where(TransactionDB.created_at >= since)
        async with self._session() as session:
            rows = await session.scalars(stmt.order_by(TransactionDB.created_at.desc()))
            return [_transaction(r) for r in rows]

    async def insert_transaction(self, transaction: Transaction) -> None:
        async with self._session(write=True) as session:
            session.add(_transaction_row(transaction))

    async def insert_transaction_with_report(
        self, transaction: Transaction, report: PendingReport | None
    ) -> None:
        async with self._session(write=True) as session:
            session.add(_transaction_row(transaction))
            if report is not None:
                session.add(PendingReportDB(**report.model_dump(mode="python")))

    # -- reports ------------------------------------------------------------

    async def list_pending_reports(self, tenant_id: str) -> list[PendingReport]:
        async with self._session() as session:
            rows = await session.scalars(
                select(PendingReportDB)
                .where(
                    PendingReportDB.tenant_id == tenant_id,
                    PendingReportDB.status == ReportStatus.PENDING.value,
                    PendingReportDB.deadline.is_not(None),
                )
                .order_by(PendingReportDB.deadline)
            )
            return [_pending_report(r) for r in rows]

    async def insert_pending_report(self, report: PendingReport) -> None:
        async with self._session(write=True) as session:
            session.add(PendingReportDB(**report.model_dump(mode="python")))

    # -- PEP ----------------------------------------------------------------

    async def get_latest_pep_screening(
        self, tenant_id: str, customer_id: str
    ) -> PepScreening | None:
        async with self._session() as session:
            row = await session.scalar(
                select(PepScreeningDB)
                .where(
                    PepScreeningDB.tenant_id == tenant_id,
                    PepScreeningDB.customer_id == customer_id,
                )
                .order_by(PepScreeningDB.screened_at.desc())
                .limit(1)
            )
            if row is None:
                return None
            return PepScreening(
                **_columns(row, "screening_id", "tenant_id", "customer_id", "is_pep"),
                screened_at=_utc(row.screened_at),
            )

    async def insert_pep_screening(self, screening: PepScreening) -> None:
        async with self._session(write=True) as session:
            session.add(PepScreeningDB(**screening.model_dump(mode="python")))

    # -- sanctions ----------------------------------------------------------

    async def insert_sanctions_screening(self, screening: SanctionsScreening) -> None:
        values = screening.model_dump(mode="json")
        values["screened_at"] = screening.screened_at
        async with self._session(write=True) as session:
            session.add(SanctionsScreeningDB(**values))

    async def list_sanctions_screenings(
        self, tenant_id: str, customer_id: str
    ) -> list[SanctionsScreening]:
        async with self._session() as session:
            rows = await session.scalars(
                select(SanctionsScreeningDB)
                .where(
                    SanctionsScreeningDB.tenant_id == tenant_id,
                    SanctionsScreeningDB.customer_id == customer_id,
                )
                .order_by(SanctionsScreeningDB.screened_at.desc())
            )
            return [_sanctions_screening(r) for r in rows]

    # -- OCDD ---------------------------------------------------------------

    async def list_schedules(
        self,
        tenant_id: str,
        status: ScheduleStatus | None = None,
    ) -> list[OCDDSchedule]:
        stmt = select(OCDDScheduleDB).where(OCDDScheduleDB.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(OCDDScheduleDB.status == status.value)
        async with self._session() as session:
            rows = await session.scalars(stmt.order_by(OCDDScheduleDB.next_scheduled_at))
            return [_schedule(r) for r in rows]

    async def list_due_schedules(self, tenant_id: str, now: datetime) -> list[OCDDSchedule]:
        async with self._session() as session:
            rows = await session.scalars(
                select(OCDDScheduleDB)
                .where(
                    OCDDScheduleDB.tenant_id == tenant_id,
                    OCDDScheduleDB.status == ScheduleStatus.ACTIVE.value,
                    OCDDScheduleDB.next_scheduled_at <= now,
                )
                .order_by(OCDDScheduleDB.next_scheduled_at)
            )
            return [_schedule(r) for r in rows]

    async def save_schedule(self, schedule: OCDDSchedule) -> None:
        async with self._session(write=True) as session:
            await _upsert_schedule(session, schedule)

    async def record_review(
        self,
        execution: OCDDExecution,
        schedule: OCDDSchedule,
        customer: Customer | None = None,
    ) -> None:
        async with self._session(write=True) as session:
            session.add(_execution_row(execution))
            await _upsert_schedule(session, schedule)
            if customer is not None:
                await _upsert_customer(session, customer)

    async def list_executions(
        self, tenant_id: str, schedule_id: str | None = None
    ) -> list[OCDDExecution]:
        stmt = select(OCDDExecutionDB).where(OCDDExecutionDB.tenant_id == tenant_id)
        if schedule_id is not None:
            stmt = stmt.where(OCDDExecutionDB.schedule_id == schedule_id)
        async with self._session() as session:
            rows = await session.scalars(stmt.order_by(OCDDExecutionDB.executed_at))
            return [_execution(r) for r in rows]

    # -- alert dedup --------------------------------------------------------

    async def get_alert_marker(
        self, tenant_id: str, alert_type: str, day: str
    ) -> AlertMarker | None:
        async with self._session() as session:
            row = await session.scalar(
                select(AlertMarkerDB).where(
                    AlertMarkerDB.tenant_id == tenant_id,
                    AlertMarkerDB.alert_type == alert_type,
                    AlertMarkerDB.day == day,
                )
            )
            if row is None:
                return None
            return AlertMarker(
                **_columns(row, "tenant_id", "alert_type", "day"),
                created_at=_utc(row.created_at),
            )

    async def insert_alert_marker(self, marker: AlertMarker) -> None:
        async with self._session(write=True) as session:
            session.add(AlertMarkerDB(**marker.model_dump(mode="python")))


class SqlAlchemyAuditSink:
    """Append-only audit log writer."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def record(
        self,
        tenant_id: str | None,
        action_type: str,
        entity_type: str,
        entity_id: str | None,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            async with self._sessions() as session:
                session.add(
                    AuditLogDB(
                        tenant_id=tenant_id,
                        action_type=action_type,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        description=description,
                        metadata_=metadata or {},
                        created_at=datetime.now(UTC),
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("audit_write_failed", action_type=action_type, error=str(e))
            raise PersistenceError(str(e)) from e

    async def list_entries(self, tenant_id: str | None = None) -> list[dict[str, Any]]:
        stmt = select(AuditLogDB).order_by(AuditLogDB.id)
        if tenant_id is not None:
            stmt = stmt.where(AuditLogDB.tenant_id == tenant_id)
        async with self._sessions() as session:
            rows = await session.scalars(stmt)
            return [
                {
                    **_columns(
                        r, "tenant_id", "action_type", "entity_type", "entity_id", "description"
                    ),
                    "metadata": r.metadata_,
                }
                for r in rows
            ]
