"""In-memory ComplianceStore for tests and local runs.

Keeps one dict per table keyed by tenant. Models are immutable-by-convention
on the way in and copied on the way out so callers cannot mutate stored rows.
"""

from collections import defaultdict
from datetime import datetime

from .models import (
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


class InMemoryComplianceStore:
    def __init__(self) -> None:
        self.tenants: dict[str, Tenant] = {}
        self.customers: dict[str, dict[str, Customer]] = defaultdict(dict)
        self.transactions: dict[str, list[Transaction]] = defaultdict(list)
        self.pending_reports: dict[str, list[PendingReport]] = defaultdict(list)
        self.pep_screenings: dict[str, list[PepScreening]] = defaultdict(list)
        self.sanctions_screenings: dict[str, list[SanctionsScreening]] = defaultdict(list)
        self.schedules: dict[str, dict[str, OCDDSchedule]] = defaultdict(dict)
        self.executions: dict[str, list[OCDDExecution]] = defaultdict(list)
        self.alert_markers: dict[tuple[str, str, str], AlertMarker] = {}

    # -- tenants ------------------------------------------------------------

    async def list_active_tenants(self) -> list[Tenant]:
        return [t.model_copy() for t in self.tenants.values() if t.status == "active"]

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        tenant = self.tenants.get(tenant_id)
        return tenant.model_copy() if tenant else None

    async def save_tenant(self, tenant: Tenant) -> None:
        self.tenants[tenant.tenant_id] = tenant.model_copy()

    # -- customers ----------------------------------------------------------

    async def get_customer(self, tenant_id: str, customer_id: str) -> Customer | None:
        customer = self.customers[tenant_id].get(customer_id)
        return customer.model_copy() if customer else None

    async def save_customer(self, customer: Customer) -> None:
        self.customers[customer.tenant_id][customer.customer_id] = customer.model_copy()

    # -- transactions -------------------------------------------------------

    async def list_transactions(
        self,
        tenant_id: str,
        customer_id: str,
        since: datetime | None = None,
    ) -> list[Transaction]:
        rows = [
            tx.model_copy()
            for tx in self.transactions[tenant_id]
            if tx.customer_id == customer_id and (since is None or tx.created_at >= since)
        ]
        return sorted(rows, key=lambda tx: tx.created_at, reverse=True)

    async def insert_transaction(self, transaction: Transaction) -> None:
        self.transactions[transaction.tenant_id].append(transaction.model_copy())

    async def insert_transaction_with_report(
        self, transaction: Transaction, report: PendingReport | None
    ) -> None:
        tx_row = transaction.model_copy()
        report_row = report.model_copy() if report is not None else None
        self.transactions[transaction.tenant_id].append(tx_row)
        if report_row is not None:
            self.pending_reports[report_row.tenant_id].append(report_row)

    # -- reports ------------------------------------------------------------

    async def list_pending_reports(self, tenant_id: str) -> list[PendingReport]:
        return [
            r.model_copy()
            for r in self.pending_reports[tenant_id]
            if r.status == ReportStatus.PENDING and r.deadline is not None
        ]

    async def insert_pending_report(self, report: PendingReport) -> None:
        self.pending_reports[report.tenant_id].append(report.model_copy())

    # -- PEP ----------------------------------------------------------------

    async def get_latest_pep_screening(
        self, tenant_id: str, customer_id: str
    ) -> PepScreening | None:
        rows = [s for s in self.pep_screenings[tenant_id] if s.customer_id == customer_id]
        if not rows:
            return None
        return max(rows, key=lambda s: s.screened_at).model_copy()

    async def insert_pep_screening(self, screening: PepScreening) -> None:
        self.pep_screenings[screening.tenant_id].append(screening.model_copy())

    # -- sanctions ----------------------------------------------------------

    async def insert_sanctions_screening(self, screening: SanctionsScreening) -> None:
        self.sanctions_screenings[screening.tenant_id].append(screening.model_copy())

    async def list_sanctions_screenings(
        self, tenant_id: str, customer_id: str
    ) -> list[SanctionsScreening]:
        rows = [
            s.model_copy()
            for s in self.sanctions_screenings[tenant_id]
            if s.customer_id == customer_id
        ]
        return sorted(rows, key=lambda s: s.screened_at, reverse=True)

    # -- OCDD ---------------------------------------------------------------

    async def list_schedules(
        self,
        tenant_id: str,
        status: ScheduleStatus | None = None,
    ) -> list[OCDDSchedule]:
        return [
            s.model_copy()
            for s in self.schedules[tenant_id].values()
            if status is None or s.status == status
        ]

    async def list_due_schedules(self, tenant_id: str, now: datetime) -> list[OCDDSchedule]:
        due = [
            s.model_copy()
            for s in self.schedules[tenant_id].values()
            if s.status == ScheduleStatus.ACTIVE and s.next_scheduled_at <= now
        ]
        return sorted(due, key=lambda s: s.next_scheduled_at)

    async def save_schedule(self, schedule: OCDDSchedule) -> None:
        self.schedules[schedule.tenant_id][schedule.schedule_id] = schedule.model_copy()

    async def record_review(
        self,
        execution: OCDDExecution,
        schedule: OCDDSchedule,
        customer: Customer | None = None,
    ) -> None:
        # Copy everything before touching any table so a bad model writes nothing
        schedule_row = schedule.model_copy()
        customer_row = customer.model_copy() if customer is not None else None
        self.executions[execution.tenant_id].append(execution)
        self.schedules[schedule_row.tenant_id][schedule_row.schedule_id] = schedule_row
        if customer_row is not None:
            self.customers[customer_row.tenant_id][customer_row.customer_id] = customer_row

    async def list_executions(
        self, tenant_id: str, schedule_id: str | None = None
    ) -> list[OCDDExecution]:
        return [
            e
            for e in self.executions[tenant_id]
            if schedule_id is None or e.schedule_id == schedule_id
        ]

    # -- alert dedup --------------------------------------------------------

    async def get_alert_marker(
        self, tenant_id: str, alert_type: str, day: str
    ) -> AlertMarker | None:
        return self.alert_markers.get((tenant_id, alert_type, day))

    async def insert_alert_marker(self, marker: AlertMarker) -> None:
        self.alert_markers[(marker.tenant_id, marker.alert_type, marker.day)] = marker
