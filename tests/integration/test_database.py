"""Integration tests for the SQLAlchemy store against a file-backed SQLite database."""

from datetime import UTC, date, datetime, timedelta

import pytest
import pytest_asyncio

from src.db.database import build_engine, build_session_factory, check_db, init_db
from src.db.store import SqlAlchemyAuditSink, SqlAlchemyComplianceStore
from src.domains.compliance.deadlines import check_pending
from src.domains.compliance.errors import PersistenceError
from src.domains.compliance.models import (
    AlertMarker,
    ExecutionResult,
    OCDDExecution,
    PendingReport,
    PepScreening,
    ReportType,
    RiskLevel,
    SanctionsScreening,
    ScheduleStatus,
    ScreeningMatch,
    ScreeningStatus,
    Tenant,
)
from src.domains.compliance.monitor import ComplianceMonitor, TransactionRequest
from src.domains.compliance.ocdd import RecurringReviewScheduler
from tests.conftest import NOW, TENANT_ID, make_customer, make_schedule, make_tx, sent_events

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'compliance.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_store(sessions):
    store = SqlAlchemyComplianceStore(sessions)
    await store.save_tenant(Tenant(tenant_id=TENANT_ID, name="Test AU", region="AU"))
    return store


@pytest.fixture
def db_audit(sessions):
    return SqlAlchemyAuditSink(sessions)


class TestSchema:
    def test_tables_registered(self):
        from src.db.models import Base

        assert {
            "tenants",
            "customers",
            "transactions",
            "pending_reports",
            "pep_screenings",
            "sanctions_screenings",
            "ocdd_schedules",
            "ocdd_executions",
            "alert_markers",
            "audit_logs",
        } <= set(Base.metadata.tables)

    def test_transaction_metadata_column_name(self):
        from src.db.models import TransactionDB

        columns = {c.name for c in TransactionDB.__table__.columns}
        assert "metadata" in columns
        assert "ttr_reference" in columns

    @pytest.mark.asyncio
    async def test_check_db(self, engine):
        assert await check_db(engine) is True


class TestStoreRoundTrip:
    @pytest.mark.asyncio
    async def test_tenants(self, db_store):
        await db_store.save_tenant(Tenant(tenant_id="t-closed", status="closed"))
        await db_store.save_tenant(
            Tenant(tenant_id=TENANT_ID, name="Renamed", region="NZ", settings={"currency": "NZD"})
        )

        active = await db_store.list_active_tenants()
        assert [t.tenant_id for t in active] == [TENANT_ID]
        assert active[0].region == "NZ"
        assert active[0].settings == {"currency": "NZD"}
        assert await db_store.get_tenant("missing") is None

    @pytest.mark.asyncio
    async def test_customer_upsert_and_tenant_scope(self, db_store):
        await db_store.save_customer(make_customer())
        await db_store.save_customer(make_customer(risk_level=RiskLevel.HIGH, is_pep=True))

        customer = await db_store.get_customer(TENANT_ID, "cust-001")
        assert customer.risk_level == RiskLevel.HIGH
        assert customer.is_pep
        assert customer.created_at == NOW - timedelta(days=400)
        assert customer.created_at.tzinfo is not None
        assert await db_store.get_customer("tenant-other", "cust-001") is None

    @pytest.mark.asyncio
    async def test_transactions_newest_first_with_window(self, db_store):
        await db_store.insert_transaction(
            make_tx(transaction_id="old", created_at=NOW - timedelta(days=20))
        )
        await db_store.insert_transaction(
            make_tx(transaction_id="new", created_at=NOW - timedelta(days=1), metadata={"k": "v"})
        )

        all_rows = await db_store.list_transactions(TENANT_ID, "cust-001")
        assert [t.transaction_id for t in all_rows] == ["new", "old"]
        assert all_rows[0].metadata == {"k": "v"}

        recent = await db_store.list_transactions(
            TENANT_ID, "cust-001", since=NOW - timedelta(days=7)
        )
        assert [t.transaction_id for t in recent] == ["new"]

    @pytest.mark.asyncio
    async def test_latest_pep_screening(self, db_store):
        for i, is_pep in enumerate([True, False]):
            await db_store.insert_pep_screening(
                PepScreening(
                    screening_id=f"pep-{i}",
                    tenant_id=TENANT_ID,
                    customer_id="cust-001",
                    is_pep=is_pep,
                    screened_at=NOW - timedelta(days=10 - i),
                )
            )

        latest = await db_store.get_latest_pep_screening(TENANT_ID, "cust-001")
        assert latest.screening_id == "pep-1"
        assert latest.is_pep is False

    @pytest.mark.asyncio
    async def test_due_schedules(self, db_store):
        await db_store.save_schedule(make_schedule(schedule_id="due"))
        await db_store.save_schedule(
            make_schedule(schedule_id="later", next_scheduled_at=NOW + timedelta(days=3))
        )
        await db_store.save_schedule(
            make_schedule(schedule_id="paused", status=ScheduleStatus.PAUSED)
        )

        due = await db_store.list_due_schedules(TENANT_ID, NOW)
        assert [s.schedule_id for s in due] == ["due"]
        active = await db_store.list_schedules(TENANT_ID, ScheduleStatus.ACTIVE)
        assert [s.schedule_id for s in active] == ["due", "later"]

    @pytest.mark.asyncio
    async def test_alert_marker_unique_per_day(self, db_store):
        marker = AlertMarker(tenant_id=TENANT_ID, alert_type="ttr_deadline", day="2026-03-11", created_at=NOW)
        await db_store.insert_alert_marker(marker)

        found = await db_store.get_alert_marker(TENANT_ID, "ttr_deadline", "2026-03-11")
        assert found.day == "2026-03-11"
        assert await db_store.get_alert_marker(TENANT_ID, "ttr_deadline", "2026-03-12") is None

        with pytest.raises(PersistenceError):
            await db_store.insert_alert_marker(marker)

    @pytest.mark.asyncio
    async def test_sanctions_screenings(self, db_store):
        for i, is_match in enumerate([False, True]):
            await db_store.insert_sanctions_screening(
                SanctionsScreening(
                    screening_id=f"scr-{i}",
                    tenant_id=TENANT_ID,
                    customer_id="cust-001",
                    screened_first_name="Jane",
                    screened_last_name="Citizen",
                    is_match=is_match,
                    match_score=0.92 if is_match else 0.0,
                    matched_entities=(
                        (ScreeningMatch(name="Jane Citizen", match_score=0.92, source="DFAT"),)
                        if is_match
                        else ()
                    ),
                    status=ScreeningStatus.POTENTIAL_MATCH if is_match else ScreeningStatus.CLEAR,
                    screening_sources=("DFAT", "UN"),
                    screened_at=NOW - timedelta(days=1 - i),
                )
            )

        latest, earlier = await db_store.list_sanctions_screenings(TENANT_ID, "cust-001")
        assert latest.screening_id == "scr-1"
        assert latest.matched_entities[0].name == "Jane Citizen"
        assert latest.status == ScreeningStatus.POTENTIAL_MATCH
        assert latest.screening_sources == ("DFAT", "UN")
        assert latest.screened_at == NOW
        assert earlier.is_match is False
        assert await db_store.list_sanctions_screenings("tenant-other", "cust-001") == []


class TestCombinedWrites:
    """Multi-row writes commit together or not at all."""

    @pytest.mark.asyncio
    async def test_transaction_with_report(self, db_store):
        tx = make_tx(transaction_id="tx-ttr", amount=15_000, requires_ttr=True)
        report = PendingReport(
            report_id="rep-1",
            tenant_id=TENANT_ID,
            report_type=ReportType.TTR,
            entity_id="tx-ttr",
            deadline=NOW + timedelta(days=14),
            created_at=NOW,
        )
        await db_store.insert_transaction_with_report(tx, report)

        assert len(await db_store.list_transactions(TENANT_ID, "cust-001")) == 1
        assert len(await db_store.list_pending_reports(TENANT_ID)) == 1

    @pytest.mark.asyncio
    async def test_failed_report_rolls_back_transaction(self, db_store):
        existing = PendingReport(
            report_id="rep-dup",
            tenant_id=TENANT_ID,
            report_type=ReportType.TTR,
            entity_id="tx-earlier",
            deadline=NOW + timedelta(days=14),
            created_at=NOW,
        )
        await db_store.insert_pending_report(existing)
        tx = make_tx(transaction_id="tx-ttr", amount=15_000, requires_ttr=True)

        with pytest.raises(PersistenceError):
            await db_store.insert_transaction_with_report(
                tx, existing.model_copy(update={"entity_id": "tx-ttr"})
            )

        assert await db_store.list_transactions(TENANT_ID, "cust-001") == []
        assert [r.entity_id for r in await db_store.list_pending_reports(TENANT_ID)] == [
            "tx-earlier"
        ]

    @pytest.mark.asyncio
    async def test_failed_review_write_changes_nothing(self, db_store):
        customer = make_customer()
        schedule = make_schedule()
        await db_store.save_customer(customer)
        await db_store.save_schedule(schedule)
        execution = OCDDExecution(
            execution_id="exec-1",
            schedule_id="sched-001",
            tenant_id=TENANT_ID,
            customer_id="cust-001",
            executed_at=NOW,
            completed_at=NOW,
            result=ExecutionResult.PASSED,
        )
        await db_store.record_review(execution, schedule)

        with pytest.raises(PersistenceError):
            await db_store.record_review(
                execution,
                schedule.model_copy(update={"next_scheduled_at": NOW + timedelta(days=365)}),
                customer.model_copy(update={"ocdd_last_review_at": NOW}),
            )

        assert len(await db_store.list_executions(TENANT_ID)) == 1
        [stored_schedule] = await db_store.list_schedules(TENANT_ID)
        assert stored_schedule.next_scheduled_at == schedule.next_scheduled_at
        stored_customer = await db_store.get_customer(TENANT_ID, "cust-001")
        assert stored_customer.ocdd_last_review_at is None


class TestEngineAgainstDatabase:
    @pytest.mark.asyncio
    async def test_transaction_flow_and_deadline_alert(
        self, db_store, db_audit, notifier, notification_sink, au_config
    ):
        await db_store.save_customer(make_customer(created_at=NOW - timedelta(days=2)))
        monitor = ComplianceMonitor(db_store, notifier, db_audit)

        decision = await monitor.evaluate_transaction(
            TENANT_ID,
            au_config,
            TransactionRequest(customer_id="cust-001", amount=15_000, transaction_id="tx-big"),
            now=NOW,
        )

        [report] = await db_store.list_pending_reports(TENANT_ID)
        assert report.report_type == ReportType.TTR
        assert report.reference == decision.ttr_reference
        assert report.deadline == datetime(2026, 3, 25, 9, 0, tzinfo=UTC)

        [stored] = await db_store.list_transactions(TENANT_ID, "cust-001")
        assert stored.requires_ttr
        assert {f["factor"] for f in stored.risk_factors} == {
            "new_customer",
            "medium_transaction_amount",
        }

        # Two business days out on Mon 23 March: alert once, then deduplicated
        notification_sink.notify.reset_mock()
        first = await check_pending(db_store, TENANT_ID, au_config, notifier, today=date(2026, 3, 23))
        second = await check_pending(db_store, TENANT_ID, au_config, notifier, today=date(2026, 3, 23))
        assert first.alerts_sent == 1
        assert second.skipped_deduplicated == ["ttr"]
        assert sent_events(notification_sink) == ["deadline.ttr.approaching"]

        entries = await db_audit.list_entries(TENANT_ID)
        assert [e["action_type"] for e in entries] == ["transaction_created"]
        assert entries[0]["metadata"]["requires_ttr"] is True

    @pytest.mark.asyncio
    async def test_ocdd_review_persists_execution(self, db_store, notifier, au_config):
        await db_store.save_customer(make_customer(risk_level=RiskLevel.MEDIUM))
        await db_store.save_schedule(make_schedule())
        scheduler = RecurringReviewScheduler(db_store, notifier)

        summary = await scheduler.run_due_schedules(TENANT_ID, au_config, NOW)

        assert summary.executed == 1
        [execution] = await db_store.list_executions(TENANT_ID, "sched-001")
        assert execution.result == ExecutionResult.PASSED
        assert [c.check_type for c in execution.checks_performed] == [
            "sanctions_screening",
            "pep_screening",
            "document_check",
        ]
        [schedule] = await db_store.list_schedules(TENANT_ID)
        assert schedule.next_scheduled_at == NOW + timedelta(days=180)
        assert schedule.execution_count == 1
        customer = await db_store.get_customer(TENANT_ID, "cust-001")
        assert customer.ocdd_next_review_at == NOW + timedelta(days=180)
