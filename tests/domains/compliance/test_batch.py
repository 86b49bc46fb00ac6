"""Tests for the per-tenant batch orchestration."""

import asyncio
from datetime import UTC, date, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from src.domains.compliance.batch import run_deadline_checks, run_for_tenants, run_ocdd_reviews
from src.domains.compliance.config import ComplianceEngineConfig
from src.domains.compliance.models import (
    DeadlineCheckResult,
    PendingReport,
    ReportType,
    Tenant,
)
from src.domains.compliance.ocdd import RecurringReviewScheduler
from tests.conftest import NOW, TENANT_ID, make_customer, make_schedule


def _ok(tenant, config):
    async def run():
        return DeadlineCheckResult(tenant_id=tenant.tenant_id, checked=1)

    return run()


class TestRunForTenants:
    @pytest.mark.asyncio
    async def test_one_failing_tenant_does_not_stop_others(self, store):
        await store.save_tenant(Tenant(tenant_id="tenant-bad", region="AU"))

        async def handler(tenant, config):
            if tenant.tenant_id == "tenant-bad":
                raise RuntimeError("boom")
            return DeadlineCheckResult(tenant_id=tenant.tenant_id, checked=3)

        batch = await run_for_tenants(store, "deadline_check", handler)

        assert batch.tenants_checked == 2
        assert batch.tenants_succeeded == 1
        assert batch.errors == ["Tenant tenant-bad: boom"]
        assert batch.results[0]["tenant_id"] == TENANT_ID
        assert batch.completed_at is not None

    @pytest.mark.asyncio
    async def test_invalid_tenant_config_recorded(self, store):
        await store.save_tenant(
            Tenant(tenant_id="tenant-broken", region="AU", settings={"workweek": []})
        )

        batch = await run_for_tenants(store, "deadline_check", _ok)

        assert batch.tenants_succeeded == 1
        assert len(batch.errors) == 1
        assert batch.errors[0].startswith("Tenant tenant-broken: invalid configuration")

    @pytest.mark.asyncio
    async def test_tenant_settings_and_region_applied(self, store):
        await store.save_tenant(
            Tenant(
                tenant_id="tenant-uk",
                region="UK",
                settings={"thresholds": {"ttrRequired": 7_500}},
            )
        )
        seen = {}

        async def handler(tenant, config):
            seen[tenant.tenant_id] = config
            return DeadlineCheckResult(tenant_id=tenant.tenant_id)

        await run_for_tenants(store, "deadline_check", handler)

        assert seen["tenant-uk"].region == "GB"
        assert seen["tenant-uk"].thresholds.ttr_required == 7_500
        assert seen[TENANT_ID].region == "AU"

    @pytest.mark.asyncio
    async def test_inactive_tenants_skipped(self, store):
        await store.save_tenant(Tenant(tenant_id="tenant-closed", status="suspended"))

        batch = await run_for_tenants(store, "deadline_check", _ok)

        assert batch.tenants_checked == 1

    @pytest.mark.asyncio
    async def test_slow_tenant_times_out(self, store):
        await store.save_tenant(Tenant(tenant_id="tenant-slow"))

        async def handler(tenant, config):
            if tenant.tenant_id == "tenant-slow":
                await asyncio.sleep(5)
            return DeadlineCheckResult(tenant_id=tenant.tenant_id)

        engine = ComplianceEngineConfig(tenant_timeout_seconds=0.05)
        batch = await run_for_tenants(store, "deadline_check", handler, engine)

        assert batch.tenants_succeeded == 1
        assert batch.errors == ["Tenant tenant-slow: timed out after 0.05s"]

    @pytest.mark.asyncio
    async def test_tenant_listing_failure_is_reported(self, store):
        store.list_active_tenants = AsyncMock(side_effect=ConnectionError("db down"))

        batch = await run_for_tenants(store, "deadline_check", _ok)

        assert batch.tenants_checked == 0
        assert batch.errors == ["Failed to fetch tenants: db down"]

    @pytest.mark.asyncio
    async def test_per_tenant_errors_are_surfaced(self, store):
        async def handler(tenant, config):
            return DeadlineCheckResult(tenant_id=tenant.tenant_id, errors=["ttr deadline alert delivery failed"])

        batch = await run_for_tenants(store, "deadline_check", handler)

        assert batch.tenants_succeeded == 1
        assert batch.errors == [f"Tenant {TENANT_ID}: ttr deadline alert delivery failed"]

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, store):
        for i in range(4):
            await store.save_tenant(Tenant(tenant_id=f"tenant-{i}"))
        running = 0
        peak = 0

        async def handler(tenant, config):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return DeadlineCheckResult(tenant_id=tenant.tenant_id)

        serial = await run_for_tenants(store, "deadline_check", handler)
        assert serial.tenants_succeeded == 5
        assert peak == 1

        peak = 0
        await run_for_tenants(
            store, "deadline_check", handler, ComplianceEngineConfig(max_concurrent_tenants=2)
        )
        assert peak == 2


class TestDeadlineJob:
    @pytest.mark.asyncio
    async def test_system_audit_entry(self, store, notifier, audit, notification_sink):
        await store.insert_pending_report(
            PendingReport(
                report_id="r1",
                tenant_id=TENANT_ID,
                report_type=ReportType.TTR,
                entity_id="tx-1",
                deadline=datetime(2026, 3, 9, 1, 0, tzinfo=UTC),
                created_at=NOW,
            )
        )

        batch = await run_deadline_checks(store, notifier, audit, today=date(2026, 3, 11))

        assert batch.job == "deadline_check"
        assert batch.results[0]["alerts_sent"] == 1
        system = audit.record.await_args_list[-1].args
        assert system[0] is None
        assert system[1] == "deadline_check_completed"
        assert system[2] == "system"
        assert "1 pending reports checked, 1 alerts sent" in system[4]
        assert "results" not in system[5]

    @pytest.mark.asyncio
    async def test_audit_failure_is_reported(self, store, notifier, audit):
        audit.record.side_effect = RuntimeError("audit table locked")

        batch = await run_deadline_checks(store, notifier, audit, today=date(2026, 3, 11))

        assert batch.errors == ["Failed to record audit entry: audit table locked"]


class TestOCDDJob:
    @pytest.mark.asyncio
    async def test_runs_reviews_for_each_tenant(self, store, notifier, audit):
        await store.save_customer(make_customer())
        await store.save_schedule(make_schedule())
        scheduler = RecurringReviewScheduler(store, notifier, audit=audit)

        batch = await run_ocdd_reviews(scheduler, store, audit, now=NOW)

        assert batch.job == "ocdd"
        assert batch.results[0]["executed"] == 1
        system = audit.record.await_args_list[-1].args
        assert system[1] == "ocdd_execution_completed"
        assert "1 schedules executed, 0 sanctions matches, 0 PEP matches" in system[4]

    @pytest.mark.asyncio
    async def test_failing_tenant_isolated(self, store, notifier):
        await store.save_tenant(Tenant(tenant_id="tenant-nz", region="NZ"))
        await store.save_customer(make_customer(tenant_id="tenant-nz"))
        await store.save_schedule(make_schedule(tenant_id="tenant-nz"))
        await store.save_customer(make_customer())
        await store.save_schedule(make_schedule(next_scheduled_at=NOW - timedelta(days=1)))

        scheduler = RecurringReviewScheduler(store, notifier)
        real_review = scheduler.review_tenant

        async def review(tenant_id, config, now=None):
            if tenant_id == TENANT_ID:
                raise ConnectionError("screening provider unreachable")
            return await real_review(tenant_id, config, now)

        scheduler.review_tenant = review

        batch = await run_ocdd_reviews(scheduler, store, now=NOW)

        assert batch.tenants_succeeded == 1
        assert batch.results[0]["tenant_id"] == "tenant-nz"
        assert batch.errors == [f"Tenant {TENANT_ID}: screening provider unreachable"]
