"""Periodic per-tenant batch jobs: deadline escalation and OCDD reviews.

Each job iterates every active tenant. A failing or slow tenant is recorded
in the batch's error list and never stops the others. Work inside one tenant
stays serial; tenants may run concurrently up to ``max_concurrent_tenants``.
"""

import asyncio
from datetime import UTC, date, datetime
from typing import Awaitable, Callable

import structlog
from pydantic import BaseModel

from .config import ComplianceEngineConfig, TenantConfig, default_engine_config
from .deadlines import check_pending
from .models import BatchRunResult, Tenant
from .ocdd import RecurringReviewScheduler
from .ports import AuditSink, ComplianceStore, SafeNotifier
from .regions import RegionalConfigResolver

logger = structlog.get_logger()

TenantHandler = Callable[[Tenant, TenantConfig], Awaitable[BaseModel]]


async def run_for_tenants(
    store: ComplianceStore,
    job: str,
    handler: TenantHandler,
    engine_config: ComplianceEngineConfig = default_engine_config,
    resolver: RegionalConfigResolver | None = None,
) -> BatchRunResult:
    """Run ``handler`` once for every active tenant, collecting failures.

    Never raises: failure to list tenants, config errors, handler exceptions
    and per-tenant timeouts all end up in ``BatchRunResult.errors``.
    """
    resolver = resolver or RegionalConfigResolver()
    batch = BatchRunResult(job=job, started_at=datetime.now(UTC))

    try:
        tenants = await store.list_active_tenants()
    except Exception as e:
        logger.error("batch_tenant_listing_failed", job=job, exc_info=True)
        batch.errors.append(f"Failed to fetch tenants: {e}")
        batch.completed_at = datetime.now(UTC)
        return batch

    semaphore = asyncio.Semaphore(max(1, engine_config.max_concurrent_tenants))
    timeout = engine_config.tenant_timeout_seconds

    async def run_one(tenant: Tenant) -> tuple[Tenant, BaseModel | None, str | None]:
        async with semaphore:
            with structlog.contextvars.bound_contextvars(tenant_id=tenant.tenant_id, job=job):
                try:
                    config = resolver.resolve(
                        tenant.region or engine_config.default_region, tenant.settings
                    )
                    work = handler(tenant, config)
                    if timeout is not None:
                        result = await asyncio.wait_for(work, timeout=timeout)
                    else:
                        result = await work
                except TimeoutError:
                    logger.error("batch_tenant_timed_out", timeout_seconds=timeout)
                    return tenant, None, f"Tenant {tenant.tenant_id}: timed out after {timeout}s"
                except Exception as e:
                    logger.error("batch_tenant_failed", error=str(e), exc_info=True)
                    return tenant, None, f"Tenant {tenant.tenant_id}: {e}"
                return tenant, result, None

    outcomes = await asyncio.gather(*(run_one(t) for t in tenants))

    batch.tenants_checked = len(tenants)
    for tenant, result, error in outcomes:
        if error is not None:
            batch.errors.append(error)
            continue
        batch.tenants_succeeded += 1
        data = result.model_dump(mode="json")
        batch.results.append(data)
        batch.errors.extend(f"Tenant {tenant.tenant_id}: {e}" for e in data.get("errors", []))

    batch.completed_at = datetime.now(UTC)
    logger.info(
        "batch_completed",
        job=job,
        tenants_checked=batch.tenants_checked,
        tenants_succeeded=batch.tenants_succeeded,
        error_count=len(batch.errors),
    )
    return batch


async def _record_system_audit(
    audit: AuditSink | None,
    batch: BatchRunResult,
    action_type: str,
    description: str,
) -> None:
    if audit is None:
        return
    try:
        await audit.record(
            None,
            action_type,
            "system",
            None,
            description,
            batch.model_dump(mode="json", exclude={"results"}),
        )
    except Exception as e:
        logger.error("batch_audit_failed", job=batch.job, exc_info=True)
        batch.errors.append(f"Failed to record audit entry: {e}")


async def run_deadline_checks(
    store: ComplianceStore,
    notifier: SafeNotifier,
    audit: AuditSink | None = None,
    engine_config: ComplianceEngineConfig = default_engine_config,
    today: date | None = None,
) -> BatchRunResult:
    """DeadlineTracker across all active tenants."""

    async def handler(tenant: Tenant, config: TenantConfig) -> BaseModel:
        return await check_pending(store, tenant.tenant_id, config, notifier, audit, today)

    batch = await run_for_tenants(store, "deadline_check", handler, engine_config)
    checked = sum(r["checked"] for r in batch.results)
    alerts = sum(r["alerts_sent"] for r in batch.results)
    await _record_system_audit(
        audit,
        batch,
        "deadline_check_completed",
        f"Deadline check completed: {checked} pending reports checked, {alerts} alerts sent",
    )
    return batch


async def run_ocdd_reviews(
    scheduler: RecurringReviewScheduler,
    store: ComplianceStore,
    audit: AuditSink | None = None,
    engine_config: ComplianceEngineConfig = default_engine_config,
    now: datetime | None = None,
) -> BatchRunResult:
    """RecurringReviewScheduler across all active tenants."""

    async def handler(tenant: Tenant, config: TenantConfig) -> BaseModel:
        return await scheduler.review_tenant(tenant.tenant_id, config, now)

    batch = await run_for_tenants(store, "ocdd", handler, engine_config)
    executed = sum(r["executed"] for r in batch.results)
    sanctions = sum(r["sanctions_matches"] for r in batch.results)
    peps = sum(r["pep_matches"] for r in batch.results)
    await _record_system_audit(
        audit,
        batch,
        "ocdd_execution_completed",
        f"OCDD execution completed: {executed} schedules executed, "
        f"{sanctions} sanctions matches, {peps} PEP matches",
    )
    return batch
