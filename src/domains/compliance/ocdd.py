"""Ongoing customer due diligence (OCDD): recurring customer reviews.

Each active schedule whose ``next_scheduled_at`` has passed is executed once
per run:

  1. resolve the customer (missing customers are skipped, never fatal)
  2. sanctions screening, stored per check; a match escalates the review
  3. PEP check from the latest stored screening, or a live re-screen
  4. document expiry check through the configured DocumentChecker
  5. next review = now + review frequency for the customer's risk tier
  6. append an immutable OCDDExecution and update the schedule and customer
     review timestamps in one store write
  7. audit and notify (including any ``screening.match``) once recorded

A run that fails before its review is recorded appends a single ``error``
execution instead and leaves the schedule due.

Schedules in one tenant run one at a time. Recomputing ``next_scheduled_at``
from ``now`` keeps redundant invocations from stacking extra reviews.

Regulatory basis:
  AML/CTF Act 2006 (Cth) s36: ongoing customer due diligence
  AML/CTF Rules ch. 15: transaction monitoring and enhanced CDD
  FATF Recommendation 10(d): ongoing due diligence on the business relationship
  31 CFR § 1010.230: CDD rule, ongoing monitoring
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Sequence

import structlog

from .alerts import DeliveryOutcome, deliver_once_per_day
from .calendar import local_date
from .config import ComplianceEngineConfig, TenantConfig, default_engine_config
from .errors import ProviderError
from .models import (
    EXECUTION_RESULT_RANK,
    CheckEntry,
    Customer,
    ExecutionResult,
    Finding,
    FindingSeverity,
    OCDDExecution,
    OCDDRunSummary,
    OCDDSchedule,
    PepScreening,
    SanctionsScreening,
    ScheduleStatus,
    ScreeningResult,
    ScreeningStatus,
)
from .ports import (
    AuditSink,
    ComplianceStore,
    DocumentChecker,
    NullDocumentChecker,
    SafeNotifier,
    ScreeningProvider,
)

logger = structlog.get_logger()

FAILURE_RESULTS = frozenset({ExecutionResult.FAILED, ExecutionResult.ERROR})


def escalate(current: ExecutionResult, candidate: ExecutionResult) -> ExecutionResult:
    """The more severe of two results; a review result is never downgraded."""
    if EXECUTION_RESULT_RANK[candidate] > EXECUTION_RESULT_RANK[current]:
        return candidate
    return current


class _Review:
    """Mutable accumulator for one schedule execution."""

    def __init__(self) -> None:
        self.result = ExecutionResult.PASSED
        self.checks: list[CheckEntry] = []
        self.findings: list[Finding] = []
        # Notifications held back until the execution is recorded
        self.notices: list[tuple[str, dict[str, Any]]] = []

    def check(self, check_type: str, result: str, **details: Any) -> None:
        self.checks.append(
            CheckEntry(
                check_type=check_type,
                result=result,
                details=details,
                timestamp=datetime.now(UTC),
            )
        )

    def find(
        self,
        finding_type: str,
        severity: FindingSeverity,
        description: str,
        action_required: bool = True,
    ) -> None:
        self.findings.append(
            Finding(
                finding_type=finding_type,
                severity=severity,
                description=description,
                action_required=action_required,
            )
        )


class RecurringReviewScheduler:
    """Executes due OCDD schedules for one tenant at a time."""

    def __init__(
        self,
        store: ComplianceStore,
        notifier: SafeNotifier,
        screening: ScreeningProvider | None = None,
        audit: AuditSink | None = None,
        document_checker: DocumentChecker | None = None,
        engine_config: ComplianceEngineConfig = default_engine_config,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._screening = screening
        self._audit = audit
        self._documents = document_checker or NullDocumentChecker()
        self._engine = engine_config

    # ------------------------------------------------------------------
    # Due schedule execution
    # ------------------------------------------------------------------

    async def run_due_schedules(
        self,
        tenant_id: str,
        config: TenantConfig,
        now: datetime | None = None,
    ) -> OCDDRunSummary:
        now = now or datetime.now(UTC)
        schedules = await self._store.list_due_schedules(tenant_id, now)
        summary = OCDDRunSummary(tenant_id=tenant_id, checked=len(schedules))

        for schedule in schedules:
            if schedule.customer_id is None:
                logger.warning(
                    "ocdd_schedule_without_customer",
                    tenant_id=tenant_id,
                    schedule_id=schedule.schedule_id,
                )
                summary.skipped += 1
                continue

            customer = await self._store.get_customer(tenant_id, schedule.customer_id)
            if customer is None:
                logger.warning(
                    "ocdd_customer_not_found",
                    tenant_id=tenant_id,
                    schedule_id=schedule.schedule_id,
                    customer_id=schedule.customer_id,
                )
                summary.skipped += 1
                continue

            try:
                execution = await self._execute(schedule, customer, config, now, summary)
            except Exception as e:
                logger.error(
                    "ocdd_schedule_failed",
                    tenant_id=tenant_id,
                    schedule_id=schedule.schedule_id,
                    error=str(e),
                    exc_info=True,
                )
                summary.failed += 1
                summary.errors.append(f"schedule {schedule.schedule_id}: {e}")
                await self._record_failure(schedule, now, e, summary)
                continue

            summary.executed += 1
            summary.execution_ids.append(execution.execution_id)

        logger.info(
            "ocdd_due_schedules_completed",
            tenant_id=tenant_id,
            checked=summary.checked,
            executed=summary.executed,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return summary

    async def _execute(
        self,
        schedule: OCDDSchedule,
        customer: Customer,
        config: TenantConfig,
        now: datetime,
        summary: OCDDRunSummary,
    ) -> OCDDExecution:
        review = _Review()
        tenant_id = schedule.tenant_id

        if schedule.auto_screen_sanctions and customer.full_name:
            await self._screen_sanctions(customer, config, now, review, summary)

        if schedule.auto_screen_pep and customer.full_name:
            await self._screen_pep(customer, now, review, summary)

        if schedule.auto_check_documents:
            await self._check_documents(customer, review)

        execution = OCDDExecution(
            execution_id=str(uuid.uuid4()),
            schedule_id=schedule.schedule_id,
            tenant_id=tenant_id,
            customer_id=customer.customer_id,
            executed_at=now,
            completed_at=datetime.now(UTC),
            result=review.result,
            checks_performed=tuple(review.checks),
            findings=tuple(review.findings),
        )

        frequency_days = schedule.frequency_override(customer.risk_level)
        if frequency_days is None:
            frequency_days = config.ocdd_frequency_days(customer.risk_level)
        next_review = now + timedelta(days=frequency_days)

        await self._store.record_review(
            execution,
            schedule.model_copy(
                update={
                    "last_executed_at": now,
                    "last_result": review.result,
                    "next_scheduled_at": next_review,
                    "execution_count": schedule.execution_count + 1,
                    "consecutive_failures": (
                        schedule.consecutive_failures + 1
                        if review.result in FAILURE_RESULTS
                        else 0
                    ),
                }
            ),
            customer.model_copy(
                update={"ocdd_last_review_at": now, "ocdd_next_review_at": next_review}
            ),
        )

        logger.info(
            "ocdd_review_executed",
            tenant_id=tenant_id,
            schedule_id=schedule.schedule_id,
            customer_id=customer.customer_id,
            result=str(review.result),
            checks=len(review.checks),
            findings=len(review.findings),
            next_review=next_review.isoformat(),
        )

        # The review is committed; nothing below may fail the schedule
        await self._audit_flagged(schedule, customer, execution, review, summary)
        for event_type, payload in review.notices:
            await self._notifier.notify(tenant_id, event_type, payload)
        await self._notifier.notify(
            tenant_id,
            "ocdd.review_completed",
            {
                "schedule_id": schedule.schedule_id,
                "customer_id": customer.customer_id,
                "execution_id": execution.execution_id,
                "result": str(review.result),
                "checks_performed": len(review.checks),
                "findings": len(review.findings),
            },
        )
        return execution

    async def _audit_flagged(
        self,
        schedule: OCDDSchedule,
        customer: Customer,
        execution: OCDDExecution,
        review: _Review,
        summary: OCDDRunSummary,
    ) -> None:
        if review.result == ExecutionResult.PASSED or self._audit is None:
            return
        try:
            await self._audit.record(
                schedule.tenant_id,
                "ocdd_review_flagged",
                "customer",
                customer.customer_id,
                f"OCDD review {schedule.schedule_name!r} finished with result "
                f"{review.result}: {len(review.findings)} finding(s)",
                {
                    "schedule_id": schedule.schedule_id,
                    "execution_id": execution.execution_id,
                    "findings": [f.finding_type for f in review.findings],
                },
            )
        except Exception as e:
            logger.error(
                "ocdd_audit_failed",
                tenant_id=schedule.tenant_id,
                schedule_id=schedule.schedule_id,
                exc_info=True,
            )
            summary.errors.append(
                f"schedule {schedule.schedule_id}: failed to record audit entry: {e}"
            )

    async def _screen(
        self,
        customer: Customer,
        sources: Sequence[str],
    ) -> ScreeningResult:
        """Call the screening provider, surfacing any failure as ProviderError."""
        try:
            return await self._screening.screen(
                customer.full_name,
                customer.date_of_birth,
                customer.country,
                sources,
            )
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"{type(e).__name__}: {e}") from e

    async def _screen_sanctions(
        self,
        customer: Customer,
        config: TenantConfig,
        now: datetime,
        review: _Review,
        summary: OCDDRunSummary,
    ) -> None:
        if self._screening is None:
            review.check("sanctions_screening", "skipped", reason="no screening provider")
            return

        try:
            screening = await self._screen(customer, config.screening_sources)
        except ProviderError as e:
            logger.warning(
                "ocdd_sanctions_screening_failed",
                tenant_id=customer.tenant_id,
                customer_id=customer.customer_id,
                exc_info=True,
            )
            review.check("sanctions_screening", "error", error=str(e))
            review.find(
                "screening_error",
                FindingSeverity.MEDIUM,
                f"Sanctions screening could not be completed: {e}",
            )
            review.result = escalate(review.result, ExecutionResult.REQUIRES_ACTION)
            return

        summary.sanctions_screened += 1
        await self._store.insert_sanctions_screening(
            SanctionsScreening(
                screening_id=str(uuid.uuid4()),
                tenant_id=customer.tenant_id,
                customer_id=customer.customer_id,
                screened_first_name=customer.first_name,
                screened_last_name=customer.last_name,
                screened_dob=customer.date_of_birth,
                screened_country=customer.country,
                is_match=screening.is_match,
                match_score=screening.match_score,
                matched_entities=screening.matches,
                status=screening.status,
                screening_sources=screening.sources,
                screened_at=now,
            )
        )

        is_match = (
            screening.is_match
            and screening.match_score >= self._engine.sanctions_min_match_score
        )
        review.check(
            "sanctions_screening",
            str(screening.status),
            is_match=is_match,
            match_score=screening.match_score,
            matches_count=len(screening.matches),
            sources=list(screening.sources),
        )
        if not is_match:
            return

        summary.sanctions_matches += 1
        review.result = escalate(review.result, ExecutionResult.ESCALATED)
        review.find(
            "sanctions_match",
            FindingSeverity.CRITICAL,
            f"Customer matched against sanctions list with "
            f"{screening.match_score:.2f} confidence",
        )
        logger.warning(
            "ocdd_sanctions_match",
            tenant_id=customer.tenant_id,
            customer_id=customer.customer_id,
            match_score=screening.match_score,
        )
        review.notices.append(
            (
                "screening.match",
                {
                    "customer_id": customer.customer_id,
                    "screening_result": screening.model_dump(mode="json"),
                },
            )
        )

    async def _screen_pep(
        self,
        customer: Customer,
        now: datetime,
        review: _Review,
        summary: OCDDRunSummary,
    ) -> None:
        if self._engine.live_pep_rescreen and self._screening is not None:
            try:
                screening = await self._screen(customer, self._engine.pep_screening_sources)
            except ProviderError as e:
                logger.warning(
                    "ocdd_pep_screening_failed",
                    tenant_id=customer.tenant_id,
                    customer_id=customer.customer_id,
                    exc_info=True,
                )
                review.check("pep_screening", "error", error=str(e))
                review.find(
                    "screening_error",
                    FindingSeverity.MEDIUM,
                    f"PEP screening could not be completed: {e}",
                )
                review.result = escalate(review.result, ExecutionResult.REQUIRES_ACTION)
                return
            is_pep = screening.is_match
            source = "live"
            await self._store.insert_pep_screening(
                PepScreening(
                    screening_id=str(uuid.uuid4()),
                    tenant_id=customer.tenant_id,
                    customer_id=customer.customer_id,
                    is_pep=is_pep,
                    screened_at=now,
                )
            )
        else:
            latest = await self._store.get_latest_pep_screening(
                customer.tenant_id, customer.customer_id
            )
            is_pep = latest.is_pep if latest is not None else False
            source = "stored"

        summary.pep_screened += 1
        review.check(
            "pep_screening",
            str(ScreeningStatus.POTENTIAL_MATCH if is_pep else ScreeningStatus.CLEAR),
            is_pep=is_pep,
            source=source,
        )
        if is_pep:
            summary.pep_matches += 1
            review.result = escalate(review.result, ExecutionResult.REQUIRES_ACTION)
            review.find(
                "pep_match",
                FindingSeverity.HIGH,
                "Customer identified as Politically Exposed Person",
            )

    async def _check_documents(self, customer: Customer, review: _Review) -> None:
        try:
            outcome = await self._documents.check(customer.tenant_id, customer)
        except Exception as e:
            logger.warning(
                "ocdd_document_check_failed",
                tenant_id=customer.tenant_id,
                customer_id=customer.customer_id,
                exc_info=True,
            )
            review.check("document_check", "error", error=str(e))
            return

        review.check(
            "document_check",
            str(ExecutionResult.PASSED if outcome.passed else ExecutionResult.FAILED),
            documents_checked=outcome.documents_checked,
            expired_documents=outcome.expired_documents,
            expiring_soon=outcome.expiring_soon,
        )
        if outcome.expired_documents:
            review.result = escalate(review.result, ExecutionResult.REQUIRES_ACTION)
            review.find(
                "document_expired",
                FindingSeverity.MEDIUM,
                f"{outcome.expired_documents} identity document(s) expired",
            )
        if outcome.expiring_soon:
            review.find(
                "document_expiring",
                FindingSeverity.LOW,
                f"{outcome.expiring_soon} identity document(s) expiring soon",
                action_required=False,
            )

    async def _record_failure(
        self,
        schedule: OCDDSchedule,
        now: datetime,
        error: Exception,
        summary: OCDDRunSummary,
    ) -> None:
        """Append an ``error`` execution and count the failure on the schedule.

        Only reached when the review itself was not recorded, so this is the
        run's single execution. ``next_scheduled_at`` is left unchanged and
        the schedule is retried on the next run.
        """
        execution = OCDDExecution(
            execution_id=str(uuid.uuid4()),
            schedule_id=schedule.schedule_id,
            tenant_id=schedule.tenant_id,
            customer_id=schedule.customer_id,
            executed_at=now,
            completed_at=datetime.now(UTC),
            result=ExecutionResult.ERROR,
            findings=(
                Finding(
                    finding_type="execution_error",
                    severity=FindingSeverity.HIGH,
                    description=str(error) or type(error).__name__,
                    action_required=True,
                ),
            ),
        )
        try:
            await self._store.record_review(
                execution,
                schedule.model_copy(
                    update={
                        "last_result": ExecutionResult.ERROR,
                        "consecutive_failures": schedule.consecutive_failures + 1,
                    }
                ),
            )
        except Exception as e:
            logger.error(
                "ocdd_failure_record_failed",
                tenant_id=schedule.tenant_id,
                schedule_id=schedule.schedule_id,
                exc_info=True,
            )
            summary.errors.append(
                f"schedule {schedule.schedule_id}: failed to record error execution: {e}"
            )
            return
        summary.execution_ids.append(execution.execution_id)

    # ------------------------------------------------------------------
    # Overdue / upcoming tracking
    # ------------------------------------------------------------------

    async def count_overdue(self, tenant_id: str, now: datetime | None = None) -> int:
        """Active schedules more than the grace period past due and not executed since."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(days=self._engine.ocdd_overdue_grace_days)
        schedules = await self._store.list_schedules(tenant_id, ScheduleStatus.ACTIVE)
        return sum(
            1
            for s in schedules
            if s.next_scheduled_at < cutoff
            and (s.last_executed_at is None or s.last_executed_at < s.next_scheduled_at)
        )

    async def count_upcoming(
        self,
        tenant_id: str,
        now: datetime | None = None,
        horizon_days: int | None = None,
    ) -> int:
        """Active schedules due between now and the horizon (inclusive)."""
        now = now or datetime.now(UTC)
        if horizon_days is None:
            horizon_days = self._engine.ocdd_upcoming_horizon_days
        horizon = now + timedelta(days=horizon_days)
        schedules = await self._store.list_schedules(tenant_id, ScheduleStatus.ACTIVE)
        return sum(1 for s in schedules if now <= s.next_scheduled_at <= horizon)

    async def notify_review_status(
        self,
        tenant_id: str,
        config: TenantConfig,
        summary: OCDDRunSummary,
        now: datetime | None = None,
    ) -> OCDDRunSummary:
        """Count overdue and upcoming reviews and send one notification for each.

        With ``dedupe_ocdd_alerts`` enabled each notification goes out at most
        once per tenant per local calendar day.
        """
        now = now or datetime.now(UTC)
        horizon_days = self._engine.ocdd_upcoming_horizon_days
        summary.overdue_count = await self.count_overdue(tenant_id, now)
        summary.upcoming_count = await self.count_upcoming(tenant_id, now, horizon_days)

        day = local_date(now, config.timezone).isoformat()
        notices = (
            ("ocdd_overdue", "ocdd.overdue", summary.overdue_count, {}),
            (
                "ocdd_upcoming",
                "ocdd.due_soon",
                summary.upcoming_count,
                {"horizon_days": horizon_days},
            ),
        )
        for alert_type, event_type, count, extra in notices:
            if count == 0:
                continue
            payload = {"count": count, **extra}
            if self._engine.dedupe_ocdd_alerts:
                outcome = await deliver_once_per_day(
                    self._store, self._notifier, tenant_id, alert_type, day, event_type, payload
                )
                sent = outcome == DeliveryOutcome.SENT
            else:
                sent = await self._notifier.notify(tenant_id, event_type, payload)
            if sent:
                summary.alerts_sent += 1
        return summary

    async def review_tenant(
        self,
        tenant_id: str,
        config: TenantConfig,
        now: datetime | None = None,
    ) -> OCDDRunSummary:
        """Run due schedules, then send overdue/upcoming notifications."""
        now = now or datetime.now(UTC)
        summary = await self.run_due_schedules(tenant_id, config, now)
        return await self.notify_review_status(tenant_id, config, summary, now)
