"""Report deadline tracking and daily escalation.

Pending TTR, SMR and IFTI reports are bucketed by business days remaining on
the tenant's calendar. Only the configured bucket values alert (defaults:
TTR/IFTI 0, 1, 2, 5 and SMR 0, 1, 2; 0 is the overdue bucket). Per report
type, at most one alert goes out per run, for the most urgent non-empty
bucket, and at most one per tenant per calendar day.

Deadlines:
  AUSTRAC TTR: 10 business days (AML/CTF Act 2006 s43)
  AUSTRAC SMR: 3 business days, 24 hours for terrorism financing (s41)
  FinCEN CTR: 15 days (31 CFR § 1010.306(a)(1))
"""

from collections import defaultdict
from datetime import UTC, date, datetime

import structlog

from .alerts import DeliveryOutcome, deliver_once_per_day
from .calendar import local_date
from .config import TenantConfig
from .models import DeadlineCheckResult, PendingReport, ReportType
from .ports import AuditSink, ComplianceStore, SafeNotifier

logger = structlog.get_logger()


def alert_group(report_type: ReportType) -> ReportType:
    """Urgent SMRs escalate together with standard SMRs."""
    return ReportType.SMR if report_type == ReportType.SMR_URGENT else report_type


def alert_severity(days_remaining: int, report_type: ReportType | str) -> str:
    """Severity for a deadline alert.

    SMR deadlines are short, so anything inside the alert window is at least
    high. TTR and IFTI step down from critical to low as the deadline recedes.
    """
    if days_remaining <= 0:
        return "critical"
    if alert_group(ReportType(str(report_type))) == ReportType.SMR:
        return "critical" if days_remaining == 1 else "high"
    if days_remaining <= 1:
        return "critical"
    if days_remaining <= 2:
        return "high"
    if days_remaining <= 5:
        return "medium"
    return "low"


def bucket_reports(
    reports: list[PendingReport],
    config: TenantConfig,
    today: date,
) -> dict[ReportType, dict[int, list[PendingReport]]]:
    """Group reports by type and business days remaining, keeping alerting buckets only."""
    calendar = config.calendar
    buckets: dict[ReportType, dict[int, list[PendingReport]]] = defaultdict(
        lambda: defaultdict(list)
    )
    for report in reports:
        if report.deadline is None:
            continue
        group = alert_group(report.report_type)
        deadline_day = local_date(report.deadline, config.timezone)
        remaining = calendar.business_days_remaining(deadline_day, today)
        if remaining in config.alert_days(group):
            buckets[group][remaining].append(report)
    return buckets


async def check_pending(
    store: ComplianceStore,
    tenant_id: str,
    config: TenantConfig,
    notifier: SafeNotifier,
    audit: AuditSink | None = None,
    today: date | None = None,
) -> DeadlineCheckResult:
    """Escalate pending reports whose deadlines fall in an alerting bucket.

    Store read failures propagate to the caller. Notification failures are
    recorded in ``errors`` and leave no dedup marker, so the next run retries.
    """
    today = today or local_date(datetime.now(UTC), config.timezone)
    day = today.isoformat()

    reports = await store.list_pending_reports(tenant_id)
    result = DeadlineCheckResult(tenant_id=tenant_id, checked=len(reports))
    if not reports:
        return result

    buckets = bucket_reports(reports, config, today)
    for report_type, by_days in buckets.items():
        days_remaining = min(by_days)
        due = sorted(by_days[days_remaining], key=lambda r: r.deadline)
        is_overdue = days_remaining == 0
        severity = alert_severity(days_remaining, report_type)
        alert_type = f"{report_type}_deadline"
        event_type = f"deadline.{report_type}.{'overdue' if is_overdue else 'approaching'}"
        payload = {
            "report_type": str(report_type),
            "days_remaining": days_remaining,
            "is_overdue": is_overdue,
            "severity": severity,
            "count": len(due),
            "reports": [
                {
                    "report_id": r.report_id,
                    "entity_id": r.entity_id,
                    "reference": r.reference,
                    "deadline": r.deadline.isoformat(),
                }
                for r in due
            ],
        }

        outcome = await deliver_once_per_day(
            store, notifier, tenant_id, alert_type, day, event_type, payload
        )
        if outcome == DeliveryOutcome.DUPLICATE:
            result.skipped_deduplicated.append(str(report_type))
            continue
        if outcome == DeliveryOutcome.FAILED:
            result.errors.append(f"{report_type} deadline alert delivery failed")
            continue

        result.alerts_sent += 1
        result.alerts_by_type[str(report_type)] = 1
        logger.info(
            "deadline_alert_sent",
            tenant_id=tenant_id,
            report_type=str(report_type),
            days_remaining=days_remaining,
            severity=severity,
            count=len(due),
        )
        if audit is not None:
            await audit.record(
                tenant_id,
                f"{report_type}_deadline_alert",
                "pending_report",
                due[0].report_id,
                f"{str(report_type).upper()} deadline alert: {len(due)} report(s), "
                f"{days_remaining} business days remaining",
                {"days_remaining": days_remaining, "severity": severity, "count": len(due)},
            )

    logger.info(
        "deadline_check_tenant_completed",
        tenant_id=tenant_id,
        checked=result.checked,
        alerts_sent=result.alerts_sent,
    )
    return result
