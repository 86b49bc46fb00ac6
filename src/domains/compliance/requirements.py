"""Reporting obligations for a transaction: TTR, KYC and enhanced due diligence.

  TTR  the single transaction amount reaches ``ttr_required``
  KYC  the customer's lifetime total including this transaction reaches
       ``kyc_required``
  EDD  the same lifetime total reaches ``enhanced_dd_required``

All comparisons are inclusive (>=), matching AUSTRAC's "$10,000 or more"
wording for threshold transactions (AML/CTF Act 2006 s43).
"""

import hashlib
from datetime import date, datetime, timedelta

from .config import TenantConfig
from .models import ComplianceRequirements, ReportType
from .ports import ComplianceStore

REFERENCE_HEX_LENGTH = 16


def requirements_for_total(
    amount: float, cumulative_total: float, config: TenantConfig
) -> ComplianceRequirements:
    thresholds = config.thresholds
    new_total = cumulative_total + amount
    return ComplianceRequirements(
        requires_kyc=new_total >= thresholds.kyc_required,
        requires_ttr=amount >= thresholds.ttr_required,
        requires_enhanced_dd=new_total >= thresholds.enhanced_dd_required,
        cumulative_total=cumulative_total,
        new_cumulative_total=new_total,
        ttr_threshold=thresholds.ttr_required,
        kyc_threshold=thresholds.kyc_required,
        enhanced_dd_threshold=thresholds.enhanced_dd_required,
    )


async def resolve_requirements(
    store: ComplianceStore,
    tenant_id: str,
    customer_id: str,
    amount: float,
    config: TenantConfig,
) -> ComplianceRequirements:
    """Decide reporting obligations for ``amount`` given the customer's history."""
    history = await store.list_transactions(tenant_id, customer_id)
    lifetime_total = sum(tx.reporting_amount for tx in history)
    return requirements_for_total(amount, lifetime_total, config)


def generate_report_reference(
    transaction_id: str, report_type: ReportType | str = ReportType.TTR
) -> str:
    """Stable reference for a regulatory report on a transaction.

    Derived only from the report type and transaction id, so re-running
    submission for the same transaction yields the same reference.
    """
    kind = str(report_type).lower()
    digest = hashlib.sha256(f"{kind}:{transaction_id}".encode()).hexdigest()
    return f"{kind.upper()}-{digest[:REFERENCE_HEX_LENGTH].upper()}"


def report_deadline(
    report_type: ReportType | str,
    start: datetime,
    config: TenantConfig,
) -> datetime:
    """Submission deadline for a report raised at ``start``.

    TTR, SMR and IFTI deadlines are counted in business days on the tenant's
    calendar and keep the time of day of ``start``. Urgent SMRs (terrorism
    financing) are due a fixed number of hours after ``start``.
    """
    kind = ReportType(str(report_type).lower())
    if kind == ReportType.SMR_URGENT:
        return start + timedelta(hours=config.deadlines.smr_urgent_hours)

    days = config.reporting_deadline_days(kind)
    deadline_day: date = config.calendar.add_business_days(start, days)
    return datetime.combine(deadline_day, start.timetz())
