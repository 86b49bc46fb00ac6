"""Pydantic models for the compliance domain."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class VerificationStatus(StrEnum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class ReportType(StrEnum):
    TTR = "ttr"
    SMR = "smr"
    SMR_URGENT = "smr_urgent"
    IFTI = "ifti"


class ReportStatus(StrEnum):
    PENDING = "pending"
    READY = "ready"
    SUBMITTED = "submitted"


class ScheduleStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ScheduleType(StrEnum):
    PERIODIC_REVIEW = "periodic_review"
    TRIGGER_BASED = "trigger_based"
    RISK_REASSESSMENT = "risk_reassessment"
    DOCUMENT_RENEWAL = "document_renewal"
    SANCTIONS_RESCREEN = "sanctions_rescreen"
    PEP_RESCREEN = "pep_rescreen"
    BENEFICIAL_OWNER_REVIEW = "beneficial_owner_review"


class ExecutionResult(StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    REQUIRES_ACTION = "requires_action"
    ESCALATED = "escalated"
    ERROR = "error"


class ScreeningStatus(StrEnum):
    CLEAR = "clear"
    POTENTIAL_MATCH = "potential_match"
    CONFIRMED_MATCH = "confirmed_match"
    FALSE_POSITIVE = "false_positive"


class FindingSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Precedence used when several checks in one review disagree; a later check
# may raise the overall result but never lower it.
EXECUTION_RESULT_RANK: dict[ExecutionResult, int] = {
    ExecutionResult.PASSED: 0,
    ExecutionResult.REQUIRES_ACTION: 1,
    ExecutionResult.FAILED: 2,
    ExecutionResult.ESCALATED: 3,
    ExecutionResult.ERROR: 4,
}


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------


class Tenant(BaseModel):
    tenant_id: str
    name: str = ""
    region: str = "AU"
    settings: dict[str, Any] = Field(default_factory=dict)
    status: str = "active"


class Customer(BaseModel):
    customer_id: str
    tenant_id: str
    first_name: str = ""
    last_name: str = ""
    date_of_birth: str | None = None
    country: str | None = None
    risk_level: RiskLevel = RiskLevel.LOW
    is_pep: bool = False
    is_sanctioned: bool = False
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    requires_edd: bool = False
    created_at: datetime
    ocdd_last_review_at: datetime | None = None
    ocdd_next_review_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Transaction(BaseModel):
    transaction_id: str
    tenant_id: str
    customer_id: str
    amount: float
    currency: str
    # Amount converted to the tenant's reporting currency, when known.
    amount_local: float | None = None
    direction: str = "outgoing"
    transaction_type: str | None = None
    description: str | None = None
    requires_ttr: bool = False
    ttr_reference: str | None = None
    risk_score: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW
    risk_factors: list[dict[str, Any]] = Field(default_factory=list)
    flagged_for_review: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @property
    def reporting_amount(self) -> float:
        return self.amount_local if self.amount_local is not None else self.amount


class PendingReport(BaseModel):
    """A regulatory report (TTR/SMR/IFTI) awaiting submission."""

    report_id: str
    tenant_id: str
    report_type: ReportType
    entity_id: str
    customer_id: str | None = None
    reference: str | None = None
    deadline: datetime | None = None
    status: ReportStatus = ReportStatus.PENDING
    amount: float | None = None
    currency: str | None = None
    created_at: datetime


class PepScreening(BaseModel):
    screening_id: str
    tenant_id: str
    customer_id: str
    is_pep: bool
    screened_at: datetime


class OCDDSchedule(BaseModel):
    schedule_id: str
    tenant_id: str
    customer_id: str | None
    schedule_type: ScheduleType = ScheduleType.PERIODIC_REVIEW
    schedule_name: str = "Periodic review"
    auto_screen_sanctions: bool = True
    auto_screen_pep: bool = True
    auto_check_documents: bool = True
    # Per-tier frequency overrides; None falls back to the tenant config.
    low_risk_frequency_days: int | None = None
    medium_risk_frequency_days: int | None = None
    high_risk_frequency_days: int | None = None
    next_scheduled_at: datetime
    last_executed_at: datetime | None = None
    last_result: ExecutionResult | None = None
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    execution_count: int = 0
    consecutive_failures: int = 0

    def frequency_override(self, risk_level: RiskLevel) -> int | None:
        return {
            RiskLevel.LOW: self.low_risk_frequency_days,
            RiskLevel.MEDIUM: self.medium_risk_frequency_days,
            RiskLevel.HIGH: self.high_risk_frequency_days,
        }[risk_level]


class CheckEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    check_type: str
    result: str
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    finding_type: str
    severity: FindingSeverity
    description: str
    action_required: bool = True


class OCDDExecution(BaseModel):
    """Immutable record of one schedule run. Never updated after insert."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    schedule_id: str
    tenant_id: str
    customer_id: str | None
    executed_at: datetime
    completed_at: datetime
    result: ExecutionResult
    checks_performed: tuple[CheckEntry, ...] = ()
    findings: tuple[Finding, ...] = ()
    executed_by: str = "system"


class AlertMarker(BaseModel):
    """Dedup key: one escalation per tenant, alert type and calendar day."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    alert_type: str
    day: str
    created_at: datetime


# ---------------------------------------------------------------------------
# Collaborator results
# ---------------------------------------------------------------------------


class ScreeningMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    match_score: float
    source: str
    reference_number: str | None = None


class ScreeningResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_match: bool
    status: ScreeningStatus
    match_score: float = 0.0
    matches: tuple[ScreeningMatch, ...] = ()
    sources: tuple[str, ...] = ()


class SanctionsScreening(BaseModel):
    """Stored record of one sanctions screening and the details it was run against."""

    screening_id: str
    tenant_id: str
    customer_id: str | None
    screened_first_name: str = ""
    screened_last_name: str = ""
    screened_dob: str | None = None
    screened_country: str | None = None
    is_match: bool = False
    match_score: float = 0.0
    matched_entities: tuple[ScreeningMatch, ...] = ()
    status: ScreeningStatus = ScreeningStatus.CLEAR
    screening_sources: tuple[str, ...] = ()
    screened_at: datetime


class DocumentCheckOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    documents_checked: int = 0
    expired_documents: int = 0
    expiring_soon: int = 0

    @property
    def passed(self) -> bool:
        return self.expired_documents == 0


# ---------------------------------------------------------------------------
# Engine outputs
# ---------------------------------------------------------------------------


class RiskFactorDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    factor: str
    score: float
    reason: str


class RiskResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk_score: float = Field(ge=0, le=100)
    risk_level: RiskLevel
    factors: tuple[RiskFactorDetail, ...] = ()


class StructuringResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_structuring: bool
    suspicious_transaction_count: int
    total_amount: float
    indicators: tuple[str, ...] = ()
    transaction_ids: tuple[str, ...] = ()
    confidence: float = 0.0


class ComplianceRequirements(BaseModel):
    model_config = ConfigDict(frozen=True)

    requires_kyc: bool
    requires_ttr: bool
    requires_enhanced_dd: bool
    cumulative_total: float
    new_cumulative_total: float
    ttr_threshold: float
    kyc_threshold: float
    enhanced_dd_threshold: float


class TransactionDecision(BaseModel):
    """Outcome of evaluating and recording one transaction."""

    transaction: Transaction
    requirements: ComplianceRequirements
    structuring: StructuringResult
    risk: RiskResult
    ttr_reference: str | None = None
    ttr_deadline: datetime | None = None


class DeadlineCheckResult(BaseModel):
    tenant_id: str
    checked: int = 0
    alerts_sent: int = 0
    alerts_by_type: dict[str, int] = Field(default_factory=dict)
    skipped_deduplicated: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class OCDDRunSummary(BaseModel):
    tenant_id: str
    checked: int = 0
    executed: int = 0
    skipped: int = 0
    failed: int = 0
    sanctions_screened: int = 0
    pep_screened: int = 0
    sanctions_matches: int = 0
    pep_matches: int = 0
    overdue_count: int = 0
    upcoming_count: int = 0
    alerts_sent: int = 0
    execution_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class BatchRunResult(BaseModel):
    job: str
    tenants_checked: int = 0
    tenants_succeeded: int = 0
    results: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime | None = None
