"""Compliance configuration: jurisdiction defaults and engine settings.

Every threshold, window, deadline and review frequency is configurable. The
built-in jurisdiction defaults below are the starting point for each tenant;
tenants override individual leaves (see ``regions.resolve_tenant_config``).

References:
- AML/CTF Act 2006 (Cth) s43 and AML/CTF Rules ch. 19: AUSTRAC threshold
  transaction reports ($10,000 AUD, 10 business days)
- AML/CTF Act 2006 (Cth) s41: suspicious matter reports (3 business days,
  24 hours for terrorism financing)
- 31 CFR § 1010.311 / § 1010.306: FinCEN currency transaction reports
- 31 USC § 5324: structuring transactions to evade reporting requirements
- FATF Recommendations 10 and 19: ongoing due diligence, higher-risk countries
"""

import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .calendar import BusinessCalendar
from .models import ReportType, RiskLevel

# FATF high-risk jurisdictions subject to a call for action.
FATF_HIGH_RISK_COUNTRIES: tuple[str, ...] = ("IR", "KP", "MM")

# FATF jurisdictions under increased monitoring. Must be refreshed after each
# FATF plenary.
FATF_INCREASED_MONITORING: tuple[str, ...] = (
    "BF", "CM", "CD", "HT", "KE", "ML", "MZ", "NG",
    "PH", "SN", "ZA", "SS", "SY", "TZ", "VN", "YE",
)

DEFAULT_REGION = "AU"

# Business days remaining at which a pending report escalates. Only these
# exact values alert; 0 is the overdue bucket.
DEFAULT_ALERT_DAYS: dict[str, list[int]] = {
    ReportType.TTR.value: [0, 1, 2, 5],
    ReportType.SMR.value: [0, 1, 2],
    ReportType.IFTI.value: [0, 1, 2, 5],
}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AmountRange(_Frozen):
    min: float
    max: float

    @model_validator(mode="after")
    def _check_order(self) -> "AmountRange":
        if self.min > self.max:
            raise ValueError(f"amount range min {self.min} exceeds max {self.max}")
        return self


class ThresholdConfig(_Frozen):
    """Monetary thresholds in the tenant's reporting currency."""

    ttr_required: float
    kyc_required: float
    enhanced_dd_required: float
    # IFTI reporting threshold; 0 means every international transfer is reported.
    international_transfer: float = 0.0


class StructuringConfig(_Frozen):
    """Sub-threshold clustering parameters (31 USC § 5324 and equivalents)."""

    window_days: int = Field(ge=1)
    min_transaction_count: int = Field(ge=1)
    amount_range: AmountRange


class DeadlineConfig(_Frozen):
    """Report submission deadlines in business days (urgent SMR in hours)."""

    ttr_submission: int
    smr_submission: int
    smr_urgent_hours: int
    ifti_submission: int
    alert_days: dict[str, list[int]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_ALERT_DAYS.items()}
    )


class OCDDConfig(_Frozen):
    """Ongoing customer due diligence review frequency per risk tier."""

    low_risk_days: int = 365
    medium_risk_days: int = 180
    high_risk_days: int = 90
    document_expiry_warning_days: int = 30


class UBOConfig(_Frozen):
    ownership_threshold: float = 25.0
    control_threshold: float = 25.0


class RiskScoringConfig(_Frozen):
    """Additive risk model weights and level bands (0–100 scale).

    Level bands are jurisdictional tuning, not constants: a score below
    ``medium_min`` is low, below ``high_min`` is medium, otherwise high.
    """

    medium_min: float = 40.0
    high_min: float = 70.0
    max_score: float = Field(default=100.0, gt=0, le=100)

    kyc_amount_score: float = 10.0
    ttr_amount_score: float = 20.0
    edd_amount_score: float = 30.0

    new_customer_days: int = 7
    new_customer_score: float = 15.0
    recent_customer_days: int = 30
    recent_customer_score: float = 10.0

    # Velocity triggers when the trailing-window count reaches
    # baseline * multiplier.
    velocity_baseline_count: float = 1.0
    velocity_multiplier: float = 3.0
    velocity_score: float = 20.0

    structuring_score: float = 25.0
    pep_score: float = 30.0
    sanctioned_score: float = 50.0
    unverified_score: float = 10.0
    edd_required_score: float = 20.0

    @model_validator(mode="after")
    def _check_bands(self) -> "RiskScoringConfig":
        if not 0 <= self.medium_min <= self.high_min <= self.max_score:
            raise ValueError(
                "risk bands must satisfy 0 <= medium_min <= high_min <= max_score"
            )
        if not self.kyc_amount_score <= self.ttr_amount_score <= self.edd_amount_score:
            raise ValueError("amount tier scores must be non-decreasing")
        return self

    @property
    def velocity_trigger_count(self) -> float:
        return self.velocity_baseline_count * self.velocity_multiplier


class BusinessRegistrationConfig(_Frozen):
    required: bool = True
    registry_name: str = ""
    number_format: str = "^.+$"
    lookup_url: str | None = None


class TenantConfig(_Frozen):
    """Effective configuration for one tenant: jurisdiction defaults + overrides."""

    region: str
    thresholds: ThresholdConfig
    structuring: StructuringConfig
    deadlines: DeadlineConfig
    ocdd: OCDDConfig = Field(default_factory=OCDDConfig)
    ubo: UBOConfig = Field(default_factory=UBOConfig)
    risk_scoring: RiskScoringConfig = Field(default_factory=RiskScoringConfig)
    screening_sources: list[str] = Field(default_factory=list)
    high_risk_countries: list[str] = Field(default_factory=list)
    holidays: list[str] = Field(default_factory=list)
    # 0=Monday .. 6=Sunday
    workweek: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    timezone: str = "UTC"
    currency: str
    currency_symbol: str = "$"
    regulator: str = ""
    regulator_full_name: str = ""
    regulator_website: str = ""
    reporting_format: str = "XML"
    accepted_id_types: list[str] = Field(default_factory=list)
    id_expiry_required: bool = True
    proof_of_address_max_age_days: int = 90
    business_registration: BusinessRegistrationConfig = Field(
        default_factory=BusinessRegistrationConfig
    )

    @model_validator(mode="after")
    def _check_workweek(self) -> "TenantConfig":
        if not self.workweek or any(day not in range(7) for day in self.workweek):
            raise ValueError("workweek must be a non-empty list of weekdays 0..6")
        return self

    @property
    def calendar(self) -> BusinessCalendar:
        return BusinessCalendar.from_config(self.holidays, self.workweek)

    def ocdd_frequency_days(self, risk_tier: RiskLevel | str) -> int:
        """Review frequency for a risk tier; unknown tiers use the low-risk cadence."""
        tier = str(risk_tier).lower()
        if tier == RiskLevel.HIGH:
            return self.ocdd.high_risk_days
        if tier == RiskLevel.MEDIUM:
            return self.ocdd.medium_risk_days
        return self.ocdd.low_risk_days

    def reporting_deadline_days(self, report_type: ReportType | str) -> int:
        """Submission deadline for a report type.

        Business days for ttr/smr/ifti; hours for smr_urgent. Unknown report
        types fall back to the standard SMR deadline.
        """
        kind = str(report_type).lower()
        if kind == ReportType.TTR:
            return self.deadlines.ttr_submission
        if kind == ReportType.IFTI:
            return self.deadlines.ifti_submission
        if kind == ReportType.SMR_URGENT:
            return self.deadlines.smr_urgent_hours
        return self.deadlines.smr_submission

    def is_high_risk_country(self, country_code: str) -> bool:
        return country_code.strip().upper() in self.high_risk_countries

    def alert_days(self, report_type: ReportType | str) -> list[int]:
        return self.deadlines.alert_days.get(str(report_type).lower(), [])


# ---------------------------------------------------------------------------
# Jurisdiction defaults
# ---------------------------------------------------------------------------


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


_HIGH_RISK = [*FATF_HIGH_RISK_COUNTRIES, *FATF_INCREASED_MONITORING]

_OCDD_STANDARD = {
    "low_risk_days": 365,
    "medium_risk_days": 180,
    "high_risk_days": 90,
    "document_expiry_warning_days": 30,
}

_UBO_STANDARD = {"ownership_threshold": 25, "control_threshold": 25}

_REGIONAL_DEFAULTS: dict[str, dict[str, Any]] = {
    # Australia: AUSTRAC. TTR at $10,000 AUD within 10 business days; SMR
    # within 3 business days (24 hours for terrorism financing).
    "AU": {
        "region": "AU",
        "thresholds": {
            "ttr_required": 10_000,
            "kyc_required": 5_000,
            "enhanced_dd_required": 50_000,
            "international_transfer": 0,
        },
        "structuring": {
            "window_days": 7,
            "min_transaction_count": 3,
            "amount_range": {"min": 7_000, "max": 9_999},
        },
        "deadlines": {
            "ttr_submission": 10,
            "smr_submission": 3,
            "smr_urgent_hours": 24,
            "ifti_submission": 10,
        },
        "ocdd": _OCDD_STANDARD,
        "ubo": _UBO_STANDARD,
        "screening_sources": ["DFAT", "UN"],
        "high_risk_countries": _HIGH_RISK,
        "holidays": [
            "FIXED:01-01",
            "FIXED:01-26",
            "EASTER_FRIDAY",
            "EASTER_MONDAY",
            "FIXED:04-25",
            "FIXED:12-25",
            "FIXED:12-26",
        ],
        "workweek": [0, 1, 2, 3, 4],
        "timezone": "Australia/Sydney",
        "currency": "AUD",
        "currency_symbol": "$",
        "regulator": "AUSTRAC",
        "regulator_full_name": "Australian Transaction Reports and Analysis Centre",
        "regulator_website": "https://www.austrac.gov.au",
        "reporting_format": "XML",
        "accepted_id_types": [
            "passport",
            "drivers_license",
            "birth_certificate",
            "citizenship_certificate",
            "medicare_card",
        ],
        "id_expiry_required": True,
        "proof_of_address_max_age_days": 90,
        "business_registration": {
            "required": True,
            "registry_name": "ABN Lookup",
            "number_format": r"^\d{11}$",
            "lookup_url": "https://abr.business.gov.au",
        },
    },
    # New Zealand: Police Financial Intelligence Unit (AML/CFT Act 2009).
    "NZ": {
        "region": "NZ",
        "thresholds": {
            "ttr_required": 10_000,
            "kyc_required": 5_000,
            "enhanced_dd_required": 50_000,
            "international_transfer": 1_000,
        },
        "structuring": {
            "window_days": 7,
            "min_transaction_count": 3,
            "amount_range": {"min": 7_000, "max": 9_999},
        },
        "deadlines": {
            "ttr_submission": 10,
            "smr_submission": 3,
            "smr_urgent_hours": 24,
            "ifti_submission": 10,
        },
        "ocdd": _OCDD_STANDARD,
        "ubo": _UBO_STANDARD,
        "screening_sources": ["UN", "NZ_DIA"],
        "high_risk_countries": _HIGH_RISK,
        "holidays": [
            "FIXED:01-01",
            "FIXED:02-06",
            "EASTER_FRIDAY",
            "EASTER_MONDAY",
            "FIXED:04-25",
            "FIXED:12-25",
            "FIXED:12-26",
        ],
        "workweek": [0, 1, 2, 3, 4],
        "timezone": "Pacific/Auckland",
        "currency": "NZD",
        "currency_symbol": "$",
        "regulator": "NZ_FIU",
        "regulator_full_name": "New Zealand Financial Intelligence Unit",
        "regulator_website": "https://www.police.govt.nz/advice/financial-intelligence-unit",
        "reporting_format": "XML",
        "accepted_id_types": [
            "passport",
            "drivers_license",
            "birth_certificate",
            "citizenship_certificate",
        ],
        "id_expiry_required": True,
        "proof_of_address_max_age_days": 90,
        "business_registration": {
            "required": True,
            "registry_name": "New Zealand Companies Office",
            "number_format": r"^\d{6,7}$",
            "lookup_url": "https://companies-register.companiesoffice.govt.nz",
        },
    },
    # United Kingdom: FCA supervision, NCA for suspicious activity reports
    # (Money Laundering Regulations 2017).
    "GB": {
        "region": "GB",
        "thresholds": {
            "ttr_required": 10_000,
            "kyc_required": 1_000,
            "enhanced_dd_required": 25_000,
            "international_transfer": 1_000,
        },
        "structuring": {
            "window_days": 7,
            "min_transaction_count": 3,
            "amount_range": {"min": 8_000, "max": 10_000},
        },
        "deadlines": {
            "ttr_submission": 14,
            "smr_submission": 7,
            "smr_urgent_hours": 24,
            "ifti_submission": 14,
        },
        "ocdd": _OCDD_STANDARD,
        "ubo": _UBO_STANDARD,
        "screening_sources": ["UK_HMT", "OFSI", "UN", "EU"],
        "high_risk_countries": _HIGH_RISK,
        "holidays": [
            "FIXED:01-01",
            "EASTER_FRIDAY",
            "EASTER_MONDAY",
            "FIRST_MON_MAY",
            "LAST_MON_MAY",
            "LAST_MON_AUG",
            "FIXED:12-25",
            "FIXED:12-26",
        ],
        "workweek": [0, 1, 2, 3, 4],
        "timezone": "Europe/London",
        "currency": "GBP",
        "currency_symbol": "£",
        "regulator": "FCA",
        "regulator_full_name": "Financial Conduct Authority",
        "regulator_website": "https://www.fca.org.uk",
        "reporting_format": "XML",
        "accepted_id_types": ["passport", "drivers_license", "national_id"],
        "id_expiry_required": True,
        "proof_of_address_max_age_days": 90,
        "business_registration": {
            "required": True,
            "registry_name": "Companies House",
            "number_format": r"^[A-Z]{2}\d{6}$|^\d{8}$",
            "lookup_url": "https://find-and-update.company-information.service.gov.uk",
        },
    },
    # United States: FinCEN. CTR over $10,000 within 15 calendar days
    # (31 CFR § 1010.306(a)(1)); SAR within 30 days.
    "US": {
        "region": "US",
        "thresholds": {
            "ttr_required": 10_000,
            "kyc_required": 3_000,
            "enhanced_dd_required": 25_000,
            "international_transfer": 3_000,
        },
        "structuring": {
            "window_days": 7,
            "min_transaction_count": 3,
            "amount_range": {"min": 8_000, "max": 10_000},
        },
        "deadlines": {
            "ttr_submission": 15,
            "smr_submission": 30,
            "smr_urgent_hours": 24,
            "ifti_submission": 15,
        },
        "ocdd": _OCDD_STANDARD,
        "ubo": _UBO_STANDARD,
        "screening_sources": ["OFAC", "UN"],
        "high_risk_countries": _HIGH_RISK,
        "holidays": [
            "FIXED:01-01",
            "THIRD_MON_JAN",
            "THIRD_MON_FEB",
            "LAST_MON_MAY",
            "FIXED:07-04",
            "FIRST_MON_SEP",
            "FOURTH_THU_NOV",
            "FIXED:12-25",
        ],
        "workweek": [0, 1, 2, 3, 4],
        "timezone": "America/New_York",
        "currency": "USD",
        "currency_symbol": "$",
        "regulator": "FinCEN",
        "regulator_full_name": "Financial Crimes Enforcement Network",
        "regulator_website": "https://www.fincen.gov",
        "reporting_format": "XML",
        "accepted_id_types": ["passport", "drivers_license", "state_id", "military_id"],
        "id_expiry_required": True,
        "proof_of_address_max_age_days": 60,
        "business_registration": {
            "required": True,
            "registry_name": "State Secretary of State",
            "number_format": "^.+$",
        },
    },
    # European Union: Anti-Money Laundering Directives (AMLD).
    "EU": {
        "region": "EU",
        "thresholds": {
            "ttr_required": 10_000,
            "kyc_required": 1_000,
            "enhanced_dd_required": 15_000,
            "international_transfer": 1_000,
        },
        "structuring": {
            "window_days": 7,
            "min_transaction_count": 3,
            "amount_range": {"min": 8_000, "max": 10_000},
        },
        "deadlines": {
            "ttr_submission": 14,
            "smr_submission": 7,
            "smr_urgent_hours": 24,
            "ifti_submission": 14,
        },
        "ocdd": _OCDD_STANDARD,
        "ubo": _UBO_STANDARD,
        "screening_sources": ["EU_SANCTIONS", "UN"],
        "high_risk_countries": _HIGH_RISK,
        "holidays": [],
        "workweek": [0, 1, 2, 3, 4],
        "timezone": "Europe/Brussels",
        "currency": "EUR",
        "currency_symbol": "€",
        "regulator": "AMLD",
        "regulator_full_name": "Anti-Money Laundering Directive",
        "regulator_website": "https://finance.ec.europa.eu",
        "reporting_format": "XML",
        "accepted_id_types": ["passport", "national_id", "drivers_license"],
        "id_expiry_required": True,
        "proof_of_address_max_age_days": 90,
        "business_registration": {
            "required": True,
            "registry_name": "National Business Registry",
            "number_format": "^.+$",
        },
    },
    # Singapore: MAS. Lunar holidays are listed as placeholders and are not
    # resolved by the calendar; tenants should add the dated observances.
    "SG": {
        "region": "SG",
        "thresholds": {
            "ttr_required": 20_000,
            "kyc_required": 5_000,
            "enhanced_dd_required": 50_000,
            "international_transfer": 5_000,
        },
        "structuring": {
            "window_days": 7,
            "min_transaction_count": 3,
            "amount_range": {"min": 15_000, "max": 20_000},
        },
        "deadlines": {
            "ttr_submission": 15,
            "smr_submission": 15,
            "smr_urgent_hours": 24,
            "ifti_submission": 15,
        },
        "ocdd": _OCDD_STANDARD,
        "ubo": _UBO_STANDARD,
        "screening_sources": ["UN", "MAS_SANCTIONS"],
        "high_risk_countries": _HIGH_RISK,
        "holidays": [
            "FIXED:01-01",
            "CHINESE_NEW_YEAR_1",
            "CHINESE_NEW_YEAR_2",
            "EASTER_FRIDAY",
            "FIXED:05-01",
            "VESAK_DAY",
            "HARI_RAYA_PUASA",
            "FIXED:08-09",
            "HARI_RAYA_HAJI",
            "DEEPAVALI",
            "FIXED:12-25",
        ],
        "workweek": [0, 1, 2, 3, 4],
        "timezone": "Asia/Singapore",
        "currency": "SGD",
        "currency_symbol": "$",
        "regulator": "MAS",
        "regulator_full_name": "Monetary Authority of Singapore",
        "regulator_website": "https://www.mas.gov.sg",
        "reporting_format": "XML",
        "accepted_id_types": ["passport", "nric", "fin", "drivers_license"],
        "id_expiry_required": True,
        "proof_of_address_max_age_days": 90,
        "business_registration": {
            "required": True,
            "registry_name": "ACRA",
            "number_format": r"^\d{9}[A-Z]$",
            "lookup_url": "https://www.acra.gov.sg",
        },
    },
}

REGION_NAMES: Mapping[str, str] = MappingProxyType(
    {
        "AU": "Australia",
        "NZ": "New Zealand",
        "GB": "United Kingdom",
        "US": "United States",
        "EU": "European Union",
        "SG": "Singapore",
    }
)

# Region codes accepted as synonyms for a built-in region.
REGION_ALIASES: Mapping[str, str] = MappingProxyType({"UK": "GB"})

# Process-wide, read-only default table. Resolution copies out of it; nothing
# may write into it.
REGIONAL_DEFAULTS: Mapping[str, Mapping[str, Any]] = _freeze(_REGIONAL_DEFAULTS)
del _REGIONAL_DEFAULTS


# ---------------------------------------------------------------------------
# Engine-level settings
# ---------------------------------------------------------------------------


@dataclass
class ComplianceEngineConfig:
    """Engine knobs that are not jurisdictional (batch behaviour, screening)."""

    default_region: str = DEFAULT_REGION

    # Trailing window for the velocity factor's recent-transaction count
    recent_activity_window_days: int = 7

    # OCDD notification behaviour
    ocdd_upcoming_horizon_days: int = 7
    ocdd_overdue_grace_days: int = 1
    # Day-level dedup for OCDD overdue/upcoming notifications, matching the
    # deadline tracker's once-per-day behaviour.
    dedupe_ocdd_alerts: bool = True

    # PEP check during OCDD: False reuses the latest stored PEP screening,
    # True re-screens through the screening provider.
    live_pep_rescreen: bool = False
    pep_screening_sources: tuple[str, ...] = ("PEP",)

    sanctions_min_match_score: float = 0.7

    # Orchestration limits for periodic batches. None disables the timeout.
    tenant_timeout_seconds: float | None = 300.0
    max_concurrent_tenants: int = 1

    @classmethod
    def from_env(cls) -> "ComplianceEngineConfig":
        """Load config with env var overrides (COMPLIANCE_ prefix)."""
        config = cls()

        if v := os.getenv("COMPLIANCE_DEFAULT_REGION"):
            config.default_region = v.upper()
        if v := os.getenv("COMPLIANCE_RECENT_ACTIVITY_WINDOW_DAYS"):
            config.recent_activity_window_days = int(v)
        if v := os.getenv("COMPLIANCE_OCDD_UPCOMING_HORIZON_DAYS"):
            config.ocdd_upcoming_horizon_days = int(v)
        if v := os.getenv("COMPLIANCE_OCDD_OVERDUE_GRACE_DAYS"):
            config.ocdd_overdue_grace_days = int(v)
        if v := os.getenv("COMPLIANCE_DEDUPE_OCDD_ALERTS"):
            config.dedupe_ocdd_alerts = v.lower() in ("true", "1", "yes")
        if v := os.getenv("COMPLIANCE_LIVE_PEP_RESCREEN"):
            config.live_pep_rescreen = v.lower() in ("true", "1", "yes")
        if v := os.getenv("COMPLIANCE_SANCTIONS_MIN_MATCH_SCORE"):
            config.sanctions_min_match_score = float(v)
        if v := os.getenv("COMPLIANCE_TENANT_TIMEOUT_SECONDS"):
            config.tenant_timeout_seconds = float(v) if float(v) > 0 else None
        if v := os.getenv("COMPLIANCE_MAX_CONCURRENT_TENANTS"):
            config.max_concurrent_tenants = max(1, int(v))

        return config

    @classmethod
    def from_settings(cls, settings: Any) -> "ComplianceEngineConfig":
        """Build from the application ``Settings`` object."""
        return cls(
            default_region=settings.default_region.upper(),
            ocdd_upcoming_horizon_days=settings.ocdd_upcoming_horizon_days,
            dedupe_ocdd_alerts=settings.dedupe_ocdd_alerts,
            live_pep_rescreen=settings.live_pep_rescreen,
            sanctions_min_match_score=settings.sanctions_min_match_score,
            tenant_timeout_seconds=(
                settings.tenant_timeout_seconds if settings.tenant_timeout_seconds > 0 else None
            ),
            max_concurrent_tenants=max(1, settings.max_concurrent_tenants),
        )


# Module-level default instance
default_engine_config = ComplianceEngineConfig()
