"""Transaction risk scoring for customer due diligence.

Additive model on a 0–100 scale. Each factor that applies contributes a fixed
score; the sum is capped at ``max_score`` and mapped to a level through the
configured bands:

  low     score < medium_min          (default < 40)
  medium  medium_min <= score < high_min (default 40–69)
  high    score >= high_min           (default >= 70)

Factor weights and bands come from ``RiskScoringConfig`` so jurisdictions can
tune them without code changes. Scoring is a pure function of its inputs: no
I/O, no clock, no logging.

Regulatory basis:
  AML/CTF Rules ch. 15: ongoing customer due diligence, risk-based systems
  31 CFR § 1022.210(d): risk-based AML program
  FATF Recommendation 10: customer due diligence; Recommendation 12: PEPs
"""

from dataclasses import dataclass
from typing import Callable, Iterable

from pydantic import BaseModel, ConfigDict, Field

from .config import RiskScoringConfig, ThresholdConfig
from .models import RiskFactorDetail, RiskLevel, RiskResult, VerificationStatus


class RiskContext(BaseModel):
    """Inputs for one scoring call. Built fresh per evaluation, never stored."""

    model_config = ConfigDict(frozen=True)

    amount: float
    currency: str
    customer_age_days: int
    # Transactions by the customer in the trailing activity window
    recent_transaction_count: int = 0
    structuring_detected: bool = False
    requires_edd: bool = False
    is_pep: bool = False
    is_sanctioned: bool = False
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    thresholds: ThresholdConfig
    scoring: RiskScoringConfig = Field(default_factory=RiskScoringConfig)


@dataclass(frozen=True)
class RiskFactor:
    """A named condition that adds ``score * weight`` when it applies."""

    name: str
    condition: Callable[[RiskContext], bool]
    score: float
    description: str
    weight: float = 1.0

    def apply(self, context: RiskContext) -> RiskFactorDetail | None:
        if not self.condition(context):
            return None
        return RiskFactorDetail(
            factor=self.name,
            score=self.score * self.weight,
            reason=self.description,
        )


# ---------------------------------------------------------------------------
# Default factors
# ---------------------------------------------------------------------------


def default_risk_factors(scoring: RiskScoringConfig) -> tuple[RiskFactor, ...]:
    """The built-in factor set, weighted from ``scoring``.

    Amount tiers are mutually exclusive and non-decreasing, so the total is
    monotonic in the transaction amount.
    """
    return (
        RiskFactor(
            name="high_transaction_amount",
            condition=lambda ctx: ctx.amount > ctx.thresholds.enhanced_dd_required,
            score=scoring.edd_amount_score,
            description="Transaction exceeds enhanced DD threshold",
        ),
        RiskFactor(
            name="medium_transaction_amount",
            condition=lambda ctx: (
                ctx.thresholds.ttr_required
                < ctx.amount
                <= ctx.thresholds.enhanced_dd_required
            ),
            score=scoring.ttr_amount_score,
            description="Transaction exceeds TTR threshold",
        ),
        RiskFactor(
            name="kyc_threshold_amount",
            condition=lambda ctx: (
                ctx.thresholds.kyc_required < ctx.amount <= ctx.thresholds.ttr_required
            ),
            score=scoring.kyc_amount_score,
            description="Transaction exceeds KYC threshold",
        ),
        RiskFactor(
            name="new_customer",
            condition=lambda ctx: ctx.customer_age_days < scoring.new_customer_days,
            score=scoring.new_customer_score,
            description=f"Customer account less than {scoring.new_customer_days} days old",
        ),
        RiskFactor(
            name="recent_customer",
            condition=lambda ctx: (
                scoring.new_customer_days
                <= ctx.customer_age_days
                < scoring.recent_customer_days
            ),
            score=scoring.recent_customer_score,
            description=(
                f"Customer account less than {scoring.recent_customer_days} days old"
            ),
        ),
        RiskFactor(
            name="multiple_transactions",
            condition=lambda ctx: (
                ctx.recent_transaction_count >= scoring.velocity_trigger_count
            ),
            score=scoring.velocity_score,
            description="Multiple transactions in short period",
        ),
        RiskFactor(
            name="unusual_pattern",
            condition=lambda ctx: ctx.structuring_detected,
            score=scoring.structuring_score,
            description="Unusual transaction pattern detected (possible structuring)",
        ),
        RiskFactor(
            name="pep_status",
            condition=lambda ctx: ctx.is_pep,
            score=scoring.pep_score,
            description="Customer is a Politically Exposed Person",
        ),
        RiskFactor(
            name="sanctioned_status",
            condition=lambda ctx: ctx.is_sanctioned,
            score=scoring.sanctioned_score,
            description="Customer has potential sanctions match",
        ),
        RiskFactor(
            name="unverified_customer",
            condition=lambda ctx: ctx.verification_status == VerificationStatus.UNVERIFIED,
            score=scoring.unverified_score,
            description="Customer identity not verified",
        ),
        RiskFactor(
            name="enhanced_dd_required",
            condition=lambda ctx: ctx.requires_edd,
            score=scoring.edd_required_score,
            description="Customer is subject to enhanced due diligence",
        ),
    )


DEFAULT_RISK_FACTORS: tuple[RiskFactor, ...] = default_risk_factors(RiskScoringConfig())


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def risk_level_for(score: float, scoring: RiskScoringConfig | None = None) -> RiskLevel:
    """Map a score to its level band. Monotonic in ``score``."""
    scoring = scoring or RiskScoringConfig()
    if score >= scoring.high_min:
        return RiskLevel.HIGH
    if score >= scoring.medium_min:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def score(context: RiskContext, custom_factors: Iterable[RiskFactor] = ()) -> RiskResult:
    """Score a transaction context.

    Custom factors are evaluated after the defaults and appear after them in
    ``factors``. Every applied factor with a non-zero contribution is recorded
    so the result can be audited.
    """
    scoring = context.scoring
    applied: list[RiskFactorDetail] = []
    total = 0.0

    for factor in (*default_risk_factors(scoring), *custom_factors):
        detail = factor.apply(context)
        if detail is None or detail.score == 0:
            continue
        total += detail.score
        applied.append(detail)

    final_score = max(0.0, min(total, scoring.max_score))
    return RiskResult(
        risk_score=final_score,
        risk_level=risk_level_for(final_score, scoring),
        factors=tuple(applied),
    )
