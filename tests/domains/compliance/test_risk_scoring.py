"""Tests for the additive transaction risk model."""

import pytest
from pydantic import ValidationError

from src.domains.compliance.config import RiskScoringConfig, ThresholdConfig
from src.domains.compliance.models import RiskLevel, VerificationStatus
from src.domains.compliance.risk_scoring import (
    DEFAULT_RISK_FACTORS,
    RiskContext,
    RiskFactor,
    risk_level_for,
    score,
)

AU_THRESHOLDS = ThresholdConfig(ttr_required=10_000, kyc_required=5_000, enhanced_dd_required=50_000)


def _ctx(**kwargs) -> RiskContext:
    defaults = {
        "amount": 500.0,
        "currency": "AUD",
        "customer_age_days": 365,
        "verification_status": VerificationStatus.VERIFIED,
        "thresholds": AU_THRESHOLDS,
    }
    defaults.update(kwargs)
    return RiskContext(**defaults)


def _names(result) -> list[str]:
    return [f.factor for f in result.factors]


class TestCleanCustomer:
    def test_established_verified_small_amount_is_zero(self):
        result = score(_ctx())
        assert result.risk_score == 0
        assert result.risk_level == RiskLevel.LOW
        assert result.factors == ()

    def test_pure(self):
        context = _ctx(amount=15_000, customer_age_days=2, is_pep=True)
        assert score(context) == score(context)


class TestAmountTiers:
    def test_kyc_tier(self):
        result = score(_ctx(amount=6_000))
        assert _names(result) == ["kyc_threshold_amount"]
        assert result.risk_score == 10

    def test_ttr_tier(self):
        result = score(_ctx(amount=15_000))
        assert _names(result) == ["medium_transaction_amount"]
        assert result.risk_score == 20

    def test_edd_tier(self):
        result = score(_ctx(amount=60_000))
        assert _names(result) == ["high_transaction_amount"]
        assert result.risk_score == 30

    def test_exact_threshold_stays_in_lower_tier(self):
        assert _names(score(_ctx(amount=10_000))) == ["kyc_threshold_amount"]
        assert _names(score(_ctx(amount=5_000))) == []

    def test_monotonic_in_amount(self):
        amounts = [0, 100, 4_999, 5_000, 5_001, 9_999, 10_000, 10_001, 49_999, 50_000, 50_001, 1e7]
        scores = [score(_ctx(amount=a, customer_age_days=3)).risk_score for a in amounts]
        assert scores == sorted(scores)


class TestCustomerFactors:
    def test_new_customer(self):
        result = score(_ctx(customer_age_days=2))
        assert _names(result) == ["new_customer"]
        assert result.risk_score == 15

    def test_recent_customer(self):
        result = score(_ctx(customer_age_days=10))
        assert _names(result) == ["recent_customer"]
        assert result.risk_score == 10

    def test_age_boundaries(self):
        assert _names(score(_ctx(customer_age_days=7))) == ["recent_customer"]
        assert _names(score(_ctx(customer_age_days=30))) == []

    def test_velocity(self):
        assert _names(score(_ctx(recent_transaction_count=2))) == []
        assert _names(score(_ctx(recent_transaction_count=3))) == ["multiple_transactions"]

    def test_status_flags(self):
        result = score(
            _ctx(
                structuring_detected=True,
                is_pep=True,
                requires_edd=True,
                verification_status=VerificationStatus.UNVERIFIED,
            )
        )
        assert _names(result) == [
            "unusual_pattern",
            "pep_status",
            "unverified_customer",
            "enhanced_dd_required",
        ]
        assert result.risk_score == 85
        assert result.risk_level == RiskLevel.HIGH

    def test_pending_verification_is_not_unverified(self):
        assert _names(score(_ctx(verification_status=VerificationStatus.PENDING))) == []

    def test_every_factor_carries_a_reason(self):
        result = score(_ctx(amount=60_000, customer_age_days=1, is_sanctioned=True))
        assert all(f.reason for f in result.factors)


class TestScoreCap:
    def test_total_is_capped(self):
        result = score(
            _ctx(
                amount=100_000,
                customer_age_days=1,
                recent_transaction_count=10,
                structuring_detected=True,
                is_pep=True,
                is_sanctioned=True,
                requires_edd=True,
                verification_status=VerificationStatus.UNVERIFIED,
            )
        )
        assert result.risk_score == 100
        assert result.risk_level == RiskLevel.HIGH
        # Contributions are still listed even though the total was clipped
        assert sum(f.score for f in result.factors) > 100


class TestLevelBands:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (0, RiskLevel.LOW),
            (39, RiskLevel.LOW),
            (39.99, RiskLevel.LOW),
            (40, RiskLevel.MEDIUM),
            (69, RiskLevel.MEDIUM),
            (70, RiskLevel.HIGH),
            (100, RiskLevel.HIGH),
        ],
    )
    def test_default_bands(self, value, expected):
        assert risk_level_for(value) == expected

    def test_bands_are_configurable(self):
        scoring = RiskScoringConfig(medium_min=30, high_min=60)
        assert risk_level_for(35, scoring) == RiskLevel.MEDIUM
        assert risk_level_for(60, scoring) == RiskLevel.HIGH

    def test_configured_bands_flow_through_score(self):
        scoring = RiskScoringConfig(medium_min=10, high_min=20)
        result = score(_ctx(customer_age_days=2, scoring=scoring))
        assert result.risk_score == 15
        assert result.risk_level == RiskLevel.MEDIUM

    def test_inverted_bands_rejected(self):
        with pytest.raises(ValidationError):
            RiskScoringConfig(medium_min=80, high_min=70)

    def test_decreasing_amount_scores_rejected(self):
        with pytest.raises(ValidationError):
            RiskScoringConfig(kyc_amount_score=40, ttr_amount_score=20)


class TestCustomFactors:
    def test_custom_factor_appended_after_defaults(self):
        offshore = RiskFactor(
            name="offshore_destination",
            condition=lambda ctx: ctx.currency == "XXX",
            score=12,
            description="Destination currency is not tradeable",
        )
        result = score(_ctx(currency="XXX", customer_age_days=2), custom_factors=[offshore])
        assert _names(result) == ["new_customer", "offshore_destination"]
        assert result.risk_score == 27

    def test_weight_scales_contribution(self):
        factor = RiskFactor("weekend", lambda ctx: True, 10, "Weekend transfer", weight=0.5)
        result = score(_ctx(), custom_factors=[factor])
        assert result.risk_score == 5

    def test_zero_contribution_not_recorded(self):
        factor = RiskFactor("noop", lambda ctx: True, 0, "Never matters")
        assert score(_ctx(), custom_factors=[factor]).factors == ()

    def test_default_factor_names(self):
        assert [f.name for f in DEFAULT_RISK_FACTORS] == [
            "high_transaction_amount",
            "medium_transaction_amount",
            "kyc_threshold_amount",
            "new_customer",
            "recent_customer",
            "multiple_transactions",
            "unusual_pattern",
            "pep_status",
            "sanctioned_status",
            "unverified_customer",
            "enhanced_dd_required",
        ]
