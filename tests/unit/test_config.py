"""Tests for application and engine configuration."""

from src.config import Settings
from src.domains.compliance.config import ComplianceEngineConfig


class TestSettings:
    def test_default_settings(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)
        assert settings.app_name == "sentinel-compliance"
        assert settings.app_version == "0.1.0"
        assert settings.default_region == "AU"
        assert "postgresql+asyncpg" in settings.database_url

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("APP_NAME", "test-app")
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("DEFAULT_REGION", "NZ")
        monkeypatch.setenv("MAX_CONCURRENT_TENANTS", "4")
        settings = Settings(_env_file=None)
        assert settings.app_name == "test-app"
        assert settings.debug is True
        assert settings.default_region == "NZ"
        assert settings.max_concurrent_tenants == 4


class TestComplianceEngineConfig:
    def test_defaults(self):
        config = ComplianceEngineConfig()
        assert config.default_region == "AU"
        assert config.dedupe_ocdd_alerts is True
        assert config.live_pep_rescreen is False
        assert config.sanctions_min_match_score == 0.7
        assert config.max_concurrent_tenants == 1

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("COMPLIANCE_DEFAULT_REGION", "gb")
        monkeypatch.setenv("COMPLIANCE_DEDUPE_OCDD_ALERTS", "false")
        monkeypatch.setenv("COMPLIANCE_LIVE_PEP_RESCREEN", "1")
        monkeypatch.setenv("COMPLIANCE_SANCTIONS_MIN_MATCH_SCORE", "0.85")
        monkeypatch.setenv("COMPLIANCE_MAX_CONCURRENT_TENANTS", "0")
        monkeypatch.setenv("COMPLIANCE_TENANT_TIMEOUT_SECONDS", "0")

        config = ComplianceEngineConfig.from_env()

        assert config.default_region == "GB"
        assert config.dedupe_ocdd_alerts is False
        assert config.live_pep_rescreen is True
        assert config.sanctions_min_match_score == 0.85
        assert config.max_concurrent_tenants == 1
        assert config.tenant_timeout_seconds is None

    def test_from_settings(self):
        settings = Settings(
            _env_file=None,
            default_region="sg",
            tenant_timeout_seconds=30,
            max_concurrent_tenants=3,
            live_pep_rescreen=True,
        )

        config = ComplianceEngineConfig.from_settings(settings)

        assert config.default_region == "SG"
        assert config.tenant_timeout_seconds == 30
        assert config.max_concurrent_tenants == 3
        assert config.live_pep_rescreen is True
