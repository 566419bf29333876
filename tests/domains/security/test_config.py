"""Tests for risk engine configuration."""

import pytest

from txguard.domains.security.config import RiskWeights, SecurityConfig, default_config


class TestSecurityConfig:
    def test_default_weights_sum_to_100(self):
        weights = default_config.weights
        total = (
            weights.amount_ratio
            + weights.address_novelty
            + weights.statistical_anomaly
            + weights.time_of_day
            + weights.behavior_timing
        )
        assert total == pytest.approx(100.0)

    def test_default_table(self):
        config = SecurityConfig()
        assert config.version == "risk-engine-v1"
        assert config.weights.behavior_timing == 25.0
        assert config.thresholds.low_max == 30.0
        assert config.thresholds.medium_max == 60.0
        assert config.thresholds.high_max == 80.0
        assert config.verification.max_attempts == 3
        assert config.verification.token_ttl_seconds == 300
        assert config.profile.default_average_duration == 120.0

    def test_weights_must_sum_to_100(self):
        with pytest.raises(ValueError):
            RiskWeights(amount_ratio=50.0)

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.setenv("TXGUARD_TOKEN_TTL_SECONDS", "120")
        monkeypatch.setenv("TXGUARD_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("TXGUARD_HIGH_MAX", "85")
        config = SecurityConfig.from_env()
        assert config.verification.token_ttl_seconds == 120
        assert config.verification.max_attempts == 5
        assert config.thresholds.high_max == 85.0

    def test_from_env_weight_overrides_are_validated(self, monkeypatch):
        monkeypatch.setenv("TXGUARD_WEIGHT_AMOUNT_RATIO", "30")
        monkeypatch.setenv("TXGUARD_WEIGHT_BEHAVIOR_TIMING", "20")
        config = SecurityConfig.from_env()
        assert config.weights.amount_ratio == 30.0
        assert config.weights.behavior_timing == 20.0

        monkeypatch.setenv("TXGUARD_WEIGHT_TIME_OF_DAY", "50")
        with pytest.raises(ValueError):
            SecurityConfig.from_env()

    def test_from_env_does_not_touch_default(self, monkeypatch):
        monkeypatch.setenv("TXGUARD_MAX_ATTEMPTS", "9")
        SecurityConfig.from_env()
        assert default_config.verification.max_attempts == 3
