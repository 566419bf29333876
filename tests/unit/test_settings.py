"""Tests for application configuration."""

from txguard.config import Settings


class TestSettings:
    def test_default_settings(self):
        settings = Settings()
        assert settings.app_name == "txguard"
        assert settings.app_version == "0.1.0"
        assert settings.port == 8000
        assert settings.profile_backend == "memory"

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("APP_NAME", "test-app")
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("PROFILE_BACKEND", "sql")
        settings = Settings()
        assert settings.app_name == "test-app"
        assert settings.port == 9000
        assert settings.debug is True
        assert settings.profile_backend == "sql"

    def test_database_url_default(self):
        settings = Settings()
        assert "postgresql+asyncpg" in settings.database_url

    def test_kafka_disabled_by_default(self):
        settings = Settings()
        assert settings.kafka_enabled is False
        assert settings.security_events_topic == "txguard.security.events"

    def test_email_defaults_to_demo_mode(self):
        settings = Settings()
        assert settings.emailjs_service_id == ""
        assert settings.emailjs_endpoint.startswith("https://")
