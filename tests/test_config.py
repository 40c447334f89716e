import pytest

from config import (
    DevelopmentSettings,
    ProductionSettings,
    Settings,
    TestingSettings,
    get_settings,
    get_settings_for_environment,
)


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Drop the cached settings and ledger-related environment around each test."""
    for name in ("APP_ENV", "LOG_LEVEL", "LOG_FORMAT", "ERROR_POLICY", "AMOUNT_PRECISION"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestEnvironmentPresets:
    """APP_ENV selects a settings preset."""

    def test_defaults_without_app_env(self):
        settings = get_settings()

        assert type(settings) is Settings
        assert settings.error_policy == "halt"
        assert settings.skip_rejected is False
        assert settings.log_format == "json"

    @pytest.mark.parametrize("env, expected_class", [
        ("development", DevelopmentSettings),
        ("Production", ProductionSettings),
        (" testing ", TestingSettings),
    ])
    def test_app_env_selects_preset(self, monkeypatch, env, expected_class):
        monkeypatch.setenv("APP_ENV", env)

        assert type(get_settings()) is expected_class

    def test_development_skips_rejected_transactions(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "development")

        settings = get_settings()

        assert settings.skip_rejected is True
        assert settings.log_level == "DEBUG"
        assert settings.log_format == "text"

    def test_environment_variables_override_preset(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "development")
        monkeypatch.setenv("ERROR_POLICY", "halt")
        monkeypatch.setenv("AMOUNT_PRECISION", "4")

        settings = get_settings()

        assert settings.skip_rejected is False
        assert settings.amount_precision == 4

    def test_unknown_environment_falls_back_to_defaults(self):
        assert type(get_settings_for_environment("staging")) is Settings

    def test_settings_are_cached(self):
        assert get_settings() is get_settings()
