"""
Tests for social_engine.config module.

Covers:
    - Section dataclass defaults
    - Settings defaults, validation and from_yaml
    - Environment variable overrides
    - OAuthAppCredentials.from_env
    - Singleton get_settings / reset_settings behaviour
    - validate_env
"""

import pytest

from social_engine.config import (
    OPTIONAL_ENV_VARS,
    CredentialConfig,
    DispatchConfig,
    OAuthAppCredentials,
    SchedulingConfig,
    Settings,
    get_settings,
    reset_settings,
    validate_env,
)
from social_engine.exceptions import ConfigurationError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_singleton():
    """Ensure the Settings singleton is cleared before and after each test."""
    reset_settings()
    yield
    reset_settings()


# ===========================================================================
# 1. Section defaults
# ===========================================================================


class TestSectionDefaults:
    """Default values of the section dataclasses."""

    def test_dispatch_defaults(self):
        cfg = DispatchConfig()
        assert cfg.due_window_minutes == 5
        assert cfg.retry_window_minutes == 60
        assert cfg.default_max_retries == 3
        assert cfg.max_concurrency == 1
        assert cfg.expire_stale is True

    def test_credential_defaults(self):
        assert CredentialConfig().refresh_margin_minutes == 5

    def test_scheduling_defaults(self):
        cfg = SchedulingConfig()
        assert cfg.history_days == 90
        assert cfg.min_data_points == 5
        assert cfg.default_confidence == 60


# ===========================================================================
# 2. Settings
# ===========================================================================


class TestSettings:
    """Tests for Settings construction and YAML loading."""

    def test_defaults(self):
        settings = Settings()
        assert settings.timezone == "UTC"
        assert settings.locale == "en"
        assert settings.http_timeout_seconds == 30.0

    def test_unsupported_locale_rejected(self):
        with pytest.raises(ConfigurationError):
            Settings(locale="de")

    def test_zero_concurrency_rejected(self):
        with pytest.raises(ConfigurationError):
            Settings(dispatch=DispatchConfig(max_concurrency=0))

    def test_retry_window_shorter_than_due_window_rejected(self):
        with pytest.raises(ConfigurationError, match="retry_window_minutes"):
            Settings(dispatch=DispatchConfig(due_window_minutes=10, retry_window_minutes=5))

    def test_retry_window_must_fit_every_attempt(self):
        """Three attempts ten minutes apart do not fit in a 20-minute window."""
        with pytest.raises(ConfigurationError, match="too short"):
            Settings(
                dispatch=DispatchConfig(
                    interval_seconds=600, default_max_retries=3, retry_window_minutes=20
                )
            )

    def test_retry_window_fitting_every_attempt_accepted(self):
        dispatch = DispatchConfig(interval_seconds=600, default_max_retries=3, retry_window_minutes=30)
        assert Settings(dispatch=dispatch).dispatch.retry_window_minutes == 30

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = Settings.from_yaml(tmp_path / "missing.yaml")
        assert settings == Settings()

    def test_from_yaml_sections(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "timezone: Europe/Paris\n"
            "locale: fr\n"
            "dispatch:\n"
            "  batch_size: 10\n"
            "  unknown_key: ignored\n"
            "scheduling:\n"
            "  history_days: 30\n",
            encoding="utf-8",
        )
        settings = Settings.from_yaml(path)
        assert settings.timezone == "Europe/Paris"
        assert settings.locale == "fr"
        assert settings.dispatch.batch_size == 10
        assert settings.dispatch.due_window_minutes == 5
        assert settings.scheduling.history_days == 30

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("dispatch: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            Settings.from_yaml(path)

    def test_section_must_be_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("dispatch: 5\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            Settings.from_yaml(path)

    def test_env_overrides(self, tmp_path, monkeypatch):
        """Environment variables win over YAML values."""
        path = tmp_path / "settings.yaml"
        path.write_text("locale: en\ndispatch:\n  max_concurrency: 2\n", encoding="utf-8")
        monkeypatch.setenv("ENGINE_LOCALE", "fr")
        monkeypatch.setenv("DISPATCH_MAX_CONCURRENCY", "8")
        monkeypatch.setenv("TOKEN_REFRESH_MARGIN_MINUTES", "10")
        settings = Settings.from_yaml(path)
        assert settings.locale == "fr"
        assert settings.dispatch.max_concurrency == 8
        assert settings.credentials.refresh_margin_minutes == 10

    def test_invalid_env_value(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DISPATCH_BATCH_SIZE", "lots")
        with pytest.raises(ConfigurationError):
            Settings.from_yaml(tmp_path / "missing.yaml")


# ===========================================================================
# 3. OAuth application credentials
# ===========================================================================


class TestOAuthAppCredentials:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TIKTOK_CLIENT_ID", "key")
        monkeypatch.setenv("TIKTOK_CLIENT_SECRET", "secret")
        app = OAuthAppCredentials.from_env("tiktok")
        assert app == OAuthAppCredentials(client_id="key", client_secret="secret")

    def test_missing_raises(self):
        with pytest.raises(ConfigurationError, match="YOUTUBE_CLIENT_ID"):
            OAuthAppCredentials.from_env("youtube")

    def test_settings_accessor(self, monkeypatch):
        monkeypatch.setenv("LINKEDIN_CLIENT_ID", "id")
        monkeypatch.setenv("LINKEDIN_CLIENT_SECRET", "secret")
        assert Settings().oauth_app("linkedin").client_id == "id"


# ===========================================================================
# 4. Singleton and env validation
# ===========================================================================


class TestSingleton:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reset_settings(self):
        first = get_settings()
        reset_settings()
        assert get_settings() is not first


class TestValidateEnv:
    def test_strict_missing_raises(self):
        with pytest.raises(ConfigurationError, match="SUPABASE_URL"):
            validate_env(strict=True)

    def test_non_strict_reports(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://x.supabase.co")
        status = validate_env(strict=False)
        assert status["SUPABASE_URL"] is True
        assert status["SUPABASE_SERVICE_KEY"] is False
        assert all(var in status for var in OPTIONAL_ENV_VARS)

    def test_strict_passes_when_set(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://x.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_KEY", "key")
        assert validate_env(strict=True)["SUPABASE_SERVICE_KEY"] is True
