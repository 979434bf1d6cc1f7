"""
Centralized configuration loader for the publishing engine.

Loads settings from YAML files and environment variables, providing
sensible defaults when configuration files are absent.

Provides:
    - DispatchConfig: Due window, claim lease, batching and retry defaults
    - CredentialConfig: Token refresh margin
    - SchedulingConfig: History window and fallback confidence
    - OAuthAppCredentials: Per-platform OAuth application id/secret from env
    - Settings: Global application settings loaded from YAML + env vars
    - get_settings(): Singleton accessor for Settings
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from social_engine.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of social_engine/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

SUPPORTED_LOCALES = ("en", "fr")

PLATFORM_NAMES = ("youtube", "instagram", "tiktok", "facebook", "twitter", "linkedin")

logger = logging.getLogger(__name__)


# ===========================================================================
# SECTION CONFIGS
# ===========================================================================


@dataclass
class DispatchConfig:
    """
    Settings for the scheduled dispatch loop.

    ``due_window_minutes`` bounds the first attempt: a post never tried
    whose scheduled_date is older than this expires.  A post that already
    failed transiently stays eligible for ``retry_window_minutes`` after its
    scheduled_date, long enough for ``default_max_retries`` passes one
    ``interval_seconds`` apart.
    """

    interval_seconds: int = 60
    due_window_minutes: int = 5
    retry_window_minutes: int = 60
    claim_lease_minutes: int = 10
    batch_size: int = 50
    max_concurrency: int = 1
    default_max_retries: int = 3
    expire_stale: bool = True


@dataclass
class CredentialConfig:
    """Settings for the credential lifecycle manager."""

    refresh_margin_minutes: int = 5


@dataclass
class SchedulingConfig:
    """Settings for the scheduling intelligence engine."""

    history_days: int = 90
    min_data_points: int = 5
    default_confidence: int = 60


@dataclass
class OAuthAppCredentials:
    """OAuth application (client) credentials for one platform."""

    client_id: str
    client_secret: str

    @classmethod
    def from_env(cls, platform: str) -> "OAuthAppCredentials":
        """
        Read ``{PLATFORM}_CLIENT_ID`` / ``{PLATFORM}_CLIENT_SECRET``.

        Raises:
            ConfigurationError: If either variable is missing or empty.
        """
        prefix = platform.upper()
        client_id = os.environ.get(f"{prefix}_CLIENT_ID")
        client_secret = os.environ.get(f"{prefix}_CLIENT_SECRET")
        if not client_id or not client_secret:
            raise ConfigurationError(
                f"{prefix}_CLIENT_ID and {prefix}_CLIENT_SECRET must be set "
                f"to refresh {platform} tokens"
            )
        return cls(client_id=client_id, client_secret=client_secret)


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Global application settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    sensible defaults. Environment variables override YAML values for
    deployment-specific configuration.
    """

    # Timezone used to bucket and project posting times
    timezone: str = "UTC"

    # Language of user-facing messages ("en" or "fr")
    locale: str = "en"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Outbound HTTP
    http_timeout_seconds: float = 30.0

    # Sections
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    credentials: CredentialConfig = field(default_factory=CredentialConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)

    def __post_init__(self) -> None:
        if self.locale not in SUPPORTED_LOCALES:
            raise ConfigurationError(
                f"Unsupported locale '{self.locale}', expected one of {SUPPORTED_LOCALES}"
            )
        if self.dispatch.max_concurrency < 1:
            raise ConfigurationError("dispatch.max_concurrency must be >= 1")
        if self.dispatch.default_max_retries < 1:
            raise ConfigurationError("dispatch.default_max_retries must be >= 1")
        dispatch = self.dispatch
        if dispatch.retry_window_minutes < dispatch.due_window_minutes:
            raise ConfigurationError(
                "dispatch.retry_window_minutes must be >= dispatch.due_window_minutes"
            )
        if dispatch.interval_seconds * dispatch.default_max_retries > dispatch.retry_window_minutes * 60:
            raise ConfigurationError(
                f"dispatch.retry_window_minutes={dispatch.retry_window_minutes} is too short for "
                f"{dispatch.default_max_retries} attempts every {dispatch.interval_seconds}s"
            )

    def oauth_app(self, platform: str) -> OAuthAppCredentials:
        """Return the OAuth client credentials for *platform* from env."""
        return OAuthAppCredentials.from_env(platform)

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults.
        Environment variables override YAML values for specific keys.

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Returns:
            Populated Settings instance.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed
                or holds invalid values.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc

        # -----------------------------------------------------------------
        # Nested sections (unknown keys are ignored)
        # -----------------------------------------------------------------
        dispatch = _build_section(DispatchConfig, data.get("dispatch", {}))
        credentials = _build_section(CredentialConfig, data.get("credentials", {}))
        scheduling = _build_section(SchedulingConfig, data.get("scheduling", {}))

        values: Dict[str, Any] = {
            "timezone": data.get("timezone", "UTC"),
            "locale": data.get("locale", "en"),
            "log_level": data.get("log_level", "INFO"),
            "log_dir": data.get("log_dir", "logs"),
            "http_timeout_seconds": data.get("http_timeout_seconds", 30.0),
        }

        # -----------------------------------------------------------------
        # Environment variable overrides
        # -----------------------------------------------------------------
        top_level_env: Dict[str, tuple] = {
            "ENGINE_TIMEZONE": ("timezone", str),
            "ENGINE_LOCALE": ("locale", str),
            "LOG_LEVEL": ("log_level", str),
            "LOG_DIR": ("log_dir", str),
            "HTTP_TIMEOUT_SECONDS": ("http_timeout_seconds", float),
        }
        for env_key, (attr_name, cast_fn) in top_level_env.items():
            env_val = os.environ.get(env_key)
            if env_val is not None:
                values[attr_name] = _cast_env(env_key, env_val, cast_fn)

        section_env: Dict[str, tuple] = {
            "DISPATCH_INTERVAL_SECONDS": (dispatch, "interval_seconds", int),
            "DISPATCH_DUE_WINDOW_MINUTES": (dispatch, "due_window_minutes", int),
            "DISPATCH_RETRY_WINDOW_MINUTES": (dispatch, "retry_window_minutes", int),
            "DISPATCH_CLAIM_LEASE_MINUTES": (dispatch, "claim_lease_minutes", int),
            "DISPATCH_BATCH_SIZE": (dispatch, "batch_size", int),
            "DISPATCH_MAX_CONCURRENCY": (dispatch, "max_concurrency", int),
            "DISPATCH_MAX_RETRIES": (dispatch, "default_max_retries", int),
            "TOKEN_REFRESH_MARGIN_MINUTES": (credentials, "refresh_margin_minutes", int),
        }
        for env_key, (section, attr_name, cast_fn) in section_env.items():
            env_val = os.environ.get(env_key)
            if env_val is not None:
                setattr(section, attr_name, _cast_env(env_key, env_val, cast_fn))

        # -----------------------------------------------------------------
        # Assemble the Settings object
        # -----------------------------------------------------------------
        return cls(
            dispatch=dispatch,
            credentials=credentials,
            scheduling=scheduling,
            **values,
        )


def _build_section(section_cls: type, section_data: Dict[str, Any]) -> Any:
    """Instantiate a section dataclass from a YAML mapping."""
    if not isinstance(section_data, dict):
        raise ConfigurationError(
            f"Expected a mapping for {section_cls.__name__}, got {type(section_data).__name__}"
        )
    return section_cls(**{
        k: v for k, v in section_data.items()
        if k in section_cls.__dataclass_fields__
    })


def _cast_env(env_key: str, env_val: str, cast_fn: Callable[[str], Any]) -> Any:
    try:
        return cast_fn(env_val)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(
            f"Invalid value for env var {env_key}='{env_val}': {exc}"
        ) from exc


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.

    Returns:
        The global Settings instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """
    Reset the cached Settings singleton.

    Useful for testing or when configuration files have been updated
    at runtime.
    """
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

# Required environment variables for the system to function
REQUIRED_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
]

# Needed only to refresh tokens / connect accounts on a given platform
OPTIONAL_ENV_VARS: List[str] = [
    f"{name.upper()}_{suffix}"
    for name in PLATFORM_NAMES
    for suffix in ("CLIENT_ID", "CLIENT_SECRET")
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing. If ``False``, return the status dict
            without raising.

    Returns:
        Dict mapping variable name to presence status (``True`` if set).

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status: Dict[str, bool] = {}
    missing: List[str] = []

    for var in REQUIRED_ENV_VARS:
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    for var in OPTIONAL_ENV_VARS:
        status[var] = bool(os.environ.get(var))

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {missing}. "
            f"Copy .env.example to .env and fill in the values."
        )

    return status


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "DispatchConfig",
    "CredentialConfig",
    "SchedulingConfig",
    "OAuthAppCredentials",
    "Settings",
    "get_settings",
    "reset_settings",
    "validate_env",
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    "SUPPORTED_LOCALES",
    "PLATFORM_NAMES",
    "PROJECT_ROOT",
]
