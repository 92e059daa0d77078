"""TripSight configuration.

Settings come from three layers: `TRIPSIGHT_*` environment variables
over a YAML file over built-in defaults. The Gemini API key is looked up
separately (environment, then the system keyring) and is never logged.
Sections cover the Gemini client, the daily quota, cache TTLs, refresh
timing and how the six sub-tasks are fanned out.

Example:
    >>> from tripsight.config import get_config
    >>>
    >>> cfg = get_config()
    >>> cfg.quota.daily_budget
    5
    >>> cfg.refresh.refresh_interval
    datetime.timedelta(days=1)

Config File Format (YAML):
    ```yaml
    ai:
      mode: enabled  # enabled | disabled
      model_name: gemini-2.0-flash
      temperature: 0.4
      timeout_seconds: 60
      max_retries: 3

    quota:
      daily_budget: 5

    cache:
      memory_ttl_seconds: 300

    refresh:
      interval_hours: 24
      check_interval_minutes: 60

    generation:
      concurrent: true  # false runs the six sub-tasks one after another
      max_workers: 6
      subtask_timeout_seconds: 90
      stale_after_seconds: 900

    paths:
      data_dir: ~/.tripsight

    debug: false
    ```
"""

from __future__ import annotations

import functools
import logging
import os
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import keyring
import keyring.errors
import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

# Configure module logger - never log secrets
logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ConfigError(Exception):
    """Base exception for configuration errors."""

    pass


class ConfigFileError(ConfigError):
    """Raised when a config file exists but cannot be read or parsed."""

    pass


class APIKeyError(ConfigError):
    """Base exception for API key related issues."""

    pass


class APIKeyNotFoundError(APIKeyError):
    """Raised when the API key cannot be found in any source."""

    pass


# =============================================================================
# Enums
# =============================================================================


class AIMode(str, Enum):
    """Gemini activation modes.

    Attributes:
        ENABLED: Sub-tasks call Gemini. Requires an API key.
        DISABLED: No network calls; generation fails with AIUnavailableError.
    """

    ENABLED = "enabled"
    DISABLED = "disabled"


class KeySource(str, Enum):
    """Where the API key was found."""

    ENVIRONMENT = "environment"
    KEYRING = "keyring"
    NONE = "none"


# =============================================================================
# Configuration Models
# =============================================================================


class AIConfig(BaseModel):
    """Configuration for the Gemini client.

    Attributes:
        mode: Whether Gemini calls are allowed.
        model_name: Gemini model identifier used by all six sub-tasks.
        temperature: Sampling temperature.
        max_output_tokens: Maximum tokens per sub-task response.
        timeout_seconds: HTTP timeout carried by every provider call.
        max_retries: Retry attempts on transient failures.
        retry_base_delay: Base delay for exponential backoff between retries.
    """

    mode: AIMode = Field(default=AIMode.ENABLED, description="AI activation mode.")
    model_name: str = Field(default="gemini-2.0-flash", description="Gemini model identifier.")
    temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=8192, ge=100, le=65536)
    timeout_seconds: int = Field(default=60, ge=5, le=600)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_base_delay: float = Field(default=1.0, ge=0.0, le=30.0)

    def is_enabled(self) -> bool:
        return self.mode != AIMode.DISABLED


class QuotaConfig(BaseModel):
    """Daily regeneration budget.

    Attributes:
        daily_budget: Successful regenerations allowed per local calendar day.
    """

    daily_budget: int = Field(default=5, ge=1, le=1000)


class CacheConfig(BaseModel):
    """In-process cache tier settings.

    Attributes:
        memory_ttl_seconds: How long the in-process tier serves a record.
    """

    memory_ttl_seconds: float = Field(default=300.0, ge=0.0)

    @property
    def memory_ttl(self) -> timedelta:
        return timedelta(seconds=self.memory_ttl_seconds)


class RefreshConfig(BaseModel):
    """Staleness and automatic refresh settings.

    Attributes:
        interval_hours: Default refresh interval stored in new settings records.
        check_interval_minutes: Minimum gap between scheduler checks.
    """

    interval_hours: float = Field(default=24.0, gt=0.0)
    check_interval_minutes: float = Field(default=60.0, ge=0.0)

    @property
    def refresh_interval(self) -> timedelta:
        return timedelta(hours=self.interval_hours)

    @property
    def check_interval(self) -> timedelta:
        return timedelta(minutes=self.check_interval_minutes)


class GenerationConfig(BaseModel):
    """Fan-out settings for the six analysis sub-tasks.

    Attributes:
        concurrent: Run sub-tasks on a thread pool. False runs them one
            after another, for providers with their own concurrency limits.
        max_workers: Thread pool size when concurrent.
        subtask_timeout_seconds: Wait bound per sub-task.
        stale_after_seconds: A persisted "generating" progress state older
            than this is treated as an abandoned job.
    """

    concurrent: bool = True
    max_workers: int = Field(default=6, ge=1, le=32)
    subtask_timeout_seconds: float = Field(default=90.0, gt=0.0)
    stale_after_seconds: float = Field(default=900.0, gt=0.0)


class PathsConfig(BaseModel):
    """Filesystem locations.

    Attributes:
        data_dir: Base directory for the on-device stores. Default ~/.tripsight
        log_dir: Log directory. Default: data_dir/logs
    """

    data_dir: Path = Field(default_factory=lambda: Path.home() / ".tripsight")
    log_dir: Path | None = None

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Any:
        """Expand ~ and resolve path."""
        if isinstance(v, (str, Path)):
            return Path(v).expanduser().resolve()
        return v

    @model_validator(mode="after")
    def resolve_defaults(self) -> "PathsConfig":
        if self.log_dir is None:
            object.__setattr__(self, "log_dir", self.data_dir / "logs")
        else:
            object.__setattr__(self, "log_dir", Path(self.log_dir).expanduser().resolve())
        return self

    @property
    def local_store_dir(self) -> Path:
        return self.data_dir / "local"

    @property
    def remote_store_dir(self) -> Path:
        return self.data_dir / "remote"


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Configuration priority (highest wins):
    1. Environment variables (TRIPSIGHT_*, nested with __)
    2. Config file (YAML)
    3. In-code defaults

    Example:
        >>> # TRIPSIGHT_GENERATION__CONCURRENT=false serializes the fan-out
        >>> config = AppConfig()
        >>> config.generation.concurrent
        True
    """

    ai: AIConfig = Field(default_factory=AIConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    debug: bool = Field(default=False, description="Enable debug mode.")
    verbose: bool = Field(default=False, description="Enable verbose output.")

    model_config = {
        "env_prefix": "TRIPSIGHT_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }


# =============================================================================
# API Key Management
# =============================================================================


class APIKeyManager:
    """Look up the Gemini API key.

    Sources, in priority order:
    1. Environment variable (GEMINI_API_KEY, then GOOGLE_API_KEY)
    2. System keyring

    The key is wrapped in SecretStr and cached after the first hit.
    """

    KEYRING_SERVICE = "tripsight"
    KEYRING_USERNAME = "gemini"
    ENV_VAR_NAMES = ("GEMINI_API_KEY", "GOOGLE_API_KEY")

    def __init__(self) -> None:
        self._cached_key: SecretStr | None = None
        self._key_source: KeySource = KeySource.NONE

    def get_key(self) -> SecretStr | None:
        if self._cached_key is not None:
            return self._cached_key

        for var_name in self.ENV_VAR_NAMES:
            value = os.environ.get(var_name, "").strip()
            if value:
                self._cached_key = SecretStr(value)
                self._key_source = KeySource.ENVIRONMENT
                logger.debug(f"API key loaded from {var_name}")
                return self._cached_key

        value = self._read_from_keyring()
        if value:
            self._cached_key = SecretStr(value)
            self._key_source = KeySource.KEYRING
            logger.debug("API key loaded from system keyring")
            return self._cached_key

        self._key_source = KeySource.NONE
        return None

    def get_key_source(self) -> KeySource:
        return self._key_source

    def store_key(self, key: str) -> None:
        """Store the key in the system keyring.

        Raises:
            ConfigError: If the keyring backend refuses the write.
        """
        key = key.strip()
        if not key or any(c.isspace() for c in key):
            raise APIKeyError("API key must be non-empty and contain no whitespace.")
        try:
            keyring.set_password(self.KEYRING_SERVICE, self.KEYRING_USERNAME, key)
        except keyring.errors.KeyringError as e:
            raise ConfigError(f"Failed to store key in keyring: {type(e).__name__}") from e
        self._cached_key = None
        self._key_source = KeySource.NONE
        logger.info("API key stored in system keyring")

    def _read_from_keyring(self) -> str | None:
        try:
            return keyring.get_password(self.KEYRING_SERVICE, self.KEYRING_USERNAME)
        except keyring.errors.KeyringError as e:
            logger.debug(f"Keyring unavailable: {type(e).__name__}")
            return None


# =============================================================================
# Loading
# =============================================================================


def _default_search_paths(path: Path | None) -> list[Path | None]:
    return [
        path,
        Path("./tripsight.yaml"),
        Path("./tripsight.yml"),
        Path.home() / ".tripsight" / "config.yaml",
    ]


def _read_yaml(config_file: Path) -> dict[str, Any]:
    """Read a YAML config file.

    Raises:
        ConfigFileError: If the file cannot be read or is not a mapping.
    """
    try:
        content = config_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(f"Cannot read config file {config_file}: {e}") from e

    try:
        loaded = yaml.safe_load(content) if content.strip() else None
    except yaml.YAMLError as e:
        raise ConfigFileError(f"Malformed YAML in {config_file}: {e}") from e

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigFileError(f"Config file {config_file} must contain a mapping")
    return loaded


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from file, environment, and defaults.

    If no config file is found, uses defaults only (not an error). If the
    file is malformed, logs a warning and uses defaults.

    Args:
        path: Optional path to config file. If None, searches default locations.

    Returns:
        Fully-populated AppConfig instance.
    """
    config_data: dict[str, Any] = {}

    config_file: Path | None = None
    for search_path in _default_search_paths(path):
        if search_path is not None and search_path.exists():
            config_file = search_path
            break

    if config_file is not None:
        try:
            config_data = _read_yaml(config_file)
            logger.debug(f"Loaded config from {config_file}")
        except ConfigFileError as e:
            logger.warning(f"{e}. Using defaults.")

    merged = {
        section: dict(values) if isinstance(values, dict) else values
        for section, values in config_data.items()
    }
    _overlay_environment(merged)

    try:
        return AppConfig(**merged)
    except ValidationError as e:
        logger.warning(
            f"Error parsing config values: {e.error_count()} invalid field(s). Using defaults."
        )
        return AppConfig()


def _overlay_environment(merged: dict[str, Any]) -> None:
    """Overlay TRIPSIGHT_* variables on file values (environment wins)."""
    prefix = "TRIPSIGHT_"
    for name, value in os.environ.items():
        if not name.upper().startswith(prefix):
            continue
        parts = name[len(prefix):].lower().split("__")
        target = merged
        for part in parts[:-1]:
            nested = target.setdefault(part, {})
            if not isinstance(nested, dict):
                break
            target = nested
        else:
            target[parts[-1]] = value


@functools.lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get the cached configuration singleton."""
    return load_config()


def get_api_key() -> SecretStr:
    """Get the Gemini API key.

    Raises:
        APIKeyNotFoundError: If no API key is configured in any source.
    """
    key = APIKeyManager().get_key()
    if key is None:
        raise APIKeyNotFoundError(
            "No API key found. Set GEMINI_API_KEY or store one with "
            "'tripsight config set-key'."
        )
    return key


def reset_config() -> None:
    """Clear the configuration cache (used by tests)."""
    get_config.cache_clear()
