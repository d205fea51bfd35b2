"""
Configuration management for lanotify.

Uses Pydantic Settings for environment variable validation and type safety.
An optional YAML file (config.yaml) supplies the same fields; values passed
explicitly (CLI flags) win over the file, the file wins over environment
variables, and environment variables win over defaults.
"""

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lanotify.core.exceptions import LanotifyError
from lanotify.inventory.models import normalize_mac

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


class ConfigError(LanotifyError):
    """Raised when the configuration file or values are invalid."""
    pass


class ScanConfig(BaseSettings):
    """Discovery scan configuration."""

    command: str = Field(
        default="arp-scan",
        description="Discovery tool executable (name on PATH or absolute path)"
    )
    interface: Optional[str] = Field(
        default=None,
        description="Network interface to scan (default: arp-scan's choice)"
    )
    extra_args: List[str] = Field(
        default_factory=list,
        description="Additional arguments passed to the discovery tool"
    )
    interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Delay between scans when everything is healthy"
    )
    timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Kill the discovery tool after this many seconds"
    )
    max_backoff_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Upper bound for the retry delay after failed scans"
    )

    model_config = SettingsConfigDict(env_prefix="SCAN_")

    @model_validator(mode="after")
    def validate_backoff(self) -> "ScanConfig":
        """Backoff must never be shorter than the regular interval."""
        if self.max_backoff_seconds < self.interval_seconds:
            raise ValueError(
                "max_backoff_seconds must be greater than or equal to interval_seconds"
            )
        return self


class NotifyConfig(BaseSettings):
    """Notification configuration."""

    debounce_seconds: Optional[float] = Field(
        default=None,
        ge=0,
        description="Flap suppression window (default: scan interval plus scan timeout)"
    )
    notify_unknown: bool = Field(
        default=True,
        description="Notify for devices without a configured friendly name"
    )
    quiet_first_scan: bool = Field(
        default=False,
        description="Populate an empty registry silently on the first scan"
    )
    desktop_enabled: bool = Field(
        default=True,
        description="Send desktop notifications through notify-send"
    )
    webhook_url: str = Field(
        default="",
        description="Webhook endpoint URL (empty disables the webhook)"
    )
    webhook_token: str = Field(
        default="",
        description="Optional bearer token for the webhook"
    )
    webhook_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Webhook request timeout in seconds"
    )

    model_config = SettingsConfigDict(env_prefix="NOTIFY_")


class StorageConfig(BaseSettings):
    """State file configuration."""

    path: str = Field(
        default="lanotify-state.json",
        description="Path of the JSON registry state file"
    )

    model_config = SettingsConfigDict(env_prefix="STATE_")


class ApiConfig(BaseSettings):
    """Status API configuration."""

    enabled: bool = Field(default=False, description="Serve the status API")
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8765, ge=1, le=65535, description="Bind port")

    model_config = SettingsConfigDict(env_prefix="API_")


class AppConfig(BaseSettings):
    """Main application configuration."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    devices: Dict[str, str] = Field(
        default_factory=dict,
        description="Friendly device names keyed by MAC address"
    )

    # Nested configurations
    scan: ScanConfig = Field(default_factory=ScanConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = SettingsConfigDict(env_prefix="LANOTIFY_", case_sensitive=False)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v

    @field_validator("devices")
    @classmethod
    def normalize_device_keys(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Store friendly names under canonical MAC addresses."""
        normalized = {}
        for mac, name in v.items():
            canonical = normalize_mac(mac)
            if canonical is None:
                raise ValueError(f"Invalid MAC address in devices: {mac!r}")
            normalized[canonical] = name
        return normalized

    @property
    def debounce_window(self) -> timedelta:
        """
        Effective debounce window.

        Defaults to one full scan cycle: consecutive scans are the interval
        plus the scan duration apart, and a scan never outlasts its timeout.
        """
        seconds = self.notify.debounce_seconds
        if seconds is None:
            seconds = self.scan.interval_seconds + self.scan.timeout_seconds
        return timedelta(seconds=seconds)


_SECTIONS = {
    "scan": ScanConfig,
    "notify": NotifyConfig,
    "storage": StorageConfig,
    "api": ApiConfig,
}


def _read_config_file(path: Path) -> Dict[str, Any]:
    """Read a YAML config file into a dictionary."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at top level")
    return data


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> AppConfig:
    """
    Build the application configuration.

    Args:
        path: YAML config file. When None, config.yaml in the working
            directory is used if it exists.
        overrides: Explicit values (e.g. from CLI flags). Nested sections are
            given as dictionaries, e.g. {"scan": {"interface": "eth0"}}.

    Returns:
        AppConfig: Validated configuration

    Raises:
        ConfigError: If the file is unreadable or a value is invalid
    """
    data: Dict[str, Any] = {}
    if path is not None:
        data = _read_config_file(Path(path))
        logger.debug(f"Loaded config file {path}")
    elif Path(DEFAULT_CONFIG_PATH).is_file():
        data = _read_config_file(Path(DEFAULT_CONFIG_PATH))
        logger.debug(f"Loaded config file {DEFAULT_CONFIG_PATH}")

    overrides = dict(overrides or {})
    kwargs: Dict[str, Any] = {}

    try:
        for name, section_cls in _SECTIONS.items():
            section = dict(data.pop(name, None) or {})
            section.update(
                {k: v for k, v in (overrides.pop(name, None) or {}).items() if v is not None}
            )
            kwargs[name] = section_cls(**section)

        kwargs.update(data)
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return AppConfig(**kwargs)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
