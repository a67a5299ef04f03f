"""Token lifecycle configuration from YAML file.

Loads the ``auth:`` section of config.yaml into :class:`AuthSettings`.
Environment variables ARE supported using ${VAR_NAME} and
${VAR_NAME:-default} syntax in YAML files.
"""

import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from usersync_auth.errors.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Default config file shipped alongside the package
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


@dataclass
class AuthSettings:
    """Settings for credential storage, acquisition, renewal and status display.

    All durations are in seconds.
    """

    broker_url: str | None = None
    broker_enabled: bool = True

    safety_buffer_seconds: float = 300
    max_token_age_seconds: float = 3600

    exchange_timeout_seconds: float = 30
    token_requests_per_second: float = 20

    renewal_buffer_seconds: float = 900
    health_check_interval_seconds: float = 300
    renewal_retry_delay_seconds: float = 60

    status_poll_interval_seconds: float = 10
    status_warning_threshold_seconds: float = 300

    credentials_file: str | None = None
    default_region: str = "NA"

    issuer: str | None = None
    audience: str | None = None
    clock_tolerance_seconds: float = 0

    log_level: str = "INFO"
    log_dir: str = "logs"
    json_logs: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthSettings":
        """Build settings from a (possibly string-valued) mapping.

        Unknown keys are ignored with a warning; empty strings become None
        for optional fields.
        """
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            logger.warning(f"Ignoring unknown auth settings: {unknown}")

        kwargs: dict[str, Any] = {}
        for name, value in data.items():
            if name not in known:
                continue
            kwargs[name] = _coerce(name, value, getattr(cls, name))
        return cls(**kwargs)

    def validate(self) -> None:
        """Check internal consistency.

        Raises:
            ConfigurationError: If any interval is non-positive or the
                safety buffer leaves no usable lifetime
        """
        positive = [
            "max_token_age_seconds",
            "exchange_timeout_seconds",
            "token_requests_per_second",
            "renewal_buffer_seconds",
            "health_check_interval_seconds",
            "renewal_retry_delay_seconds",
            "status_poll_interval_seconds",
        ]
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", context={"setting": name})

        for name in ("safety_buffer_seconds", "clock_tolerance_seconds",
                     "status_warning_threshold_seconds"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative", context={"setting": name})

        if self.safety_buffer_seconds >= self.max_token_age_seconds:
            raise ConfigurationError(
                "safety_buffer_seconds must be smaller than max_token_age_seconds"
            )

    @property
    def log_level_number(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convert YAML/env string values to the type of the field default."""
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None if default is None else default

    if isinstance(default, bool):
        if isinstance(value, str):
            return value.lower() in _TRUE_VALUES
        return bool(value)
    if isinstance(default, (int, float)) and not isinstance(default, bool):
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{name} must be numeric, got {value!r}", cause=e)
    if value is not None and not isinstance(value, str):
        return str(value)
    return value


def load_settings(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> AuthSettings:
    """Load settings from config.yaml.

    A missing file falls back to defaults. ``overrides`` win over the file.

    Raises:
        ConfigurationError: If the file has no ``auth:`` section or the
            resulting settings are inconsistent
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if config_path.exists():
        logger.info(f"Loading configuration from file: {config_path}")
        yaml_data = _expand_env_vars(load_yaml(config_path))
        if "auth" not in yaml_data:
            raise ConfigurationError(
                f"Invalid config file {config_path}: missing 'auth:' section"
            )
        auth_data = dict(yaml_data["auth"] or {})
    else:
        logger.warning(f"Configuration file not found: {config_path}, using defaults")
        auth_data = {}

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        auth_data.update(overrides)

    settings = AuthSettings.from_dict(auth_data)
    settings.validate()
    return settings


__all__ = [
    "AuthSettings",
    "load_settings",
    "load_yaml",
    "DEFAULT_CONFIG_FILE",
]
