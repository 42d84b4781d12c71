# =============================================================================
# ISSUE TRIAGE MONITOR - CONFIGURATION
# =============================================================================
"""
Configuration Loading

Reads the YAML configuration file, applies environment variable
overrides and fills in defaults for every section.

Sections:
    - github: credential, repository and quota guard settings
    - logging: level, format and log files
    - metrics: retention, rollup interval, Prometheus port
    - health: cycle interval, probe timeout, history size
    - alerts: cooldown, hourly ceiling, thresholds
    - notifications: slack, webhook and email channels

Usage:
    config = load_config("config/monitoring.yaml")
    client = GitHubClient(**github_client_kwargs(config))
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when the configuration file or an override is invalid."""


# Environment variable -> (section, key, type)
ENV_MAPPINGS = {
    "GITHUB_TOKEN": ("github", "token", str),
    "GITHUB_REPO": ("github", "repo", str),
    "GITHUB_API_URL": ("github", "base_url", str),
    "LOG_LEVEL": ("logging", "level", str),
    "HEALTH_CHECK_INTERVAL": ("health", "interval", int),
    "METRICS_RETENTION_DAYS": ("metrics", "retention_days", int),
    "METRICS_PORT": ("metrics", "port", int),
    "ALERT_COOLDOWN": ("alerts", "cooldown_seconds", int),
    "MAX_ALERTS_PER_HOUR": ("alerts", "max_alerts_per_hour", int),
}

# Environment variables that enable a notification channel
CHANNEL_ENV = {
    "SLACK_WEBHOOK_URL": ("slack", "webhook_url"),
    "ALERT_WEBHOOK_URL": ("webhook", "url"),
}

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "github": {
        "token": "",
        "repo": "",
        "base_url": "https://api.github.com",
        "timeout": 30,
        "retry_count": 3,
        "rate_limit_buffer": 0.2,
        "low_water_mark": 10,
        "reset_buffer_seconds": 1.0,
        "max_wait_seconds": 3600,
    },
    "logging": {
        "level": "INFO",
        "format": "json",
        "log_dir": None,
        "audit_file": None,
    },
    "metrics": {
        "retention_days": 30,
        "aggregation_interval": 300,
        "enable_performance_tracking": True,
        "port": None,
    },
    "health": {
        "interval": 60,
        "timeout_seconds": 30,
        "history_size": 100,
    },
    "alerts": {
        "cooldown_seconds": 300,
        "max_alerts_per_hour": 10,
        "max_history": 1000,
        "metrics_window": 3600,
        "thresholds": {},
    },
    "notifications": {},
}

# Keys that must be positive numbers after merging
_POSITIVE = {
    "health": ("interval", "timeout_seconds", "history_size"),
    "metrics": ("retention_days", "aggregation_interval"),
    "alerts": ("max_alerts_per_hour", "max_history", "metrics_window"),
}


def _convert(env_var: str, value: str, cast) -> Any:
    if cast is str:
        return value
    try:
        return cast(value)
    except ValueError as e:
        raise ConfigError(f"{env_var} must be an integer, got {value!r}") from e


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file and environment variables.

    Environment variables override YAML values.

    Args:
        config_path: Path to monitoring.yaml (optional)

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigError: On unreadable YAML or invalid values
    """
    config: Dict[str, Any] = {}

    if config_path:
        config_file = Path(config_path)
        if config_file.exists():
            try:
                with open(config_file, encoding="utf-8") as f:
                    config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
            if not isinstance(config, dict):
                raise ConfigError(f"{config_path} must contain a mapping")
            logger.info(f"Loaded config from {config_path}")
        else:
            logger.warning(f"Config file not found: {config_path}, using defaults")

    for env_var, (section, key, cast) in ENV_MAPPINGS.items():
        value = os.environ.get(env_var)
        if value is not None and value != "":
            config.setdefault(section, {})[key] = _convert(env_var, value, cast)

    for env_var, (channel, key) in CHANNEL_ENV.items():
        value = os.environ.get(env_var)
        if value:
            section = config.setdefault("notifications", {}).setdefault(channel, {})
            section[key] = value
            section.setdefault("enabled", True)

    for section, section_defaults in DEFAULTS.items():
        current = config.get(section)
        if current is None:
            current = config[section] = {}
        if not isinstance(current, dict):
            raise ConfigError(f"Config section {section} must be a mapping")
        for key, default_value in section_defaults.items():
            if key not in current:
                current[key] = copy.deepcopy(default_value)

    validate_config(config)
    return config


def validate_config(config: Dict[str, Any]) -> None:
    """
    Check numeric settings.

    Raises:
        ConfigError: If a value is missing, non-numeric or out of range
    """
    for section, keys in _POSITIVE.items():
        for key in keys:
            value = config[section].get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{section}.{key} must be a positive number, got {value!r}")

    cooldown = config["alerts"].get("cooldown_seconds")
    if isinstance(cooldown, bool) or not isinstance(cooldown, (int, float)) or cooldown < 0:
        raise ConfigError(f"alerts.cooldown_seconds must be >= 0, got {cooldown!r}")

    buffer = config["github"].get("rate_limit_buffer")
    if not isinstance(buffer, (int, float)) or not 0 <= buffer < 1:
        raise ConfigError(f"github.rate_limit_buffer must be in [0, 1), got {buffer!r}")

    if not isinstance(config["alerts"].get("thresholds"), dict):
        raise ConfigError("alerts.thresholds must be a mapping")


def github_client_kwargs(config: Dict[str, Any]) -> Dict[str, Any]:
    """Keyword arguments for GitHubClient from the github section."""
    github = config.get("github", {})
    return {
        "token": github.get("token") or None,
        "repo": github.get("repo") or None,
        "base_url": github.get("base_url"),
        "timeout": github.get("timeout"),
        "retry_count": github.get("retry_count"),
        "rate_limit_buffer": github.get("rate_limit_buffer", 0.2),
        "low_water_mark": github.get("low_water_mark", 10),
        "reset_buffer_seconds": github.get("reset_buffer_seconds", 1.0),
        "max_wait_seconds": github.get("max_wait_seconds", 3600),
    }


__all__ = [
    "ConfigError",
    "ENV_MAPPINGS",
    "DEFAULTS",
    "load_config",
    "validate_config",
    "github_client_kwargs",
]
