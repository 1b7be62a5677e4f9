"""Configuration loader for the YAML runtime schema."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .models import (
    DetectorConfig,
    NotificationConfig,
    RingbaConfig,
    RuntimeConfig,
    SlackConfig,
)

DEFAULT_TIMEZONE = "America/New_York"


class ConfigurationError(RuntimeError):
    """Raised when the configuration file is invalid."""


def _resolve_env(value: Optional[str]) -> Optional[str]:
    """Support ${ENV_VAR} references in YAML values."""
    if value is None or not isinstance(value, str):
        return value
    value = value.strip()
    if value.startswith("${") and value.endswith("}"):
        env_name = value[2:-1]
        return os.getenv(env_name)
    return value


def _secret(section: Dict[str, Any], key: str, default_env: Optional[str] = None) -> Optional[str]:
    """Read ``key`` directly, then via ``<key>_env``, then from ``default_env``."""
    value = _resolve_env(section.get(key))
    env_name = section.get(f"{key}_env") or default_env
    if not value and env_name:
        value = os.getenv(env_name)
    return value or None


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration root must be a YAML mapping.")
    return data


def _as_int(section: Dict[str, Any], key: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(section.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'{key}' must be an integer") from exc
    if value < minimum:
        raise ConfigurationError(f"'{key}' must be >= {minimum}")
    return value


def _as_float(section: Dict[str, Any], key: str, default: float) -> float:
    try:
        value = float(section.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'{key}' must be a number") from exc
    if value < 0:
        raise ConfigurationError(f"'{key}' must not be negative")
    return value


def _parse_ringba_config(data: Optional[Dict[str, Any]]) -> RingbaConfig:
    section = data or {}
    if not isinstance(section, dict):
        raise ConfigurationError("'ringba' must be a mapping.")

    account_id = _secret(section, "account_id", default_env="RINGBA_ACCOUNT_ID")
    if not account_id:
        raise ConfigurationError("Ringba account id not found. Define ringba.account_id or RINGBA_ACCOUNT_ID.")
    api_token = _secret(section, "api_token", default_env="RINGBA_API_TOKEN")
    if not api_token:
        raise ConfigurationError("Ringba API token not found. Define ringba.api_token or ringba.api_token_env.")

    return RingbaConfig(
        account_id=str(account_id),
        api_token=str(api_token),
        base_url=_resolve_env(section.get("base_url")) or "https://api.ringba.com/v2",
        timeout_seconds=_as_float(section, "timeout_seconds", 30.0),
        page_size=min(150, _as_int(section, "page_size", 150, minimum=1)),
        max_records=_as_int(section, "max_records", 10000, minimum=1),
        detail_chunk_size=min(50, _as_int(section, "detail_chunk_size", 50, minimum=1)),
        max_retries=_as_int(section, "max_retries", 3),
        backoff_seconds=_as_float(section, "backoff_seconds", 1.0),
    )


def _parse_notification_config(data: Optional[Dict[str, Any]]) -> NotificationConfig:
    if not data:
        return NotificationConfig(slack_webhook=os.getenv("SLACK_WEBHOOK_URL") or None)
    slack_webhook = _secret(data, "slack_webhook", default_env="SLACK_WEBHOOK_URL")
    return NotificationConfig(
        slack_webhook=slack_webhook,
        timeout_seconds=_as_float(data, "timeout_seconds", 6.0),
    )


def _parse_slack_config(data: Optional[Dict[str, Any]]) -> SlackConfig:
    if not data:
        return SlackConfig()
    return SlackConfig(
        bot_token=_secret(data, "bot_token"),
        channel=_resolve_env(data.get("channel")),
    )


def _default_detectors() -> List[DetectorConfig]:
    return [
        DetectorConfig(name="consecutive_calls", same_bid=False, enrich_details=False),
        DetectorConfig(name="consecutive_calls_same_bid", same_bid=True, enrich_details=True),
    ]


def _parse_detectors(detectors_data: Optional[List[Dict[str, Any]]]) -> List[DetectorConfig]:
    if detectors_data is None:
        return _default_detectors()
    if not isinstance(detectors_data, list):
        raise ConfigurationError("'detectors' must be a list.")

    detectors: List[DetectorConfig] = []
    seen = set()
    for entry in detectors_data:
        if not isinstance(entry, dict):
            raise ConfigurationError("Each detector entry must be a mapping.")
        name = str(entry.get("name") or "").strip()
        if not name:
            raise ConfigurationError("Detector entry missing 'name'.")
        if name in seen:
            raise ConfigurationError(f"Duplicate detector name '{name}'.")
        seen.add(name)

        same_bid = bool(entry.get("same_bid", False))
        detectors.append(
            DetectorConfig(
                name=name,
                same_bid=same_bid,
                max_duration_seconds=_as_int(entry, "max_duration_seconds", 20),
                enrich_details=bool(entry.get("enrich_details", same_bid)),
                enabled=bool(entry.get("enabled", True)),
            )
        )
    return detectors


def _parse_timezone(value: Optional[str]) -> str:
    name = value or DEFAULT_TIMEZONE
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown time zone '{name}'") from exc
    return name


def load_runtime_config(path: str | Path = "config.yaml") -> RuntimeConfig:
    """Load configuration from YAML."""
    path = Path(path)
    raw = _load_yaml(path)

    markers = raw.get("restricted_markers", ["Restricted"])
    if not isinstance(markers, list):
        raise ConfigurationError("'restricted_markers' must be a list.")

    return RuntimeConfig(
        ringba=_parse_ringba_config(raw.get("ringba")),
        notifications=_parse_notification_config(raw.get("notifications")),
        slack=_parse_slack_config(raw.get("slack")),
        detectors=_parse_detectors(raw.get("detectors")),
        timezone_name=_parse_timezone(raw.get("timezone")),
        database_path=raw.get("database") or raw.get("database_path") or "dropwatch.db",
        lock_dir=str(raw.get("lock_dir") or "."),
        lock_stale_minutes=_as_int(raw, "lock_stale_minutes", 30, minimum=1),
        restricted_markers=[str(item) for item in markers if item],
    )
