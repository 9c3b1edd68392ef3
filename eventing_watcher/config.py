"""Configuration management for the eventing watcher."""

import os
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


ALERT_TYPE_NONE = 0
ALERT_TYPE_SLACK = 1
ALERT_TYPE_TEAMS = 2


class ConfigError(ValueError):
    """Raised when the watcher cannot start because its configuration is incomplete."""


class WatcherConfig(BaseModel):
    """Main configuration for the eventing watcher."""

    # Couchbase Eventing REST API
    couchbase_host: str = Field(..., min_length=1, description="Eventing service base URL, e.g. http://cb:8096")
    couchbase_username: str = Field(..., min_length=1, description="Couchbase user with eventing read access")
    couchbase_password: str = Field(..., min_length=1, description="Couchbase password")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates of the eventing service")
    request_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout")

    # Health thresholds
    dcp_backlog_threshold: int = Field(..., ge=0, description="Max DCP backlog before a function is flagged")

    # Scheduling
    cron_schedule: str = Field(..., min_length=1, description="Cron expression for reconciliation passes")
    fallback_interval_seconds: int = Field(default=300, ge=1, description="Interval used when the cron expression is unusable")
    check_concurrency: int = Field(default=5, ge=1, description="Functions checked concurrently per pass")

    # Alerting
    alert_type: int = Field(..., description="0 = disabled, 1 = Slack, 2 = Teams")
    slack_webhook_url: Optional[str] = Field(default=None, description="Slack incoming webhook URL")
    teams_webhook_url: Optional[str] = Field(default=None, description="Teams incoming webhook URL")

    # Health server / storage
    health_check_port: int = Field(default=8080, ge=1, le=65535, description="Port for the /health endpoint")
    health_check_host: str = Field(default="0.0.0.0", description="Bind address for the health server")
    db_path: str = Field(default="data/health_check.sqlite", description="SQLite file holding function status history")

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("couchbase_host")
    @classmethod
    def _strip_host(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("cron_schedule")
    @classmethod
    def _normalize_cron(cls, value: str) -> str:
        # Field syntax is checked by the scheduler.
        value = " ".join(value.split())
        if not value:
            raise ValueError("cron_schedule must not be blank")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @model_validator(mode="after")
    def _check_transport(self) -> "WatcherConfig":
        if self.alert_type not in (ALERT_TYPE_NONE, ALERT_TYPE_SLACK, ALERT_TYPE_TEAMS):
            raise ValueError(f"alert_type must be 0, 1 or 2, got {self.alert_type}")
        if self.alert_type == ALERT_TYPE_SLACK and not (self.slack_webhook_url or "").strip():
            raise ValueError("slack_webhook_url is required when alert_type=1")
        if self.alert_type == ALERT_TYPE_TEAMS and not (self.teams_webhook_url or "").strip():
            raise ValueError("teams_webhook_url is required when alert_type=2")
        return self


# env var -> (config key, converter)
_ENV_OVERRIDES: dict[str, tuple[str, Any]] = {
    "COUCHBASE_HOST": ("couchbase_host", str),
    "COUCHBASE_USERNAME": ("couchbase_username", str),
    "COUCHBASE_PASSWORD": ("couchbase_password", str),
    "COUCHBASE_VERIFY_TLS": ("verify_tls", lambda v: v.strip().lower() in ("true", "1", "yes")),
    "REQUEST_TIMEOUT_SECONDS": ("request_timeout_seconds", float),
    "DCP_BACKLOG_THRESHOLD": ("dcp_backlog_threshold", int),
    "CRON_SCHEDULE": ("cron_schedule", str),
    "SERVICE_CHECK_INTERVAL_SECONDS": ("fallback_interval_seconds", int),
    "CHECK_CONCURRENCY": ("check_concurrency", int),
    "ALERT_TYPE": ("alert_type", int),
    "SLACK_WEBHOOK_URL": ("slack_webhook_url", str),
    "TEAMS_WEBHOOK_URL": ("teams_webhook_url", str),
    "HEALTH_CHECK_PORT": ("health_check_port", int),
    "HEALTH_CHECK_HOST": ("health_check_host", str),
    "DB_PATH": ("db_path", str),
    "LOG_LEVEL": ("log_level", str),
}


def _env_overrides(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    out: dict[str, Any] = {}
    for name, (key, convert) in _ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or not str(raw).strip():
            continue
        try:
            out[key] = convert(str(raw).strip())
        except ValueError as exc:
            raise ConfigError(f"Invalid value for {name}: {raw!r}") from exc
    return out


def load_config(config_path: Optional[str] = None, environ: Optional[dict[str, str]] = None) -> WatcherConfig:
    """Load configuration from a YAML file and environment variables.

    Environment variables win over file values. Raises ConfigError when a
    required value is missing or invalid.
    """
    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = env.get("EVENTING_WATCHER_CONFIG", "config/eventing_watcher.yaml")

    config_data: dict[str, Any] = {}
    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigError("Config YAML must be a mapping")
        config_data.update(loaded)

    config_data.update(_env_overrides(env))

    try:
        return WatcherConfig(**config_data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(f"Invalid watcher configuration: {problems}") from exc
