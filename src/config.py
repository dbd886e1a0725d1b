"""Environment-driven settings for the bridge."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from src.bridge.errors import ConfigurationError

UPSTREAM_MODES = ("request", "stream")
RESPONSE_MODES = ("sync", "accept")


@dataclass(frozen=True)
class BridgeSettings:
    upstream_url: str | None = None
    upstream_token: str | None = None
    upstream_mode: str = "request"
    upstream_timeout: float = 25.0
    stream_timeout: float = 30.0
    stream_max_attempts: int = 3
    stream_backoff: float = 2.0
    webhook_timeout: float = 10.0
    response_mode: str = "sync"
    tracker_retention: float = 3600.0
    cors_allow_origin: str = "*"
    audit_log_path: str | None = None
    audit_log_max_bytes: int = 10_485_760
    audit_log_backup_count: int = 5
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.upstream_mode not in UPSTREAM_MODES:
            raise ConfigurationError(
                f"UPSTREAM_MODE must be one of {UPSTREAM_MODES}, got {self.upstream_mode!r}"
            )
        if self.response_mode not in RESPONSE_MODES:
            raise ConfigurationError(
                f"RESPONSE_MODE must be one of {RESPONSE_MODES}, got {self.response_mode!r}"
            )
        if self.stream_max_attempts < 1:
            raise ConfigurationError("STREAM_MAX_ATTEMPTS must be at least 1")

    @property
    def is_configured(self) -> bool:
        return bool(self.upstream_url)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BridgeSettings:
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            upstream_url=env.get("UPSTREAM_URL") or env.get("ZAPIER_MCP_URL") or None,
            upstream_token=env.get("UPSTREAM_TOKEN") or None,
            upstream_mode=env.get("UPSTREAM_MODE", "request").lower(),
            upstream_timeout=_number(env, "UPSTREAM_TIMEOUT", 25.0),
            stream_timeout=_number(env, "STREAM_TIMEOUT", 30.0),
            stream_max_attempts=int(_number(env, "STREAM_MAX_ATTEMPTS", 3)),
            stream_backoff=_number(env, "STREAM_BACKOFF", 2.0),
            webhook_timeout=_number(env, "WEBHOOK_TIMEOUT", 10.0),
            response_mode=env.get("RESPONSE_MODE", "sync").lower(),
            tracker_retention=_number(env, "TRACKER_RETENTION", 3600.0),
            cors_allow_origin=env.get("CORS_ALLOW_ORIGIN", "*"),
            audit_log_path=env.get("AUDIT_LOG_PATH") or None,
            audit_log_max_bytes=int(_number(env, "AUDIT_LOG_MAX_BYTES", 10_485_760)),
            audit_log_backup_count=int(_number(env, "AUDIT_LOG_BACKUP_COUNT", 5)),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )


def _number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative")
    return value
