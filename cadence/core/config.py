"""
Configuration Management for the Cadence Session Engine

Provides validated configuration with sensible defaults.
Supports environment variable overrides (prefix CADENCE_).

Design:
- Immutable after construction
- Fail-fast on invalid configuration via validate()
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from cadence.core.types import Result, Ok, Err
from cadence.core import constants as C


@dataclass(frozen=True)
class SchedulerConfig:
    """Timer and timeout settings for the scheduler."""

    safety_margin_seconds: float = C.SAFETY_MARGIN_SECONDS
    cleanup_grace_seconds: float = C.CLEANUP_GRACE_SECONDS
    action_timeout_seconds: float = C.ACTION_TIMEOUT_SECONDS
    setup_timeout_seconds: float = C.SETUP_TIMEOUT_SECONDS
    max_active_sessions: int = C.MAX_ACTIVE_SESSIONS


@dataclass(frozen=True)
class HttpConfig:
    """Endpoints and client settings for the HTTP collaborators."""

    resolver_url: Optional[str] = None
    resolver_id_field: str = C.DEFAULT_RESOLVER_ID_FIELD
    resolver_timeout_seconds: float = C.RESOLVER_TIMEOUT_SECONDS
    action_url: Optional[str] = None
    action_method: str = C.DEFAULT_ACTION_METHOD
    user_agent: str = C.DEFAULT_USER_AGENT
    verify_tls: bool = True


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging and metrics configuration."""

    log_level: str = "INFO"
    log_json: bool = True
    metrics_enabled: bool = True


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineConfig:
    """Root configuration for the engine."""

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> Result[EngineConfig, str]:
        """
        Load configuration from environment variables.

        Example: CADENCE_CLEANUP_GRACE_SECONDS=600, CADENCE_ACTION_URL=...
        """
        try:
            scheduler = SchedulerConfig(
                safety_margin_seconds=float(os.getenv(
                    "CADENCE_SAFETY_MARGIN_SECONDS", str(C.SAFETY_MARGIN_SECONDS),
                )),
                cleanup_grace_seconds=float(os.getenv(
                    "CADENCE_CLEANUP_GRACE_SECONDS", str(C.CLEANUP_GRACE_SECONDS),
                )),
                action_timeout_seconds=float(os.getenv(
                    "CADENCE_ACTION_TIMEOUT_SECONDS", str(C.ACTION_TIMEOUT_SECONDS),
                )),
                setup_timeout_seconds=float(os.getenv(
                    "CADENCE_SETUP_TIMEOUT_SECONDS", str(C.SETUP_TIMEOUT_SECONDS),
                )),
                max_active_sessions=int(os.getenv(
                    "CADENCE_MAX_ACTIVE_SESSIONS", str(C.MAX_ACTIVE_SESSIONS),
                )),
            )

            http = HttpConfig(
                resolver_url=os.getenv("CADENCE_RESOLVER_URL") or None,
                resolver_id_field=os.getenv(
                    "CADENCE_RESOLVER_ID_FIELD", C.DEFAULT_RESOLVER_ID_FIELD,
                ),
                action_url=os.getenv("CADENCE_ACTION_URL") or None,
                action_method=os.getenv(
                    "CADENCE_ACTION_METHOD", C.DEFAULT_ACTION_METHOD,
                ).upper(),
                user_agent=os.getenv("CADENCE_USER_AGENT", C.DEFAULT_USER_AGENT),
                verify_tls=_env_bool("CADENCE_VERIFY_TLS", True),
            )

            observability = ObservabilityConfig(
                log_level=os.getenv("CADENCE_LOG_LEVEL", "INFO").upper(),
                log_json=_env_bool("CADENCE_LOG_JSON", True),
                metrics_enabled=_env_bool("CADENCE_METRICS_ENABLED", True),
            )

            return Ok(cls(scheduler=scheduler, http=http, observability=observability))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        s = self.scheduler
        if s.safety_margin_seconds < 0:
            return Err("safety_margin_seconds cannot be negative")
        if s.cleanup_grace_seconds < 0:
            return Err("cleanup_grace_seconds cannot be negative")
        if s.action_timeout_seconds <= 0:
            return Err("action_timeout_seconds must be > 0")
        if s.setup_timeout_seconds <= 0:
            return Err("setup_timeout_seconds must be > 0")
        if s.max_active_sessions < 0:
            return Err("max_active_sessions cannot be negative")
        if self.http.action_method not in ("GET", "POST", "PUT", "PATCH", "DELETE"):
            return Err(f"Unsupported action method: {self.http.action_method}")
        if self.observability.log_level not in (
            "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL",
        ):
            return Err(f"Unknown log level: {self.observability.log_level}")
        return Ok(None)
