"""
Audit Configuration
===================
Environment-driven settings for the audit pipeline.

The pipeline is enabled only when an Event Hubs connection string is
present. Without it every component stays in a disabled, no-op state.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .audit.taxonomy import EXCLUDED_ROUTES, HIPAA_SENSITIVE_ROUTES, SENSITIVE_FIELDS


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return tuple(default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class AuditSettings:
    """Audit pipeline configuration."""

    brokers: Tuple[str, ...] = ()
    client_id: str = "ms-security"
    connection_string: Optional[str] = None
    topic: str = "audit-events"
    service_name: str = "ms-security"

    excluded_routes: Tuple[str, ...] = EXCLUDED_ROUTES
    hipaa_routes: Tuple[str, ...] = HIPAA_SENSITIVE_ROUTES
    sensitive_fields: Tuple[str, ...] = SENSITIVE_FIELDS

    # Retry queue
    retry_max_attempts: int = 3
    retry_delay: float = 1.0
    drain_interval: float = 5.0
    retry_queue_size: int = 10000
    shutdown_timeout: float = 10.0

    # Transport (seconds)
    connect_timeout: float = 10.0
    reconnect_cooldown: float = 1.0
    request_timeout: float = 30.0
    retry_backoff: float = 0.1

    max_body_bytes: int = 65536

    extra_producer_options: dict = field(default_factory=dict)

    @property
    def enabled(self) -> bool:
        """True when a bus credential is configured."""
        return bool(self.connection_string)

    @classmethod
    def from_env(cls) -> "AuditSettings":
        """Build settings from AUDIT_* environment variables."""
        return cls(
            brokers=_env_list("AUDIT_EVENT_HUB_BROKERS", ()),
            client_id=os.getenv("AUDIT_EVENT_HUB_CLIENT_ID", "ms-security"),
            connection_string=os.getenv("AUDIT_EVENT_HUB_CONNECTION_STRING") or None,
            topic=os.getenv("AUDIT_EVENT_HUB_TOPIC", "audit-events"),
            service_name=os.getenv("AUDIT_SERVICE_NAME", "ms-security"),
            excluded_routes=_env_list("AUDIT_EXCLUDED_ROUTES", EXCLUDED_ROUTES),
            hipaa_routes=_env_list("AUDIT_HIPAA_ROUTES", HIPAA_SENSITIVE_ROUTES),
            sensitive_fields=_env_list("AUDIT_SENSITIVE_FIELDS", SENSITIVE_FIELDS),
            retry_max_attempts=_env_int("AUDIT_RETRY_MAX_ATTEMPTS", 3),
            retry_delay=_env_float("AUDIT_RETRY_DELAY", 1.0),
            drain_interval=_env_float("AUDIT_RETRY_INTERVAL", 5.0),
            retry_queue_size=_env_int("AUDIT_RETRY_QUEUE_SIZE", 10000),
            shutdown_timeout=_env_float("AUDIT_SHUTDOWN_TIMEOUT", 10.0),
            connect_timeout=_env_float("AUDIT_CONNECT_TIMEOUT", 10.0),
            reconnect_cooldown=_env_float("AUDIT_RECONNECT_COOLDOWN", 1.0),
            request_timeout=_env_float("AUDIT_REQUEST_TIMEOUT", 30.0),
            max_body_bytes=_env_int("AUDIT_MAX_BODY_BYTES", 65536),
        )
