"""
Medstaff Audit
==============
Audit event capture and delivery for the healthcare staff management
backend: an ASGI interceptor that classifies every call into a compliance
event, redacts it, and publishes it to Event Hubs with bounded retry.
"""

__version__ = "1.0.0"

# Audit model
from medstaff_audit.audit import (
    ActionType,
    AuditEvent,
    EventType,
    Principal,
    RequestSnapshot,
    ResourceType,
    ResponseSnapshot,
    SeverityLevel,
    UserRole,
    classify,
    enrich,
    get_event_config,
    redact,
)

# Configuration
from medstaff_audit.config import AuditSettings

# Errors
from medstaff_audit.errors import (
    AuditPipelineError,
    CaptureFailure,
    DeliveryFailure,
    RetryExhausted,
)

# Delivery
from medstaff_audit.delivery import DeliveryClient, DeliveryState, RetryItem, RetryQueue

# Metrics
from medstaff_audit.metrics import AuditMetrics, MetricNames

# Middleware & pipeline
from medstaff_audit.middleware import AuditInterceptor
from medstaff_audit.pipeline import AuditPipeline

# Logging
from medstaff_audit.log import setup_logging

__all__ = [
    "__version__",
    # Audit model
    "ActionType",
    "AuditEvent",
    "EventType",
    "Principal",
    "RequestSnapshot",
    "ResourceType",
    "ResponseSnapshot",
    "SeverityLevel",
    "UserRole",
    "classify",
    "enrich",
    "get_event_config",
    "redact",
    # Configuration
    "AuditSettings",
    # Errors
    "AuditPipelineError",
    "CaptureFailure",
    "DeliveryFailure",
    "RetryExhausted",
    # Delivery
    "DeliveryClient",
    "DeliveryState",
    "RetryItem",
    "RetryQueue",
    # Metrics
    "AuditMetrics",
    "MetricNames",
    # Middleware & pipeline
    "AuditInterceptor",
    "AuditPipeline",
    # Logging
    "setup_logging",
]
