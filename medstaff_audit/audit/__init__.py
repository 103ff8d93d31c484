"""
Audit Event Model
=================
Taxonomy, classification, redaction and enrichment of audit events.
"""

from .event_types import (
    ActionType,
    ComplianceStandard,
    EventType,
    ResourceType,
    SeverityLevel,
    UserRole,
)
from .taxonomy import (
    EVENT_CONFIG,
    EXCLUDED_ROUTES,
    HIPAA_SENSITIVE_ROUTES,
    HTTP_METHOD_TO_ACTION,
    REDACTED,
    ROUTE_RULES,
    SENSITIVE_FIELDS,
    RouteRule,
    SingleEvent,
    SuccessFailureEvent,
)
from .classifier import EventConfig, classify, get_event_config, resolve_severity
from .redaction import redact
from .models import AuditEvent, Principal, RequestSnapshot, ResponseSnapshot
from .enricher import enrich

__all__ = [
    # Event Types
    "ActionType",
    "ComplianceStandard",
    "EventType",
    "ResourceType",
    "SeverityLevel",
    "UserRole",
    # Taxonomy
    "EVENT_CONFIG",
    "EXCLUDED_ROUTES",
    "HIPAA_SENSITIVE_ROUTES",
    "HTTP_METHOD_TO_ACTION",
    "REDACTED",
    "ROUTE_RULES",
    "SENSITIVE_FIELDS",
    "RouteRule",
    "SingleEvent",
    "SuccessFailureEvent",
    # Classifier
    "EventConfig",
    "classify",
    "get_event_config",
    "resolve_severity",
    # Redaction
    "redact",
    # Models
    "AuditEvent",
    "Principal",
    "RequestSnapshot",
    "ResponseSnapshot",
    # Enricher
    "enrich",
]
