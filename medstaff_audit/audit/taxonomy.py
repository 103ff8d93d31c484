"""
Audit Taxonomy
==============
Static tables that drive classification: per-event defaults, the ordered
route rules, and the default sensitive route/field sets.

Pure data, no state.
"""

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Pattern, Tuple, Union

from .event_types import ActionType, EventType, ResourceType, SeverityLevel


# ============================================================================
# Event defaults
# ============================================================================

@dataclass(frozen=True)
class EventDefaults:
    severity: SeverityLevel
    action: ActionType
    description: Optional[str] = None


HTTP_METHOD_TO_ACTION: Dict[str, ActionType] = {
    "POST": ActionType.CREATE,
    "GET": ActionType.READ,
    "PUT": ActionType.UPDATE,
    "PATCH": ActionType.UPDATE,
    "DELETE": ActionType.DELETE,
}

EVENT_CONFIG: Dict[EventType, EventDefaults] = {
    EventType.USER_LOGIN: EventDefaults(SeverityLevel.INFO, ActionType.LOGIN, "User login attempt successful"),
    EventType.USER_LOGOUT: EventDefaults(SeverityLevel.INFO, ActionType.LOGOUT, "User logged out"),
    EventType.USER_LOGIN_FAILED: EventDefaults(SeverityLevel.MEDIUM, ActionType.LOGIN, "Failed login attempt"),
    EventType.USER_CREATED: EventDefaults(SeverityLevel.LOW, ActionType.CREATE, "New user account created"),
    EventType.USER_UPDATED: EventDefaults(SeverityLevel.LOW, ActionType.UPDATE, "User account updated"),
    EventType.USER_DEACTIVATED: EventDefaults(SeverityLevel.MEDIUM, ActionType.UPDATE, "User account deactivated"),
    EventType.USER_PASSWORD_CHANGED: EventDefaults(SeverityLevel.MEDIUM, ActionType.UPDATE, "User password changed"),
    EventType.USER_ROLE_CHANGED: EventDefaults(SeverityLevel.HIGH, ActionType.UPDATE, "User role modified"),
    EventType.PATIENT_CREATED: EventDefaults(SeverityLevel.LOW, ActionType.CREATE, "New patient record created"),
    EventType.PATIENT_ACCESSED: EventDefaults(SeverityLevel.MEDIUM, ActionType.ACCESS, "Patient record accessed"),
    EventType.PATIENT_SEARCHED: EventDefaults(SeverityLevel.LOW, ActionType.SEARCH, "Patient records searched"),
    EventType.DOCUMENT_UPLOADED: EventDefaults(SeverityLevel.LOW, ActionType.UPLOAD, "Document uploaded"),
    EventType.DOCUMENT_ACCESSED: EventDefaults(SeverityLevel.MEDIUM, ActionType.ACCESS, "Document accessed"),
    EventType.SYSTEM_ERROR: EventDefaults(SeverityLevel.HIGH, ActionType.ERROR, "System error occurred"),
    EventType.SECURITY_VIOLATION: EventDefaults(SeverityLevel.CRITICAL, ActionType.VIOLATION, "Security violation detected"),
    EventType.UNAUTHORIZED_ACCESS_ATTEMPT: EventDefaults(SeverityLevel.CRITICAL, ActionType.VIOLATION, "Unauthorized access attempt"),
    EventType.HTTP_POST_REQUEST: EventDefaults(SeverityLevel.INFO, ActionType.CREATE),
    EventType.HTTP_GET_REQUEST: EventDefaults(SeverityLevel.INFO, ActionType.READ),
    EventType.HTTP_PUT_REQUEST: EventDefaults(SeverityLevel.INFO, ActionType.UPDATE),
    EventType.HTTP_DELETE_REQUEST: EventDefaults(SeverityLevel.LOW, ActionType.DELETE),
    EventType.HTTP_PATCH_REQUEST: EventDefaults(SeverityLevel.INFO, ActionType.UPDATE),
}


# ============================================================================
# Route rules
# ============================================================================

@dataclass(frozen=True)
class SingleEvent:
    """Rule outcome independent of the status code."""
    event_type: EventType


@dataclass(frozen=True)
class SuccessFailureEvent:
    """Rule outcome chosen by ``200 <= status < 300``."""
    success: EventType
    failure: EventType


EventMapping = Union[SingleEvent, SuccessFailureEvent]


@dataclass(frozen=True)
class RouteRule:
    pattern: Pattern
    mapping: EventMapping
    methods: Optional[FrozenSet[str]] = None

    def matches(self, method: str, path: str) -> bool:
        if not self.pattern.search(path):
            return False
        return self.methods is None or method in self.methods


def _rule(pattern: str, mapping: EventMapping, methods: Optional[Tuple[str, ...]] = None) -> RouteRule:
    return RouteRule(
        pattern=re.compile(pattern, re.IGNORECASE),
        mapping=mapping,
        methods=frozenset(methods) if methods else None,
    )


# First match wins. Several rules overlap (e.g. /users/42/role also matches
# GET /users/.+), so this order must not change.
ROUTE_RULES: Tuple[RouteRule, ...] = (
    _rule(r"/auth/sign-in", SuccessFailureEvent(EventType.USER_LOGIN, EventType.USER_LOGIN_FAILED)),
    _rule(r"/auth/sign-up", SingleEvent(EventType.USER_CREATED)),
    _rule(r"/auth/logout", SingleEvent(EventType.USER_LOGOUT)),
    _rule(r"/auth/verify-email", SingleEvent(EventType.USER_UPDATED)),
    _rule(r"/users/.*/password", SingleEvent(EventType.USER_PASSWORD_CHANGED)),
    _rule(r"/users/.*/role", SingleEvent(EventType.USER_ROLE_CHANGED)),
    _rule(r"/users/.*/status", SingleEvent(EventType.USER_DEACTIVATED)),
    _rule(r"/(users|patients)/search", SingleEvent(EventType.PATIENT_SEARCHED)),
    _rule(r"/admin/bulk-upload", SingleEvent(EventType.DOCUMENT_UPLOADED)),
    _rule(r"/patients/.+", SingleEvent(EventType.PATIENT_ACCESSED), ("GET",)),
    _rule(r"/users/.+", SingleEvent(EventType.PATIENT_ACCESSED), ("GET",)),
    _rule(r"/patients", SingleEvent(EventType.PATIENT_CREATED), ("POST",)),
    _rule(r"/users", SingleEvent(EventType.USER_CREATED), ("POST",)),
    _rule(r"/users", SingleEvent(EventType.USER_UPDATED), ("PUT", "PATCH")),
)


# ============================================================================
# Resource types by path substring (checked in order)
# ============================================================================

RESOURCE_PATH_MARKERS: Tuple[Tuple[Tuple[str, ...], ResourceType], ...] = (
    (("/patient",), ResourceType.PATIENT_RECORD),
    (("/user", "/auth"), ResourceType.USER_ACCOUNT),
    (("/admin", "/config"), ResourceType.SYSTEM_CONFIG),
)


# ============================================================================
# Default route and field sets
# ============================================================================

HIPAA_SENSITIVE_ROUTES: Tuple[str, ...] = ("/patients",)

EXCLUDED_ROUTES: Tuple[str, ...] = ("/health", "/ready", "/metrics", "/docs", "/openapi.json")

SENSITIVE_FIELDS: Tuple[str, ...] = (
    "password",
    "current_password",
    "new_password",
    "confirmPassword",
    "token",
    "accessToken",
    "refreshToken",
    "verificationCode",
    "creditCard",
)

REDACTED = "***REDACTED***"

ANONYMOUS_USER = "anonymous"

DEFAULT_ACCESS_REASON = "SYSTEM_ACCESS"
