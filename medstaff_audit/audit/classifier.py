"""
Audit Classifier
================
Maps (method, path, status code) onto the audit taxonomy.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Union

from .event_types import ActionType, EventType, SeverityLevel
from .taxonomy import EVENT_CONFIG, ROUTE_RULES, RouteRule, SuccessFailureEvent

EventTypeLike = Union[EventType, str]


@dataclass(frozen=True)
class EventConfig:
    severity: SeverityLevel
    action: ActionType
    description: str


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _coerce_event_type(value: str) -> EventTypeLike:
    try:
        return EventType(value)
    except ValueError:
        return value


def classify(
    method: str,
    path: str,
    status_code: int,
    rules: Optional[Iterable[RouteRule]] = None,
) -> EventTypeLike:
    """
    Determine the event type of a finished HTTP call.

    Server errors always classify as SYSTEM_ERROR, before any route rule is
    looked at. Otherwise the first matching rule wins; 401/403 responses on
    unmatched routes become UNAUTHORIZED_ACCESS_ATTEMPT, and everything else
    falls back to ``HTTP_<METHOD>_REQUEST``.

    Returns an EventType member, or the plain fallback string for methods
    outside the enumeration (e.g. ``HTTP_HEAD_REQUEST``).
    """
    method = method.upper()
    path = path.lower()

    if status_code >= 500:
        return EventType.SYSTEM_ERROR

    for rule in ROUTE_RULES if rules is None else rules:
        if not rule.matches(method, path):
            continue
        mapping = rule.mapping
        if isinstance(mapping, SuccessFailureEvent):
            return mapping.success if _is_success(status_code) else mapping.failure
        return mapping.event_type

    if status_code in (401, 403):
        return EventType.UNAUTHORIZED_ACCESS_ATTEMPT

    return _coerce_event_type(f"HTTP_{method}_REQUEST")


def get_event_config(event_type: EventTypeLike, method: str, path: str, success: bool) -> EventConfig:
    """Look up severity, action and description for an event type."""
    generated = f"{method.upper()} request to {path} {'successful' if success else 'failed'}"

    defaults = EVENT_CONFIG.get(_coerce_event_type(str(getattr(event_type, "value", event_type))))
    if defaults is None:
        return EventConfig(SeverityLevel.INFO, ActionType.ACCESS, generated)

    return EventConfig(
        severity=defaults.severity,
        action=defaults.action,
        description=defaults.description or generated,
    )


def resolve_severity(severity: SeverityLevel, status_code: int) -> SeverityLevel:
    """Server errors are always CRITICAL, whatever the taxonomy says."""
    if status_code >= 500:
        return SeverityLevel.CRITICAL
    return severity
