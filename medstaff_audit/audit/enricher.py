"""
Audit Enricher
==============
Builds a complete AuditEvent from an intercepted request/response pair:
identity, resource, HIPAA flag, outcome and redacted request metadata.
"""

import json
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional

from .classifier import classify, get_event_config, resolve_severity
from .event_types import ComplianceStandard, ResourceType, UserRole
from .models import AuditEvent, RequestSnapshot, ResponseSnapshot
from .redaction import redact
from .taxonomy import ANONYMOUS_USER, DEFAULT_ACCESS_REASON, RESOURCE_PATH_MARKERS

if TYPE_CHECKING:
    from ..config import AuditSettings


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _body_get(body: Any, key: str) -> Any:
    if isinstance(body, Mapping):
        return body.get(key)
    return None


def _first_present(*candidates: Any) -> Optional[str]:
    for candidate in candidates:
        if _present(candidate):
            return str(candidate)
    return None


def extract_resource_id(request: RequestSnapshot) -> Optional[str]:
    """Path ``id``, path ``patientId``, body ``userId``, then query ``id``."""
    return _first_present(
        request.path_params.get("id"),
        request.path_params.get("patientId"),
        _body_get(request.body, "userId"),
        request.query.get("id"),
    )


def extract_target_user_id(request: RequestSnapshot) -> Optional[str]:
    return _first_present(
        request.path_params.get("userId"),
        _body_get(request.body, "userId"),
    )


def extract_patient_id(request: RequestSnapshot) -> Optional[str]:
    return _first_present(
        request.path_params.get("patientId"),
        _body_get(request.body, "patientId"),
        request.query.get("patientId"),
    )


def determine_resource_type(path: str) -> Optional[ResourceType]:
    lower_path = path.lower()
    for markers, resource_type in RESOURCE_PATH_MARKERS:
        if any(marker in lower_path for marker in markers):
            return resource_type
    return None


def is_hipaa_sensitive_route(path: str, routes: Iterable[str]) -> bool:
    lower_path = path.lower()
    return any(route.lower() in lower_path for route in routes)


def normalize_role(role: Any) -> UserRole:
    if not role:
        return UserRole.UNKNOWN
    try:
        return UserRole(str(role).strip().upper())
    except ValueError:
        return UserRole.UNKNOWN


def extract_ip_address(request: RequestSnapshot) -> str:
    """Direct peer, then the first X-Forwarded-For hop, then X-Real-IP."""
    if request.client_host:
        return request.client_host

    forwarded = request.header("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.header("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return "unknown"


def extract_access_reason(request: RequestSnapshot) -> str:
    return (
        request.header("x-access-reason")
        or _first_present(_body_get(request.body, "accessReason"), request.query.get("accessReason"))
        or DEFAULT_ACCESS_REASON
    )


def extract_error_message(response: ResponseSnapshot) -> Optional[str]:
    """Pull a human-readable error out of a JSON error body, if any."""
    if not response.body:
        return None
    try:
        payload = json.loads(response.body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, Mapping):
        return None

    for key in ("message", "error", "detail"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, Mapping):
            nested = value.get("message") or value.get("error")
            if isinstance(nested, str) and nested:
                return nested
        if isinstance(value, list) and value:
            # FastAPI validation errors
            first = value[0]
            if isinstance(first, Mapping) and first.get("msg"):
                return str(first["msg"])
    return None


def _content_length(value: Optional[str], fallback: int = 0) -> int:
    try:
        return int(value) if value is not None else fallback
    except ValueError:
        return fallback


def build_metadata(
    request: RequestSnapshot,
    response: ResponseSnapshot,
    duration_ms: float,
    settings: "AuditSettings",
    description: str,
) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        "method": request.method.upper(),
        "path": request.path,
        "query": dict(request.query),
        "params": dict(request.path_params),
        "body": redact(request.body, settings.sensitive_fields),
        "statusCode": response.status_code,
        "contentType": response.header("content-type"),
        "durationMs": round(duration_ms, 3),
        "requestSize": _content_length(request.header("content-length")),
        "responseSize": _content_length(response.header("content-length"), len(response.body)),
        "endpoint": f"{request.method.upper()} {request.path}",
        "description": description,
        "correlationId": request.correlation_id,
    }
    if request.audit_data:
        metadata["auditData"] = redact(request.audit_data, settings.sensitive_fields)
    return metadata


def enrich(
    request: RequestSnapshot,
    response: ResponseSnapshot,
    duration_ms: float,
    settings: "AuditSettings",
) -> AuditEvent:
    """Assemble the full audit record for one finished HTTP call."""
    status_code = response.status_code
    success = status_code < 400

    event_type = classify(request.method, request.path, status_code)
    config = get_event_config(event_type, request.method, request.path, success)

    hipaa = is_hipaa_sensitive_route(request.path, settings.hipaa_routes)
    metadata = build_metadata(request, response, duration_ms, settings, config.description)
    if hipaa:
        metadata["hipaa"] = {
            "patientId": extract_patient_id(request) or extract_resource_id(request),
            "accessReason": extract_access_reason(request),
        }

    principal = request.principal
    user_id = principal.id if principal and principal.id else ANONYMOUS_USER
    session_id = (
        (principal.session_id if principal else None)
        or request.header("x-session-id")
        or request.correlation_id
    )

    return AuditEvent(
        event_id=str(uuid.uuid4()),
        event_type=getattr(event_type, "value", event_type),
        action=config.action,
        severity_level=resolve_severity(config.severity, status_code),
        timestamp=datetime.now(timezone.utc),
        source=settings.service_name,
        user_id=user_id,
        user_role=normalize_role(principal.role if principal else None),
        session_id=session_id,
        success=success,
        status_code=status_code,
        hipaa_compliant=hipaa,
        resource_type=determine_resource_type(request.path),
        resource_id=extract_resource_id(request),
        target_user_id=extract_target_user_id(request),
        ip_address=extract_ip_address(request),
        user_agent=request.header("user-agent"),
        error_message=None if success else extract_error_message(response),
        description=config.description,
        compliance_standards=[ComplianceStandard.HIPAA.value] if hipaa else [],
        metadata=metadata,
    )
