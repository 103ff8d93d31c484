"""
Audit Models
============
The audit event record and the framework-neutral request/response
snapshots it is built from.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .event_types import ActionType, ResourceType, SeverityLevel, UserRole


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as attached by the host's auth layer."""
    id: Optional[str]
    role: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> Optional["Principal"]:
        """Accept a mapping or any object exposing ``id``/``role``."""
        if value is None:
            return None
        if isinstance(value, Principal):
            return value
        if isinstance(value, Mapping):
            get = value.get
        else:
            def get(key):
                return getattr(value, key, None)
        user_id = get("id")
        session_id = get("session_id") or get("sessionId")
        return cls(
            id=str(user_id) if user_id is not None else None,
            role=get("role"),
            session_id=str(session_id) if session_id else None,
        )


@dataclass
class RequestSnapshot:
    """Inbound side of an intercepted call. Header names are lower-case."""
    method: str
    path: str
    query: Dict[str, Any] = field(default_factory=dict)
    path_params: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    client_host: Optional[str] = None
    principal: Optional[Principal] = None
    correlation_id: Optional[str] = None
    audit_data: Dict[str, Any] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


@dataclass
class ResponseSnapshot:
    """Outbound side of an intercepted call."""
    status_code: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


@dataclass(frozen=True)
class AuditEvent:
    """A structured compliance event. Immutable once built."""
    event_id: str
    event_type: str
    action: ActionType
    severity_level: SeverityLevel
    timestamp: datetime
    source: str
    user_id: str
    user_role: UserRole
    session_id: Optional[str]
    success: bool
    status_code: int
    hipaa_compliant: bool
    resource_type: Optional[ResourceType] = None
    resource_id: Optional[str] = None
    target_user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    error_message: Optional[str] = None
    description: Optional[str] = None
    compliance_standards: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.event_id:
            raise ValueError("event_id must not be empty")

    def to_dict(self) -> Dict[str, Any]:
        """Wire form published to the bus."""
        return {
            "eventId": self.event_id,
            "eventType": _value(self.event_type),
            "action": _value(self.action),
            "severityLevel": _value(self.severity_level),
            "resourceType": _value(self.resource_type),
            "resourceId": self.resource_id,
            "targetUserId": self.target_user_id,
            "userId": self.user_id,
            "userRole": _value(self.user_role),
            "sessionId": self.session_id,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "hipaaCompliant": self.hipaa_compliant,
            "complianceStandards": list(self.compliance_standards),
            "success": self.success,
            "statusCode": self.status_code,
            "errorMessage": self.error_message,
            "description": self.description,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }


def _value(item):
    return getattr(item, "value", item)
