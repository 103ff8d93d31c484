"""
Audit Event Types
=================
Closed enumerations used by every audit event.
"""

from enum import Enum


class EventType(str, Enum):
    """What happened."""
    # Users & authentication
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"
    USER_LOGIN_FAILED = "USER_LOGIN_FAILED"
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DEACTIVATED = "USER_DEACTIVATED"
    USER_PASSWORD_CHANGED = "USER_PASSWORD_CHANGED"
    USER_ROLE_CHANGED = "USER_ROLE_CHANGED"

    # Patients & documents
    PATIENT_CREATED = "PATIENT_CREATED"
    PATIENT_ACCESSED = "PATIENT_ACCESSED"
    PATIENT_SEARCHED = "PATIENT_SEARCHED"
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    DOCUMENT_ACCESSED = "DOCUMENT_ACCESSED"

    # System & security
    SYSTEM_ERROR = "SYSTEM_ERROR"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"
    UNAUTHORIZED_ACCESS_ATTEMPT = "UNAUTHORIZED_ACCESS_ATTEMPT"

    # Generic HTTP fallbacks
    HTTP_POST_REQUEST = "HTTP_POST_REQUEST"
    HTTP_GET_REQUEST = "HTTP_GET_REQUEST"
    HTTP_PUT_REQUEST = "HTTP_PUT_REQUEST"
    HTTP_DELETE_REQUEST = "HTTP_DELETE_REQUEST"
    HTTP_PATCH_REQUEST = "HTTP_PATCH_REQUEST"


class ActionType(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    ACCESS = "ACCESS"
    SEARCH = "SEARCH"
    EXPORT = "EXPORT"
    UPLOAD = "UPLOAD"
    ERROR = "ERROR"
    VIOLATION = "VIOLATION"


class SeverityLevel(str, Enum):
    """Ordered urgency level: INFO < LOW < MEDIUM < HIGH < CRITICAL."""
    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, SeverityLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, SeverityLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, SeverityLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, SeverityLevel):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_ORDER = list(SeverityLevel)


class ResourceType(str, Enum):
    PATIENT_RECORD = "PATIENT_RECORD"
    USER_ACCOUNT = "USER_ACCOUNT"
    SYSTEM_CONFIG = "SYSTEM_CONFIG"
    AUDIT_LOG = "AUDIT_LOG"


class UserRole(str, Enum):
    ADMINISTRADOR = "ADMINISTRADOR"
    MEDICO = "MEDICO"
    ENFERMERA = "ENFERMERA"
    PACIENTE = "PACIENTE"
    SISTEMA = "SISTEMA"
    UNKNOWN = "UNKNOWN"


class ComplianceStandard(str, Enum):
    HIPAA = "HIPAA"
    GDPR = "GDPR"
    SOC2 = "SOC2"
