"""
Audit Pipeline Exceptions
=========================
Exception classes raised inside the audit pipeline.

None of these ever reach the HTTP caller: they are contained at the
DeliveryClient, RetryQueue and AuditInterceptor boundaries.
"""

from typing import Optional


class AuditPipelineError(Exception):
    """Base class for audit pipeline errors."""
    pass


class CaptureFailure(AuditPipelineError):
    """Raised when an audit event could not be built from a request/response."""

    def __init__(self, message: str, path: Optional[str] = None, cause: Optional[Exception] = None):
        super().__init__(message)
        self.path = path
        self.cause = cause


class DeliveryFailure(AuditPipelineError):
    """Raised when the message bus rejects or cannot accept an event."""

    def __init__(self, message: str, event_id: Optional[str] = None, last_exception: Optional[Exception] = None):
        super().__init__(message)
        self.event_id = event_id
        self.last_exception = last_exception


class RetryExhausted(AuditPipelineError):
    """Raised when a queued event reached its attempt cap and was dropped."""

    def __init__(self, message: str, item=None):
        super().__init__(message)
        self.item = item
