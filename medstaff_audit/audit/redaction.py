"""
Request Body Redaction
======================
Masks sensitive top-level fields before a body is attached to an event.

Only the top level of the body is inspected. Nested objects and arrays are
copied by reference and never traversed; callers that put credentials in
nested structures must list the containing key itself.
"""

from typing import Any, Dict, Iterable, Mapping

from .taxonomy import REDACTED, SENSITIVE_FIELDS


def redact(body: Any, sensitive_fields: Iterable[str] = SENSITIVE_FIELDS) -> Dict[str, Any]:
    """
    Return a shallow copy of ``body`` with sensitive keys masked.

    Non-mapping bodies (lists, strings, None) yield an empty dict.
    """
    if not isinstance(body, Mapping):
        return {}

    sanitized = dict(body)
    for field in sensitive_fields:
        if field in sanitized:
            sanitized[field] = REDACTED
    return sanitized
