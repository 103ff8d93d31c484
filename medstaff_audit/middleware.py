"""
Audit Interceptor
=================
Pure ASGI middleware that observes every HTTP call and hands a snapshot of
it to the audit pipeline once the application has finished.

The call itself is never touched: messages are forwarded unmodified,
exceptions propagate unchanged, and capture runs as a detached task that
the request path does not await.

Usage:
    pipeline = AuditPipeline(AuditSettings.from_env())
    app.add_middleware(AuditInterceptor, pipeline=pipeline)
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs

import structlog
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .audit.models import Principal, RequestSnapshot, ResponseSnapshot

if TYPE_CHECKING:
    from .pipeline import AuditPipeline

logger = structlog.get_logger(__name__)

PrincipalResolver = Callable[[Scope], Any]


@dataclass
class CallRecord:
    """Per-call timing and wire data collected while the app runs."""
    started_at: float
    correlation_id: str
    request_headers: Dict[str, str]
    capture_request_body: bool
    body_limit: int
    request_body: bytearray = field(default_factory=bytearray)
    request_body_truncated: bool = False
    response_started: bool = False
    status_code: int = 500
    response_headers: Dict[str, str] = field(default_factory=dict)
    response_body: bytearray = field(default_factory=bytearray)
    finished_at: Optional[float] = None

    @property
    def duration_ms(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.perf_counter()
        return (end - self.started_at) * 1000

    def add_request_chunk(self, chunk: bytes) -> None:
        if self.request_body_truncated:
            return
        if len(self.request_body) + len(chunk) > self.body_limit:
            self.request_body_truncated = True
            self.request_body.clear()
            return
        self.request_body.extend(chunk)

    def add_response_chunk(self, chunk: bytes) -> None:
        # Only error bodies are kept, for error message extraction
        if self.status_code < 400:
            return
        room = self.body_limit - len(self.response_body)
        if room > 0:
            self.response_body.extend(chunk[:room])


def decode_headers(raw_headers: List[Tuple[bytes, bytes]]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for key, value in raw_headers:
        name = key.decode("latin-1").lower()
        text = value.decode("latin-1")
        headers[name] = f"{headers[name]}, {text}" if name in headers else text
    return headers


def parse_query(query_string: bytes) -> Dict[str, Any]:
    parsed = parse_qs(query_string.decode("latin-1"), keep_blank_values=True)
    return {key: values[0] if len(values) == 1 else values for key, values in parsed.items()}


def _is_json(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";")[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def default_principal_resolver(scope: Scope) -> Any:
    """``request.state.user`` first, then Starlette's ``scope["user"]``."""
    state = scope.get("state") or {}
    user = state.get("user") if isinstance(state, dict) else None
    if user is None:
        user = scope.get("user")
    return user


def build_request_snapshot(
    scope: Scope,
    record: CallRecord,
    principal_resolver: PrincipalResolver = default_principal_resolver,
) -> RequestSnapshot:
    body = None
    if record.capture_request_body and record.request_body and not record.request_body_truncated:
        try:
            body = json.loads(bytes(record.request_body))
        except ValueError:
            body = None

    state = scope.get("state") or {}
    audit_data = state.get("audit_data") if isinstance(state, dict) else None
    client = scope.get("client")

    return RequestSnapshot(
        method=scope.get("method", "GET"),
        path=scope.get("path", ""),
        query=parse_query(scope.get("query_string", b"")),
        path_params=dict(scope.get("path_params") or {}),
        body=body,
        headers=record.request_headers,
        client_host=client[0] if client else None,
        principal=Principal.from_value(principal_resolver(scope)),
        correlation_id=record.correlation_id,
        audit_data=dict(audit_data) if isinstance(audit_data, dict) else {},
    )


def build_response_snapshot(record: CallRecord) -> ResponseSnapshot:
    return ResponseSnapshot(
        status_code=record.status_code,
        body=bytes(record.response_body),
        headers=record.response_headers,
    )


class AuditInterceptor:
    """
    ASGI middleware feeding every non-excluded HTTP call into the pipeline.

    Excluded paths (case-insensitive substring match) and non-HTTP scopes
    skip all audit work.
    """

    def __init__(
        self,
        app: ASGIApp,
        pipeline: "AuditPipeline",
        principal_resolver: Optional[PrincipalResolver] = None,
    ):
        self.app = app
        self.pipeline = pipeline
        self.principal_resolver = principal_resolver or default_principal_resolver

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.pipeline.is_excluded(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        headers = decode_headers(scope.get("headers", []))
        record = CallRecord(
            started_at=time.perf_counter(),
            correlation_id=headers.get("x-request-id") or str(uuid.uuid4()),
            request_headers=headers,
            capture_request_body=_is_json(headers.get("content-type")),
            body_limit=self.pipeline.settings.max_body_bytes,
        )
        # Handlers write request.state.user / audit_data into this dict
        scope.setdefault("state", {})

        async def receive_wrapper() -> Message:
            message = await receive()
            if message["type"] == "http.request":
                record.add_request_chunk(message.get("body", b""))
            return message

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                record.response_started = True
                record.status_code = message["status"]
                record.response_headers = decode_headers(message.get("headers", []))
            elif message["type"] == "http.response.body":
                record.add_response_chunk(message.get("body", b""))
            await send(message)

        try:
            await self.app(
                scope,
                receive_wrapper if record.capture_request_body else receive,
                send_wrapper,
            )
        except Exception:
            if not record.response_started:
                record.status_code = 500
            raise
        finally:
            record.finished_at = time.perf_counter()
            self._schedule_capture(scope, record)

    def _schedule_capture(self, scope: Scope, record: CallRecord) -> None:
        coro = self._capture(scope, record)
        try:
            self.pipeline.spawn(coro)
        except Exception as e:
            coro.close()
            logger.warning("audit_capture_schedule_failed", path=scope.get("path"), error=str(e))

    async def _capture(self, scope: Scope, record: CallRecord) -> None:
        # Runs in its own task context, so the binding ends with the task
        structlog.contextvars.bind_contextvars(correlation_id=record.correlation_id)
        try:
            request = build_request_snapshot(scope, record, self.principal_resolver)
            response = build_response_snapshot(record)
        except Exception as e:
            self.pipeline.record_capture_failure(e, scope.get("path"))
            return
        await self.pipeline.capture(request, response, record.duration_ms)
