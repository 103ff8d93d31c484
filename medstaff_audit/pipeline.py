"""
Audit Pipeline
==============
Composition root tying together classification, enrichment, delivery and
retry. One pipeline is constructed at startup and handed to the app's
middleware stack; there is no module-level instance.

Usage (FastAPI):
    from medstaff_audit import AuditPipeline, AuditSettings

    pipeline = AuditPipeline(AuditSettings.from_env())
    app = FastAPI(lifespan=pipeline.lifespan)
    pipeline.install(app)

Uvicorn turns SIGTERM/SIGINT into a lifespan shutdown, which drains the
retry queue for at most ``shutdown_timeout`` seconds before the producer is
closed.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Dict, Optional, Set

import structlog
from starlette.middleware import Middleware

from .audit.enricher import enrich
from .audit.models import AuditEvent, RequestSnapshot, ResponseSnapshot
from .config import AuditSettings
from .delivery.producer import DeliveryClient, ProducerFactory
from .delivery.retry_queue import RetryQueue, SleepFn
from .errors import CaptureFailure
from .metrics import AuditMetrics, MetricNames
from .middleware import AuditInterceptor

logger = structlog.get_logger(__name__)


class AuditPipeline:
    """Explicitly constructed audit pipeline with init/drain/shutdown lifecycle."""

    def __init__(
        self,
        settings: Optional[AuditSettings] = None,
        delivery: Optional[DeliveryClient] = None,
        retry_queue: Optional[RetryQueue] = None,
        metrics: Optional[AuditMetrics] = None,
        producer_factory: Optional[ProducerFactory] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.settings = settings or AuditSettings.from_env()
        self.metrics = metrics or AuditMetrics(service=self.settings.service_name)
        self.delivery = delivery or DeliveryClient(self.settings, producer_factory=producer_factory)
        self.retry_queue = retry_queue or RetryQueue(
            self.delivery.send,
            max_attempts=self.settings.retry_max_attempts,
            retry_delay=self.settings.retry_delay,
            drain_interval=self.settings.drain_interval,
            max_size=self.settings.retry_queue_size,
            metrics=self.metrics,
            sleep=sleep,
        )
        self._excluded = tuple(route.lower() for route in self.settings.excluded_routes if route)
        self._tasks: Set[asyncio.Task] = set()
        self._started = False
        self._closed = False

    # =========================================================================
    # Request-path helpers (must stay cheap and never raise)
    # =========================================================================

    def is_excluded(self, path: str) -> bool:
        lower_path = path.lower()
        return any(route in lower_path for route in self._excluded)

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Run ``coro`` detached from the caller, keeping a reference until done."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def record_capture_failure(self, exc: Exception, path: Optional[str] = None) -> None:
        failure = CaptureFailure(f"Audit capture failed: {exc}", path=path, cause=exc)
        self.metrics.increment(MetricNames.CAPTURE_FAILURES)
        logger.warning(
            "audit_capture_failed",
            path=failure.path,
            error_type=type(exc).__name__,
            error=str(failure),
        )

    # =========================================================================
    # Capture & dispatch
    # =========================================================================

    async def capture(
        self,
        request: RequestSnapshot,
        response: ResponseSnapshot,
        duration_ms: float,
    ) -> Optional[AuditEvent]:
        """Classify, redact, enrich and dispatch one call. Never raises."""
        started = time.perf_counter()
        try:
            event = enrich(request, response, duration_ms, self.settings)
        except Exception as e:
            self.record_capture_failure(e, request.path)
            return None

        self.metrics.increment(MetricNames.CAPTURED)
        try:
            await self.dispatch(event)
        except Exception as e:
            self.record_capture_failure(e, request.path)
        self.metrics.observe(MetricNames.CAPTURE_DURATION, (time.perf_counter() - started) * 1000)
        return event

    async def dispatch(self, event: AuditEvent) -> bool:
        """Send now; on failure hand the event to the retry queue."""
        if self._closed or not self.delivery.enabled:
            self.metrics.increment(MetricNames.SKIPPED)
            return False

        if await self.delivery.send(event):
            self.metrics.increment(MetricNames.DELIVERED)
            return True

        self.retry_queue.enqueue(event)
        return False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def startup(self) -> None:
        """Connect the producer (if configured) and start the retry worker."""
        if self._started:
            return
        self._started = True
        self._closed = False

        if not self.delivery.enabled:
            logger.info("audit_pipeline_disabled", reason="no event hub connection string")
            return

        await self.delivery.initialize()
        self.retry_queue.start()
        logger.info(
            "audit_pipeline_started",
            topic=self.settings.topic,
            connected=self.delivery.ready,
        )

    async def wait_for_captures(self, timeout: Optional[float] = None) -> None:
        """Wait for detached capture tasks that are still running."""
        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return
        done, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            logger.warning("audit_captures_pending", count=len(still_pending))

    async def shutdown(self, drain_timeout: Optional[float] = None) -> None:
        """Finish captures, drain the retry queue (time-bounded), close the producer."""
        if self._closed:
            return
        timeout = self.settings.shutdown_timeout if drain_timeout is None else drain_timeout
        deadline = time.monotonic() + timeout

        await self.wait_for_captures(timeout=timeout)
        self._closed = True

        remaining = max(0.0, deadline - time.monotonic())
        abandoned = await self.retry_queue.flush(timeout=remaining)
        await self.retry_queue.stop()
        await self.delivery.disconnect()
        self._started = False

        logger.info(
            "audit_pipeline_stopped",
            delivered=self.metrics.get_counter(MetricNames.DELIVERED),
            dropped=self.retry_queue.dropped,
            abandoned=abandoned,
        )

    @asynccontextmanager
    async def lifespan(self, app=None):
        """Lifespan context for FastAPI/Starlette."""
        await self.startup()
        try:
            yield
        finally:
            await self.shutdown()

    def middleware(self, **middleware_options) -> Middleware:
        """Middleware entry for ``FastAPI(middleware=[...])``."""
        return Middleware(AuditInterceptor, pipeline=self, **middleware_options)

    def install(self, app, **middleware_options) -> None:
        """Register the audit interceptor on a Starlette/FastAPI app."""
        app.add_middleware(AuditInterceptor, pipeline=self, **middleware_options)

    def stats(self) -> Dict[str, Any]:
        return {
            "delivery_state": self.delivery.state.value,
            "queue_depth": self.retry_queue.pending,
            "draining": self.retry_queue.is_draining,
            "captured": self.metrics.get_counter(MetricNames.CAPTURED),
            "delivered": self.metrics.get_counter(MetricNames.DELIVERED),
            "enqueued": self.metrics.get_counter(MetricNames.ENQUEUED),
            "dropped": self.retry_queue.dropped,
            "abandoned": self.retry_queue.abandoned,
            "skipped": self.metrics.get_counter(MetricNames.SKIPPED),
            "capture_failures": self.metrics.get_counter(MetricNames.CAPTURE_FAILURES),
        }
