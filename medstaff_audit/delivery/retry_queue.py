"""
Audit Retry Queue
=================
In-memory FIFO of audit events whose first delivery failed.

A single drain pass runs at a time. Each pass works head-first: delivered
items are removed, items that reach the attempt cap are dropped and counted
as lost, and the first item that still has attempts left sleeps for
``attempts * retry_delay`` and ends the pass. The next enqueue or the
periodic worker starts the following pass.

Per-item lifecycle: enqueued -> retrying -> delivered | dropped.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Optional

import structlog

from ..audit.models import AuditEvent
from ..errors import RetryExhausted
from ..metrics import AuditMetrics, MetricNames

logger = structlog.get_logger(__name__)

DeliverFn = Callable[[AuditEvent], Awaitable[bool]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(eq=False)
class RetryItem:
    """A failed delivery awaiting retry."""
    event: AuditEvent
    enqueued_at: float = field(default_factory=time.time)
    attempts: int = 0


class RetryQueue:
    """
    Bounded-attempt retry queue with a single drain worker.

    Example:
        queue = RetryQueue(delivery.send, max_attempts=3, retry_delay=1.0)
        queue.start()
        queue.enqueue(event)
        ...
        await queue.flush(timeout=10.0)
        await queue.stop()
    """

    def __init__(
        self,
        deliver: DeliverFn,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        drain_interval: float = 5.0,
        max_size: int = 10000,
        metrics: Optional[AuditMetrics] = None,
        sleep: SleepFn = asyncio.sleep,
        on_lost: Optional[Callable[[RetryExhausted], None]] = None,
        drain_on_enqueue: bool = True,
    ):
        self._deliver = deliver
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.drain_interval = drain_interval
        self.max_size = max_size
        self.metrics = metrics
        self._sleep = sleep
        self._on_lost = on_lost
        self.drain_on_enqueue = drain_on_enqueue

        self._items: Deque[RetryItem] = deque()
        self._in_flight: Optional[RetryItem] = None
        self._draining = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_task: Optional[asyncio.Task] = None
        self._worker: Optional[asyncio.Task] = None

        self.delivered = 0
        self.dropped = 0
        self.abandoned = 0

    # =========================================================================
    # State
    # =========================================================================

    @property
    def pending(self) -> int:
        return len(self._items)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def items(self):
        """Snapshot of queued items, head first."""
        return list(self._items)

    def _count(self, name: str, value: int = 1) -> None:
        if self.metrics is not None:
            self.metrics.increment(name, value)

    def _update_depth(self) -> None:
        if self.metrics is not None:
            self.metrics.set_gauge(MetricNames.QUEUE_DEPTH, len(self._items))

    def _discard(self, item: RetryItem) -> None:
        try:
            self._items.remove(item)
        except ValueError:
            pass  # already evicted

    # =========================================================================
    # Enqueue
    # =========================================================================

    def _evict_oldest(self) -> Optional[RetryItem]:
        # The item being delivered right now is never evicted
        for item in self._items:
            if item is not self._in_flight:
                self._items.remove(item)
                return item
        return None

    def enqueue(self, event: AuditEvent) -> RetryItem:
        """
        Append a failed event to the tail and make sure a drain is scheduled.

        When the queue is full the oldest idle item is dropped. If the only
        queued item is in flight, the new event is dropped instead.
        """
        item = RetryItem(event=event)
        if len(self._items) >= self.max_size:
            evicted = self._evict_oldest()
            if evicted is None:
                self._give_up(item, reason="queue_full")
                return item
            self._give_up(evicted, reason="queue_full")

        self._items.append(item)
        self._count(MetricNames.ENQUEUED)
        self._update_depth()
        logger.debug("audit_event_enqueued", event_id=event.event_id, pending=len(self._items))

        if self.drain_on_enqueue:
            self._schedule_drain()
        return item

    def _schedule_drain(self) -> None:
        if self._draining or (self._drain_task is not None and not self._drain_task.done()):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop yet; the periodic worker or flush() will drain
        self._drain_task = loop.create_task(self.drain())

    # =========================================================================
    # Draining
    # =========================================================================

    async def _attempt(self, item: RetryItem) -> bool:
        try:
            return bool(await self._deliver(item.event))
        except Exception as e:
            logger.warning("audit_retry_delivery_error", event_id=item.event.event_id, error=str(e))
            return False

    def _give_up(self, item: RetryItem, reason: str) -> None:
        self.dropped += 1
        self._count(MetricNames.DROPPED)
        exc = RetryExhausted(
            f"Audit event {item.event.event_id} dropped after {item.attempts} attempts",
            item=item,
        )
        logger.error(
            "audit_event_lost",
            event_id=item.event.event_id,
            event_type=item.event.event_type,
            attempts=item.attempts,
            reason=reason,
        )
        if self._on_lost is not None:
            self._on_lost(exc)

    async def drain(self) -> int:
        """
        Run one drain pass.

        Returns:
            Number of events delivered during this pass (0 if another pass
            was already running)
        """
        if self._draining:
            return 0
        self._draining = True
        self._idle.clear()
        delivered = 0

        try:
            while self._items:
                item = self._items[0]
                self._in_flight = item
                try:
                    ok = await self._attempt(item)
                finally:
                    self._in_flight = None

                if not self._items or self._items[0] is not item:
                    # Abandoned by flush() while the send was pending
                    continue

                if ok:
                    self._discard(item)
                    delivered += 1
                    self.delivered += 1
                    self._count(MetricNames.DELIVERED)
                    continue

                item.attempts += 1
                self._count(MetricNames.RETRIED)

                if item.attempts >= self.max_attempts:
                    self._discard(item)
                    self._give_up(item, reason="max_attempts")
                    continue

                delay = item.attempts * self.retry_delay
                logger.warning(
                    "audit_retry_backoff",
                    event_id=item.event.event_id,
                    attempt=item.attempts,
                    delay=delay,
                    pending=len(self._items),
                )
                await self._sleep(delay)
                break
        finally:
            self._draining = False
            self._idle.set()
            self._update_depth()

        return delivered

    # =========================================================================
    # Periodic worker
    # =========================================================================

    def start(self) -> None:
        """Start the periodic drain trigger on the running loop."""
        if self._worker is not None and not self._worker.done():
            return
        self._worker = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.drain_interval)
            if not self._items or self._draining:
                continue
            try:
                await self.drain()
            except Exception as e:
                logger.error("audit_retry_drain_failed", error=str(e), exc_info=True)

    async def stop(self) -> None:
        """Cancel the periodic worker and any drain pass in flight."""
        for task in (self._worker, self._drain_task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._drain_task = None

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def _drain_until_empty(self) -> None:
        while self._items:
            if self._draining:
                await self._idle.wait()
                continue
            await self.drain()

    async def flush(self, timeout: float) -> int:
        """
        Drain until empty or until ``timeout`` seconds have passed.

        Items still queued at the deadline are abandoned and counted.

        Returns:
            Number of abandoned items
        """
        if not self._items:
            return 0

        started = time.monotonic()
        try:
            await asyncio.wait_for(self._drain_until_empty(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

        remaining = len(self._items)
        if remaining:
            self.abandoned += remaining
            self._count(MetricNames.ABANDONED, remaining)
            logger.error(
                "audit_retry_queue_abandoned",
                abandoned=remaining,
                timeout=timeout,
                elapsed=round(time.monotonic() - started, 3),
            )
            self._items.clear()
            self._update_depth()
        return remaining
