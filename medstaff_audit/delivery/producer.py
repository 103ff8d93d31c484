"""
Audit Delivery Client
=====================
Publishes audit events to the Event Hubs Kafka endpoint.

Best-effort infrastructure: without a connection string the client stays
disabled and every call is a no-op, and ``send`` reports failures through
its return value instead of raising.
"""

import asyncio
import json
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from aiokafka import AIOKafkaProducer
from aiokafka.helpers import create_ssl_context

from ..audit.models import AuditEvent
from ..config import AuditSettings
from ..errors import DeliveryFailure

logger = structlog.get_logger(__name__)

# Event Hubs expects this literal user name with the connection string as password
EVENT_HUBS_SASL_USERNAME = "$ConnectionString"

ProducerFactory = Callable[..., Any]


class DeliveryState(str, Enum):
    DISABLED = "disabled"          # No credential configured
    DISCONNECTED = "disconnected"  # Configured, not (yet) connected
    CONNECTED = "connected"


def build_producer_options(settings: AuditSettings) -> Dict[str, Any]:
    """Keyword arguments for AIOKafkaProducer."""
    options = {
        "bootstrap_servers": list(settings.brokers),
        "client_id": settings.client_id,
        "security_protocol": "SASL_SSL",
        "sasl_mechanism": "PLAIN",
        "sasl_plain_username": EVENT_HUBS_SASL_USERNAME,
        "sasl_plain_password": settings.connection_string,
        "ssl_context": create_ssl_context(),
        # Idempotence keeps one in-flight batch per partition, preserving order
        "enable_idempotence": True,
        "request_timeout_ms": int(settings.request_timeout * 1000),
        "retry_backoff_ms": int(settings.retry_backoff * 1000),
    }
    options.update(settings.extra_producer_options)
    return options


def build_message(event: AuditEvent, service_name: str) -> Tuple[bytes, bytes, List[Tuple[str, bytes]]]:
    """Key, value and headers for one audit event."""
    payload = event.to_dict()
    key = event.event_id.encode("utf-8")
    value = json.dumps(payload, default=str).encode("utf-8")
    headers = [
        ("service", service_name.encode("utf-8")),
        ("eventType", str(payload["eventType"]).encode("utf-8")),
        ("userId", str(payload["userId"]).encode("utf-8")),
        ("severityLevel", str(payload["severityLevel"]).encode("utf-8")),
    ]
    return key, value, headers


class DeliveryClient:
    """
    Owns the single producer connection of a pipeline.

    Example:
        client = DeliveryClient(AuditSettings.from_env())
        await client.initialize()
        delivered = await client.send(event)
        await client.disconnect()
    """

    def __init__(
        self,
        settings: AuditSettings,
        producer_factory: Optional[ProducerFactory] = None,
    ):
        self.settings = settings
        self._producer_factory = producer_factory or AIOKafkaProducer
        self._producer = None
        self._state = DeliveryState.DISCONNECTED if settings.enabled else DeliveryState.DISABLED
        self._lock = asyncio.Lock()
        self._connect_failures = 0
        self._last_connect_failure: Optional[float] = None

    @property
    def state(self) -> DeliveryState:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._state != DeliveryState.DISABLED

    @property
    def ready(self) -> bool:
        return self._state == DeliveryState.CONNECTED

    async def initialize(self) -> bool:
        """
        Connect the producer if configured. Safe to call repeatedly.

        Concurrent callers share one connect attempt: whoever was waiting on
        the lock while that attempt failed gets False without retrying, and
        no new attempt starts within ``reconnect_cooldown`` of a failure.

        Returns:
            True when the client is connected afterwards
        """
        if not self.enabled:
            logger.debug("audit_delivery_disabled", reason="no connection string")
            return False

        failures_seen = self._connect_failures
        async with self._lock:
            if self.ready:
                return True
            if self._connect_failures != failures_seen or self._cooling_down():
                return False

            producer = self._producer_factory(**build_producer_options(self.settings))
            try:
                await asyncio.wait_for(producer.start(), timeout=self.settings.connect_timeout)
            except Exception as e:
                logger.warning(
                    "audit_producer_connect_failed",
                    brokers=list(self.settings.brokers),
                    error=str(e),
                )
                await self._stop_quietly(producer)
                self._connect_failures += 1
                self._last_connect_failure = time.monotonic()
                return False

            self._last_connect_failure = None
            self._producer = producer
            self._state = DeliveryState.CONNECTED
            logger.info(
                "audit_producer_connected",
                brokers=list(self.settings.brokers),
                topic=self.settings.topic,
            )
            return True

    def _cooling_down(self) -> bool:
        if self._last_connect_failure is None:
            return False
        return time.monotonic() - self._last_connect_failure < self.settings.reconnect_cooldown

    async def _publish(self, event: AuditEvent) -> None:
        key, value, headers = build_message(event, self.settings.service_name)
        try:
            await self._producer.send_and_wait(
                self.settings.topic,
                value=value,
                key=key,
                headers=headers,
            )
        except Exception as e:
            raise DeliveryFailure(
                f"Failed to publish audit event: {e}",
                event_id=event.event_id,
                last_exception=e,
            ) from e

    async def send(self, event: AuditEvent) -> bool:
        """Publish one event. Returns False on any failure; never raises."""
        if not self.enabled:
            return False

        if not self.ready and not await self.initialize():
            return False

        try:
            await self._publish(event)
            return True
        except DeliveryFailure as e:
            logger.warning(
                "audit_delivery_failed",
                event_id=e.event_id,
                event_type=event.event_type,
                error=str(e.last_exception),
            )
            return False
        except Exception as e:
            logger.error("audit_delivery_error", event_id=event.event_id, error=str(e), exc_info=True)
            return False

    async def disconnect(self) -> None:
        """Flush and close the producer. Idempotent."""
        async with self._lock:
            producer, self._producer = self._producer, None
            if self.enabled:
                self._state = DeliveryState.DISCONNECTED
            if producer is None:
                return
            await self._stop_quietly(producer)
            logger.info("audit_producer_disconnected")

    async def _stop_quietly(self, producer) -> None:
        try:
            await producer.stop()
        except Exception as e:
            logger.warning("audit_producer_stop_failed", error=str(e))
