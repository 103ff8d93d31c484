"""
Tests for the Event Hubs delivery client.
"""

import asyncio
import json
from dataclasses import replace

import pytest

from medstaff_audit.config import AuditSettings
from medstaff_audit.delivery.producer import (
    EVENT_HUBS_SASL_USERNAME,
    DeliveryClient,
    DeliveryState,
    build_message,
    build_producer_options,
)

from conftest import CONNECTION_STRING, FakeProducer, producer_factory


class TestProducerOptions:

    def test_event_hubs_authentication(self, settings):
        options = build_producer_options(settings)

        assert options["bootstrap_servers"] == ["audit-test.servicebus.windows.net:9093"]
        assert options["security_protocol"] == "SASL_SSL"
        assert options["sasl_mechanism"] == "PLAIN"
        assert options["sasl_plain_username"] == EVENT_HUBS_SASL_USERNAME == "$ConnectionString"
        assert options["sasl_plain_password"] == CONNECTION_STRING
        assert options["enable_idempotence"] is True
        assert options["request_timeout_ms"] == 30000
        assert options["ssl_context"] is not None

    def test_extra_options_override(self):
        settings = AuditSettings(
            connection_string=CONNECTION_STRING,
            extra_producer_options={"linger_ms": 5, "client_id": "custom"},
        )
        options = build_producer_options(settings)

        assert options["linger_ms"] == 5
        assert options["client_id"] == "custom"


class TestBuildMessage:

    def test_key_value_and_headers(self, event_factory):
        event = event_factory(path="/patients/42", principal={"id": "doc-7", "role": "medico"})

        key, value, headers = build_message(event, "ms-security")
        payload = json.loads(value)

        assert key == event.event_id.encode()
        assert payload["eventId"] == event.event_id
        assert payload["eventType"] == "PATIENT_ACCESSED"
        assert dict(headers) == {
            "service": b"ms-security",
            "eventType": b"PATIENT_ACCESSED",
            "userId": b"doc-7",
            "severityLevel": b"MEDIUM",
        }


class TestDeliveryClient:

    @pytest.mark.asyncio
    async def test_disabled_without_connection_string(self, disabled_settings, event_factory):
        client = DeliveryClient(disabled_settings, producer_factory=producer_factory())

        assert client.state == DeliveryState.DISABLED
        assert await client.initialize() is False
        assert await client.send(event_factory()) is False
        await client.disconnect()

        assert FakeProducer.instances == []
        assert client.state == DeliveryState.DISABLED

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, settings):
        client = DeliveryClient(settings, producer_factory=producer_factory())

        assert await client.initialize() is True
        assert await client.initialize() is True

        assert len(FakeProducer.instances) == 1
        assert FakeProducer.instances[0].started == 1
        assert client.state == DeliveryState.CONNECTED

    @pytest.mark.asyncio
    async def test_connect_failure(self, settings):
        client = DeliveryClient(settings, producer_factory=producer_factory(fail_start=True))

        assert await client.initialize() is False

        assert client.state == DeliveryState.DISCONNECTED
        assert FakeProducer.instances[0].stopped == 1

    @pytest.mark.asyncio
    async def test_send_publishes_to_topic(self, settings, event_factory):
        client = DeliveryClient(settings, producer_factory=producer_factory())
        event = event_factory()

        assert await client.send(event) is True

        producer = FakeProducer.instances[0]
        assert producer.sent[0]["topic"] == "audit-events"
        assert producer.sent[0]["key"] == event.event_id.encode()
        assert producer.events[0]["eventId"] == event.event_id

    @pytest.mark.asyncio
    async def test_send_connects_lazily_after_failed_start(self, settings, event_factory):
        attempts = []

        def flaky_factory(**options):
            producer = FakeProducer(fail_start=not attempts, **options)
            attempts.append(producer)
            return producer

        client = DeliveryClient(settings, producer_factory=flaky_factory)
        assert await client.initialize() is False

        assert await client.send(event_factory()) is True
        assert len(attempts) == 2
        assert client.ready

    @pytest.mark.asyncio
    async def test_send_failure_returns_false(self, settings, event_factory):
        client = DeliveryClient(settings, producer_factory=producer_factory(fail_always=True))

        assert await client.send(event_factory()) is False
        assert client.ready

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, settings):
        client = DeliveryClient(settings, producer_factory=producer_factory())
        await client.initialize()

        await client.disconnect()
        await client.disconnect()

        assert FakeProducer.instances[0].stopped == 1
        assert client.state == DeliveryState.DISCONNECTED


class HangingProducer(FakeProducer):
    async def start(self):
        self.started += 1
        await asyncio.sleep(3600)


class TestReconnect:
    """Connect attempts while the bus is unreachable."""

    @pytest.mark.asyncio
    async def test_concurrent_sends_share_one_connect_attempt(self, settings, event_factory):
        """Should make a single connect attempt for a burst of sends."""
        settings = replace(settings, connect_timeout=0.05)
        client = DeliveryClient(settings, producer_factory=HangingProducer)

        results = await asyncio.wait_for(
            asyncio.gather(*(client.send(event_factory()) for _ in range(20))),
            timeout=1.0,
        )

        assert results == [False] * 20
        assert len(FakeProducer.instances) == 1
        assert FakeProducer.instances[0].stopped == 1
        assert client.state == DeliveryState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_no_reconnect_during_cooldown(self, settings, event_factory):
        settings = replace(settings, reconnect_cooldown=60.0)
        client = DeliveryClient(settings, producer_factory=producer_factory(fail_start=True))

        assert await client.initialize() is False
        assert await client.send(event_factory()) is False
        assert await client.initialize() is False

        assert len(FakeProducer.instances) == 1

    @pytest.mark.asyncio
    async def test_reconnects_after_cooldown(self, settings, event_factory):
        attempts = []

        def flaky_factory(**options):
            producer = FakeProducer(fail_start=not attempts, **options)
            attempts.append(producer)
            return producer

        client = DeliveryClient(replace(settings, reconnect_cooldown=0.05), producer_factory=flaky_factory)
        assert await client.initialize() is False
        assert await client.send(event_factory()) is False

        await asyncio.sleep(0.06)

        assert await client.send(event_factory()) is True
        assert len(attempts) == 2
