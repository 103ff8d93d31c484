"""
Shared fixtures for the audit pipeline tests.
"""

import asyncio
import json

import pytest

from medstaff_audit.audit.enricher import enrich
from medstaff_audit.audit.models import Principal, RequestSnapshot, ResponseSnapshot
from medstaff_audit.config import AuditSettings
from medstaff_audit.pipeline import AuditPipeline

CONNECTION_STRING = (
    "Endpoint=sb://audit-test.servicebus.windows.net/;"
    "SharedAccessKeyName=send;SharedAccessKey=dGVzdA=="
)


class FakeProducer:
    """Stands in for AIOKafkaProducer; records what would have been published."""

    instances = []

    def __init__(self, fail_sends: int = 0, fail_always: bool = False, fail_start: bool = False, **options):
        self.options = options
        self.fail_sends = fail_sends
        self.fail_always = fail_always
        self.fail_start = fail_start
        self.started = 0
        self.stopped = 0
        self.send_calls = 0
        self.sent = []
        FakeProducer.instances.append(self)

    async def start(self):
        self.started += 1
        if self.fail_start:
            raise ConnectionError("broker unreachable")

    async def stop(self):
        self.stopped += 1

    async def send_and_wait(self, topic, value=None, key=None, headers=None):
        self.send_calls += 1
        if self.fail_always or self.send_calls <= self.fail_sends:
            raise ConnectionError("broker unreachable")
        self.sent.append({"topic": topic, "key": key, "value": value, "headers": headers})

    @property
    def events(self):
        return [json.loads(message["value"]) for message in self.sent]


def producer_factory(**behaviour):
    """Factory with fixed failure behaviour, usable as producer_factory=."""
    def factory(**options):
        return FakeProducer(**behaviour, **options)
    return factory


async def instant_sleep(delay):
    await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def reset_fake_producers():
    FakeProducer.instances = []
    yield
    FakeProducer.instances = []


@pytest.fixture
def settings():
    return AuditSettings(
        brokers=("audit-test.servicebus.windows.net:9093",),
        connection_string=CONNECTION_STRING,
        topic="audit-events",
        retry_delay=0.01,
        drain_interval=0.01,
        shutdown_timeout=2.0,
        reconnect_cooldown=0.0,
    )


@pytest.fixture
def disabled_settings():
    return AuditSettings(connection_string=None)


@pytest.fixture
def make_pipeline(settings):
    def _make(settings_override=None, **behaviour):
        return AuditPipeline(
            settings_override or settings,
            producer_factory=producer_factory(**behaviour),
            sleep=instant_sleep,
        )
    return _make


@pytest.fixture
def event_factory(settings):
    """Build a real AuditEvent through the enricher."""
    def _make(method="GET", path="/patients/1", status_code=200, **request_fields):
        request = RequestSnapshot(
            method=method,
            path=path,
            principal=Principal.from_value(request_fields.pop("principal", {"id": "u-1", "role": "MEDICO"})),
            correlation_id=request_fields.pop("correlation_id", "corr-1"),
            **request_fields,
        )
        return enrich(request, ResponseSnapshot(status_code=status_code), 12.5, settings)
    return _make
