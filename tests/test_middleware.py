"""
Tests for the ASGI interceptor, driven through a real FastAPI app.
"""

import httpx
import pytest
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from medstaff_audit.audit.taxonomy import REDACTED
from medstaff_audit.metrics import MetricNames
from medstaff_audit.middleware import decode_headers, parse_query

from conftest import FakeProducer


async def attach_doctor(request: Request):
    request.state.user = {"id": "doc-7", "role": "medico", "session_id": "sess-1"}


def build_app(pipeline) -> FastAPI:
    app = FastAPI()

    @app.post("/auth/sign-in")
    async def sign_in(payload: dict):
        if payload.get("password") != "secret1":
            raise HTTPException(status_code=401, detail="Invalid credentials")
        return {"accessToken": "issued"}

    @app.get("/patients/{id}", dependencies=[Depends(attach_doctor)])
    async def get_patient(id: str, request: Request):
        request.state.audit_data = {"chart": "full"}
        return JSONResponse({"id": id}, headers={"x-custom": "kept"})

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/reports/broken")
    async def broken():
        return JSONResponse({"message": "database unavailable"}, status_code=503)

    @app.get("/reports/crash")
    async def crash():
        raise RuntimeError("handler exploded")

    @app.post("/notes")
    async def notes(request: Request):
        text = (await request.body()).decode()
        return PlainTextResponse(text.upper())

    pipeline.install(app)
    return app


def client_for(app, raise_app_exceptions=True) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


def published(index=0):
    return FakeProducer.instances[index].events


class TestInterceptor:
    """Capture of real calls."""

    @pytest.mark.asyncio
    async def test_successful_login(self, make_pipeline):
        pipeline = make_pipeline()
        async with client_for(build_app(pipeline)) as client:
            response = await client.post(
                "/auth/sign-in",
                json={"email": "a@b.c", "password": "secret1"},
                headers={"x-request-id": "req-42"},
            )
        await pipeline.wait_for_captures(timeout=1.0)

        assert response.status_code == 200
        assert response.json() == {"accessToken": "issued"}

        event = published()[0]
        assert event["eventType"] == "USER_LOGIN"
        assert event["success"] is True
        assert event["metadata"]["body"] == {"email": "a@b.c", "password": REDACTED}
        assert event["metadata"]["correlationId"] == "req-42"

    @pytest.mark.asyncio
    async def test_failed_login(self, make_pipeline):
        pipeline = make_pipeline()
        async with client_for(build_app(pipeline)) as client:
            response = await client.post("/auth/sign-in", json={"email": "a@b.c", "password": "wrong"})
        await pipeline.wait_for_captures(timeout=1.0)

        assert response.status_code == 401

        event = published()[0]
        assert event["eventType"] == "USER_LOGIN_FAILED"
        assert event["severityLevel"] == "MEDIUM"
        assert event["success"] is False
        assert event["errorMessage"] == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_patient_access(self, make_pipeline):
        pipeline = make_pipeline()
        async with client_for(build_app(pipeline)) as client:
            response = await client.get(
                "/patients/42?view=summary",
                headers={"x-access-reason": "TREATMENT", "user-agent": "ward-tablet"},
            )
        await pipeline.wait_for_captures(timeout=1.0)

        assert response.json() == {"id": "42"}
        assert response.headers["x-custom"] == "kept"

        event = published()[0]
        assert event["eventType"] == "PATIENT_ACCESSED"
        assert event["resourceId"] == "42"
        assert event["hipaaCompliant"] is True
        assert event["complianceStandards"] == ["HIPAA"]
        assert event["userId"] == "doc-7"
        assert event["userRole"] == "MEDICO"
        assert event["sessionId"] == "sess-1"
        assert event["userAgent"] == "ward-tablet"
        assert event["metadata"]["hipaa"] == {"patientId": "42", "accessReason": "TREATMENT"}
        assert event["metadata"]["query"] == {"view": "summary"}
        assert event["metadata"]["auditData"] == {"chart": "full"}

    @pytest.mark.asyncio
    async def test_excluded_route_is_not_audited(self, make_pipeline):
        """Should skip all audit work for excluded paths."""
        pipeline = make_pipeline()
        async with client_for(build_app(pipeline)) as client:
            response = await client.get("/health")
        await pipeline.wait_for_captures(timeout=1.0)

        assert response.json() == {"status": "ok"}
        assert FakeProducer.instances == []
        assert pipeline.metrics.get_counter(MetricNames.CAPTURED) == 0

    @pytest.mark.asyncio
    async def test_server_error_status(self, make_pipeline):
        pipeline = make_pipeline()
        async with client_for(build_app(pipeline)) as client:
            response = await client.get("/reports/broken")
        await pipeline.wait_for_captures(timeout=1.0)

        assert response.status_code == 503

        event = published()[0]
        assert event["eventType"] == "SYSTEM_ERROR"
        assert event["severityLevel"] == "CRITICAL"
        assert event["errorMessage"] == "database unavailable"

    @pytest.mark.asyncio
    async def test_app_exception_propagates_and_is_audited(self, make_pipeline):
        pipeline = make_pipeline()
        async with client_for(build_app(pipeline)) as client:
            with pytest.raises(RuntimeError, match="handler exploded"):
                await client.get("/reports/crash")
        await pipeline.wait_for_captures(timeout=1.0)

        event = published()[0]
        assert event["eventType"] == "SYSTEM_ERROR"
        assert event["statusCode"] == 500

    @pytest.mark.asyncio
    async def test_non_json_body_passes_through(self, make_pipeline):
        pipeline = make_pipeline()
        async with client_for(build_app(pipeline)) as client:
            response = await client.post("/notes", content=b"shift handover", headers={"content-type": "text/plain"})
        await pipeline.wait_for_captures(timeout=1.0)

        assert response.text == "SHIFT HANDOVER"
        assert published()[0]["metadata"]["body"] == {}

    @pytest.mark.asyncio
    async def test_capture_failure_never_reaches_caller(self, make_pipeline, monkeypatch):
        import medstaff_audit.pipeline as pipeline_module

        def exploding_enrich(*args, **kwargs):
            raise KeyError("enrichment bug")

        monkeypatch.setattr(pipeline_module, "enrich", exploding_enrich)
        pipeline = make_pipeline()
        async with client_for(build_app(pipeline)) as client:
            response = await client.get("/patients/42")
        await pipeline.wait_for_captures(timeout=1.0)

        assert response.status_code == 200
        assert response.json() == {"id": "42"}
        assert pipeline.metrics.get_counter(MetricNames.CAPTURE_FAILURES) == 1

    @pytest.mark.asyncio
    async def test_unreachable_bus_does_not_affect_caller(self, make_pipeline):
        """Should return 200 while the event is retried and finally dropped."""
        pipeline = make_pipeline(fail_always=True)
        async with client_for(build_app(pipeline)) as client:
            response = await client.get("/patients/42")
        await pipeline.wait_for_captures(timeout=1.0)
        await pipeline.shutdown()

        assert response.status_code == 200
        assert pipeline.retry_queue.dropped == 1
        assert pipeline.retry_queue.abandoned == 0
        assert pipeline.metrics.get_counter(MetricNames.DROPPED) == 1

    @pytest.mark.asyncio
    async def test_schedule_failure_closes_capture(self, make_pipeline, monkeypatch):
        """Should close the capture coroutine when it cannot be scheduled."""
        pipeline = make_pipeline()
        refused = []

        def refuse(coro):
            refused.append(coro)
            raise RuntimeError("loop is closing")

        monkeypatch.setattr(pipeline, "spawn", refuse)
        async with client_for(build_app(pipeline)) as client:
            response = await client.get("/patients/42")

        assert response.status_code == 200
        assert len(refused) == 1
        assert refused[0].cr_frame is None
        assert FakeProducer.instances == []

    @pytest.mark.asyncio
    async def test_disabled_pipeline_is_transparent(self, make_pipeline, disabled_settings):
        pipeline = make_pipeline(disabled_settings)
        async with client_for(build_app(pipeline)) as client:
            response = await client.post("/auth/sign-in", json={"password": "secret1"})
        await pipeline.wait_for_captures(timeout=1.0)

        assert response.status_code == 200
        assert FakeProducer.instances == []
        assert pipeline.metrics.get_counter(MetricNames.CAPTURED) == 1
        assert pipeline.metrics.get_counter(MetricNames.SKIPPED) == 1


class TestHelpers:

    def test_decode_headers(self):
        headers = decode_headers([(b"X-Forwarded-For", b"1.1.1.1"), (b"x-forwarded-for", b"2.2.2.2")])

        assert headers == {"x-forwarded-for": "1.1.1.1, 2.2.2.2"}

    def test_parse_query(self):
        assert parse_query(b"id=1&tag=a&tag=b&empty=") == {"id": "1", "tag": ["a", "b"], "empty": ""}


class TestRegistration:

    @pytest.mark.asyncio
    async def test_middleware_entry(self, make_pipeline):
        """Should work when passed to the app constructor instead of install()."""
        pipeline = make_pipeline()
        app = FastAPI(middleware=[pipeline.middleware()])

        @app.post("/auth/logout")
        async def logout():
            return {"ok": True}

        async with client_for(app) as client:
            response = await client.post("/auth/logout")
        await pipeline.wait_for_captures(timeout=1.0)

        assert response.status_code == 200
        assert published()[0]["eventType"] == "USER_LOGOUT"
