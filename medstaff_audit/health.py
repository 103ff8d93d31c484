"""
Audit Health Check
==================
FastAPI router reporting the audit pipeline's delivery state and backlog.

The pipeline is best-effort, so an unhealthy bus only ever reports as
"degraded": the host service keeps serving requests either way.
"""

import time
from enum import Enum
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from .delivery.producer import DeliveryState
from .pipeline import AuditPipeline


class AuditHealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DISABLED = "disabled"


class AuditHealthResponse(BaseModel):
    status: AuditHealthStatus
    service: str
    delivery_state: str
    queue_depth: int
    draining: bool
    captured: int
    delivered: int
    dropped: int
    abandoned: int
    capture_failures: int
    timestamp: float


def evaluate_status(pipeline: AuditPipeline) -> AuditHealthStatus:
    state = pipeline.delivery.state
    if state == DeliveryState.DISABLED:
        return AuditHealthStatus.DISABLED
    if state != DeliveryState.CONNECTED or pipeline.retry_queue.pending:
        return AuditHealthStatus.DEGRADED
    return AuditHealthStatus.HEALTHY


def create_audit_health_router(
    pipeline: AuditPipeline,
    prefix: str = "/audit",
    tags: Optional[list] = None,
) -> APIRouter:
    """
    Create the audit health router.

    Hosts that do not want these endpoints audited should keep their paths
    in the excluded routes.
    """
    router = APIRouter(prefix=prefix, tags=tags or ["audit"])

    @router.get("/health", response_model=AuditHealthResponse)
    async def audit_health() -> AuditHealthResponse:
        stats = pipeline.stats()
        return AuditHealthResponse(
            status=evaluate_status(pipeline),
            service=pipeline.settings.service_name,
            delivery_state=stats["delivery_state"],
            queue_depth=stats["queue_depth"],
            draining=stats["draining"],
            captured=stats["captured"],
            delivered=stats["delivered"],
            dropped=stats["dropped"],
            abandoned=stats["abandoned"],
            capture_failures=stats["capture_failures"],
            timestamp=time.time(),
        )

    @router.get("/metrics", response_class=PlainTextResponse)
    async def audit_metrics() -> str:
        return pipeline.metrics.export_prometheus()

    return router
