"""Liveness and metrics endpoints.

/health always answers 200 while the process is serving; it reports no
dependency state because the gateway has none worth gating on.
"""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import Response

from ..observability.metrics import metrics_text


def _rfc3339_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='seconds')


def create_health_router() -> APIRouter:
    """Create the /health and /metrics router."""
    router = APIRouter(tags=['health'])

    @router.get('/health')
    async def health() -> dict[str, str]:
        return {'status': 'ok', 'timestamp': _rfc3339_now()}

    @router.get('/metrics')
    async def metrics() -> Response:
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    return router
