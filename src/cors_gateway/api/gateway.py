"""The forwarding endpoint: ``/?url=<absolute-url>``.

Runs one request through the pipeline, strictly in this order:

1. Resolve the allowed CORS origin (once; reused for every response below)
2. Answer OPTIONS preflight with 200 and no body
3. Rate-limit gate (only when a ceiling is configured)
4. ``url`` presence and scheme validation
5. Host filter gate
6. Forward and stream the upstream response

Every response leaving this endpoint, errors included, carries the CORS
headers so browsers can read it.
"""
from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import Response

from ..observability.logging import get_logger
from ..observability.metrics import DECISIONS_TOTAL
from .cors import apply_cors_headers, resolve_allowed_origin
from .errors import (
    ClientInputError,
    GatewayError,
    HostNotAllowed,
    RateLimitExceeded,
    UpstreamTransportError,
    error_response,
)
from .forwarding import validate_target_url
from .rate_limiter import client_ip_from_request

logger = get_logger(__name__)

GATEWAY_METHODS = ['GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'OPTIONS', 'HEAD']

_OUTCOMES: dict[type[GatewayError], str] = {
    ClientInputError: 'bad_request',
    HostNotAllowed: 'host_blocked',
    RateLimitExceeded: 'rate_limited',
    UpstreamTransportError: 'upstream_error',
}


def _target_url_param(request: Request) -> str | None:
    """First ``url`` query value; later repeats are ignored."""
    values = request.query_params.getlist('url')
    return values[0] if values else None


async def _run_pipeline(request: Request) -> Response:
    """Steps 2-6 of the pipeline. Raises GatewayError on rejection."""
    if request.method == 'OPTIONS':
        DECISIONS_TOTAL.labels(outcome='preflight').inc()
        return Response(status_code=200)

    state = request.app.state
    settings = state.settings

    if settings.rate_limit_enabled:
        client_ip = client_ip_from_request(request)
        if not state.rate_limiter.admit(client_ip):
            raise RateLimitExceeded(client_ip)

    target_url = validate_target_url(_target_url_param(request))

    if not state.host_filter.is_allowed(target_url):
        if settings.verbose_logging:
            logger.info('request_blocked', url=target_url)
        raise HostNotAllowed()

    response = await state.forwarding_engine.forward(request, target_url)
    DECISIONS_TOTAL.labels(outcome='forwarded').inc()
    return response


def create_gateway_router() -> APIRouter:
    """Create the catch-all forwarding router.

    Mount it last: it claims every path not owned by an earlier route.
    """
    router = APIRouter(tags=['gateway'])

    @router.api_route('/', methods=GATEWAY_METHODS)
    @router.api_route('/{path:path}', methods=GATEWAY_METHODS)
    async def forward_request(request: Request) -> Response:
        settings = request.app.state.settings
        allowed_origin = resolve_allowed_origin(
            settings.allowed_origins, request.headers.get('origin'),
        )

        try:
            response = await _run_pipeline(request)
        except GatewayError as exc:
            DECISIONS_TOTAL.labels(
                outcome=_OUTCOMES.get(type(exc), 'error'),
            ).inc()
            if isinstance(exc, UpstreamTransportError) and settings.verbose_logging:
                logger.info(
                    'upstream_fetch_failed',
                    method=request.method,
                    url=_target_url_param(request),
                    error=exc.message,
                )
            response = error_response(exc)

        apply_cors_headers(response.headers, allowed_origin)
        return response

    return router
