"""Application factory for the CORS gateway.

create_app() is the single entry point for building the ASGI application.
It wires observability middleware, the health/metrics routes, and the
catch-all forwarding route, and builds the policy components from one
immutable GatewaySettings value.

Usage:
    # Production
    app = create_app(GatewaySettings.from_env())

    # Testing (upstream simulated with httpx.MockTransport)
    app = create_app(GatewaySettings(), transport=httpx.MockTransport(handler))
"""
from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from ..observability.logging import get_logger
from ..observability.middleware import MetricsMiddleware, RequestIdMiddleware
from .config import GatewaySettings
from .forwarding import ForwardingEngine
from .gateway import create_gateway_router
from .health import create_health_router
from .host_filter import HostFilter
from .rate_limiter import FixedWindowRateLimiter

logger = get_logger(__name__)


def _log_policy(settings: GatewaySettings) -> None:
    """Summarize the active policy once at startup."""
    logger.info(
        'gateway_starting',
        port=settings.port,
        usage=f'http://localhost:{settings.port}/?url=https://example.com',
        max_response_mb=settings.max_response_bytes // (1024 * 1024),
        request_timeout_s=settings.request_timeout,
        max_redirects=settings.max_redirects,
    )
    if settings.allows_any_origin:
        logger.info('cors_policy', mode='all origins allowed (*)')
    else:
        logger.info('cors_policy', mode='specific origins', origins=list(settings.allowed_origins))
    if settings.rate_limit_enabled:
        logger.info('rate_limit', per_minute=settings.rate_limit_per_minute)
    if settings.allowed_hosts:
        logger.info('allowed_hosts', hosts=list(settings.allowed_hosts))
    if settings.blocked_hosts:
        logger.info('blocked_hosts', hosts=list(settings.blocked_hosts))


def create_app(
    settings: GatewaySettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create a pre-wired FastAPI application.

    Args:
        settings: Forwarding policy. Defaults to GatewaySettings().
        transport: Optional httpx transport for outbound calls.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or GatewaySettings()
    engine = ForwardingEngine(settings, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _log_policy(settings)
        try:
            yield
        finally:
            await engine.close()

    app = FastAPI(
        title='CORS Gateway',
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.settings = settings
    app.state.rate_limiter = FixedWindowRateLimiter(settings.rate_limit_per_minute)
    app.state.host_filter = HostFilter(settings.blocked_hosts, settings.allowed_hosts)
    app.state.forwarding_engine = engine

    # Added last runs first: request_id is set before metrics are recorded.
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # Health and metrics first; the gateway route claims every other path.
    app.include_router(create_health_router())
    app.include_router(create_gateway_router())

    return app
