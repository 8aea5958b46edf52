"""ASGI middleware for request correlation and HTTP metrics.

Both are plain ASGI callables that only touch the ``http.response.start``
message, so relayed upstream bodies stream through unbuffered. Add them with
``app.add_middleware()``; RequestIdMiddleware should be the outer one.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .logging import request_id_ctx
from .metrics import REQUEST_DURATION_SECONDS, REQUESTS_IN_FLIGHT, REQUESTS_TOTAL

REQUEST_ID_HEADER = "x-request-id"

_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9-]{8,128}$")

_OWN_ROUTES = frozenset({"/health", "/metrics"})


def route_label(path: str) -> str:
    """Metric label for a request path.

    Every path outside the gateway's own endpoints is forwarded traffic,
    so it collapses to ``gateway`` and label cardinality stays fixed.
    """
    return path if path in _OWN_ROUTES else "gateway"


class RequestIdMiddleware:
    """Accept a well-formed X-Request-ID or mint a UUID, and echo it back.

    The ID is held in ``request_id_ctx`` while the request is served, which
    attaches it to every log entry.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        incoming = Headers(scope=scope).get(REQUEST_ID_HEADER, "")
        rid = incoming if _VALID_REQUEST_ID.match(incoming) else str(uuid.uuid4())

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = rid
            await send(message)

        token = request_id_ctx.set(rid)
        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            request_id_ctx.reset(token)


class MetricsMiddleware:
    """Count requests by status and time them until headers are sent."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        route = route_label(scope["path"])
        start = time.perf_counter()
        status = "500"

        async def send_with_metrics(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = str(message["status"])
                REQUEST_DURATION_SECONDS.labels(method=method, route=route).observe(
                    time.perf_counter() - start,
                )
            await send(message)

        REQUESTS_IN_FLIGHT.inc()
        try:
            await self.app(scope, receive, send_with_metrics)
        finally:
            REQUESTS_IN_FLIGHT.dec()
            REQUESTS_TOTAL.labels(method=method, route=route, status=status).inc()
