"""Outbound forwarding for the CORS gateway.

Mirrors an inbound request (method, headers, body) onto a target URL and
relays the upstream response back as a stream:
  - Host is dropped so httpx derives it from the target URL
  - Redirects are followed up to ``max_redirects``; one more is a failure
  - One deadline covers the whole round trip, body transfer included
  - The relayed body is capped at ``max_response_bytes`` without signalling
    truncation to the caller
  - Transport failures surface as UpstreamTransportError (502)
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterable

import httpx
from fastapi.responses import StreamingResponse
from starlette.requests import Request

from ..observability.logging import get_logger
from ..observability.metrics import (
    RELAYED_BYTES_TOTAL,
    UPSTREAM_DURATION_SECONDS,
)
from .config import GatewaySettings
from .errors import (
    BAD_SCHEME_MESSAGE,
    MISSING_URL_MESSAGE,
    ClientInputError,
    UpstreamTransportError,
)

logger = get_logger(__name__)

ALLOWED_SCHEMES = ('http://', 'https://')

# Hop-by-hop headers (RFC 2616 §13.5.1). The ASGI server frames the relayed
# body itself, so upstream framing headers must not be copied.
HOP_BY_HOP_HEADERS = frozenset({
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'te',
    'trailer',
    'transfer-encoding',
    'upgrade',
})

# Inbound headers that never reach upstream. Host is re-derived from the
# target URL; the inbound body has already been de-chunked by the server.
SKIPPED_REQUEST_HEADERS = frozenset({
    'host',
    'transfer-encoding',
})


def validate_target_url(target_url: str | None) -> str:
    """Check presence and scheme of the ``url`` query parameter.

    Raises:
        ClientInputError: If the URL is missing or not http(s).
    """
    if not target_url:
        raise ClientInputError(MISSING_URL_MESSAGE)
    if not target_url.startswith(ALLOWED_SCHEMES):
        raise ClientInputError(BAD_SCHEME_MESSAGE)
    return target_url


def build_forward_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Copy inbound headers for the outbound request, keeping repeats."""
    return [
        (key, value)
        for key, value in headers
        if key.lower() not in SKIPPED_REQUEST_HEADERS
    ]


def copy_response_headers(
    upstream_headers: httpx.Headers,
    max_response_bytes: int,
) -> list[tuple[str, str]]:
    """Select upstream response headers to relay, keeping repeats.

    Content-Length is dropped when the body will be cut at the byte cap,
    since the relayed body can no longer match it. Names keep the casing
    the upstream sent.
    """
    relayed: list[tuple[str, str]] = []
    encoding = upstream_headers.encoding
    for raw_key, raw_value in upstream_headers.raw:
        key = raw_key.decode(encoding)
        value = raw_value.decode(encoding)
        lower_key = key.lower()
        if lower_key in HOP_BY_HOP_HEADERS:
            continue
        if lower_key == 'content-length' and _exceeds(value, max_response_bytes):
            continue
        relayed.append((key, value))
    return relayed


def _exceeds(content_length: str, limit: int) -> bool:
    try:
        return int(content_length) > limit
    except ValueError:
        return True


class ForwardingEngine:
    """Issues outbound requests on behalf of gateway callers.

    Holds one shared httpx.AsyncClient, created lazily and closed with the
    application. ``transport`` lets tests substitute httpx.MockTransport.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Return the shared httpx client, creating it lazily."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._settings.request_timeout,
                follow_redirects=True,
                max_redirects=self._settings.max_redirects,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the shared HTTP client and release connections."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def forward(self, request: Request, target_url: str) -> StreamingResponse:
        """Send ``request`` to ``target_url`` and stream the response back.

        The returned response carries the upstream status and headers; the
        caller overlays CORS headers before returning it.

        Raises:
            ClientInputError: If httpx cannot build a request for the URL.
            UpstreamTransportError: If the upstream call fails.
        """
        deadline = time.monotonic() + self._settings.request_timeout
        client = self._get_client()
        body = await request.body()

        try:
            outbound = client.build_request(
                request.method,
                target_url,
                headers=build_forward_headers(request.headers.items()),
                content=body or None,
            )
        except httpx.InvalidURL as exc:
            raise ClientInputError(f'Invalid URL: {exc}') from exc

        start = time.perf_counter()
        try:
            upstream = await asyncio.wait_for(
                client.send(outbound, stream=True),
                timeout=_remaining(deadline),
            )
        except asyncio.TimeoutError:
            raise UpstreamTransportError(TimeoutError(
                f'request timed out after {self._settings.request_timeout:g}s'
            )) from None
        except httpx.HTTPError as exc:
            raise UpstreamTransportError(exc) from exc
        finally:
            UPSTREAM_DURATION_SECONDS.observe(time.perf_counter() - start)

        response = StreamingResponse(
            self._relay_body(upstream, request.method, target_url, deadline),
            status_code=upstream.status_code,
        )
        for key, value in copy_response_headers(
            upstream.headers, self._settings.max_response_bytes,
        ):
            response.headers.append(key, value)
        return response

    async def _relay_body(
        self,
        upstream: httpx.Response,
        method: str,
        target_url: str,
        deadline: float,
    ) -> AsyncIterator[bytes]:
        """Yield raw upstream body bytes up to the configured cap.

        Headers are already on the wire when this runs, so failures can only
        be logged; the connection is then closed by the server. A caller
        that goes away mid-relay is logged as ``relay_aborted``.
        """
        limit = self._settings.max_response_bytes
        written = 0
        completed = False
        try:
            if upstream.is_stream_consumed:
                # Body was read eagerly (e.g. in-memory transports).
                chunks = _single_chunk(upstream.content)
            else:
                chunks = upstream.aiter_raw().__aiter__()
            while written < limit:
                try:
                    chunk = await asyncio.wait_for(
                        chunks.__anext__(), timeout=_remaining(deadline),
                    )
                except StopAsyncIteration:
                    break
                chunk = chunk[:limit - written]
                written += len(chunk)
                yield chunk
            completed = True
        except asyncio.TimeoutError:
            logger.warning(
                'upstream_body_timeout',
                method=method,
                url=target_url,
                bytes=written,
            )
        except (httpx.HTTPError, httpx.StreamError) as exc:
            logger.warning(
                'upstream_body_error',
                method=method,
                url=target_url,
                bytes=written,
                error=str(exc) or type(exc).__name__,
            )
        except (GeneratorExit, asyncio.CancelledError):
            logger.warning(
                'relay_aborted',
                method=method,
                url=target_url,
                bytes=written,
            )
            raise
        finally:
            await upstream.aclose()
            RELAYED_BYTES_TOTAL.inc(written)

        if completed and self._settings.verbose_logging:
            logger.info(
                'request_forwarded',
                method=method,
                url=target_url,
                status=upstream.status_code,
                bytes=written,
            )


async def _single_chunk(content: bytes) -> AsyncIterator[bytes]:
    if content:
        yield content


def _remaining(deadline: float) -> float:
    return max(deadline - time.monotonic(), 0.0)
