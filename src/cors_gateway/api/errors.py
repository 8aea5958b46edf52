"""Gateway error taxonomy.

Every error the forwarding pipeline reports to a caller is a GatewayError
carrying the HTTP status and a browser-safe message. All of them render as
``{"error": "<message>"}``.
"""
from __future__ import annotations

from fastapi.responses import JSONResponse

MISSING_URL_MESSAGE = "Missing 'url' parameter. Usage: /?url=https://example.com"
BAD_SCHEME_MESSAGE = 'URL must start with http:// or https://'
HOST_NOT_ALLOWED_MESSAGE = 'This host is not allowed'
RATE_LIMITED_MESSAGE = 'Rate limit exceeded. Please try again later.'


class GatewayError(Exception):
    """Raised when a request fails in a way that maps to an HTTP error."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(f'Gateway error {self.status_code}: {message}')


class ClientInputError(GatewayError):
    """Missing, malformed, or unparsable target URL."""
    status_code = 400


class HostNotAllowed(GatewayError):
    """Target host rejected by the host filter."""
    status_code = 403

    def __init__(self, message: str = HOST_NOT_ALLOWED_MESSAGE):
        super().__init__(message)


class RateLimitExceeded(GatewayError):
    """Client exceeded its per-minute request ceiling."""
    status_code = 429

    def __init__(self, client_ip: str, message: str = RATE_LIMITED_MESSAGE):
        self.client_ip = client_ip
        super().__init__(message)


class UpstreamTransportError(GatewayError):
    """DNS, connect, TLS, timeout, or redirect-ceiling failure upstream."""
    status_code = 502

    def __init__(self, cause: Exception):
        self.cause = cause
        detail = str(cause) or type(cause).__name__
        super().__init__(f'Failed to fetch URL: {detail}')


def error_response(exc: GatewayError) -> JSONResponse:
    """Render a GatewayError as its JSON error body."""
    return JSONResponse(status_code=exc.status_code, content={'error': exc.message})
