"""CORS origin resolution.

Decides which ``Access-Control-Allow-Origin`` value the gateway emits for a
request. The gateway never rejects a disallowed origin itself: it answers
with the first configured origin, which the browser then refuses to match.
"""
from __future__ import annotations

from collections.abc import Sequence

from starlette.datastructures import MutableHeaders

from .config import WILDCARD_ORIGIN

ALLOW_ORIGIN_HEADER = 'Access-Control-Allow-Origin'
ALLOW_CREDENTIALS_HEADER = 'Access-Control-Allow-Credentials'

ALLOWED_METHODS = 'GET, POST, PUT, DELETE, PATCH, OPTIONS'
MAX_AGE_SECONDS = 86400


def _first_or_wildcard(allowed_origins: Sequence[str]) -> str:
    return allowed_origins[0] if allowed_origins else WILDCARD_ORIGIN


def resolve_allowed_origin(
    allowed_origins: Sequence[str],
    request_origin: str | None,
) -> str:
    """Return the single origin value to send back for this request.

    Args:
        allowed_origins: Configured allow-list, in order.
        request_origin: Inbound ``Origin`` header, or None when absent.
    """
    if len(allowed_origins) == 1 and allowed_origins[0] == WILDCARD_ORIGIN:
        return WILDCARD_ORIGIN

    if not request_origin:
        return _first_or_wildcard(allowed_origins)

    for allowed in allowed_origins:
        if allowed == WILDCARD_ORIGIN or allowed == request_origin:
            return request_origin

    return _first_or_wildcard(allowed_origins)


def cors_headers(allowed_origin: str) -> dict[str, str]:
    """Full CORS header set for a resolved origin."""
    headers = {
        ALLOW_ORIGIN_HEADER: allowed_origin,
        'Access-Control-Allow-Methods': ALLOWED_METHODS,
        'Access-Control-Allow-Headers': '*',
        'Access-Control-Max-Age': str(MAX_AGE_SECONDS),
    }
    # Wildcard and credentials are mutually exclusive.
    if allowed_origin != WILDCARD_ORIGIN:
        headers[ALLOW_CREDENTIALS_HEADER] = 'true'
    return headers


def apply_cors_headers(
    headers: MutableHeaders,
    allowed_origin: str,
) -> None:
    """Overwrite CORS headers on a response, replacing upstream values."""
    values = cors_headers(allowed_origin)
    for key, value in values.items():
        headers[key] = value
    if ALLOW_CREDENTIALS_HEADER not in values and ALLOW_CREDENTIALS_HEADER in headers:
        del headers[ALLOW_CREDENTIALS_HEADER]
