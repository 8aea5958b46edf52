"""CORS gateway API.

Example:
    from cors_gateway.api import create_app, GatewaySettings
    app = create_app(GatewaySettings.from_env())
"""

from .app import create_app
from .config import GatewaySettings, parse_duration
from .cors import apply_cors_headers, cors_headers, resolve_allowed_origin
from .errors import (
    ClientInputError,
    GatewayError,
    HostNotAllowed,
    RateLimitExceeded,
    UpstreamTransportError,
)
from .forwarding import ForwardingEngine
from .host_filter import HostFilter, extract_hostname
from .rate_limiter import FixedWindowRateLimiter, client_ip_from_request

__all__ = [
    'ClientInputError',
    'FixedWindowRateLimiter',
    'ForwardingEngine',
    'GatewayError',
    'GatewaySettings',
    'HostFilter',
    'HostNotAllowed',
    'RateLimitExceeded',
    'UpstreamTransportError',
    'apply_cors_headers',
    'client_ip_from_request',
    'cors_headers',
    'create_app',
    'extract_hostname',
    'parse_duration',
    'resolve_allowed_origin',
]
