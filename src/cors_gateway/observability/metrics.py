"""Prometheus metrics for cors-gateway.

All metrics live on the default registry under the ``cors_gateway``
namespace, so /metrics also exposes the process and platform collectors
that prometheus_client installs.
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

NAMESPACE = "cors_gateway"

# Served requests, labelled by route: "/health", "/metrics" or "gateway".
REQUESTS_TOTAL = Counter(
    "requests_total",
    "Requests served, by method, route and status code.",
    labelnames=("method", "route", "status"),
    namespace=NAMESPACE,
)

REQUEST_DURATION_SECONDS = Histogram(
    "request_duration_seconds",
    "Seconds until response headers were sent.",
    labelnames=("method", "route"),
    namespace=NAMESPACE,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

REQUESTS_IN_FLIGHT = Gauge(
    "requests_in_flight",
    "Requests currently being served.",
    namespace=NAMESPACE,
)

# preflight, rate_limited, bad_request, host_blocked, upstream_error, forwarded
DECISIONS_TOTAL = Counter(
    "decisions_total",
    "Forwarding pipeline outcomes.",
    labelnames=("outcome",),
    namespace=NAMESPACE,
)

UPSTREAM_DURATION_SECONDS = Histogram(
    "upstream_duration_seconds",
    "Seconds until upstream response headers arrived, redirects included.",
    namespace=NAMESPACE,
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

RELAYED_BYTES_TOTAL = Counter(
    "relayed_bytes_total",
    "Upstream body bytes relayed to callers after the size cap.",
    namespace=NAMESPACE,
)


def metrics_text() -> tuple[bytes, str]:
    """Return (body, content_type) for the /metrics endpoint."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
