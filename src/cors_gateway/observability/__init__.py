"""Logging, metrics and request correlation for cors-gateway."""

from .logging import configure_logging, get_logger, request_id_ctx
from .metrics import metrics_text
from .middleware import MetricsMiddleware, RequestIdMiddleware

__all__ = [
    "MetricsMiddleware",
    "RequestIdMiddleware",
    "configure_logging",
    "get_logger",
    "metrics_text",
    "request_id_ctx",
]
