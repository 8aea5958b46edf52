"""Logging setup for cors-gateway.

structlog renders every record, including those from uvicorn and other
stdlib loggers, so the process writes one stream of JSON lines (or console
output with ``LOG_FORMAT=console``). Entries logged while a request is being
served carry its ``request_id``.

Usage::

    from cors_gateway.observability.logging import configure_logging, get_logger

    configure_logging(level="INFO", log_format="json")
    logger = get_logger(__name__)
    logger.info("request_forwarded", url="https://example.com", status=200)
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog

# Set by RequestIdMiddleware for the duration of one request.
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

# Chatty library loggers and the level they are held at.
_LIBRARY_LEVELS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}

_configured = False


def _merge_request_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    return event_dict


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        _merge_request_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]


def _renderer(log_format: str):
    if log_format == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_logging(
    *,
    level: str = "INFO",
    log_format: str = "json",
    force: bool = False,
) -> None:
    """Send structlog and stdlib records through a single stdout handler.

    Args:
        level: Root log level name. Unknown names fall back to INFO.
        log_format: ``json`` for JSON lines, ``console`` for a readable
            development format.
        force: Reconfigure even if a previous call already did.
    """
    global _configured
    if _configured and not force:
        return
    _configured = True

    pre_chain = _pre_chain()
    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name, library_level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
