"""Run the CORS gateway: ``python -m cors_gateway``.

Policy comes from the environment; --host/--port override it.
"""
from __future__ import annotations

import argparse
import dataclasses
import sys

import uvicorn

from .api.app import create_app
from .api.config import GatewaySettings
from .observability.logging import configure_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cors-gateway")
    parser.add_argument("--host", default=None, help="bind address (default: $HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="listen port (default: $PORT or 8080)")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> GatewaySettings:
    settings = GatewaySettings.from_env()
    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    return dataclasses.replace(settings, **overrides) if overrides else settings


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = build_settings(args)

    errors = settings.validate()
    if errors:
        for error in errors:
            print(f"cors-gateway: {error}", file=sys.stderr)
        return 2

    configure_logging(
        level=settings.log_level,
        log_format=settings.log_format,
    )
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
