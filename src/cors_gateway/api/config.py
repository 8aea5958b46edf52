"""Gateway policy configuration.

GatewaySettings is the single configuration object accepted by create_app().
It is a plain frozen dataclass (not env-coupled) so tests can inject config
without touching os.environ. ``from_env()`` is the production factory.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

DEFAULT_PORT = 8080
DEFAULT_MAX_RESPONSE_BYTES = 10 * 1024 * 1024
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_MAX_REDIRECTS = 10

WILDCARD_ORIGIN = "*"

_TRUE_VALUES = frozenset({"true", "1", "yes"})

# One "<number><unit>" term of a duration string such as "1m30s" or "250ms".
_DURATION_TERM = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_BARE_SECONDS = re.compile(r"[+-]?(\d+(?:\.\d*)?|\.\d+)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> float:
    """Parse a duration string into seconds.

    Accepts unit-suffixed terms (``30s``, ``1m30s``, ``500ms``, ``1.5h``) and
    bare numbers, which are read as seconds.

    Raises:
        ValueError: If the string is not a valid duration.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    if _BARE_SECONDS.fullmatch(text):
        return float(text)

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_TERM.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return sign * total


def _env_str(env: dict[str, str], key: str, default: str) -> str:
    value = env.get(key, "")
    return value if value != "" else default


def _env_int(env: dict[str, str], key: str, default: int) -> int:
    value = env.get(key, "")
    if value:
        try:
            return int(value)
        except ValueError:
            pass
    return default


def _env_duration(env: dict[str, str], key: str, default: float) -> float:
    value = env.get(key, "")
    if value:
        try:
            return parse_duration(value)
        except ValueError:
            pass
    return default


def _env_bool(env: dict[str, str], key: str, default: bool) -> bool:
    value = env.get(key, "")
    if value:
        return value in _TRUE_VALUES
    return default


def _env_list(env: dict[str, str], key: str, default: str) -> tuple[str, ...]:
    raw = _env_str(env, key, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True, slots=True)
class GatewaySettings:
    """Process-wide forwarding policy.

    Built once at startup and read concurrently by every request without
    synchronization. All fields have the defaults of an unconfigured process.
    """

    # ── Server ─────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT

    # ── Forwarding limits ──────────────────────────────────────────
    max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES
    """Cap on relayed upstream body bytes; the rest is silently dropped."""

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    """Seconds allowed for one outbound round trip, body transfer included."""

    max_redirects: int = DEFAULT_MAX_REDIRECTS

    # ── CORS ───────────────────────────────────────────────────────
    allowed_origins: tuple[str, ...] = (WILDCARD_ORIGIN,)

    # ── Host filtering ─────────────────────────────────────────────
    blocked_hosts: tuple[str, ...] = ()
    allowed_hosts: tuple[str, ...] = ()
    """Empty means every host that is not blocked."""

    # ── Rate limiting ──────────────────────────────────────────────
    rate_limit_per_minute: int = 0
    """Requests per client IP per minute. 0 disables limiting."""

    # ── Logging ────────────────────────────────────────────────────
    verbose_logging: bool = False
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def rate_limit_enabled(self) -> bool:
        return self.rate_limit_per_minute > 0

    @property
    def allows_any_origin(self) -> bool:
        return self.allowed_origins == (WILDCARD_ORIGIN,)

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not 0 < self.port < 65536:
            errors.append(f"port must be between 1 and 65535 (got {self.port})")
        if self.max_response_bytes <= 0:
            errors.append("max_response_bytes must be positive")
        if self.request_timeout <= 0:
            errors.append("request_timeout must be positive")
        if self.max_redirects < 0:
            errors.append("max_redirects must not be negative")
        if self.rate_limit_per_minute < 0:
            errors.append("rate_limit_per_minute must not be negative")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> GatewaySettings:
        """Build settings from environment variables.

        Unparsable numeric or duration values fall back to their defaults.
        """
        if env is None:
            env = dict(os.environ)

        return cls(
            host=_env_str(env, "HOST", "0.0.0.0"),
            port=_env_int(env, "PORT", DEFAULT_PORT),
            max_response_bytes=_env_int(env, "MAX_REQUEST_SIZE", DEFAULT_MAX_RESPONSE_BYTES),
            request_timeout=_env_duration(env, "REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
            max_redirects=_env_int(env, "MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS),
            allowed_origins=_env_list(env, "ALLOWED_ORIGINS", WILDCARD_ORIGIN),
            blocked_hosts=_env_list(env, "BLOCKED_HOSTS", ""),
            allowed_hosts=_env_list(env, "ALLOWED_HOSTS", ""),
            verbose_logging=_env_bool(env, "VERBOSE_LOGGING", False),
            rate_limit_per_minute=_env_int(env, "RATE_LIMIT_PER_MINUTE", 0),
            log_level=_env_str(env, "LOG_LEVEL", "INFO"),
            log_format=_env_str(env, "LOG_FORMAT", "json"),
        )
