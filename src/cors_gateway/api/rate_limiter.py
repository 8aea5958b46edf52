"""Per-client-IP rate limiting.

Fixed one-minute windows keyed by client IP. The window map is the only
mutable state shared across requests; every read-check-write runs under a
single lock and never spans I/O.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock

from starlette.requests import Request

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0

# Windows whose reset time passed more than one window ago are dropped at
# most this often.
DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0


@dataclass
class RateWindow:
    """Request count for one client IP within the current window."""
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Thread-safe fixed-window counter.

    The first request from an IP opens a window of ``window_seconds``;
    subsequent requests count against ``max_requests`` until the window
    resets, at which point the record is replaced rather than decremented.
    """

    def __init__(
        self,
        max_requests: int,
        *,
        window_seconds: float = WINDOW_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._windows: dict[str, RateWindow] = {}
        self._lock = Lock()
        self._next_sweep_at: float | None = None

    def admit(self, client_ip: str, now: float | None = None) -> bool:
        """Count a request from ``client_ip``. Returns False if over the limit."""
        now = now if now is not None else time.time()

        with self._lock:
            self._maybe_sweep(now)

            window = self._windows.get(client_ip)
            if window is None or now >= window.reset_at:
                self._windows[client_ip] = RateWindow(
                    count=1, reset_at=now + self.window_seconds,
                )
                return True

            if window.count >= self.max_requests:
                return False

            window.count += 1
            return True

    def current_count(self, client_ip: str, now: float | None = None) -> int:
        """Return the request count in the client's live window."""
        now = now if now is not None else time.time()
        with self._lock:
            window = self._windows.get(client_ip)
            if window is None or now >= window.reset_at:
                return 0
            return window.count

    def sweep(self, now: float | None = None) -> int:
        """Drop windows that expired over a window ago. Returns how many."""
        now = now if now is not None else time.time()
        with self._lock:
            return self._sweep_locked(now)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def _maybe_sweep(self, now: float) -> None:
        if self._next_sweep_at is None:
            self._next_sweep_at = now + self.sweep_interval_seconds
            return
        if now >= self._next_sweep_at:
            removed = self._sweep_locked(now)
            if removed:
                logger.debug('Swept %d stale rate-limit windows', removed)
            self._next_sweep_at = now + self.sweep_interval_seconds

    def _sweep_locked(self, now: float) -> int:
        cutoff = now - self.window_seconds
        stale = [ip for ip, w in self._windows.items() if w.reset_at <= cutoff]
        for ip in stale:
            del self._windows[ip]
        return len(stale)


def client_ip_from_request(request: Request) -> str:
    """Derive the client IP used as the rate-limit key.

    Prefers the first X-Forwarded-For entry, then X-Real-IP, then the
    transport peer. Starlette reports the peer host without its port.
    """
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()

    real_ip = request.headers.get('x-real-ip')
    if real_ip:
        return real_ip

    if request.client is None:
        return ''
    return request.client.host
