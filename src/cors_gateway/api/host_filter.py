"""Target host allow/block filtering.

Entries match as plain substrings of the hostname: ``example`` blocks
``example.com`` and ``api.example.org`` alike. Blocked entries are checked
first and always win.
"""
from __future__ import annotations

from collections.abc import Sequence


def extract_hostname(target_url: str) -> str:
    """Return the hostname part of a URL string without port or path."""
    host = target_url
    idx = host.find('://')
    if idx != -1:
        host = host[idx + 3:]
    idx = host.find('/')
    if idx != -1:
        host = host[:idx]
    idx = host.find(':')
    if idx != -1:
        host = host[:idx]
    return host


class HostFilter:
    """Evaluates target URLs against block and allow substring lists."""

    def __init__(
        self,
        blocked_hosts: Sequence[str] = (),
        allowed_hosts: Sequence[str] = (),
    ) -> None:
        self.blocked_hosts = tuple(blocked_hosts)
        self.allowed_hosts = tuple(allowed_hosts)

    def is_allowed(self, target_url: str) -> bool:
        host = extract_hostname(target_url)

        if any(blocked in host for blocked in self.blocked_hosts):
            return False

        if not self.allowed_hosts:
            return True

        return any(allowed in host for allowed in self.allowed_hosts)
