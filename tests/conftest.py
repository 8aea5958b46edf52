"""Pytest configuration for cors_gateway tests."""
import sys
from pathlib import Path

# Add src/ to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC = _PROJECT_ROOT / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import httpx
import pytest

from cors_gateway.api.config import GatewaySettings


@pytest.fixture
def settings():
    """Default policy: any origin, no host lists, no rate limit."""
    return GatewaySettings()


@pytest.fixture
def upstream_requests():
    """Requests seen by the fake upstream, in arrival order."""
    return []


@pytest.fixture
def echo_transport(upstream_requests):
    """Fake upstream answering 200 with a fixed JSON body."""

    def handler(request: httpx.Request) -> httpx.Response:
        upstream_requests.append(request)
        return httpx.Response(
            200,
            json={'ok': True},
            headers={'X-Upstream': 'yes'},
        )

    return httpx.MockTransport(handler)
