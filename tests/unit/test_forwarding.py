"""Unit tests for outbound forwarding.

Upstreams are simulated with httpx.MockTransport injected through
create_app(); the gateway is driven with the FastAPI test client.
"""
from __future__ import annotations

import asyncio

import httpx
import pytest
import structlog
from fastapi.testclient import TestClient
from starlette.requests import Request

from cors_gateway.api.app import create_app
from cors_gateway.api.config import GatewaySettings
from cors_gateway.api.errors import ClientInputError
from cors_gateway.api.forwarding import (
    ForwardingEngine,
    build_forward_headers,
    copy_response_headers,
    validate_target_url,
)


def _client(settings: GatewaySettings, handler) -> TestClient:
    app = create_app(settings, transport=httpx.MockTransport(handler))
    return TestClient(app)


# ── Helpers ──


class TestValidateTargetUrl:

    @pytest.mark.parametrize('url', [None, ''])
    def test_missing(self, url):
        with pytest.raises(ClientInputError) as exc:
            validate_target_url(url)
        assert exc.value.message == (
            "Missing 'url' parameter. Usage: /?url=https://example.com"
        )

    @pytest.mark.parametrize('url', [
        'ftp://example.com',
        'example.com',
        '//example.com',
        'HTTP://example.com',
        'javascript:alert(1)',
    ])
    def test_bad_scheme(self, url):
        with pytest.raises(ClientInputError) as exc:
            validate_target_url(url)
        assert exc.value.status_code == 400
        assert exc.value.message == 'URL must start with http:// or https://'

    @pytest.mark.parametrize('url', ['http://example.com', 'https://example.com/x?y=1'])
    def test_accepts_http_and_https(self, url):
        assert validate_target_url(url) == url


class TestBuildForwardHeaders:

    def test_drops_host_and_transfer_encoding(self):
        headers = build_forward_headers([
            ('host', 'gateway.local'),
            ('Transfer-Encoding', 'chunked'),
            ('accept', 'application/json'),
            ('authorization', 'Bearer abc'),
        ])
        assert headers == [
            ('accept', 'application/json'),
            ('authorization', 'Bearer abc'),
        ]

    def test_keeps_repeated_headers(self):
        headers = build_forward_headers([('x-tag', 'a'), ('x-tag', 'b')])
        assert headers == [('x-tag', 'a'), ('x-tag', 'b')]


class TestCopyResponseHeaders:

    def test_drops_hop_by_hop(self):
        upstream = httpx.Headers([
            ('Connection', 'keep-alive'),
            ('Transfer-Encoding', 'chunked'),
            ('Content-Type', 'text/html'),
        ])
        assert copy_response_headers(upstream, 1024) == [('Content-Type', 'text/html')]

    def test_keeps_content_length_within_cap(self):
        upstream = httpx.Headers([('Content-Length', '512')])
        assert copy_response_headers(upstream, 1024) == [('Content-Length', '512')]

    def test_drops_content_length_over_cap(self):
        upstream = httpx.Headers([('Content-Length', '2048')])
        assert copy_response_headers(upstream, 1024) == []

    def test_keeps_repeated_set_cookie(self):
        upstream = httpx.Headers([('Set-Cookie', 'a=1'), ('Set-Cookie', 'b=2')])
        assert copy_response_headers(upstream, 1024) == [
            ('Set-Cookie', 'a=1'),
            ('Set-Cookie', 'b=2'),
        ]


# ── Outbound request construction ──


class TestOutboundRequest:

    def test_mirrors_method_body_and_headers(self, settings, echo_transport, upstream_requests):
        app = create_app(settings, transport=echo_transport)
        with TestClient(app) as client:
            resp = client.post(
                '/',
                params={'url': 'https://upstream.test/submit?x=1'},
                content=b'payload',
                headers={'X-Custom': 'value', 'Content-Type': 'text/plain'},
            )

        assert resp.status_code == 200
        assert len(upstream_requests) == 1
        sent = upstream_requests[0]
        assert sent.method == 'POST'
        assert str(sent.url) == 'https://upstream.test/submit?x=1'
        assert sent.content == b'payload'
        assert sent.headers['x-custom'] == 'value'
        assert sent.headers['content-type'] == 'text/plain'

    def test_host_derived_from_target(self, settings, echo_transport, upstream_requests):
        app = create_app(settings, transport=echo_transport)
        with TestClient(app) as client:
            client.get('/', params={'url': 'https://upstream.test:8443/'})

        assert upstream_requests[0].headers['host'] == 'upstream.test:8443'

    def test_invalid_url_is_client_error(self, settings, echo_transport, upstream_requests):
        app = create_app(settings, transport=echo_transport)
        with TestClient(app) as client:
            resp = client.get('/', params={'url': 'http://example.com:abc/'})

        assert resp.status_code == 400
        assert resp.json()['error'].startswith('Invalid URL:')
        assert upstream_requests == []


# ── Response relay ──


class TestResponseRelay:

    def test_status_headers_and_body_mirrored(self, settings):
        def handler(request):
            return httpx.Response(
                418,
                content=b'short and stout',
                headers=[
                    ('Content-Type', 'text/plain'),
                    ('Set-Cookie', 'a=1'),
                    ('Set-Cookie', 'b=2'),
                ],
            )

        with _client(settings, handler) as client:
            resp = client.get('/', params={'url': 'https://upstream.test/'})

        assert resp.status_code == 418
        assert resp.content == b'short and stout'
        assert resp.headers['content-type'] == 'text/plain'
        assert resp.headers['content-length'] == '15'
        assert resp.headers.get_list('set-cookie') == ['a=1', 'b=2']

    def test_body_truncated_silently_at_cap(self):
        settings = GatewaySettings(max_response_bytes=10)

        def handler(request):
            return httpx.Response(200, content=b'x' * 100)

        with _client(settings, handler) as client:
            resp = client.get('/', params={'url': 'https://upstream.test/big'})

        assert resp.status_code == 200
        assert resp.content == b'x' * 10
        assert 'content-length' not in resp.headers

    def test_body_exactly_at_cap_is_complete(self):
        settings = GatewaySettings(max_response_bytes=10)

        def handler(request):
            return httpx.Response(200, content=b'0123456789')

        with _client(settings, handler) as client:
            resp = client.get('/', params={'url': 'https://upstream.test/'})

        assert resp.content == b'0123456789'
        assert resp.headers['content-length'] == '10'

    def test_streamed_body_truncated_across_chunks(self):
        settings = GatewaySettings(max_response_bytes=7)

        async def chunks():
            for part in (b'abc', b'def', b'ghi'):
                yield part

        def handler(request):
            return httpx.Response(200, content=chunks())

        with _client(settings, handler) as client:
            resp = client.get('/', params={'url': 'https://upstream.test/'})

        assert resp.content == b'abcdefg'

    def test_verbose_logs_after_stream(self):
        settings = GatewaySettings(verbose_logging=True)

        def handler(request):
            return httpx.Response(200, content=b'hello')

        with structlog.testing.capture_logs() as logs:
            with _client(settings, handler) as client:
                client.get('/', params={'url': 'https://upstream.test/'})

        forwarded = [e for e in logs if e['event'] == 'request_forwarded']
        assert forwarded == [{
            'event': 'request_forwarded',
            'log_level': 'info',
            'method': 'GET',
            'url': 'https://upstream.test/',
            'status': 200,
            'bytes': 5,
        }]

    def test_quiet_without_verbose(self, settings):
        def handler(request):
            return httpx.Response(200, content=b'hello')

        with structlog.testing.capture_logs() as logs:
            with _client(settings, handler) as client:
                client.get('/', params={'url': 'https://upstream.test/'})

        assert not [e for e in logs if e['event'] == 'request_forwarded']


# ── Redirect ceiling ──


def _redirect_chain(request: httpx.Request) -> httpx.Response:
    """/hop/N redirects N more times before answering 200."""
    remaining = int(request.url.path.rsplit('/', 1)[-1])
    if remaining > 0:
        return httpx.Response(
            302, headers={'Location': f'https://upstream.test/hop/{remaining - 1}'},
        )
    return httpx.Response(200, content=b'landed')


class TestRedirectCeiling:

    def test_exactly_max_redirects_succeeds(self):
        settings = GatewaySettings(max_redirects=3)
        with _client(settings, _redirect_chain) as client:
            resp = client.get('/', params={'url': 'https://upstream.test/hop/3'})

        assert resp.status_code == 200
        assert resp.content == b'landed'

    def test_one_more_than_max_is_transport_error(self):
        settings = GatewaySettings(max_redirects=3)
        with _client(settings, _redirect_chain) as client:
            resp = client.get('/', params={'url': 'https://upstream.test/hop/4'})

        assert resp.status_code == 502
        assert resp.json()['error'].startswith('Failed to fetch URL:')
        assert resp.headers['access-control-allow-origin'] == '*'

    def test_zero_ceiling_rejects_any_redirect(self):
        settings = GatewaySettings(max_redirects=0)
        with _client(settings, _redirect_chain) as client:
            ok = client.get('/', params={'url': 'https://upstream.test/hop/0'})
            redirected = client.get('/', params={'url': 'https://upstream.test/hop/1'})

        assert ok.status_code == 200
        assert redirected.status_code == 502


# ── Transport failures ──


class TestTransportFailures:

    def test_connect_error_is_502(self, settings):
        def handler(request):
            raise httpx.ConnectError('connection refused', request=request)

        with _client(settings, handler) as client:
            resp = client.get('/', params={'url': 'https://down.test/'})

        assert resp.status_code == 502
        assert resp.json() == {'error': 'Failed to fetch URL: connection refused'}

    def test_timeout_is_502(self):
        settings = GatewaySettings(request_timeout=0.05)

        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200)

        with _client(settings, handler) as client:
            resp = client.get('/', params={'url': 'https://slow.test/'})

        assert resp.status_code == 502
        assert 'timed out' in resp.json()['error']

    def test_timeout_during_body_stops_relay(self):
        settings = GatewaySettings(request_timeout=0.2)

        async def chunks():
            yield b'first'
            await asyncio.sleep(1)
            yield b'never'

        def handler(request):
            return httpx.Response(200, content=chunks())

        with _client(settings, handler) as client:
            resp = client.get('/', params={'url': 'https://slow.test/'})

        assert resp.status_code == 200
        assert resp.content == b'first'


# ── Engine lifecycle ──


class TestEngineLifecycle:

    @pytest.mark.asyncio
    async def test_client_reused_until_closed(self, settings, echo_transport):
        engine = ForwardingEngine(settings, transport=echo_transport)
        first = engine._get_client()
        assert engine._get_client() is first
        await engine.close()
        assert first.is_closed
        assert engine._get_client() is not first
        await engine.close()

    @pytest.mark.asyncio
    async def test_close_without_client(self, settings):
        engine = ForwardingEngine(settings)
        await engine.close()


# ── Relay edge cases ──


def _bare_request(method='GET') -> Request:
    async def receive():
        return {'type': 'http.request', 'body': b'', 'more_body': False}

    scope = {
        'type': 'http',
        'method': method,
        'path': '/',
        'query_string': b'',
        'headers': [],
        'client': ('10.0.0.1', 40000),
    }
    return Request(scope, receive)


class TestRelayEdgeCases:

    def test_eagerly_read_body_is_relayed(self, settings):
        def handler(request):
            return httpx.Response(200, content=b'hi')

        with _client(settings, handler) as client:
            resp = client.get('/', params={'url': 'https://upstream.test/'})

        assert resp.status_code == 200
        assert resp.content == b'hi'

    def test_upstream_read_error_stops_relay_and_logs(self, settings):
        async def chunks():
            yield b'part'
            raise httpx.ReadError('connection reset')

        def handler(request):
            return httpx.Response(200, content=chunks())

        with structlog.testing.capture_logs() as logs:
            with _client(settings, handler) as client:
                resp = client.get('/', params={'url': 'https://flaky.test/'})

        assert resp.status_code == 200
        assert resp.content == b'part'
        errors = [e for e in logs if e['event'] == 'upstream_body_error']
        assert errors == [{
            'event': 'upstream_body_error',
            'log_level': 'warning',
            'method': 'GET',
            'url': 'https://flaky.test/',
            'bytes': 4,
            'error': 'connection reset',
        }]

    @pytest.mark.asyncio
    async def test_caller_going_away_is_logged(self, settings):
        async def chunks():
            yield b'one'
            yield b'two'

        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=chunks()))
        engine = ForwardingEngine(settings, transport=transport)

        with structlog.testing.capture_logs() as logs:
            resp = await engine.forward(_bare_request(), 'https://upstream.test/')
            body = resp.body_iterator
            assert await body.__anext__() == b'one'
            await body.aclose()

        await engine.close()

        aborted = [e for e in logs if e['event'] == 'relay_aborted']
        assert aborted == [{
            'event': 'relay_aborted',
            'log_level': 'warning',
            'method': 'GET',
            'url': 'https://upstream.test/',
            'bytes': 3,
        }]
