"""
Tests for the proxy gateway and the HTTP surface.

The Starlette app is driven in-process through ``httpx.ASGITransport``;
the Motor API is an ``httpx.MockTransport`` that records what it receives.

Covers:
  1. Pure request/response transforms and the status hook
  2. Forwarding with the session attached
  3. Upstream 401/403 recovery (pass-through and substitute modes)
  4. Transport and authentication failures
  5. Health, auth status and auth start endpoints
  6. Phantom endpoints and legacy rewrites
"""

import asyncio
import json

import httpx
import pytest

from conftest import T0, FakeClock, FakeExecutor
from motor_proxy.app import create_app
from motor_proxy.auth.auth_manager import AuthManager, Session
from motor_proxy.auth.base_auth import SessionCookie
from motor_proxy.auth.session_store import MemorySessionStore
from motor_proxy.errors import LoginHandshakeError
from motor_proxy.gateway import (
    STATIC_CACHE_CONTROL,
    OutboundRequest,
    ProxyGateway,
    StatusDecision,
    UpstreamResponse,
    cache_policy,
    cors_rewriter,
    drop_inbound_headers,
    on_upstream_status,
    session_header_injector,
    strip_upstream_headers,
)


# ====================================================================
# Harness
# ====================================================================

class Upstream:
    """Mock Motor API: answers with a canned response, records requests."""

    def __init__(self, status=200, body=None, headers=None, error=None):
        self.status = status
        self.body = body if body is not None else {"header": {"status": "OK"}, "body": []}
        self.headers = headers or {}
        self.error = error
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error(request)
        return httpx.Response(self.status, json=self.body, headers=self.headers)


class Harness:
    def __init__(self, config, upstream=None, executor=None, authenticated=True):
        self.clock = FakeClock()
        self.upstream = upstream or Upstream()
        self.executor = executor or FakeExecutor()
        self.manager = AuthManager(config, self.executor, MemorySessionStore(), clock=self.clock)
        if authenticated:
            self.manager.session = Session([SessionCookie("sid", "abc", "sites.motor.com")], T0)
        self.gateway = ProxyGateway(
            config, self.manager,
            client=httpx.AsyncClient(transport=httpx.MockTransport(self.upstream)),
        )
        self.app = create_app(config, self.manager, self.gateway, initialize_on_startup=False)
        self.client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=self.app), base_url="http://proxy.local",
        )

    async def close(self):
        await self.client.aclose()
        await self.manager.aclose()
        await self.gateway.aclose()


def refuse(request):
    return httpx.ConnectError("connection refused", request=request)


# ====================================================================
# 1. Pure transforms
# ====================================================================

class TestTransforms:

    def test_inbound_session_headers_are_dropped(self):
        request = OutboundRequest("GET", "/api/years", headers={
            "cookie": "client=1", "host": "proxy.local", "accept": "application/json",
        })
        assert drop_inbound_headers(request).headers == {"accept": "application/json"}

    def test_injector_sets_vendor_identity(self, config):
        request = OutboundRequest("GET", "/api/years")
        headers = session_header_injector("sid=abc", config)(request).headers

        assert headers["cookie"] == "sid=abc"
        assert headers["user-agent"] == config.user_agent
        assert headers["referer"] == "https://sites.motor.com/m1/"
        assert headers["origin"] == "https://sites.motor.com"
        assert headers["x-requested-with"] == "XMLHttpRequest"
        assert request.headers == {}

    def test_upstream_fingerprint_stripped(self):
        response = UpstreamResponse(200, [
            ("set-cookie", "sid=leak"), ("server", "nginx"), ("x-powered-by", "PHP"),
            ("content-type", "application/json"),
        ])
        assert strip_upstream_headers(response).headers == [("content-type", "application/json")]

    def test_cors_echoes_origin(self):
        response = cors_rewriter("http://localhost:4200")(UpstreamResponse(200))
        assert response.header("access-control-allow-origin") == "http://localhost:4200"
        assert response.header("access-control-allow-credentials") == "true"

    def test_cors_wildcard_without_origin(self):
        response = cors_rewriter(None)(UpstreamResponse(200))
        assert response.header("access-control-allow-origin") == "*"
        assert response.header("access-control-allow-credentials") is None

    @pytest.mark.parametrize("path, cached", [
        ("/api/years", True),
        ("/api/year/2020/makes", True),
        ("/api/year/2020/make/12/models", False),
        ("/api/vehicle/1", False),
    ])
    def test_cache_policy(self, path, cached):
        response = cache_policy(path)(UpstreamResponse(200, [("cache-control", "no-store")]))
        expected = STATIC_CACHE_CONTROL if cached else "no-store"
        assert response.header("cache-control") == expected

    @pytest.mark.parametrize("status", [304, 401, 403, 500])
    def test_cache_policy_skips_unsuccessful_responses(self, status):
        response = cache_policy("/api/years")(UpstreamResponse(status, [("cache-control", "no-store")]))
        assert response.header("cache-control") == "no-store"

    @pytest.mark.parametrize("status, mode, decision", [
        (200, "passthrough", StatusDecision.PASS_THROUGH),
        (404, "passthrough", StatusDecision.PASS_THROUGH),
        (500, "substitute", StatusDecision.PASS_THROUGH),
        (401, "passthrough", StatusDecision.EXPIRED_PASS_THROUGH),
        (403, "passthrough", StatusDecision.EXPIRED_PASS_THROUGH),
        (401, "substitute", StatusDecision.EXPIRED_SUBSTITUTE),
    ])
    def test_status_hook(self, status, mode, decision):
        assert on_upstream_status(status, mode) is decision


# ====================================================================
# 2. Forwarding
# ====================================================================

class TestForwarding:

    @pytest.mark.asyncio
    async def test_session_cookie_attached(self, config):
        h = Harness(config, Upstream(headers={
            "set-cookie": "sid=rotated", "server": "nginx", "cache-control": "no-cache",
        }))
        try:
            response = await h.client.get("/api/years", headers={"cookie": "client=1"})
        finally:
            await h.close()

        assert response.status_code == 200
        assert response.json() == {"header": {"status": "OK"}, "body": []}
        sent = h.upstream.requests[0]
        assert str(sent.url) == "https://sites.motor.com/m1/api/years"
        assert sent.headers["cookie"] == "sid=abc"
        assert sent.headers["x-requested-with"] == "XMLHttpRequest"
        assert sent.headers["referer"] == "https://sites.motor.com/m1/"
        assert "set-cookie" not in response.headers
        assert "server" not in response.headers
        assert response.headers["cache-control"] == STATIC_CACHE_CONTROL
        assert h.executor.calls == 0

    @pytest.mark.asyncio
    async def test_method_query_and_body_forwarded(self, config):
        h = Harness(config)
        try:
            await h.client.post("/api/vehicle/search?vin=1FT&limit=5", json={"q": "brakes"})
        finally:
            await h.close()

        sent = h.upstream.requests[0]
        assert sent.method == "POST"
        assert sent.url.params["vin"] == "1FT"
        assert sent.url.params["limit"] == "5"
        assert json.loads(sent.content) == {"q": "brakes"}

    @pytest.mark.asyncio
    async def test_cors_origin_echoed(self, config):
        h = Harness(config)
        try:
            response = await h.client.get(
                "/api/vehicle/1", headers={"origin": "http://localhost:4200"},
            )
        finally:
            await h.close()

        assert response.headers["access-control-allow-origin"] == "http://localhost:4200"
        assert response.headers["access-control-allow-credentials"] == "true"

    @pytest.mark.asyncio
    async def test_first_request_authenticates(self, config):
        h = Harness(config, authenticated=False)
        try:
            response = await h.client.get("/api/years")
        finally:
            await h.close()

        assert response.status_code == 200
        assert h.executor.calls == 1
        assert h.upstream.requests[0].headers["cookie"] == "sid=abc"

    @pytest.mark.asyncio
    async def test_options_skips_authentication(self, config):
        h = Harness(config, authenticated=False)
        try:
            response = await h.client.options("/api/years")
        finally:
            await h.close()

        assert response.status_code == 200
        assert h.executor.calls == 0
        assert "cookie" not in h.upstream.requests[0].headers


# ====================================================================
# 3. Upstream session expiry
# ====================================================================

class TestUpstreamExpiry:

    @pytest.mark.asyncio
    async def test_401_passes_through_with_advisory_headers(self, config):
        gate = asyncio.Event()
        h = Harness(
            config,
            Upstream(status=401, body={"error": "unauthorized"}),
            FakeExecutor(cookies=[SessionCookie("sid", "fresh", "sites.motor.com")], gate=gate),
        )
        try:
            response = await h.client.get("/api/years")

            assert response.status_code == 401
            assert response.json() == {"error": "unauthorized"}
            assert response.headers["x-auth-status"] == "authenticating"
            assert response.headers["x-auth-status-url"] == "/auth/status"
            assert response.headers["x-retry-after"] == "2"
            assert "cache-control" not in response.headers
            assert not h.manager.is_session_valid()

            gate.set()
            await h.manager.authenticate()
            assert h.executor.calls == 1
            assert await h.manager.get_cookie_header() == "sid=fresh"
        finally:
            await h.close()

    @pytest.mark.asyncio
    async def test_403_is_treated_as_expiry(self, config):
        h = Harness(config, Upstream(status=403), FakeExecutor(gate=asyncio.Event()))
        try:
            response = await h.client.get("/api/vehicle/1")
            assert response.headers["x-auth-status"] == "authenticating"
            assert not h.manager.is_session_valid()
        finally:
            await h.close()

    @pytest.mark.asyncio
    async def test_substitute_mode(self, config):
        config.expiry_response = "substitute"
        h = Harness(config, Upstream(status=401), FakeExecutor(gate=asyncio.Event()))
        try:
            response = await h.client.get("/api/years")
        finally:
            await h.close()

        body = response.json()
        assert response.status_code == 401
        assert body["error"] == "Authentication in progress"
        assert body["authStatusUrl"] == "/auth/status"
        assert body["retryAfter"] == 2
        assert response.headers["x-auth-status"] == "authenticating"

    @pytest.mark.asyncio
    async def test_other_errors_do_not_touch_session(self, config):
        h = Harness(config, Upstream(status=500))
        try:
            response = await h.client.get("/api/years")
        finally:
            await h.close()

        assert response.status_code == 500
        assert "x-auth-status" not in response.headers
        assert h.manager.is_session_valid()


# ====================================================================
# 4. Failures
# ====================================================================

class TestFailures:

    @pytest.mark.asyncio
    async def test_transport_error_is_500_and_keeps_session(self, config):
        h = Harness(config, Upstream(error=refuse))
        try:
            response = await h.client.get("/api/years")
        finally:
            await h.close()

        body = response.json()
        assert response.status_code == 500
        assert body["error"] == "Proxy Error"
        assert "ConnectError" in body["message"]
        assert h.manager.is_session_valid()
        assert h.executor.calls == 0

    @pytest.mark.asyncio
    async def test_authentication_failure_is_500(self, config):
        h = Harness(
            config,
            executor=FakeExecutor(error=LoginHandshakeError("redirect limit exceeded (10 redirects)")),
            authenticated=False,
        )
        try:
            response = await h.client.get("/api/years")
        finally:
            await h.close()

        body = response.json()
        assert response.status_code == 500
        assert body["error"] == "Authentication failed"
        assert body["message"] == "redirect limit exceeded (10 redirects)"
        assert body["status"] == 500
        assert body["title"] == "Internal Server Error"
        assert h.upstream.requests == []


# ====================================================================
# 5. Health and auth endpoints
# ====================================================================

class TestStatusEndpoints:

    @pytest.mark.asyncio
    async def test_health_before_and_after_authentication(self, config):
        h = Harness(config, authenticated=False)
        try:
            before = (await h.client.get("/health")).json()
            await h.manager.authenticate()
            after = (await h.client.get("/health")).json()
        finally:
            await h.close()

        assert before == {"status": "ok", "sessionValid": False, "lastAuth": None}
        assert after == {"status": "ok", "sessionValid": True, "lastAuth": int(T0 * 1000)}

    @pytest.mark.asyncio
    async def test_auth_status(self, config):
        h = Harness(config, authenticated=False)
        try:
            await h.manager.authenticate()
            data = (await h.client.get("/auth/status")).json()
        finally:
            await h.close()

        assert data["status"] == "success"
        assert data["percent"] == 100
        assert data["sessionValid"] is True
        assert data["startedAt"] == int(T0 * 1000)

    @pytest.mark.asyncio
    async def test_auth_start_runs_in_background(self, config):
        gate = asyncio.Event()
        h = Harness(config, executor=FakeExecutor(gate=gate), authenticated=False)
        try:
            response = await h.client.post("/auth/start")
            for _ in range(5):
                await asyncio.sleep(0)

            assert response.status_code == 200
            assert response.json() == {"status": "started"}
            assert h.manager.is_authenticating
            assert (await h.client.get("/auth/status")).json()["status"] == "authenticating"

            gate.set()
            await h.manager.authenticate()
            assert h.executor.calls == 1
        finally:
            await h.close()


# ====================================================================
# 6. Phantom endpoints and legacy rewrites
# ====================================================================

class TestRouting:

    @pytest.mark.asyncio
    async def test_phantom_endpoint_answered_locally(self, config):
        h = Harness(config, authenticated=False)
        try:
            response = await h.client.get("/api/vehicle/123/dtcs")
        finally:
            await h.close()

        assert response.status_code == 200
        assert response.json()["body"] == {"total": 0, "dtcs": []}
        assert h.upstream.requests == []
        assert h.executor.calls == 0

    @pytest.mark.asyncio
    async def test_phantom_endpoint_outside_api_prefix(self, config):
        h = Harness(config)
        try:
            response = await h.client.get("/vehicle/123/wiring")
        finally:
            await h.close()
        assert response.json()["body"] == {"total": 0, "wiringDiagrams": []}

    @pytest.mark.asyncio
    async def test_legacy_path_rewritten(self, config):
        h = Harness(config)
        try:
            await h.client.get("/v1/Information/Chek-Chart/Years/2020/Makes")
        finally:
            await h.close()
        assert h.upstream.requests[0].url.path == "/m1/api/year/2020/makes"

    @pytest.mark.asyncio
    async def test_unknown_path_is_404(self, config):
        h = Harness(config)
        try:
            response = await h.client.get("/nothing/here")
        finally:
            await h.close()
        assert response.status_code == 404
        assert h.upstream.requests == []
