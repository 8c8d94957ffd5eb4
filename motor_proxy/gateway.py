"""
Proxy Gateway
=============
Forwards inbound API requests to the Motor API with the cached session
attached, and reacts when upstream says that session has died.

Pipeline for one request::

    ensure session  →  request transforms  →  forward  →  response transforms
                                                      ↘  on_upstream_status()
                                                           → PASS_THROUGH
                                                           → EXPIRED_PASS_THROUGH
                                                           → EXPIRED_SUBSTITUTE

Request and response transforms are pure functions returning new
objects.  The only side effect lives behind ``on_upstream_status``: an
expired decision hands a ``SessionExpiredSignal`` to the auth manager,
which invalidates and re-authenticates in the background.  The current
caller is never blocked on that recovery.

Failure semantics:
    - Authentication failure  → 500 problem-details, raised synchronously
    - Upstream 401 / 403      → advisory headers, background recovery
    - Transport failure       → 500 problem-details, session untouched
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .errors import AuthError, ProxyTransportError, SessionExpiredSignal

logger = logging.getLogger(__name__)


AUTH_STATUS_URL = "/auth/status"
RETRY_AFTER_SECONDS = 2
STATIC_CACHE_CONTROL = "public, max-age=86400"

# Path fragments of reference listings that never change within a day.
_STATIC_LISTING_FRAGMENTS = ("/years", "/makes")

_STRIPPED_RESPONSE_HEADERS = frozenset({
    "set-cookie", "server", "x-powered-by",
    # hop-by-hop / re-computed by the server
    "connection", "keep-alive", "transfer-encoding", "content-length",
    # httpx hands us the decoded body
    "content-encoding",
    # rewritten below
    "access-control-allow-origin", "access-control-allow-credentials",
})

_STRIPPED_REQUEST_HEADERS = frozenset({
    "host", "cookie", "connection", "keep-alive", "content-length",
    "transfer-encoding", "accept-encoding", "origin", "referer", "user-agent",
})

_PROBLEM_TYPE_500 = "https://tools.ietf.org/html/rfc9110#section-15.6.1"
_PROBLEM_TYPE_401 = "https://tools.ietf.org/html/rfc9110#section-15.5.2"


# ---------------------------------------------------------------------------
# Pipeline values
# ---------------------------------------------------------------------------

@dataclass
class OutboundRequest:
    """Request about to be sent upstream.  Header names are lower-case."""
    method: str
    path: str
    query: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class UpstreamResponse:
    """Response received from upstream.  Header names are lower-case."""
    status_code: int
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers:
            if key == name:
                return value
        return None


class StatusDecision(Enum):
    PASS_THROUGH = "pass_through"
    EXPIRED_PASS_THROUGH = "expired_pass_through"
    EXPIRED_SUBSTITUTE = "expired_substitute"


RequestTransform = Callable[[OutboundRequest], OutboundRequest]
ResponseTransform = Callable[[UpstreamResponse], UpstreamResponse]


# ---------------------------------------------------------------------------
# Request transforms
# ---------------------------------------------------------------------------

def drop_inbound_headers(request: OutboundRequest) -> OutboundRequest:
    """Remove caller headers that must not reach upstream."""
    headers = {
        k: v for k, v in request.headers.items()
        if k not in _STRIPPED_REQUEST_HEADERS
    }
    return dataclasses.replace(request, headers=headers)


def session_header_injector(cookie_header: str, config) -> RequestTransform:
    """Transform attaching the session and the browser identity the vendor expects."""
    def inject(request: OutboundRequest) -> OutboundRequest:
        headers = dict(request.headers)
        if cookie_header:
            headers["cookie"] = cookie_header
        headers["user-agent"] = config.user_agent
        headers["referer"] = config.vendor_referer
        headers["origin"] = config.vendor_base_url.rstrip("/")
        headers["x-requested-with"] = "XMLHttpRequest"
        return dataclasses.replace(request, headers=headers)
    return inject


# ---------------------------------------------------------------------------
# Response transforms
# ---------------------------------------------------------------------------

def strip_upstream_headers(response: UpstreamResponse) -> UpstreamResponse:
    """Never leak upstream session state or server fingerprint."""
    headers = [(k, v) for k, v in response.headers if k not in _STRIPPED_RESPONSE_HEADERS]
    return dataclasses.replace(response, headers=headers)


def cors_rewriter(origin: Optional[str]) -> ResponseTransform:
    """Transform echoing the caller's origin with credentials allowed."""
    def rewrite(response: UpstreamResponse) -> UpstreamResponse:
        headers = list(response.headers)
        if origin:
            headers.append(("access-control-allow-origin", origin))
            headers.append(("access-control-allow-credentials", "true"))
        else:
            headers.append(("access-control-allow-origin", "*"))
        return dataclasses.replace(response, headers=headers)
    return rewrite


def is_static_listing(path: str) -> bool:
    return any(fragment in path for fragment in _STATIC_LISTING_FRAGMENTS)


def cache_policy(path: str) -> ResponseTransform:
    """Transform giving successful static reference listings a one-day cache lifetime."""
    def apply(response: UpstreamResponse) -> UpstreamResponse:
        if not is_static_listing(path) or not 200 <= response.status_code < 300:
            return response
        headers = [(k, v) for k, v in response.headers if k != "cache-control"]
        headers.append(("cache-control", STATIC_CACHE_CONTROL))
        return dataclasses.replace(response, headers=headers)
    return apply


def expiry_advisory(response: UpstreamResponse) -> UpstreamResponse:
    """Headers telling the caller where to poll and when to retry."""
    headers = list(response.headers) + advisory_headers()
    return dataclasses.replace(response, headers=headers)


def advisory_headers() -> List[Tuple[str, str]]:
    return [
        ("x-auth-status", "authenticating"),
        ("x-auth-status-url", AUTH_STATUS_URL),
        ("x-retry-after", str(RETRY_AFTER_SECONDS)),
    ]


def run_pipeline(value, transforms):
    for transform in transforms:
        value = transform(value)
    return value


# ---------------------------------------------------------------------------
# Status hook
# ---------------------------------------------------------------------------

def on_upstream_status(status_code: int, expiry_response: str = "passthrough") -> StatusDecision:
    """Decide what an upstream status means for the session."""
    if status_code in (401, 403):
        if expiry_response == "substitute":
            return StatusDecision.EXPIRED_SUBSTITUTE
        return StatusDecision.EXPIRED_PASS_THROUGH
    return StatusDecision.PASS_THROUGH


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

def problem_response(error: str, message: str, status: int = 500) -> JSONResponse:
    """Problem-details style error body."""
    return JSONResponse(
        {
            "error": error,
            "message": message,
            "type": _PROBLEM_TYPE_500,
            "title": "Internal Server Error",
            "status": status,
        },
        status_code=status,
    )


def authenticating_response(origin: Optional[str]) -> JSONResponse:
    """Body substituted for an upstream 401/403 while recovery runs."""
    response = JSONResponse(
        {
            "error": "Authentication in progress",
            "message": (
                "The upstream session expired and re-authentication has started. "
                f"Poll {AUTH_STATUS_URL} and retry the request."
            ),
            "type": _PROBLEM_TYPE_401,
            "title": "Unauthorized",
            "status": 401,
            "authStatusUrl": AUTH_STATUS_URL,
            "retryAfter": RETRY_AFTER_SECONDS,
        },
        status_code=401,
    )
    extra = advisory_headers()
    if origin:
        extra += [
            ("access-control-allow-origin", origin),
            ("access-control-allow-credentials", "true"),
        ]
    for key, value in extra:
        response.headers[key] = value
    return response


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class ProxyGateway:
    """Session-injecting reverse proxy in front of the Motor API."""

    def __init__(self, config, auth_manager, client: Optional[httpx.AsyncClient] = None):
        """
        Args:
            config:       ``ProxyRunConfig``.
            auth_manager: The process's ``AuthManager``.
            client:       Optional upstream client (tests pass a mock transport).
        """
        self.config = config
        self.auth_manager = auth_manager
        self.client = client if client is not None else httpx.AsyncClient(
            timeout=config.request_timeout_seconds,
            follow_redirects=False,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def handle(self, request: Request, upstream_path: str) -> Response:
        """Proxy *request* to ``motor_api_base + upstream_path``."""
        inbound_path = request.url.path
        origin = request.headers.get("origin")

        cookie_header = ""
        if request.method != "OPTIONS":
            try:
                await self.auth_manager.ensure_session()
                cookie_header = await self.auth_manager.get_cookie_header()
                if not cookie_header:
                    raise AuthError(
                        "Failed to get cookie header - authentication may have failed"
                    )
            except AuthError as exc:
                logger.error(f"[PROXY] Authentication check failed: {exc}")
                return problem_response("Authentication failed", str(exc))

        outbound = OutboundRequest(
            method=request.method,
            path=upstream_path,
            query=request.url.query,
            headers={k.lower(): v for k, v in request.headers.items()},
            body=await request.body(),
        )
        outbound = run_pipeline(outbound, [
            drop_inbound_headers,
            session_header_injector(cookie_header, self.config),
        ])

        try:
            upstream = await self._forward(outbound)
        except ProxyTransportError as exc:
            logger.error(f"[PROXY] Proxy error for {inbound_path}: {exc}")
            return problem_response("Proxy Error", str(exc))

        logger.info(f"[PROXY] ← {upstream.status_code} {inbound_path}")
        decision = on_upstream_status(upstream.status_code, self.config.expiry_response)

        transforms = [strip_upstream_headers, cors_rewriter(origin), cache_policy(inbound_path)]
        if decision is not StatusDecision.PASS_THROUGH:
            self.auth_manager.handle_upstream_expiry(
                SessionExpiredSignal(status_code=upstream.status_code, path=inbound_path)
            )
            if decision is StatusDecision.EXPIRED_SUBSTITUTE:
                return authenticating_response(origin)
            transforms.append(expiry_advisory)

        upstream = run_pipeline(upstream, transforms)
        return self._to_response(upstream)

    async def _forward(self, outbound: OutboundRequest) -> UpstreamResponse:
        url = self.config.motor_api_base.rstrip("/") + outbound.path
        if outbound.query:
            url = f"{url}?{outbound.query}"
        logger.info(f"[PROXY] → {outbound.method} {outbound.path} → {self.config.motor_api_base}")
        try:
            response = await self.client.request(
                outbound.method,
                url,
                headers=outbound.headers,
                content=outbound.body or None,
            )
        except httpx.TransportError as exc:
            raise ProxyTransportError(
                f"Upstream request failed: {exc.__class__.__name__}: {exc}"
            ) from exc
        return UpstreamResponse(
            status_code=response.status_code,
            headers=[(k.lower(), v) for k, v in response.headers.multi_items()],
            body=response.content,
        )

    @staticmethod
    def _to_response(upstream: UpstreamResponse) -> Response:
        response = Response(content=upstream.body, status_code=upstream.status_code)
        for key, value in upstream.headers:
            response.headers.append(key, value)
        return response
