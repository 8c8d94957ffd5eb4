"""
Application
===========
Composition root: builds the one ``AuthManager`` and ``ProxyGateway``
for the process and exposes them over HTTP.

Endpoints:
    GET  /health        — liveness + session validity
    GET  /auth/status   — authentication progress for UI polling
    POST /auth/start    — fire-and-forget re-authentication
    ANY  /api/{path}    — proxied to the Motor API as is
    ANY  /v1/{path}     — proxied through the legacy rewrite table

Phantom endpoints (``/dtcs``, ``/tsbs``, ...) are answered locally with
empty listings on any path, before authentication.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .auth import AuthManager, JsonFileSessionStore, create_login_executor
from .auth.auth_manager import to_epoch_ms
from .gateway import ProxyGateway
from .routes import phantom_response_body, rewrite_legacy_path

logger = logging.getLogger(__name__)


_PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def build_auth_manager(config) -> AuthManager:
    """Default wiring: configured executor + JSON-file session store."""
    return AuthManager(
        config,
        create_login_executor(config),
        JsonFileSessionStore(config.session_state_dir),
    )


def create_app(
    config,
    auth_manager: Optional[AuthManager] = None,
    gateway: Optional[ProxyGateway] = None,
    *,
    initialize_on_startup: bool = True,
) -> Starlette:
    """Build the Starlette application.

    Args:
        config:                ``ProxyRunConfig`` (already validated).
        auth_manager:          Pre-built manager (default wiring otherwise).
        gateway:               Pre-built gateway (default wiring otherwise).
        initialize_on_startup: Restore or establish the session in the
                               background when the server starts.
    """
    if auth_manager is None:
        auth_manager = build_auth_manager(config)
    if gateway is None:
        gateway = ProxyGateway(config, auth_manager)

    def session_summary() -> dict:
        return {
            "sessionValid": auth_manager.is_session_valid(),
            "lastAuth": to_epoch_ms(auth_manager.last_auth),
        }

    async def health(request: Request) -> Response:
        return JSONResponse({"status": "ok", **session_summary()})

    async def auth_status(request: Request) -> Response:
        return JSONResponse({**auth_manager.get_progress().to_dict(), **session_summary()})

    async def auth_start(request: Request) -> Response:
        logger.info("[APP] Re-authentication requested")
        auth_manager.start_background_authentication()
        return JSONResponse({"status": "started"})

    async def proxy_api(request: Request) -> Response:
        phantom = phantom_response_body(request.url.path)
        if phantom is not None:
            return JSONResponse(phantom)
        return await gateway.handle(request, request.url.path)

    async def proxy_v1(request: Request) -> Response:
        phantom = phantom_response_body(request.url.path)
        if phantom is not None:
            return JSONResponse(phantom)
        return await gateway.handle(request, rewrite_legacy_path(request.url.path))

    async def fallback(request: Request) -> Response:
        phantom = phantom_response_body(request.url.path)
        if phantom is not None:
            return JSONResponse(phantom)
        return JSONResponse({"error": "Not Found", "status": 404}, status_code=404)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        startup = None
        if initialize_on_startup:
            logger.info("[APP] Initializing authentication on startup...")
            startup = asyncio.ensure_future(auth_manager.initialize())
        try:
            yield
        finally:
            if startup is not None and not startup.done():
                startup.cancel()
                await asyncio.gather(startup, return_exceptions=True)
            await auth_manager.aclose()
            await gateway.aclose()
            logger.info("[APP] Shut down")

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/auth/status", auth_status, methods=["GET"]),
        Route("/auth/start", auth_start, methods=["POST"]),
        Route("/api/{path:path}", proxy_api, methods=_PROXY_METHODS),
        Route("/v1/{path:path}", proxy_v1, methods=_PROXY_METHODS),
        Route("/{path:path}", fallback, methods=_PROXY_METHODS),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origin_regex=".*",
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["x-auth-status", "x-auth-status-url", "x-retry-after"],
        ),
    ]

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.config = config
    app.state.auth_manager = auth_manager
    app.state.gateway = gateway
    return app
