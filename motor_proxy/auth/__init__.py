"""
Authentication Module
=====================
Session authentication for the Motor API proxy.

Architecture:
    - ``AuthManager``          — single-flight login, session validity, progress
    - ``BaseLoginExecutor``    — contract for login executors
    - ``RedirectLoginClient``  — HTTP redirect-chain login (default)
    - ``BrowserLoginExecutor`` — Playwright portal login (``browser`` strategy,
                                 imported lazily via ``create_login_executor``)
    - ``CookieJar``            — per-handshake cookie accumulation
    - ``SessionStore``         — durable session persistence

Usage::

    from motor_proxy.auth import AuthManager, JsonFileSessionStore, create_login_executor

    manager = AuthManager(
        config,
        create_login_executor(config),
        JsonFileSessionStore(config.session_state_dir),
    )
    header = await manager.get_cookie_header()
"""

from .auth_factory import create_login_executor
from .auth_manager import AuthManager, AuthProgress, Session
from .base_auth import BaseLoginExecutor, Credentials, SessionCookie
from .cookie_jar import CookieJar, CookieJarEntry
from .redirect_login import RedirectLoginClient
from .session_store import SESSION_ID, JsonFileSessionStore, MemorySessionStore, SessionStore

__all__ = [
    "AuthManager",
    "AuthProgress",
    "Session",
    "SessionCookie",
    "BaseLoginExecutor",
    "Credentials",
    "RedirectLoginClient",
    "create_login_executor",
    "CookieJar",
    "CookieJarEntry",
    "SessionStore",
    "JsonFileSessionStore",
    "MemorySessionStore",
    "SESSION_ID",
]
