"""Exception types for the Motor authentication proxy."""

from __future__ import annotations

from dataclasses import dataclass


class MotorProxyError(Exception):
    """Base exception for all proxy errors."""


class ConfigurationError(MotorProxyError):
    """A required credential or setting is missing. Fatal at startup."""


class AuthError(MotorProxyError):
    """Authentication could not produce a usable session."""


class LoginHandshakeError(AuthError):
    """The login handshake failed (network, interactive step, no cookies)."""


class RedirectLimitError(LoginHandshakeError):
    """The redirect chain exceeded the configured ceiling."""


class ProxyTransportError(MotorProxyError):
    """The upstream vendor API could not be reached."""


class PersistenceError(MotorProxyError):
    """The session store could not be read or written."""


@dataclass(frozen=True)
class SessionExpiredSignal:
    """Upstream answered 401/403: the cached session is dead.

    Not raised. The gateway hands it to the auth manager, which
    invalidates the session and re-authenticates in the background.
    """
    status_code: int
    path: str = ""
