"""
Motor API Authentication Proxy
A reverse proxy that keeps one Motor API session alive and injects its
cookies into every forwarded request.

CLI Usage:
    python -m motor_proxy [options]

    Options:
        --host               Listen address
        --port               Listen port (default: 3001)
        --login-strategy     redirect | browser
        --log-level          Logging level
        --env-file           Path to a .env file
        --authenticate-only  Run one login handshake and exit
"""

from .run_config import ProxyRunConfig
from .errors import (
    AuthError,
    ConfigurationError,
    LoginHandshakeError,
    MotorProxyError,
    PersistenceError,
    ProxyTransportError,
    RedirectLimitError,
    SessionExpiredSignal,
)
from .auth import AuthManager, AuthProgress, Session, SessionCookie
from .gateway import ProxyGateway
from .app import create_app

__all__ = [
    'ProxyRunConfig',
    'AuthManager',
    'AuthProgress',
    'Session',
    'SessionCookie',
    'ProxyGateway',
    'create_app',
    # Errors
    'MotorProxyError',
    'ConfigurationError',
    'AuthError',
    'LoginHandshakeError',
    'RedirectLimitError',
    'ProxyTransportError',
    'PersistenceError',
    'SessionExpiredSignal',
]

__version__ = '3.0.0'
