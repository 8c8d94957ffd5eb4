"""
Base Login Executor (Abstract)
==============================
Defines the contract that every login executor must implement.

An executor turns account credentials into vendor-domain cookies.  Two
implementations ship with the proxy:

    - ``RedirectLoginClient``   — plain HTTP redirect chain (default)
    - ``BrowserLoginExecutor``  — Playwright-driven portal login for
                                  flows that need page scripts

Design principles:
    - The auth manager never imports executor-specific code directly
    - Executors own their step-level timeouts and report progress through
      a callback; they never touch the cached session
    - Session persistence is delegated to ``SessionStore``
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


# step, message, percent
ProgressCallback = Callable[[str, str, int], None]


def _ignore_progress(step: str, message: str, percent: int) -> None:
    pass


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass
class SessionCookie:
    """One upstream cookie kept in the cached session."""
    name: str
    value: str
    domain: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "value": self.value, "domain": self.domain}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "SessionCookie":
        return cls(
            name=str(data.get("name", "")),
            value=str(data.get("value", "")),
            domain=str(data.get("domain", "")),
        )


@dataclass
class Credentials:
    """Plain credential container, resolved once at startup."""
    username: str = ""
    password: str = ""
    extra: Dict[str, str] = field(default_factory=dict)
    """Extra fields (e.g. library card barcode)."""

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"

    @classmethod
    def from_config(cls, config) -> "Credentials":
        """Build from a ``ProxyRunConfig``."""
        extra = {}
        if config.library_barcode:
            extra["library_barcode"] = config.library_barcode
        return cls(
            username=config.ebsco_user,
            password=config.ebsco_password,
            extra=extra,
        )


# ---------------------------------------------------------------------------
# Abstract Base Executor
# ---------------------------------------------------------------------------

class BaseLoginExecutor(ABC):
    """Abstract base for all login executors.

    Subclasses MUST implement:
        - ``name``            — short label used in logs
        - ``login(progress)`` — perform the full handshake
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short executor name (e.g. 'redirect', 'browser')."""
        ...

    @abstractmethod
    async def login(self, progress: ProgressCallback = _ignore_progress) -> List[SessionCookie]:
        """Run the complete login handshake.

        Args:
            progress: Called as ``progress(step, message, percent)`` while
                      the handshake advances.

        Returns:
            Cookies for the vendor session.  May be empty if the chain
            ended without reaching the vendor; the caller decides whether
            that is fatal.

        Raises:
            LoginHandshakeError: on network failure, redirect-limit overrun
                                 or a failed interactive step.
        """
        ...
