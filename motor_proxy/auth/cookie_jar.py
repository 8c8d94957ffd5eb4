"""
Cookie Jar
==========
Minimal per-handshake cookie store used while following a login
redirect chain across several hosts.

Cookies are keyed by name and remember the host that set them.  Domain
matching is intentionally loose: a cookie is sent to a host when either
name contains the other (after dropping a leading dot).  This is not
RFC 6265 matching; the vendor's cookies are set on ``sites.motor.com``
and read back on the same host, which the loose rule covers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class CookieJarEntry:
    name: str
    value: str
    domain: str


def parse_set_cookie(header: str) -> Optional[Tuple[str, str]]:
    """Return ``(name, value)`` from a ``Set-Cookie`` header, or None.

    Attributes (path, domain, expires, ...) are ignored.  Cookies with an
    empty name or value are skipped.
    """
    if not header:
        return None
    name_value = header.split(";", 1)[0]
    name, sep, value = name_value.partition("=")
    name = name.strip()
    value = value.strip()
    if not sep or not name or not value:
        return None
    return name, value


def domain_matches(hostname: str, domain: str) -> bool:
    """Loose two-way containment check between a host and a cookie domain."""
    if not hostname or not domain:
        return False
    hostname = hostname.lower()
    bare = domain.lower().lstrip(".")
    return bare in hostname or hostname in domain.lower()


class CookieJar:
    """In-memory map from cookie name to ``{value, domain}``."""

    def __init__(self):
        self._cookies: Dict[str, CookieJarEntry] = {}

    def set_cookie(self, set_cookie_header: str, domain: str) -> bool:
        """Record one ``Set-Cookie`` header received from *domain*.

        A later cookie with the same name replaces the earlier one.

        Returns:
            True if the header carried a usable cookie.
        """
        parsed = parse_set_cookie(set_cookie_header)
        if parsed is None:
            logger.debug(f"[COOKIES] Ignoring unusable Set-Cookie from {domain}")
            return False
        name, value = parsed
        self._cookies[name] = CookieJarEntry(name=name, value=value, domain=domain)
        return True

    def get_cookie_header(self, hostname: str) -> str:
        """Build a ``Cookie`` header value for requests to *hostname*."""
        return "; ".join(
            f"{entry.name}={entry.value}"
            for entry in self._cookies.values()
            if domain_matches(hostname, entry.domain)
        )

    def get_all_cookies(self) -> List[CookieJarEntry]:
        """All cookies in insertion order."""
        return list(self._cookies.values())

    def cookies_for_domain(self, domain: str) -> List[CookieJarEntry]:
        """Cookies whose recorded domain contains *domain*."""
        needle = domain.lower()
        return [c for c in self._cookies.values() if needle in c.domain.lower()]
