"""
Redirect-Following Login Client
===============================
Converts account credentials into a Motor session by walking the EBSCO
login redirect chain by hand.

Handles:
    - Arbitrary hops across identity-provider hosts (EBSCO, library
      proxies, Motor connector)
    - Per-host cookie accumulation (each hop sets cookies that only its
      own host reads back)
    - Relative ``Location`` headers
    - A hard redirect ceiling (fail closed, never loop forever)

Automatic redirects are disabled on the ``requests`` session: following
them ourselves is the only way to see every hop's ``Set-Cookie``.
Each handshake gets a fresh session whose own cookie jar accepts
nothing, so the per-attempt ``CookieJar`` is the only cookie source.

Security:
    - The login URL embeds credentials, so only hostnames are logged.
    - Cookie values are never logged, only their names.
"""

from __future__ import annotations

import asyncio
import http.cookiejar
import logging
from typing import Callable, List, Optional
from urllib.parse import urljoin, urlparse

import requests

from ..errors import LoginHandshakeError, RedirectLimitError
from .base_auth import BaseLoginExecutor, ProgressCallback, SessionCookie, _ignore_progress
from .cookie_jar import CookieJar

logger = logging.getLogger(__name__)


def _set_cookie_headers(response) -> List[str]:
    """Every ``Set-Cookie`` header on *response*, unmerged.

    ``response.headers`` folds repeated headers into one comma-joined
    value, which breaks on cookie ``expires`` dates; the raw urllib3
    headers keep them apart.
    """
    raw_headers = getattr(getattr(response, "raw", None), "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        return list(raw_headers.getlist("Set-Cookie"))
    value = response.headers.get("Set-Cookie")
    return [value] if value else []


def _same_resource(a: str, b: str) -> bool:
    pa, pb = urlparse(a), urlparse(b)
    return (
        pa.netloc.lower() == pb.netloc.lower()
        and pa.path.rstrip("/") == pb.path.rstrip("/")
    )


class RedirectLoginClient(BaseLoginExecutor):
    """Performs the multi-hop HTTP login handshake.

    Usage::

        client = RedirectLoginClient(config)
        cookies = await client.login(progress)
    """

    def __init__(self, config,
                 session_factory: Optional[Callable[[], requests.Session]] = None):
        """
        Args:
            config:          A ``ProxyRunConfig`` (login URL, vendor host, limits).
            session_factory: Builds the HTTP session for one handshake.
        """
        self.config = config
        self.session_factory = session_factory or self._create_session
        self.requests_made = 0

    @property
    def name(self) -> str:
        return "redirect"

    def _create_session(self) -> requests.Session:
        """Create a requests session that looks like the browser the vendor expects."""
        session = requests.Session()
        session.headers.update({
            'User-Agent': self.config.user_agent,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
            'Accept-Language': 'en-US,en;q=0.9',
        })
        session.cookies.set_policy(http.cookiejar.DefaultCookiePolicy(allowed_domains=[]))
        return session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def login(self, progress: ProgressCallback = _ignore_progress) -> List[SessionCookie]:
        """Run the handshake without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.run_handshake, progress)

    def run_handshake(self, progress: ProgressCallback = _ignore_progress) -> List[SessionCookie]:
        """Walk the redirect chain and return the vendor cookies.

        Steps:
            1. GET the EBSCO login URL
            2. Follow every 3xx ``Location`` (bounded by ``max_redirects``)
            3. On reaching the vendor host, hit the vendor entry path once
            4. Extract vendor-domain cookies (fall back to all cookies)

        Raises:
            RedirectLimitError:  more than ``max_redirects`` redirects.
            LoginHandshakeError: network-level failure on any hop.
        """
        jar = CookieJar()
        session = self.session_factory()
        try:
            self._walk_chain(session, jar, progress)
        finally:
            session.close()
        return self._extract_cookies(jar)

    def _walk_chain(self, session: requests.Session, jar: CookieJar,
                    progress: ProgressCallback) -> None:
        current_url = self.config.login_url
        redirect_count = 0
        max_redirects = self.config.max_redirects
        self.requests_made = 0

        logger.info("[LOGIN] Step 1: Making GET request to EBSCO login URL...")
        progress("login", "Connecting to EBSCO...", 10)

        while True:
            host = urlparse(current_url).hostname or ""
            response = self._get(session, current_url, jar.get_cookie_header(host))

            set_cookies = _set_cookie_headers(response)
            for header in set_cookies:
                jar.set_cookie(header, host)

            logger.info(
                f"[LOGIN] Response status: {response.status_code}, host: {host}, "
                f"cookies received: {len(set_cookies)}"
            )
            percent = min(10 + redirect_count * 15, 70)
            progress("redirecting", f"Following redirect {redirect_count + 1}...", percent)

            location = response.headers.get("Location")
            if 300 <= response.status_code < 400 and location:
                redirect_count += 1
                if redirect_count > max_redirects:
                    logger.error(f"[LOGIN] Redirect limit ({max_redirects}) exceeded at {host}")
                    raise RedirectLimitError(
                        f"redirect limit exceeded ({max_redirects} redirects)"
                    )
                current_url = urljoin(current_url, location)
                logger.info(
                    f"[LOGIN] Redirect {redirect_count} to: {urlparse(current_url).hostname}"
                )
                continue

            if self._is_vendor_host(host):
                logger.info(f"[LOGIN] ✓ Reached vendor host: {host}")
                self._visit_vendor_entry(session, jar, current_url, progress)
            else:
                logger.warning(
                    f"[LOGIN] Redirect chain ended at {host} without reaching "
                    f"{self.config.vendor_domain}"
                )
            break

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get(self, session: requests.Session, url: str, cookie_header: str):
        headers = {"Cookie": cookie_header} if cookie_header else {}
        self.requests_made += 1
        try:
            return session.get(
                url,
                headers=headers,
                allow_redirects=False,
                timeout=self.config.request_timeout_seconds,
            )
        except requests.Timeout as exc:
            raise LoginHandshakeError(
                f"Timeout contacting {urlparse(url).hostname}"
            ) from exc
        except requests.RequestException as exc:
            raise LoginHandshakeError(
                f"Network error contacting {urlparse(url).hostname}: {exc}"
            ) from exc

    def _is_vendor_host(self, host: str) -> bool:
        return self.config.vendor_domain.lower() in host.lower()

    def _visit_vendor_entry(self, session: requests.Session, jar: CookieJar,
                            landed_url: str, progress: ProgressCallback) -> None:
        """Hit the vendor entry path so the vendor issues its session cookies.

        Skipped when the chain already landed on the entry path itself.
        """
        progress("vendor_connect", "Connecting to Motor.com...", 75)
        entry_url = self.config.vendor_entry_url
        # Three redirects ending on the entry path make exactly four requests.
        if _same_resource(landed_url, entry_url):
            logger.info("[LOGIN] Chain landed on the vendor entry path, no extra request")
            return

        entry_host = urlparse(entry_url).hostname or ""
        logger.info("[LOGIN] Step 2: Making final request to vendor entry path...")
        progress("vendor_auth", "Authenticating with Motor.com...", 85)
        response = self._get(session, entry_url, jar.get_cookie_header(entry_host))
        for header in _set_cookie_headers(response):
            jar.set_cookie(header, entry_host)
        logger.info(f"[LOGIN] Final response status: {response.status_code}")

    def _extract_cookies(self, jar: CookieJar) -> List[SessionCookie]:
        """Vendor-domain cookies, or every cookie if the vendor set none."""
        selected = jar.cookies_for_domain(self.config.vendor_domain)
        if not selected:
            selected = jar.get_all_cookies()
            logger.warning(
                f"[LOGIN] No {self.config.vendor_domain} cookies found, "
                f"using all cookies: {len(selected)}"
            )
        cookies = [SessionCookie(name=c.name, value=c.value, domain=c.domain) for c in selected]
        logger.info(f"[LOGIN] Cookies: {', '.join(c.name for c in cookies)}")
        return cookies
