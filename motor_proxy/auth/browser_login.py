"""
Browser Login Executor
======================
Playwright-driven login for portals whose handshake needs page scripts.

Flow:
    1. Open the public-library e-resources portal
    2. Fill the library-card barcode and submit
    3. Click through the institutional-access page if one is shown
    4. Wait for the redirect chain to settle on the vendor host
    5. Hit the vendor entry path, then read the context's cookies

Every step carries its own timeout; a timeout or a missing form control
fails the attempt with ``LoginHandshakeError`` describing the step.

Security:
    - The barcode is never logged.
    - Only cookie names appear in logs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from playwright.async_api import Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeout

from ..errors import LoginHandshakeError
from .base_auth import (
    BaseLoginExecutor,
    Credentials,
    ProgressCallback,
    SessionCookie,
    _ignore_progress,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Selector banks (tried in order)
# ---------------------------------------------------------------------------

_BARCODE_SELECTORS: List[str] = [
    'input[name="barcode"]', '#barcode', '#Barcode',
    'input[name="card"]', 'input[name="cardnumber"]',
    'input[name="patron"]', 'input[name="user"]',
    'input[type="text"]:not([type="hidden"])',
]

_SUBMIT_SELECTORS: List[str] = [
    'input[type="submit"]',
    'button[type="submit"]',
    'button:has-text("Submit")',
    'button:has-text("Continue")',
    'button:has-text("Log in")',
    'input[value="Submit"]',
    'input[value="Continue"]',
]

# Institutional-access / database chooser links leading to the vendor.
_VENDOR_LINK_SELECTORS: List[str] = [
    'a[href*="motor.com"]',
    'a:has-text("MOTOR")',
    'a:has-text("Auto Repair Source")',
    'button:has-text("Continue")',
]

_NAVIGATION_TIMEOUT_MS = 60_000
_FIELD_TIMEOUT_MS = 10_000
_VENDOR_WAIT_MS = 45_000


class BrowserLoginExecutor(BaseLoginExecutor):
    """Performs the portal login in a headless Chromium.

    Usage::

        executor = BrowserLoginExecutor(config, Credentials.from_config(config))
        cookies = await executor.login(progress)
    """

    def __init__(self, config, credentials: Optional[Credentials] = None):
        self.config = config
        self.credentials = credentials or Credentials.from_config(config)

    @property
    def name(self) -> str:
        return "browser"

    async def login(self, progress: ProgressCallback = _ignore_progress) -> List[SessionCookie]:
        barcode = self.credentials.extra.get("library_barcode", "")
        if not barcode:
            raise LoginHandshakeError("Library barcode is required for browser login")

        async with async_playwright() as pw:
            browser = await pw.chromium.launch(
                headless=self.config.headless,
                args=['--no-sandbox', '--disable-dev-shm-usage'],
            )
            try:
                context = await browser.new_context(
                    user_agent=self.config.user_agent,
                    locale="en-US",
                    timezone_id="America/New_York",
                )
                page = await context.new_page()
                await self._open_portal(page, progress)
                await self._submit_barcode(page, barcode, progress)
                await self._reach_vendor(page, progress)

                progress("vendor_auth", "Authenticating with Motor.com...", 85)
                await self._goto(page, self.config.vendor_entry_url, "vendor entry page")

                cookies = await context.cookies()
            finally:
                await browser.close()

        return self._extract_cookies(cookies)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _goto(self, page: Page, url: str, label: str) -> None:
        try:
            await page.goto(url, timeout=_NAVIGATION_TIMEOUT_MS, wait_until="load")
        except PlaywrightTimeout as exc:
            raise LoginHandshakeError(f"navigation timeout opening {label}") from exc

    async def _open_portal(self, page: Page, progress: ProgressCallback) -> None:
        logger.info("[BROWSER] Navigating to library portal...")
        progress("portal", "Opening library portal...", 10)
        await self._goto(page, self.config.library_portal_url, "library portal")
        try:
            await page.wait_for_load_state("networkidle", timeout=10_000)
        except PlaywrightTimeout:
            pass

    async def _submit_barcode(self, page: Page, barcode: str,
                              progress: ProgressCallback) -> None:
        progress("barcode", "Submitting library card...", 25)
        barcode_sel = await self._find_field(page, _BARCODE_SELECTORS)
        if not barcode_sel:
            raise LoginHandshakeError("expected form control not found: library barcode field")

        await page.fill(barcode_sel, barcode)
        logger.info("[BROWSER] Barcode filled")

        submit_sel = await self._find_field(page, _SUBMIT_SELECTORS)
        try:
            if submit_sel:
                await page.click(submit_sel, timeout=10_000, no_wait_after=True)
                logger.info("[BROWSER] Submit clicked")
            else:
                logger.info("[BROWSER] No submit button found, pressing Enter")
                await page.press(barcode_sel, "Enter", no_wait_after=True)
        except PlaywrightTimeout as exc:
            raise LoginHandshakeError("expected form control not found: submit button") from exc

    async def _reach_vendor(self, page: Page, progress: ProgressCallback) -> None:
        """Wait until the page sits on the vendor host, clicking through once if needed."""
        progress("redirecting", "Following portal redirects...", 45)
        vendor = self.config.vendor_domain
        if await self._wait_for_vendor(page, timeout_ms=_VENDOR_WAIT_MS // 3):
            return

        # Institutional-access confirmation page: follow the vendor link.
        progress("institution", "Confirming institutional access...", 60)
        link_sel = await self._find_field(page, _VENDOR_LINK_SELECTORS, timeout_ms=3_000)
        if link_sel:
            logger.info(f"[BROWSER] Clicking through: {link_sel}")
            try:
                await page.click(link_sel, timeout=10_000, no_wait_after=True)
            except PlaywrightTimeout:
                pass

        if not await self._wait_for_vendor(page, timeout_ms=_VENDOR_WAIT_MS):
            raise LoginHandshakeError(
                f"navigation timeout: {vendor} never reached (stuck at {page.url[:80]})"
            )
        progress("vendor_connect", "Connecting to Motor.com...", 75)

    async def _wait_for_vendor(self, page: Page, timeout_ms: int) -> bool:
        vendor = self.config.vendor_domain
        if vendor in page.url:
            return True
        try:
            await page.wait_for_url(f"**{vendor}**", timeout=timeout_ms)
        except PlaywrightTimeout:
            return False
        logger.info(f"[BROWSER] ✓ Reached {vendor}")
        # Let the connector's own redirects settle.
        await asyncio.sleep(1.0)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _find_field(self, page: Page, selectors: List[str],
                          timeout_ms: int = _FIELD_TIMEOUT_MS) -> Optional[str]:
        """Return the first visible selector from *selectors*, or None."""
        for sel in selectors:
            try:
                el = await page.query_selector(sel)
                if el and await el.is_visible():
                    logger.debug(f"[BROWSER] Auto-detected field: {sel}")
                    return sel
            except Exception:
                continue

        # Last resort: wait briefly for the primary selector to render.
        try:
            await page.wait_for_selector(selectors[0], timeout=timeout_ms, state="visible")
            return selectors[0]
        except PlaywrightTimeout:
            return None

    def _extract_cookies(self, raw_cookies: List[dict]) -> List[SessionCookie]:
        vendor = self.config.vendor_domain
        cookies = [
            SessionCookie(name=c["name"], value=c["value"], domain=c.get("domain", ""))
            for c in raw_cookies
            if vendor in c.get("domain", "")
        ]
        logger.info(f"[BROWSER] Vendor cookies: {', '.join(c.name for c in cookies) or 'none'}")
        return cookies
