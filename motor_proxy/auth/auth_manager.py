"""
Auth Manager
============
Sole authority on whether the cached Motor session can be used, and sole
driver of the login handshake.

Responsibilities:
    1. Decide session validity (cookies present, age under the limit).
    2. Restore the session from the ``SessionStore`` on cold start.
    3. Run the login handshake with single-flight semantics: concurrent
       callers share ONE attempt and observe its single outcome.
    4. Persist fresh sessions; delete dead ones.
    5. Publish an ``AuthProgress`` snapshot for UI polling.

Lifecycle of one attempt::

    authenticate()
      → reset_progress()                       idle
      → executor.login(progress)               authenticating
      → session = cookies + now, save_session()
      → success | error                        terminal until next reset

The in-flight attempt is an ``asyncio.Task`` owned by the manager.
Waiters await it through ``asyncio.shield`` so a disconnecting client
never cancels the attempt other callers depend on.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from ..errors import AuthError, LoginHandshakeError, PersistenceError, SessionExpiredSignal
from .base_auth import BaseLoginExecutor, SessionCookie
from .session_store import SESSION_ID, SessionStore

logger = logging.getLogger(__name__)


IDLE = "idle"
AUTHENTICATING = "authenticating"
SUCCESS = "success"
ERROR = "error"


def to_epoch_ms(ts: Optional[float]) -> Optional[int]:
    return int(ts * 1000) if ts else None


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

@dataclass
class Session:
    """Cached upstream cookies plus the time they were obtained."""
    cookies: List[SessionCookie] = field(default_factory=list)
    timestamp: float = 0.0

    def to_record(self) -> dict:
        return {
            "cookies": [c.to_dict() for c in self.cookies],
            "timestamp": self.timestamp,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }

    @classmethod
    def from_record(cls, record: dict) -> "Session":
        cookies = [SessionCookie.from_dict(c) for c in record.get("cookies") or []]
        timestamp = float(record.get("timestamp") or 0.0)
        return cls(cookies=cookies, timestamp=timestamp)


@dataclass
class AuthProgress:
    """Observable state of the current (or last) authentication attempt."""
    status: str = IDLE
    step: Optional[str] = None
    message: Optional[str] = None
    percent: int = 0
    error: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "step": self.step,
            "message": self.message,
            "percent": self.percent,
            "error": self.error,
            "startedAt": to_epoch_ms(self.started_at),
            "completedAt": to_epoch_ms(self.completed_at),
        }


# ---------------------------------------------------------------------------
# Auth Manager
# ---------------------------------------------------------------------------

class AuthManager:
    """Owns the one cached session and the single-flight login attempt.

    One instance is built by the application's composition root and
    passed to the gateway; there is no module-level singleton.
    """

    def __init__(
        self,
        config,
        executor: BaseLoginExecutor,
        store: SessionStore,
        *,
        clock: Callable[[], float] = time.time,
        session_id: str = SESSION_ID,
    ):
        """
        Args:
            config:     ``ProxyRunConfig`` (max session age).
            executor:   Login executor that performs the handshake.
            store:      Durable session store.
            clock:      Wall-clock source in epoch seconds.
            session_id: Fixed logical id of the stored session.
        """
        self.config = config
        self.executor = executor
        self.store = store
        self.session_id = session_id
        self._clock = clock

        self.session = Session()
        self.progress = AuthProgress()
        self.handshake_count = 0

        self._auth_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    # ── Session validity ──────────────────────────────────────────

    @property
    def max_session_age(self) -> float:
        return self.config.max_session_age_seconds

    @property
    def last_auth(self) -> Optional[float]:
        """Epoch seconds of the current session, or None."""
        return self.session.timestamp or None

    @property
    def is_authenticating(self) -> bool:
        return self._auth_task is not None

    def is_session_valid(self) -> bool:
        """True iff cookies exist, a timestamp is set and the session is younger than the limit."""
        if not self.session.cookies or not self.session.timestamp:
            return False
        age = self._clock() - self.session.timestamp
        return age < self.max_session_age

    # ── Persistence ───────────────────────────────────────────────

    def load_session(self) -> bool:
        """Restore the session from the store.

        Returns:
            True if a stored session was found and is still valid.
            Store errors are logged and reported as "no session".
        """
        try:
            record = self.store.get(self.session_id)
        except PersistenceError as exc:
            logger.error(f"[SESSION] Error loading saved session: {exc}")
            return False

        if record is None:
            logger.info("[SESSION] No saved session found, will authenticate")
            return False

        try:
            session = Session.from_record(record)
        except (TypeError, ValueError, AttributeError) as exc:
            logger.error(f"[SESSION] Saved session is malformed: {exc}")
            return False

        self.session = session
        if self.is_session_valid():
            logger.info(f"[SESSION] ✓ Loaded valid session ({len(session.cookies)} cookies)")
            return True

        logger.info("[SESSION] Saved session expired, re-authenticating...")
        return False

    def save_session(self) -> bool:
        """Persist the current session.  Failures are logged, never raised."""
        try:
            self.store.set(self.session_id, self.session.to_record())
        except PersistenceError as exc:
            logger.error(f"[SESSION] Could not save session: {exc}")
            return False
        logger.info("[SESSION] ✓ Session saved")
        return True

    def invalidate_session(self) -> None:
        """Forget the session in memory and in the store.  Idempotent."""
        self.session = Session()
        try:
            self.store.delete(self.session_id)
        except PersistenceError as exc:
            logger.error(f"[SESSION] Could not delete saved session: {exc}")
        logger.info("[SESSION] ✓ Session invalidated")

    # ── Progress ──────────────────────────────────────────────────

    def get_progress(self) -> AuthProgress:
        """Snapshot of the progress state, safe to read mid-attempt."""
        return dataclasses.replace(self.progress)

    def reset_progress(self) -> None:
        self.progress = AuthProgress()

    def _update_progress(self, status: str, step: str, message: str,
                         percent: Optional[int] = None) -> None:
        current = self.progress
        self.progress = dataclasses.replace(
            current,
            status=status,
            step=step,
            message=message,
            percent=current.percent if percent is None else percent,
            started_at=current.started_at or self._clock(),
        )

    def _report_step(self, step: str, message: str, percent: int) -> None:
        """Progress callback handed to the executor (may run in a worker thread)."""
        self._update_progress(AUTHENTICATING, step, message, percent)

    # ── Authentication ────────────────────────────────────────────

    async def authenticate(self) -> None:
        """Run the login handshake, or join the one already running.

        Raises:
            LoginHandshakeError: the attempt failed.  Every concurrent
                                 caller receives the same exception.
        """
        task = self._auth_task
        if task is not None:
            logger.info("[AUTH] Authentication already in progress, waiting for result...")
        else:
            self.reset_progress()
            self._update_progress(AUTHENTICATING, "init", "Starting authentication...", 0)
            self.handshake_count += 1
            task = asyncio.ensure_future(self._run_attempt())
            self._auth_task = task
            task.add_done_callback(self._attempt_finished)
        await asyncio.shield(task)

    def _attempt_finished(self, task: asyncio.Task) -> None:
        if self._auth_task is task:
            self._auth_task = None
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter went away.
            task.exception()

    async def _run_attempt(self) -> None:
        logger.info(f"[AUTH] Starting {self.executor.name} authentication flow...")
        try:
            cookies = await self.executor.login(self._report_step)
            if not cookies:
                raise LoginHandshakeError(
                    "Login handshake finished without obtaining any cookies"
                )
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error(f"[AUTH] Authentication failed: {message}")
            self._update_progress(ERROR, "failed", f"Authentication failed: {message}", 0)
            self.progress.error = message
            self.progress.completed_at = self._clock()
            if isinstance(exc, LoginHandshakeError):
                raise
            raise LoginHandshakeError(message) from exc

        self.session = Session(cookies=list(cookies), timestamp=self._clock())
        logger.info(f"[AUTH] ✓ Authentication successful! Got {len(cookies)} cookies")

        self._update_progress(AUTHENTICATING, "saving", "Saving session...", 95)
        self.save_session()

        self._update_progress(SUCCESS, "complete", "Authentication successful!", 100)
        self.progress.completed_at = self._clock()

    async def get_cookie_header(self) -> str:
        """``name=value`` pairs joined by ``; ``, authenticating first if needed."""
        if not self.is_session_valid():
            await self.authenticate()
        return "; ".join(f"{c.name}={c.value}" for c in self.session.cookies)

    async def ensure_session(self) -> None:
        """Make the session valid: reuse, restore from the store, or log in."""
        if self.is_session_valid():
            return
        logger.info("[AUTH] Session invalid, attempting to restore/authenticate...")
        if self.load_session():
            return
        logger.info("[AUTH] No valid session, authenticating now...")
        await self.authenticate()

    async def initialize(self) -> None:
        """Cold-start initialisation.  Never raises; the first request retries."""
        try:
            await self.ensure_session()
            logger.info("[AUTH] ✓ Authentication initialized")
        except AuthError as exc:
            logger.error(f"[AUTH] Failed to initialize authentication on startup: {exc}")

    # ── Background recovery ───────────────────────────────────────

    def start_background_authentication(self) -> asyncio.Task:
        """Fire-and-forget ``authenticate()``; errors are logged only."""
        task = asyncio.ensure_future(self._authenticate_quietly())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _authenticate_quietly(self) -> None:
        try:
            await self.authenticate()
        except AuthError as exc:
            logger.error(f"[AUTH] Background re-authentication failed: {exc}")

    def handle_upstream_expiry(self, signal: SessionExpiredSignal) -> asyncio.Task:
        """React to an upstream 401/403: invalidate, then re-authenticate in the background.

        A progress snapshot belonging to an attempt already in flight is
        left alone; that attempt absorbs this recovery.
        """
        logger.warning(
            f"[AUTH] Received {signal.status_code} from upstream for {signal.path or '?'}. "
            f"Session expired."
        )
        self.invalidate_session()
        if not self.is_authenticating:
            self.reset_progress()
        return self.start_background_authentication()

    async def aclose(self) -> None:
        """Cancel outstanding background work (application shutdown)."""
        tasks = list(self._background)
        if self._auth_task is not None:
            tasks.append(self._auth_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
