"""
Session Store
=============
Durable key/value persistence for the one cached Motor session.

Responsibilities:
    1. Save the serialized session (cookies + timestamp) after login
    2. Load it back on cold start
    3. Delete it when upstream reports the session dead

The store is never authoritative: the auth manager's in-memory copy wins
while the process runs.  Every failure surfaces as ``PersistenceError``,
which callers log and treat as a cache miss.

Usage::

    store = JsonFileSessionStore(".session_state")
    store.set(SESSION_ID, {"cookies": [...], "timestamp": 1700000000.0})
    record = store.get(SESSION_ID)
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import PersistenceError

logger = logging.getLogger(__name__)


# Bump the version suffix to invalidate every previously saved session.
SESSION_ID = "motor_proxy_v3"

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class SessionStore(ABC):
    """Contract for session persistence backends."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored record, or None if absent."""
        ...

    @abstractmethod
    def set(self, session_id: str, record: Dict[str, Any]) -> None:
        """Create or replace the record."""
        ...

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Remove the record.  Deleting an absent record is a no-op."""
        ...


class MemorySessionStore(SessionStore):
    """Process-local store.  Used when persistence is not wanted, and in tests."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(session_id)
        return copy.deepcopy(record) if record is not None else None

    def set(self, session_id: str, record: Dict[str, Any]) -> None:
        self._records[session_id] = copy.deepcopy(record)

    def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)


class JsonFileSessionStore(SessionStore):
    """One JSON document per session id inside *state_dir*.

    Writes go to a temporary file first and are renamed into place, so a
    crash mid-write never leaves a truncated session behind.
    """

    def __init__(self, state_dir: str):
        self.state_dir = Path(state_dir)

    def _path(self, session_id: str) -> Path:
        if not _SAFE_ID.match(session_id):
            raise PersistenceError(f"Invalid session id: {session_id!r}")
        return self.state_dir / f"{session_id}.json"

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise PersistenceError(f"Corrupt session file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"Corrupt session file {path}: not an object")
        return data

    def set(self, session_id: str, record: Dict[str, Any]) -> None:
        path = self._path(session_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(record, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not write session file {path}: {exc}") from exc

    def delete(self, session_id: str) -> None:
        path = self._path(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise PersistenceError(f"Could not delete session file {path}: {exc}") from exc
