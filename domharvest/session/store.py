"""Session store: durable authentication state keyed by session id.

Each session is one Playwright storage-state JSON file (cookies plus
per-origin local storage) under the store's directory. A record exists
only after an explicit ``save`` and changes only by overwriting ``save``
or ``delete``. Concurrent writers from several processes are not
coordinated; the last write wins.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Protocol

from pydantic import BaseModel, Field

from domharvest.harvester.errors import SessionNotFound

logger = logging.getLogger(__name__)

SESSION_SUFFIX = ".json"


class StateSource(Protocol):
    async def storage_state(self) -> dict[str, Any]: ...


class SessionState(BaseModel):
    """Cookies and storage snapshot in Playwright's storage-state layout."""

    cookies: list[dict[str, Any]] = Field(default_factory=list)
    origins: list[dict[str, Any]] = Field(default_factory=list)


class SessionStore:
    """File-backed session persistence.

    The in-memory index only remembers where sessions were written; it is
    always checked against disk, since files may appear or vanish by other
    means.
    """

    def __init__(self, storage_dir: Path | str = "./sessions") -> None:
        self._storage_dir = Path(storage_dir)
        self._sessions: dict[str, Path] = {}

    @property
    def storage_dir(self) -> Path:
        return self._storage_dir

    def path_for(self, session_id: str) -> Path:
        _validate_session_id(session_id)
        return self._sessions.get(session_id) or self._storage_dir / f"{session_id}{SESSION_SUFFIX}"

    async def save(self, session_id: str, source: StateSource | Mapping[str, Any]) -> Path:
        """Persist the state of ``source`` (a browser context or a state mapping)."""
        _validate_session_id(session_id)
        if isinstance(source, Mapping):
            raw = dict(source)
        else:
            raw = await source.storage_state()
        state = SessionState.model_validate(raw)

        self._storage_dir.mkdir(parents=True, exist_ok=True)
        session_path = self._storage_dir / f"{session_id}{SESSION_SUFFIX}"
        temp_path = session_path.with_suffix(".tmp")
        try:
            temp_path.write_text(state.model_dump_json(indent=2))
            temp_path.replace(session_path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

        self._sessions[session_id] = session_path
        logger.info(
            "Session saved",
            extra={"session_id": session_id, "cookies": len(state.cookies)},
        )
        return session_path

    def load(self, session_id: str) -> SessionState:
        """Read a saved session; raises ``SessionNotFound`` when there is none."""
        session_path = self.path_for(session_id)
        if not session_path.exists():
            self._sessions.pop(session_id, None)
            raise SessionNotFound(session_id)
        try:
            return SessionState.model_validate_json(session_path.read_text())
        except FileNotFoundError as exc:
            self._sessions.pop(session_id, None)
            raise SessionNotFound(session_id, cause=exc) from exc

    def exists(self, session_id: str) -> bool:
        session_path = self.path_for(session_id)
        if session_path.exists():
            return True
        self._sessions.pop(session_id, None)
        return False

    def delete(self, session_id: str) -> bool:
        """Remove a session; returns False when nothing was stored."""
        session_path = self.path_for(session_id)
        self._sessions.pop(session_id, None)
        if not session_path.exists():
            return False
        session_path.unlink()
        logger.info("Session deleted", extra={"session_id": session_id})
        return True

    def list(self) -> set[str]:
        if not self._storage_dir.exists():
            return set()
        return {
            path.name[: -len(SESSION_SUFFIX)]
            for path in self._storage_dir.iterdir()
            if path.is_file() and path.name.endswith(SESSION_SUFFIX)
        }

    async def new_context(self, browser: Any, session_id: str, **kwargs: Any) -> Any:
        """Open a browser context restored from ``session_id``."""
        state = self.load(session_id)
        return await browser.new_context(storage_state=state.model_dump(), **kwargs)


def _validate_session_id(session_id: str) -> None:
    if not session_id or not session_id.strip():
        raise ValueError("session_id cannot be empty")
    if "/" in session_id or "\\" in session_id or session_id in {".", ".."}:
        raise ValueError(f"Invalid session_id: {session_id!r}")


def dump_cookies(cookies: list[dict[str, Any]]) -> str:
    """Serialize a cookie list in the same JSON family as session files."""
    return json.dumps(cookies, indent=2)
