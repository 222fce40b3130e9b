"""Error taxonomy for harvesting operations.

Every error carries the target URL, the name of the failed operation, the
selector involved (if any), and the low-level cause raised by the browser
engine. ``kind`` is the name retry policies match against.
"""

from __future__ import annotations

from typing import Any


class HarvestError(Exception):
    """Base class for all harvesting failures."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        operation: str | None = None,
        selector: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.operation = operation
        self.selector = selector
        self.cause = cause

    @property
    def kind(self) -> str:
        return type(self).__name__

    def context(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "operation": self.operation,
            "selector": self.selector,
            "error_kind": self.kind,
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class NavigationFailure(HarvestError):
    """Navigation or browser bootstrap failed."""


class MatchTimeout(HarvestError):
    """The expected page state never appeared within the timeout."""


class ExtractionFailure(HarvestError):
    """A schema or callback raised while executing inside the page."""


class SessionNotFound(HarvestError):
    """No durable record exists for a session id."""

    def __init__(self, session_id: str, **kwargs: Any) -> None:
        kwargs.setdefault("operation", "load_session")
        super().__init__(f"Session not found: {session_id}", **kwargs)
        self.session_id = session_id


def error_kind(error: BaseException) -> str:
    """Return the kind name retry policies use for ``error``."""
    if isinstance(error, HarvestError):
        return error.kind
    return type(error).__name__
