"""
Error kinds raised or reported by the browser automation core.

Fatal conditions are exceptions deriving from :class:`OracleBrowserError`.
Conditions the query survives (a toggle that cannot be found, an empty
answer) are reported as data and only carry an :class:`ErrorKind` so callers
can still tell them apart in logs and notifications.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Stable identifiers for every failure mode the core distinguishes."""

    PROTOCOL_DISCONNECTED = "protocol_disconnected"
    PROTOCOL_ERROR = "protocol_error"
    SCRIPT_ERROR = "script_error"
    BROWSER_LAUNCH_FAILED = "browser_launch_failed"
    TOGGLE_NOT_FOUND = "toggle_not_found"
    TOGGLE_ERROR = "toggle_error"
    COOKIE_SYNC_FAILED = "cookie_sync_failed"
    INPUT_NOT_READY = "input_not_ready"
    RESPONSE_TIMEOUT = "response_timeout"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_BUSY = "session_busy"
    EXTRACTION_EMPTY = "extraction_empty"


class OracleBrowserError(RuntimeError):
    """Base class for fatal errors surfaced to callers."""

    kind: ErrorKind = ErrorKind.PROTOCOL_ERROR

    def __init__(self, message: str, *, session_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.session_id = session_id

    @property
    def is_timeout(self) -> bool:
        return self.kind in {ErrorKind.INPUT_NOT_READY, ErrorKind.RESPONSE_TIMEOUT}


class ProtocolError(OracleBrowserError):
    """A DevTools command failed for a reason other than a lost connection."""

    kind = ErrorKind.PROTOCOL_ERROR


class ProtocolDisconnected(ProtocolError):
    """The browser, target or websocket went away mid-command."""

    kind = ErrorKind.PROTOCOL_DISCONNECTED


class ScriptEvaluationError(ProtocolError):
    """An evaluated expression threw inside the page."""

    kind = ErrorKind.SCRIPT_ERROR


class BrowserLaunchError(OracleBrowserError):
    kind = ErrorKind.BROWSER_LAUNCH_FAILED


class CookieSyncFailed(OracleBrowserError):
    kind = ErrorKind.COOKIE_SYNC_FAILED


class InputNotReady(OracleBrowserError):
    """The prompt composer never became usable within ``input_timeout_ms``."""

    kind = ErrorKind.INPUT_NOT_READY


class ResponseTimeout(OracleBrowserError):
    """The overall ``timeout_ms`` deadline passed before the answer settled."""

    kind = ErrorKind.RESPONSE_TIMEOUT


class SessionNotFound(OracleBrowserError):
    kind = ErrorKind.SESSION_NOT_FOUND


class SessionBusy(OracleBrowserError):
    """Another prompt is already in flight on the same session."""

    kind = ErrorKind.SESSION_BUSY
