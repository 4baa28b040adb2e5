"""Compose sessions, cookies, probes and the driver into one query."""

from __future__ import annotations

import logging
import math
import time
from typing import List, Optional, Sequence

from rich.console import Console

from ..config import AutomationConfig
from ..cookies.sync import CookieSynchronizer
from ..driver.polling import Clock, Deadline, Sleep
from ..driver.submission import PromptSubmissionDriver
from ..errors import (
    ErrorKind,
    OracleBrowserError,
    ProtocolDisconnected,
    ProtocolError,
    SessionBusy,
    SessionNotFound,
)
from ..heuristics.page import ChatPage
from ..heuristics.rules import SEARCH_TOGGLE
from ..models import (
    DeleteResult,
    NotificationEvent,
    NotificationLevel,
    QueryAttachment,
    QueryResult,
    SessionDescriptor,
    SessionState,
    SessionStatus,
    ToggleOutcome,
    ToggleStatus,
)
from ..notifications.base import Notifier, NullNotifier
from ..sessions.display import render_status
from ..sessions.manager import AttachedSession, SessionManager

LOGGER = logging.getLogger(__name__)

MAX_REATTACH_ATTEMPTS = 1


class OracleBrowser:
    """Entry point used by the CLI and MCP layers."""

    def __init__(
        self,
        sessions: SessionManager,
        cookies: Optional[CookieSynchronizer] = None,
        notifier: Optional[Notifier] = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
        console: Optional[Console] = None,
    ) -> None:
        self._sessions = sessions
        self._cookies = cookies or CookieSynchronizer()
        self._notifier = notifier or NullNotifier()
        self._clock = clock
        self._sleep = sleep
        self._console = console

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    # Queries -----------------------------------------------------------------

    def run_query(
        self,
        prompt: str,
        attachments: Sequence[QueryAttachment] = (),
        config: Optional[AutomationConfig] = None,
    ) -> QueryResult:
        """Send ``prompt`` through the web UI and return the settled answer."""

        config = config or AutomationConfig()
        deadline = Deadline.after_ms(config.timeout_ms, self._clock)
        attached = self._resolve(config)
        session_id = attached.session_id
        self._emit(
            "query_started",
            f"Submitting prompt ({len(prompt)} chars, {len(attachments)} attachments)",
            session_id=session_id,
        )
        try:
            lock = self._sessions.acquire(session_id)
        except SessionBusy:
            # The browser belongs to the query holding the lock; only drop our connection.
            attached.client.close()
            raise
        try:
            self._sessions.mark(session_id, SessionState.RUNNING, prompt=prompt)
            driver = PromptSubmissionDriver(ChatPage(attached.client), config, clock=self._clock, sleep=self._sleep)
            search: Optional[ToggleOutcome] = None
            attempts = 0
            while True:
                try:
                    if driver.submitted:
                        # The prompt is already in the conversation; only collect the answer.
                        result = driver.resume(deadline)
                    else:
                        search = self._prepare(attached, driver, config, deadline)
                        result = driver.run(prompt, attachments, deadline=deadline)
                    break
                except ProtocolDisconnected as exc:
                    if attempts >= MAX_REATTACH_ATTEMPTS:
                        raise
                    attempts += 1
                    LOGGER.warning("Lost connection to session %s (%s); reattaching", session_id, exc)
                    attached = self._reattach(attached, exc)
                    driver.rebind(ChatPage(attached.client))
            result = result.model_copy(update={"search": search})
            self._sessions.mark(session_id, SessionState.COMPLETED)
        except Exception as exc:
            if not isinstance(exc, OracleBrowserError):
                LOGGER.exception("Unexpected failure while running query on session %s", session_id)
            self._sessions.mark(session_id, SessionState.FAILED, error=str(exc))
            kind = exc.kind.value if isinstance(exc, OracleBrowserError) else "unexpected"
            self._emit(
                "query_failed",
                str(exc),
                level=NotificationLevel.ERROR,
                session_id=session_id,
                kind=kind,
            )
            raise
        finally:
            try:
                self._finish(attached, config)
            finally:
                lock.release()
        self._emit(
            "query_finished",
            "Answer received" if not result.empty else "Assistant returned an empty answer",
            level=NotificationLevel.SUCCESS if not result.empty else NotificationLevel.WARNING,
            session_id=session_id,
            elapsed_ms=result.elapsed_ms,
            kind=ErrorKind.EXTRACTION_EMPTY.value if result.empty else None,
        )
        return result.model_copy(update={"session_id": session_id})

    def _resolve(self, config: AutomationConfig) -> AttachedSession:
        if config.session_id:
            try:
                return self._sessions.attach(config.session_id)
            except SessionNotFound as exc:
                LOGGER.warning("%s; launching a new browser session", exc)
        return self._sessions.create(config)

    def _reattach(self, attached: AttachedSession, cause: ProtocolDisconnected) -> AttachedSession:
        try:
            attached.client.close()
        except ProtocolError as exc:
            LOGGER.debug("Ignoring error while dropping dead connection: %s", exc)
        try:
            return self._sessions.attach(attached.session_id)
        except SessionNotFound as exc:
            raise ProtocolDisconnected(
                f"Reattach to session {attached.session_id} failed: {exc}",
                session_id=attached.session_id,
            ) from cause

    def _prepare(
        self,
        attached: AttachedSession,
        driver: PromptSubmissionDriver,
        config: AutomationConfig,
        deadline: Deadline,
    ) -> Optional[ToggleOutcome]:
        self._cookies.sync(attached.client, config)
        # Controls render after the document loads; the composer being usable means they are there.
        driver.prepare(deadline)
        return self._ensure_search(ChatPage(attached.client)) if config.search else None

    def _ensure_search(self, page: ChatPage) -> ToggleOutcome:
        outcome = page.toggle(SEARCH_TOGGLE)
        suffix = f" ({outcome.label})" if outcome.label else ""
        if outcome.status == ToggleStatus.ALREADY_ON:
            LOGGER.info("Search toggle already on%s.", suffix)
        elif outcome.status == ToggleStatus.TOGGLED_ON:
            LOGGER.info("Search toggle enabled%s.", suffix)
        elif outcome.status == ToggleStatus.NOT_FOUND:
            LOGGER.warning("Search toggle not found; continuing without forcing search.")
        else:
            LOGGER.warning(
                "Search toggle error%s; continuing without forcing search.",
                f": {outcome.message}" if outcome.message else "",
            )
        kind = {
            ToggleStatus.NOT_FOUND: ErrorKind.TOGGLE_NOT_FOUND.value,
            ToggleStatus.ERROR: ErrorKind.TOGGLE_ERROR.value,
        }.get(outcome.status)
        self._emit(
            "toggle",
            f"search: {outcome.status.value}",
            level=NotificationLevel.INFO if outcome.is_on else NotificationLevel.WARNING,
            status=outcome.status.value,
            kind=kind,
        )
        return outcome

    def _finish(self, attached: AttachedSession, config: AutomationConfig) -> None:
        try:
            if config.keep_browser:
                self._sessions.release(attached)
            else:
                self._sessions.close(attached)
        except (OracleBrowserError, OSError) as exc:
            LOGGER.warning("Cleanup of session %s failed: %s", attached.session_id, exc)

    # Session management --------------------------------------------------------

    def delete_sessions_older_than(self, hours: float, include_all: bool = False) -> DeleteResult:
        return DeleteResult(deleted=self._sessions.delete_older_than(hours=hours, include_all=include_all))

    def attach_session(self, session_id: str) -> SessionDescriptor:
        """Verify a stored session can be reattached and refresh its timestamp."""

        attached = self._sessions.attach(session_id)
        self._sessions.release(attached)
        return self._sessions.store.get(session_id) or attached.descriptor

    def show_status(
        self,
        hours: float = 24,
        include_all: bool = False,
        limit: int = 100,
        show_examples: bool = False,
    ) -> List[SessionStatus]:
        window = None if include_all or math.isinf(hours) else hours
        rows = self._sessions.list_sessions(hours=window, include_all=include_all, limit=limit)
        render_status(
            rows,
            hours=hours,
            include_all=include_all,
            show_examples=show_examples,
            console=self._console,
        )
        return rows

    def _emit(
        self,
        event_type: str,
        message: str,
        *,
        level: NotificationLevel = NotificationLevel.INFO,
        **data: object,
    ) -> None:
        self._notifier.notify(
            NotificationEvent(
                type=event_type,
                message=message,
                level=level,
                data={key: value for key, value in data.items() if value is not None},
            )
        )
