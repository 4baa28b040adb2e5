"""Notification channels for query progress."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from rich.console import Console

from ..models import NotificationEvent, NotificationLevel

_LEVEL_STYLES = {
    NotificationLevel.INFO: "cyan",
    NotificationLevel.WARNING: "yellow",
    NotificationLevel.ERROR: "red",
    NotificationLevel.SUCCESS: "green",
}

_LOG_LEVELS = {
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.ERROR,
    NotificationLevel.SUCCESS: logging.INFO,
}


class Notifier(ABC):
    """Receives events emitted while a query runs."""

    @abstractmethod
    def notify(self, event: NotificationEvent) -> None:
        """Deliver a notification event."""


class NullNotifier(Notifier):
    def notify(self, event: NotificationEvent) -> None:
        return None


class ConsoleNotifier(Notifier):
    """Print events to stderr with Rich; session ids are shown dimmed."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self._console = console or Console(stderr=True)

    def notify(self, event: NotificationEvent) -> None:
        style = _LEVEL_STYLES.get(event.level, "white")
        self._console.print(f"[{event.level.value.upper()}] {event.message}", style=style)
        session_id = event.data.get("session_id")
        if session_id:
            self._console.print(f"  session {session_id}", style="dim")


class LoggingNotifier(Notifier):
    """Forward events to a standard logger."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("oracle_browser.events")

    def notify(self, event: NotificationEvent) -> None:
        self._logger.log(_LOG_LEVELS.get(event.level, logging.INFO), "%s: %s", event.type, event.message)


class CompositeNotifier(Notifier):
    """Fan events out to several notifiers."""

    def __init__(self, notifiers: Iterable[Notifier]) -> None:
        self._notifiers = list(notifiers)

    def notify(self, event: NotificationEvent) -> None:
        for notifier in self._notifiers:
            notifier.notify(event)
