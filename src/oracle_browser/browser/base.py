"""Protocol client abstractions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from ..config import AutomationConfig


@dataclass(frozen=True)
class LaunchedBrowser:
    """Process and endpoint information of a browser started for a session."""

    endpoint: str
    pid: Optional[int]
    user_data_dir: Optional[Path]


@dataclass(frozen=True)
class CookieParam:
    """Cookie in the shape expected by ``Network.setCookies``."""

    name: str
    value: str
    domain: str
    path: str = "/"
    secure: bool = False
    http_only: bool = False
    same_site: Optional[str] = None
    expires: Optional[float] = None

    def to_cdp(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
        }
        if self.same_site:
            payload["sameSite"] = self.same_site
        if self.expires is not None:
            payload["expires"] = self.expires
        return payload

    def __repr__(self) -> str:
        return f"CookieParam(name={self.name!r}, domain={self.domain!r}, path={self.path!r})"


class ProtocolClient(ABC):
    """Transport to one page of a browser over the DevTools protocol."""

    @abstractmethod
    def launch(self, config: AutomationConfig, user_data_dir: Path) -> LaunchedBrowser:
        """Start a new browser instance and attach to it."""

    @abstractmethod
    def attach(self, endpoint: str) -> None:
        """Connect to an already running browser."""

    @abstractmethod
    def close(self) -> None:
        """Release the connection. The browser process keeps running."""

    @abstractmethod
    def evaluate(
        self,
        expression: str,
        *,
        await_promise: bool = False,
        return_by_value: bool = True,
    ) -> Any:
        """Run ``expression`` in the page and return its value."""

    @abstractmethod
    def navigate(self, url: str, timeout_ms: int) -> None:
        """Navigate the page and wait for the document to load."""

    @abstractmethod
    def current_url(self) -> str:
        """Return the page URL."""

    @abstractmethod
    def insert_text(self, text: str) -> None:
        """Insert text at the focused element as if typed or pasted."""

    @abstractmethod
    def press_key(self, key: str) -> None:
        """Dispatch a key press (keyDown + keyUp) to the page."""

    @abstractmethod
    def set_cookies(self, cookies: Iterable[CookieParam]) -> None:
        """Write cookies into the browser's cookie jar."""

    @abstractmethod
    def set_file_input(self, selector: str, paths: Sequence[Path]) -> None:
        """Assign files to the first file input matching ``selector``."""
