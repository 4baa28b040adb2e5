"""DevTools protocol client backed by Playwright's CDP connection."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from playwright.sync_api import Error, sync_playwright

from ..config import AutomationConfig
from ..errors import ProtocolDisconnected, ProtocolError, ScriptEvaluationError
from .base import CookieParam, LaunchedBrowser, ProtocolClient
from .launcher import ChromeLauncher

LOGGER = logging.getLogger(__name__)

_DISCONNECT_MARKERS = (
    "target closed",
    "has been closed",
    "connection closed",
    "browser closed",
    "session closed",
    "disconnected",
    "websocket",
    "econnrefused",
)

_KEY_CODES = {
    "Enter": (13, "\r"),
    "Escape": (27, ""),
    "Tab": (9, ""),
}


def _classify(exc: Exception, method: str) -> ProtocolError:
    message = str(exc)
    lowered = message.lower()
    if any(marker in lowered for marker in _DISCONNECT_MARKERS):
        return ProtocolDisconnected(f"{method} failed: {message}")
    return ProtocolError(f"{method} failed: {message}")


class CDPProtocolClient(ProtocolClient):
    """Drive a single page through raw DevTools commands."""

    def __init__(self, launcher: Optional[ChromeLauncher] = None) -> None:
        self._launcher = launcher or ChromeLauncher()
        self._playwright = None
        self._browser = None
        self._page = None
        self._cdp = None

    def launch(self, config: AutomationConfig, user_data_dir: Path) -> LaunchedBrowser:
        launched = self._launcher.launch(
            chrome_path=config.chrome_path,
            user_data_dir=user_data_dir,
            headless=config.headless,
        )
        self.attach(launched.endpoint)
        return launched

    def attach(self, endpoint: str) -> None:
        if self._cdp is not None:
            self.close()
        LOGGER.debug("Attaching to DevTools endpoint %s", endpoint)
        self._playwright = sync_playwright().start()
        try:
            self._browser = self._playwright.chromium.connect_over_cdp(endpoint)
            contexts = self._browser.contexts
            context = contexts[0] if contexts else self._browser.new_context()
            pages = [page for page in context.pages if not page.url.startswith("devtools://")]
            self._page = pages[0] if pages else context.new_page()
            self._cdp = context.new_cdp_session(self._page)
        except Error as exc:
            self.close()
            raise ProtocolDisconnected(f"Could not attach to {endpoint}: {exc}") from exc

    def close(self) -> None:
        LOGGER.debug("Closing DevTools connection")
        try:
            if self._cdp is not None:
                try:
                    self._cdp.detach()
                except Error:
                    LOGGER.debug("CDP session already detached")
            if self._browser is not None:
                # For CDP connections this disconnects without killing Chrome.
                self._browser.close()
        finally:
            if self._playwright is not None:
                self._playwright.stop()
            self._cdp = None
            self._page = None
            self._browser = None
            self._playwright = None

    def send(self, method: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        if self._cdp is None:
            raise ProtocolDisconnected(f"{method} failed: client is not attached")
        try:
            return self._cdp.send(method, params or {})
        except Error as exc:
            raise _classify(exc, method) from exc

    def evaluate(
        self,
        expression: str,
        *,
        await_promise: bool = False,
        return_by_value: bool = True,
    ) -> Any:
        response = self.send(
            "Runtime.evaluate",
            {
                "expression": expression,
                "awaitPromise": await_promise,
                "returnByValue": return_by_value,
                "userGesture": True,
            },
        )
        details = response.get("exceptionDetails")
        if details:
            exception = details.get("exception") or {}
            description = exception.get("description") or details.get("text") or "script error"
            raise ScriptEvaluationError(description)
        return (response.get("result") or {}).get("value")

    def navigate(self, url: str, timeout_ms: int) -> None:
        LOGGER.info("Navigating to %s", url)
        if self._page is None:
            raise ProtocolDisconnected("Page.goto failed: client is not attached")
        try:
            self._page.goto(url, wait_until="load", timeout=timeout_ms)
        except Error as exc:
            raise _classify(exc, "Page.goto") from exc

    def current_url(self) -> str:
        return str(self.evaluate("location.href") or "")

    def insert_text(self, text: str) -> None:
        self.send("Input.insertText", {"text": text})

    def press_key(self, key: str) -> None:
        code, text = _KEY_CODES.get(key, (0, key if len(key) == 1 else ""))
        base = {"key": key, "code": key, "windowsVirtualKeyCode": code}
        down = {"type": "keyDown", **base}
        if text:
            down["text"] = text
        self.send("Input.dispatchKeyEvent", down)
        self.send("Input.dispatchKeyEvent", {"type": "keyUp", **base})

    def set_cookies(self, cookies: Iterable[CookieParam]) -> None:
        payload = [cookie.to_cdp() for cookie in cookies]
        if not payload:
            return
        self.send("Network.setCookies", {"cookies": payload})

    def set_file_input(self, selector: str, paths: Sequence[Path]) -> None:
        document = self.send("DOM.getDocument", {"depth": 0})
        root_id = document["root"]["nodeId"]
        found = self.send("DOM.querySelector", {"nodeId": root_id, "selector": selector})
        node_id = found.get("nodeId")
        if not node_id:
            raise ProtocolError(f"No file input matched {selector!r}")
        self.send(
            "DOM.setFileInputFiles",
            {"nodeId": node_id, "files": [str(path.resolve()) for path in paths]},
        )
