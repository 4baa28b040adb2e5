from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import pytest

from oracle_browser.browser.base import CookieParam, LaunchedBrowser, ProtocolClient
from oracle_browser.config import AutomationConfig
from oracle_browser.errors import ProtocolDisconnected
from oracle_browser.models import SessionDescriptor
from oracle_browser.sessions.manager import ProcessProbe

_MARKER = re.compile(r"/\* oracle:(?P<name>[a-z-]+) \*/")
_RULE = re.compile(r"const RULE = (?P<rule>\{.*?\});")
_ACTION = re.compile(r'const ACTION = "(?P<action>[a-z]+)";')


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeChatPage:
    """Scripted chat UI answering the page scripts by their marker."""

    def __init__(
        self,
        *,
        answer_chunks: Sequence[str] = ("Partial", "Partial answer", "Summary: done."),
        input_ready_after: Optional[int] = 0,
        search: str = "off",
        send: str = "button",
        never_finish: bool = False,
        toggle_after_input: bool = False,
    ) -> None:
        self.url = "about:blank"
        self.answer_chunks = list(answer_chunks)
        self.input_ready_after = input_ready_after
        self.search = search
        self.send = send
        self.never_finish = never_finish
        # The composer toolbar, and with it the search toggle, renders late.
        self.toggle_after_input = toggle_after_input
        self.input_polls = 0
        self.composer = ""
        self.turns = 0
        self.text = ""
        self.generating = False
        self.pending: list[str] = []
        self.prompts: list[str] = []
        self.files: list[Path] = []
        self.cookies: list[CookieParam] = []
        self.stop_clicks = 0
        self.search_clicks = 0
        self.scripts: list[str] = []

    @property
    def input_ready(self) -> bool:
        return self.input_ready_after is not None and self.input_polls > self.input_ready_after

    def submit(self) -> None:
        self.prompts.append(self.composer)
        self.composer = ""
        self.turns += 1
        self.text = ""
        self.generating = True
        self.pending = list(self.answer_chunks)

    def evaluate(self, expression: str) -> Any:
        marker = _MARKER.search(expression)
        assert marker, "script without marker"
        name = marker.group("name")
        self.scripts.append(name)
        if name == "probe":
            rule = json.loads(_RULE.search(expression).group("rule"))
            action = _ACTION.search(expression).group("action")
            return self._probe(rule["name"], action)
        if name == "input-state":
            self.input_polls += 1
            return {"present": self.input_ready, "enabled": self.input_ready}
        if name == "focus-input":
            return self.input_ready
        if name == "input-value":
            return self.composer
        if name == "assistant-turns":
            return self.turns
        if name == "attachment-state":
            return {"count": len(self.files), "busy": False}
        if name == "response-state":
            if self.pending:
                self.text = self.pending.pop(0)
                if not self.pending and not self.never_finish:
                    self.generating = False
            return {"turns": self.turns, "text": self.text, "length": len(self.text), "finished": False}
        if name == "extract-answer":
            return {"text": self.text, "markdown": self.text or None}
        raise AssertionError(f"unexpected script {name}")

    def _probe(self, rule: str, action: str) -> dict[str, Any]:
        if rule == "search-toggle":
            if self.search == "missing" or (self.toggle_after_input and not self.input_polls):
                return {"status": "not-found"}
            if self.search == "on":
                return {"status": "already-on", "label": "Search"}
            self.search = "on"
            self.search_clicks += 1
            return {"status": "toggled-on", "label": "Search"}
        if rule == "send-button":
            if self.send == "missing":
                return {"status": "not-found"}
            if self.send == "disabled" or not self.composer:
                return {"status": "disabled", "label": "Send prompt"}
            if action == "click":
                self.submit()
                return {"status": "clicked", "label": "Send prompt"}
            return {"status": "present", "label": "Send prompt"}
        if rule == "stop-button":
            if not self.generating:
                return {"status": "not-found"}
            if action == "click":
                self.stop_clicks += 1
                self.generating = False
                self.pending = []
                return {"status": "clicked", "label": "Stop generating"}
            return {"status": "present", "label": "Stop generating"}
        raise AssertionError(f"unexpected rule {rule}")


class FakeBrowserHub:
    """Endpoint registry shared by every client a test creates."""

    def __init__(self, page_factory=FakeChatPage) -> None:
        self.page_factory = page_factory
        self.pages: dict[str, FakeChatPage] = {}
        self.clients: list["FakeProtocolClient"] = []
        # Each client drops its connection after this many evaluations, ``disconnects`` times in total.
        self.disconnect_after: Optional[int] = None
        self.disconnects = 1
        # Drop the connection once, on the first script carrying this marker.
        self.disconnect_on: Optional[str] = None

    def client(self) -> "FakeProtocolClient":
        client = FakeProtocolClient(self)
        self.clients.append(client)
        return client


class FakeProtocolClient(ProtocolClient):
    def __init__(self, hub: FakeBrowserHub) -> None:
        self.hub = hub
        self.page: Optional[FakeChatPage] = None
        self.closed = False
        self.evaluations = 0

    def launch(self, config: AutomationConfig, user_data_dir: Path) -> LaunchedBrowser:
        endpoint = f"ws://127.0.0.1/devtools/browser/{len(self.hub.pages) + 1}"
        self.page = self.hub.page_factory()
        self.hub.pages[endpoint] = self.page
        return LaunchedBrowser(endpoint=endpoint, pid=None, user_data_dir=user_data_dir)

    def attach(self, endpoint: str) -> None:
        if endpoint not in self.hub.pages:
            raise ProtocolDisconnected(f"nothing listening at {endpoint}")
        self.page = self.hub.pages[endpoint]

    def close(self) -> None:
        self.closed = True

    def _live_page(self) -> FakeChatPage:
        if self.closed or self.page is None:
            raise ProtocolDisconnected("client is not connected")
        return self.page

    def evaluate(self, expression: str, *, await_promise: bool = False, return_by_value: bool = True) -> Any:
        page = self._live_page()
        self.evaluations += 1
        marker = _MARKER.search(expression)
        if self.hub.disconnect_on and marker and marker.group("name") == self.hub.disconnect_on:
            self.hub.disconnect_on = None
            self.closed = True
            raise ProtocolDisconnected("Target page, context or browser has been closed")
        if self.hub.disconnect_after is not None and self.evaluations > self.hub.disconnect_after:
            self.hub.disconnects -= 1
            if self.hub.disconnects <= 0:
                self.hub.disconnect_after = None
            self.closed = True
            raise ProtocolDisconnected("Target page, context or browser has been closed")
        return page.evaluate(expression)

    def navigate(self, url: str, timeout_ms: int) -> None:
        self._live_page().url = url

    def current_url(self) -> str:
        return self._live_page().url

    def insert_text(self, text: str) -> None:
        self._live_page().composer += text

    def press_key(self, key: str) -> None:
        page = self._live_page()
        if key == "Enter" and page.composer:
            page.submit()

    def set_cookies(self, cookies: Iterable[CookieParam]) -> None:
        self._live_page().cookies.extend(cookies)

    def set_file_input(self, selector: str, paths: Sequence[Path]) -> None:
        self._live_page().files.extend(paths)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class StubProbe(ProcessProbe):
    def __init__(self) -> None:
        self.dead: set[str] = set()
        self.terminated: list[str] = []

    def is_alive(self, descriptor: SessionDescriptor) -> bool:
        return descriptor.session_id not in self.dead

    def terminate(self, descriptor: SessionDescriptor) -> None:
        self.terminated.append(descriptor.session_id)


@pytest.fixture
def hub() -> FakeBrowserHub:
    return FakeBrowserHub()


@pytest.fixture
def probe() -> StubProbe:
    return StubProbe()
