import io
from pathlib import Path

import pytest
from rich.console import Console

from oracle_browser.browser.base import CookieParam
from oracle_browser.config import AutomationConfig
from oracle_browser.cookies.sync import CookieSynchronizer
from oracle_browser.errors import InputNotReady, ProtocolDisconnected, SessionBusy
from oracle_browser.models import NotificationEvent, SessionState, ToggleStatus
from oracle_browser.notifications.base import Notifier
from oracle_browser.orchestrator.runner import OracleBrowser
from oracle_browser.sessions.manager import SessionManager
from oracle_browser.sessions.store import InMemorySessionStore

from conftest import FakeBrowserHub, FakeChatPage


class CollectingNotifier(Notifier):
    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]


class StaticCookieSource:
    def read(self, domains: list[str]) -> list[CookieParam]:
        return [CookieParam(name="__Secure-next-auth.session-token", value="token", domain=".chatgpt.com")]


@pytest.fixture
def notifier() -> CollectingNotifier:
    return CollectingNotifier()


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


def _oracle(hub: FakeBrowserHub, probe, clock, notifier, tmp_path: Path, output=None) -> OracleBrowser:
    manager = SessionManager(InMemorySessionStore(), hub.client, sessions_dir=tmp_path / "sessions", probe=probe)
    return OracleBrowser(
        manager,
        CookieSynchronizer(lambda config: StaticCookieSource()),
        notifier,
        clock=clock,
        sleep=clock.sleep,
        console=Console(file=output or io.StringIO(), width=200),
    )


def test_run_query_end_to_end(hub, probe, clock, notifier, tmp_path: Path) -> None:
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)

    result = oracle.run_query("Summarize this", config=AutomationConfig(search=True))

    page = next(iter(hub.pages.values()))
    assert result.answer_text == "Summary: done."
    assert not result.empty
    assert result.search is not None and result.search.status == ToggleStatus.TOGGLED_ON
    assert result.search.label == "Search"
    assert result.session_id
    assert [cookie.name for cookie in page.cookies] == ["__Secure-next-auth.session-token"]
    assert page.search_clicks == 1
    assert notifier.types == ["query_started", "toggle", "query_finished"]
    # Without keep_browser the session is torn down afterwards.
    assert probe.terminated == [result.session_id]
    assert oracle.show_status(include_all=True) == []


def test_keep_browser_session_is_reused(hub, probe, clock, notifier, tmp_path: Path) -> None:
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)
    config = AutomationConfig(keep_browser=True)

    first = oracle.run_query("Summarize this", config=config)
    second = oracle.run_query("And now in French", config=config.model_copy(update={"session_id": first.session_id}))

    assert second.session_id == first.session_id
    assert len(hub.pages) == 1
    page = next(iter(hub.pages.values()))
    assert page.prompts == ["Summarize this", "And now in French"]
    assert second.search.status == ToggleStatus.ALREADY_ON
    assert all(client.closed for client in hub.clients)
    assert probe.terminated == []
    [row] = oracle.show_status()
    assert row.descriptor.status == SessionState.COMPLETED
    assert row.descriptor.query_count == 2


def test_unknown_session_id_launches_a_new_browser(hub, probe, clock, notifier, tmp_path: Path) -> None:
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)

    result = oracle.run_query("Summarize this", config=AutomationConfig(session_id="gone"))

    assert result.session_id != "gone"
    assert len(hub.pages) == 1


def test_reattaches_once_after_disconnect(hub, probe, clock, notifier, tmp_path: Path) -> None:
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)
    # The first input poll and the search toggle succeed, then the socket drops.
    hub.disconnect_after = 2

    result = oracle.run_query("Summarize this")

    page = next(iter(hub.pages.values()))
    assert result.answer_text == "Summary: done."
    assert len(hub.clients) == 2
    assert hub.clients[0].closed
    assert page.prompts == ["Summarize this"]
    assert result.search.status == ToggleStatus.ALREADY_ON


def test_disconnect_after_send_resumes_without_resubmitting(hub, probe, clock, notifier, tmp_path: Path) -> None:
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)
    # The prompt is already sent when the first answer poll loses the socket.
    hub.disconnect_on = "response-state"

    result = oracle.run_query("Summarize this")

    page = next(iter(hub.pages.values()))
    assert result.answer_text == "Summary: done."
    assert page.prompts == ["Summarize this"]
    assert page.turns == 1
    assert page.stop_clicks == 0
    assert len(hub.clients) == 2
    assert result.search.status == ToggleStatus.TOGGLED_ON
    assert notifier.types == ["query_started", "toggle", "query_finished"]


def test_search_toggle_waits_for_the_composer(probe, clock, notifier, tmp_path: Path) -> None:
    hub = FakeBrowserHub(lambda: FakeChatPage(toggle_after_input=True))
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)

    result = oracle.run_query("Summarize this", config=AutomationConfig(search=True))

    page = next(iter(hub.pages.values()))
    assert result.search.status == ToggleStatus.TOGGLED_ON
    assert page.scripts.index("input-state") < page.scripts.index("probe")
    assert page.prompts == ["Summarize this"]


@pytest.mark.parametrize("session_id", ["a/b", "../x"])
def test_path_like_session_id_launches_a_new_browser(hub, probe, clock, notifier, tmp_path: Path, session_id: str) -> None:
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)

    result = oracle.run_query("Summarize this", config=AutomationConfig(session_id=session_id))

    assert result.answer_text == "Summary: done."
    assert result.session_id != session_id
    assert len(hub.pages) == 1


def test_empty_answer_is_tagged_in_the_finished_event(probe, clock, notifier, tmp_path: Path) -> None:
    hub = FakeBrowserHub(lambda: FakeChatPage(answer_chunks=("",)))
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)

    result = oracle.run_query("Summarize this")

    assert result.empty
    finished = notifier.events[-1]
    assert finished.type == "query_finished"
    assert finished.level.value == "warning"
    assert finished.data["kind"] == "extraction_empty"


def test_second_disconnect_is_fatal(hub, probe, clock, notifier, tmp_path: Path) -> None:
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)
    hub.disconnect_after = 0
    hub.disconnects = 2

    with pytest.raises(ProtocolDisconnected):
        oracle.run_query("Summarize this", config=AutomationConfig(search=False, cookie_sync=False))

    assert len(hub.clients) == 2
    assert notifier.events[-1].type == "query_failed"
    assert notifier.events[-1].data["kind"] == "protocol_disconnected"
    assert len(probe.terminated) == 1


def test_input_not_ready_keeps_session_attachable(probe, clock, notifier, tmp_path: Path) -> None:
    hub = FakeBrowserHub(lambda: FakeChatPage(input_ready_after=None))
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)
    config = AutomationConfig(keep_browser=True, input_timeout_ms=2_000)

    with pytest.raises(InputNotReady):
        oracle.run_query("Summarize this", config=config)

    failed = notifier.events[-1]
    assert failed.type == "query_failed"
    assert failed.level.value == "error"
    assert failed.data["kind"] == "input_not_ready"
    session_id = failed.data["session_id"]
    [row] = oracle.show_status()
    assert row.descriptor.status == SessionState.FAILED
    assert "input not ready" in row.descriptor.last_error.lower()

    descriptor = oracle.attach_session(session_id)

    assert descriptor.session_id == session_id
    assert probe.terminated == []
    assert hub.clients[-1].closed


def test_busy_session_is_left_alone(hub, probe, clock, notifier, tmp_path: Path) -> None:
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)
    first = oracle.run_query("Summarize this", config=AutomationConfig(keep_browser=True))

    with oracle.sessions.lock(first.session_id):
        with pytest.raises(SessionBusy):
            oracle.run_query(
                "Second prompt",
                config=AutomationConfig(keep_browser=True, session_id=first.session_id),
            )

    [row] = oracle.show_status()
    assert row.descriptor.status == SessionState.COMPLETED
    assert probe.terminated == []
    assert hub.clients[-1].closed
    assert next(iter(hub.pages.values())).prompts == ["Summarize this"]


def test_missing_search_toggle_is_not_fatal(probe, clock, notifier, tmp_path: Path) -> None:
    hub = FakeBrowserHub(lambda: FakeChatPage(search="missing"))
    oracle = _oracle(hub, probe, clock, notifier, tmp_path)

    result = oracle.run_query("Summarize this")

    assert result.answer_text == "Summary: done."
    assert result.search.status == ToggleStatus.NOT_FOUND
    toggle = next(event for event in notifier.events if event.type == "toggle")
    assert toggle.data["kind"] == "toggle_not_found"
    assert toggle.level.value == "warning"


def test_delete_and_show_status(hub, probe, clock, notifier, tmp_path: Path, output: io.StringIO) -> None:
    oracle = _oracle(hub, probe, clock, notifier, tmp_path, output)
    kept = oracle.run_query("Summarize this", config=AutomationConfig(keep_browser=True))

    rows = oracle.show_status(include_all=True, show_examples=True)

    assert [row.descriptor.session_id for row in rows] == [kept.session_id]
    rendered = output.getvalue()
    assert kept.session_id in rendered
    assert "Summarize this" in rendered
    assert "delete_sessions_older_than" in rendered

    assert oracle.delete_sessions_older_than(24).deleted == 0
    assert oracle.delete_sessions_older_than(24, include_all=True).deleted == 1
    assert oracle.show_status(include_all=True) == []
    assert "No stored sessions." in output.getvalue()
