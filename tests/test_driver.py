from pathlib import Path

import pytest

from oracle_browser.config import AutomationConfig
from oracle_browser.driver.submission import DriverState, PromptSubmissionDriver
from oracle_browser.errors import InputNotReady, ProtocolDisconnected, ResponseTimeout, SessionBusy
from oracle_browser.heuristics.page import ChatPage
from oracle_browser.models import QueryAttachment

from conftest import FakeBrowserHub, FakeChatPage


def _driver(hub: FakeBrowserHub, clock, tmp_path: Path, **overrides) -> PromptSubmissionDriver:
    client = hub.client()
    client.launch(AutomationConfig(), tmp_path / "profile")
    return PromptSubmissionDriver(ChatPage(client), AutomationConfig(**overrides), clock=clock, sleep=clock.sleep)


def test_run_submits_prompt_and_waits_for_stable_answer(hub, clock, tmp_path: Path) -> None:
    driver = _driver(hub, clock, tmp_path)

    result = driver.run("Summarize this")

    page = hub.clients[0].page
    assert page.url == "https://chatgpt.com/"
    assert page.prompts == ["Summarize this"]
    assert result.answer_text == "Summary: done."
    assert result.answer_markdown == "Summary: done."
    assert not result.empty
    assert result.elapsed_ms is not None and result.elapsed_ms > 0
    assert driver.history == [
        DriverState.IDLE,
        DriverState.NAVIGATING,
        DriverState.WAITING_FOR_INPUT,
        DriverState.TYPING,
        DriverState.AWAITING_RESPONSE,
        DriverState.EXTRACTING,
        DriverState.DONE,
    ]
    assert not driver.busy


def test_input_never_ready_raises_input_not_ready(clock, tmp_path: Path) -> None:
    hub = FakeBrowserHub(lambda: FakeChatPage(input_ready_after=None))
    driver = _driver(hub, clock, tmp_path, input_timeout_ms=2_000)

    with pytest.raises(InputNotReady) as excinfo:
        driver.run("Summarize this")

    page = hub.clients[0].page
    assert excinfo.value.is_timeout
    assert page.prompts == []
    assert page.stop_clicks == 0
    assert clock() == 2.0
    assert driver.state == DriverState.ERROR


def test_response_timeout_stops_pending_generation(clock, tmp_path: Path) -> None:
    hub = FakeBrowserHub(lambda: FakeChatPage(never_finish=True))
    driver = _driver(hub, clock, tmp_path, timeout_ms=10_000)

    with pytest.raises(ResponseTimeout):
        driver.run("Summarize this")

    page = hub.clients[0].page
    assert page.prompts == ["Summarize this"]
    assert page.stop_clicks == 1
    assert clock() <= 10.0


def test_missing_send_button_falls_back_to_enter(clock, tmp_path: Path) -> None:
    hub = FakeBrowserHub(lambda: FakeChatPage(send="missing"))
    driver = _driver(hub, clock, tmp_path)

    result = driver.run("Summarize this")

    assert hub.clients[0].page.prompts == ["Summarize this"]
    assert result.answer_text == "Summary: done."


def test_disabled_send_button_is_reported(clock, tmp_path: Path) -> None:
    hub = FakeBrowserHub(lambda: FakeChatPage(send="disabled"))
    driver = _driver(hub, clock, tmp_path, input_timeout_ms=1_000)

    with pytest.raises(InputNotReady):
        driver.run("Summarize this")

    assert hub.clients[0].page.prompts == []


def test_empty_answer_is_reported_as_data(clock, tmp_path: Path) -> None:
    hub = FakeBrowserHub(lambda: FakeChatPage(answer_chunks=("",)))
    driver = _driver(hub, clock, tmp_path)

    result = driver.run("Summarize this")

    assert result.empty
    assert result.answer_text == ""
    assert result.answer_markdown is None


def test_attachments_are_uploaded_before_sending(hub, clock, tmp_path: Path) -> None:
    report = tmp_path / "report.txt"
    report.write_text("quarterly numbers")
    driver = _driver(hub, clock, tmp_path)

    driver.run("Summarize this", [QueryAttachment(path=report, display_path="report.txt", size_bytes=17)])

    page = hub.clients[0].page
    assert page.files == [report]
    assert page.scripts.index("attachment-state") < page.scripts.index("probe", page.scripts.index("input-value"))


def test_second_submission_on_same_driver_is_rejected(hub, clock, tmp_path: Path) -> None:
    driver = _driver(hub, clock, tmp_path)
    page = hub.clients[0].page
    original = page.evaluate
    rejected: list[bool] = []

    def reentrant(expression: str):
        if not rejected:
            with pytest.raises(SessionBusy):
                driver.run("Another prompt")
            rejected.append(driver.busy)
        return original(expression)

    page.evaluate = reentrant

    result = driver.run("Summarize this")

    assert rejected == [True]
    assert page.prompts == ["Summarize this"]
    assert result.answer_text == "Summary: done."


def test_prepare_then_run_does_not_repeat_the_input_wait(hub, clock, tmp_path: Path) -> None:
    driver = _driver(hub, clock, tmp_path)
    page = hub.clients[0].page

    driver.prepare()
    polls = page.input_polls
    result = driver.run("Summarize this")

    assert result.answer_text == "Summary: done."
    assert page.input_polls == polls
    assert driver.history.count(DriverState.NAVIGATING) == 1
    assert driver.history.count(DriverState.WAITING_FOR_INPUT) == 1


def test_resume_collects_answer_after_reconnect(hub, clock, tmp_path: Path) -> None:
    driver = _driver(hub, clock, tmp_path)
    first = hub.clients[0]
    page = first.page
    hub.disconnect_on = "response-state"

    with pytest.raises(ProtocolDisconnected):
        driver.run("Summarize this")

    assert driver.submitted
    assert page.stop_clicks == 0
    second = hub.client()
    second.attach(next(iter(hub.pages)))
    driver.rebind(ChatPage(second))

    result = driver.resume()

    assert result.answer_text == "Summary: done."
    assert page.prompts == ["Summarize this"]
    assert driver.state == DriverState.DONE


def test_resume_without_submitted_prompt_is_an_error(hub, clock, tmp_path: Path) -> None:
    driver = _driver(hub, clock, tmp_path)

    with pytest.raises(RuntimeError):
        driver.resume()
