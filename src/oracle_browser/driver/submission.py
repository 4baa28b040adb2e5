"""Submit a prompt through the chat UI and wait for the finished answer."""

from __future__ import annotations

import enum
import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence
from urllib.parse import urlsplit

from ..config import AutomationConfig
from ..errors import InputNotReady, ProtocolDisconnected, ProtocolError, ResponseTimeout, SessionBusy
from ..heuristics.page import ChatPage, ResponseState
from ..heuristics.rules import SEND_BUTTON, STOP_BUTTON
from ..heuristics.scripts import FILE_INPUT_SELECTOR
from ..models import ControlStatus, QueryAttachment, QueryResult
from .polling import Clock, Deadline, PollTimeout, Sleep, poll_until

LOGGER = logging.getLogger(__name__)


class DriverState(str, enum.Enum):
    IDLE = "idle"
    NAVIGATING = "navigating"
    WAITING_FOR_INPUT = "waiting-for-input-ready"
    TYPING = "typing"
    AWAITING_RESPONSE = "awaiting-response"
    EXTRACTING = "extracting"
    DONE = "done"
    ERROR = "error"


def _same_page(current: str, target: str) -> bool:
    a, b = urlsplit(current), urlsplit(target)
    return (a.scheme, a.netloc, a.path.rstrip("/")) == (b.scheme, b.netloc, b.path.rstrip("/"))


class _Observation:
    """Tracks response snapshots until the answer stops changing."""

    def __init__(self, baseline: int, stable_polls: int) -> None:
        self.baseline = baseline
        self.stable_polls = stable_polls
        self.previous: Optional[str] = None
        self.stable = 0

    def settled(self, state: ResponseState, generating: bool) -> bool:
        if state.turns <= self.baseline or generating:
            self.previous = None
            self.stable = 0
            return False
        if state.finished:
            return True
        if state.text == self.previous:
            self.stable += 1
        else:
            self.previous = state.text
            self.stable = 0
        return self.stable >= self.stable_polls


class PromptSubmissionDriver:
    """Run one prompt through the states of a submission.

    ``idle -> navigating -> waiting-for-input-ready -> typing ->
    awaiting-response -> extracting -> done``; any failure ends in ``error``.
    Only one submission may be in flight per driver.
    """

    def __init__(
        self,
        page: ChatPage,
        config: AutomationConfig,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
    ) -> None:
        self._page = page
        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._prepared = False
        self._submitted = False
        self._completed = False
        self._baseline = 0
        self._started = clock()
        self.state = DriverState.IDLE
        self.history: list[DriverState] = [DriverState.IDLE]

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def submitted(self) -> bool:
        """True once the prompt of the current submission has been sent."""

        return self._submitted

    def new_deadline(self) -> Deadline:
        return Deadline.after_ms(self._config.timeout_ms, self._clock)

    def rebind(self, page: ChatPage) -> None:
        """Continue on ``page`` after the connection to the browser was re-established."""

        self._page = page

    def prepare(self, deadline: Optional[Deadline] = None) -> None:
        """Navigate and wait until the composer is usable, ahead of :meth:`run`."""

        with self._exclusive():
            deadline = deadline or self.new_deadline()
            try:
                self._prepare(deadline)
            except Exception:
                self._transition(DriverState.ERROR)
                raise

    def run(
        self,
        prompt: str,
        attachments: Sequence[QueryAttachment] = (),
        *,
        deadline: Optional[Deadline] = None,
    ) -> QueryResult:
        with self._exclusive():
            deadline = deadline or self.new_deadline()
            try:
                if not self._prepared:
                    self._prepare(deadline)
                self._type_and_send(prompt, attachments, deadline)
                self._await_response(self._baseline, deadline)
                result = self._extract()
            except Exception as exc:
                self._fail(exc)
                raise
            finally:
                self._prepared = False
            return self._done(result)

    def resume(self, deadline: Optional[Deadline] = None) -> QueryResult:
        """Wait for and extract the answer to a prompt that was already sent.

        Used after a reconnect; the page is neither navigated nor typed into.
        """

        with self._exclusive():
            if not self._submitted:
                raise RuntimeError("No submitted prompt to resume")
            deadline = deadline or self.new_deadline()
            LOGGER.info("Resuming the pending answer after reconnecting")
            try:
                if not self._completed:
                    self._await_response(self._baseline, deadline)
                result = self._extract()
            except Exception as exc:
                self._fail(exc)
                raise
            return self._done(result)

    def navigate(self, deadline: Deadline) -> None:
        """Open a fresh chat at ``target_url`` unless the page is already there."""

        self._transition(DriverState.NAVIGATING)
        target = self._config.target_url
        if _same_page(self._page.client.current_url(), target):
            LOGGER.debug("Already on %s", target)
            return
        self._page.client.navigate(target, max(1, int(deadline.remaining() * 1000)))

    # Phases ------------------------------------------------------------------

    def _wait_for_input(self, deadline: Deadline) -> None:
        self._transition(DriverState.WAITING_FOR_INPUT)
        input_deadline = Deadline.after_ms(self._config.input_timeout_ms, self._clock).earliest(deadline)
        try:
            poll_until(
                self._page.input_state,
                lambda state: state.ready,
                deadline=input_deadline,
                interval=self._interval,
                max_interval=self._interval,
                sleep=self._sleep,
            )
        except PollTimeout as exc:
            if deadline.expired:
                raise ResponseTimeout(f"Query deadline of {self._config.timeout_ms} ms passed before input was ready") from exc
            raise InputNotReady(
                f"Prompt input not ready within {self._config.input_timeout_ms} ms (last state: {exc.last})"
            ) from exc

    def _type_and_send(
        self,
        prompt: str,
        attachments: Sequence[QueryAttachment],
        deadline: Deadline,
    ) -> None:
        self._transition(DriverState.TYPING)
        if not self._page.focus_input():
            raise InputNotReady("Prompt input disappeared before typing")
        self._page.client.insert_text(prompt)
        if not self._page.input_value().strip():
            raise InputNotReady("Prompt input did not accept the inserted text")
        if attachments:
            self._upload(attachments, deadline)
        self._baseline = self._page.assistant_turns()
        self._send(deadline)
        self._submitted = True
        LOGGER.info("Prompt submitted (%d chars, %d attachments)", len(prompt), len(attachments))

    def _upload(self, attachments: Sequence[QueryAttachment], deadline: Deadline) -> None:
        names = ", ".join(item.display_path for item in attachments)
        LOGGER.info("Uploading %d attachment(s): %s", len(attachments), names)
        self._page.client.set_file_input(FILE_INPUT_SELECTOR, [item.path for item in attachments])
        expected = len(attachments)
        try:
            poll_until(
                self._page.attachment_state,
                lambda state: state.count >= expected and not state.busy,
                deadline=deadline,
                interval=self._interval,
                max_interval=self._max_interval,
                backoff=1.5,
                sleep=self._sleep,
            )
        except PollTimeout as exc:
            raise InputNotReady(f"Attachments did not finish uploading: {names}") from exc

    def _send(self, deadline: Deadline) -> None:
        send_deadline = Deadline.after_ms(self._config.input_timeout_ms, self._clock).earliest(deadline)
        try:
            outcome = poll_until(
                lambda: self._page.click(SEND_BUTTON),
                lambda result: result.status != ControlStatus.DISABLED,
                deadline=send_deadline,
                interval=self._interval,
                max_interval=self._interval,
                sleep=self._sleep,
            )
        except PollTimeout as exc:
            raise InputNotReady("Send control stayed disabled") from exc
        if outcome.status == ControlStatus.CLICKED:
            return
        LOGGER.warning(
            "Send control %s (%s); submitting with Enter",
            outcome.status.value,
            outcome.message or "no details",
        )
        self._page.client.press_key("Enter")

    def _await_response(self, baseline: int, deadline: Deadline) -> None:
        self._transition(DriverState.AWAITING_RESPONSE)
        observation = _Observation(baseline, self._config.stable_polls)

        def observe() -> tuple[ResponseState, bool]:
            state = self._page.response_state()
            generating = self._page.inspect(STOP_BUTTON).found
            return state, generating

        try:
            poll_until(
                observe,
                lambda snapshot: observation.settled(*snapshot),
                deadline=deadline,
                interval=self._interval,
                max_interval=self._max_interval,
                backoff=1.5,
                sleep=self._sleep,
            )
        except PollTimeout as exc:
            raise ResponseTimeout(f"No complete response within {self._config.timeout_ms} ms") from exc
        self._completed = True

    def _extract(self) -> QueryResult:
        self._transition(DriverState.EXTRACTING)
        answer = self._page.extract_answer()
        if not answer.text.strip():
            LOGGER.warning("Assistant reply rendered no text")
            return QueryResult(answer_text="", answer_markdown=None, empty=True)
        return QueryResult(answer_text=answer.text, answer_markdown=answer.markdown)

    # Helpers -----------------------------------------------------------------

    def _abort_pending(self) -> None:
        if not self._submitted or self._completed:
            return
        LOGGER.warning("Stopping the pending generation before giving up")
        try:
            self._page.click(STOP_BUTTON)
        except ProtocolError as exc:
            LOGGER.warning("Could not stop the pending generation: %s", exc)

    @property
    def _interval(self) -> float:
        return self._config.poll_interval_ms / 1000

    @property
    def _max_interval(self) -> float:
        return max(self._config.poll_interval_ms, self._config.max_poll_interval_ms) / 1000

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SessionBusy("A prompt is already being submitted on this session")
        try:
            yield
        finally:
            self._lock.release()

    def _prepare(self, deadline: Deadline) -> None:
        self._reset()
        self.navigate(deadline)
        self._wait_for_input(deadline)
        self._prepared = True

    def _fail(self, exc: Exception) -> None:
        self._transition(DriverState.ERROR)
        # A dropped connection is resumed by the caller; the generation must keep running.
        if not isinstance(exc, ProtocolDisconnected):
            self._abort_pending()

    def _done(self, result: QueryResult) -> QueryResult:
        self._transition(DriverState.DONE)
        return result.model_copy(update={"elapsed_ms": int((self._clock() - self._started) * 1000)})

    def _reset(self) -> None:
        self._prepared = False
        self._submitted = False
        self._completed = False
        self._baseline = 0
        self._started = self._clock()
        self.state = DriverState.IDLE
        self.history = [DriverState.IDLE]

    def _transition(self, state: DriverState) -> None:
        LOGGER.debug("Driver %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)
