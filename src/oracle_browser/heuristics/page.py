"""Typed access to the chat page through the evaluated scripts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..browser.base import ProtocolClient
from ..models import ControlOutcome, ToggleOutcome
from .rules import ProbeRule
from .scripts import (
    ASSISTANT_TURNS_SCRIPT,
    ATTACHMENT_STATE_SCRIPT,
    EXTRACT_ANSWER_SCRIPT,
    FOCUS_INPUT_SCRIPT,
    INPUT_STATE_SCRIPT,
    INPUT_VALUE_SCRIPT,
    RESPONSE_STATE_SCRIPT,
    build_probe_expression,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class InputState:
    present: bool
    enabled: bool

    @property
    def ready(self) -> bool:
        return self.present and self.enabled


@dataclass(frozen=True)
class ResponseState:
    turns: int
    text: str
    finished: bool


@dataclass(frozen=True)
class AttachmentState:
    count: int
    busy: bool


@dataclass(frozen=True)
class ExtractedAnswer:
    text: str
    markdown: Optional[str]


class ChatPage:
    """Wrap a :class:`ProtocolClient` with the chat UI's page scripts."""

    def __init__(self, client: ProtocolClient) -> None:
        self._client = client

    @property
    def client(self) -> ProtocolClient:
        return self._client

    def toggle(self, rule: ProbeRule) -> ToggleOutcome:
        raw = self._client.evaluate(build_probe_expression(rule, "toggle"))
        outcome = ToggleOutcome.from_probe(raw)
        LOGGER.debug("Probe %s -> %s", rule.name, outcome.status.value)
        return outcome

    def inspect(self, rule: ProbeRule) -> ControlOutcome:
        return ControlOutcome.from_probe(self._client.evaluate(build_probe_expression(rule, "inspect")))

    def click(self, rule: ProbeRule) -> ControlOutcome:
        outcome = ControlOutcome.from_probe(self._client.evaluate(build_probe_expression(rule, "click")))
        LOGGER.debug("Click %s -> %s", rule.name, outcome.status.value)
        return outcome

    def input_state(self) -> InputState:
        raw = self._client.evaluate(INPUT_STATE_SCRIPT) or {}
        return InputState(present=bool(raw.get("present")), enabled=bool(raw.get("enabled")))

    def focus_input(self) -> bool:
        return bool(self._client.evaluate(FOCUS_INPUT_SCRIPT))

    def input_value(self) -> str:
        return str(self._client.evaluate(INPUT_VALUE_SCRIPT) or "")

    def assistant_turns(self) -> int:
        return int(self._client.evaluate(ASSISTANT_TURNS_SCRIPT) or 0)

    def response_state(self) -> ResponseState:
        raw = self._client.evaluate(RESPONSE_STATE_SCRIPT) or {}
        return ResponseState(
            turns=int(raw.get("turns") or 0),
            text=str(raw.get("text") or ""),
            finished=bool(raw.get("finished")),
        )

    def attachment_state(self) -> AttachmentState:
        raw = self._client.evaluate(ATTACHMENT_STATE_SCRIPT) or {}
        return AttachmentState(count=int(raw.get("count") or 0), busy=bool(raw.get("busy")))

    def extract_answer(self) -> ExtractedAnswer:
        raw = self._client.evaluate(EXTRACT_ANSWER_SCRIPT) or {}
        markdown = raw.get("markdown")
        return ExtractedAnswer(text=str(raw.get("text") or ""), markdown=markdown or None)
