"""Declarative rules describing how to find a control in the chat UI."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

ACTIVE_STATES: tuple[str, ...] = ("on", "true", "checked", "selected", "active")

DEFAULT_SELECTORS: tuple[str, ...] = (
    "button",
    '[role="switch"]',
    "[data-testid]",
    "[aria-pressed]",
    "[aria-checked]",
)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_text(value: object) -> str:
    """Lower-case ``value`` and collapse non-alphanumeric runs to single spaces."""

    if value is None:
        return ""
    return _NON_ALNUM.sub(" ", str(value).lower()).strip()


@dataclass(frozen=True)
class ProbeRule:
    """Selectors plus keywords that identify one control.

    Candidates are collected from ``selectors`` in order; the first whose
    normalized text, aria-label or data-testid contains any keyword wins.
    """

    name: str
    keywords: tuple[str, ...]
    selectors: tuple[str, ...] = DEFAULT_SELECTORS
    on_states: tuple[str, ...] = ACTIVE_STATES

    def normalized_keywords(self) -> list[str]:
        return [kw for kw in (normalize_text(keyword) for keyword in self.keywords) if kw]

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "keywords": self.normalized_keywords(),
            "selectors": list(self.selectors),
            "onStates": [state.lower() for state in self.on_states],
        }


SEARCH_TOGGLE = ProbeRule(
    name="search-toggle",
    keywords=("search", "web search", "browse", "browsing"),
)

SEND_BUTTON = ProbeRule(
    name="send-button",
    keywords=("send prompt", "send message", "composer submit", "send"),
    selectors=(
        'button[data-testid="send-button"]',
        'button[data-testid="composer-submit-button"]',
        'button[type="submit"]',
        "button[aria-label]",
        "button[data-testid]",
    ),
)

STOP_BUTTON = ProbeRule(
    name="stop-button",
    keywords=("stop generating", "stop streaming", "stop button", "stop"),
    selectors=(
        'button[data-testid="stop-button"]',
        "button[aria-label]",
        "button[data-testid]",
    ),
)
