"""In-process model of the probe evaluator.

``SimulatedDom`` holds a flat, document-ordered list of elements and supports
the small selector subset used by the built-in rules. :func:`run_probe`
applies a :class:`ProbeRule` to it with the same algorithm as the injected
script, which makes the heuristics testable without a browser.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from ..models import ControlOutcome, ToggleOutcome
from .rules import ProbeRule, normalize_text
from .scripts import ProbeAction

_SELECTOR = re.compile(r"^(?P<tag>[a-zA-Z][a-zA-Z0-9-]*|\*)?(?P<id>#[\w-]+)?(?P<attrs>(?:\[[^\]]+\])*)$")
_ATTRIBUTE = re.compile(r"\[\s*(?P<name>[\w-]+)\s*(?:(?P<op>[*^$]?=)\s*\"(?P<value>[^\"]*)\")?\s*\]")


class SelectorError(ValueError):
    """Raised for selectors outside the supported subset."""


@dataclass
class SimulatedElement:
    tag: str
    text: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    disabled: bool = False
    on_click: Optional[Callable[["SimulatedElement"], None]] = None
    clicks: int = 0

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    def click(self) -> None:
        self.clicks += 1
        if self.on_click:
            self.on_click(self)

    def matches(self, selector: str) -> bool:
        parsed = _SELECTOR.match(selector.strip())
        if not parsed:
            raise SelectorError(f"Unsupported selector: {selector!r}")
        tag = parsed.group("tag")
        if tag and tag != "*" and tag.lower() != self.tag.lower():
            return False
        element_id = parsed.group("id")
        if element_id and self.attributes.get("id") != element_id[1:]:
            return False
        for attribute in _ATTRIBUTE.finditer(parsed.group("attrs") or ""):
            actual = self.attributes.get(attribute.group("name"))
            if actual is None:
                return False
            op, expected = attribute.group("op"), attribute.group("value")
            if op is None:
                continue
            if op == "=" and actual != expected:
                return False
            if op == "*=" and expected not in actual:
                return False
            if op == "^=" and not actual.startswith(expected):
                return False
            if op == "$=" and not actual.endswith(expected):
                return False
        return True


class SimulatedDom:
    def __init__(self, elements: Iterable[SimulatedElement] = ()) -> None:
        self.elements = list(elements)

    def query_selector_all(self, selector: str) -> list[SimulatedElement]:
        return [element for element in self.elements if element.matches(selector)]


def _is_on(element: SimulatedElement, on_states: Iterable[str]) -> bool:
    if element.get_attribute("aria-pressed") == "true" or element.get_attribute("aria-checked") == "true":
        return True
    return (element.get_attribute("data-state") or "").lower() in set(on_states)


def _label(element: SimulatedElement) -> str:
    for value in (element.get_attribute("aria-label"), element.text, element.get_attribute("data-testid")):
        if value and value.strip():
            return value.strip()
    return ""


def run_probe(dom: SimulatedDom, rule: ProbeRule, action: ProbeAction = "toggle") -> dict[str, Any]:
    """Evaluate ``rule`` against ``dom``; returns the same payload as the page script."""

    payload = rule.to_payload()
    try:
        candidates: list[SimulatedElement] = []
        seen: set[int] = set()
        for selector in payload["selectors"]:
            for element in dom.query_selector_all(selector):
                if id(element) not in seen:
                    seen.add(id(element))
                    candidates.append(element)
        match = None
        for node in candidates:
            haystack = " ".join(
                [
                    normalize_text(node.text),
                    normalize_text(node.get_attribute("aria-label")),
                    normalize_text(node.get_attribute("data-testid")),
                ]
            )
            if any(keyword in haystack for keyword in payload["keywords"]):
                match = node
                break
        if match is None:
            return {"status": "not-found"}
        label = _label(match)
        if action == "toggle":
            if _is_on(match, payload["onStates"]):
                return {"status": "already-on", "label": label}
            match.click()
            return {"status": "toggled-on", "label": label}
        if match.disabled or match.get_attribute("aria-disabled") == "true":
            return {"status": "disabled", "label": label}
        if action == "click":
            match.click()
            return {"status": "clicked", "label": label}
        return {"status": "present", "label": label}
    except Exception as exc:  # mirrors the in-page try/catch
        return {"status": "error", "message": str(exc)}


def probe_toggle(dom: SimulatedDom, rule: ProbeRule) -> ToggleOutcome:
    return ToggleOutcome.from_probe(run_probe(dom, rule, "toggle"))


def probe_control(dom: SimulatedDom, rule: ProbeRule, action: ProbeAction = "inspect") -> ControlOutcome:
    return ControlOutcome.from_probe(run_probe(dom, rule, action))
