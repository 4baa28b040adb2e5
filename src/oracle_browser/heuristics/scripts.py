"""JavaScript evaluated inside the chat page.

Every script is self-contained, returns plain JSON values and catches its own
exceptions. Each one starts with an ``oracle:<name>`` marker comment so logs
(and test doubles) can tell them apart.
"""

from __future__ import annotations

import json
from typing import Literal

from .rules import ProbeRule

ProbeAction = Literal["toggle", "click", "inspect"]

COMPOSER_SELECTORS: tuple[str, ...] = (
    "#prompt-textarea",
    'div[contenteditable="true"][role="textbox"]',
    "textarea[data-testid]",
    'div[contenteditable="true"]',
    "textarea",
)
ASSISTANT_TURN_SELECTOR = '[data-message-author-role="assistant"]'
FILE_INPUT_SELECTOR = 'input[type="file"]'

_PROBE_TEMPLATE = r"""/* oracle:probe */
(() => {
  const RULE = __RULE__;
  const ACTION = __ACTION__;

  const normalizeText = (value) => {
    if (!value) return '';
    return String(value)
      .toLowerCase()
      .replace(/[^a-z0-9]+/g, ' ')
      .replace(/\s+/g, ' ')
      .trim();
  };

  const isOn = (el) => {
    const ariaPressed = el.getAttribute('aria-pressed');
    const ariaChecked = el.getAttribute('aria-checked');
    const dataState = (el.getAttribute('data-state') || '').toLowerCase();
    if (ariaPressed === 'true' || ariaChecked === 'true') return true;
    return RULE.onStates.includes(dataState);
  };

  const isDisabled = (el) =>
    el.disabled === true || el.getAttribute('aria-disabled') === 'true';

  const getLabel = (el) => {
    const ariaLabel = el.getAttribute('aria-label') || '';
    const text = el.textContent || '';
    const testId = el.getAttribute('data-testid') || '';
    return (ariaLabel.trim() || text.trim() || testId.trim());
  };

  try {
    const candidates = new Set();
    for (const selector of RULE.selectors) {
      document.querySelectorAll(selector).forEach((el) => candidates.add(el));
    }
    let match = null;
    for (const node of candidates) {
      if (!(node instanceof HTMLElement)) continue;
      const haystack = [
        normalizeText(node.textContent),
        normalizeText(node.getAttribute('aria-label')),
        normalizeText(node.getAttribute('data-testid')),
      ].join(' ');
      if (RULE.keywords.some((kw) => haystack.includes(kw))) {
        match = node;
        break;
      }
    }
    if (!match) {
      return { status: 'not-found' };
    }
    const label = getLabel(match);
    if (ACTION === 'toggle') {
      if (isOn(match)) {
        return { status: 'already-on', label };
      }
      match.click();
      return { status: 'toggled-on', label };
    }
    if (isDisabled(match)) {
      return { status: 'disabled', label };
    }
    if (ACTION === 'click') {
      match.click();
      return { status: 'clicked', label };
    }
    return { status: 'present', label };
  } catch (error) {
    return { status: 'error', message: error instanceof Error ? error.message : String(error) };
  }
})()"""


def build_probe_expression(rule: ProbeRule, action: ProbeAction = "toggle") -> str:
    """Render the generic probe for ``rule``."""

    return (
        _PROBE_TEMPLATE.replace("__RULE__", json.dumps(rule.to_payload()))
        .replace("__ACTION__", json.dumps(action))
    )


def _with_composer(body: str, name: str) -> str:
    return (
        f"/* oracle:{name} */\n"
        "(() => {\n"
        f"  const SELECTORS = {json.dumps(list(COMPOSER_SELECTORS))};\n"
        "  const findComposer = () => {\n"
        "    for (const selector of SELECTORS) {\n"
        "      const el = document.querySelector(selector);\n"
        "      if (el instanceof HTMLElement) return el;\n"
        "    }\n"
        "    return null;\n"
        "  };\n"
        f"{body}\n"
        "})()"
    )


INPUT_STATE_SCRIPT = _with_composer(
    """  try {
    const el = findComposer();
    if (!el) return { present: false, enabled: false };
    const disabled = el.disabled === true
      || el.getAttribute('aria-disabled') === 'true'
      || el.getAttribute('contenteditable') === 'false';
    const rect = el.getBoundingClientRect();
    const visible = rect.width > 0 && rect.height > 0;
    return { present: true, enabled: !disabled && visible };
  } catch (error) {
    return { present: false, enabled: false, message: String(error) };
  }""",
    "input-state",
)

FOCUS_INPUT_SCRIPT = _with_composer(
    """  const el = findComposer();
  if (!el) return false;
  el.focus();
  if ('value' in el && el.tagName === 'TEXTAREA') {
    el.value = '';
    el.dispatchEvent(new Event('input', { bubbles: true }));
  } else {
    document.execCommand('selectAll', false);
    document.execCommand('delete', false);
  }
  return true;""",
    "focus-input",
)

INPUT_VALUE_SCRIPT = _with_composer(
    """  const el = findComposer();
  if (!el) return '';
  return el.tagName === 'TEXTAREA' ? el.value : (el.innerText || '');""",
    "input-value",
)

ASSISTANT_TURNS_SCRIPT = (
    "/* oracle:assistant-turns */\n"
    f"document.querySelectorAll({json.dumps(ASSISTANT_TURN_SELECTOR)}).length"
)

RESPONSE_STATE_SCRIPT = f"""/* oracle:response-state */
(() => {{
  const turns = document.querySelectorAll({json.dumps(ASSISTANT_TURN_SELECTOR)});
  const last = turns.length ? turns[turns.length - 1] : null;
  const text = last ? (last.innerText || '').trim() : '';
  let finished = false;
  if (last) {{
    const container = last.closest('article') || last.parentElement || last;
    finished = Array.from(container.querySelectorAll('button')).some((button) => {{
      const label = ((button.getAttribute('aria-label') || '') + ' '
        + (button.getAttribute('data-testid') || '')).toLowerCase();
      return label.includes('copy');
    }});
  }}
  return {{ turns: turns.length, text, length: text.length, finished }};
}})()"""

ATTACHMENT_STATE_SCRIPT = """/* oracle:attachment-state */
(() => {
  const form = document.querySelector('form') || document.body;
  const chips = form.querySelectorAll(
    '[data-testid*="attachment"], [data-testid*="file-tile"], [aria-label*="Remove file"]'
  );
  const busy = form.querySelector('[role="progressbar"], [aria-busy="true"]') !== null;
  return { count: chips.length, busy };
})()"""

EXTRACT_ANSWER_SCRIPT = f"""/* oracle:extract-answer */
(() => {{
  const turns = document.querySelectorAll({json.dumps(ASSISTANT_TURN_SELECTOR)});
  if (!turns.length) return {{ text: '', markdown: null }};
  const last = turns[turns.length - 1];

  const inline = (node) => Array.from(node.childNodes).map(render).join('');
  const render = (node) => {{
    if (node.nodeType === Node.TEXT_NODE) return node.textContent;
    if (node.nodeType !== Node.ELEMENT_NODE) return '';
    const tag = node.tagName.toLowerCase();
    if (/^h[1-6]$/.test(tag)) return '#'.repeat(Number(tag[1])) + ' ' + inline(node).trim() + '\\n\\n';
    switch (tag) {{
      case 'p': return inline(node).trim() + '\\n\\n';
      case 'br': return '\\n';
      case 'strong': case 'b': return '**' + inline(node) + '**';
      case 'em': case 'i': return '*' + inline(node) + '*';
      case 'a': return '[' + inline(node) + '](' + (node.getAttribute('href') || '') + ')';
      case 'pre': {{
        const code = node.querySelector('code');
        const match = code ? /language-([\\w-]+)/.exec(code.className || '') : null;
        const body = (code || node).textContent.replace(/\\n$/, '');
        return '```' + (match ? match[1] : '') + '\\n' + body + '\\n```\\n\\n';
      }}
      case 'code': return '`' + node.textContent + '`';
      case 'blockquote':
        return inline(node).trim().split('\\n').map((line) => '> ' + line).join('\\n') + '\\n\\n';
      case 'ul': case 'ol': {{
        const ordered = tag === 'ol';
        const items = Array.from(node.children).filter((child) => child.tagName.toLowerCase() === 'li');
        return items.map((li, index) => (ordered ? (index + 1) + '. ' : '- ') + inline(li).trim()).join('\\n') + '\\n\\n';
      }}
      case 'button': case 'svg': return '';
      default: return inline(node);
    }}
  }};

  try {{
    const text = (last.innerText || '').trim();
    const markdown = inline(last).replace(/\\n{{3,}}/g, '\\n\\n').trim();
    return {{ text, markdown: markdown || null }};
  }} catch (error) {{
    return {{ text: (last.innerText || '').trim(), markdown: null }};
  }}
}})()"""
