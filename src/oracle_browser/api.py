"""Module-level entry points that build an orchestrator from settings."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

from .config import AutomationConfig, OracleSettings, load_config
from .factory import build_oracle
from .models import DeleteResult, QueryAttachment, QueryResult, SessionDescriptor, SessionStatus


def _settings(config_path: Optional[Path], settings: Optional[OracleSettings]) -> OracleSettings:
    return settings or load_config(config_path)


def run_query(
    prompt: str,
    attachments: Sequence[QueryAttachment] = (),
    config: Optional[AutomationConfig] = None,
    *,
    config_path: Optional[Path] = None,
    settings: Optional[OracleSettings] = None,
) -> QueryResult:
    resolved = _settings(config_path, settings)
    return build_oracle(resolved).run_query(prompt, attachments, config or resolved.browser)


def delete_sessions_older_than(
    hours: float,
    include_all: bool = False,
    *,
    config_path: Optional[Path] = None,
    settings: Optional[OracleSettings] = None,
) -> DeleteResult:
    return build_oracle(_settings(config_path, settings)).delete_sessions_older_than(hours, include_all)


def attach_session(
    session_id: str,
    *,
    config_path: Optional[Path] = None,
    settings: Optional[OracleSettings] = None,
) -> SessionDescriptor:
    return build_oracle(_settings(config_path, settings)).attach_session(session_id)


def show_status(
    hours: float = 24,
    include_all: bool = False,
    limit: int = 100,
    show_examples: bool = False,
    *,
    config_path: Optional[Path] = None,
    settings: Optional[OracleSettings] = None,
) -> List[SessionStatus]:
    return build_oracle(_settings(config_path, settings)).show_status(hours, include_all, limit, show_examples)
