"""Configuration models for oracle-browser."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TARGET_URL = "https://chatgpt.com/"
DEFAULT_SESSIONS_DIR = Path.home() / ".oracle" / "sessions"


class AutomationConfig(BaseModel):
    """Per-query settings for driving the browser."""

    model_config = ConfigDict(frozen=True)

    chrome_profile: Optional[str] = Field(
        default=None,
        description="Chrome profile name, profile directory or Cookies database to read cookies from.",
    )
    chrome_path: Optional[Path] = None
    headless: bool = False
    keep_browser: bool = False
    timeout_ms: int = Field(default=900_000, gt=0)
    input_timeout_ms: int = Field(default=30_000, gt=0)
    cookie_sync: bool = True
    allow_cookie_errors: bool = False
    target_url: str = DEFAULT_TARGET_URL
    search: bool = Field(default=True, description="Force the search capability on before sending.")
    session_id: Optional[str] = Field(
        default=None,
        description="Reuse a stored browser session instead of launching a new one.",
    )
    cookie_domains: tuple[str, ...] = ("chatgpt.com", "openai.com")
    poll_interval_ms: int = Field(default=500, gt=0)
    max_poll_interval_ms: int = Field(default=3_000, gt=0)
    stable_polls: int = Field(default=2, ge=1)


class OracleSettings(BaseSettings):
    """Top-level settings used to build the orchestrator."""

    model_config = SettingsConfigDict(
        env_prefix="ORACLE_",
        env_file=(".env",),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    browser: AutomationConfig = Field(default_factory=AutomationConfig)
    sessions_dir: Path = DEFAULT_SESSIONS_DIR
    launch_timeout: float = Field(
        default=20.0,
        description="Seconds to wait for a freshly launched Chrome to expose its debugging endpoint.",
    )
    cookie_password: Optional[str] = Field(
        default=None,
        description="Chrome Safe Storage password for profiles that do not use the built-in one.",
    )


def load_config(
    path: Path | None = None,
    *,
    env_file: Path | None = None,
    **overrides: object,
) -> OracleSettings:
    """Load settings from an optional YAML file, the environment and overrides."""

    data: dict[str, Any] = {}
    if path:
        import yaml

        data = yaml.safe_load(path.read_text()) or {}
    if overrides:
        _deep_update(data, overrides)
    settings_kwargs: dict[str, object] = {}
    if env_file is not None:
        settings_kwargs["_env_file"] = env_file
    settings = OracleSettings(**data, **settings_kwargs)
    if not data:
        return settings

    # Explicit file and override values win over the environment.
    merged = settings.model_dump(mode="python")
    _deep_update(merged, data)
    return OracleSettings.model_validate(merged)


def _deep_update(target: dict[str, Any], updates: Mapping[str, Any]) -> None:
    """Recursively merge ``updates`` into ``target`` in-place."""

    for key, value in updates.items():
        if (
            isinstance(value, Mapping)
            and isinstance(existing := target.get(key), Mapping)
        ):
            nested = existing if isinstance(existing, dict) else dict(existing)
            _deep_update(nested, value)
            target[key] = nested
        else:
            target[key] = value
