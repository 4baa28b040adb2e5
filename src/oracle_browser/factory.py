"""Factories for constructing components from settings."""

from __future__ import annotations

from typing import Optional

from .browser.base import ProtocolClient
from .browser.cdp_client import CDPProtocolClient
from .browser.launcher import ChromeLauncher
from .config import OracleSettings
from .cookies.sync import CookieSynchronizer, chrome_source_factory
from .notifications.base import ConsoleNotifier, Notifier
from .orchestrator.runner import OracleBrowser
from .sessions.manager import SessionManager
from .sessions.store import JsonSessionStore, SessionStore


def build_client(settings: OracleSettings) -> ProtocolClient:
    return CDPProtocolClient(ChromeLauncher(startup_timeout=settings.launch_timeout))


def build_store(settings: OracleSettings) -> SessionStore:
    return JsonSessionStore(settings.sessions_dir)


def build_session_manager(settings: OracleSettings) -> SessionManager:
    return SessionManager(
        build_store(settings),
        lambda: build_client(settings),
        sessions_dir=settings.sessions_dir,
    )


def build_cookie_synchronizer(settings: OracleSettings) -> CookieSynchronizer:
    return CookieSynchronizer(chrome_source_factory(settings.cookie_password))


def build_oracle(settings: OracleSettings, notifier: Optional[Notifier] = None) -> OracleBrowser:
    return OracleBrowser(
        build_session_manager(settings),
        build_cookie_synchronizer(settings),
        notifier or ConsoleNotifier(),
    )
