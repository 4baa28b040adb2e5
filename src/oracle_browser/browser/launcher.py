"""Start and supervise local Chrome processes exposing a debugging endpoint."""

from __future__ import annotations

import logging
import os
import shutil
import signal
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Optional

import httpx

from ..errors import BrowserLaunchError
from .base import LaunchedBrowser

LOGGER = logging.getLogger(__name__)

_CHROME_NAMES = (
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "chrome",
)
_MAC_CHROME = Path("/Applications/Google Chrome.app/Contents/MacOS/Google Chrome")


def find_free_port() -> int:
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def resolve_chrome_path(explicit: Optional[Path] = None) -> Path:
    """Return the Chrome binary to launch.

    Order: explicit path, ``CHROME_PATH``, well-known names on ``PATH``, then
    the macOS application bundle.
    """

    if explicit:
        if not explicit.exists():
            raise BrowserLaunchError(f"Chrome binary not found at {explicit}")
        return explicit
    from_env = os.environ.get("CHROME_PATH")
    if from_env and Path(from_env).exists():
        return Path(from_env)
    for name in _CHROME_NAMES:
        located = shutil.which(name)
        if located:
            return Path(located)
    if sys.platform == "darwin" and _MAC_CHROME.exists():
        return _MAC_CHROME
    raise BrowserLaunchError("Could not locate a Chrome/Chromium binary; set chrome_path or CHROME_PATH")


def endpoint_reachable(endpoint: str, timeout: float = 2.0) -> bool:
    """Return True if the DevTools HTTP endpoint answers ``/json/version``."""

    try:
        response = httpx.get(f"{endpoint.rstrip('/')}/json/version", timeout=timeout)
    except httpx.HTTPError:
        return False
    return response.status_code == 200


def pid_alive(pid: Optional[int]) -> bool:
    if not pid:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else.
        return True
    except OSError:
        return False
    return True


def terminate(pid: Optional[int], *, grace: float = 5.0) -> bool:
    """Terminate ``pid`` (SIGTERM, then SIGKILL after ``grace`` seconds)."""

    if pid is None or not pid_alive(pid):
        return False
    LOGGER.debug("Terminating browser process %s", pid)
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    deadline = time.monotonic() + grace
    while time.monotonic() < deadline:
        if not pid_alive(pid):
            return True
        time.sleep(0.1)
    kill_signal = getattr(signal, "SIGKILL", signal.SIGTERM)
    try:
        os.kill(pid, kill_signal)
    except ProcessLookupError:
        pass
    return True


class ChromeLauncher:
    """Launch Chrome with a dedicated user data dir and remote debugging port."""

    def __init__(self, *, startup_timeout: float = 20.0, poll_interval: float = 0.2) -> None:
        self._startup_timeout = startup_timeout
        self._poll_interval = poll_interval

    def build_args(self, binary: Path, port: int, user_data_dir: Path, headless: bool) -> list[str]:
        args = [
            str(binary),
            f"--remote-debugging-port={port}",
            f"--user-data-dir={user_data_dir}",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-dev-shm-usage",
            "--disable-blink-features=AutomationControlled",
        ]
        if headless:
            args.append("--headless=new")
        args.append("about:blank")
        return args

    def launch(self, *, chrome_path: Optional[Path], user_data_dir: Path, headless: bool) -> LaunchedBrowser:
        binary = resolve_chrome_path(chrome_path)
        user_data_dir.mkdir(parents=True, exist_ok=True)
        port = find_free_port()
        args = self.build_args(binary, port, user_data_dir, headless)
        LOGGER.info("Launching Chrome on port %s (profile dir %s)", port, user_data_dir)
        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise BrowserLaunchError(f"Failed to start Chrome: {exc}") from exc
        endpoint = f"http://127.0.0.1:{port}"
        deadline = time.monotonic() + self._startup_timeout
        while time.monotonic() < deadline:
            if process.poll() is not None:
                raise BrowserLaunchError(f"Chrome exited during startup with code {process.returncode}")
            if endpoint_reachable(endpoint, timeout=1.0):
                return LaunchedBrowser(endpoint=endpoint, pid=process.pid, user_data_dir=user_data_dir)
            time.sleep(self._poll_interval)
        terminate(process.pid)
        raise BrowserLaunchError(
            f"Chrome did not expose a debugging endpoint within {self._startup_timeout:.0f}s"
        )
