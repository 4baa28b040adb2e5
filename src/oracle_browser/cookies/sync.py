"""Copy authentication cookies into the automated browser."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

from ..browser.base import CookieParam, ProtocolClient
from ..config import AutomationConfig
from ..errors import CookieSyncFailed, ProtocolDisconnected, ProtocolError
from .chrome import ChromeCookieReader, CookieDecryptor, CookieReadError

LOGGER = logging.getLogger(__name__)


class CookieSource(Protocol):
    def read(self, domains: list[str]) -> list[CookieParam]:
        ...


def chrome_source_factory(password: Optional[str] = None) -> Callable[[AutomationConfig], CookieSource]:
    def _factory(config: AutomationConfig) -> CookieSource:
        decryptor = CookieDecryptor(password.encode() if password else None)
        return ChromeCookieReader(config.chrome_profile, decryptor=decryptor)

    return _factory


class CookieSynchronizer:
    """Inject cookies for the target origin before the first navigation."""

    def __init__(self, source_factory: Optional[Callable[[AutomationConfig], CookieSource]] = None) -> None:
        self._source_factory = source_factory or chrome_source_factory()

    def sync(self, client: ProtocolClient, config: AutomationConfig) -> int:
        """Return the number of cookies applied.

        Raises :class:`CookieSyncFailed` unless ``allow_cookie_errors`` is set,
        in which case the failure is logged and ``0`` is returned.
        """

        if not config.cookie_sync:
            LOGGER.debug("Cookie sync disabled")
            return 0
        domains = list(config.cookie_domains)
        try:
            cookies = self._source_factory(config).read(domains)
            if not cookies:
                raise CookieReadError(f"No cookies found for {', '.join(domains)}")
            client.set_cookies(cookies)
        except ProtocolDisconnected:
            raise
        except (CookieReadError, ProtocolError) as exc:
            if config.allow_cookie_errors:
                LOGGER.warning("Cookie sync failed (%s); continuing without authentication", exc)
                return 0
            raise CookieSyncFailed(f"Cookie sync failed: {exc}") from exc
        names = sorted({cookie.name for cookie in cookies})
        LOGGER.info("Synced %d cookies (%s)", len(cookies), ", ".join(names))
        return len(cookies)
