"""Read (and decrypt) cookies from a local Chrome profile."""

from __future__ import annotations

import logging
import shutil
import sqlite3
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..browser.base import CookieParam

LOGGER = logging.getLogger(__name__)

# Chrome stores timestamps as microseconds since 1601-01-01.
_CHROME_EPOCH_OFFSET = 11644473600
_SAME_SITE = {0: "None", 1: "Lax", 2: "Strict"}
# Databases from this schema version on prefix the plaintext with SHA256(host_key).
_DIGEST_PREFIX_VERSION = 24
_LINUX_DEFAULT_PASSWORD = b"peanuts"


class CookieReadError(RuntimeError):
    """The profile's cookie store could not be located, read or decrypted."""


def default_chrome_root() -> Path:
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "Google" / "Chrome"
    if sys.platform.startswith("win"):
        return home / "AppData" / "Local" / "Google" / "Chrome" / "User Data"
    return home / ".config" / "google-chrome"


def resolve_cookie_db(profile: Optional[str], chrome_root: Optional[Path] = None) -> Path:
    """Find the ``Cookies`` database for a profile name, profile dir or file path."""

    candidate = Path(profile).expanduser() if profile else None
    if candidate and candidate.is_file():
        return candidate
    if candidate and candidate.is_dir():
        profile_dir = candidate
    else:
        profile_dir = (chrome_root or default_chrome_root()) / (profile or "Default")
    for path in (profile_dir / "Network" / "Cookies", profile_dir / "Cookies"):
        if path.exists():
            return path
    raise CookieReadError(f"No Chrome cookie database found for profile {profile or 'Default'!r}")


def _mac_keychain_password() -> bytes:
    try:
        output = subprocess.run(
            ["security", "find-generic-password", "-w", "-s", "Chrome Safe Storage"],
            check=True,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise CookieReadError("Could not read 'Chrome Safe Storage' from the macOS keychain") from exc
    return output.stdout.strip().encode()


class CookieDecryptor:
    """Decrypt ``v10``/``v11`` values of Chrome's ``encrypted_value`` column."""

    def __init__(self, password: Optional[bytes] = None, *, iterations: Optional[int] = None) -> None:
        self._password = password
        self._iterations = iterations or (1003 if sys.platform == "darwin" else 1)
        self._key: Optional[bytes] = None

    def _derive_key(self) -> bytes:
        if self._key is None:
            password = self._password
            if password is None:
                password = _mac_keychain_password() if sys.platform == "darwin" else _LINUX_DEFAULT_PASSWORD
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA1(),
                length=16,
                salt=b"saltysalt",
                iterations=self._iterations,
            )
            self._key = kdf.derive(password)
        return self._key

    def decrypt(self, encrypted: bytes, *, strip_digest: bool = False) -> str:
        prefix = encrypted[:3]
        if prefix not in {b"v10", b"v11"}:
            raise CookieReadError(f"Unsupported cookie encryption scheme {prefix!r}")
        decryptor = Cipher(algorithms.AES(self._derive_key()), modes.CBC(b" " * 16)).decryptor()
        padded = decryptor.update(encrypted[3:]) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise CookieReadError("Cookie decryption failed; wrong Safe Storage password?") from exc
        if strip_digest and len(plaintext) >= 32:
            plaintext = plaintext[32:]
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CookieReadError("Cookie decryption produced non UTF-8 data") from exc


def _chrome_time_to_unix(value: int) -> Optional[float]:
    if not value:
        return None
    return value / 1_000_000 - _CHROME_EPOCH_OFFSET


def _host_matches(host_key: str, domains: Iterable[str]) -> bool:
    host = host_key.lstrip(".").lower()
    for domain in domains:
        domain = domain.lstrip(".").lower()
        if host == domain or host.endswith("." + domain):
            return True
    return False


class ChromeCookieReader:
    """Load cookies for a set of domains from a Chrome profile."""

    def __init__(
        self,
        profile: Optional[str] = None,
        *,
        chrome_root: Optional[Path] = None,
        decryptor: Optional[CookieDecryptor] = None,
    ) -> None:
        self._profile = profile
        self._chrome_root = chrome_root
        self._decryptor = decryptor or CookieDecryptor()

    def read(self, domains: Iterable[str]) -> list[CookieParam]:
        domains = list(domains)
        db_path = resolve_cookie_db(self._profile, self._chrome_root)
        # Work on a copy so a running Chrome's lock does not get in the way.
        with tempfile.TemporaryDirectory(prefix="oracle-cookies-") as tmp:
            copy = Path(tmp) / "Cookies"
            try:
                shutil.copy2(db_path, copy)
            except OSError as exc:
                raise CookieReadError(f"Could not copy cookie database {db_path}: {exc}") from exc
            try:
                return self._read_copy(copy, domains)
            except sqlite3.Error as exc:
                raise CookieReadError(f"Could not read cookie database {db_path}: {exc}") from exc

    def _read_copy(self, path: Path, domains: list[str]) -> list[CookieParam]:
        conn = sqlite3.connect(path)
        try:
            conn.row_factory = sqlite3.Row
            version = self._schema_version(conn)
            rows = conn.execute(
                "SELECT host_key, name, value, encrypted_value, path, expires_utc, "
                "is_secure, is_httponly, samesite FROM cookies"
            ).fetchall()
        finally:
            conn.close()
        cookies: list[CookieParam] = []
        for row in rows:
            if not _host_matches(row["host_key"], domains):
                continue
            value = row["value"] or ""
            encrypted = row["encrypted_value"]
            if not value and encrypted:
                value = self._decryptor.decrypt(
                    bytes(encrypted),
                    strip_digest=version >= _DIGEST_PREFIX_VERSION,
                )
            cookies.append(
                CookieParam(
                    name=row["name"],
                    value=value,
                    domain=row["host_key"],
                    path=row["path"] or "/",
                    secure=bool(row["is_secure"]),
                    http_only=bool(row["is_httponly"]),
                    same_site=_SAME_SITE.get(row["samesite"]),
                    expires=_chrome_time_to_unix(row["expires_utc"]),
                )
            )
        LOGGER.debug("Read %d cookies for %s", len(cookies), ", ".join(domains))
        return cookies

    @staticmethod
    def _schema_version(conn: sqlite3.Connection) -> int:
        try:
            row = conn.execute("SELECT value FROM meta WHERE key = 'version'").fetchone()
        except sqlite3.Error:
            return 0
        if not row:
            return 0
        try:
            return int(row[0])
        except (TypeError, ValueError):
            return 0
