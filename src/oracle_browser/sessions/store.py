"""Keyed storage for session descriptors."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from pydantic import ValidationError

from ..models import SessionDescriptor
from .lock import FileLock

LOGGER = logging.getLogger(__name__)

Mutator = Callable[[SessionDescriptor], SessionDescriptor]


class SessionStore(ABC):
    """Interface for persisting session descriptors keyed by session id."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[SessionDescriptor]:
        """Return the descriptor or ``None``."""

    @abstractmethod
    def put(self, descriptor: SessionDescriptor) -> None:
        """Insert or replace a descriptor."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Remove a descriptor; return whether it existed."""

    @abstractmethod
    def all(self) -> List[SessionDescriptor]:
        """Return every stored descriptor."""

    @abstractmethod
    def update(self, session_id: str, mutate: Mutator) -> Optional[SessionDescriptor]:
        """Atomically apply ``mutate`` to a stored descriptor."""

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Serialize a multi-step read-modify-write cycle."""

    def list_by_age(self, older_than: Optional[datetime] = None) -> List[SessionDescriptor]:
        """Descriptors sorted by ``last_used_at`` (oldest first), optionally filtered."""

        items = self.all()
        if older_than is not None:
            items = [item for item in items if item.last_used_at < older_than]
        return sorted(items, key=lambda item: item.last_used_at)


class InMemorySessionStore(SessionStore):
    """Process-local store useful for testing."""

    def __init__(self) -> None:
        self._items: dict[str, SessionDescriptor] = {}
        self._lock = threading.RLock()

    def get(self, session_id: str) -> Optional[SessionDescriptor]:
        with self._lock:
            return self._items.get(session_id)

    def put(self, descriptor: SessionDescriptor) -> None:
        with self._lock:
            self._items[descriptor.session_id] = descriptor

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._items.pop(session_id, None) is not None

    def all(self) -> List[SessionDescriptor]:
        with self._lock:
            return list(self._items.values())

    def update(self, session_id: str, mutate: Mutator) -> Optional[SessionDescriptor]:
        with self._lock:
            current = self._items.get(session_id)
            if current is None:
                return None
            updated = mutate(current)
            self._items[session_id] = updated
            return updated

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield


class JsonSessionStore(SessionStore):
    """One ``<session_id>.json`` file per session.

    Writes go to a temporary file in the same directory followed by
    ``os.replace``; read-modify-write cycles hold ``.store.lock``.
    """

    SUFFIX = ".json"

    def __init__(self, root: Path, *, lock_timeout: float = 10.0) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock_timeout = lock_timeout
        self._local = threading.local()

    @staticmethod
    def _valid_id(session_id: str) -> bool:
        return bool(session_id) and not any(sep in session_id for sep in ("/", "\\", ".."))

    def _path(self, session_id: str) -> Path:
        if not self._valid_id(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.root / f"{session_id}{self.SUFFIX}"

    @contextmanager
    def transaction(self) -> Iterator[None]:
        depth = getattr(self._local, "depth", 0)
        if depth:
            self._local.depth = depth + 1
            try:
                yield
            finally:
                self._local.depth -= 1
            return
        lock = FileLock(self.root / ".store.lock", timeout=self._lock_timeout)
        with lock:
            self._local.depth = 1
            try:
                yield
            finally:
                self._local.depth = 0

    def _read(self, path: Path) -> Optional[SessionDescriptor]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return SessionDescriptor.model_validate_json(raw)
        except ValidationError:
            LOGGER.warning("Ignoring unreadable session descriptor %s", path.name)
            return None

    def _write(self, descriptor: SessionDescriptor) -> None:
        path = self._path(descriptor.session_id)
        fd, tmp = tempfile.mkstemp(prefix=f".{descriptor.session_id}.", suffix=".tmp", dir=self.root)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(descriptor.model_dump_json(indent=2))
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, session_id: str) -> Optional[SessionDescriptor]:
        # Ids that cannot name a descriptor file are simply unknown.
        if not self._valid_id(session_id):
            return None
        return self._read(self._path(session_id))

    def put(self, descriptor: SessionDescriptor) -> None:
        with self.transaction():
            self._write(descriptor)

    def delete(self, session_id: str) -> bool:
        if not self._valid_id(session_id):
            return False
        path = self._path(session_id)
        with self.transaction():
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        return True

    def all(self) -> List[SessionDescriptor]:
        items: List[SessionDescriptor] = []
        for path in sorted(self.root.glob(f"*{self.SUFFIX}")):
            descriptor = self._read(path)
            if descriptor is not None:
                items.append(descriptor)
        return items

    def update(self, session_id: str, mutate: Mutator) -> Optional[SessionDescriptor]:
        with self.transaction():
            current = self.get(session_id)
            if current is None:
                return None
            updated = mutate(current)
            self._write(updated)
            return updated
