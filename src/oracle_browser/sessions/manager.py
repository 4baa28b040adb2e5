"""Lifecycle of persisted browser sessions."""

from __future__ import annotations

import logging
import shutil
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from ..browser.base import ProtocolClient
from ..browser.launcher import endpoint_reachable, pid_alive, terminate
from ..config import AutomationConfig
from ..errors import ProtocolDisconnected, SessionBusy, SessionNotFound
from ..models import SessionDescriptor, SessionState, SessionStatus, utcnow
from .lock import FileLock, LockTimeout
from .store import SessionStore

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[], ProtocolClient]


class ProcessProbe:
    """Checks and stops the browser process behind a descriptor."""

    def is_alive(self, descriptor: SessionDescriptor) -> bool:
        if descriptor.pid is not None and not pid_alive(descriptor.pid):
            return False
        return endpoint_reachable(descriptor.endpoint)

    def terminate(self, descriptor: SessionDescriptor) -> None:
        terminate(descriptor.pid)


@dataclass
class AttachedSession:
    """A descriptor together with the client connected to its browser."""

    descriptor: SessionDescriptor
    client: ProtocolClient

    @property
    def session_id(self) -> str:
        return self.descriptor.session_id


class SessionManager:
    """Create, reattach, list and purge browser sessions."""

    def __init__(
        self,
        store: SessionStore,
        client_factory: ClientFactory,
        *,
        sessions_dir: Path,
        probe: Optional[ProcessProbe] = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._client_factory = client_factory
        self._sessions_dir = sessions_dir
        self._probe = probe or ProcessProbe()
        self._now = now

    @property
    def store(self) -> SessionStore:
        return self._store

    def create(self, config: AutomationConfig) -> AttachedSession:
        session_id = uuid.uuid4().hex
        user_data_dir = self._sessions_dir / "profiles" / session_id
        client = self._client_factory()
        launched = client.launch(config, user_data_dir)
        now = self._now()
        descriptor = SessionDescriptor(
            session_id=session_id,
            endpoint=launched.endpoint,
            pid=launched.pid,
            user_data_dir=launched.user_data_dir,
            profile_name=config.chrome_profile or "Default",
            created_at=now,
            last_used_at=now,
        )
        self._store.put(descriptor)
        LOGGER.info("Created browser session %s at %s", session_id, launched.endpoint)
        return AttachedSession(descriptor=descriptor, client=client)

    def attach(self, session_id: str) -> AttachedSession:
        descriptor = self._store.get(session_id)
        if descriptor is None:
            raise SessionNotFound(f"No stored session {session_id!r}", session_id=session_id)
        if not self._probe.is_alive(descriptor):
            raise SessionNotFound(
                f"Browser for session {session_id!r} is no longer running",
                session_id=session_id,
            )
        client = self._client_factory()
        try:
            client.attach(descriptor.endpoint)
        except ProtocolDisconnected as exc:
            raise SessionNotFound(
                f"Could not reconnect to session {session_id!r}: {exc}",
                session_id=session_id,
            ) from exc
        touched = self.touch(session_id) or descriptor
        LOGGER.info("Attached to browser session %s", session_id)
        return AttachedSession(descriptor=touched, client=client)

    def touch(self, session_id: str) -> Optional[SessionDescriptor]:
        now = self._now()
        return self._store.update(
            session_id,
            lambda item: item.model_copy(update={"last_used_at": now}),
        )

    def mark(
        self,
        session_id: str,
        status: SessionState,
        *,
        error: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> Optional[SessionDescriptor]:
        """Record query bookkeeping and refresh ``last_used_at``."""

        now = self._now()

        def _apply(item: SessionDescriptor) -> SessionDescriptor:
            update: dict[str, object] = {"status": status, "last_used_at": now, "last_error": error}
            if prompt is not None:
                update["last_prompt_preview"] = prompt[:80]
                update["query_count"] = item.query_count + 1
            return item.model_copy(update=update)

        return self._store.update(session_id, _apply)

    def release(self, attached: AttachedSession) -> None:
        """Disconnect but keep the browser (and descriptor) for reuse."""

        attached.client.close()
        self.touch(attached.session_id)

    def close(self, attached: AttachedSession) -> None:
        """Disconnect, stop the browser and forget the session."""

        try:
            attached.client.close()
        finally:
            self._destroy(attached.descriptor)

    def _destroy(self, descriptor: SessionDescriptor) -> None:
        try:
            self._probe.terminate(descriptor)
        except OSError as exc:
            LOGGER.warning("Could not stop browser for session %s: %s", descriptor.session_id, exc)
        self._store.delete(descriptor.session_id)
        try:
            self._lock_path(descriptor.session_id).unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.debug("Could not remove lock file of session %s: %s", descriptor.session_id, exc)
        profile_dir = descriptor.user_data_dir
        if profile_dir and profile_dir.is_relative_to(self._sessions_dir):
            shutil.rmtree(profile_dir, ignore_errors=True)
        LOGGER.info("Closed browser session %s", descriptor.session_id)

    def delete_older_than(self, *, hours: float, include_all: bool = False) -> int:
        """Purge sessions idle for more than ``hours`` (every session if ``include_all``)."""

        cutoff = self._now() - timedelta(hours=hours)
        with self._store.transaction():
            victims = self._store.all() if include_all else self._store.list_by_age(older_than=cutoff)
            deleted = 0
            for descriptor in victims:
                try:
                    lock = self.acquire(descriptor.session_id)
                except SessionBusy:
                    LOGGER.info("Skipping session %s: a query is running on it", descriptor.session_id)
                    continue
                try:
                    self._destroy(descriptor)
                finally:
                    lock.release()
                deleted += 1
        LOGGER.info("Deleted %d stored session(s)", deleted)
        return deleted

    def list_sessions(
        self,
        *,
        hours: Optional[float] = None,
        include_all: bool = False,
        limit: Optional[int] = None,
    ) -> List[SessionStatus]:
        """Most recently used first; never mutates the store."""

        items = self._store.list_by_age()
        if hours is not None and not include_all:
            cutoff = self._now() - timedelta(hours=hours)
            items = [item for item in items if item.last_used_at >= cutoff]
        items.reverse()
        if limit is not None:
            items = items[: max(limit, 0)]
        return [SessionStatus(descriptor=item, alive=self._probe.is_alive(item)) for item in items]

    status = list_sessions

    def acquire(self, session_id: str) -> FileLock:
        """Take the per-session query lock; fails fast if another query holds it."""

        lock = FileLock(self._lock_path(session_id), timeout=0)
        try:
            lock.acquire()
        except LockTimeout as exc:
            raise SessionBusy(
                f"Session {session_id!r} is already running a query",
                session_id=session_id,
            ) from exc
        return lock

    def _lock_path(self, session_id: str) -> Path:
        return self._sessions_dir / "locks" / f"{session_id}.lock"

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        lock = self.acquire(session_id)
        try:
            yield
        finally:
            lock.release()
