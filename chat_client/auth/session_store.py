"""
Session Storage for the Chat CLI.

This module reads and writes the per-user session record. Writes are guarded
by a non-blocking advisory lock on a sibling lock file so that the login
command and the two renewal loops never interleave their writes; a writer that
finds the lock taken gives up immediately instead of waiting.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from filelock import FileLock, Timeout

from chat_shared.exceptions import (
    LockBusyError, SessionCorruptError, SessionIOError, SessionNotFoundError,
    ValidationError
)
from chat_shared.interfaces import IResourceLock
from chat_shared.models import Session

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"


def session_path(base_path: str, username: str) -> str:
    """Return the session file for a user: ``<base_path>.<username>``."""
    return f"{base_path}.{username}"


class FileResourceLock(IResourceLock):
    """Advisory lock backed by ``filelock`` on a lock file."""

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        self._lock = FileLock(lock_path, timeout=0)

    def try_acquire(self) -> bool:
        try:
            self._lock.acquire(timeout=0)
        except Timeout:
            return False
        return True

    def release(self) -> None:
        if self._lock.is_locked:
            self._lock.release()


class InMemoryResourceLock(IResourceLock):
    """
    Process-local lock keyed by name.

    Useful in single-process harnesses where a lock file is unwanted. Every
    instance created for the same name shares one underlying mutex.
    """

    _registry: Dict[str, threading.Lock] = {}
    _registry_guard = threading.Lock()

    def __init__(self, name: str):
        self.name = name
        with self._registry_guard:
            self._mutex = self._registry.setdefault(name, threading.Lock())
        self._held = False

    def try_acquire(self) -> bool:
        self._held = self._mutex.acquire(blocking=False)
        return self._held

    def release(self) -> None:
        if self._held:
            self._held = False
            self._mutex.release()


class SessionStore:
    """
    Loads and saves Session records.

    The lock mechanism is supplied by ``lock_factory`` which receives the lock
    name (``<path>.lock``) and returns an IResourceLock.
    """

    def __init__(self, lock_factory: Optional[Callable[[str], IResourceLock]] = None):
        self.lock_factory = lock_factory or FileResourceLock

    def load(self, path: str) -> Session:
        """
        Read and decode the session at ``path``.

        Raises:
            SessionNotFoundError: the file does not exist
            SessionCorruptError: the file is not a valid session record
            SessionIOError: the file exists but cannot be read
        """
        try:
            raw = Path(path).read_bytes()
        except FileNotFoundError:
            raise SessionNotFoundError(f"Session file not found: {path}", path=path)
        except OSError as e:
            raise SessionIOError(f"Failed to read session file {path}: {e}", path=path, cause=e)

        try:
            data = json.loads(raw.decode('utf-8'))
            return Session.from_dict(data)
        except (UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise SessionCorruptError(f"Session file is corrupt: {path}", path=path, cause=e)

    def save(self, session: Session, path: str) -> None:
        """
        Write the full session record to ``path``.

        Raises:
            ValidationError: the session has an empty field
            LockBusyError: another writer holds the lock
            SessionIOError: the write failed
        """
        try:
            session.validate()
        except ValueError as e:
            raise ValidationError(str(e), field_name='session', cause=e)

        lock = self.lock_factory(path + LOCK_SUFFIX)
        if not lock.try_acquire():
            raise LockBusyError(f"Session file is locked by another writer: {path}", path=path)

        try:
            self._write_atomic(session, path)
        finally:
            lock.release()

        logger.debug(f"Session saved for {session.username}: {path}")

    def _write_atomic(self, session: Session, path: str) -> None:
        data = json.dumps(session.to_dict(), indent=2, ensure_ascii=False)

        # Write to temporary file first, then rename for atomic operation
        temp_file = Path(path + ".tmp")
        try:
            temp_file.write_text(data, encoding='utf-8')
            os.chmod(temp_file, 0o600)
            temp_file.replace(path)
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise SessionIOError(f"Failed to write session file {path}: {e}", path=path, cause=e)
