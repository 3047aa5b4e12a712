from __future__ import annotations

from threading import Lock
import time
from typing import Callable, Protocol

from app.core.config import get_settings
from app.schemas.generator import ProgressRecord


class ProgressStore(Protocol):
    def put(self, job_key: str, record: ProgressRecord, ttl_seconds: int | None = None) -> None:
        ...

    def get(self, job_key: str) -> ProgressRecord | None:
        ...


class InMemoryProgressStore:
    """Job progress keyed by job key; each write replaces the whole record."""

    def __init__(self, *, default_ttl_seconds: int | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl_seconds = (
            default_ttl_seconds if default_ttl_seconds is not None else get_settings().progress_ttl_seconds
        )
        self._clock = clock
        self._records: dict[str, tuple[float, ProgressRecord]] = {}
        self._lock = Lock()

    def put(self, job_key: str, record: ProgressRecord, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        expires_at = self._clock() + ttl
        with self._lock:
            self._records[job_key] = (expires_at, record)

    def get(self, job_key: str) -> ProgressRecord | None:
        now = self._clock()
        with self._lock:
            entry = self._records.get(job_key)
            if entry is None:
                return None
            expires_at, record = entry
            if expires_at <= now:
                del self._records[job_key]
                return None
            return record

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (expires_at, _) in self._records.items() if expires_at <= now]
            for key in expired:
                del self._records[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


_store = InMemoryProgressStore()


def get_progress_store() -> InMemoryProgressStore:
    return _store


def clear_progress_store() -> None:
    _store.clear()
