"""Per-session storage of previously collected candidates."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from time import monotonic
from typing import Callable, Dict, Optional, Protocol

from .collector import CandidateSet

log = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100000


class CandidateStore(Protocol):
    def get(self, key: str) -> Optional[CandidateSet]:
        ...

    def put(self, key: str, candidates: CandidateSet) -> None:
        ...

    def discard(self, key: str) -> None:
        ...


@dataclass(slots=True)
class _Entry:
    candidates: CandidateSet
    stored_at: float


class MemoryCandidateStore:
    """In-process store; concurrent writers for one key race, last write wins.

    ``ttl_s`` of zero keeps entries until they are evicted. Expired entries are
    swept on write at most once per ``ttl_s``, and the oldest entries are
    evicted once more than ``max_entries`` are held.
    """

    def __init__(
        self,
        ttl_s: float = 0.0,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = monotonic,
    ):
        self._ttl_s = ttl_s
        self._max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._last_sweep = clock()
        self._lock = RLock()

    def configure(self, ttl_s: float, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        """Apply new limits to the existing entries without dropping sessions."""
        with self._lock:
            self._ttl_s = ttl_s
            self._max_entries = max_entries
            self._purge_locked(self._clock())
            self._evict_locked()

    def _expired(self, entry: _Entry, now: float) -> bool:
        return self._ttl_s > 0 and now - entry.stored_at > self._ttl_s

    def _purge_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now
        return len(expired)

    def _evict_locked(self) -> int:
        # dicts keep insertion order and put() re-inserts, so the first keys are the oldest
        overflow = len(self._entries) - self._max_entries
        if overflow <= 0:
            return 0
        for key in list(self._entries)[:overflow]:
            del self._entries[key]
        return overflow

    def get(self, key: str) -> Optional[CandidateSet]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                return None
            return entry.candidates

    def put(self, key: str, candidates: CandidateSet) -> None:
        with self._lock:
            now = self._clock()
            self._entries.pop(key, None)
            self._entries[key] = _Entry(candidates=candidates, stored_at=now)
            if self._ttl_s > 0 and now - self._last_sweep >= self._ttl_s:
                purged = self._purge_locked(now)
                if purged:
                    log.debug("Purged %d expired candidate sets", purged)
            evicted = self._evict_locked()
        if evicted:
            log.warning("Candidate store full; evicted %d oldest sessions", evicted)

    def discard(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge(self) -> int:
        """Drop expired entries and return how many were removed."""
        with self._lock:
            purged = self._purge_locked(self._clock())
        if purged:
            log.debug("Purged %d expired candidate sets", purged)
        return purged

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["CandidateStore", "DEFAULT_MAX_ENTRIES", "MemoryCandidateStore"]
