# ABOUTME: Abstract store contract shared by the disk-backed and in-memory cache stores
# ABOUTME: Synchronous, thread-safe entry table with TTL scans, counters and corpus snapshot

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional

from models import CacheEntry, CorpusSnapshot, StoreStats

from .errors import StorageError

logger = logging.getLogger(__name__)


class BaseStore(ABC):
    """Persistent table of cache entries keyed by content hash.

    Every method is synchronous and safe to call from several threads; the
    cache manager runs them in worker threads under a timeout. Failures are
    raised as StorageError.

    Read-modify-write updates of one entry (``touch``, ``upsert``) and its
    ``put``/``delete`` hold that entry's lock, so a touch never resurrects a
    deleted entry and never overwrites a concurrent upsert.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Prepare backing resources."""
        pass

    def close(self) -> None:
        """Release backing resources."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for key, or None if absent."""

    @abstractmethod
    def put(self, entry: CacheEntry) -> None:
        """Insert or replace an entry atomically."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key; returns False if it was not stored."""

    @abstractmethod
    def list_entries(self, limit: int = 20, offset: int = 0) -> List[CacheEntry]:
        """Entries ordered by last access, most recent first."""

    @abstractmethod
    def all_entries(self) -> List[CacheEntry]:
        """Every readable entry, used to rebuild the similarity index."""

    @abstractmethod
    def expired_keys(
        self, now: datetime, max_age: Optional[timedelta] = None
    ) -> List[str]:
        """Keys past their TTL (or older than max_age), plus unreadable ones."""

    @abstractmethod
    def clear(self) -> int:
        """Remove every entry and reset counters; returns entries removed."""

    @abstractmethod
    def stats(self) -> StoreStats:
        """Entry count, counters and approximate size."""

    @abstractmethod
    def record_hit(self) -> None:
        """Increment the global hit counter."""

    @abstractmethod
    def record_miss(self) -> None:
        """Increment the global miss counter."""

    @abstractmethod
    def load_corpus(self) -> Optional[CorpusSnapshot]:
        """Return the persisted corpus statistics, if any."""

    @abstractmethod
    def save_corpus(self, snapshot: CorpusSnapshot) -> None:
        """Persist corpus statistics."""

    def entry_lock(self, key: str) -> threading.RLock:
        """Lock guarding updates of one entry."""
        return self._lock

    def touch(self, key: str, now: datetime) -> Optional[CacheEntry]:
        """Record a hit on key: bump hit_count and last_accessed_at."""
        with self.entry_lock(key):
            entry = self.get(key)
            if entry is None:
                return None
            touched = entry.model_copy(
                update={"hit_count": entry.hit_count + 1, "last_accessed_at": now}
            )
            self.put(touched)
            return touched

    def upsert(self, entry: CacheEntry) -> Optional[CacheEntry]:
        """Store entry keeping the hit_count of the one it replaces.

        Returns the replaced entry, or None if there was none (or it was
        unreadable).
        """
        with self.entry_lock(entry.key):
            try:
                previous = self.get(entry.key)
            except StorageError as e:
                logger.warning(f"Overwriting unreadable cache entry {entry.key[:12]}: {e}")
                previous = None

            if previous is not None:
                entry = entry.model_copy(update={"hit_count": previous.hit_count})
            self.put(entry)
            return previous

    def purge_expired(
        self, now: datetime, max_age: Optional[timedelta] = None
    ) -> int:
        """Delete expired entries; returns how many were removed."""
        removed = 0
        for key in self.expired_keys(now, max_age):
            if self.delete(key):
                removed += 1
        return removed
