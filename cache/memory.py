# ABOUTME: In-memory store for cached query responses with TTL scans and size tracking
# ABOUTME: Process-local implementation of the store contract for ephemeral sessions and tests

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import List, Optional

from models import CacheEntry, CorpusSnapshot, HitCounters, StoreStats, ensure_utc

from .store import BaseStore


class MemoryStore(BaseStore):
    """In-memory entry table; contents vanish with the process."""

    def __init__(self) -> None:
        """Initialize an empty memory store."""
        super().__init__()
        self.cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.corpus: Optional[CorpusSnapshot] = None
        self.counters = HitCounters()
        self.current_size = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self.cache.get(key)

    def put(self, entry: CacheEntry) -> None:
        """Store entry, replacing any previous version."""
        with self._lock:
            previous = self.cache.pop(entry.key, None)
            if previous is not None:
                self.current_size -= previous.approx_size()

            self.cache[entry.key] = entry
            self.current_size += entry.approx_size()

    def delete(self, key: str) -> bool:
        with self._lock:
            entry = self.cache.pop(key, None)
            if entry is None:
                return False
            self.current_size -= entry.approx_size()
            return True

    def list_entries(self, limit: int = 20, offset: int = 0) -> List[CacheEntry]:
        entries = self.all_entries()
        entries.sort(key=lambda entry: entry.last_accessed_at, reverse=True)
        return entries[offset : offset + limit]

    def all_entries(self) -> List[CacheEntry]:
        with self._lock:
            return list(self.cache.values())

    def expired_keys(
        self, now: datetime, max_age: Optional[timedelta] = None
    ) -> List[str]:
        now = ensure_utc(now)
        cutoff = now - max_age if max_age is not None else None
        with self._lock:
            return [
                key
                for key, entry in self.cache.items()
                if entry.is_expired(now)
                or (cutoff is not None and entry.is_older_than(cutoff))
            ]

    def clear(self) -> int:
        """Clear all entries, counters and corpus statistics."""
        with self._lock:
            removed_count = len(self.cache)
            self.cache.clear()
            self.current_size = 0
            self.counters = HitCounters()
            self.corpus = None
            return removed_count

    def stats(self) -> StoreStats:
        with self._lock:
            created = [entry.created_at for entry in self.cache.values()]
            return StoreStats(
                count=len(self.cache),
                total_hits=self.counters.hits,
                total_misses=self.counters.misses,
                approx_size=self.current_size,
                oldest_entry=min(created) if created else None,
                newest_entry=max(created) if created else None,
            )

    def record_hit(self) -> None:
        with self._lock:
            self.counters.hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self.counters.misses += 1

    def load_corpus(self) -> Optional[CorpusSnapshot]:
        with self._lock:
            return self.corpus

    def save_corpus(self, snapshot: CorpusSnapshot) -> None:
        with self._lock:
            self.corpus = snapshot
