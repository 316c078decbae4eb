# ABOUTME: Compressed disk store for cached query responses with atomic, versioned files
# ABOUTME: Uses zstandard compression, temp-file-and-replace writes, and TTL maintenance scans

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import zstandard as zstd
from pydantic import ValidationError

from models import (
    SCHEMA_VERSION,
    CacheEntry,
    CorpusSnapshot,
    HitCounters,
    StoreStats,
    ensure_utc,
)

from .errors import StorageError
from .store import BaseStore
from .utils import CacheKeyGenerator

logger = logging.getLogger(__name__)

ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"

# Upgrades a payload from schema version N to N + 1
MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {}


def migrate_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a persisted payload up to the current schema version."""
    version = payload.get("schema_version", 1)
    if not isinstance(version, int) or version < 1:
        raise StorageError(f"Invalid schema version: {version!r}")
    if version > SCHEMA_VERSION:
        raise StorageError(
            f"Schema version {version} is newer than supported {SCHEMA_VERSION}"
        )
    while version < SCHEMA_VERSION:
        payload = MIGRATIONS[version](payload)
        version += 1
        payload["schema_version"] = version
    return payload


class DiskStore(BaseStore):
    """Compressed on-disk entry table with persistence across restarts.

    Layout under ``cache_dir``::

        entries/<key>.entry   one compressed JSON CacheEntry per key
        corpus.cache          compressed JSON CorpusSnapshot
        counters.json         global hit and miss counters

    Entry writes lock only their own key stripe. Hit and miss counters are
    kept in memory and written every ``counter_flush_interval`` updates and
    on close, by whichever thread is not already flushing.
    """

    ENTRY_SUFFIX = ".entry"
    TEMP_SUFFIX = ".tmp"
    LOCK_STRIPES = 64

    def __init__(
        self,
        cache_dir: Union[str, Path],
        compression_enabled: bool = True,
        compression_level: int = 3,
        counter_flush_interval: int = 50,
    ):
        """Initialize disk store."""
        super().__init__()
        self.cache_dir = Path(cache_dir)
        self.entries_dir = self.cache_dir / "entries"
        self.corpus_path = self.cache_dir / "corpus.cache"
        self.counters_path = self.cache_dir / "counters.json"
        self.compression_enabled = compression_enabled
        self.compression_level = compression_level
        self.counter_flush_interval = max(1, counter_flush_interval)

        self.current_size = 0
        self.counters = HitCounters()
        self._unsaved_counts = 0
        self._entry_locks = [threading.RLock() for _ in range(self.LOCK_STRIPES)]
        self._counter_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._corpus_lock = threading.Lock()

    def initialize(self) -> None:
        """Create directories, drop leftovers of interrupted writes, load counters."""
        try:
            self.entries_dir.mkdir(parents=True, exist_ok=True)
            for leftover in self.entries_dir.glob(f"*{self.TEMP_SUFFIX}"):
                leftover.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot prepare cache directory {self.cache_dir}: {e}")

        with self._counter_lock:
            self.counters = self._load_counters()
            self._unsaved_counts = 0
        self._calculate_current_size()

    def entry_lock(self, key: str) -> threading.RLock:
        return self._entry_locks[hash(key) % self.LOCK_STRIPES]

    def get(self, key: str) -> Optional[CacheEntry]:
        """Retrieve an entry, raising StorageError if its file is corrupt."""
        if not CacheKeyGenerator.is_valid_key(key):
            return None

        try:
            return self._read_entry(self._entry_path(key))
        except FileNotFoundError:
            return None

    def put(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous version atomically."""
        if not CacheKeyGenerator.is_valid_key(entry.key):
            raise StorageError(f"Invalid cache key: {entry.key!r}")

        data = self._encode(entry.model_dump_json().encode("utf-8"))
        file_path = self._entry_path(entry.key)

        with self.entry_lock(entry.key):
            old_size = self._file_size(file_path)
            self._atomic_write(file_path, data)
            with self._lock:
                self.current_size += len(data) - old_size

    def delete(self, key: str) -> bool:
        if not CacheKeyGenerator.is_valid_key(key):
            return False
        with self.entry_lock(key):
            return self._remove_file(self._entry_path(key))

    def list_entries(self, limit: int = 20, offset: int = 0) -> List[CacheEntry]:
        entries = self.all_entries()
        entries.sort(key=lambda entry: entry.last_accessed_at, reverse=True)
        return entries[offset : offset + limit]

    def all_entries(self) -> List[CacheEntry]:
        entries = []
        for cache_file in self._entry_files():
            try:
                entries.append(self._read_entry(cache_file))
            except FileNotFoundError:
                continue
            except StorageError as e:
                logger.warning(f"Skipping unreadable cache entry {cache_file.name}: {e}")
        return entries

    def expired_keys(
        self, now: datetime, max_age: Optional[timedelta] = None
    ) -> List[str]:
        now = ensure_utc(now)
        cutoff = now - max_age if max_age is not None else None
        expired = []

        for cache_file in self._entry_files():
            try:
                entry = self._read_entry(cache_file)
            except FileNotFoundError:
                continue
            except StorageError:
                # Corrupt files are purged along with stale ones
                expired.append(cache_file.stem)
                continue

            if entry.is_expired(now) or (
                cutoff is not None and entry.is_older_than(cutoff)
            ):
                expired.append(entry.key)

        return expired

    def clear(self) -> int:
        removed_count = 0
        for cache_file in self._entry_files():
            with self.entry_lock(cache_file.stem):
                if self._remove_file(cache_file):
                    removed_count += 1

        with self._flush_lock:
            with self._counter_lock:
                self.counters = HitCounters()
                self._unsaved_counts = 0
            self._write_json(self.counters_path, HitCounters().model_dump_json())
        with self._corpus_lock:
            self._remove_file(self.corpus_path, track_size=False)
        return removed_count

    def stats(self) -> StoreStats:
        entries = self.all_entries()
        created = [entry.created_at for entry in entries]
        with self._counter_lock:
            hits, misses = self.counters.hits, self.counters.misses
        with self._lock:
            size = max(self.current_size, 0)
        return StoreStats(
            count=len(entries),
            total_hits=hits,
            total_misses=misses,
            approx_size=size,
            oldest_entry=min(created) if created else None,
            newest_entry=max(created) if created else None,
        )

    def record_hit(self) -> None:
        with self._counter_lock:
            self.counters.hits += 1
            self._unsaved_counts += 1
        self.flush_counters()

    def record_miss(self) -> None:
        with self._counter_lock:
            self.counters.misses += 1
            self._unsaved_counts += 1
        self.flush_counters()

    def flush_counters(self, force: bool = False) -> None:
        """Persist counters once enough updates piled up, or always if forced.

        Unforced flushes never wait: if another thread is writing the file,
        its write covers this update or the next flush will.
        """
        if not force and self._unsaved_counts < self.counter_flush_interval:
            return
        if not self._flush_lock.acquire(blocking=force):
            return

        try:
            with self._counter_lock:
                pending = self._unsaved_counts
                snapshot = self.counters.model_copy()
                self._unsaved_counts = 0
            if not pending and not force:
                return
            try:
                self._write_json(self.counters_path, snapshot.model_dump_json())
            except StorageError:
                with self._counter_lock:
                    self._unsaved_counts += pending
                raise
        finally:
            self._flush_lock.release()

    def load_corpus(self) -> Optional[CorpusSnapshot]:
        try:
            payload = self._read_payload(self.corpus_path)
        except FileNotFoundError:
            return None
        try:
            return CorpusSnapshot.model_validate(payload)
        except ValidationError as e:
            raise StorageError(f"Corrupt corpus statistics: {e}")

    def save_corpus(self, snapshot: CorpusSnapshot) -> None:
        data = self._encode(snapshot.model_dump_json().encode("utf-8"))
        with self._corpus_lock:
            self._atomic_write(self.corpus_path, data)

    def close(self) -> None:
        """Write pending counters; entries are already durable."""
        self.flush_counters(force=True)

    def _entry_path(self, key: str) -> Path:
        return self.entries_dir / f"{key}{self.ENTRY_SUFFIX}"

    def _entry_files(self) -> List[Path]:
        try:
            return [
                path
                for path in self.entries_dir.glob(f"*{self.ENTRY_SUFFIX}")
                if path.is_file()
            ]
        except OSError as e:
            raise StorageError(f"Cannot scan cache directory: {e}")

    def _read_entry(self, file_path: Path) -> CacheEntry:
        payload = self._read_payload(file_path)
        try:
            entry = CacheEntry.model_validate(payload)
        except ValidationError as e:
            raise StorageError(f"Corrupt cache entry {file_path.name}: {e}")

        if entry.key != file_path.stem:
            raise StorageError(f"Cache entry {file_path.name} holds key {entry.key}")
        return entry

    def _read_payload(self, file_path: Path) -> Dict[str, Any]:
        try:
            with open(file_path, "rb") as f:
                data = f.read()
            payload = json.loads(self._decode(data).decode("utf-8"))
        except FileNotFoundError:
            raise
        except (OSError, zstd.ZstdError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {file_path.name}: {e}")

        if not isinstance(payload, dict):
            raise StorageError(f"{file_path.name} does not hold a JSON object")
        return migrate_payload(payload)

    def _encode(self, data: bytes) -> bytes:
        if not self.compression_enabled:
            return data
        return zstd.ZstdCompressor(level=self.compression_level).compress(data)

    def _decode(self, data: bytes) -> bytes:
        # Frames are recognised by magic so toggling compression keeps old files readable
        if data.startswith(ZSTD_MAGIC):
            return zstd.ZstdDecompressor().decompress(data)
        return data

    def _atomic_write(self, file_path: Path, data: bytes) -> None:
        """Write to a temp file in the same directory, then rename over the target."""
        try:
            fd, temp_name = tempfile.mkstemp(
                dir=file_path.parent, prefix=".", suffix=self.TEMP_SUFFIX
            )
        except OSError as e:
            raise StorageError(f"Cannot write {file_path.name}: {e}")

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_name, file_path)
        except OSError as e:
            Path(temp_name).unlink(missing_ok=True)
            raise StorageError(f"Cannot write {file_path.name}: {e}")

    def _write_json(self, file_path: Path, text: str) -> None:
        self._atomic_write(file_path, text.encode("utf-8"))

    def _load_counters(self) -> HitCounters:
        try:
            return HitCounters.model_validate(self._read_payload(self.counters_path))
        except FileNotFoundError:
            return HitCounters()
        except (StorageError, ValidationError) as e:
            logger.warning(f"Resetting unreadable hit counters: {e}")
            return HitCounters()

    def _file_size(self, file_path: Path) -> int:
        try:
            return file_path.stat().st_size
        except FileNotFoundError:
            return 0
        except OSError as e:
            raise StorageError(f"Cannot stat {file_path.name}: {e}")

    def _remove_file(self, file_path: Path, track_size: bool = True) -> bool:
        """Remove a file and update size tracking."""
        try:
            file_size = file_path.stat().st_size
            file_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Cannot remove {file_path.name}: {e}")

        if track_size:
            with self._lock:
                self.current_size -= file_size
        return True

    def _calculate_current_size(self) -> None:
        """Calculate current size of all entry files."""
        total = sum(self._file_size(cache_file) for cache_file in self._entry_files())
        with self._lock:
            self.current_size = total
