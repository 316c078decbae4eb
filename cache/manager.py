# ABOUTME: Cache manager coordinating normalization, hashing, TF-IDF similarity and the store
# ABOUTME: Lookup goes exact hash, then similar query, then miss; writes commit atomically

import asyncio
import inspect
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, List, Optional, Union

from models import (
    AnswerResult,
    CacheConfig,
    CacheEntry,
    CacheHit,
    CacheMiss,
    CacheStats,
    EntrySummary,
    LookupResult,
    MatchType,
    WriteErr,
    WriteOk,
    WriteResult,
    utc_now,
)

from .disk import DiskStore
from .errors import NormalizationError, StorageError, VectorizerError
from .index import SimilarityIndex, create_index
from .normalizer import QueryNormalizer
from .store import BaseStore
from .utils import CacheKeyGenerator
from .vectorizer import CorpusStatistics, TfidfVectorizer

# Failures that make a read behave like a miss
READ_FAILURES = (StorageError, OSError, asyncio.TimeoutError)

AnswerGenerator = Callable[[], Union[Awaitable[str], str]]


class CacheManager:
    """Response cache that recognises repeated and rephrased queries.

    The store is the source of truth. The similarity index and the corpus
    statistics are rebuilt from it by ``initialize()`` and afterwards changed
    only together with it, inside one lock that also serializes maintenance.
    Reads and hit bookkeeping never take that lock; a hit only holds the
    store's lock for its own entry.

    Cache failures never escape ``lookup``, ``write`` or ``get_or_generate``:
    failed reads become misses and failed writes become ``WriteErr``.
    """

    def __init__(
        self,
        store: BaseStore,
        config: Optional[CacheConfig] = None,
        normalizer: Optional[QueryNormalizer] = None,
        index: Optional[SimilarityIndex] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize cache manager around a store."""
        self.config = config or CacheConfig()
        self.store = store
        self.normalizer = normalizer or QueryNormalizer.from_files(
            self.config.abbreviations_path, self.config.stopwords_path
        )
        self.key_generator = CacheKeyGenerator()
        self.corpus = CorpusStatistics()
        self.vectorizer = TfidfVectorizer(self.corpus)
        self.index = index if index is not None else create_index(self.config.index_backend)
        self.clock = clock or utc_now
        self.logger = logging.getLogger(self.__class__.__name__)

        self._write_lock = threading.RLock()

    @classmethod
    def from_config(cls, config: Optional[CacheConfig] = None, **kwargs: Any) -> "CacheManager":
        """Build a manager backed by the disk store configured in config."""
        config = config or CacheConfig()
        store = DiskStore(
            cache_dir=config.cache_dir, compression_enabled=config.compression_enabled
        )
        return cls(store, config=config, **kwargs)

    async def __aenter__(self) -> "CacheManager":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def initialize(self) -> None:
        """Prepare the store and rebuild index and corpus statistics from it."""
        timeout = self.config.rebuild_timeout_seconds
        try:
            await self._run_io(self.store.initialize, timeout=timeout)
            await self._run_io(self._rebuild, timeout=timeout)
        except READ_FAILURES as e:
            self.logger.warning(
                f"Cache rebuild failed, falling back to exact matching: {e!r}"
            )
            self.index.clear()
            self.corpus.mark_unavailable()

    async def close(self) -> None:
        """Close the underlying store."""
        try:
            await self._run_io(self.store.close)
        except READ_FAILURES as e:
            self.logger.warning(f"Failed to close cache store: {e!r}")

    def get_cache_key(self, raw_query: Union[str, bytes]) -> str:
        """Cache key a raw query maps to."""
        normalized = self.normalizer.normalize(raw_query)
        return self.key_generator.generate_key(normalized.text)

    async def lookup(self, raw_query: Union[str, bytes]) -> LookupResult:
        """Find a cached answer: exact hash first, then the most similar query."""
        if not self.config.enabled:
            return CacheMiss(reason="disabled")

        try:
            normalized = self.normalizer.normalize(raw_query)
        except NormalizationError as e:
            self.logger.warning(f"Cannot normalize query, treating as miss: {e}")
            return await self._miss(f"normalization failed: {e}")

        if normalized.is_empty:
            return await self._miss("query has no searchable terms")

        key = self.key_generator.generate_key(normalized.text)
        now = self.clock()

        # 1. Exact match on the normalized text
        try:
            entry = await self._run_io(self.store.get, key)
        except READ_FAILURES as e:
            self.logger.warning(f"Cache read failed for {key[:12]}, treating as miss: {e!r}")
            return await self._miss("storage read failed")

        if entry is not None and not entry.is_expired(now):
            return await self._hit(entry, 1.0, MatchType.EXACT, now)

        # 2. Nearest cached query above the similarity threshold
        try:
            vector = self.vectorizer.vectorize(normalized.tokens)
        except VectorizerError as e:
            self.logger.warning(f"Similarity matching unavailable: {e}")
            return await self._miss("similarity matching unavailable")

        # Stale candidates are skipped until a live one or none is left
        stale = {key}
        while True:
            match = self.index.search(
                vector, self.config.similarity_threshold, exclude=stale
            )
            if match is None:
                return await self._miss()

            try:
                candidate = await self._run_io(self.store.get, match.key)
            except READ_FAILURES as e:
                self.logger.warning(
                    f"Cache read failed for {match.key[:12]}, treating as miss: {e!r}"
                )
                return await self._miss("storage read failed")

            if candidate is not None and not candidate.is_expired(now):
                return await self._hit(candidate, match.score, MatchType.SIMILAR, now)
            stale.add(match.key)

    async def write(
        self,
        raw_query: Union[str, bytes],
        response: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> WriteResult:
        """Persist a freshly generated answer; failures are reported, not raised."""
        if not self.config.enabled:
            return WriteErr(reason="cache disabled")

        try:
            normalized = self.normalizer.normalize(raw_query)
        except NormalizationError as e:
            self.logger.warning(f"Cannot normalize query, not caching: {e}")
            return WriteErr(reason=f"normalization failed: {e}")

        if normalized.is_empty:
            return WriteErr(reason="query has no searchable terms")

        try:
            vector = self.vectorizer.vectorize(normalized.tokens)
        except VectorizerError as e:
            self.logger.warning(f"Caching without similarity vector: {e}")
            vector = {}

        now = self.clock()
        entry = CacheEntry(
            key=self.key_generator.generate_key(normalized.text),
            original_query=normalized.original,
            normalized_text=normalized.text,
            response=response,
            term_vector=vector,
            created_at=now,
            last_accessed_at=now,
            hit_count=0,
            ttl_expiry=now + timedelta(days=self.config.ttl_days),
            provider=provider,
            model=model,
        )

        try:
            await self._run_io(self._commit, entry)
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Cache write timed out for {entry.key[:12]}, commit still running"
            )
            return WriteErr(
                reason="storage write timed out, entry may still be stored", pending=True
            )
        except (StorageError, OSError) as e:
            self.logger.warning(f"Cache write failed for {entry.key[:12]}: {e}")
            return WriteErr(reason=f"storage write failed: {e}")

        self.logger.debug(f"Cached response for {entry.key[:12]}")
        return WriteOk(key=entry.key)

    async def get_or_generate(
        self,
        raw_query: Union[str, bytes],
        generate: AnswerGenerator,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> AnswerResult:
        """Serve from cache, or call generate() and cache what it returns.

        The generator runs outside every cache lock. Its answer is returned
        even when caching it fails.
        """
        lookup = await self.lookup(raw_query)
        if isinstance(lookup, CacheHit):
            return AnswerResult(response=lookup.response, from_cache=True, lookup=lookup)

        response = generate()
        if inspect.isawaitable(response):
            response = await response

        write = await self.write(raw_query, response, provider=provider, model=model)
        return AnswerResult(response=response, from_cache=False, lookup=lookup, write=write)

    async def stats(self) -> CacheStats:
        """Entry count, size and hit/miss accounting."""
        store_stats = await self._run_maintenance(self.store.stats)
        total_requests = store_stats.total_hits + store_stats.total_misses

        return CacheStats(
            entry_count=store_stats.count,
            size_bytes=store_stats.approx_size,
            hit_count=store_stats.total_hits,
            miss_count=store_stats.total_misses,
            hit_rate=store_stats.total_hits / max(total_requests, 1),
            oldest_entry=store_stats.oldest_entry,
            newest_entry=store_stats.newest_entry,
            indexed_entries=len(self.index),
        )

    async def list_entries(self, limit: int = 20, offset: int = 0) -> List[EntrySummary]:
        """Cached queries, most recently used first."""
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be non-negative")

        entries = await self._run_maintenance(self.store.list_entries, limit, offset)
        return [
            EntrySummary(
                key=entry.key,
                normalized_text=entry.normalized_text,
                original_query=entry.original_query,
                created_at=entry.created_at,
                last_accessed_at=entry.last_accessed_at,
                hit_count=entry.hit_count,
            )
            for entry in entries
        ]

    async def remove(self, key: str) -> bool:
        """Remove one entry from store and index together."""
        removed = await self._run_maintenance(self._remove, key)
        if removed:
            self.logger.info(f"Removed cache entry {key[:12]}")
        return removed

    async def clear(self) -> int:
        """Remove every entry and reset counters and corpus statistics."""
        removed = await self._run_maintenance(
            self._clear, timeout=self.config.rebuild_timeout_seconds
        )
        self.logger.info(f"Cleared {removed} cache entries")
        return removed

    async def purge_expired(self, max_age: Optional[timedelta] = None) -> int:
        """Remove entries past their TTL, or created more than max_age ago."""
        removed = await self._run_maintenance(
            self._purge, self.clock(), max_age, timeout=self.config.rebuild_timeout_seconds
        )
        self.logger.info(f"Purged {removed} expired cache entries")
        return removed

    async def _hit(
        self, entry: CacheEntry, score: float, match_type: MatchType, now: datetime
    ) -> CacheHit:
        """Bump the entry's bookkeeping and the global hit counter."""
        try:
            await self._run_io(self._record_hit, entry.key, now)
        except READ_FAILURES as e:
            self.logger.warning(f"Failed to record cache hit for {entry.key[:12]}: {e!r}")

        self.logger.debug(f"Cache hit ({match_type.value}, {score:.2f}) for {entry.key[:12]}")
        return CacheHit(
            response=entry.response,
            matched_key=entry.key,
            score=score,
            match_type=match_type,
            matched_query=entry.original_query,
            provider=entry.provider,
            model=entry.model,
        )

    async def _miss(self, reason: Optional[str] = None) -> CacheMiss:
        try:
            await self._run_io(self.store.record_miss)
        except READ_FAILURES as e:
            self.logger.warning(f"Failed to record cache miss: {e!r}")

        self.logger.debug(f"Cache miss{f' ({reason})' if reason else ''}")
        return CacheMiss(reason=reason)

    async def _run_io(self, func: Callable[..., Any], *args: Any, timeout: Optional[float] = None) -> Any:
        """Run a blocking store call in a worker thread under a timeout.

        A call that times out keeps running in its thread. Commits stay atomic
        because they hold the write lock for their whole duration, which is
        why a timed-out write is reported as pending.
        """
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args),
            timeout=timeout or self.config.io_timeout_seconds,
        )

    async def _run_maintenance(
        self, func: Callable[..., Any], *args: Any, timeout: Optional[float] = None
    ) -> Any:
        try:
            return await self._run_io(func, *args, timeout=timeout)
        except asyncio.TimeoutError:
            raise StorageError(f"Cache maintenance timed out: {func.__name__}")
        except OSError as e:
            raise StorageError(f"Cache maintenance failed: {e}")

    # Everything below runs in worker threads

    def _rebuild(self) -> None:
        """Replay every stored entry into the corpus statistics and the index."""
        with self._write_lock:
            entries = self.store.all_entries()
            replayed = CorpusStatistics.from_texts(entry.normalized_text for entry in entries)
            self.corpus.restore(replayed.snapshot())

            self.index.rebuild(
                (
                    entry.key,
                    entry.term_vector or self.vectorizer.vectorize(entry.tokens),
                    entry.created_at,
                )
                for entry in entries
            )

            try:
                persisted = self.store.load_corpus()
            except StorageError as e:
                self.logger.warning(f"Ignoring unreadable corpus statistics: {e}")
                persisted = None

            if not self.corpus.matches(persisted):
                self.logger.info(
                    f"Rewriting corpus statistics replayed from {len(entries)} entries"
                )
                self._save_corpus()

    def _commit(self, entry: CacheEntry) -> None:
        """Upsert the entry, count it in the corpus and index it as one unit."""
        with self._write_lock:
            # Index membership and corpus membership always agree
            is_new = entry.key not in self.index

            previous = self.store.upsert(entry)
            try:
                if is_new:
                    self.corpus.add_document(entry.tokens)
                self.index.insert(entry.key, entry.term_vector, entry.created_at)
            except Exception as e:
                self._rollback(entry, previous, is_new)
                raise StorageError(f"Cache commit rolled back: {e}") from e

            self._save_corpus()

    def _rollback(
        self, entry: CacheEntry, previous: Optional[CacheEntry], is_new: bool
    ) -> None:
        """Undo a half-applied commit; resync from the store if that fails too."""
        if is_new:
            self.corpus.remove_document(entry.tokens)
            self.index.remove(entry.key)

        try:
            if previous is not None:
                self.store.put(previous)
            else:
                self.store.delete(entry.key)
        except (StorageError, OSError) as e:
            self.logger.warning(f"Rollback of {entry.key[:12]} failed, resyncing: {e}")
            self._resync()

    def _record_hit(self, key: str, now: datetime) -> None:
        # Only the entry's own lock: hits never wait for commits or maintenance
        self.store.touch(key, now)
        self.store.record_hit()

    def _remove(self, key: str) -> bool:
        with self._write_lock:
            removed = self._remove_locked(key)
            if removed:
                self._save_corpus()
            return removed

    def _remove_locked(self, key: str) -> bool:
        """Delete key from the store, then drop it from index and corpus."""
        try:
            entry = self.store.get(key)
        except StorageError:
            entry = None

        removed = self.store.delete(key)

        if key in self.index:
            terms = entry.tokens if entry is not None else list(self.index.get_vector(key) or {})
            self.corpus.remove_document(terms)
            self.index.remove(key)
            removed = True
        return removed

    def _purge(self, now: datetime, max_age: Optional[timedelta]) -> int:
        with self._write_lock:
            expired = self.store.expired_keys(now, max_age)
            removed = sum(1 for key in expired if self._remove_locked(key))
            if removed:
                self._save_corpus()
            return removed

    def _clear(self) -> int:
        with self._write_lock:
            try:
                removed = self.store.clear()
            except StorageError:
                # Part of the store may be gone
                self._resync()
                raise
            self.index.clear()
            self.corpus.reset()
            self._save_corpus()
            return removed

    def _resync(self) -> None:
        """Rebuild index and corpus from the store after a partial failure."""
        try:
            self._rebuild()
        except (StorageError, OSError) as e:
            self.logger.error(f"Cache resync failed, similarity matching disabled: {e}")
            self.index.clear()
            self.corpus.mark_unavailable()

    def _save_corpus(self) -> None:
        try:
            self.store.save_corpus(self.corpus.snapshot())
        except StorageError as e:
            self.logger.warning(f"Failed to persist corpus statistics: {e}")
