# ABOUTME: In-memory similarity index of cache keys and TF-IDF vectors with cosine search
# ABOUTME: Linear scan by default, inverted postings as a drop-in optimization

import itertools
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import (
    Collection,
    Dict,
    Iterable,
    Iterator,
    List,
    NamedTuple,
    Optional,
    Tuple,
)

from .utils import TermVector, clamp_score, vector_norm

DEFAULT_SIMILARITY_THRESHOLD = 0.80

Postings = Dict[str, Dict[str, float]]


@dataclass(frozen=True)
class SimilarityMatch:
    """Best index entry for a query vector."""

    key: str
    score: float


@dataclass(frozen=True)
class IndexedVector:
    key: str
    vector: Dict[str, float]
    norm: float
    created: float
    sequence: int


class IndexState(NamedTuple):
    entries: Dict[str, IndexedVector]
    postings: Postings


class SimilarityIndex:
    """Cosine-similarity index scanned linearly.

    The index is never the source of truth: it is rebuilt from the store at
    startup and kept in lockstep with it by the cache manager. Writers copy the
    current state, modify the copy and publish it under a lock, so searches
    read one consistent snapshot without waiting.
    """

    def __init__(self) -> None:
        self._state = IndexState(entries={}, postings={})
        self._lock = threading.Lock()
        self._sequence = itertools.count()

    def insert(
        self, key: str, vector: TermVector, created_at: Optional[datetime] = None
    ) -> None:
        """Insert or replace the vector stored for key."""
        item = self._make_item(key, vector, created_at)
        with self._lock:
            entries = dict(self._state.entries)
            postings = self._copy_postings(self._state, key, item)
            self._discard(entries, postings, key)
            self._add(entries, postings, item)
            self._state = IndexState(entries=entries, postings=postings)

    def remove(self, key: str) -> bool:
        """Remove key; returns False if it was not indexed."""
        with self._lock:
            if key not in self._state.entries:
                return False
            entries = dict(self._state.entries)
            postings = self._copy_postings(self._state, key, None)
            self._discard(entries, postings, key)
            self._state = IndexState(entries=entries, postings=postings)
            return True

    def search(
        self,
        vector: TermVector,
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        exclude: Optional[Collection[str]] = None,
    ) -> Optional[SimilarityMatch]:
        """Return the best match with score >= threshold, or None.

        Highest score wins; exact score ties go to the most recently created
        entry. Keys in ``exclude`` are skipped, so callers can step past
        candidates they found stale.
        """
        state = self._state
        if not state.entries:
            return None

        query = {term: weight for term, weight in vector.items() if weight > 0.0}
        query_norm = vector_norm(query)
        skipped = exclude or ()

        best: Optional[IndexedVector] = None
        best_rank: Tuple[float, float, int] = (-1.0, 0.0, -1)
        for item, score in self._scored(state, query, query_norm, threshold):
            if score < threshold or item.key in skipped:
                continue
            rank = (score, item.created, item.sequence)
            if rank > best_rank:
                best, best_rank = item, rank

        if best is None:
            return None
        return SimilarityMatch(key=best.key, score=best_rank[0])

    def rebuild(
        self, items: Iterable[Tuple[str, TermVector, Optional[datetime]]]
    ) -> None:
        """Replace the whole index with the given (key, vector, created_at) items."""
        entries: Dict[str, IndexedVector] = {}
        postings: Postings = {}
        for key, vector, created_at in items:
            item = self._make_item(key, vector, created_at)
            self._discard(entries, postings, key)
            self._add(entries, postings, item)
        with self._lock:
            self._state = IndexState(entries=entries, postings=postings)

    def clear(self) -> None:
        with self._lock:
            self._state = IndexState(entries={}, postings={})

    def get_vector(self, key: str) -> Optional[TermVector]:
        item = self._state.entries.get(key)
        return dict(item.vector) if item else None

    def keys(self) -> List[str]:
        return list(self._state.entries)

    def __len__(self) -> int:
        return len(self._state.entries)

    def __contains__(self, key: object) -> bool:
        return key in self._state.entries

    def _scored(
        self,
        state: IndexState,
        query: Dict[str, float],
        query_norm: float,
        threshold: float,
    ) -> Iterator[Tuple[IndexedVector, float]]:
        """Yield every entry with its cosine score against the query."""
        for item in state.entries.values():
            yield item, self._cosine(query, query_norm, item)

    @staticmethod
    def _cosine(
        query: Dict[str, float], query_norm: float, item: IndexedVector
    ) -> float:
        if query_norm == 0.0 or item.norm == 0.0:
            return 0.0
        dot = sum(weight * item.vector.get(term, 0.0) for term, weight in query.items())
        return clamp_score(dot / (query_norm * item.norm))

    def _make_item(
        self, key: str, vector: TermVector, created_at: Optional[datetime]
    ) -> IndexedVector:
        return IndexedVector(
            key=key,
            vector=dict(vector),
            norm=vector_norm(vector),
            created=created_at.timestamp() if created_at else time.time(),
            sequence=next(self._sequence),
        )

    def _copy_postings(
        self, state: IndexState, key: str, item: Optional[IndexedVector]
    ) -> Postings:
        """Copy whatever postings a change to key touches; linear scan has none."""
        return state.postings

    def _add(
        self, entries: Dict[str, IndexedVector], postings: Postings, item: IndexedVector
    ) -> None:
        entries[item.key] = item

    def _discard(
        self, entries: Dict[str, IndexedVector], postings: Postings, key: str
    ) -> None:
        entries.pop(key, None)


class InvertedSimilarityIndex(SimilarityIndex):
    """Similarity index that only scores entries sharing a term with the query.

    Postings map each term to the weights of the entries containing it, so a
    search touches the query's postings instead of every entry.
    """

    def _scored(
        self,
        state: IndexState,
        query: Dict[str, float],
        query_norm: float,
        threshold: float,
    ) -> Iterator[Tuple[IndexedVector, float]]:
        # With a non-positive threshold even non-overlapping entries qualify
        if threshold <= 0.0 or query_norm == 0.0:
            yield from super()._scored(state, query, query_norm, threshold)
            return

        dots: Dict[str, float] = {}
        for term, weight in query.items():
            for key, entry_weight in state.postings.get(term, {}).items():
                dots[key] = dots.get(key, 0.0) + weight * entry_weight

        for key, dot in dots.items():
            item = state.entries[key]
            if item.norm == 0.0:
                continue
            yield item, clamp_score(dot / (query_norm * item.norm))

    def _copy_postings(
        self, state: IndexState, key: str, item: Optional[IndexedVector]
    ) -> Postings:
        postings = dict(state.postings)
        touched = set(item.vector) if item else set()
        previous = state.entries.get(key)
        if previous is not None:
            touched.update(previous.vector)
        for term in touched:
            if term in postings:
                postings[term] = dict(postings[term])
        return postings

    def _add(
        self, entries: Dict[str, IndexedVector], postings: Postings, item: IndexedVector
    ) -> None:
        entries[item.key] = item
        for term, weight in item.vector.items():
            if weight > 0.0:
                postings.setdefault(term, {})[item.key] = weight

    def _discard(
        self, entries: Dict[str, IndexedVector], postings: Postings, key: str
    ) -> None:
        item = entries.pop(key, None)
        if item is None:
            return
        for term in item.vector:
            posting = postings.get(term)
            if posting is None:
                continue
            posting.pop(key, None)
            if not posting:
                del postings[term]


INDEX_BACKENDS = {
    "linear": SimilarityIndex,
    "inverted": InvertedSimilarityIndex,
}


def create_index(backend: str = "linear") -> SimilarityIndex:
    """Build an empty index for the named backend."""
    if backend not in INDEX_BACKENDS:
        raise ValueError(f"Unknown index backend: {backend}")
    return INDEX_BACKENDS[backend]()
