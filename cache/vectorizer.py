# ABOUTME: TF-IDF vectorizer backed by incrementally maintained corpus statistics
# ABOUTME: Document frequencies track cached normalized queries and replay from the store

import math
import threading
from collections import Counter
from typing import Dict, Iterable, Optional, Sequence

from models import CorpusSnapshot

from .errors import VectorizerError
from .utils import TermVector


class CorpusStatistics:
    """Thread-safe document counts over the cached normalized queries.

    Each cached entry contributes one document made of its unique terms.
    Statistics always equal a replay of the entries currently in the store:
    writes of new keys add a document, removals subtract it.
    """

    def __init__(self) -> None:
        self.document_count = 0
        self.document_frequencies: Dict[str, int] = {}
        self.available = True
        self._lock = threading.RLock()

    @classmethod
    def from_texts(cls, texts: Iterable[str]) -> "CorpusStatistics":
        """Rebuild statistics by replaying normalized texts."""
        corpus = cls()
        for text in texts:
            corpus.add_document(text.split())
        return corpus

    @classmethod
    def from_snapshot(cls, snapshot: CorpusSnapshot) -> "CorpusStatistics":
        corpus = cls()
        corpus.restore(snapshot)
        return corpus

    def restore(self, snapshot: CorpusSnapshot) -> None:
        """Replace the statistics in place and mark them available."""
        with self._lock:
            self.document_count = snapshot.document_count
            self.document_frequencies = dict(snapshot.document_frequencies)
            self.available = True

    def add_document(self, terms: Iterable[str]) -> None:
        with self._lock:
            self.document_count += 1
            for term in set(terms):
                self.document_frequencies[term] = (
                    self.document_frequencies.get(term, 0) + 1
                )

    def remove_document(self, terms: Iterable[str]) -> None:
        with self._lock:
            self.document_count = max(0, self.document_count - 1)
            for term in set(terms):
                remaining = self.document_frequencies.get(term, 0) - 1
                if remaining > 0:
                    self.document_frequencies[term] = remaining
                else:
                    self.document_frequencies.pop(term, None)

    def reset(self) -> None:
        with self._lock:
            self.document_count = 0
            self.document_frequencies = {}
            self.available = True

    def mark_unavailable(self) -> None:
        with self._lock:
            self.available = False

    def idf(self, term: str) -> float:
        """Smoothed inverse document frequency, always >= 1 for df <= N."""
        with self._lock:
            df = self.document_frequencies.get(term, 0)
            return math.log((self.document_count + 1) / (df + 1)) + 1.0

    def idf_many(self, terms: Iterable[str]) -> Dict[str, float]:
        """Idf for several terms read from one consistent corpus state."""
        with self._lock:
            return {term: self.idf(term) for term in terms}

    def snapshot(self) -> CorpusSnapshot:
        with self._lock:
            return CorpusSnapshot(
                document_count=self.document_count,
                document_frequencies=dict(self.document_frequencies),
            )

    def matches(self, snapshot: Optional[CorpusSnapshot]) -> bool:
        """Check whether a persisted snapshot agrees with these statistics."""
        if snapshot is None:
            return False
        with self._lock:
            return (
                snapshot.document_count == self.document_count
                and snapshot.document_frequencies == self.document_frequencies
            )


class TfidfVectorizer:
    """Builds sparse TF-IDF vectors from normalized token streams."""

    def __init__(self, corpus: CorpusStatistics):
        self.corpus = corpus

    def vectorize(self, tokens: Sequence[str]) -> TermVector:
        """Return term -> tf * idf, omitting zero weights."""
        if not self.corpus.available:
            raise VectorizerError("Corpus statistics are unavailable")

        if not tokens:
            return {}

        counts = Counter(tokens)
        total = len(tokens)

        idf = self.corpus.idf_many(counts)
        vector = {term: (count / total) * idf[term] for term, count in counts.items()}

        return {term: weight for term, weight in vector.items() if weight > 0.0}
