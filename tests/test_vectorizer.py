# ABOUTME: Unit tests for corpus statistics and TF-IDF vectorization
# ABOUTME: Tests idf smoothing, incremental updates, replay equivalence and unavailability

import math

import pytest

from cache.errors import VectorizerError
from cache.vectorizer import CorpusStatistics, TfidfVectorizer
from models import CorpusSnapshot


class TestCorpusStatistics:
    """Test suite for document frequency bookkeeping."""

    def test_empty_corpus_idf(self) -> None:
        """Test every term has idf 1.0 in an empty corpus."""
        corpus = CorpusStatistics()

        assert corpus.idf("anything") == pytest.approx(1.0)

    def test_idf_formula(self) -> None:
        """Test idf = ln((N + 1) / (df + 1)) + 1."""
        corpus = CorpusStatistics.from_texts(["sql injection", "reverse shell"])

        assert corpus.document_count == 2
        assert corpus.idf("sql") == pytest.approx(math.log(3 / 2) + 1)
        assert corpus.idf("unseen") == pytest.approx(math.log(3) + 1)

    def test_idf_stays_positive(self) -> None:
        """Test a term present in every document still has positive idf."""
        corpus = CorpusStatistics.from_texts(["nmap scan", "nmap ping", "nmap os"])

        assert corpus.idf("nmap") == pytest.approx(1.0)

    def test_repeated_terms_count_once(self) -> None:
        """Test a document contributes each term once."""
        corpus = CorpusStatistics()
        corpus.add_document(["nmap", "nmap", "scan"])

        assert corpus.document_frequencies == {"nmap": 1, "scan": 1}

    def test_remove_reverses_add(self) -> None:
        """Test removing a document restores the previous statistics."""
        corpus = CorpusStatistics.from_texts(["sql injection"])
        before = corpus.snapshot()

        corpus.add_document(["reverse", "shell", "sql"])
        corpus.remove_document(["reverse", "shell", "sql"])

        assert corpus.matches(before)
        assert "reverse" not in corpus.document_frequencies

    def test_incremental_equals_replay(self) -> None:
        """Test incremental updates equal a replay of the surviving texts."""
        texts = ["sql injection", "sql injection union", "reverse shell", "nmap scan"]
        corpus = CorpusStatistics()
        for text in texts:
            corpus.add_document(text.split())
        corpus.remove_document("reverse shell".split())

        replayed = CorpusStatistics.from_texts(
            [text for text in texts if text != "reverse shell"]
        )
        assert corpus.matches(replayed.snapshot())

    def test_snapshot_round_trip(self) -> None:
        """Test snapshots restore equal statistics."""
        corpus = CorpusStatistics.from_texts(["sql injection", "xss payload"])
        restored = CorpusStatistics.from_snapshot(corpus.snapshot())

        assert restored.document_count == 2
        assert restored.document_frequencies == corpus.document_frequencies
        assert restored.available

    def test_matches_rejects_missing_and_different(self) -> None:
        """Test snapshot comparison."""
        corpus = CorpusStatistics.from_texts(["sql injection"])

        assert not corpus.matches(None)
        assert not corpus.matches(CorpusSnapshot(document_count=1, document_frequencies={}))

    def test_reset(self) -> None:
        """Test reset empties statistics and makes them available."""
        corpus = CorpusStatistics.from_texts(["sql injection"])
        corpus.mark_unavailable()
        corpus.reset()

        assert corpus.document_count == 0
        assert corpus.document_frequencies == {}
        assert corpus.available

    def test_remove_never_negative(self) -> None:
        """Test removing from an empty corpus stays at zero."""
        corpus = CorpusStatistics()
        corpus.remove_document(["ghost"])

        assert corpus.document_count == 0
        assert corpus.document_frequencies == {}


class TestTfidfVectorizer:
    """Test suite for sparse TF-IDF vectors."""

    def test_term_frequency(self) -> None:
        """Test tf is count over total tokens."""
        vectorizer = TfidfVectorizer(CorpusStatistics())
        vector = vectorizer.vectorize(["sql", "sql", "injection"])

        assert vector == pytest.approx({"sql": 2 / 3, "injection": 1 / 3})

    def test_weights_use_idf(self) -> None:
        """Test rare terms outweigh common ones."""
        corpus = CorpusStatistics.from_texts(["sql injection", "sql union"])
        vector = TfidfVectorizer(corpus).vectorize(["sql", "bypass"])

        assert vector["bypass"] > vector["sql"]
        assert vector["sql"] == pytest.approx(0.5 * (math.log(3 / 3) + 1))

    def test_empty_tokens(self) -> None:
        """Test no tokens give an empty vector."""
        assert TfidfVectorizer(CorpusStatistics()).vectorize([]) == {}

    def test_all_weights_positive(self) -> None:
        """Test the sparse vector never carries zero weights."""
        corpus = CorpusStatistics.from_texts(["a b", "a c", "a d"])
        vector = TfidfVectorizer(corpus).vectorize(["a", "b", "e"])

        assert all(weight > 0.0 for weight in vector.values())
        assert set(vector) == {"a", "b", "e"}

    def test_unavailable_corpus_raises(self) -> None:
        """Test vectorizing without corpus statistics raises VectorizerError."""
        corpus = CorpusStatistics()
        corpus.mark_unavailable()

        with pytest.raises(VectorizerError):
            TfidfVectorizer(corpus).vectorize(["nmap"])

    def test_vectors_follow_corpus_updates(self) -> None:
        """Test the same tokens weigh differently as the corpus grows."""
        corpus = CorpusStatistics()
        vectorizer = TfidfVectorizer(corpus)
        before = vectorizer.vectorize(["nmap", "scan"])

        corpus.add_document(["nmap", "ping"])
        after = vectorizer.vectorize(["nmap", "scan"])

        assert after["nmap"] < after["scan"]
        assert before["nmap"] == before["scan"]
