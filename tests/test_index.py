# ABOUTME: Unit tests for the cosine similarity index and its inverted-postings variant
# ABOUTME: Tests threshold search, tie-breaking, removal, rebuild and backend parity

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Tuple

import pytest

from cache.index import (
    InvertedSimilarityIndex,
    SimilarityIndex,
    SimilarityMatch,
    create_index,
)

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)

SAMPLE_VECTORS: List[Tuple[str, Dict[str, float]]] = [
    ("k1", {"sql": 0.5, "injection": 0.5}),
    ("k2", {"sql": 0.4, "injection": 0.4, "bypass": 0.6}),
    ("k3", {"reverse": 0.5, "shell": 0.5}),
    ("k4", {"reverse": 0.3, "shell": 0.3, "python": 0.7}),
    ("k5", {"nmap": 0.9, "scan": 0.2}),
    ("k6", {"nmap": 0.2, "scan": 0.9, "sql": 0.1}),
]


@pytest.fixture(params=["linear", "inverted"])
def index(request: pytest.FixtureRequest) -> SimilarityIndex:
    return create_index(request.param)


class TestSimilarityIndex:
    """Test suite shared by both index backends."""

    def test_empty_index(self, index: SimilarityIndex) -> None:
        """Test searching an empty index finds nothing."""
        assert index.search({"sql": 1.0}, 0.8) is None
        assert len(index) == 0

    def test_identical_vector_scores_one(self, index: SimilarityIndex) -> None:
        """Test a stored vector matches itself with score 1.0."""
        index.insert("k1", {"sql": 0.5, "injection": 0.5})
        match = index.search({"sql": 0.5, "injection": 0.5}, 0.8)

        assert match is not None
        assert match.key == "k1"
        assert match.score == pytest.approx(1.0)

    def test_threshold_is_inclusive(self, index: SimilarityIndex) -> None:
        """Test a score equal to the threshold is a match."""
        index.insert("k1", {"a": 1.0})
        match = index.search({"a": 1.0}, 1.0)

        assert match is not None

    def test_below_threshold(self, index: SimilarityIndex) -> None:
        """Test matches under the threshold are rejected."""
        index.insert("k1", {"a": 1.0, "b": 1.0})

        assert index.search({"a": 1.0}, 0.8) is None
        assert index.search({"a": 1.0}, 0.7) is not None

    def test_best_match_wins(self, index: SimilarityIndex) -> None:
        """Test the highest scoring entry is returned."""
        for key, vector in SAMPLE_VECTORS:
            index.insert(key, vector)

        match = index.search({"sql": 0.5, "injection": 0.5, "bypass": 0.1}, 0.5)

        assert match is not None
        assert match.key == "k1"

    def test_excluded_keys_skipped(self, index: SimilarityIndex) -> None:
        """Test excluded keys give way to the next best match above threshold."""
        for key, vector in SAMPLE_VECTORS:
            index.insert(key, vector)
        query = {"sql": 0.5, "injection": 0.5, "bypass": 0.1}

        match = index.search(query, 0.5, exclude={"k1"})

        assert match is not None
        assert match.key == "k2"
        assert index.search(query, 0.5, exclude={"k1", "k2"}) is None

    def test_tie_goes_to_newest_entry(self, index: SimilarityIndex) -> None:
        """Test exact score ties resolve to the most recently created entry."""
        vector = {"sql": 1.0}
        index.insert("newer", vector, BASE_TIME + timedelta(days=1))
        index.insert("older", vector, BASE_TIME)

        match = index.search(vector, 0.8)

        assert match is not None
        assert match.key == "newer"

    def test_tie_with_equal_timestamps_goes_to_last_insert(self, index: SimilarityIndex) -> None:
        """Test insertion order breaks ties between equal timestamps."""
        vector = {"sql": 1.0}
        index.insert("first", vector, BASE_TIME)
        index.insert("second", vector, BASE_TIME)

        match = index.search(vector, 0.8)

        assert match is not None
        assert match.key == "second"

    def test_insert_replaces_vector(self, index: SimilarityIndex) -> None:
        """Test reinserting a key replaces its vector."""
        index.insert("k1", {"sql": 1.0})
        index.insert("k1", {"xss": 1.0})

        assert len(index) == 1
        assert index.search({"sql": 1.0}, 0.5) is None
        assert index.search({"xss": 1.0}, 0.5) == SimilarityMatch(key="k1", score=1.0)

    def test_remove(self, index: SimilarityIndex) -> None:
        """Test removed keys are no longer found."""
        index.insert("k1", {"sql": 1.0})

        assert index.remove("k1") is True
        assert index.remove("k1") is False
        assert "k1" not in index
        assert index.search({"sql": 1.0}, 0.5) is None

    def test_zero_query_never_matches(self, index: SimilarityIndex) -> None:
        """Test an empty query vector scores 0 against everything."""
        index.insert("k1", {"sql": 1.0})

        assert index.search({}, 0.8) is None

    def test_zero_threshold_accepts_any_entry(self, index: SimilarityIndex) -> None:
        """Test a zero threshold returns an entry even without overlap."""
        index.insert("k1", {"sql": 1.0})
        match = index.search({"xss": 1.0}, 0.0)

        assert match is not None
        assert match.score == 0.0

    def test_rebuild_replaces_contents(self, index: SimilarityIndex) -> None:
        """Test rebuild discards previous entries."""
        index.insert("old", {"sql": 1.0})
        index.rebuild(
            (key, vector, BASE_TIME) for key, vector in SAMPLE_VECTORS
        )

        assert "old" not in index
        assert sorted(index.keys()) == [key for key, _ in SAMPLE_VECTORS]

    def test_clear(self, index: SimilarityIndex) -> None:
        """Test clear empties the index."""
        index.insert("k1", {"sql": 1.0})
        index.clear()

        assert len(index) == 0
        assert index.search({"sql": 1.0}, 0.0) is None

    def test_get_vector_is_copy(self, index: SimilarityIndex) -> None:
        """Test callers cannot mutate stored vectors."""
        index.insert("k1", {"sql": 1.0})
        vector = index.get_vector("k1")
        assert vector == {"sql": 1.0}

        vector["xss"] = 1.0
        assert index.get_vector("k1") == {"sql": 1.0}
        assert index.get_vector("missing") is None

    def test_concurrent_inserts(self, index: SimilarityIndex) -> None:
        """Test inserts from several threads are all kept."""

        def insert_many(prefix: str) -> None:
            for i in range(50):
                index.insert(f"{prefix}-{i}", {f"term{i}": 1.0, prefix: 0.5})

        threads = [threading.Thread(target=insert_many, args=(f"t{n}",)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(index) == 200
        match = index.search({"term7": 1.0, "t2": 0.5}, 0.99)
        assert match is not None
        assert match.key == "t2-7"


class TestBackendParity:
    """Test the inverted index returns what the linear scan returns."""

    QUERIES = [
        {"sql": 1.0},
        {"sql": 0.5, "injection": 0.5, "bypass": 0.3},
        {"reverse": 0.2, "shell": 0.2, "python": 0.9},
        {"nmap": 0.5, "scan": 0.5},
        {"unrelated": 1.0},
        {},
    ]

    @pytest.mark.parametrize("threshold", [0.0, 0.3, 0.5, 0.8, 0.95])
    def test_same_results(self, threshold: float) -> None:
        """Test both backends agree on every query and threshold."""
        linear = SimilarityIndex()
        inverted = InvertedSimilarityIndex()
        for offset, (key, vector) in enumerate(SAMPLE_VECTORS):
            created = BASE_TIME + timedelta(minutes=offset)
            linear.insert(key, vector, created)
            inverted.insert(key, vector, created)

        for query in self.QUERIES:
            expected = linear.search(query, threshold)
            actual = inverted.search(query, threshold)
            if expected is None:
                assert actual is None
            else:
                assert actual is not None
                assert actual.key == expected.key
                assert actual.score == pytest.approx(expected.score)

    def test_postings_cleaned_on_remove(self) -> None:
        """Test removed keys leave no postings behind."""
        index = InvertedSimilarityIndex()
        index.insert("k1", {"sql": 1.0, "injection": 1.0})
        index.insert("k2", {"sql": 1.0})
        index.remove("k1")

        state = index._state
        assert "injection" not in state.postings
        assert state.postings["sql"] == {"k2": 1.0}


def test_unknown_backend() -> None:
    """Test unknown backend names are rejected."""
    with pytest.raises(ValueError):
        create_index("annoy")
