# ABOUTME: Unit tests for cache key generation and sparse vector helpers
# ABOUTME: Tests SHA256 key determinism, key validation and cosine similarity edge cases

import hashlib
import math

import pytest

from cache.normalizer import QueryNormalizer
from cache.utils import (
    CacheKeyGenerator,
    clamp_score,
    cosine_similarity,
    dot_product,
    vector_norm,
)


class TestCacheKeyGenerator:
    """Test suite for content-addressed cache keys."""

    def test_key_is_sha256_hex(self) -> None:
        """Test keys are the SHA256 hex digest of the normalized text."""
        generator = CacheKeyGenerator()
        key = generator.generate_key("network mapper port scanner nmap")

        assert key == hashlib.sha256(b"network mapper port scanner nmap").hexdigest()
        assert len(key) == CacheKeyGenerator.key_length

    def test_key_determinism(self) -> None:
        """Test equal inputs give equal keys across generator instances."""
        normalizer = QueryNormalizer()
        text = normalizer.normalize("Show me nmap SYN scan!!!").text

        keys = {CacheKeyGenerator().generate_key(text) for _ in range(3)}
        assert len(keys) == 1

    def test_stable_known_key(self) -> None:
        """Test a fixed input maps to a fixed key across releases."""
        key = CacheKeyGenerator().generate_key("")

        assert key == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_different_text_different_key(self) -> None:
        """Test distinct normalized texts get distinct keys."""
        generator = CacheKeyGenerator()

        assert generator.generate_key("sql injection") != generator.generate_key("sql injections")

    @pytest.mark.parametrize(
        "key,valid",
        [
            ("a" * 64, True),
            ("0123456789abcdef" * 4, True),
            ("A" * 64, False),
            ("a" * 63, False),
            ("../" + "a" * 61, False),
            ("", False),
            (None, False),
        ],
    )
    def test_is_valid_key(self, key: object, valid: bool) -> None:
        """Test key validation accepts only lowercase SHA256 digests."""
        assert CacheKeyGenerator.is_valid_key(key) is valid  # type: ignore[arg-type]


class TestVectorMath:
    """Test suite for sparse vector helpers."""

    def test_vector_norm(self) -> None:
        """Test Euclidean norm."""
        assert vector_norm({"a": 3.0, "b": 4.0}) == 5.0
        assert vector_norm({}) == 0.0

    def test_dot_product(self) -> None:
        """Test dot product only counts shared terms."""
        assert dot_product({"a": 1.0, "b": 2.0}, {"b": 3.0, "c": 4.0}) == 6.0

    def test_identical_vectors(self) -> None:
        """Test identical vectors score 1.0."""
        vector = {"sql": 0.5, "injection": 0.25}

        assert cosine_similarity(vector, vector) == pytest.approx(1.0)

    def test_disjoint_vectors(self) -> None:
        """Test vectors without shared terms score 0.0."""
        assert cosine_similarity({"a": 1.0}, {"b": 1.0}) == 0.0

    def test_empty_vector(self) -> None:
        """Test an empty vector scores 0.0 against anything."""
        assert cosine_similarity({}, {"a": 1.0}) == 0.0
        assert cosine_similarity({}, {}) == 0.0

    def test_partial_overlap(self) -> None:
        """Test cosine of partially overlapping vectors."""
        score = cosine_similarity({"a": 1.0, "b": 1.0}, {"a": 1.0})

        assert score == pytest.approx(1 / math.sqrt(2))

    def test_clamp_score(self) -> None:
        """Test scores are clamped into [0, 1]."""
        assert clamp_score(1.0000000002) == 1.0
        assert clamp_score(-0.1) == 0.0
        assert clamp_score(0.5) == 0.5
