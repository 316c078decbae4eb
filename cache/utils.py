# ABOUTME: Cache utilities for deterministic key generation and sparse vector math
# ABOUTME: SHA256 content keys over normalized text plus cosine similarity helpers

import hashlib
import math
import re
from typing import Dict, Mapping

TermVector = Dict[str, float]

KEY_PATTERN = re.compile(r"^[0-9a-f]{64}$")


class CacheKeyGenerator:
    """Generates stable cache keys from normalized query text."""

    key_length = 64

    def generate_key(self, normalized_text: str) -> str:
        """Generate SHA256 cache key from normalized text."""
        return hashlib.sha256(normalized_text.encode("utf-8")).hexdigest()

    @staticmethod
    def is_valid_key(key: str) -> bool:
        """Check that a key is a lowercase SHA256 hex digest."""
        return isinstance(key, str) and bool(KEY_PATTERN.match(key))


def vector_norm(vector: Mapping[str, float]) -> float:
    """Euclidean norm of a sparse vector."""
    return math.sqrt(sum(weight * weight for weight in vector.values()))


def dot_product(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    """Dot product of two sparse vectors, iterating the smaller one."""
    if len(a) > len(b):
        a, b = b, a
    return sum(weight * b.get(term, 0.0) for term, weight in a.items())


def cosine_similarity(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    """Cosine similarity of two sparse vectors; 0.0 when either is empty."""
    norm_a = vector_norm(a)
    norm_b = vector_norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return clamp_score(dot_product(a, b) / (norm_a * norm_b))


def clamp_score(score: float) -> float:
    """Clamp a similarity score into [0, 1] to absorb float rounding."""
    return max(0.0, min(1.0, score))
