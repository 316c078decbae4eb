from .base import (
    SCHEMA_VERSION,
    CacheBaseModel,
    MatchType,
    VersionedModel,
    ensure_utc,
    utc_now,
    validate_similarity_threshold,
)
from .config import CacheConfig, default_cache_dir
from .entry import CacheEntry, CorpusSnapshot, HitCounters
from .results import (
    AnswerResult,
    CacheHit,
    CacheMiss,
    CacheStats,
    EntrySummary,
    LookupResult,
    StoreStats,
    WriteErr,
    WriteOk,
    WriteResult,
)

__all__ = [
    # Base infrastructure
    "SCHEMA_VERSION",
    "CacheBaseModel",
    "MatchType",
    "VersionedModel",
    "ensure_utc",
    "utc_now",
    "validate_similarity_threshold",

    # Configuration
    "CacheConfig",
    "default_cache_dir",

    # Persisted records
    "CacheEntry",
    "CorpusSnapshot",
    "HitCounters",

    # Boundary results
    "AnswerResult",
    "CacheHit",
    "CacheMiss",
    "CacheStats",
    "EntrySummary",
    "LookupResult",
    "StoreStats",
    "WriteErr",
    "WriteOk",
    "WriteResult",
]
