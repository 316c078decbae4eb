from datetime import datetime, timedelta
from typing import Dict, Optional

from pydantic import Field, field_validator

from .base import VersionedModel, ensure_utc


class CacheEntry(VersionedModel):
    key: str = Field(..., description="SHA256 of the normalized query")
    original_query: str = Field(default="", description="Query as the user typed it")
    normalized_text: str = Field(..., description="Canonical query text")
    response: str = Field(..., description="Cached answer payload")
    term_vector: Dict[str, float] = Field(
        default_factory=dict, description="Sparse TF-IDF weights at write time"
    )
    created_at: datetime = Field(..., description="Creation timestamp")
    last_accessed_at: datetime = Field(..., description="Last hit timestamp")
    hit_count: int = Field(default=0, ge=0, description="Lookups served by this entry")
    ttl_expiry: datetime = Field(..., description="Instant after which the entry is stale")
    provider: Optional[str] = Field(default=None, description="Answer provider name")
    model: Optional[str] = Field(default=None, description="Answer model name")

    @field_validator("created_at", "last_accessed_at", "ttl_expiry")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("term_vector")
    @classmethod
    def validate_term_vector(cls, v: Dict[str, float]) -> Dict[str, float]:
        return {term: weight for term, weight in v.items() if weight > 0.0}

    @property
    def tokens(self) -> list:
        return self.normalized_text.split()

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(now) >= self.ttl_expiry

    def is_older_than(self, cutoff: datetime) -> bool:
        return self.created_at <= ensure_utc(cutoff)

    def age(self, now: datetime) -> timedelta:
        return ensure_utc(now) - self.created_at

    def approx_size(self) -> int:
        return len(self.response.encode("utf-8")) + len(
            self.original_query.encode("utf-8")
        )


class CorpusSnapshot(VersionedModel):
    document_count: int = Field(default=0, ge=0)
    document_frequencies: Dict[str, int] = Field(default_factory=dict)


class HitCounters(VersionedModel):
    hits: int = Field(default=0, ge=0)
    misses: int = Field(default=0, ge=0)
