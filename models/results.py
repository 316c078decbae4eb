from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import Field

from .base import CacheBaseModel, MatchType


class CacheHit(CacheBaseModel):
    hit: Literal[True] = True
    response: str = Field(..., description="Cached answer")
    matched_key: str = Field(..., description="Key of the entry that served the hit")
    score: float = Field(..., ge=0.0, le=1.0, description="1.0 for exact hits")
    match_type: MatchType = Field(..., description="Exact or similar match")
    matched_query: str = Field(default="", description="Original query of the entry")
    provider: Optional[str] = None
    model: Optional[str] = None


class CacheMiss(CacheBaseModel):
    hit: Literal[False] = False
    reason: Optional[str] = Field(
        default=None, description="Why the lookup degraded, if it did"
    )


LookupResult = Union[CacheHit, CacheMiss]


class WriteOk(CacheBaseModel):
    ok: Literal[True] = True
    key: str


class WriteErr(CacheBaseModel):
    ok: Literal[False] = False
    reason: str
    pending: bool = Field(
        default=False, description="The commit timed out but may still complete"
    )


WriteResult = Union[WriteOk, WriteErr]


class AnswerResult(CacheBaseModel):
    response: str
    from_cache: bool
    lookup: LookupResult
    write: Optional[WriteResult] = None


class EntrySummary(CacheBaseModel):
    key: str
    normalized_text: str
    original_query: str = ""
    created_at: datetime
    last_accessed_at: datetime
    hit_count: int = Field(default=0, ge=0)


class StoreStats(CacheBaseModel):
    count: int = Field(default=0, ge=0)
    total_hits: int = Field(default=0, ge=0)
    total_misses: int = Field(default=0, ge=0)
    approx_size: int = Field(default=0, ge=0)
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None


class CacheStats(CacheBaseModel):
    entry_count: int = Field(default=0, ge=0)
    size_bytes: int = Field(default=0, ge=0)
    hit_count: int = Field(default=0, ge=0)
    miss_count: int = Field(default=0, ge=0)
    hit_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None
    indexed_entries: int = Field(default=0, ge=0)
