from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator

SCHEMA_VERSION = 1


class MatchType(str, Enum):
    EXACT = "exact"
    SIMILAR = "similar"


class CacheBaseModel(BaseModel):
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)


class VersionedModel(CacheBaseModel):
    schema_version: int = SCHEMA_VERSION

    @field_validator("schema_version")
    @classmethod
    def validate_schema_version(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Schema version must be positive")
        return v


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_similarity_threshold(threshold: float) -> float:
    if not 0.0 <= threshold <= 1.0:
        raise ValueError("Similarity threshold must be between 0.0 and 1.0")
    return threshold
