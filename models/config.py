import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import Field, field_validator

from .base import CacheBaseModel, validate_similarity_threshold

APP_DIR_NAME = "semcache"


def default_cache_dir() -> Path:
    base = os.environ.get("XDG_CACHE_HOME")
    root = Path(base) if base else Path.home() / ".cache"
    return root / APP_DIR_NAME


class CacheConfig(CacheBaseModel):
    enabled: bool = Field(default=True, description="Master switch for the cache")
    ttl_days: int = Field(default=30, ge=1, description="Entry time-to-live in days")
    similarity_threshold: float = Field(
        default=0.80, description="Minimum cosine score for a similar hit"
    )
    cache_dir: Path = Field(
        default_factory=default_cache_dir, description="Directory of the disk store"
    )
    io_timeout_seconds: float = Field(
        default=2.0, gt=0.0, description="Timeout for a single store operation"
    )
    rebuild_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Timeout for rebuilding the index at startup"
    )
    compression_enabled: bool = Field(default=True, description="zstd-compress entries")
    index_backend: Literal["linear", "inverted"] = Field(
        default="linear", description="Similarity index implementation"
    )
    abbreviations_path: Optional[Path] = Field(
        default=None, description="JSON abbreviation table replacing the built-in one"
    )
    stopwords_path: Optional[Path] = Field(
        default=None, description="JSON stopword list replacing the built-in one"
    )

    @field_validator("similarity_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        return validate_similarity_threshold(v)

    @field_validator("cache_dir")
    @classmethod
    def validate_cache_dir(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @field_validator("abbreviations_path", "stopwords_path")
    @classmethod
    def validate_table_path(cls, v: Optional[Path]) -> Optional[Path]:
        return Path(v).expanduser() if v is not None else None

    @classmethod
    def from_settings(cls, settings: Optional[Mapping[str, Any]] = None) -> "CacheConfig":
        """Build from externally loaded settings.

        Accepts either a nested ``{"cache": {...}}`` section or dotted keys such
        as ``{"cache.ttl_days": 30}``. Keys outside the cache section and unknown
        cache keys are ignored.
        """
        settings = settings or {}
        values: Dict[str, Any] = {}

        section = settings.get("cache")
        if isinstance(section, Mapping):
            values.update(section)

        for key, value in settings.items():
            if isinstance(key, str) and key.startswith("cache."):
                values[key[len("cache."):]] = value

        known = {name: value for name, value in values.items() if name in cls.model_fields}
        return cls(**known)
