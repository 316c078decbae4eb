# ABOUTME: Exception hierarchy for the query response cache layer
# ABOUTME: Normalization, storage and vectorizer failures all derive from CacheError


class CacheError(Exception):
    """Base class for every cache-layer failure."""


class NormalizationError(CacheError):
    """Raised when raw query input cannot be turned into text."""


class StorageError(CacheError):
    """Raised on I/O failure, corruption or unsupported schema in a store."""


class VectorizerError(CacheError):
    """Raised when corpus statistics are unavailable for TF-IDF weighting."""
