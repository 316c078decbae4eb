# ABOUTME: Query response cache package with exact and similarity-based lookup
# ABOUTME: Includes query normalization, TF-IDF index, compressed disk store and memory store

from .disk import DiskStore
from .errors import CacheError, NormalizationError, StorageError, VectorizerError
from .index import InvertedSimilarityIndex, SimilarityIndex, SimilarityMatch, create_index
from .manager import CacheManager
from .memory import MemoryStore
from .normalizer import NormalizedQuery, QueryNormalizer
from .store import BaseStore
from .tables import (
    DEFAULT_ABBREVIATIONS,
    DEFAULT_STOPWORDS,
    AbbreviationTable,
    StopwordSet,
    load_abbreviation_table,
    load_stopword_set,
)
from .utils import CacheKeyGenerator, cosine_similarity
from .vectorizer import CorpusStatistics, TfidfVectorizer

__all__ = [
    "CacheManager",
    "BaseStore",
    "DiskStore",
    "MemoryStore",
    "QueryNormalizer",
    "NormalizedQuery",
    "AbbreviationTable",
    "StopwordSet",
    "DEFAULT_ABBREVIATIONS",
    "DEFAULT_STOPWORDS",
    "load_abbreviation_table",
    "load_stopword_set",
    "CacheKeyGenerator",
    "cosine_similarity",
    "CorpusStatistics",
    "TfidfVectorizer",
    "SimilarityIndex",
    "InvertedSimilarityIndex",
    "SimilarityMatch",
    "create_index",
    "CacheError",
    "NormalizationError",
    "StorageError",
    "VectorizerError",
]
