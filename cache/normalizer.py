# ABOUTME: Query normalizer producing canonical token streams for cache keys and vectors
# ABOUTME: Lowercases, strips punctuation, expands abbreviations and removes stopwords

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .errors import NormalizationError
from .tables import (
    DEFAULT_ABBREVIATIONS,
    DEFAULT_STOPWORDS,
    AbbreviationTable,
    StopwordSet,
    load_abbreviation_table,
    load_stopword_set,
    split_terms,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizedQuery:
    """Canonical form of a raw query."""

    original: str
    text: str
    tokens: Tuple[str, ...]

    @property
    def is_empty(self) -> bool:
        return not self.tokens


class QueryNormalizer:
    """Turns raw query text into a canonical, idempotent token stream.

    Steps run in a fixed order: lowercase, strip punctuation, tokenize,
    expand abbreviations, drop stopwords, join on single spaces. A run of
    tokens that already spells out an expansion phrase is kept verbatim, so
    normalizing normalized text is a no-op.
    """

    def __init__(
        self,
        abbreviations: Optional[AbbreviationTable] = None,
        stopwords: Optional[StopwordSet] = None,
    ):
        self.abbreviations = abbreviations if abbreviations is not None else DEFAULT_ABBREVIATIONS
        self.stopwords = stopwords if stopwords is not None else DEFAULT_STOPWORDS
        self._expanded_runs = self._build_expanded_runs()

    @classmethod
    def from_files(
        cls,
        abbreviations_path: Optional[Union[str, Path]] = None,
        stopwords_path: Optional[Union[str, Path]] = None,
    ) -> "QueryNormalizer":
        """Build a normalizer from JSON table files.

        A missing or malformed file is logged and the built-in table is used
        in its place.
        """
        abbreviations = None
        if abbreviations_path is not None:
            try:
                abbreviations = load_abbreviation_table(abbreviations_path)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(
                    f"Cannot load abbreviations from {abbreviations_path}, using defaults: {e!r}"
                )

        stopwords = None
        if stopwords_path is not None:
            try:
                stopwords = load_stopword_set(stopwords_path)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(
                    f"Cannot load stopwords from {stopwords_path}, using defaults: {e!r}"
                )

        return cls(abbreviations=abbreviations, stopwords=stopwords)

    def normalize(self, raw: Union[str, bytes]) -> NormalizedQuery:
        """Normalize raw query text (or bytes) into a NormalizedQuery."""
        original = self._coerce_text(raw)
        terms = split_terms(original)

        # Plain stopwords go first so expansion runs line up on a second pass
        terms = tuple(
            term
            for term in terms
            if term in self.abbreviations or term not in self.stopwords
        )
        expanded = self._expand(terms)
        tokens = tuple(term for term in expanded if term not in self.stopwords)

        return NormalizedQuery(original=original, text=" ".join(tokens), tokens=tokens)

    def _expand(self, terms: Sequence[str]) -> List[str]:
        """Replace abbreviations with their expansion phrases."""
        output: List[str] = []
        position = 0

        while position < len(terms):
            term = terms[position]

            run = self._match_expanded_run(terms, position)
            if run:
                output.extend(run)
                position += len(run)
                continue

            expansion = self.abbreviations.get(term)
            if expansion is not None:
                output.extend(expansion)
            else:
                output.append(term)
            position += 1

        return output

    def _match_expanded_run(
        self, terms: Sequence[str], position: int
    ) -> Optional[Tuple[str, ...]]:
        """Return the longest already-expanded phrase starting at position."""
        for run in self._expanded_runs.get(terms[position], ()):
            if tuple(terms[position : position + len(run)]) == run:
                return run
        return None

    def _build_expanded_runs(self) -> Dict[str, List[Tuple[str, ...]]]:
        """Index stopword-stripped expansion phrases by their first term."""
        runs: Dict[str, List[Tuple[str, ...]]] = {}
        for _, phrase in self.abbreviations.items():
            stripped = tuple(term for term in phrase if term not in self.stopwords)
            if not stripped:
                continue
            candidates = runs.setdefault(stripped[0], [])
            if stripped not in candidates:
                candidates.append(stripped)

        for candidates in runs.values():
            candidates.sort(key=len, reverse=True)
        return runs

    def _coerce_text(self, raw: Union[str, bytes]) -> str:
        """Decode raw input, falling back to lossy decoding on bad encodings."""
        if isinstance(raw, (bytes, bytearray)):
            try:
                return bytes(raw).decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning(f"Query is not valid UTF-8, decoding with replacement: {e}")
                return bytes(raw).decode("utf-8", errors="replace")

        if not isinstance(raw, str):
            raise NormalizationError(
                f"Query must be str or bytes, not {type(raw).__name__}"
            )

        try:
            raw.encode("utf-8")
        except UnicodeEncodeError as e:
            logger.warning(f"Query contains unencodable characters, replacing: {e}")
            return raw.encode("utf-8", errors="replace").decode("utf-8")
        return raw
