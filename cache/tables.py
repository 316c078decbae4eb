# ABOUTME: Immutable abbreviation and stopword tables consumed by the query normalizer
# ABOUTME: Built-in security tooling vocabulary plus JSON loaders for custom tables

import json
import re
import unicodedata
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, Mapping, Tuple, Union

# Anything that is not a word character, whitespace, hyphen or slash
PUNCTUATION_PATTERN = re.compile(r"[^\w\s\-/]")
SEPARATOR_ONLY_PATTERN = re.compile(r"^[\-/]+$")


def split_terms(text: str) -> Tuple[str, ...]:
    """Lowercase, strip punctuation and split text into terms."""
    text = unicodedata.normalize("NFKC", text).lower()
    text = PUNCTUATION_PATTERN.sub(" ", text)
    return tuple(
        term for term in text.split() if not SEPARATOR_ONLY_PATTERN.match(term)
    )


class StopwordSet:
    """Read-only set of terms dropped during normalization."""

    def __init__(self, words: Iterable[str]):
        terms = set()
        for word in words:
            terms.update(split_terms(word))
        self._words: FrozenSet[str] = frozenset(terms)

    def __contains__(self, term: object) -> bool:
        return term in self._words

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._words))

    def __len__(self) -> int:
        return len(self._words)

    def __repr__(self) -> str:
        return f"StopwordSet({len(self._words)} words)"


class AbbreviationTable:
    """Read-only mapping of a single term to its expansion phrase.

    The expansion is the complete replacement phrase. Entries that should keep
    the original term spell it inside the phrase, e.g.
    ``nmap -> network mapper port scanner nmap``.
    """

    def __init__(self, expansions: Mapping[str, str]):
        table: Dict[str, Tuple[str, ...]] = {}
        for abbreviation, phrase in expansions.items():
            keys = split_terms(abbreviation)
            if len(keys) != 1:
                raise ValueError(
                    f"Abbreviation must be a single term, got: {abbreviation!r}"
                )
            table[keys[0]] = split_terms(phrase)
        self._table = MappingProxyType(table)

    def get(self, term: str) -> Union[Tuple[str, ...], None]:
        return self._table.get(term)

    def __contains__(self, term: object) -> bool:
        return term in self._table

    def __len__(self) -> int:
        return len(self._table)

    def items(self) -> Iterable[Tuple[str, Tuple[str, ...]]]:
        return self._table.items()

    def __repr__(self) -> str:
        return f"AbbreviationTable({len(self._table)} entries)"


def load_abbreviation_table(path: Union[str, Path]) -> AbbreviationTable:
    """Load a table from ``{"abbreviations": {"term": "phrase", ...}}`` JSON."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return AbbreviationTable(data["abbreviations"])


def load_stopword_set(path: Union[str, Path]) -> StopwordSet:
    """Load stopwords from ``{"stopwords": ["...", ...]}`` JSON."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return StopwordSet(data["stopwords"])


DEFAULT_ABBREVIATIONS = AbbreviationTable(
    {
        "nmap": "network mapper port scanner nmap",
        "syn": "stealth synchronize tcp",
        "sqli": "sql injection",
        "xss": "cross site scripting",
        "csrf": "cross site request forgery",
        "ssrf": "server side request forgery",
        "xxe": "xml external entity",
        "idor": "insecure direct object reference",
        "rce": "remote code execution",
        "lfi": "local file inclusion",
        "rfi": "remote file inclusion",
        "privesc": "privilege escalation",
        "revshell": "reverse shell",
        "waf": "web application firewall waf",
        "msf": "metasploit framework",
        "smb": "server message block smb",
        "ssh": "secure shell ssh",
        "rdp": "remote desktop protocol rdp",
        "dos": "denial of service",
        "ddos": "distributed denial of service",
        "mitm": "man in the middle",
        "enum": "enumeration",
        "osint": "open source intelligence",
        "ctf": "capture the flag",
    }
)

DEFAULT_STOPWORDS = StopwordSet(
    [
        "a", "an", "and", "are", "as", "at", "be", "by", "can", "could",
        "do", "does", "for", "from", "give", "how", "i", "in", "is", "it",
        "me", "my", "of", "on", "or", "please", "show", "tell", "the", "to",
        "want", "what", "when", "where", "which", "with", "would", "you",
        "your",
    ]
)
