"""Keyword normalization for deduplication.

normalize_keyword canonicalizes Japanese and Latin keyword strings:
- NFKC normalization, then lower-case
- quote and bracket characters removed
- separator punctuation collapsed to single spaces
- particle/stopword tokens dropped

Two keywords are duplicates iff their hashes are equal. The function is
pure: normalize_keyword(normalize_keyword(x).text) has the same text.
"""

import hashlib
import re
import unicodedata
from dataclasses import dataclass

STOPWORDS = frozenset({"の", "が", "を", "に", "と", "は", "へ", "で", "や", "から", "まで"})

HASH_LENGTH = 32

_QUOTES_PATTERN = re.compile(r"[\"'「」『』]")
_SEPARATORS_PATTERN = re.compile(r"[、・,.;:!?！？]")
_WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass(frozen=True)
class NormalizedKeyword:
    text: str
    hash: str


def dedupe_hash(normalized: str) -> str:
    """First 32 hex characters of the SHA-256 of the normalized text."""
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def normalize_keyword(raw: str) -> NormalizedKeyword:
    """Normalize a raw keyword and compute its deduplication hash."""
    lowered = unicodedata.normalize("NFKC", raw).lower()
    cleaned = _QUOTES_PATTERN.sub("", lowered)
    cleaned = _SEPARATORS_PATTERN.sub(" ", cleaned)
    cleaned = _WHITESPACE_PATTERN.sub(" ", cleaned).strip()

    tokens = [
        token
        for token in (part.strip() for part in cleaned.split(" "))
        if token and token not in STOPWORDS
    ]
    normalized = " ".join(tokens)
    return NormalizedKeyword(text=normalized, hash=dedupe_hash(normalized))
