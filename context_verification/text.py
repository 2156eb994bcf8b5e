"""Keyword helpers shared by the scorers and the learning aggregator."""

from __future__ import annotations

import re
from typing import Iterable, List, Set

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "are", "was", "were", "be", "been",
    "being", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "shall", "can", "need",
    "this", "that", "these", "those", "it", "its", "our", "their", "we",
    "they", "you", "your", "as", "into", "via", "all", "any", "new",
    "implement", "create", "add", "update", "fix", "build", "make", "support",
    "feature", "module", "function", "method",
}

NEGATIONS = {"not", "no", "never", "neither", "nor", "non"}

# Nouns that describe the product itself rather than a capability.
GENERIC_NOUNS = {
    "platform", "app", "application", "tool", "tools", "system", "software",
    "service", "product", "solution", "website", "site", "project", "thing",
    "general", "generic", "full", "complete", "another", "replacement",
}

_WORD_RE = re.compile(r"\b[a-zA-Z][a-zA-Z0-9_\-]*\b")


def words(text: str) -> List[str]:
    """Lower-cased word tokens, in order."""
    return [w.lower() for w in _WORD_RE.findall(text or "")]


def extract_keywords(text: str) -> Set[str]:
    """Extract meaningful keywords from free text."""
    return {w for w in words(text) if w not in STOP_WORDS and len(w) > 2}


def core_terms(phrase: str) -> List[str]:
    """Distinctive terms of a boundary phrase such as "NOT a social media platform"."""
    seen: List[str] = []
    for w in words(phrase):
        if w in NEGATIONS or w in STOP_WORDS or w in GENERIC_NOUNS or len(w) <= 2:
            continue
        if w not in seen:
            seen.append(w)
    return seen


def contains_phrase(text: str, phrase: str) -> bool:
    """Case-insensitive whole-phrase containment."""
    phrase = (phrase or "").strip().lower()
    if not phrase:
        return False
    pattern = r"(?<![a-z0-9])" + re.escape(phrase) + r"(?![a-z0-9])"
    return re.search(pattern, (text or "").lower()) is not None


def term_hits(text: str, terms: Iterable[str]) -> Set[str]:
    """Terms (single words or phrases) that occur in ``text``."""
    tokens = set(words(text))
    hits = set()
    for term in terms:
        term = term.strip().lower()
        if not term:
            continue
        if " " in term or "-" in term:
            if contains_phrase(text, term):
                hits.add(term)
        elif term in tokens:
            hits.add(term)
    return hits


def similarity(a: Set[str], b: Set[str]) -> float:
    """Shared keywords over the larger keyword set."""
    if not a or not b:
        return 0.0
    return len(a & b) / max(len(a), len(b))
