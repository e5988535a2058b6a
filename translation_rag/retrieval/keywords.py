"""Keyword extraction used for lexicon boosting."""

from __future__ import annotations

import re
from typing import List

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")

MIN_KEYWORD_LENGTH = 3

# Swedish and English function words: conjunctions, prepositions, auxiliaries,
# articles, pronouns and possessives.
STOP_WORDS = frozenset(
    {
        # Swedish
        "och", "eller", "men", "för", "att", "med", "till", "från", "på", "i",
        "om", "är", "har", "kan", "ska", "vill",
        "min", "mitt", "mina", "din", "ditt", "dina", "hans", "hennes", "dess",
        "vår", "vårt", "våra", "er", "ert", "era",
        "jag", "du", "han", "hon", "den", "det", "vi", "ni", "de", "sig", "mig",
        "dig", "oss", "dem",
        # English
        "the", "is", "are", "was", "were", "be", "been", "have", "has", "had",
        "do", "does", "did", "will", "would", "could", "should", "may", "might",
        "must", "shall", "this", "that", "these", "those", "a", "an", "in", "on",
        "at", "by",
    }
)


def extract_keywords(query: str) -> List[str]:
    """Return the distinct content words of ``query`` in first-seen order.

    >>> extract_keywords("Hur mår du idag, min vän?")
    ['hur', 'mår', 'idag', 'vän']
    """

    if not query:
        return []
    cleaned = _PUNCTUATION_RE.sub("", query.lower())
    keywords: List[str] = []
    seen = set()
    for word in _WHITESPACE_RE.split(cleaned):
        if len(word) < MIN_KEYWORD_LENGTH or word in STOP_WORDS or word in seen:
            continue
        seen.add(word)
        keywords.append(word)
    return keywords


__all__ = ["extract_keywords", "STOP_WORDS"]
