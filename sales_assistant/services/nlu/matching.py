"""String similarity and phrase lookup shared by the classifier and the extractor."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Sequence

# Phrases this short only match as whole tokens ("hi" must not fire inside "thinner").
SHORT_PHRASE_MAX_LEN = 3
# Fuzzy comparison is skipped for phrases shorter than this.
FUZZY_MIN_LEN = 4


def levenshtein_distance(s1: str, s2: str) -> int:
    """Classic edit distance between two strings."""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def similarity_score(s1: str, s2: str) -> float:
    """Edit-distance similarity in [0, 1]; 1.0 means identical."""
    if not s1 or not s2:
        return 0.0
    max_len = max(len(s1), len(s2))
    return 1.0 - (levenshtein_distance(s1, s2) / max_len)


@lru_cache(maxsize=2048)
def _boundary_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!\w){re.escape(phrase)}(?!\w)")


def find_phrase(text: str, phrase: str) -> int:
    """Return the start offset of ``phrase`` in ``text`` or -1.

    Short phrases need token boundaries on both sides; longer ones match as plain
    substrings so Arabic prefixes ("بال", "وال") do not hide them.
    """
    if not phrase or not text:
        return -1
    if len(phrase) <= SHORT_PHRASE_MAX_LEN:
        match = _boundary_pattern(phrase).search(text)
        return match.start() if match else -1
    return text.find(phrase)


def find_phrase_last(text: str, phrase: str) -> int:
    """Like ``find_phrase`` but returns the offset of the last occurrence."""
    if not phrase or not text:
        return -1
    if len(phrase) <= SHORT_PHRASE_MAX_LEN:
        last = -1
        for match in _boundary_pattern(phrase).finditer(text):
            last = match.start()
        return last
    return text.rfind(phrase)


def contains_phrase(text: str, phrase: str) -> bool:
    return find_phrase(text, phrase) >= 0


@dataclass(frozen=True)
class FuzzyHit:
    phrase: str
    window: str
    similarity: float


def best_window_similarity(tokens: Sequence[str], phrase: str) -> FuzzyHit | None:
    """Compare ``phrase`` against every run of as many tokens as it has words."""
    if len(phrase) < FUZZY_MIN_LEN or not tokens:
        return None
    size = len(phrase.split())
    if size > len(tokens):
        return None
    best: FuzzyHit | None = None
    for start in range(len(tokens) - size + 1):
        window_tokens: List[str] = list(tokens[start:start + size])
        if any(token.replace(".", "").isdigit() for token in window_tokens):
            continue
        window = " ".join(window_tokens)
        score = similarity_score(window, phrase)
        if best is None or score > best.similarity:
            best = FuzzyHit(phrase=phrase, window=window, similarity=score)
    return best
