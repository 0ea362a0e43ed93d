"""
Canonical form for code-switched Arabic/English chat text.

Steps, applied in order:
1. lowercase
2. strip Arabic diacritics (harakat, superscript alef) and tatweel
3. fold Alef variants (أ إ آ ٱ) to ا
4. fold Taa Marbuta ة to ه
5. fold Alef Maqsura ى to ي
6. remove punctuation (a decimal point between two digits is kept)
7. collapse whitespace

Every step maps its own output to itself, so ``normalize`` is idempotent.
"""

from __future__ import annotations

import re

_DIACRITICS = re.compile(r"[\u064B-\u065F\u0670\u0640]")
_ALEF_VARIANTS = re.compile(r"[\u0622\u0623\u0625\u0671]")
# Anything that is neither a word character, whitespace nor a dot; underscore counts as punctuation.
_PUNCTUATION = re.compile(r"[^\w\s.]|_")
# A dot survives only between two digits ("2.8").
_STRAY_DOT = re.compile(r"(?<!\d)\.|\.(?!\d)")
_WHITESPACE = re.compile(r"\s+")


def strip_diacritics(text: str) -> str:
    return _DIACRITICS.sub("", text)


def fold_letters(text: str) -> str:
    text = _ALEF_VARIANTS.sub("ا", text)
    text = text.replace("ة", "ه")
    return text.replace("ى", "ي")


def remove_punctuation(text: str) -> str:
    text = _PUNCTUATION.sub(" ", text)
    return _STRAY_DOT.sub(" ", text)


def normalize(text: str | None) -> str:
    """Return the canonical form of ``text``; ``None`` and empty input give ``""``."""
    if not text:
        return ""
    normalized = text.lower()
    normalized = strip_diacritics(normalized)
    normalized = fold_letters(normalized)
    normalized = remove_punctuation(normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def tokenize(normalized: str) -> list[str]:
    return normalized.split() if normalized else []
