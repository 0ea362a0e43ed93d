"""
SynonymExpander - one canonical alias list per concept.

For every concept whose canonical term or alias occurs in the text as a whole
token (or token run), the expander emits variants with that occurrence replaced
by the canonical term and by each other alias. The original text is always the
first phrasing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence

from .text_normalizer import normalize


@dataclass(frozen=True)
class SynonymGroup:
    canonical: str
    aliases: tuple[str, ...]

    @property
    def terms(self) -> tuple[str, ...]:
        return (self.canonical, *self.aliases)


@dataclass
class ExpansionResult:
    original: str
    phrasings: List[str] = field(default_factory=list)
    concepts: List[str] = field(default_factory=list)


def _term_pattern(term: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!\S){re.escape(term)}(?!\S)")


class SynonymExpander:
    """Expand normalized text into a small set of equivalent phrasings."""

    def __init__(self, synonyms: Mapping[str, Sequence[str]], *, max_phrasings: int = 8) -> None:
        self._max_phrasings = max(1, max_phrasings)
        self._groups: List[SynonymGroup] = []
        self._patterns: Dict[str, re.Pattern[str]] = {}
        for canonical, aliases in synonyms.items():
            canonical_norm = normalize(canonical)
            alias_norm = tuple(
                dict.fromkeys(a for a in (normalize(alias) for alias in aliases) if a and a != canonical_norm)
            )
            if not canonical_norm:
                continue
            group = SynonymGroup(canonical=canonical_norm, aliases=alias_norm)
            self._groups.append(group)
            for term in group.terms:
                self._patterns.setdefault(term, _term_pattern(term))

    def expand(self, normalized: str) -> ExpansionResult:
        result = ExpansionResult(original=normalized, phrasings=[normalized] if normalized else [])
        if not normalized:
            return result

        seen = {normalized}
        for group in self._groups:
            present = next(
                (term for term in group.terms if self._patterns[term].search(normalized)),
                None,
            )
            if present is None:
                continue
            result.concepts.append(group.canonical)
            for replacement in group.terms:
                if replacement == present:
                    continue
                variant = self._patterns[present].sub(lambda _match: replacement, normalized)
                if variant in seen:
                    continue
                seen.add(variant)
                result.phrasings.append(variant)
                if len(result.phrasings) >= self._max_phrasings:
                    return result
        return result
