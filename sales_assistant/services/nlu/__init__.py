"""Text-level building blocks: normalization, similarity and synonym expansion."""

from .matching import (
    best_window_similarity,
    contains_phrase,
    find_phrase,
    levenshtein_distance,
    similarity_score,
)
from .synonym_expander import ExpansionResult, SynonymExpander
from .text_normalizer import normalize, tokenize

__all__ = [
    "ExpansionResult",
    "SynonymExpander",
    "best_window_similarity",
    "contains_phrase",
    "find_phrase",
    "levenshtein_distance",
    "normalize",
    "similarity_score",
    "tokenize",
]
