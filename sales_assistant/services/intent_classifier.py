"""
IntentClassifier - table-driven intent scoring.

Pipeline:
1. expand the normalized text into equivalent phrasings (SynonymExpander)
2. score every intent row against every phrasing:
   - exact phrase  -> ``weight``
   - fuzzy phrase  -> ``weight * similarity * 0.8`` (similarity >= fuzzy threshold;
     single words shorter than five letters never match fuzzily)
3. context boost for context-dependent intents while a product flow is active
4. priority multiplier (urgent 1.5, high 1.2, medium 1.0, low 0.8)
5. confidence = min(score / (weight * 3), 1.0)

Ranking is by score, then priority tier, then declaration order in the YAML
table, so equal inputs always produce equal rankings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..config import Settings, get_settings
from ..intents import (
    PRIORITY_MULTIPLIERS,
    PRIORITY_RANK,
    PRODUCT_FLOW_MODES,
    ConversationMode,
)
from ..models.nlu import FUZZY_MARK, ClassificationResult, IntentMatch
from .engine_config import EngineConfig, IntentDefinition, load_engine_config
from .nlu.matching import best_window_similarity, contains_phrase
from .nlu.synonym_expander import SynonymExpander
from .nlu.text_normalizer import tokenize

logger = logging.getLogger(__name__)

FUZZY_DISCOUNT = 0.8
# Single-word patterns shorter than this only count on an exact hit.
FUZZY_SINGLE_WORD_MIN_LEN = 5


@dataclass
class IntentScore:
    definition: IntentDefinition
    score: float = 0.0
    matched_patterns: List[str] = field(default_factory=list)

    def sort_key(self) -> Tuple[float, int, int]:
        return (-self.score, PRIORITY_RANK[self.definition.priority], self.definition.order)


class IntentClassifier:
    """Score the declarative intent table against normalized text."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        settings: Settings | None = None,
        expander: SynonymExpander | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._config = config or load_engine_config()
        self._intents: List[IntentDefinition] = list(self._config.intents)
        self._threshold = settings.intent_confidence_threshold
        self._fuzzy_threshold = settings.intent_fuzzy_threshold
        self._context_boost = settings.intent_context_boost
        self._expander = expander or SynonymExpander(
            self._config.synonyms, max_phrasings=settings.intent_max_phrasings
        )
        logger.info(
            "IntentClassifier initialized intents=%d threshold=%.2f fuzzy=%.2f",
            len(self._intents),
            self._threshold,
            self._fuzzy_threshold,
        )

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def intents(self) -> List[IntentDefinition]:
        return list(self._intents)

    def classify(
        self,
        normalized: str,
        *,
        mode: Optional[ConversationMode] = None,
    ) -> ClassificationResult:
        """Rank intents for ``normalized``; empty or unmatched text is UNKNOWN."""
        if not normalized:
            return ClassificationResult(threshold=self._threshold)

        phrasings = [
            (phrasing, tokenize(phrasing)) for phrasing in self._expander.expand(normalized).phrasings
        ]
        in_product_flow = mode in PRODUCT_FLOW_MODES

        scores: List[IntentScore] = []
        for definition in self._intents:
            intent_score = self._score(definition, phrasings)
            if intent_score.score <= 0:
                continue
            if definition.context_dependent and in_product_flow:
                intent_score.score *= self._context_boost
            intent_score.score *= PRIORITY_MULTIPLIERS[definition.priority]
            scores.append(intent_score)

        scores.sort(key=IntentScore.sort_key)
        ranked = [
            IntentMatch(
                name=item.definition.name,
                confidence=min(item.score / (item.definition.weight * 3), 1.0),
                priority_tier=item.definition.priority,
                raw_score=round(item.score, 4),
                matched_patterns=tuple(dict.fromkeys(item.matched_patterns)),
            )
            for item in scores
        ]

        result = ClassificationResult(ranked=ranked, threshold=self._threshold)
        top = result.top
        if top is not None and top.confidence >= self._threshold:
            result.intent = top.name
            result.confidence = top.confidence

        logger.debug(
            "intent=%s confidence=%.2f mode=%s phrasings=%d candidates=%s",
            result.intent.value,
            result.confidence,
            mode.value if mode else "-",
            len(phrasings),
            [(match.name.value, round(match.confidence, 2)) for match in ranked[:3]],
        )
        return result

    def _score(
        self,
        definition: IntentDefinition,
        phrasings: Sequence[Tuple[str, List[str]]],
    ) -> IntentScore:
        result = IntentScore(definition=definition)
        for phrasing, tokens in phrasings:
            for pattern in definition.patterns:
                if contains_phrase(phrasing, pattern):
                    result.score += definition.weight
                    result.matched_patterns.append(pattern)
                    continue
                if " " not in pattern and len(pattern) < FUZZY_SINGLE_WORD_MIN_LEN:
                    continue
                hit = best_window_similarity(tokens, pattern)
                if hit is not None and hit.similarity >= self._fuzzy_threshold:
                    result.score += definition.weight * hit.similarity * FUZZY_DISCOUNT
                    result.matched_patterns.append(f"{FUZZY_MARK}{pattern}")
        return result

