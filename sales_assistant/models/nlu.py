from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..intents import CustomerType, EntityType, IntentType, PriorityTier

# Prefix the classifier puts on patterns that only matched fuzzily.
FUZZY_MARK = "~"


@dataclass(frozen=True)
class Entity:
    """Single value pulled out of normalized text."""

    type: EntityType
    value: str
    unit: Optional[str] = None
    confidence: float = 0.9
    ambiguous: bool = False
    rule: str = ""

    @property
    def text(self) -> str:
        """Display form stored in slots, e.g. ``2.8 كجم`` or ``1 كرتونة``."""
        if self.unit:
            return f"{self.value} {self.unit}"
        return self.value


@dataclass
class ExtractionResult:
    """Entities found per type plus the detected customer type, if any."""

    entities: Dict[EntityType, Entity] = field(default_factory=dict)
    customer_type: Optional[CustomerType] = None

    def get(self, entity_type: EntityType) -> Optional[Entity]:
        return self.entities.get(entity_type)

    def non_ambiguous(self) -> List[Entity]:
        return [entity for entity in self.entities.values() if not entity.ambiguous]

    def to_debug_dict(self) -> Dict[str, Dict[str, object]]:
        return {
            entity_type.value: {
                "value": entity.text,
                "ambiguous": entity.ambiguous,
                "confidence": round(entity.confidence, 2),
                "rule": entity.rule,
            }
            for entity_type, entity in self.entities.items()
        }


@dataclass(frozen=True)
class IntentMatch:
    name: IntentType
    confidence: float
    priority_tier: PriorityTier
    raw_score: float = 0.0
    matched_patterns: tuple[str, ...] = ()

    @property
    def has_exact_hit(self) -> bool:
        return any(not pattern.startswith(FUZZY_MARK) for pattern in self.matched_patterns)


@dataclass
class ClassificationResult:
    """Ranked intent matches; ``intent`` is UNKNOWN when the top entry is below threshold."""

    intent: IntentType = IntentType.UNKNOWN
    confidence: float = 0.0
    ranked: List[IntentMatch] = field(default_factory=list)
    threshold: float = 0.0

    @property
    def top(self) -> Optional[IntentMatch]:
        return self.ranked[0] if self.ranked else None

    def matched(self, intent: IntentType, *, exact: bool = False) -> bool:
        """True when ``intent`` scored at or above the threshold anywhere in the ranking.

        With ``exact`` the match also needs at least one non-fuzzy pattern hit.
        """
        return any(
            match.name == intent
            and match.confidence >= self.threshold
            and (not exact or match.has_exact_hit)
            for match in self.ranked
        )

    def to_debug_dict(self) -> Dict[str, object]:
        return {
            "intent": self.intent.value,
            "confidence": round(self.confidence, 3),
            "alternatives": [
                {"intent": match.name.value, "confidence": round(match.confidence, 3)}
                for match in self.ranked[1:4]
            ],
        }
