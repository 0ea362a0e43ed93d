"""
Rule-table entity extraction from normalized Arabic/English text.

Every entity type owns an ordered list of ``ExtractionRule`` objects. Rules are
tried top to bottom and the first one whose ``extract`` returns an entity wins
for that type. The tiers, in order:

1. exact dictionary phrase (products, brands, product types), then fuzzy token
2. number + unit ("2.8 كيلو", "3 كراتين")
3. unit word implying one ("كيلو", "كرتونة")
4. shorthand aliases ("نص كيلو", "2.8", "كرتونتين")
5. bare number with no unit, always ambiguous

Rule order is the grammar of the extractor; changing it changes behaviour.
The extractor never looks at session state.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from ..intents import EntityType
from ..models.nlu import Entity, ExtractionResult
from .customer_type import CustomerTypeDetector
from .engine_config import EngineConfig, load_engine_config
from .nlu.matching import best_window_similarity, find_phrase_last
from .nlu.text_normalizer import tokenize

logger = logging.getLogger(__name__)

CONFIDENT = 0.9
AMBIGUOUS = 0.6

# ============================================================================
# Numbers
# ============================================================================

WRITTEN_NUMBERS: Dict[str, int] = {
    "واحد": 1,
    "واحده": 1,
    "اتنين": 2,
    "اثنين": 2,
    "تنين": 2,
    "تلات": 3,
    "تلاته": 3,
    "ثلاث": 3,
    "ثلاثه": 3,
    "اربع": 4,
    "اربعه": 4,
    "خمس": 5,
    "خمسه": 5,
    "سته": 6,
    "ست": 6,
    "سبع": 7,
    "سبعه": 7,
    "تمن": 8,
    "تمانيه": 8,
    "تسع": 9,
    "تسعه": 9,
    "عشر": 10,
    "عشره": 10,
}

_WRITTEN = "|".join(sorted(map(re.escape, WRITTEN_NUMBERS), key=len, reverse=True))
_NUMBER = rf"(?P<number>\d+(?:\.\d+)?|{_WRITTEN})"
_NO_NUMBER_BEFORE = r"(?<![\d.\w])"


def parse_number(raw: str) -> float:
    raw = raw.strip()
    if raw in WRITTEN_NUMBERS:
        return float(WRITTEN_NUMBERS[raw])
    return float(raw)


def format_number(value: float) -> str:
    """``2.8`` -> "2.8", ``1.0`` -> "1", ``0.25`` -> "0.25"."""
    return f"{value:g}"


# ============================================================================
# Units
# ============================================================================

KILOGRAM = "كجم"
LITER = "لتر"
GALLON = "جالون"
GRAM = "جم"

CARTON = "كرتونة"
PIECE = "حبة"
UNIT = "وحدة"

QUANTITY_UNITS: Dict[str, str] = {"carton": CARTON, "piece": PIECE, "unit": UNIT}

SIZE_UNIT_WORDS: Dict[str, Sequence[str]] = {
    KILOGRAM: ("كيلوجرام", "كيلو جرام", "كيلو", "كجم", "كغم", "كج", "كلو", "kilograms", "kilogram", "kilo", "kg"),
    LITER: ("ليتر", "لتر", "لت", "liters", "litres", "liter", "litre", "l"),
    GALLON: ("جالون", "غالون", "جلون", "gallon", "galon"),
    GRAM: ("جرام", "غرام", "جم", "grams", "gram", "gr", "g"),
}

CARTON_WORDS = ("كرتونه", "كرتون", "كراتين", "كرطون", "cartons", "carton", "boxes", "box")
PIECE_WORDS = ("حبات", "حبه", "قطعه", "قطع", "pieces", "piece")
UNIT_WORDS = ("وحدات", "وحده", "units", "unit")

FRACTION_WORDS: Dict[str, float] = {"نصف": 0.5, "نص": 0.5, "half": 0.5, "ربع": 0.25, "quarter": 0.25}


def _alternation(words: Iterable[str]) -> str:
    return "|".join(sorted(map(re.escape, words), key=len, reverse=True))


_ALL_SIZE_WORDS = _alternation(w for words in SIZE_UNIT_WORDS.values() for w in words)
_ALL_QUANTITY_WORDS = _alternation((*CARTON_WORDS, *PIECE_WORDS, *UNIT_WORDS))
_ANY_UNIT_AHEAD = rf"(?!\s*(?:{_ALL_SIZE_WORDS}|{_ALL_QUANTITY_WORDS})(?!\w))"


# ============================================================================
# Rules
# ============================================================================


@dataclass(frozen=True)
class ExtractionRule:
    """``match`` finds a candidate in normalized text, ``extract`` turns it into an entity.

    ``extract`` may return ``None`` to decline the match; evaluation then moves
    on to the next rule.
    """

    name: str
    match: Callable[[str], Optional[Any]]
    extract: Callable[[Any, str], Optional[Entity]]

    def apply(self, normalized: str) -> Optional[Entity]:
        candidate = self.match(normalized)
        if candidate is None:
            return None
        return self.extract(candidate, normalized)


def regex_rule(
    name: str,
    pattern: str,
    extract: Callable[[re.Match[str], str], Optional[Entity]],
) -> ExtractionRule:
    compiled = re.compile(pattern)
    return ExtractionRule(name=name, match=compiled.search, extract=extract)  # type: ignore[arg-type]


@dataclass(frozen=True)
class PhraseHit:
    canonical: str
    alias: str
    start: int
    similarity: float = 1.0


def _latest_phrase(table: Mapping[str, Sequence[str]], normalized: str) -> Optional[PhraseHit]:
    """Latest mention wins ("مش معجون عايز فيلر" -> فيلر); longer alias breaks ties."""
    best: Optional[PhraseHit] = None
    for canonical, aliases in table.items():
        for alias in aliases:
            start = find_phrase_last(normalized, alias)
            if start < 0:
                continue
            if (
                best is None
                or start > best.start
                or (start == best.start and len(alias) > len(best.alias))
            ):
                best = PhraseHit(canonical=canonical, alias=alias, start=start)
    return best


def _fuzzy_phrase(
    table: Mapping[str, Sequence[str]],
    normalized: str,
    threshold: float,
) -> Optional[PhraseHit]:
    tokens = tokenize(normalized)
    best: Optional[PhraseHit] = None
    for canonical, aliases in table.items():
        for alias in aliases:
            hit = best_window_similarity(tokens, alias)
            if hit is None or hit.similarity < threshold:
                continue
            if best is None or hit.similarity > best.similarity:
                best = PhraseHit(
                    canonical=canonical,
                    alias=alias,
                    start=normalized.find(hit.window),
                    similarity=hit.similarity,
                )
    return best


def dictionary_rules(
    entity_type: EntityType,
    table: Mapping[str, Sequence[str]],
    *,
    fuzzy_threshold: Optional[float] = None,
    confidence: float = CONFIDENT,
) -> List[ExtractionRule]:
    def _extract(hit: PhraseHit, _text: str) -> Entity:
        return Entity(
            type=entity_type,
            value=hit.canonical,
            confidence=round(confidence * hit.similarity, 3),
            rule=f"{entity_type.value}.{'exact' if hit.similarity == 1.0 else 'fuzzy'}",
        )

    rules = [
        ExtractionRule(
            name=f"{entity_type.value}.exact",
            match=lambda text: _latest_phrase(table, text),
            extract=_extract,
        )
    ]
    if fuzzy_threshold is not None:
        rules.append(
            ExtractionRule(
                name=f"{entity_type.value}.fuzzy",
                match=lambda text: _fuzzy_phrase(table, text, fuzzy_threshold),
                extract=_extract,
            )
        )
    return rules


# ---------------------------------------------------------------------------
# Size
# ---------------------------------------------------------------------------


def _size(value: float, unit: Optional[str], rule: str, *, ambiguous: bool = False) -> Entity:
    return Entity(
        type=EntityType.SIZE,
        value=format_number(value),
        unit=unit,
        confidence=AMBIGUOUS if ambiguous else CONFIDENT,
        ambiguous=ambiguous,
        rule=rule,
    )


def _size_with_unit(unit: str) -> ExtractionRule:
    name = f"size.{unit}.number_unit"

    def _extract(match: re.Match[str], _text: str) -> Entity:
        return _size(parse_number(match.group("number")), unit, name)

    pattern = rf"{_NO_NUMBER_BEFORE}{_NUMBER}\s*(?:{_alternation(SIZE_UNIT_WORDS[unit])})(?!\w)"
    return regex_rule(name, pattern, _extract)


def _size_unit_word(unit: str) -> ExtractionRule:
    name = f"size.{unit}.unit_word"

    def _extract(match: re.Match[str], text: str) -> Optional[Entity]:
        previous = text[: match.start()].split()
        if previous and (previous[-1] in FRACTION_WORDS or previous[-1] in WRITTEN_NUMBERS):
            return None
        # Only the bare word on its own is ambiguous.
        return _size(1.0, unit, name, ambiguous=text.strip() == match.group(0))

    pattern = rf"(?<!\S)(?:{_alternation(SIZE_UNIT_WORDS[unit])})(?!\S)"
    return regex_rule(name, pattern, _extract)


def _size_fraction(match: re.Match[str], _text: str) -> Entity:
    unit_word = match.group("unit")
    unit = KILOGRAM
    if unit_word:
        unit = next(u for u, words in SIZE_UNIT_WORDS.items() if unit_word in words)
    return _size(FRACTION_WORDS[match.group("fraction")], unit, "size.shorthand.fraction")


def _size_two_point_eight(_match: re.Match[str], _text: str) -> Entity:
    return _size(2.8, KILOGRAM, "size.shorthand.2_8")


SIZE_RULES: List[ExtractionRule] = [
    _size_with_unit(KILOGRAM),
    _size_with_unit(LITER),
    _size_with_unit(GALLON),
    _size_with_unit(GRAM),
    _size_unit_word(KILOGRAM),
    _size_unit_word(LITER),
    _size_unit_word(GALLON),
    regex_rule(
        "size.shorthand.fraction",
        rf"(?<!\S)(?P<fraction>{_alternation(FRACTION_WORDS)})(?:\s*(?P<unit>{_ALL_SIZE_WORDS}))?(?!\S)",
        _size_fraction,
    ),
    regex_rule(
        "size.shorthand.2_8",
        r"(?<![\d.])(?:2\.8|٢\.٨)(?![\d.])|(?<!\S)(?:اتنين|2)\s*و\s*(?:تمانيه|تمان|8)(?!\S)",
        _size_two_point_eight,
    ),
]


def _bare_number_rules(
    entity_type: EntityType,
    *,
    integers_only: bool,
    reserved: Sequence[str] = (),
) -> List[ExtractionRule]:
    number = r"\d+" if integers_only else r"\d+(?:\.\d+)?"
    digits_name = f"{entity_type.value}.bare_number"
    words_name = f"{entity_type.value}.written_number"

    def _entity(value: float, rule: str) -> Entity:
        return Entity(
            type=entity_type,
            value=format_number(value),
            unit=None,
            confidence=AMBIGUOUS,
            ambiguous=True,
            rule=rule,
        )

    def _extract_digits(match: re.Match[str], _text: str) -> Optional[Entity]:
        if match.group("number") in reserved:
            return None
        return _entity(float(match.group("number")), digits_name)

    def _extract_words(match: re.Match[str], _text: str) -> Entity:
        return _entity(parse_number(match.group("number")), words_name)

    return [
        regex_rule(
            digits_name,
            rf"(?<![\d.\w])(?P<number>{number})(?![\d.\w]){_ANY_UNIT_AHEAD}",
            _extract_digits,
        ),
        regex_rule(
            words_name,
            rf"(?<!\S)(?P<number>{_WRITTEN})(?!\S){_ANY_UNIT_AHEAD}",
            _extract_words,
        ),
    ]


# ---------------------------------------------------------------------------
# Quantity
# ---------------------------------------------------------------------------


def _quantity(value: float, kind: str, rule: str) -> Entity:
    return Entity(
        type=EntityType.QUANTITY,
        value=format_number(value),
        unit=QUANTITY_UNITS[kind],
        confidence=CONFIDENT,
        rule=rule,
    )


def _quantity_with_unit(kind: str, words: Sequence[str]) -> ExtractionRule:
    name = f"quantity.{kind}.number_unit"

    def _extract(match: re.Match[str], _text: str) -> Entity:
        return _quantity(parse_number(match.group("number")), kind, name)

    return regex_rule(
        name,
        rf"{_NO_NUMBER_BEFORE}{_NUMBER}\s*(?:{_alternation(words)})(?!\w)",
        _extract,
    )


def _quantity_unit_word(kind: str, words: Sequence[str]) -> ExtractionRule:
    name = f"quantity.{kind}.unit_word"

    def _extract(_match: re.Match[str], _text: str) -> Entity:
        return _quantity(1.0, kind, name)

    return regex_rule(name, rf"(?<!\S)(?:{_alternation(words)})(?!\S)", _extract)


def _quantity_shorthand(value: float, kind: str, words: Sequence[str]) -> ExtractionRule:
    name = f"quantity.{kind}.shorthand"

    def _extract(_match: re.Match[str], _text: str) -> Entity:
        return _quantity(value, kind, name)

    return regex_rule(name, rf"(?<!\S)(?:{_alternation(words)})(?!\S)", _extract)


QUANTITY_RULES: List[ExtractionRule] = [
    _quantity_with_unit("carton", CARTON_WORDS),
    _quantity_with_unit("piece", PIECE_WORDS),
    _quantity_with_unit("unit", UNIT_WORDS),
    _quantity_unit_word("carton", ("كرتونه", "كرتون", "carton", "box")),
    _quantity_unit_word("piece", ("حبه", "قطعه", "piece")),
    _quantity_shorthand(2.0, "carton", ("كرتونتين",)),
    _quantity_shorthand(2.0, "piece", ("حبتين", "قطعتين")),
    _quantity_shorthand(12.0, "piece", ("دسته", "dozen")),
]


# ============================================================================
# Extractor
# ============================================================================


class EntityExtractor:
    """Pull product, brand, size, quantity and product type out of normalized text."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        customer_type_detector: CustomerTypeDetector | None = None,
        fuzzy_threshold: float = 0.8,
    ) -> None:
        config = config or load_engine_config()
        reserved = tuple(alias for aliases in config.product_types.values() for alias in aliases)
        self._customer_type = customer_type_detector or CustomerTypeDetector.from_config(config)
        self._rules: Dict[EntityType, List[ExtractionRule]] = {
            EntityType.PRODUCT: dictionary_rules(
                EntityType.PRODUCT, config.products, fuzzy_threshold=fuzzy_threshold
            ),
            EntityType.BRAND: dictionary_rules(
                EntityType.BRAND, config.brands, fuzzy_threshold=fuzzy_threshold, confidence=0.85
            ),
            EntityType.SIZE: [
                *SIZE_RULES,
                *_bare_number_rules(EntityType.SIZE, integers_only=False, reserved=reserved),
            ],
            EntityType.QUANTITY: [
                *QUANTITY_RULES,
                *_bare_number_rules(EntityType.QUANTITY, integers_only=True, reserved=reserved),
            ],
            EntityType.PRODUCT_TYPE: dictionary_rules(
                EntityType.PRODUCT_TYPE, config.product_types, confidence=0.85
            ),
        }

    def rules_for(self, entity_type: EntityType) -> List[ExtractionRule]:
        return list(self._rules[entity_type])

    def extract_type(self, entity_type: EntityType, normalized: str) -> Optional[Entity]:
        for rule in self._rules[entity_type]:
            entity = rule.apply(normalized)
            if entity is not None:
                return entity
        return None

    def extract(self, normalized: str) -> ExtractionResult:
        result = ExtractionResult()
        if not normalized:
            return result
        for entity_type in self._rules:
            entity = self.extract_type(entity_type, normalized)
            if entity is not None:
                result.entities[entity_type] = entity
        result.customer_type = self._customer_type.detect(normalized)
        if result.entities:
            logger.debug("entities=%s", result.to_debug_dict())
        return result

