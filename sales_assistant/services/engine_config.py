"""Loader for the declarative engine tables in ``config/engine_config.yaml``."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from ..config import get_settings
from ..intents import IntentType, PriorityTier
from .errors import ConfigError
from .nlu.text_normalizer import normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntentDefinition:
    """One row of the intent table; ``order`` is its declaration index."""

    name: IntentType
    patterns: tuple[str, ...]
    weight: float
    context_dependent: bool
    priority: PriorityTier
    order: int


@dataclass
class EngineConfig:
    intents: List[IntentDefinition]
    synonyms: Dict[str, List[str]]
    b2c_keywords: List[str]
    b2b_keywords: List[str]
    products: Dict[str, List[str]] = field(default_factory=dict)
    brands: Dict[str, List[str]] = field(default_factory=dict)
    product_types: Dict[str, List[str]] = field(default_factory=dict)


def _normalized_unique(values: List[Any]) -> List[str]:
    return list(dict.fromkeys(v for v in (normalize(str(value)) for value in values or []) if v))


def _alias_table(raw: Dict[Any, Any] | None) -> Dict[str, List[str]]:
    table: Dict[str, List[str]] = {}
    for canonical, aliases in (raw or {}).items():
        table[str(canonical)] = _normalized_unique([canonical, *(aliases or [])])
    return table


def _parse_intents(raw_intents: List[Dict[str, Any]]) -> List[IntentDefinition]:
    intents: List[IntentDefinition] = []
    for order, raw in enumerate(raw_intents or []):
        try:
            name = IntentType(raw["name"])
            priority = PriorityTier(raw.get("priority", PriorityTier.MEDIUM))
        except (KeyError, ValueError) as exc:
            raise ConfigError(f"Invalid intent entry #{order}: {raw!r}", reason="intent_table_invalid") from exc
        weight = float(raw.get("weight", 1))
        if weight <= 0:
            raise ConfigError(f"Intent {name} must have a positive weight", reason="intent_table_invalid")
        intents.append(
            IntentDefinition(
                name=name,
                patterns=tuple(_normalized_unique(raw.get("patterns") or [])),
                weight=weight,
                context_dependent=bool(raw.get("context_dependent", False)),
                priority=priority,
                order=order,
            )
        )
    return intents


@functools.lru_cache(maxsize=4)
def load_engine_config(path: Path | None = None) -> EngineConfig:
    config_path = Path(path or get_settings().engine_config_path)
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot load engine config {config_path}", reason="engine_config_load_failed") from exc

    customer_type = data.get("customer_type") or {}
    entities = data.get("entities") or {}
    config = EngineConfig(
        intents=_parse_intents(data.get("intents") or []),
        synonyms={str(key): [str(alias) for alias in value or []] for key, value in (data.get("synonyms") or {}).items()},
        b2c_keywords=_normalized_unique(customer_type.get("b2c") or []),
        b2b_keywords=_normalized_unique(customer_type.get("b2b") or []),
        products=_alias_table(entities.get("products")),
        brands=_alias_table(entities.get("brands")),
        product_types=_alias_table(entities.get("product_types")),
    )
    logger.info(
        "Engine config loaded path=%s intents=%d synonyms=%d products=%d brands=%d",
        config_path,
        len(config.intents),
        len(config.synonyms),
        len(config.products),
        len(config.brands),
    )
    return config
