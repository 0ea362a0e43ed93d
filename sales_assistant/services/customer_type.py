from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..intents import CustomerType
from .engine_config import EngineConfig, load_engine_config
from .nlu.matching import find_phrase

logger = logging.getLogger(__name__)


class CustomerTypeDetector:
    """Keyword detection of retail (b2c) versus trade (b2b) customers.

    The keyword lists come from the single ``customer_type`` table of the engine
    config. Retail markers are checked first: "علبة واحدة لمحلي" is still a
    one-can purchase.
    """

    def __init__(
        self,
        b2c_keywords: Sequence[str],
        b2b_keywords: Sequence[str],
    ) -> None:
        self._b2c = tuple(b2c_keywords)
        self._b2b = tuple(b2b_keywords)

    @classmethod
    def from_config(cls, config: EngineConfig | None = None) -> "CustomerTypeDetector":
        config = config or load_engine_config()
        return cls(config.b2c_keywords, config.b2b_keywords)

    def detect(self, normalized: str) -> Optional[CustomerType]:
        if not normalized:
            return None
        for keyword in self._b2c:
            if find_phrase(normalized, keyword) >= 0:
                logger.debug("customer_type=b2c keyword=%s", keyword)
                return CustomerType.B2C
        for keyword in self._b2b:
            if find_phrase(normalized, keyword) >= 0:
                logger.debug("customer_type=b2b keyword=%s", keyword)
                return CustomerType.B2B
        return None
