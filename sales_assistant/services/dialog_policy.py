"""
DialogPolicy - the slot-filling state machine.

``decide`` is pure: it reads a session copy plus this turn's classification and
extraction and returns a ``Decision``. The engine applies the decision to the
session store and hands it to the response composer.

Rules, first match wins:
1. retail (b2c) customer      -> refuse, nothing else progresses
2. context-free intent        -> answer from the knowledge store, state untouched
                                 (a greeting that names a product falls through)
3. negation inside a flow     -> correction: clear product slots, maybe adopt new product
4. different product named    -> hard reset of product slots, then slot filling
5. product intent / entities  -> merge, ask for the first missing slot or complete
6. anything else              -> capability menu (brand list for brands_inquiry)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import Settings, get_settings
from ..intents import (
    CONTEXT_FREE_INTENTS,
    ENTITY_TO_SLOT,
    PRODUCT_FAMILY_INTENTS,
    PRODUCT_FLOW_MODES,
    SLOT_TO_MODE,
    ConversationMode,
    CustomerType,
    Department,
    EntityType,
    IntentType,
    PolicyAction,
)
from ..models.nlu import ClassificationResult, Entity, ExtractionResult
from ..models.session import Session, Slots
from .entity_extractor import CARTON, KILOGRAM, PIECE, UNIT, format_number
from .errors import KnowledgeStoreError
from .knowledge_store import KnowledgeStore, ProductInfo

logger = logging.getLogger(__name__)

QUANTITY_UNIT_NAMES = {
    "carton": CARTON,
    "piece": PIECE,
    "unit": UNIT,
}

DEPARTMENT_FOR_INTENT = {
    IntentType.WHOLESALE_INQUIRY: Department.WHOLESALE,
    IntentType.SPRAY_BOOTH_INQUIRY: Department.SPRAY_BOOTH,
    IntentType.COMPLAINT: Department.CUSTOMER_SERVICE,
}

_CATALOG_SIZE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(.*?)\s*$")


@dataclass
class Decision:
    """What to do with a turn and how the session should look afterwards.

    ``mode`` is reported to the caller; ``next_mode`` is stored. They differ only
    on completion, where the summary reports COMPLETE and the session returns to IDLE.
    """

    action: PolicyAction
    intent: IntentType
    mode: ConversationMode
    next_mode: ConversationMode
    slots: Slots
    pending_slot: Optional[str] = None
    accepted: List[Entity] = field(default_factory=list)
    clear_slots: bool = False
    customer_type: Optional[CustomerType] = None
    topic: Optional[IntentType] = None
    department: Optional[Department] = None
    ask_slot: Optional[str] = None
    repeat_question: bool = False
    product_info: Optional[ProductInfo] = None
    show_overview: bool = False
    product_changed: bool = False
    price_requested: bool = False
    returning: bool = False
    reason: str = ""

    @property
    def completes(self) -> bool:
        return self.action == PolicyAction.COMPLETE

    def to_debug_dict(self) -> dict:
        return {
            "action": self.action.value,
            "reason": self.reason,
            "mode": self.mode.value,
            "next_mode": self.next_mode.value,
            "pending_slot": self.pending_slot,
            "accepted": [entity.text for entity in self.accepted],
            "clear_slots": self.clear_slots,
        }


class DialogPolicy:
    def __init__(self, knowledge: KnowledgeStore, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._knowledge = knowledge
        self._quantity_unit = QUANTITY_UNIT_NAMES.get(settings.default_quantity_unit.lower(), CARTON)

    def decide(
        self,
        classification: ClassificationResult,
        extraction: ExtractionResult,
        session: Session,
    ) -> Decision:
        intent = classification.intent
        slots = session.slots
        customer_type = self._resolve_customer_type(extraction, slots)
        if customer_type is not None:
            slots = slots.model_copy(update={"customer_type": customer_type})

        base = dict(
            intent=intent,
            mode=session.mode,
            next_mode=session.mode,
            slots=slots,
            pending_slot=session.pending_slot,
            customer_type=customer_type,
        )

        # 1. Business override
        if slots.customer_type == CustomerType.B2C:
            return Decision(action=PolicyAction.REFUSE, reason="b2c_customer", **base)

        new_product = self._new_product(extraction)
        greets_with_product = intent == IntentType.GREETING and new_product is not None

        # 2. Context-free intents; a greeting that names a product goes on to the flow
        if intent in CONTEXT_FREE_INTENTS and not greets_with_product:
            return Decision(
                action=PolicyAction.ANSWER,
                topic=intent,
                department=DEPARTMENT_FOR_INTENT.get(intent),
                returning=session.returning and intent == IntentType.GREETING,
                reason="context_free",
                **base,
            )

        current_product = slots.value_of("product")
        in_flow = session.mode in PRODUCT_FLOW_MODES

        # 3. Negation / correction
        if in_flow and (
            intent == IntentType.NEGATION
            or (
                classification.matched(IntentType.NEGATION, exact=True)
                and new_product is not None
                and new_product.value != current_product
            )
        ):
            return self._correction(classification, slots, new_product, base)

        # 4. Product switch
        product_changed = new_product is not None and current_product is not None and new_product.value != current_product

        # 5. Slot filling
        usable = self._usable_entities(extraction, session, product_changed)
        if intent in PRODUCT_FAMILY_INTENTS or usable or in_flow:
            return self._fill_slots(classification, session, slots, usable, product_changed, base)

        # 6. Fallthrough
        if intent == IntentType.BRANDS_INQUIRY:
            return Decision(action=PolicyAction.ANSWER, topic=intent, reason="brand_list", **base)
        return Decision(action=PolicyAction.MENU, reason="no_intent", **base)

    @staticmethod
    def _resolve_customer_type(extraction: ExtractionResult, slots: Slots) -> Optional[CustomerType]:
        """Customer type to store this turn; b2c is sticky until an explicit reset."""
        detected = extraction.customer_type
        if detected is None or slots.customer_type == CustomerType.B2C:
            return None
        if detected == slots.customer_type:
            return None
        return detected

    @staticmethod
    def _new_product(extraction: ExtractionResult) -> Optional[Entity]:
        product = extraction.get(EntityType.PRODUCT)
        if product is None or product.ambiguous:
            return None
        return product

    def _correction(
        self,
        classification: ClassificationResult,
        slots: Slots,
        new_product: Optional[Entity],
        base: dict,
    ) -> Decision:
        cleared = slots.cleared()
        if new_product is None:
            logger.info("Correction without product; back to IDLE")
            return Decision(
                action=PolicyAction.CORRECTION,
                intent=base["intent"],
                mode=ConversationMode.IDLE,
                next_mode=ConversationMode.IDLE,
                slots=cleared,
                pending_slot="product",
                clear_slots=True,
                customer_type=base["customer_type"],
                ask_slot="product",
                reason="negation",
            )

        info, degraded = self._lookup(new_product.value)
        if info is None:
            return self._route_to_wholesale(
                base, reason="knowledge_unavailable" if degraded else "product_unknown"
            )

        logger.info("Correction adopted product=%s", new_product.value)
        return Decision(
            action=PolicyAction.CORRECTION,
            intent=base["intent"],
            mode=ConversationMode.PRODUCT_SELECTED,
            next_mode=ConversationMode.PRODUCT_SELECTED,
            slots=cleared.merged([new_product]),
            pending_slot="size",
            accepted=[new_product],
            clear_slots=True,
            customer_type=base["customer_type"],
            ask_slot="size",
            product_info=info,
            show_overview=True,
            product_changed=True,
            price_requested=classification.matched(IntentType.PRICE_INQUIRY),
            reason="negation_new_product",
        )

    def _usable_entities(
        self,
        extraction: ExtractionResult,
        session: Session,
        product_changed: bool,
    ) -> List[Entity]:
        """Confirmed entities, plus ambiguous ones that answer the pending question."""
        pending = None if product_changed else session.pending_slot
        usable: List[Entity] = []
        for entity in extraction.entities.values():
            if not entity.ambiguous:
                usable.append(entity)
            elif ENTITY_TO_SLOT[entity.type] == pending:
                usable.append(self._confirm(entity, session.slots.value_of("product")))
        return usable

    def _confirm(self, entity: Entity, product: Optional[str]) -> Entity:
        """Turn an ambiguous entity into a confirmed one for the pending slot."""
        value, unit = entity.value, entity.unit
        if unit is None and entity.type == EntityType.SIZE:
            value, unit = self._resolve_size(entity.value, product)
        elif unit is None and entity.type == EntityType.QUANTITY:
            unit = self._quantity_unit
        return Entity(
            type=entity.type,
            value=value,
            unit=unit,
            confidence=entity.confidence,
            ambiguous=False,
            rule=f"{entity.rule}+pending",
        )

    def _resolve_size(self, value: str, product: Optional[str]) -> tuple[str, str]:
        """Match a bare number against the product's catalog sizes; kilograms otherwise."""
        info = self._lookup(product)[0] if product else None
        try:
            number = float(value)
        except ValueError:
            return value, KILOGRAM
        for size in info.available_sizes if info else []:
            match = _CATALOG_SIZE.match(size)
            if match and float(match.group(1)) == number and match.group(2):
                return format_number(number), match.group(2)
        return format_number(number), KILOGRAM

    def _lookup(self, product: str) -> tuple[Optional[ProductInfo], bool]:
        try:
            return self._knowledge.get_product(product), False
        except KnowledgeStoreError as exc:
            logger.warning("Knowledge store unavailable product=%s reason=%s", product, exc.reason)
            return None, True

    def _route_to_wholesale(self, base: dict, *, reason: str) -> Decision:
        logger.info("Routing to wholesale department reason=%s", reason)
        return Decision(
            action=PolicyAction.ROUTE_DEPARTMENT,
            intent=base["intent"],
            mode=ConversationMode.IDLE,
            next_mode=ConversationMode.IDLE,
            slots=base["slots"].cleared(),
            pending_slot=None,
            clear_slots=True,
            customer_type=base["customer_type"],
            department=Department.WHOLESALE,
            reason=reason,
        )

    def _fill_slots(
        self,
        classification: ClassificationResult,
        session: Session,
        slots: Slots,
        usable: List[Entity],
        product_changed: bool,
        base: dict,
    ) -> Decision:
        start = slots.cleared() if product_changed else slots
        if product_changed:
            logger.info(
                "Product switch from=%s to=%s",
                slots.value_of("product"),
                next(entity.value for entity in usable if entity.type == EntityType.PRODUCT),
            )
        projected = start.merged(usable)
        product = projected.value_of("product")
        asked = [] if product_changed else session.asked_slots
        price_requested = classification.matched(IntentType.PRICE_INQUIRY)

        info: Optional[ProductInfo] = None
        show_overview = False
        if product and product != start.value_of("product"):
            info, degraded = self._lookup(product)
            if info is None:
                return self._route_to_wholesale(
                    base, reason="knowledge_unavailable" if degraded else "product_unknown"
                )
            show_overview = True

        common = dict(
            intent=base["intent"],
            slots=projected,
            accepted=usable,
            clear_slots=product_changed,
            customer_type=base["customer_type"],
            product_info=info,
            show_overview=show_overview,
            product_changed=product_changed,
            price_requested=price_requested,
        )

        missing = projected.missing()
        if not missing:
            return Decision(
                action=PolicyAction.COMPLETE,
                mode=ConversationMode.COMPLETE,
                next_mode=ConversationMode.IDLE,
                pending_slot=None,
                reason="all_slots_filled",
                **common,
            )

        slot = missing[0]
        return Decision(
            action=PolicyAction.ASK_SLOT,
            mode=SLOT_TO_MODE[slot],
            next_mode=SLOT_TO_MODE[slot],
            pending_slot=slot,
            ask_slot=slot,
            repeat_question=slot in asked,
            reason=f"missing_{slot}",
            **common,
        )
