from __future__ import annotations

from enum import StrEnum
from typing import Dict, FrozenSet


class IntentType(StrEnum):
    """Intents understood by the conversation engine."""

    UNKNOWN = "unknown"

    GREETING = "greeting"
    FAREWELL = "farewell"
    AFFIRMATION = "affirmation"
    NEGATION = "negation"

    ASK_LOCATION = "ask_location"
    ASK_HOURS = "ask_hours"
    ASK_CONTACT = "ask_contact"

    PRODUCT_INQUIRY = "product_inquiry"
    PRICE_INQUIRY = "price_inquiry"
    BRANDS_INQUIRY = "brands_inquiry"

    WHOLESALE_INQUIRY = "wholesale_inquiry"
    SPRAY_BOOTH_INQUIRY = "spray_booth_inquiry"
    COMPLAINT = "complaint"
    DELIVERY_INQUIRY = "delivery_inquiry"
    PAYMENT_INQUIRY = "payment_inquiry"
    HELP_REQUEST = "help_request"


class PriorityTier(StrEnum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_MULTIPLIERS: Dict[PriorityTier, float] = {
    PriorityTier.URGENT: 1.5,
    PriorityTier.HIGH: 1.2,
    PriorityTier.MEDIUM: 1.0,
    PriorityTier.LOW: 0.8,
}

# Lower rank sorts first when raw scores tie.
PRIORITY_RANK: Dict[PriorityTier, int] = {
    PriorityTier.URGENT: 0,
    PriorityTier.HIGH: 1,
    PriorityTier.MEDIUM: 2,
    PriorityTier.LOW: 3,
}


class ConversationMode(StrEnum):
    """States of the slot-filling dialogue."""

    IDLE = "IDLE"
    PRODUCT_SELECTED = "PRODUCT_SELECTED"
    AWAITING_SIZE = "AWAITING_SIZE"
    AWAITING_QUANTITY = "AWAITING_QUANTITY"
    COMPLETE = "COMPLETE"


PRODUCT_FLOW_MODES: FrozenSet[ConversationMode] = frozenset(
    {
        ConversationMode.PRODUCT_SELECTED,
        ConversationMode.AWAITING_SIZE,
        ConversationMode.AWAITING_QUANTITY,
    }
)


class CustomerType(StrEnum):
    B2B = "b2b"
    B2C = "b2c"


class EntityType(StrEnum):
    PRODUCT = "product"
    BRAND = "brand"
    SIZE = "size"
    QUANTITY = "quantity"
    PRODUCT_TYPE = "product_type"


class Department(StrEnum):
    """Contact channels exposed by the knowledge store."""

    WHOLESALE = "wholesale"
    SPRAY_BOOTH = "sprayBooth"
    CUSTOMER_SERVICE = "customerService"


class PolicyAction(StrEnum):
    """What the dialogue policy decided to do with a turn."""

    REFUSE = "refuse"
    ANSWER = "answer"
    ASK_SLOT = "ask_slot"
    CORRECTION = "correction"
    COMPLETE = "complete"
    ROUTE_DEPARTMENT = "route_department"
    MENU = "menu"
    FALLBACK = "fallback"


# Context-free intents are answered from the knowledge store and never touch slots.
CONTEXT_FREE_INTENTS: FrozenSet[IntentType] = frozenset(
    {
        IntentType.GREETING,
        IntentType.FAREWELL,
        IntentType.ASK_LOCATION,
        IntentType.ASK_HOURS,
        IntentType.ASK_CONTACT,
        IntentType.WHOLESALE_INQUIRY,
        IntentType.SPRAY_BOOTH_INQUIRY,
        IntentType.COMPLAINT,
        IntentType.DELIVERY_INQUIRY,
        IntentType.PAYMENT_INQUIRY,
    }
)

PRODUCT_FAMILY_INTENTS: FrozenSet[IntentType] = frozenset(
    {
        IntentType.PRODUCT_INQUIRY,
        IntentType.PRICE_INQUIRY,
    }
)

# Slots collected in this order; brand and product_type are optional.
REQUIRED_SLOTS: tuple[str, ...] = ("product", "size", "quantity")
PRODUCT_SLOTS: tuple[str, ...] = ("product", "brand", "size", "quantity", "product_type")

SLOT_TO_MODE: Dict[str, ConversationMode] = {
    "product": ConversationMode.IDLE,
    "size": ConversationMode.AWAITING_SIZE,
    "quantity": ConversationMode.AWAITING_QUANTITY,
}

ENTITY_TO_SLOT: Dict[EntityType, str] = {
    EntityType.PRODUCT: "product",
    EntityType.BRAND: "brand",
    EntityType.SIZE: "size",
    EntityType.QUANTITY: "quantity",
    EntityType.PRODUCT_TYPE: "product_type",
}
