from __future__ import annotations

from typing import Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..intents import (
    ENTITY_TO_SLOT,
    PRODUCT_SLOTS,
    REQUIRED_SLOTS,
    ConversationMode,
    CustomerType,
)
from .nlu import Entity

TurnRole = Literal["user", "agent"]


class SlotValue(BaseModel):
    """Value held by a slot together with how sure we are about it."""

    model_config = ConfigDict(frozen=True)

    value: str
    ambiguous: bool = False
    confidence: float = 1.0

    @classmethod
    def from_entity(cls, entity: Entity) -> "SlotValue":
        return cls(value=entity.text, ambiguous=entity.ambiguous, confidence=entity.confidence)


class Slots(BaseModel):
    """Order attributes collected for the current inquiry."""

    product: Optional[SlotValue] = None
    brand: Optional[SlotValue] = None
    size: Optional[SlotValue] = None
    quantity: Optional[SlotValue] = None
    product_type: Optional[SlotValue] = None
    customer_type: Optional[CustomerType] = None

    def value_of(self, slot_name: str) -> Optional[str]:
        slot = getattr(self, slot_name)
        return slot.value if slot is not None else None

    def missing(self) -> List[str]:
        return [name for name in REQUIRED_SLOTS if getattr(self, name) is None]

    def accepts(self, slot_name: str, candidate: SlotValue) -> bool:
        """A slot is written when empty, or when a confirmed value replaces an ambiguous one."""
        existing: Optional[SlotValue] = getattr(self, slot_name)
        if existing is None:
            return True
        return existing.ambiguous and not candidate.ambiguous

    def merged(self, entities: Iterable[Entity]) -> "Slots":
        updates: Dict[str, SlotValue] = {}
        current = self
        for entity in entities:
            slot_name = ENTITY_TO_SLOT[entity.type]
            candidate = SlotValue.from_entity(entity)
            if current.accepts(slot_name, candidate):
                updates[slot_name] = candidate
                current = current.model_copy(update={slot_name: candidate})
        return self.model_copy(update=updates) if updates else self

    def cleared(self) -> "Slots":
        """Drop product-specific slots; customer type survives."""
        return self.model_copy(update={name: None for name in PRODUCT_SLOTS})

    def snapshot(self) -> Dict[str, Optional[str]]:
        data: Dict[str, Optional[str]] = {name: self.value_of(name) for name in PRODUCT_SLOTS}
        data["customer_type"] = self.customer_type.value if self.customer_type else None
        return data


class Turn(BaseModel):
    role: TurnRole
    text: str
    intent: Optional[str] = None
    timestamp: float


class Session(BaseModel):
    """Per-user conversational context."""

    user_id: str
    created_at: float
    last_activity: float
    mode: ConversationMode = ConversationMode.IDLE
    slots: Slots = Field(default_factory=Slots)
    pending_slot: Optional[str] = None
    history: List[Turn] = Field(default_factory=list)
    asked_slots: List[str] = Field(default_factory=list)
    recent_products: List[str] = Field(default_factory=list)
    returning: bool = False

    def copy_state(self) -> "Session":
        return Session.model_validate(self.model_dump())

    def to_snapshot(self) -> Dict[str, object]:
        return {
            "user_id": self.user_id,
            "mode": self.mode.value,
            "slots": self.slots.snapshot(),
            "pending_slot": self.pending_slot,
            "asked_slots": list(self.asked_slots),
            "recent_products": list(self.recent_products),
            "history": [turn.model_dump() for turn in self.history],
            "created_at": self.created_at,
            "last_activity": self.last_activity,
        }


class SoftMemory(BaseModel):
    """What survives a session expiry."""

    customer_type: Optional[CustomerType] = None
    recent_products: List[str] = Field(default_factory=list)
