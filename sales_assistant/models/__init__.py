from __future__ import annotations

from .chat import ChatRequest, ChatResponse, HandleResult, SessionSnapshot
from .nlu import ClassificationResult, Entity, ExtractionResult, IntentMatch
from .session import Session, SlotValue, Slots, SoftMemory, Turn

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "ClassificationResult",
    "Entity",
    "ExtractionResult",
    "HandleResult",
    "IntentMatch",
    "Session",
    "SessionSnapshot",
    "SlotValue",
    "Slots",
    "SoftMemory",
    "Turn",
]
