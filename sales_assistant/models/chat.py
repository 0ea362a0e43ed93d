from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("user_id", "userId", "sender_id"),
    )
    message: str = Field(validation_alias=AliasChoices("message", "text"))
    trace_id: Optional[str] = None


class HandleResult(BaseModel):
    """Outcome of a single turn handed back to the transport layer."""

    reply: str
    intent: str
    action: str
    mode: str
    slots_snapshot: Dict[str, Optional[str]] = Field(default_factory=dict)
    pending_slot: Optional[str] = None
    trace_id: Optional[str] = None
    debug: Optional[Dict[str, Any]] = None


class SessionSnapshot(BaseModel):
    user_id: str
    mode: str
    slots: Dict[str, Optional[str]]
    pending_slot: Optional[str] = None
    asked_slots: List[str] = Field(default_factory=list)
    recent_products: List[str] = Field(default_factory=list)
    history: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: float
    last_activity: float


class ChatResponse(BaseModel):
    reply: str
    intent: str
    action: str
    mode: str
    slots: Dict[str, Optional[str]] = Field(default_factory=dict)
    pending_slot: Optional[str] = None
    trace_id: Optional[str] = None
    debug: Optional[Dict[str, Any]] = None

    @classmethod
    def from_result(cls, result: HandleResult) -> "ChatResponse":
        return cls(
            reply=result.reply,
            intent=result.intent,
            action=result.action,
            mode=result.mode,
            slots=result.slots_snapshot,
            pending_slot=result.pending_slot,
            trace_id=result.trace_id,
            debug=result.debug,
        )
