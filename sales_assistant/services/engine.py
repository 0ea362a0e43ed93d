"""
ConversationEngine - one turn end to end.

    text -> normalize -> {extract, classify} -> append user turn
         -> policy.decide -> apply to session -> compose -> append agent turn

The whole turn runs under the user's session lock, so overlapping messages for
the same user are serialized while different users proceed in parallel. Any
unexpected failure is logged and still answered with a well-formed fallback.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..config import Settings, get_settings
from ..intents import ConversationMode, IntentType, PolicyAction
from ..models.chat import HandleResult, SessionSnapshot
from ..models.session import Session, Turn
from ..utils.logging import get_request_logger
from .dialog_policy import Decision, DialogPolicy
from .entity_extractor import EntityExtractor
from .errors import BadRequestError
from .intent_classifier import IntentClassifier
from .knowledge_store import KnowledgeStore, get_knowledge_store
from .nlu.text_normalizer import normalize
from .response_composer import ResponseComposer
from .session_store import SessionStore

logger = logging.getLogger(__name__)


class ConversationEngine:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        store: SessionStore | None = None,
        knowledge: KnowledgeStore | None = None,
        extractor: EntityExtractor | None = None,
        classifier: IntentClassifier | None = None,
        policy: DialogPolicy | None = None,
        composer: ResponseComposer | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        knowledge = knowledge or get_knowledge_store()
        self._store = store or SessionStore(settings=self._settings)
        self._extractor = extractor or EntityExtractor()
        self._classifier = classifier or IntentClassifier(settings=self._settings)
        self._policy = policy or DialogPolicy(knowledge, settings=self._settings)
        self._composer = composer or ResponseComposer(knowledge, settings=self._settings)

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def composer(self) -> ResponseComposer:
        return self._composer

    def handle(self, user_id: str, text: str, *, trace_id: str | None = None) -> HandleResult:
        if not user_id or not user_id.strip():
            raise BadRequestError("user_id is required", reason="user_id_missing")
        request_logger = get_request_logger(logger, trace_id=trace_id, user_id=user_id)

        with self._store.session_lock(user_id):
            session: Optional[Session] = None
            try:
                session = self._store.get_or_create(user_id)
                return self._turn(session, text or "", trace_id, request_logger)
            except Exception:
                request_logger.exception("Turn failed; answering with fallback")
                return HandleResult(
                    reply=self._composer.fallback(),
                    intent=IntentType.UNKNOWN.value,
                    action=PolicyAction.FALLBACK.value,
                    mode=(session.mode if session else ConversationMode.IDLE).value,
                    slots_snapshot=session.slots.snapshot() if session else {},
                    pending_slot=session.pending_slot if session else None,
                    trace_id=trace_id,
                )

    def _turn(self, session: Session, text: str, trace_id: str | None, request_logger) -> HandleResult:
        user_id = session.user_id
        normalized = normalize(text)
        extraction = self._extractor.extract(normalized)
        classification = self._classifier.classify(normalized, mode=session.mode)
        request_logger.info(
            "Classified intent=%s confidence=%.2f mode=%s entities=%s customer_type=%s",
            classification.intent.value,
            classification.confidence,
            session.mode.value,
            {key.value: entity.text for key, entity in extraction.entities.items()},
            extraction.customer_type.value if extraction.customer_type else "-",
        )

        self._store.append_turn(
            user_id,
            Turn(role="user", text=text, intent=classification.intent.value, timestamp=self._store.now()),
        )

        decision = self._policy.decide(classification, extraction, session)
        request_logger.info(
            "Decision action=%s reason=%s mode=%s->%s pending_slot=%s",
            decision.action.value,
            decision.reason,
            session.mode.value,
            decision.mode.value,
            decision.pending_slot or "-",
        )
        self._apply(user_id, decision)

        reply = self._composer.compose(user_id, decision)
        self._store.append_turn(
            user_id,
            Turn(role="agent", text=reply, intent=classification.intent.value, timestamp=self._store.now()),
        )
        if decision.completes:
            self._store.clear_slots(user_id)
            request_logger.info("Inquiry complete slots=%s", decision.slots.snapshot())

        debug = None
        if self._settings.debug:
            debug = {
                "normalized": normalized,
                "classification": classification.to_debug_dict(),
                "entities": extraction.to_debug_dict(),
                "decision": decision.to_debug_dict(),
            }
        return HandleResult(
            reply=reply,
            intent=classification.intent.value,
            action=decision.action.value,
            mode=decision.mode.value,
            slots_snapshot=decision.slots.snapshot(),
            pending_slot=decision.pending_slot,
            trace_id=trace_id,
            debug=debug,
        )

    def _apply(self, user_id: str, decision: Decision) -> None:
        if decision.customer_type is not None:
            self._store.set_customer_type(user_id, decision.customer_type)
        if decision.clear_slots:
            self._store.clear_slots(user_id)
        if decision.accepted:
            self._store.merge_slots(user_id, decision.accepted)
        self._store.set_pending_slot(user_id, decision.pending_slot)
        if decision.ask_slot:
            self._store.mark_asked(user_id, decision.ask_slot)
        self._store.set_mode(user_id, decision.next_mode)
        if decision.returning:
            self._store.mark_greeted(user_id)

    def snapshot(self, user_id: str) -> Optional[SessionSnapshot]:
        session = self._store.get(user_id)
        if session is None:
            return None
        return SessionSnapshot.model_validate(session.to_snapshot())

    def reset(self, user_id: str) -> bool:
        self._composer.forget(user_id)
        return self._store.reset(user_id)

    def sweep(self) -> int:
        removed = self._store.sweep()
        self._composer.cleanup()
        return removed


_engine: ConversationEngine | None = None


def get_engine() -> ConversationEngine:
    global _engine
    if _engine is None:
        _engine = ConversationEngine()
    return _engine

