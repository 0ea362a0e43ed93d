from __future__ import annotations

from typing import Optional

import pytest

from sales_assistant.intents import (
    ConversationMode,
    CustomerType,
    Department,
    IntentType,
    PolicyAction,
)
from sales_assistant.models.session import Session, Slots, SlotValue
from sales_assistant.services.dialog_policy import Decision, DialogPolicy
from sales_assistant.services.entity_extractor import EntityExtractor
from sales_assistant.services.errors import KnowledgeStoreError
from sales_assistant.services.intent_classifier import IntentClassifier
from sales_assistant.services.knowledge_store import ProductInfo
from sales_assistant.services.nlu import normalize


class EmptyCatalog:
    """Knowledge store that knows no products."""

    def get_product(self, name: str) -> Optional[ProductInfo]:
        return None


class BrokenCatalog:
    def get_product(self, name: str) -> Optional[ProductInfo]:
        raise KnowledgeStoreError("catalog offline", reason="catalog_offline")


def _session(
    mode: ConversationMode = ConversationMode.IDLE,
    *,
    pending_slot: Optional[str] = None,
    asked_slots=(),
    customer_type: Optional[CustomerType] = None,
    returning: bool = False,
    **slot_values: str,
) -> Session:
    slots = Slots(
        customer_type=customer_type,
        **{name: SlotValue(value=value) for name, value in slot_values.items()},
    )
    return Session(
        user_id="u1",
        created_at=0.0,
        last_activity=0.0,
        mode=mode,
        slots=slots,
        pending_slot=pending_slot,
        asked_slots=list(asked_slots),
        returning=returning,
    )


@pytest.fixture
def decide(policy: DialogPolicy, classifier: IntentClassifier, extractor: EntityExtractor):
    def _decide(text: str, session: Session, *, using: DialogPolicy | None = None) -> Decision:
        normalized = normalize(text)
        classification = classifier.classify(normalized, mode=session.mode)
        extraction = extractor.extract(normalized)
        return (using or policy).decide(classification, extraction, session)

    return _decide


class TestRetailOverride:
    def test_b2c_is_refused(self, decide) -> None:
        decision = decide("عايز علبة واحدة معجون", _session())
        assert decision.action == PolicyAction.REFUSE
        assert decision.customer_type == CustomerType.B2C
        assert decision.slots.product is None

    def test_b2c_is_sticky(self, decide) -> None:
        decision = decide("عندي محل", _session(customer_type=CustomerType.B2C))
        assert decision.action == PolicyAction.REFUSE
        assert decision.customer_type is None
        assert decision.slots.customer_type == CustomerType.B2C

    def test_b2c_beats_context_free_intent(self, decide) -> None:
        decision = decide("فين العنوان", _session(customer_type=CustomerType.B2C))
        assert decision.action == PolicyAction.REFUSE

    def test_b2b_is_recorded(self, decide) -> None:
        decision = decide("عندي محل عايز معجون", _session())
        assert decision.customer_type == CustomerType.B2B
        assert decision.slots.customer_type == CustomerType.B2B
        assert decision.action == PolicyAction.ASK_SLOT


class TestContextFree:
    def test_answer_leaves_flow_untouched(self, decide) -> None:
        session = _session(
            ConversationMode.AWAITING_QUANTITY,
            pending_slot="quantity",
            product="معجون",
            size="2.8 كجم",
        )
        decision = decide("فين العنوان", session)
        assert decision.action == PolicyAction.ANSWER
        assert decision.topic == IntentType.ASK_LOCATION
        assert decision.next_mode == ConversationMode.AWAITING_QUANTITY
        assert decision.pending_slot == "quantity"
        assert decision.slots == session.slots
        assert decision.accepted == []

    @pytest.mark.parametrize(
        "text, department",
        [
            ("عندي شكوى", Department.CUSTOMER_SERVICE),
            ("كابينة الرش", Department.SPRAY_BOOTH),
            ("ليكم موزع", Department.WHOLESALE),
        ],
    )
    def test_department_topics(self, decide, text: str, department: Department) -> None:
        decision = decide(text, _session())
        assert decision.action == PolicyAction.ANSWER
        assert decision.department == department

    def test_returning_greeting(self, decide) -> None:
        assert decide("السلام عليكم", _session(returning=True)).returning is True
        assert decide("السلام عليكم", _session()).returning is False

    def test_greeting_with_product_starts_the_flow(self, decide) -> None:
        decision = decide("السلام عليكم عايز معجون", _session())
        assert decision.action == PolicyAction.ASK_SLOT
        assert decision.slots.value_of("product") == "معجون"
        assert decision.ask_slot == "size"

    def test_greeting_with_bare_number_is_answered(self, decide) -> None:
        decision = decide("السلام عليكم 2", _session())
        assert decision.action == PolicyAction.ANSWER
        assert decision.topic == IntentType.GREETING


class TestSlotFilling:
    def test_product_asks_for_size(self, decide) -> None:
        decision = decide("معجون", _session())
        assert decision.action == PolicyAction.ASK_SLOT
        assert decision.ask_slot == "size"
        assert decision.mode == ConversationMode.AWAITING_SIZE
        assert decision.show_overview
        assert decision.product_info.name == "معجون"

    def test_bare_number_without_pending_slot_is_ignored(self, decide) -> None:
        decision = decide("2", _session())
        assert decision.action == PolicyAction.MENU
        assert decision.accepted == []

    def test_bare_number_answers_pending_quantity(self, decide) -> None:
        session = _session(
            ConversationMode.AWAITING_QUANTITY,
            pending_slot="quantity",
            product="معجون",
            size="2.8 كجم",
        )
        decision = decide("2", session)
        assert decision.action == PolicyAction.COMPLETE
        assert decision.mode == ConversationMode.COMPLETE
        assert decision.next_mode == ConversationMode.IDLE
        assert decision.slots.value_of("quantity") == "2 كرتونة"
        assert decision.completes

    @pytest.mark.parametrize(
        "text, expected",
        [("800", "800 جم"), ("2.8", "2.8 كجم"), ("3", "3 كجم")],
    )
    def test_bare_number_answers_pending_size(self, decide, text: str, expected: str) -> None:
        session = _session(ConversationMode.AWAITING_SIZE, pending_slot="size", product="معجون")
        decision = decide(text, session)
        assert decision.slots.value_of("size") == expected
        assert decision.slots.quantity is None
        assert decision.ask_slot == "quantity"
        assert decision.next_mode == ConversationMode.AWAITING_QUANTITY

    def test_brand_is_accepted_mid_flow(self, decide) -> None:
        session = _session(ConversationMode.AWAITING_SIZE, pending_slot="size", product="معجون")
        decision = decide("توب بلس", session)
        assert decision.slots.value_of("brand") == "Top Plus"
        assert decision.ask_slot == "size"
        assert not decision.show_overview

    def test_unanswered_question_is_repeated(self, decide) -> None:
        session = _session(
            ConversationMode.AWAITING_SIZE,
            pending_slot="size",
            asked_slots=["size"],
            product="معجون",
        )
        decision = decide("تمام", session)
        assert decision.action == PolicyAction.ASK_SLOT
        assert decision.repeat_question

    def test_price_request_is_flagged(self, decide) -> None:
        decision = decide("بكام المعجون", _session())
        assert decision.price_requested
        assert decision.slots.value_of("product") == "معجون"


class TestCorrections:
    def test_plain_negation_returns_to_idle(self, decide) -> None:
        session = _session(ConversationMode.AWAITING_SIZE, pending_slot="size", product="معجون")
        decision = decide("لا", session)
        assert decision.action == PolicyAction.CORRECTION
        assert decision.next_mode == ConversationMode.IDLE
        assert decision.clear_slots
        assert decision.slots.product is None
        assert decision.ask_slot == "product"

    def test_negation_with_new_product(self, decide) -> None:
        session = _session(
            ConversationMode.AWAITING_QUANTITY,
            pending_slot="quantity",
            product="معجون",
            size="2.8 كجم",
        )
        decision = decide("لا مش معجون عايز فيلر", session)
        assert decision.action == PolicyAction.CORRECTION
        assert decision.next_mode == ConversationMode.PRODUCT_SELECTED
        assert decision.slots.value_of("product") == "فيلر"
        assert decision.slots.size is None
        assert decision.pending_slot == "size"

    def test_negation_outside_flow_is_not_a_correction(self, decide) -> None:
        assert decide("لا", _session()).action == PolicyAction.MENU

    def test_product_switch_resets_slots(self, decide) -> None:
        session = _session(
            ConversationMode.AWAITING_QUANTITY,
            pending_slot="quantity",
            asked_slots=["size", "quantity"],
            product="معجون",
            size="2.8 كجم",
        )
        decision = decide("فيلر", session)
        assert decision.product_changed
        assert decision.clear_slots
        assert decision.slots.value_of("product") == "فيلر"
        assert decision.slots.size is None
        assert decision.ask_slot == "size"
        assert not decision.repeat_question

    @pytest.mark.parametrize("prefix", ["عايز", "محتاج", "ابغي"])
    def test_product_switch_keeps_size_and_quantity(self, decide, prefix: str) -> None:
        session = _session(ConversationMode.AWAITING_SIZE, pending_slot="size", product="معجون")
        decision = decide(f"{prefix} فيلر 2.8 كيلو 3 كراتين", session)
        assert decision.action == PolicyAction.COMPLETE
        assert decision.product_changed
        assert decision.slots.value_of("product") == "فيلر"
        assert decision.slots.value_of("size") == "2.8 كجم"
        assert decision.slots.value_of("quantity") == "3 كرتونة"

    def test_fuzzy_negation_does_not_correct(self, decide) -> None:
        session = _session(
            ConversationMode.AWAITING_QUANTITY, pending_slot="quantity", product="معجون", size="2.8 كجم"
        )
        decision = decide("ابغي فيلر", session)
        assert decision.action == PolicyAction.ASK_SLOT
        assert decision.reason == "missing_size"
        assert decision.product_changed


class TestKnowledgeFailures:
    def test_unknown_product_routes_to_wholesale(self, decide) -> None:
        decision = decide("معجون", _session(), using=DialogPolicy(EmptyCatalog()))
        assert decision.action == PolicyAction.ROUTE_DEPARTMENT
        assert decision.department == Department.WHOLESALE
        assert decision.reason == "product_unknown"
        assert decision.next_mode == ConversationMode.IDLE

    def test_unavailable_store_routes_to_wholesale(self, decide) -> None:
        decision = decide("معجون", _session(), using=DialogPolicy(BrokenCatalog()))
        assert decision.action == PolicyAction.ROUTE_DEPARTMENT
        assert decision.reason == "knowledge_unavailable"


class TestFallthrough:
    def test_brand_list(self, decide) -> None:
        decision = decide("ماركات", _session())
        assert decision.action == PolicyAction.ANSWER
        assert decision.topic == IntentType.BRANDS_INQUIRY

    @pytest.mark.parametrize("text", ["مساعده", "", "xyz"])
    def test_menu(self, decide, text: str) -> None:
        assert decide(text, _session()).action == PolicyAction.MENU
