from __future__ import annotations

import random
from pathlib import Path
from typing import Optional

import pytest

from sales_assistant.config import Settings
from sales_assistant.intents import ConversationMode, Department, IntentType, PolicyAction
from sales_assistant.models.session import Slots, SlotValue
from sales_assistant.services.dialog_policy import Decision
from sales_assistant.services.errors import ConfigError, KnowledgeStoreError
from sales_assistant.services.knowledge_store import YamlKnowledgeStore
from sales_assistant.services.response_composer import ResponseComposer, load_templates

from conftest import FirstChoice

WHOLESALE_PHONE = "01155501111"
SPRAY_BOOTH_PHONE = "01144003490"


class OfflineKnowledge:
    """Every lookup fails as if the backend were down."""

    def _fail(self, *args, **kwargs):
        raise KnowledgeStoreError("offline", reason="knowledge_offline")

    get_product = get_department_contact = get_locations = _fail
    get_working_hours = list_brands = get_company_name = _fail


def _decision(
    action: PolicyAction,
    *,
    intent: IntentType = IntentType.UNKNOWN,
    slots: Optional[Slots] = None,
    **fields,
) -> Decision:
    return Decision(
        action=action,
        intent=intent,
        mode=ConversationMode.IDLE,
        next_mode=ConversationMode.IDLE,
        slots=slots or Slots(),
        **fields,
    )


def _slots(**values: str) -> Slots:
    return Slots(**{name: SlotValue(value=value) for name, value in values.items()})


class TestVariantRotation:
    def test_menu_variants_do_not_repeat_within_window(self, composer: ResponseComposer) -> None:
        replies = [composer.compose("u1", _decision(PolicyAction.MENU)) for _ in range(3)]
        assert len(set(replies)) == 3
        assert composer.recent_variants("u1", "menu") == [0, 1, 2]

    def test_falls_back_to_all_variants_when_exhausted(self, composer: ResponseComposer) -> None:
        replies = [composer.compose("u1", _decision(PolicyAction.MENU)) for _ in range(4)]
        assert replies[3] == replies[0]

    def test_users_rotate_independently(self, composer: ResponseComposer) -> None:
        first = composer.compose("u1", _decision(PolicyAction.MENU))
        composer.compose("u1", _decision(PolicyAction.MENU))
        assert composer.compose("u2", _decision(PolicyAction.MENU)) == first

    def test_window_slides(self, knowledge: YamlKnowledgeStore, settings: Settings) -> None:
        templates = {"menu": tuple("abcdefg")}
        composer = ResponseComposer(knowledge, settings=settings, templates=templates, chooser=FirstChoice())
        replies = [composer.compose("u1", _decision(PolicyAction.MENU)) for _ in range(8)]
        assert replies == list("abcdefab")
        assert len(composer.recent_variants("u1", "menu")) == settings.response_variant_window

    def test_other_families_do_not_push_a_variant_out(
        self, knowledge: YamlKnowledgeStore, settings: Settings
    ) -> None:
        templates = {"menu": ("m1", "m2"), "ask_hours": tuple("abcdefg")}
        composer = ResponseComposer(knowledge, settings=settings, templates=templates, chooser=FirstChoice())
        first = composer.compose("u1", _decision(PolicyAction.MENU))
        for _ in range(settings.response_variant_window + 1):
            composer.compose("u1", _decision(PolicyAction.ANSWER, topic=IntentType.ASK_HOURS))
        assert first == "m1"
        assert composer.compose("u1", _decision(PolicyAction.MENU)) == "m2"
        assert composer.recent_variants("u1", "menu") == [0, 1]

    def test_random_chooser_respects_window(self, knowledge: YamlKnowledgeStore, settings: Settings) -> None:
        templates = {"menu": tuple("abcdef")}
        composer = ResponseComposer(knowledge, settings=settings, templates=templates, chooser=random.Random(7))
        replies = [composer.compose("u1", _decision(PolicyAction.MENU)) for _ in range(30)]
        for index, reply in enumerate(replies):
            assert reply not in replies[max(0, index - 5):index]

    def test_forget(self, composer: ResponseComposer) -> None:
        composer.compose("u1", _decision(PolicyAction.MENU))
        composer.forget("u1")
        assert composer.recent_variants("u1", "menu") == []


class TestReplies:
    @pytest.mark.parametrize(
        "decision",
        [
            _decision(PolicyAction.REFUSE),
            _decision(PolicyAction.MENU),
            _decision(PolicyAction.ROUTE_DEPARTMENT, department=Department.WHOLESALE),
            _decision(PolicyAction.ANSWER, topic=IntentType.GREETING),
            _decision(PolicyAction.ANSWER, topic=IntentType.GREETING, returning=True),
            _decision(PolicyAction.ANSWER, topic=IntentType.FAREWELL),
            _decision(PolicyAction.ANSWER, topic=IntentType.ASK_LOCATION),
            _decision(PolicyAction.ANSWER, topic=IntentType.ASK_HOURS),
            _decision(PolicyAction.ANSWER, topic=IntentType.ASK_CONTACT),
            _decision(PolicyAction.ANSWER, topic=IntentType.BRANDS_INQUIRY),
            _decision(PolicyAction.ANSWER, topic=IntentType.WHOLESALE_INQUIRY, department=Department.WHOLESALE),
            _decision(PolicyAction.ANSWER, topic=IntentType.SPRAY_BOOTH_INQUIRY, department=Department.SPRAY_BOOTH),
            _decision(PolicyAction.ANSWER, topic=IntentType.COMPLAINT, department=Department.CUSTOMER_SERVICE),
            _decision(PolicyAction.ANSWER, topic=IntentType.DELIVERY_INQUIRY),
            _decision(PolicyAction.ANSWER, topic=IntentType.PAYMENT_INQUIRY),
            _decision(PolicyAction.ASK_SLOT, ask_slot="product"),
            _decision(PolicyAction.CORRECTION, ask_slot="product"),
        ],
    )
    def test_placeholders_are_filled(self, composer: ResponseComposer, decision: Decision) -> None:
        reply = composer.compose("u1", decision)
        assert reply
        assert "{" not in reply and "}" not in reply

    def test_refusal_points_to_spray_booth(self, composer: ResponseComposer) -> None:
        reply = composer.compose("u1", _decision(PolicyAction.REFUSE))
        assert SPRAY_BOOTH_PHONE in reply
        assert WHOLESALE_PHONE not in reply

    def test_locations(self, composer: ResponseComposer) -> None:
        reply = composer.compose("u1", _decision(PolicyAction.ANSWER, topic=IntentType.ASK_LOCATION))
        assert reply.startswith("📍 مواقعنا:")
        assert "محطة أبو رجيلة" in reply

    def test_department_phone(self, composer: ResponseComposer) -> None:
        reply = composer.compose(
            "u1",
            _decision(PolicyAction.ANSWER, topic=IntentType.COMPLAINT, department=Department.CUSTOMER_SERVICE),
        )
        assert "01124400797" in reply

    def test_product_overview_and_size_question(self, composer: ResponseComposer, knowledge: YamlKnowledgeStore) -> None:
        decision = _decision(
            PolicyAction.ASK_SLOT,
            slots=_slots(product="معجون"),
            ask_slot="size",
            show_overview=True,
            product_info=knowledge.get_product("معجون"),
        )
        reply = composer.compose("u1", decision)
        assert reply.startswith("🎨 معجون (Putty)")
        assert "2.8 كجم، 800 جم، 400 جم" in reply
        assert reply.endswith("محتاج حجم قد إيه؟ (2.8 كجم، 800 جم، 400 جم)")

    def test_types_note_for_products_with_types(self, composer: ResponseComposer, knowledge: YamlKnowledgeStore) -> None:
        decision = _decision(
            PolicyAction.ASK_SLOT,
            slots=_slots(product="فيلر"),
            ask_slot="size",
            show_overview=True,
            product_info=knowledge.get_product("فيلر"),
        )
        assert "🔖 الأنواع: K1، K2، 121، 202، 204" in composer.compose("u1", decision)

    def test_repeat_question_uses_repeat_family(self, composer: ResponseComposer) -> None:
        decision = _decision(
            PolicyAction.ASK_SLOT,
            slots=_slots(product="معجون"),
            ask_slot="size",
            repeat_question=True,
        )
        assert composer.compose("u1", decision).startswith("الحجم اللي عايزه كام؟ المتاح: 2.8 كجم")

    def test_summary(self, composer: ResponseComposer) -> None:
        decision = _decision(
            PolicyAction.COMPLETE,
            slots=_slots(product="معجون", brand="Top Plus", size="2.8 كجم", quantity="1 كرتونة"),
            price_requested=True,
        )
        reply = composer.compose("u1", decision)
        assert "المنتج: معجون\nالماركة: Top Plus\nالحجم: 2.8 كجم\nالكمية: 1 كرتونة" in reply
        assert WHOLESALE_PHONE in reply
        assert reply.endswith("قسم الجملة هيأكدلك السعر")


class TestDegraded:
    def test_knowledge_topic_falls_back_to_contact(self, settings: Settings) -> None:
        composer = ResponseComposer(OfflineKnowledge(), settings=settings, chooser=FirstChoice())
        reply = composer.compose("u1", _decision(PolicyAction.ANSWER, topic=IntentType.ASK_LOCATION))
        assert settings.fallback_contact_phone in reply
        assert "مواقعنا" not in reply

    def test_routing_uses_fallback_phone(self, settings: Settings) -> None:
        composer = ResponseComposer(OfflineKnowledge(), settings=settings, chooser=FirstChoice())
        reply = composer.compose(
            "u1", _decision(PolicyAction.ROUTE_DEPARTMENT, department=Department.WHOLESALE)
        )
        assert settings.fallback_contact_phone in reply

    def test_fallback_reply(self, composer: ResponseComposer, settings: Settings) -> None:
        assert settings.fallback_contact_phone in composer.fallback()


class TestTemplateLoading:
    def test_shipped_templates(self) -> None:
        templates = load_templates()
        assert len(templates["menu"]) == 3
        assert all(templates.values())

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_templates(tmp_path / "missing.yaml")

    def test_empty_family(self, tmp_path: Path) -> None:
        path = tmp_path / "responses.yaml"
        path.write_text("menu: []\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_templates(path)
