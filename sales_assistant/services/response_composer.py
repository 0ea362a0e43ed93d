"""
ResponseComposer - turns a policy decision into Arabic reply text.

Template families live in ``config/responses.yaml``. Variant choice is the only
non-deterministic step of a turn: each user keeps a rolling window of recently
used variants per template family, and the chooser picks among the rest (or
among all variants when every one of them was used recently). Tests inject a
deterministic chooser.
"""

from __future__ import annotations

import functools
import logging
import random
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Optional, Protocol, Sequence

import yaml

from ..config import Settings, get_settings
from ..intents import Department, IntentType, PolicyAction
from ..models.session import Slots
from .cache import TTLCache
from .dialog_policy import Decision
from .errors import ConfigError, KnowledgeStoreError
from .knowledge_store import KnowledgeStore, ProductInfo

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "معلش، حصلت مشكلة عندي 🙏\nكلم قسم الجملة مباشرة على {phone} وهيفيدوك فوراً."

# Topics whose answer is built entirely from knowledge-store facts.
KNOWLEDGE_TOPICS = frozenset(
    {
        IntentType.ASK_LOCATION,
        IntentType.ASK_HOURS,
        IntentType.ASK_CONTACT,
        IntentType.BRANDS_INQUIRY,
    }
)

SUMMARY_LABELS = (
    ("product", "المنتج"),
    ("brand", "الماركة"),
    ("product_type", "النوع"),
    ("size", "الحجم"),
    ("quantity", "الكمية"),
)


class VariantChooser(Protocol):
    def choice(self, seq: Sequence[int]) -> int: ...


class _Values(dict):
    """Placeholder values; an unknown placeholder renders empty instead of failing."""

    def __missing__(self, key: str) -> str:
        logger.debug("Template placeholder without value key=%s", key)
        return ""


@functools.lru_cache(maxsize=4)
def load_templates(path: Path | None = None) -> Dict[str, tuple[str, ...]]:
    templates_path = Path(path or get_settings().responses_path)
    try:
        with templates_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot load reply templates {templates_path}", reason="templates_load_failed") from exc
    templates = {str(category): tuple(str(item) for item in variants or []) for category, variants in data.items()}
    empty = [category for category, variants in templates.items() if not variants]
    if empty:
        raise ConfigError(f"Template families without variants: {empty}", reason="templates_invalid")
    logger.info("Reply templates loaded path=%s families=%d", templates_path, len(templates))
    return templates


class ResponseComposer:
    def __init__(
        self,
        knowledge: KnowledgeStore,
        *,
        settings: Settings | None = None,
        templates: Dict[str, Sequence[str]] | None = None,
        chooser: VariantChooser | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._knowledge = knowledge
        self._templates = {key: tuple(value) for key, value in (templates or load_templates()).items()}
        self._chooser: VariantChooser = chooser or random.Random()
        self._window = settings.response_variant_window
        self._fallback_phone = settings.fallback_contact_phone
        self._recent: TTLCache[Dict[str, Deque[int]]] = TTLCache()
        self._recent_ttl = settings.session_ttl_seconds

    # ------------------------------------------------------------------
    # Variant selection
    # ------------------------------------------------------------------

    def _pick(self, user_id: str, category: str) -> str:
        variants = self._templates.get(category) or self._templates["menu"]
        windows = self._recent.get(user_id) or {}
        recent = windows.setdefault(category, deque(maxlen=self._window))
        fresh = [index for index in range(len(variants)) if index not in recent]
        index = self._chooser.choice(fresh or list(range(len(variants))))
        recent.append(index)
        self._recent.set(user_id, windows, self._recent_ttl)
        return variants[index]

    def recent_variants(self, user_id: str, category: str) -> List[int]:
        """Variant indexes used lately for ``category``, oldest first."""
        windows = self._recent.get(user_id) or {}
        return list(windows.get(category, ()))

    def forget(self, user_id: str) -> None:
        self._recent.pop(user_id)

    def cleanup(self) -> int:
        return self._recent.cleanup_expired()

    def _render(self, user_id: str, category: str, values: _Values) -> str:
        return self._pick(user_id, category).format_map(values).strip()

    # ------------------------------------------------------------------
    # Placeholder values
    # ------------------------------------------------------------------

    def _phone(self, kind: Department) -> tuple[str, str]:
        contact = self._knowledge.get_department_contact(kind)
        if contact is None:
            return self._fallback_phone, self._fallback_phone
        return contact.phone, contact.whatsapp or contact.phone

    def _company_values(self) -> _Values:
        wholesale, wholesale_whatsapp = self._phone(Department.WHOLESALE)
        spray_booth, _ = self._phone(Department.SPRAY_BOOTH)
        customer_service, _ = self._phone(Department.CUSTOMER_SERVICE)
        locations = "\n\n".join(
            f"🏢 {location.name}:\n{location.address}"
            + (f"\n📞 {self._phone(Department(location.department))[0]}" if location.department else "")
            for location in self._knowledge.get_locations()
        )
        hours = self._knowledge.get_working_hours()
        return _Values(
            company=self._knowledge.get_company_name(),
            wholesale_phone=wholesale,
            wholesale_whatsapp=wholesale_whatsapp,
            spray_booth_phone=spray_booth,
            customer_service_phone=customer_service,
            locations=locations,
            days=hours.days if hours else "",
            open=hours.open if hours else "",
            close=hours.close if hours else "",
            closed=(hours.closed or "") if hours else "",
            brands=" • ".join(self._knowledge.list_brands()),
        )

    def _fallback_values(self) -> _Values:
        return _Values(
            wholesale_phone=self._fallback_phone,
            wholesale_whatsapp=self._fallback_phone,
            spray_booth_phone=self._fallback_phone,
            customer_service_phone=self._fallback_phone,
            department_phone=self._fallback_phone,
        )

    @staticmethod
    def _product_values(info: Optional[ProductInfo], slots: Slots) -> Dict[str, str]:
        values = {"product": slots.value_of("product") or ""}
        if info is not None:
            values.update(
                product=info.name,
                english_name=info.english_name or info.name,
                description=info.description,
                product_brands="، ".join(info.brands),
                product_sizes="، ".join(info.available_sizes),
                product_types="، ".join(info.types),
            )
        return values

    @staticmethod
    def _summary(slots: Slots) -> str:
        return "\n".join(
            f"{label}: {slots.value_of(name)}" for name, label in SUMMARY_LABELS if slots.value_of(name)
        )

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def compose(self, user_id: str, decision: Decision) -> str:
        try:
            values = self._company_values()
            info = decision.product_info
            product = decision.slots.value_of("product")
            if info is None and product and decision.action in (PolicyAction.ASK_SLOT, PolicyAction.COMPLETE):
                info = self._knowledge.get_product(product)
            degraded = False
        except KnowledgeStoreError as exc:
            logger.warning("Knowledge store unavailable while composing reason=%s", exc.reason)
            values, info, degraded = self._fallback_values(), decision.product_info, True

        values.update(self._product_values(info, decision.slots))
        values["summary"] = self._summary(decision.slots)
        if decision.department is not None:
            values["department_phone"] = (
                self._fallback_phone if degraded else self._phone(decision.department)[0]
            )
        values.setdefault("department_phone", values.get("wholesale_phone") or self._fallback_phone)

        parts = [self._render(user_id, category, values) for category in self._categories(decision, info, degraded)]
        reply = "\n\n".join(part for part in parts if part)
        logger.debug("Reply composed user_id=%s action=%s parts=%d", user_id, decision.action.value, len(parts))
        return reply or self.fallback()

    def _categories(self, decision: Decision, info: Optional[ProductInfo], degraded: bool) -> List[str]:
        action = decision.action
        if action == PolicyAction.REFUSE:
            return ["b2c_refusal"]
        if action == PolicyAction.MENU:
            return ["menu"]
        if action == PolicyAction.ROUTE_DEPARTMENT:
            return ["contact_fallback"]
        if action == PolicyAction.ANSWER:
            topic = decision.topic or IntentType.UNKNOWN
            if degraded and topic in KNOWLEDGE_TOPICS:
                return ["contact_fallback"]
            if topic == IntentType.GREETING:
                return ["greeting_returning" if decision.returning else "greeting"]
            return [topic.value]
        if action == PolicyAction.COMPLETE:
            categories = ["summary"]
            if decision.price_requested:
                categories.append("price_note")
            return categories

        categories: List[str] = []
        if action == PolicyAction.CORRECTION:
            categories.append("correction" if decision.ask_slot != "product" else "correction_no_product")
        elif decision.product_changed:
            categories.append("product_switch")
        if decision.show_overview and info is not None:
            categories.append("product_overview")
            if info.types:
                categories.append("product_types_note")
        if decision.ask_slot:
            slot = decision.ask_slot
            categories.append(f"ask_{slot}_repeat" if decision.repeat_question else f"ask_{slot}")
        if decision.price_requested:
            categories.append("price_note")
        return categories

    def fallback(self) -> str:
        return FALLBACK_REPLY.format(phone=self._fallback_phone)
