"""Shared pytest fixtures for all tests."""

from __future__ import annotations

from typing import Sequence

import pytest

from sales_assistant.config import Settings
from sales_assistant.services.dialog_policy import DialogPolicy
from sales_assistant.services.engine import ConversationEngine
from sales_assistant.services.engine_config import EngineConfig, load_engine_config
from sales_assistant.services.entity_extractor import EntityExtractor
from sales_assistant.services.intent_classifier import IntentClassifier
from sales_assistant.services.knowledge_store import YamlKnowledgeStore
from sales_assistant.services.response_composer import ResponseComposer
from sales_assistant.services.session_store import SessionStore


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FirstChoice:
    """Variant chooser that always takes the first allowed variant."""

    def choice(self, seq: Sequence[int]) -> int:
        return seq[0]


@pytest.fixture
def settings() -> Settings:
    """Default settings for tests."""
    return Settings(debug=False)


@pytest.fixture
def engine_config() -> EngineConfig:
    return load_engine_config()


@pytest.fixture
def knowledge() -> YamlKnowledgeStore:
    return YamlKnowledgeStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(settings: Settings, clock: FakeClock) -> SessionStore:
    return SessionStore(settings=settings, clock=clock)


@pytest.fixture
def extractor(engine_config: EngineConfig) -> EntityExtractor:
    return EntityExtractor(engine_config)


@pytest.fixture
def classifier(engine_config: EngineConfig, settings: Settings) -> IntentClassifier:
    return IntentClassifier(engine_config, settings=settings)


@pytest.fixture
def policy(knowledge: YamlKnowledgeStore, settings: Settings) -> DialogPolicy:
    return DialogPolicy(knowledge, settings=settings)


@pytest.fixture
def composer(knowledge: YamlKnowledgeStore, settings: Settings) -> ResponseComposer:
    return ResponseComposer(knowledge, settings=settings, chooser=FirstChoice())


@pytest.fixture
def engine(
    settings: Settings,
    store: SessionStore,
    knowledge: YamlKnowledgeStore,
    extractor: EntityExtractor,
    classifier: IntentClassifier,
    policy: DialogPolicy,
    composer: ResponseComposer,
) -> ConversationEngine:
    return ConversationEngine(
        settings=settings,
        store=store,
        knowledge=knowledge,
        extractor=extractor,
        classifier=classifier,
        policy=policy,
        composer=composer,
    )
