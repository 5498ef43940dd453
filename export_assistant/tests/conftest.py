"""Shared fixtures: in-memory store, deterministic randomness, wired services."""

from datetime import datetime, timezone

import pytest

from export_assistant.core.config import Settings
from export_assistant.repositories.base import InMemoryStore
from export_assistant.schemas.context import BusinessProfile, UserContext
from export_assistant.services.analytics_service import AnalyticsService
from export_assistant.services.chat_service import ChatService
from export_assistant.services.context_service import ContextService
from export_assistant.services.entity_extractor import EntityExtractor
from export_assistant.services.intent_classifier import IntentClassifier
from export_assistant.services.personalization_service import PersonalizationService
from export_assistant.services.response_generator import ResponseGenerator


class FixedRandom:
    """Stands in for random.Random: constant draws, first element on choice."""

    def __init__(self, value: float = 0.0):
        self.value = value

    def random(self) -> float:
        return self.value

    def choice(self, seq):
        return seq[0]


class FixedClock:
    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def fixed_random():
    return FixedRandom


@pytest.fixture
def config():
    return Settings(storage_backend="memory", random_seed=7)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def extractor():
    return EntityExtractor()


@pytest.fixture
def classifier(extractor):
    return IntentClassifier(extractor)


@pytest.fixture
def context():
    return UserContext(user_id="user-1", conversation_id="conv-1")


@pytest.fixture
def make_context():
    def _make(user_id="user-1", conversation_id="conv-1", **profile):
        return UserContext(
            user_id=user_id,
            conversation_id=conversation_id,
            business_profile=BusinessProfile(**profile),
        )
    return _make


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def personalization(store, config):
    return PersonalizationService(store, config, rng=FixedRandom(0.0))


@pytest.fixture
def analytics(store, config, clock):
    return AnalyticsService(store, config, clock=clock)


@pytest.fixture
def generator():
    return ResponseGenerator(rng=FixedRandom())


@pytest.fixture
def context_service(store, config):
    return ContextService(store, config)


@pytest.fixture
def chat_service(context_service, classifier, generator, personalization, analytics, config):
    return ChatService(context_service, classifier, generator, personalization, analytics, config)
